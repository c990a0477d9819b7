# Filename: tests/integration_whitebox/test_i_match_routes.py
from utils.exceptions import PermissionDeniedError


def test_get_suggestions(client, mock_match_service, sample_user_profile, partner_profile):
    response = client.get("/matches/", params={"limit": 5})

    assert response.status_code == 200
    assert [u["id"] for u in response.json()] == [partner_profile.id]
    mock_match_service.suggestions.assert_awaited_once_with(sample_user_profile, 5)


def test_get_suggestions_default_limit(client, mock_match_service, sample_user_profile):
    response = client.get("/matches/")

    assert response.status_code == 200
    mock_match_service.suggestions.assert_awaited_once_with(sample_user_profile, 10)


def test_get_suggestions_invalid_limit(client, mock_match_service):
    response = client.get("/matches/", params={"limit": 0})

    assert response.status_code == 422
    mock_match_service.suggestions.assert_not_awaited()


def test_get_conversation_starters(client, partner_profile):
    response = client.get(f"/matches/{partner_profile.id}/starters")

    assert response.status_code == 200
    data = response.json()
    assert data["partnerId"] == partner_profile.id
    assert len(data["starters"]) == 5
    assert "chess" in data["starters"][0]


def test_starters_for_hidden_user(client, mock_profile_service):
    mock_profile_service.get_visible_profile.side_effect = PermissionDeniedError("hidden")

    response = client.get("/matches/someone/starters")

    assert response.status_code == 403
