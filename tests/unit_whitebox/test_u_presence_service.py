import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from google.cloud.firestore_v1 import SERVER_TIMESTAMP

from models.user_profile import UserProfile
from services.base_service import BaseService
from services.presence_service import PresenceTracker, mask_presence, public_presence
from utils.exceptions import NotFoundError, TransientIOError

SEEN = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def owner(**privacy):
    return UserProfile(id="owner", is_online=True, last_seen_at=SEEN, **privacy)


def test_public_presence_defaults_show_everything():
    presence = public_presence(owner(), "viewer")
    assert presence.is_online is True
    assert presence.last_seen_at == SEEN


def test_appear_offline_hides_online_state():
    presence = public_presence(owner(appear_offline=True), "viewer")
    assert presence.is_online is False
    assert presence.last_seen_at == SEEN


def test_hidden_last_seen():
    presence = public_presence(owner(show_online_status=False, show_last_seen=False), "viewer")
    assert presence.is_online is False
    assert presence.last_seen_at is None


def test_owner_always_sees_own_presence():
    profile = owner(appear_offline=True, show_last_seen=False)
    assert public_presence(profile, "owner").is_online is True
    assert mask_presence(profile, "owner") is profile


@pytest.mark.asyncio
async def test_set_presence_writes_flag_and_server_timestamp(mock_db_client):
    tracker = PresenceTracker(mock_db_client)
    with patch.object(BaseService, 'update_document', AsyncMock()) as mock_update:
        await tracker.set_presence("u1", True)

    mock_update.assert_awaited_once_with(tracker.users_collection, "u1",
                                         {'isOnline': True, 'lastSeen': SERVER_TIMESTAMP})


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [TransientIOError("down"), NotFoundError("gone")])
async def test_set_presence_never_raises(mock_db_client, error):
    tracker = PresenceTracker(mock_db_client)
    with patch.object(BaseService, 'update_document', AsyncMock(side_effect=error)):
        await tracker.set_presence("u1", False)


@pytest.mark.asyncio
async def test_watch_masks_presence_for_viewer(mock_db_client, snapshot_factory):
    watch_db = MagicMock()
    tracker = PresenceTracker(mock_db_client, watch_db)
    received = []

    subscription = tracker.watch("owner", received.append, viewer_id="viewer")
    on_snapshot = watch_db.collection.return_value.document.return_value.on_snapshot.call_args[0][0]
    on_snapshot([snapshot_factory("owner", {"username": "o", "isOnline": True, "appearOffline": True})], [], None)
    on_snapshot([snapshot_factory("owner", None)], [], None)
    for _ in range(3):
        await asyncio.sleep(0)

    assert received[0].username == "o"
    assert received[0].is_online is False
    assert received[1] is None
    subscription.cancel()
