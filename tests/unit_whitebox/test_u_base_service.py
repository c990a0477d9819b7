import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from google.api_core import exceptions as api_exceptions

from services.base_service import BaseService
from utils.exceptions import (NotFoundError, PayloadValidationError, PermissionDeniedError, TransientIOError,
                              map_store_error)


@pytest.fixture
def base_service(mock_db_client):
    return BaseService(mock_db_client, MagicMock())


@pytest.mark.parametrize("error, expected", [
    (api_exceptions.NotFound("gone"), NotFoundError),
    (api_exceptions.PermissionDenied("rules"), PermissionDeniedError),
    (api_exceptions.Unauthenticated("token"), PermissionDeniedError),
    (api_exceptions.InvalidArgument("too big"), PayloadValidationError),
    (api_exceptions.ServiceUnavailable("down"), TransientIOError),
    (api_exceptions.DeadlineExceeded("slow"), TransientIOError),
])
def test_map_store_error(error, expected):
    mapped = map_store_error(error, "users/u1")
    assert isinstance(mapped, expected)
    assert mapped.resource == "users/u1"


def test_only_transient_errors_are_retryable():
    assert map_store_error(api_exceptions.ServiceUnavailable("down"), "x").retryable is True
    assert map_store_error(api_exceptions.NotFound("gone"), "x").retryable is False


@pytest.mark.asyncio
async def test_get_document_missing_returns_none(base_service, mock_db_client, snapshot_factory):
    doc_ref = mock_db_client.collection.return_value.document.return_value
    doc_ref.get = AsyncMock(return_value=snapshot_factory("u1", None))

    assert await base_service.get_document("users", "u1") is None


@pytest.mark.asyncio
async def test_get_document_maps_errors(base_service, mock_db_client):
    doc_ref = mock_db_client.collection.return_value.document.return_value
    doc_ref.get = AsyncMock(side_effect=api_exceptions.ServiceUnavailable("down"))

    with pytest.raises(TransientIOError):
        await base_service.get_document("users", "u1")


@pytest.mark.asyncio
async def test_create_document_reports_conflict(base_service, mock_db_client):
    doc_ref = mock_db_client.collection.return_value.document.return_value
    doc_ref.create = AsyncMock(side_effect=api_exceptions.AlreadyExists("taken"))

    assert await base_service.create_document("chats", "chat_a_b", {"participants": ["a", "b"]}) is False


@pytest.mark.asyncio
async def test_update_document_on_missing_document(base_service, mock_db_client):
    doc_ref = mock_db_client.collection.return_value.document.return_value
    doc_ref.update = AsyncMock(side_effect=api_exceptions.NotFound("no doc"))

    with pytest.raises(NotFoundError):
        await base_service.update_document("users", "u1", {"bio": "hi"})


@pytest.mark.asyncio
async def test_query_documents_keeps_ids(base_service, mock_db_client, snapshot_factory):
    query = mock_db_client.collection.return_value.where.return_value
    query.get = AsyncMock(return_value=[snapshot_factory("c1", {"participants": ["a", "b"]})])

    rows = await base_service.query_documents("chats", filters=[("participants", "array_contains", "a")])

    assert rows == [("c1", {"participants": ["a", "b"]})]


@pytest.mark.asyncio
async def test_watch_query_skips_snapshots_that_fail_to_convert(base_service, snapshot_factory):
    received = []

    def transform(rows):
        if not rows:
            raise ValueError("bad snapshot")
        return [doc_id for doc_id, _ in rows]

    subscription = base_service.watch_query("users", transform, received.append)
    collection = base_service.watch_db.collection.return_value
    on_snapshot = collection.on_snapshot.call_args[0][0]

    on_snapshot([], [], None)
    on_snapshot([snapshot_factory("u1", {"username": "a"})], [], None)
    for _ in range(3):
        await asyncio.sleep(0)

    assert received == [["u1"]]
    subscription.cancel()
    collection.on_snapshot.return_value.unsubscribe.assert_called_once()
