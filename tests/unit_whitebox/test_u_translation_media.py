from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from google.api_core import exceptions as api_exceptions
from openai import APIConnectionError

from services.media_service import MediaStorage
from services.translation_service import TextTransformer
from utils.exceptions import TranslationError, TransientIOError


def completion(content):
    choice = MagicMock()
    choice.message.content = content
    return MagicMock(choices=[choice])


@pytest.fixture
def openai_client():
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=completion("  Shall we play tonight?  "))
    return client


# --- TextTransformer ---

@pytest.mark.asyncio
async def test_transform_returns_stripped_text(openai_client):
    transformer = TextTransformer(api_key="sk-test", model="gpt-4o-mini", client=openai_client)

    result = await transformer.transform("game tonight??", "ENFP", "ISTJ", context=["hi", "hey"])

    assert result == "Shall we play tonight?"
    kwargs = openai_client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4o-mini"
    assert "ENFP" in kwargs["messages"][0]["content"]
    assert "ISTJ" in kwargs["messages"][0]["content"]
    assert kwargs["messages"][-1] == {"role": "user", "content": "game tonight??"}
    assert "hi\nhey" in kwargs["messages"][1]["content"]


@pytest.mark.asyncio
async def test_transform_wraps_client_errors(openai_client):
    openai_client.chat.completions.create.side_effect = APIConnectionError(
        request=httpx.Request("POST", "https://api.example.com/v1/chat/completions"))
    transformer = TextTransformer(api_key="sk-test", model="gpt-4o-mini", client=openai_client)

    with pytest.raises(TranslationError):
        await transformer.transform("hello", "ENFP", "ISTJ")


@pytest.mark.asyncio
async def test_transform_rejects_empty_answer(openai_client):
    openai_client.chat.completions.create.return_value = completion("   ")
    transformer = TextTransformer(api_key="sk-test", model="gpt-4o-mini", client=openai_client)

    with pytest.raises(TranslationError):
        await transformer.transform("hello", "ENFP", "ISTJ")


@pytest.mark.asyncio
async def test_transform_without_api_key():
    transformer = TextTransformer(api_key=None, model="gpt-4o-mini")

    with pytest.raises(TranslationError):
        await transformer.transform("hello", "ENFP", "ISTJ")


# --- MediaStorage ---

@pytest.mark.asyncio
async def test_upload_makes_blob_public():
    bucket = MagicMock()
    blob = bucket.blob.return_value
    blob.public_url = "https://storage.example.com/chats/c1/images/x.png"
    storage = MediaStorage(bucket=bucket)

    url = await storage.upload("chats/c1/images", b"\x89PNG", "image/png")

    assert url == blob.public_url
    path = bucket.blob.call_args[0][0]
    assert path.startswith("chats/c1/images/")
    assert path.endswith(".png")
    blob.upload_from_string.assert_called_once_with(b"\x89PNG", content_type="image/png")
    blob.make_public.assert_called_once()


@pytest.mark.asyncio
async def test_upload_failure_is_mapped():
    bucket = MagicMock()
    bucket.blob.return_value.upload_from_string.side_effect = api_exceptions.ServiceUnavailable("down")
    storage = MediaStorage(bucket=bucket)

    with pytest.raises(TransientIOError):
        await storage.upload("avatars/u1", b"data", "image/jpeg")
