import asyncio
import logging
import time
import uuid
from typing import Optional

from firebase_admin import storage
from google.api_core import exceptions as api_exceptions

from utils.exceptions import map_store_error
from utils.helpers import extension_for

logger = logging.getLogger(__name__)


def chat_images_scope(chat_id: str) -> str:
    return f"chats/{chat_id}/images"


def profile_photos_scope(uid: str) -> str:
    return f"users/{uid}/photos"


def avatar_scope(uid: str) -> str:
    return f"avatars/{uid}"


class MediaStorage:
    """Uploads inline binary payloads to Firebase Storage and returns a public URL."""

    def __init__(self, bucket_name: Optional[str] = None, bucket=None):
        self._bucket_name = bucket_name
        self._bucket = bucket

    @property
    def bucket(self):
        if self._bucket is None:
            self._bucket = storage.bucket(self._bucket_name)
        return self._bucket

    async def upload(self, owner_scope: str, data: bytes, content_type: str = "image/jpeg") -> str:
        path = f"{owner_scope}/{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}.{extension_for(content_type)}"
        try:
            url = await asyncio.to_thread(self._upload_blocking, path, data, content_type)
        except (api_exceptions.GoogleAPICallError, api_exceptions.RetryError) as e:
            raise map_store_error(e, path) from e
        logger.info("Uploaded %d bytes to %s", len(data), path)
        return url

    def _upload_blocking(self, path: str, data: bytes, content_type: str) -> str:
        blob = self.bucket.blob(path)
        blob.upload_from_string(data, content_type=content_type)
        blob.make_public()
        return blob.public_url
