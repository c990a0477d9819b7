import logging
from typing import Callable, Optional

from google.cloud.firestore_v1 import SERVER_TIMESTAMP
from google.cloud.firestore_v1.async_client import AsyncClient

from models.user_profile import Presence, UserProfile
from utils.exceptions import SyncError
from .base_service import BaseService
from .subscription import Subscription

logger = logging.getLogger(__name__)


def public_presence(profile: UserProfile, viewer_id: Optional[str] = None) -> Presence:
    """Presence as a given viewer may see it, honouring the owner's privacy toggles."""
    if viewer_id == profile.id:
        return profile.presence
    online = profile.is_online and profile.show_online_status and not profile.appear_offline
    last_seen = profile.last_seen_at if profile.show_last_seen else None
    return Presence(is_online=online, last_seen_at=last_seen)


def mask_presence(profile: UserProfile, viewer_id: Optional[str] = None) -> UserProfile:
    if viewer_id == profile.id:
        return profile
    presence = public_presence(profile, viewer_id)
    return profile.model_copy(update={'is_online': presence.is_online, 'last_seen_at': presence.last_seen_at})


class PresenceTracker(BaseService):
    """Advisory online/last-seen state. Writes never raise."""

    def __init__(self, db: AsyncClient, watch_db=None, users_collection: str = 'users'):
        super().__init__(db, watch_db)
        self.users_collection = users_collection

    async def set_presence(self, user_id: str, online: bool) -> None:
        try:
            await self.update_document(self.users_collection, user_id, {
                'isOnline': online,
                'lastSeen': SERVER_TIMESTAMP,
            })
        except SyncError as e:
            logger.warning("Presence update for %s (online=%s) failed: %s", user_id, online, e)

    def watch(self, user_id: str, callback: Callable[[Optional[UserProfile]], None],
              viewer_id: Optional[str] = None) -> Subscription:
        """Stream the profile on every change; None once the document is deleted."""

        def to_profile(doc_id, data):
            if data is None:
                return None
            return mask_presence(UserProfile.from_document(doc_id, data), viewer_id)

        return self.watch_document(self.users_collection, user_id, to_profile, callback)
