"""Turns an authenticated principal into a resolved profile.

Privileged identities come from configuration (``PRIVILEGED_EMAILS``). When one
of them signs in, the caller always gets an admin profile, and the stored
document is repaired in the background if it disagrees.
"""
import logging
from typing import Iterable, Optional

from google.cloud.firestore_v1.async_client import AsyncClient

from models.user_profile import ADMIN_ROLE, USER_ROLE, UserProfile
from utils.background import spawn
from utils.exceptions import NotFoundError, SyncError
from utils.helpers import utcnow
from .base_service import BaseService
from .presence_service import PresenceTracker

logger = logging.getLogger(__name__)


def normalize_role(profile: UserProfile) -> UserProfile:
    """Make role agree with is_privileged; the flag wins."""
    expected = ADMIN_ROLE if profile.is_privileged else USER_ROLE
    if profile.role == expected:
        return profile
    logger.info("Profile %s has role=%r but isAdmin=%s; using %r",
                profile.id, profile.role, profile.is_privileged, expected)
    return profile.model_copy(update={'role': expected})


class IdentityResolver(BaseService):
    def __init__(self, db: AsyncClient, presence: PresenceTracker,
                 privileged_emails: Iterable[str] = (), users_collection: str = 'users'):
        super().__init__(db)
        self.presence = presence
        self.privileged_emails = frozenset(e.strip().lower() for e in privileged_emails if e)
        self.users_collection = users_collection

    def is_reserved(self, email: Optional[str]) -> bool:
        return bool(email) and email.strip().lower() in self.privileged_emails

    async def resolve(self, principal_id: str, principal_email: Optional[str] = None) -> UserProfile:
        """Resolve the profile for an authenticated principal.

        Raises NotFoundError when a regular principal has no profile, and
        TransientIOError when the store cannot be read.
        """
        data = await self.get_document(self.users_collection, principal_id)

        if self.is_reserved(principal_email):
            profile = self._privileged_view(principal_id, principal_email, data)
            if data is None or data.get('isAdmin') is not True or data.get('role') != ADMIN_ROLE:
                spawn(self._repair_privileged(principal_id, principal_email, data is None),
                      name=f"repair-privileged-{principal_id}")
        elif data is None:
            logger.debug("No profile for principal %s", principal_id)
            raise NotFoundError(f"No profile for user {principal_id}", principal_id)
        else:
            profile = normalize_role(UserProfile.from_document(principal_id, data))

        await self.presence.set_presence(principal_id, True)
        return profile.model_copy(update={'is_online': True, 'last_seen_at': utcnow()})

    def _privileged_view(self, uid: str, email: str, data) -> UserProfile:
        base = UserProfile.from_document(uid, data) if data is not None else UserProfile(
            id=uid, username='Admin', email=email)
        return base.model_copy(update={'is_privileged': True, 'role': ADMIN_ROLE})

    async def _repair_privileged(self, uid: str, email: str, missing: bool) -> None:
        try:
            if missing:
                await self.provision_privileged(uid, email)
            else:
                await self.update_document(self.users_collection, uid, {'isAdmin': True, 'role': ADMIN_ROLE})
            logger.info("Repaired privileged profile for %s", uid)
        except SyncError as e:
            logger.warning("Could not repair privileged profile for %s: %s", uid, e)

    async def provision_privileged(self, uid: str, email: str) -> None:
        """Seed the privileged profile for an existing principal. Safe to run repeatedly."""
        seed = UserProfile(id=uid, username='Admin', email=email, is_privileged=True, role=ADMIN_ROLE,
                           bio='System Administrator', api_call_limit=1000)
        existing = await self.get_document(self.users_collection, uid)
        if existing is None:
            await self.set_document(self.users_collection, uid, seed.to_document())
        else:
            await self.set_document(self.users_collection, uid, {'isAdmin': True, 'role': ADMIN_ROLE}, merge=True)

    async def sign_out(self, uid: str) -> None:
        await self.presence.set_presence(uid, False)
