import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from firebase_admin import auth as firebase_auth
from firebase_admin import exceptions as firebase_exceptions
from google.cloud.firestore_v1 import async_transactional
from google.cloud.firestore_v1.async_client import AsyncClient
from google.cloud.firestore_v1.async_transaction import AsyncTransaction

from models.user_profile import ADMIN_ROLE, USER_ROLE, ProfileView, UserProfile
from utils.exceptions import NotFoundError, PayloadValidationError, TransientIOError, map_store_error
from utils.helpers import calculate_age, decode_data_url, is_data_url, to_millis, utcnow
from .access_policy import AccessPolicy
from .base_service import BaseService, STORE_ERRORS
from .media_service import MediaStorage, avatar_scope, profile_photos_scope
from .subscription import Subscription

logger = logging.getLogger(__name__)

# Fields a user may edit on their own profile, with their stored names
EDITABLE_FIELDS = {
    'username': 'username',
    'birth_date': 'birthDate',
    'gender': 'gender',
    'personality_tag': 'mbti',
    'avatar_url': 'avatarUrl',
    'bio': 'bio',
    'photos': 'photos',
    'hobbies': 'hobbies',
    'red_flags': 'redFlags',
}

# Extra fields only an administrator may change
ADMIN_FIELDS = {
    'visible_to_others': 'visibleToUsers',
    'api_call_limit': 'apiCallLimit',
    'api_calls_used': 'apiCallsUsed',
    'is_verified': 'isVerified',
    'verification_badge': 'verificationBadge',
    'is_privileged': 'isAdmin',
}

PRIVACY_FIELDS = {
    'read_receipts_enabled': 'readReceiptsEnabled',
    'show_online_status': 'showOnlineStatus',
    'show_last_seen': 'showLastSeen',
    'appear_offline': 'appearOffline',
}


def record_profile_view(views: List[Dict[str, Any]], viewer_id: str, now: datetime,
                        limit: int = 100) -> List[Dict[str, Any]]:
    """Ring buffer of the latest views, one entry per viewer, newest last."""
    kept = [v for v in views if isinstance(v, dict) and v.get('viewerId') != viewer_id]
    kept.append({'viewerId': viewer_id, 'timestamp': to_millis(now)})
    return kept[-limit:]


class ProfileService(BaseService):
    def __init__(self, db: AsyncClient, watch_db=None, policy: Optional[AccessPolicy] = None,
                 media: Optional[MediaStorage] = None, users_collection: str = 'users',
                 default_api_call_limit: int = 10, max_photos: int = 5, profile_view_limit: int = 100):
        super().__init__(db, watch_db)
        self.policy = policy or AccessPolicy()
        self.media = media
        self.users_collection = users_collection
        self.default_api_call_limit = default_api_call_limit
        self.max_photos = max_photos
        self.profile_view_limit = profile_view_limit

    # --- Reads ---

    async def get_profile(self, uid: str) -> UserProfile:
        data = await self.get_document(self.users_collection, uid)
        if data is None:
            raise NotFoundError(f"User {uid} not found", uid)
        return UserProfile.from_document(uid, data)

    async def get_visible_profile(self, caller: UserProfile, uid: str) -> UserProfile:
        profile = await self.get_profile(uid)
        self.policy.ensure_can_view_user(caller, profile)
        return profile

    async def list_users(self, caller: UserProfile) -> List[UserProfile]:
        rows = await self.query_documents(self.users_collection, filters=self.policy.user_query_filters(caller))
        return self.policy.filter_users((UserProfile.from_document(uid, data) for uid, data in rows), caller)

    def subscribe_users(self, caller: UserProfile, callback: Callable[[List[UserProfile]], None]) -> Subscription:
        def to_users(rows):
            return self.policy.filter_users((UserProfile.from_document(uid, data) for uid, data in rows), caller)

        return self.watch_query(self.users_collection, to_users, callback,
                                filters=self.policy.user_query_filters(caller))

    # --- Creation ---

    async def signup(self, profile: UserProfile) -> UserProfile:
        """Create the profile for a freshly registered principal (profile.id is its UID)."""
        profile = profile.model_copy(update={
            'age': calculate_age(profile.birth_date),
            'is_privileged': False,
            'role': USER_ROLE,
            'api_call_limit': self.default_api_call_limit,
            'api_calls_used': 0,
            'is_online': True,
            'last_seen_at': utcnow(),
        })
        if not await self.create_document(self.users_collection, profile.id, profile.to_document()):
            raise PayloadValidationError(f"A profile for {profile.id} already exists", profile.id)
        logger.info("Created profile %s (%s)", profile.id, profile.username)
        return profile

    async def admin_create_user(self, caller: UserProfile, profile: UserProfile, password: str,
                                api_call_limit: Optional[int] = None) -> UserProfile:
        """Create an auth principal plus its profile on behalf of an administrator."""
        self.policy.ensure_privileged(caller, "create users")
        if not profile.email:
            raise PayloadValidationError("Email is required when creating users")
        try:
            record = await asyncio.to_thread(firebase_auth.create_user, email=profile.email, password=password,
                                             display_name=profile.username or None)
        except firebase_exceptions.AlreadyExistsError as e:
            raise PayloadValidationError(f"{profile.email} is already registered") from e
        except firebase_exceptions.InvalidArgumentError as e:
            raise PayloadValidationError(f"Cannot create user: {e}") from e
        except firebase_exceptions.FirebaseError as e:
            raise TransientIOError(f"Auth service failure: {e}") from e

        profile = profile.model_copy(update={
            'id': record.uid,
            'age': calculate_age(profile.birth_date),
            'is_privileged': False,
            'role': USER_ROLE,
            'api_call_limit': self.default_api_call_limit if api_call_limit is None else api_call_limit,
            'api_calls_used': 0,
            'is_online': False,
            'last_seen_at': utcnow(),
        })
        await self.set_document(self.users_collection, profile.id, profile.to_document())
        logger.info("Admin %s created user %s (visible=%s)", caller.id, profile.id, profile.visible_to_others)
        return profile

    # --- Updates ---

    async def _materialize_media(self, uid: str, stored: Dict[str, Any]) -> None:
        if is_data_url(stored.get('avatarUrl')):
            data, content_type = decode_data_url(stored['avatarUrl'])
            stored['avatarUrl'] = await self._upload(avatar_scope(uid), data, content_type)
        if 'photos' in stored:
            photos = []
            for photo in stored['photos'] or []:
                if is_data_url(photo):
                    data, content_type = decode_data_url(photo)
                    photo = await self._upload(profile_photos_scope(uid), data, content_type)
                photos.append(photo)
            stored['photos'] = photos

    async def _upload(self, scope: str, data: bytes, content_type: str) -> str:
        if self.media is None:
            raise PayloadValidationError("Inline images cannot be stored: media storage is not configured")
        return await self.media.upload(scope, data, content_type)

    def _to_stored(self, updates: Dict[str, Any], allowed: Dict[str, str]) -> Dict[str, Any]:
        unknown = set(updates) - set(allowed)
        if unknown:
            raise PayloadValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
        stored = {allowed[name]: value for name, value in updates.items()}
        if 'photos' in stored and len(stored['photos'] or []) > self.max_photos:
            raise PayloadValidationError(f"A profile can hold at most {self.max_photos} photos")
        if stored.get('birthDate'):
            stored['age'] = calculate_age(stored['birthDate'])
        return stored

    async def _apply(self, uid: str, stored: Dict[str, Any]) -> UserProfile:
        await self._materialize_media(uid, stored)
        if stored:
            await self.update_document(self.users_collection, uid, stored)
        return await self.get_profile(uid)

    async def update_profile(self, uid: str, updates: Dict[str, Any]) -> UserProfile:
        """Apply the owner's edits and return the stored result."""
        return await self._apply(uid, self._to_stored(updates, EDITABLE_FIELDS))

    async def admin_update_profile(self, caller: UserProfile, uid: str, updates: Dict[str, Any]) -> UserProfile:
        self.policy.ensure_privileged(caller, "edit other users")
        stored = self._to_stored(updates, {**EDITABLE_FIELDS, **ADMIN_FIELDS})
        if 'isAdmin' in stored:
            stored['role'] = ADMIN_ROLE if stored['isAdmin'] else USER_ROLE
        if stored.get('isVerified') is False:
            stored['verificationBadge'] = None
        profile = await self._apply(uid, stored)
        logger.info("Admin %s updated %s: %s", caller.id, uid, ", ".join(sorted(stored)))
        return profile

    async def update_privacy_settings(self, uid: str, settings: Dict[str, bool]) -> UserProfile:
        stored = self._to_stored(settings, PRIVACY_FIELDS)
        return await self._apply(uid, stored)

    async def delete_profile(self, caller: UserProfile, uid: str) -> None:
        """Remove the profile document. The auth principal is left in place."""
        self.policy.ensure_privileged(caller, "delete users")
        await self.get_profile(uid)
        await self.delete_document(self.users_collection, uid)
        logger.warning("Deleted profile %s; its auth principal still exists and must be removed separately", uid)

    # --- Profile views ---

    async def track_profile_view(self, viewed_id: str, viewer_id: str) -> None:
        """Best-effort; never raises."""
        if viewed_id == viewer_id:
            return
        transaction: AsyncTransaction = self.db.transaction()
        doc_ref = self.db.collection(self.users_collection).document(viewed_id)
        limit = self.profile_view_limit

        @async_transactional
        async def record_in_transaction(transaction: AsyncTransaction, ref):
            snapshot = await ref.get(transaction=transaction)
            if not snapshot.exists:
                return False
            views = record_profile_view(snapshot.to_dict().get('profileViews') or [], viewer_id, utcnow(), limit)
            transaction.update(ref, {'profileViews': views})
            return True

        try:
            await record_in_transaction(transaction, doc_ref)
        except STORE_ERRORS as e:
            logger.warning("Could not record view of %s by %s: %s", viewed_id, viewer_id,
                           map_store_error(e, f"{self.users_collection}/{viewed_id}"))

    async def get_profile_views(self, uid: str) -> List[ProfileView]:
        return (await self.get_profile(uid)).profile_views

    # --- Quota ---

    async def consume_api_call(self, uid: str) -> bool:
        """Use one call from the user's quota. False when exhausted or the profile is missing."""
        transaction: AsyncTransaction = self.db.transaction()
        doc_ref = self.db.collection(self.users_collection).document(uid)
        default_limit = self.default_api_call_limit

        @async_transactional
        async def consume_in_transaction(transaction: AsyncTransaction, ref):
            snapshot = await ref.get(transaction=transaction)
            if not snapshot.exists:
                return False
            data = snapshot.to_dict()
            limit = data.get('apiCallLimit')
            limit = default_limit if limit is None else limit
            used = data.get('apiCallsUsed') or 0
            if used >= limit:
                return False
            transaction.update(ref, {'apiCallsUsed': used + 1})
            return True

        try:
            allowed = await consume_in_transaction(transaction, doc_ref)
        except STORE_ERRORS as e:
            raise map_store_error(e, f"{self.users_collection}/{uid}") from e
        if not allowed:
            logger.info("API call quota exhausted (or no profile) for %s", uid)
        return allowed

