from functools import lru_cache

from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config.firebase_config import get_watch_client, initialize_firebase
from config.settings import get_settings
from models.user_profile import UserProfile
from schemas.auth_schemas import TokenData
from services.access_policy import AccessPolicy
from services.chat_service import ChatService
from services.identity_service import IdentityResolver
from services.match_service import MatchService
from services.media_service import MediaStorage
from services.presence_service import PresenceTracker
from services.profile_service import ProfileService
from services.stats_service import StatsService
from services.translation_service import TextTransformer
from utils.auth_utils import verify_token

# Security scheme
security = HTTPBearer()


# Firebase clients and services are created on first use, so importing the app
# (or overriding these dependencies in tests) never needs credentials.

@lru_cache
def get_db():
    return initialize_firebase()


@lru_cache
def get_watch_db():
    return get_watch_client()


@lru_cache
def get_access_policy() -> AccessPolicy:
    return AccessPolicy()


@lru_cache
def get_media_storage() -> MediaStorage:
    return MediaStorage(get_settings().storage_bucket)


@lru_cache
def get_text_transformer() -> TextTransformer:
    settings = get_settings()
    return TextTransformer(settings.translation_api_key, settings.translation_model, settings.translation_base_url)


@lru_cache
def get_presence_tracker() -> PresenceTracker:
    return PresenceTracker(get_db(), get_watch_db(), get_settings().users_collection)


@lru_cache
def get_identity_resolver() -> IdentityResolver:
    settings = get_settings()
    return IdentityResolver(get_db(), get_presence_tracker(), settings.privileged_emails, settings.users_collection)


@lru_cache
def get_profile_service() -> ProfileService:
    settings = get_settings()
    return ProfileService(
        get_db(), get_watch_db(),
        policy=get_access_policy(),
        media=get_media_storage(),
        users_collection=settings.users_collection,
        default_api_call_limit=settings.default_api_call_limit,
        max_photos=settings.max_profile_photos,
        profile_view_limit=settings.profile_view_limit,
    )


@lru_cache
def get_stats_service() -> StatsService:
    settings = get_settings()
    return StatsService(get_db(), get_watch_db(), settings.stats_collection, settings.stats_timezone)


@lru_cache
def get_chat_service() -> ChatService:
    settings = get_settings()
    return ChatService(
        get_db(), get_watch_db(),
        policy=get_access_policy(),
        media=get_media_storage(),
        transformer=get_text_transformer(),
        stats=get_stats_service(),
        chats_collection=settings.chats_collection,
        typing_stale_seconds=settings.typing_stale_seconds,
    )


@lru_cache
def get_match_service() -> MatchService:
    return MatchService(get_db(), get_access_policy(), get_settings().users_collection)


async def get_current_user(credentials: HTTPAuthorizationCredentials = Security(security)) -> TokenData:
    """Verify the Firebase ID token and return the principal."""
    payload = verify_token(credentials.credentials)
    return TokenData(
        uid=payload["uid"],
        email=payload.get("email"),
        email_verified=payload.get("email_verified", False)
    )


async def get_current_profile(
        current_user: TokenData = Depends(get_current_user),
        resolver: IdentityResolver = Depends(get_identity_resolver)
) -> UserProfile:
    """Resolved profile of the caller; NotFoundError (404) until signup is complete."""
    return await resolver.resolve(current_user.uid, current_user.email)
