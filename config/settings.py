import os
from functools import lru_cache
from typing import FrozenSet, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load environment variables
load_dotenv()


def _split_csv(raw: Optional[str]) -> FrozenSet[str]:
    if not raw:
        return frozenset()
    return frozenset(item.strip().lower() for item in raw.split(",") if item.strip())


class Settings(BaseModel):
    """Runtime configuration for the sync core."""
    service_account_path: str = Field(default="config/firebase_service_account.json")
    storage_bucket: Optional[str] = None
    # Emails resolved as privileged on every sign-in; seeded once by provision_admin.py
    privileged_emails: FrozenSet[str] = Field(default_factory=frozenset)

    users_collection: str = "users"
    chats_collection: str = "chats"
    stats_collection: str = "chat_stats"

    stats_timezone: str = "UTC"
    typing_stale_seconds: float = 3.0
    profile_view_limit: int = 100
    max_profile_photos: int = 5
    default_api_call_limit: int = 10

    translation_api_key: Optional[str] = None
    translation_base_url: Optional[str] = None
    translation_model: str = "gpt-4o-mini"

    log_level: str = "INFO"


def load_settings() -> Settings:
    return Settings(
        service_account_path=os.getenv('FIREBASE_SERVICE_ACCOUNT_PATH', 'config/firebase_service_account.json'),
        storage_bucket=os.getenv('FIREBASE_STORAGE_BUCKET'),
        privileged_emails=_split_csv(os.getenv('PRIVILEGED_EMAILS')),
        stats_timezone=os.getenv('STATS_TIMEZONE', 'UTC'),
        typing_stale_seconds=float(os.getenv('TYPING_STALE_SECONDS', '3')),
        profile_view_limit=int(os.getenv('PROFILE_VIEW_LIMIT', '100')),
        max_profile_photos=int(os.getenv('MAX_PROFILE_PHOTOS', '5')),
        default_api_call_limit=int(os.getenv('DEFAULT_API_CALL_LIMIT', '10')),
        translation_api_key=os.getenv('TRANSLATION_API_KEY'),
        translation_base_url=os.getenv('TRANSLATION_BASE_URL'),
        translation_model=os.getenv('TRANSLATION_MODEL', 'gpt-4o-mini'),
        log_level=os.getenv('LOG_LEVEL', 'INFO'),
    )


@lru_cache
def get_settings() -> Settings:
    return load_settings()
