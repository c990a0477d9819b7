from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from config.settings import get_settings
from models.personality import DEFAULT_PERSONALITY_TAG
from utils.helpers import to_datetime

ADMIN_ROLE = "admin"
USER_ROLE = "user"

# An absent (or null) visibleToUsers field means the profile is visible.
# Only an explicit False hides it from regular users.
VISIBLE_TO_OTHERS_DEFAULT = True


class Gender(str, Enum):
    MALE = "Male"
    FEMALE = "Female"
    NON_BINARY = "Non-binary"
    OTHER = "Other"


_GENDER_VALUES = {g.value for g in Gender}


class ProfileView(BaseModel):
    viewer_id: str
    timestamp: datetime

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class Presence(BaseModel):
    is_online: bool = False
    last_seen_at: Optional[datetime] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class UserProfile(BaseModel):
    id: str = Field(..., description="Store-assigned ID, equal to the auth principal UID")
    username: str = ""
    email: str = ""
    birth_date: str = "2000-01-01"
    age: int = 0
    gender: Gender = Gender.OTHER
    personality_tag: str = Field(default=DEFAULT_PERSONALITY_TAG, alias="mbti")
    is_privileged: bool = Field(default=False, alias="isAdmin")
    role: str = USER_ROLE
    visible_to_others: bool = Field(default=VISIBLE_TO_OTHERS_DEFAULT, alias="visibleToUsers")
    avatar_url: str = ""
    bio: str = ""
    is_online: bool = False
    last_seen_at: Optional[datetime] = Field(default=None, alias="lastSeen")
    api_call_limit: int = Field(default_factory=lambda: get_settings().default_api_call_limit)
    api_calls_used: int = 0
    photos: List[str] = Field(default_factory=list)
    hobbies: List[str] = Field(default_factory=list)
    red_flags: List[str] = Field(default_factory=list)
    # Privacy
    read_receipts_enabled: bool = True
    show_online_status: bool = True
    show_last_seen: bool = True
    appear_offline: bool = False
    # Verification
    is_verified: bool = False
    verification_badge: Optional[str] = None
    profile_views: List[ProfileView] = Field(default_factory=list)

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        use_enum_values = True
        json_schema_extra = {
            "example": {
                "id": "abc123",
                "username": "nightowl",
                "email": "user@example.com",
                "birthDate": "1994-05-02",
                "age": 30,
                "gender": "Female",
                "mbti": "INFJ",
                "hobbies": ["chess", "reading"],
            }
        }

    @property
    def presence(self) -> Presence:
        return Presence(is_online=self.is_online, last_seen_at=self.last_seen_at)

    @classmethod
    def from_document(cls, doc_id: str, data: Optional[Dict[str, Any]]) -> "UserProfile":
        """Build a profile from a stored document, applying every read-side default."""
        data = dict(data or {})
        is_admin = data.get('isAdmin') is True or data.get('isAdmin') == 'true'
        visible = data.get('visibleToUsers')
        gender = data.get('gender')
        views = []
        for entry in data.get('profileViews') or []:
            if isinstance(entry, dict) and entry.get('viewerId'):
                stamp = to_datetime(entry.get('timestamp'))
                if stamp is not None:
                    views.append(ProfileView(viewer_id=entry['viewerId'], timestamp=stamp))
        return cls(
            id=doc_id,
            username=data.get('username') or '',
            email=data.get('email') or '',
            birth_date=data.get('birthDate') or '2000-01-01',
            age=data.get('age') or 0,
            gender=gender if gender in _GENDER_VALUES else Gender.OTHER,
            personality_tag=data.get('mbti') or DEFAULT_PERSONALITY_TAG,
            is_privileged=is_admin,
            role=data.get('role') or (ADMIN_ROLE if is_admin else USER_ROLE),
            visible_to_others=VISIBLE_TO_OTHERS_DEFAULT if visible is None else visible is not False,
            avatar_url=data.get('avatarUrl') or '',
            bio=data.get('bio') or '',
            is_online=data.get('isOnline') is True,
            last_seen_at=to_datetime(data.get('lastSeen')),
            api_call_limit=(get_settings().default_api_call_limit if data.get('apiCallLimit') is None
                            else data['apiCallLimit']),
            api_calls_used=data.get('apiCallsUsed') or 0,
            photos=list(data.get('photos') or []),
            hobbies=list(data.get('hobbies') or []),
            red_flags=list(data.get('redFlags') or []),
            read_receipts_enabled=data.get('readReceiptsEnabled') is not False,
            show_online_status=data.get('showOnlineStatus') is not False,
            show_last_seen=data.get('showLastSeen') is not False,
            appear_offline=data.get('appearOffline') is True,
            is_verified=data.get('isVerified') is True,
            verification_badge=data.get('verificationBadge'),
            profile_views=views,
        )

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude={'id'})
