from typing import List, Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from models.personality import DEFAULT_PERSONALITY_TAG
from models.user_profile import Gender


class ProfileUpdate(BaseModel):
    """Fields a user may change on their own profile.

    avatarUrl and photos may carry base64 data URLs; they are uploaded before the write.
    """
    username: Optional[str] = Field(default=None, min_length=1, max_length=40)
    birth_date: Optional[str] = None
    gender: Optional[Gender] = None
    personality_tag: Optional[str] = Field(default=None, alias="mbti", min_length=4, max_length=4)
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    photos: Optional[List[str]] = None
    hobbies: Optional[List[str]] = None
    red_flags: Optional[List[str]] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class AdminProfileUpdate(ProfileUpdate):
    visible_to_others: Optional[bool] = Field(default=None, alias="visibleToUsers")
    api_call_limit: Optional[int] = Field(default=None, ge=0)
    api_calls_used: Optional[int] = Field(default=None, ge=0)
    is_verified: Optional[bool] = None
    verification_badge: Optional[str] = None
    is_privileged: Optional[bool] = Field(default=None, alias="isAdmin")


class PrivacySettingsUpdate(BaseModel):
    read_receipts_enabled: Optional[bool] = None
    show_online_status: Optional[bool] = None
    show_last_seen: Optional[bool] = None
    appear_offline: Optional[bool] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class AdminCreateUserRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=6)
    username: str = Field(..., min_length=1, max_length=40)
    birth_date: str
    gender: Gender = Gender.OTHER
    personality_tag: str = Field(default=DEFAULT_PERSONALITY_TAG, alias="mbti", min_length=4, max_length=4)
    bio: str = ""
    hobbies: List[str] = Field(default_factory=list)
    red_flags: List[str] = Field(default_factory=list)
    visible_to_others: bool = Field(default=True, alias="visibleToUsers")
    api_call_limit: Optional[int] = Field(default=None, ge=0)

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class PresenceUpdate(BaseModel):
    online: bool

