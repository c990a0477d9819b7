from typing import List, Optional

from pydantic import BaseModel, Field

from models.personality import DEFAULT_PERSONALITY_TAG
from models.user_profile import Gender


class TokenData(BaseModel):
    """Claims of a verified Firebase ID token."""
    uid: str
    email: Optional[str] = None
    email_verified: Optional[bool] = False


class SignupRequest(BaseModel):
    """Profile fields supplied when a newly registered principal creates its profile."""
    username: str = Field(..., min_length=1, max_length=40)
    birth_date: str = Field(..., description="YYYY-MM-DD")
    gender: Gender = Gender.OTHER
    personality_tag: str = Field(default=DEFAULT_PERSONALITY_TAG, min_length=4, max_length=4)
    bio: str = ""
    hobbies: List[str] = Field(default_factory=list)
    red_flags: List[str] = Field(default_factory=list)


class StatusResponse(BaseModel):
    status: str
    message: str
