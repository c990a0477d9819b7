from typing import List, Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class TypingUpdate(BaseModel):
    is_typing: bool

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class ReactionRequest(BaseModel):
    emoji: str = Field(..., min_length=1, max_length=16)


class TranslationRequest(BaseModel):
    """Personality codes to translate between; default to the sender's and the caller's."""
    source_tag: Optional[str] = Field(default=None, min_length=4, max_length=4)
    target_tag: Optional[str] = Field(default=None, min_length=4, max_length=4)

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class TranslationResponse(BaseModel):
    message_id: str
    translated_text: str

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class ReadReceiptResponse(BaseModel):
    updated: int


class MatchParams(BaseModel):
    limit: int = Field(default=10, ge=1, le=50)


class StartersResponse(BaseModel):
    partner_id: str
    starters: List[str]

    class Config:
        alias_generator = to_camel
        populate_by_name = True
