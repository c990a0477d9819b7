from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field, model_validator
from pydantic.alias_generators import to_camel

from utils.helpers import is_data_url, to_datetime


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    STICKER = "sticker"
    EVENT = "event"
    PRIVATE_DATE = "private_date"
    ICEBREAKER = "icebreaker"


class PrivateDate(BaseModel):
    category: str
    time: str = Field(..., description="ISO date-time of the planned date")
    place: str
    created_at: Optional[int] = Field(default=None, description="Epoch milliseconds")

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class Icebreaker(BaseModel):
    title: str
    prompt: str
    category: str = "get_to_know"


# Payload fields a draft may carry; exactly one "primary" field must match the type.
_PRIMARY_FIELD = {
    MessageType.TEXT: 'text',
    MessageType.STICKER: 'sticker_url',
    MessageType.EVENT: 'event_id',
    MessageType.PRIVATE_DATE: 'private_date',
    MessageType.ICEBREAKER: 'icebreaker',
}
_OPTIONAL_FIELDS = {
    MessageType.EVENT: {'text'},
}
_PAYLOAD_FIELDS = ('text', 'image_url', 'image_data', 'sticker_url', 'event_id', 'private_date', 'icebreaker')


class MessageDraft(BaseModel):
    """A message as submitted by a sender, before media is materialized."""
    type: MessageType = MessageType.TEXT
    text: Optional[str] = None
    image_url: Optional[str] = Field(default=None, description="Image URL, or a base64 data URL to upload")
    image_data: Optional[bytes] = Field(default=None, exclude=True)
    image_content_type: str = Field(default="image/jpeg", exclude=True)
    sticker_url: Optional[str] = None
    event_id: Optional[str] = None
    private_date: Optional[PrivateDate] = None
    icebreaker: Optional[Icebreaker] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True

    @model_validator(mode='after')
    def check_payload_matches_type(self) -> "MessageDraft":
        present = {name for name in _PAYLOAD_FIELDS if getattr(self, name) not in (None, '', b'')}
        if self.type == MessageType.IMAGE:
            sources = present & {'image_url', 'image_data'}
            if len(sources) != 1:
                raise ValueError("image messages need exactly one of imageUrl or inline image data")
            stray = present - sources
        else:
            primary = _PRIMARY_FIELD[self.type]
            if primary not in present:
                raise ValueError(f"{self.type.value} messages require '{primary}'")
            if primary == 'text' and not self.text.strip():
                raise ValueError("text messages cannot be blank")
            if primary == 'sticker_url' and is_data_url(self.sticker_url):
                raise ValueError("stickerUrl must be a hosted URL, not inline data")
            stray = present - {primary} - _OPTIONAL_FIELDS.get(self.type, set())
        if stray:
            raise ValueError(f"{self.type.value} messages do not accept: {', '.join(sorted(stray))}")
        return self


class ChatMessage(BaseModel):
    id: str
    sender_id: str
    type: MessageType = MessageType.TEXT
    text: Optional[str] = None
    image_url: Optional[str] = None
    sticker_url: Optional[str] = None
    event_id: Optional[str] = None
    private_date: Optional[PrivateDate] = None
    icebreaker_title: Optional[str] = None
    icebreaker_prompt: Optional[str] = None
    icebreaker_category: Optional[str] = None
    timestamp: Optional[datetime] = None
    read_by: List[str] = Field(default_factory=list)
    translated_text: Optional[str] = None
    is_translating: bool = False
    reactions: Dict[str, List[str]] = Field(default_factory=dict)

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        use_enum_values = True

    @classmethod
    def from_document(cls, doc_id: str, data: Optional[Dict[str, Any]]) -> "ChatMessage":
        data = dict(data or {})
        msg_type = data.get('type')
        private_date = data.get('privateDate')
        return cls(
            id=doc_id,
            sender_id=data.get('senderId') or '',
            type=msg_type if msg_type in _MESSAGE_TYPES else MessageType.TEXT,
            text=data.get('text'),
            image_url=data.get('imageUrl'),
            sticker_url=data.get('stickerUrl'),
            event_id=data.get('eventId'),
            private_date=PrivateDate(**private_date) if isinstance(private_date, dict) else None,
            icebreaker_title=data.get('icebreakerTitle'),
            icebreaker_prompt=data.get('icebreakerPrompt'),
            icebreaker_category=data.get('icebreakerCategory'),
            timestamp=to_datetime(data.get('timestamp')),
            read_by=list(data.get('readBy') or []),
            translated_text=data.get('translatedText'),
            is_translating=data.get('isTranslating') is True,
            reactions={k: list(v) for k, v in (data.get('reactions') or {}).items()},
        )

    def to_document(self) -> Dict[str, Any]:
        """Stored form. Unset optional payload fields are omitted, and the local isTranslating flag is never stored."""
        return self.model_dump(by_alias=True, exclude={'id', 'is_translating'}, exclude_none=True)


_MESSAGE_TYPES = {t.value for t in MessageType}


class Conversation(BaseModel):
    id: str
    participants: List[str] = Field(default_factory=list)
    last_message: Optional[ChatMessage] = None
    typing_users: Dict[str, datetime] = Field(default_factory=dict)
    created_at: Optional[datetime] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True

    @classmethod
    def from_document(cls, doc_id: str, data: Optional[Dict[str, Any]]) -> "Conversation":
        data = dict(data or {})
        last = data.get('lastMessage')
        typing = {}
        for user_id, stamp in (data.get('typingUsers') or {}).items():
            parsed = to_datetime(stamp)
            if parsed is not None:
                typing[user_id] = parsed
        return cls(
            id=doc_id,
            participants=list(data.get('participants') or []),
            last_message=ChatMessage.from_document(last.get('id', ''), last) if isinstance(last, dict) else None,
            typing_users=typing,
            created_at=to_datetime(data.get('createdAt')),
        )

    def active_typing(self, now: datetime, stale_after: float = 3.0) -> Dict[str, datetime]:
        """Typing entries younger than stale_after seconds; older ones are ignored, not swept."""
        cutoff = now - timedelta(seconds=stale_after)
        return {uid: stamp for uid, stamp in self.typing_users.items() if stamp > cutoff}
