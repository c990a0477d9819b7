from datetime import datetime
from typing import List, Dict, Any, Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from utils.helpers import EPOCH, to_datetime, to_millis

MESSAGE_THRESHOLDS = (20, 50, 100, 250, 500)
STREAK_THRESHOLDS = (3, 7, 14)


def message_milestone(threshold: int) -> str:
    return f"messages_{threshold}"


def streak_milestone(threshold: int) -> str:
    return f"streak_{threshold}"


class ConversationStats(BaseModel):
    """Precomputed per-conversation counters; never rebuilt from message history."""
    chat_id: str
    messages_count: int = Field(default=0, ge=0)
    consecutive_days: int = Field(default=0, ge=0)
    last_message_date: datetime = EPOCH
    milestones: List[str] = Field(default_factory=list)

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "chatId": "chat_a_b",
                "messagesCount": 57,
                "consecutiveDays": 4,
                "lastMessageDate": "2024-05-02T18:30:00Z",
                "milestones": ["messages_20", "messages_50", "streak_3"],
            }
        }

    @classmethod
    def from_document(cls, chat_id: str, data: Optional[Dict[str, Any]]) -> "ConversationStats":
        data = dict(data or {})
        return cls(
            chat_id=chat_id,
            messages_count=data.get('messagesCount') or 0,
            consecutive_days=data.get('consecutiveDays') or 0,
            last_message_date=to_datetime(data.get('lastMessageDate'), default=EPOCH),
            milestones=list(data.get('milestones') or []),
        )

    def to_document(self) -> Dict[str, Any]:
        # lastMessageDate stays in epoch milliseconds, the format the web client reads
        return {
            'chatId': self.chat_id,
            'messagesCount': self.messages_count,
            'consecutiveDays': self.consecutive_days,
            'lastMessageDate': to_millis(self.last_message_date),
            'milestones': list(self.milestones),
        }
