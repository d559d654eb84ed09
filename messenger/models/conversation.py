from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Dict, Any
from enum import Enum

from pymongo import ASCENDING, DESCENDING, IndexModel

from .base import BaseDocument, utcnow


class ConversationType(str, Enum):
    DIRECT = "direct"
    GROUP = "group"


class ConversationRecord(BaseModel):
    """A direct pair or a group, with its list-ordering keys"""

    id: str
    type: ConversationType
    participant_ids: List[str] = Field(..., min_length=1)
    admin_ids: List[str] = Field(default_factory=list)
    name: Optional[str] = Field(None, max_length=100)
    created_at: datetime = Field(default_factory=utcnow)

    # Ordering keys, advanced by every append
    last_activity: datetime = Field(default_factory=utcnow)
    last_message_at: Optional[datetime] = None
    last_message_id: Optional[str] = None
    message_seq: int = 0

    def has_participant(self, user_id: str) -> bool:
        return user_id in self.participant_ids

    def others(self, user_id: str) -> List[str]:
        return [p for p in self.participant_ids if p != user_id]

    def to_public(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude={"message_seq", "last_message_at"})


class ConversationSummary(BaseModel):
    """Row of a user's conversation list"""

    conversation: ConversationRecord
    unread_count: int = 0
    last_message: Optional[Dict[str, Any]] = None

    def to_public(self) -> Dict[str, Any]:
        return {
            **self.conversation.to_public(),
            "unread_count": self.unread_count,
            "last_message": self.last_message,
        }


class ConversationDocument(BaseDocument):
    """Conversation model for MongoDB"""

    type: ConversationType
    participant_ids: List[str] = Field(default_factory=list)
    admin_ids: List[str] = Field(default_factory=list)
    name: Optional[str] = None
    last_activity: datetime = Field(default_factory=utcnow)
    last_message_at: Optional[datetime] = None
    last_message_id: Optional[str] = None
    message_seq: int = 0

    class Settings:
        name = "conversations"
        indexes = [
            IndexModel([("participant_ids", ASCENDING), ("last_activity", DESCENDING)]),
        ]

    def __repr__(self):
        return f"<Conversation(id='{self.id}', type='{self.type}')>"
