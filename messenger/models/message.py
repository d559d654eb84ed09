from pydantic import BaseModel, Field, computed_field
from datetime import datetime
from typing import Optional, List, Dict, Any
from enum import Enum

from pymongo import ASCENDING, IndexModel

from .base import BaseDocument, utcnow


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    FILE = "file"
    SYSTEM = "system"


class MessageStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {
    MessageStatus.SENT: 0,
    MessageStatus.DELIVERED: 1,
    MessageStatus.READ: 2,
}


class Attachment(BaseModel):
    url: str = Field(..., max_length=500)
    name: Optional[str] = Field(None, max_length=255)
    size: Optional[int] = Field(None, ge=0)
    mime_type: Optional[str] = Field(None, max_length=100)


class Reaction(BaseModel):
    user_id: str
    emoji: str = Field(..., max_length=10)
    created_at: datetime = Field(default_factory=utcnow)


class MessageRecord(BaseModel):
    """A message as persisted in the Message Store.

    `receipts` holds the per-recipient status. `status` is derived as the
    least advanced receipt, so it is monotonic whenever every receipt is.
    `created_at` and `seq` are assigned by the store at append time.
    """

    id: Optional[str] = None
    conversation_id: str
    sender_id: str
    content: str = ""
    attachment: Optional[Attachment] = None
    message_type: MessageType = MessageType.TEXT

    seq: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    receipts: Dict[str, MessageStatus] = Field(default_factory=dict)

    # Soft delete for everyone, or hidden for individual users
    deleted: bool = False
    deleted_for: List[str] = Field(default_factory=list)

    reactions: List[Reaction] = Field(default_factory=list)

    # Idempotency marker chosen by the sending client
    client_message_id: Optional[str] = Field(None, max_length=100)

    @computed_field
    @property
    def status(self) -> MessageStatus:
        if not self.receipts:
            return MessageStatus.SENT
        return min(self.receipts.values(), key=lambda s: s.rank)

    def is_visible_to(self, user_id: str) -> bool:
        return not self.deleted and user_id not in self.deleted_for

    def to_public(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude={"deleted_for"})

    def __repr__(self):
        return f"<Message(id='{self.id}', content='{self.content[:50]}')>"


class MessageDocument(BaseDocument):
    """Message model for MongoDB"""

    conversation_id: str
    sender_id: str
    content: str = ""
    attachment: Optional[Attachment] = None
    message_type: MessageType = MessageType.TEXT
    seq: int = 0
    updated_at: Optional[datetime] = None
    receipts: Dict[str, MessageStatus] = Field(default_factory=dict)
    deleted: bool = False
    deleted_for: List[str] = Field(default_factory=list)
    reactions: List[Reaction] = Field(default_factory=list)
    client_message_id: Optional[str] = None

    class Settings:
        name = "messages"
        indexes = [
            IndexModel([("conversation_id", ASCENDING), ("seq", ASCENDING)]),
            IndexModel([("conversation_id", ASCENDING), ("created_at", ASCENDING)]),
            IndexModel(
                [("conversation_id", ASCENDING), ("sender_id", ASCENDING),
                 ("client_message_id", ASCENDING)],
                unique=True,
                partialFilterExpression={"client_message_id": {"$type": "string"}},
            ),
        ]
