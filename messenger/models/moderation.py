from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional
from enum import Enum

from .base import BaseDocument, new_id, utcnow


class FlagSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ModerationFlagRecord(BaseModel):
    """Message flagged for admin review after it was persisted"""

    id: str = Field(default_factory=new_id)
    message_id: str
    conversation_id: str
    reason: str
    matched: List[str] = Field(default_factory=list)
    severity: FlagSeverity = FlagSeverity.MEDIUM
    reviewed: bool = False
    reviewed_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class ModerationFlagDocument(BaseDocument):
    message_id: str
    conversation_id: str
    reason: str
    matched: List[str] = Field(default_factory=list)
    severity: FlagSeverity = FlagSeverity.MEDIUM
    reviewed: bool = False
    reviewed_by: Optional[str] = None

    class Settings:
        name = "moderation_flags"
        indexes = [
            "message_id",
            "reviewed",
        ]
