# messenger/models/__init__.py
from .base import BaseDocument, new_id, utcnow
from .user import UserRecord, UserDocument, UserRole
from .conversation import ConversationRecord, ConversationSummary, ConversationDocument, ConversationType
from .message import (
    Attachment,
    MessageDocument,
    MessageRecord,
    MessageStatus,
    MessageType,
    Reaction,
)
from .moderation import FlagSeverity, ModerationFlagDocument, ModerationFlagRecord

DOCUMENT_MODELS = [
    UserDocument,
    ConversationDocument,
    MessageDocument,
    ModerationFlagDocument,
]

__all__ = [
    "BaseDocument",
    "new_id",
    "utcnow",
    "UserRecord",
    "UserDocument",
    "UserRole",
    "ConversationRecord",
    "ConversationSummary",
    "ConversationDocument",
    "ConversationType",
    "Attachment",
    "MessageDocument",
    "MessageRecord",
    "MessageStatus",
    "MessageType",
    "Reaction",
    "FlagSeverity",
    "ModerationFlagDocument",
    "ModerationFlagRecord",
    "DOCUMENT_MODELS",
]
