from .canonical import (
    DIRECT_DELIMITER,
    canonical_conversation_id,
    direct_conversation,
    direct_conversation_id,
    group_conversation,
    implied_participants,
    is_direct_id,
    new_group_id,
    split_direct_id,
)
from .conversation_router import ConversationRouter, SendMessageIntent
from .delivery_tracker import DeliveryTracker, next_status
from .history import HistoryService

__all__ = [
    "DIRECT_DELIMITER",
    "canonical_conversation_id",
    "direct_conversation",
    "direct_conversation_id",
    "group_conversation",
    "implied_participants",
    "is_direct_id",
    "new_group_id",
    "split_direct_id",
    "ConversationRouter",
    "SendMessageIntent",
    "DeliveryTracker",
    "next_status",
    "HistoryService",
]
