# messenger/persistence/interfaces.py
'''
Boundaries the delivery engine consumes.

IdentityDirectory owns user records; MessageStore owns conversations and
the append-only message log. Every method may suspend on I/O and raises
TransientStoreFailure when the backing store is unavailable.
'''

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import List, Optional, Set, Tuple

from messenger.models.conversation import ConversationRecord
from messenger.models.message import MessageRecord, MessageStatus, Reaction
from messenger.models.moderation import ModerationFlagRecord
from messenger.models.user import UserRecord

# Smallest step between two messages of one conversation. Mongo keeps
# millisecond precision, so both stores use the same step.
ORDER_STEP = timedelta(milliseconds=1)


class IdentityDirectory(ABC):

    @abstractmethod
    async def find_user(self, user_id: str) -> Optional[UserRecord]: ...

    @abstractmethod
    async def find_by_username(self, username: str) -> Optional[UserRecord]: ...

    @abstractmethod
    async def create_user(self, user: UserRecord) -> UserRecord:
        """Insert a user. Raises ValidationFailed if the username is taken."""

    @abstractmethod
    async def search_users(self, query: str, limit: int = 20) -> List[UserRecord]: ...

    @abstractmethod
    async def update_last_seen(self, user_id: str, timestamp: datetime) -> None: ...

    @abstractmethod
    async def set_online(self, user_id: str, is_online: bool) -> None: ...

    @abstractmethod
    async def is_blocked(self, blocker_id: str, blocked_id: str) -> bool:
        """True if blocker_id has blocked blocked_id (one direction only)."""

    @abstractmethod
    async def block(self, blocker_id: str, blocked_id: str) -> None: ...

    @abstractmethod
    async def unblock(self, blocker_id: str, blocked_id: str) -> None: ...


class MessageStore(ABC):

    # ---- conversations ----
    @abstractmethod
    async def get_conversation(self, conversation_id: str) -> Optional[ConversationRecord]: ...

    @abstractmethod
    async def ensure_conversation(self, conversation: ConversationRecord) -> ConversationRecord:
        """Insert the conversation if its id is unknown; return the stored one."""

    @abstractmethod
    async def list_conversations(self, user_id: str, limit: int = 100) -> List[ConversationRecord]:
        """Conversations of user_id, most recent activity first."""

    @abstractmethod
    async def conversation_partners(self, user_id: str) -> Set[str]:
        """Every user sharing at least one persisted conversation with user_id."""

    # ---- messages ----
    @abstractmethod
    async def append(self, message: MessageRecord,
                     conversation: ConversationRecord) -> Tuple[MessageRecord, bool]:
        """Persist a message, creating its conversation on first use.

        The store assigns id (when missing), seq and created_at under a
        per-conversation serialization point, and advances the
        conversation's last activity. Returns (message, created); a repeat
        of (conversation_id, sender_id, client_message_id) returns the original with
        created=False.
        """

    @abstractmethod
    async def get_message(self, message_id: str) -> Optional[MessageRecord]: ...

    @abstractmethod
    async def find_by_client_id(self, conversation_id: str, sender_id: str,
                                client_message_id: str) -> Optional[MessageRecord]: ...

    @abstractmethod
    async def query_range(self, conversation_id: str, before: Optional[datetime] = None,
                          limit: int = 50, viewer_id: Optional[str] = None) -> List[MessageRecord]:
        """Up to limit messages older than before (newest page when None),
        oldest first, excluding soft-deleted ones and ones hidden for viewer_id."""

    @abstractmethod
    async def update_status(self, message_id: str, recipient_id: str,
                            new_status: MessageStatus) -> bool:
        """Advance one recipient's receipt. Returns False (no-op) unless it moved forward."""

    @abstractmethod
    async def count_unread(self, conversation_id: str, user_id: str) -> int: ...

    @abstractmethod
    async def soft_delete(self, message_id: str) -> bool: ...

    @abstractmethod
    async def hide_for(self, message_id: str, user_id: str) -> bool: ...

    @abstractmethod
    async def set_reactions(self, message_id: str, reactions: List[Reaction]) -> None: ...

    # ---- moderation ----
    @abstractmethod
    async def add_flag(self, flag: ModerationFlagRecord) -> ModerationFlagRecord: ...

    @abstractmethod
    async def list_flags(self, reviewed: Optional[bool] = None) -> List[ModerationFlagRecord]: ...
