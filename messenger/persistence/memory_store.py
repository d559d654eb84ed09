# messenger/persistence/memory_store.py
from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set, Tuple

from messenger.errors import ValidationFailed
from messenger.models.base import new_id, utcnow
from messenger.models.conversation import ConversationRecord
from messenger.models.message import MessageRecord, MessageStatus, Reaction
from messenger.models.moderation import ModerationFlagRecord
from messenger.models.user import UserRecord
from messenger.utils.keyed_lock import KeyedLock

from .interfaces import ORDER_STEP, IdentityDirectory, MessageStore

Clock = Callable[[], datetime]


class MemoryIdentityDirectory(IdentityDirectory):
    """Process-local user table. Returns copies so callers never alias stored rows."""

    def __init__(self):
        self._users: Dict[str, UserRecord] = {}

    async def find_user(self, user_id: str) -> Optional[UserRecord]:
        user = self._users.get(user_id)
        return user.model_copy(deep=True) if user else None

    async def find_by_username(self, username: str) -> Optional[UserRecord]:
        for user in self._users.values():
            if user.username == username:
                return user.model_copy(deep=True)
        return None

    async def create_user(self, user: UserRecord) -> UserRecord:
        if await self.find_by_username(user.username):
            raise ValidationFailed("username already taken")
        if user.id in self._users:
            raise ValidationFailed("user id already exists")
        self._users[user.id] = user.model_copy(deep=True)
        return user.model_copy(deep=True)

    async def search_users(self, query: str, limit: int = 20) -> List[UserRecord]:
        q = (query or "").lower()
        hits = [
            u for u in self._users.values()
            if q in u.username.lower() or q in u.display_name.lower()
        ]
        hits.sort(key=lambda u: u.username)
        return [u.model_copy(deep=True) for u in hits[:limit]]

    async def update_last_seen(self, user_id: str, timestamp: datetime) -> None:
        user = self._users.get(user_id)
        if user:
            user.last_seen = timestamp

    async def set_online(self, user_id: str, is_online: bool) -> None:
        user = self._users.get(user_id)
        if user:
            user.is_online = is_online

    async def is_blocked(self, blocker_id: str, blocked_id: str) -> bool:
        user = self._users.get(blocker_id)
        return bool(user and blocked_id in user.blocked_user_ids)

    async def block(self, blocker_id: str, blocked_id: str) -> None:
        user = self._users.get(blocker_id)
        if user and blocked_id not in user.blocked_user_ids:
            user.blocked_user_ids.append(blocked_id)

    async def unblock(self, blocker_id: str, blocked_id: str) -> None:
        user = self._users.get(blocker_id)
        if user and blocked_id in user.blocked_user_ids:
            user.blocked_user_ids.remove(blocked_id)


class MemoryMessageStore(MessageStore):
    """Single-process Message Store used by tests and the "memory" backend."""

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or utcnow
        self._conversations: Dict[str, ConversationRecord] = {}
        self._messages: Dict[str, MessageRecord] = {}
        self._order: Dict[str, List[str]] = defaultdict(list)   # cid -> message ids by seq
        self._client_ids: Dict[Tuple[str, str, str], str] = {}
        self._flags: Dict[str, ModerationFlagRecord] = {}
        self._appends = KeyedLock()

    # ---- conversations ----
    async def get_conversation(self, conversation_id: str) -> Optional[ConversationRecord]:
        conv = self._conversations.get(conversation_id)
        return conv.model_copy(deep=True) if conv else None

    async def ensure_conversation(self, conversation: ConversationRecord) -> ConversationRecord:
        async with self._appends.hold(conversation.id):
            return self._ensure(conversation).model_copy(deep=True)

    def _ensure(self, conversation: ConversationRecord) -> ConversationRecord:
        stored = self._conversations.get(conversation.id)
        if stored is None:
            stored = conversation.model_copy(deep=True)
            self._conversations[stored.id] = stored
        return stored

    async def list_conversations(self, user_id: str, limit: int = 100) -> List[ConversationRecord]:
        mine = [c for c in self._conversations.values() if c.has_participant(user_id)]
        mine.sort(key=lambda c: c.last_activity, reverse=True)
        return [c.model_copy(deep=True) for c in mine[:limit]]

    async def conversation_partners(self, user_id: str) -> Set[str]:
        partners: Set[str] = set()
        for conv in self._conversations.values():
            if conv.has_participant(user_id):
                partners.update(conv.participant_ids)
        partners.discard(user_id)
        return partners

    # ---- messages ----
    async def append(self, message: MessageRecord,
                     conversation: ConversationRecord) -> Tuple[MessageRecord, bool]:
        async with self._appends.hold(conversation.id):
            if message.client_message_id:
                existing = self._client_ids.get(
                    (conversation.id, message.sender_id, message.client_message_id)
                )
                if existing:
                    return self._messages[existing].model_copy(deep=True), False

            conv = self._ensure(conversation)
            now = self._clock()
            if conv.last_message_at is not None and now <= conv.last_message_at:
                now = conv.last_message_at + ORDER_STEP

            conv.message_seq += 1
            stored = message.model_copy(deep=True, update={
                "id": message.id or new_id(),
                "seq": conv.message_seq,
                "created_at": now,
                "updated_at": now,
            })
            self._messages[stored.id] = stored
            self._order[conv.id].append(stored.id)
            if stored.client_message_id:
                key = (conv.id, stored.sender_id, stored.client_message_id)
                self._client_ids[key] = stored.id

            conv.last_message_at = now
            conv.last_activity = now
            conv.last_message_id = stored.id
            return stored.model_copy(deep=True), True

    async def get_message(self, message_id: str) -> Optional[MessageRecord]:
        msg = self._messages.get(message_id)
        return msg.model_copy(deep=True) if msg else None

    async def find_by_client_id(self, conversation_id: str, sender_id: str,
                                client_message_id: str) -> Optional[MessageRecord]:
        mid = self._client_ids.get((conversation_id, sender_id, client_message_id))
        return await self.get_message(mid) if mid else None

    async def query_range(self, conversation_id: str, before: Optional[datetime] = None,
                          limit: int = 50, viewer_id: Optional[str] = None) -> List[MessageRecord]:
        if limit <= 0:
            return []
        visible = []
        for mid in self._order.get(conversation_id, []):
            msg = self._messages[mid]
            if msg.deleted or (viewer_id and viewer_id in msg.deleted_for):
                continue
            if before is not None and msg.created_at >= before:
                continue
            visible.append(msg)
        return [m.model_copy(deep=True) for m in visible[-limit:]]

    async def update_status(self, message_id: str, recipient_id: str,
                            new_status: MessageStatus) -> bool:
        msg = self._messages.get(message_id)
        if msg is None:
            return False
        current = msg.receipts.get(recipient_id)
        if current is None or new_status.rank <= current.rank:
            return False
        msg.receipts[recipient_id] = new_status
        msg.updated_at = self._clock()
        return True

    async def count_unread(self, conversation_id: str, user_id: str) -> int:
        count = 0
        for mid in self._order.get(conversation_id, []):
            msg = self._messages[mid]
            if not msg.is_visible_to(user_id):
                continue
            status = msg.receipts.get(user_id)
            if status is not None and status != MessageStatus.READ:
                count += 1
        return count

    async def soft_delete(self, message_id: str) -> bool:
        msg = self._messages.get(message_id)
        if msg is None or msg.deleted:
            return False
        msg.deleted = True
        msg.updated_at = self._clock()
        return True

    async def hide_for(self, message_id: str, user_id: str) -> bool:
        msg = self._messages.get(message_id)
        if msg is None or user_id in msg.deleted_for:
            return False
        msg.deleted_for.append(user_id)
        return True

    async def set_reactions(self, message_id: str, reactions: List[Reaction]) -> None:
        msg = self._messages.get(message_id)
        if msg is not None:
            msg.reactions = [r.model_copy() for r in reactions]
            msg.updated_at = self._clock()

    # ---- moderation ----
    async def add_flag(self, flag: ModerationFlagRecord) -> ModerationFlagRecord:
        self._flags[flag.id] = flag.model_copy(deep=True)
        return flag

    async def list_flags(self, reviewed: Optional[bool] = None) -> List[ModerationFlagRecord]:
        flags = [f for f in self._flags.values() if reviewed is None or f.reviewed == reviewed]
        flags.sort(key=lambda f: f.created_at)
        return [f.model_copy(deep=True) for f in flags]
