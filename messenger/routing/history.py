# messenger/routing/history.py
'''
History reads and read reconciliation.

Loading history marks what it returns as read for the requester and tells
each sender. The coupling is part of load_history's contract; pass
mark_read=False to read without acknowledging.
'''

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from messenger.errors import AccessDenied, ValidationFailed
from messenger.models.conversation import ConversationRecord, ConversationSummary
from messenger.models.message import MessageRecord

from .canonical import canonical_conversation_id, implied_participants

logger = logging.getLogger(__name__)


class HistoryService:
    def __init__(self, store, tracker, page_size: int = 50, max_page_size: int = 200):
        self._store = store
        self._tracker = tracker
        self.page_size = page_size
        self.max_page_size = max_page_size

    def clamp(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.page_size
        return max(1, min(int(limit), self.max_page_size))

    async def _conversation_for(self, conversation_id: str, user_id: str) -> Optional[ConversationRecord]:
        """The conversation if user_id is in it; None for a not-yet-started direct chat of user_id."""
        conversation = await self._store.get_conversation(conversation_id)
        if conversation is not None:
            if conversation.has_participant(user_id):
                return conversation
            raise AccessDenied("not a participant of this conversation")
        try:
            implied = implied_participants(conversation_id)
        except ValidationFailed:
            implied = None
        if implied and user_id in implied:
            return None
        # unknown and known-but-foreign look the same
        raise AccessDenied("not a participant of this conversation")

    async def load_history(self, conversation_id: str, user_id: str, limit: Optional[int] = None,
                           before: Optional[datetime] = None, mark_read: bool = True) -> List[MessageRecord]:
        """Up to `limit` messages older than `before`, oldest first.

        Every returned message addressed to user_id that is not yet read is
        advanced to read and its sender notified. Re-loading is a no-op.
        """
        conversation_id = canonical_conversation_id(conversation_id)
        conversation = await self._conversation_for(conversation_id, user_id)
        if conversation is None:
            return []
        messages = await self._store.query_range(
            conversation_id, before=before, limit=self.clamp(limit), viewer_id=user_id
        )
        if mark_read:
            changed = await self._read(messages, user_id)
            if changed:
                logger.debug(f"{user_id} read {changed} message(s) in {conversation_id}")
        return messages

    async def mark_read(self, user_id: str, message_ids: Iterable[str]) -> int:
        """Explicit read receipts. Ids the user did not receive are skipped."""
        messages = []
        for message_id in message_ids:
            message = await self._store.get_message(message_id)
            if message is not None and message.is_visible_to(user_id):
                messages.append(message)
        return await self._read(messages, user_id)

    async def _read(self, messages: Iterable[MessageRecord], user_id: str) -> int:
        changed = 0
        for message in messages:
            if message.sender_id == user_id:
                continue
            if await self._tracker.mark_read(message, user_id):
                changed += 1
        return changed

    async def unread_count(self, conversation_id: str, user_id: str) -> int:
        conversation_id = canonical_conversation_id(conversation_id)
        conversation = await self._conversation_for(conversation_id, user_id)
        if conversation is None:
            return 0
        return await self._store.count_unread(conversation_id, user_id)

    async def list_conversations(self, user_id: str, limit: int = 100) -> List[ConversationSummary]:
        summaries = []
        for conversation in await self._store.list_conversations(user_id, limit):
            last_message = None
            if conversation.last_message_id:
                message = await self._store.get_message(conversation.last_message_id)
                if message is not None and message.is_visible_to(user_id):
                    last_message = message.to_public()
            summaries.append(ConversationSummary(
                conversation=conversation,
                unread_count=await self._store.count_unread(conversation.id, user_id),
                last_message=last_message,
            ))
        return summaries
