# messenger/moderation.py
from __future__ import annotations

import logging
import re
from typing import Iterable, List

from messenger.models.conversation import ConversationRecord
from messenger.models.message import MessageRecord
from messenger.models.moderation import FlagSeverity, ModerationFlagRecord

logger = logging.getLogger(__name__)


def severity_for(match_count: int) -> FlagSeverity:
    if match_count >= 3:
        return FlagSeverity.HIGH
    if match_count == 2:
        return FlagSeverity.MEDIUM
    return FlagSeverity.LOW


class KeywordFlagger:
    """Post-persist hook: files a moderation flag when a message contains a listed keyword.

    Runs after the message is stored and delivered; it never changes or
    blocks the message itself.
    """

    def __init__(self, store, keywords: Iterable[str]):
        self._store = store
        self.keywords: List[str] = sorted({k.strip().lower() for k in keywords if k and k.strip()})
        self._patterns = [
            (k, re.compile(r"\b" + re.escape(k) + r"\b", re.IGNORECASE)) for k in self.keywords
        ]

    def matches(self, content: str) -> List[str]:
        if not content:
            return []
        return [k for k, pattern in self._patterns if pattern.search(content)]

    async def __call__(self, message: MessageRecord, conversation: ConversationRecord):
        matched = self.matches(message.content)
        if not matched:
            return None
        flag = ModerationFlagRecord(
            message_id=message.id,
            conversation_id=conversation.id,
            reason="sensitive keywords",
            matched=matched,
            severity=severity_for(len(matched)),
        )
        await self._store.add_flag(flag)
        logger.info(f"Flagged message {message.id} ({flag.severity.value}): {', '.join(matched)}")
        return flag
