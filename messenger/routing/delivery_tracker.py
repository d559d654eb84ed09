# messenger/routing/delivery_tracker.py
'''
Read/delivery status transitions.

A receipt only moves forward (sent -> delivered -> read), and only for a
recipient of the message. Anything else, including a late "delivered"
arriving after "read", is dropped without error.
'''

from __future__ import annotations

import logging
from typing import Optional

from messenger import events
from messenger.models.message import MessageRecord, MessageStatus

logger = logging.getLogger(__name__)


def next_status(current: Optional[MessageStatus],
                proposed: MessageStatus) -> Optional[MessageStatus]:
    """The status to store, or None when the transition is a no-op."""
    if current is None or proposed.rank <= current.rank:
        return None
    return proposed


class DeliveryTracker:
    def __init__(self, store, presence):
        self._store = store
        self._presence = presence

    async def advance(self, message: MessageRecord, recipient_id: str,
                      new_status: MessageStatus) -> bool:
        """Move recipient_id's receipt on message forward and tell the sender.

        Updates message.receipts in place when the store applied the change.
        """
        if recipient_id == message.sender_id:
            logger.debug(f"Ignoring self-ack on {message.id} by {recipient_id}")
            return False
        if next_status(message.receipts.get(recipient_id), new_status) is None:
            return False

        applied = await self._store.update_status(message.id, recipient_id, new_status)
        if not applied:
            # another task got there first
            logger.debug(f"Status {new_status.value} for {message.id}/{recipient_id} was a no-op")
            return False

        message.receipts[recipient_id] = new_status
        await self._presence.push(
            message.sender_id,
            events.message_status(message, recipient_id, new_status),
        )
        return True

    async def mark_delivered(self, message: MessageRecord, recipient_id: str) -> bool:
        return await self.advance(message, recipient_id, MessageStatus.DELIVERED)

    async def mark_read(self, message: MessageRecord, recipient_id: str) -> bool:
        return await self.advance(message, recipient_id, MessageStatus.READ)
