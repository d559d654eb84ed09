# messenger/routing/conversation_router.py

'''Send path: turn a send intent into one durable, ordered message and fan
it out to whoever is reachable.

The caller gets a SendResult as soon as the message is persisted. Pushing
to recipients, delivery receipts and post-persist hooks run afterwards in
a background task per message; a failure there is logged and never
reaches the sender. Fan-outs of one conversation run in persist order.'''

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from pydantic import BaseModel, Field

from messenger import events
from messenger.errors import (
    AccessDenied, ChatError, NotFound, RecipientBlocked, SendResult, ValidationFailed,
)
from messenger.models.base import utcnow
from messenger.models.conversation import ConversationRecord
from messenger.models.message import (
    Attachment, MessageRecord, MessageStatus, MessageType, Reaction,
)
from messenger.security.validation import validate_message
from messenger.utils.keyed_lock import KeyedLock

from .canonical import direct_conversation, direct_conversation_id, is_direct_id, split_direct_id

logger = logging.getLogger(__name__)

PostPersistHook = Callable[[MessageRecord, ConversationRecord], Awaitable[Any]]


class SendMessageIntent(BaseModel):
    """What a client asks for. Either receiver_id or conversation_id names the target."""

    sender_id: str
    receiver_id: Optional[str] = None
    conversation_id: Optional[str] = None
    content: str = ""
    message_type: str = MessageType.TEXT.value
    attachment: Optional[Attachment] = None
    client_message_id: Optional[str] = Field(None, max_length=100)


@dataclass
class ConversationRouter:
    directory: Any
    store: Any
    presence: Any
    tracker: Any
    typing: Any = None
    hooks: List[PostPersistHook] = field(default_factory=list)
    max_message_length: Optional[int] = None

    _tasks: Set[asyncio.Task] = field(default_factory=set)
    _fanout_locks: KeyedLock = field(default_factory=KeyedLock)

    # ---- send ----
    async def send_message(self, intent: SendMessageIntent) -> SendResult:
        try:
            message, conversation, created = await self._persist(intent)
        except ChatError as e:
            logger.info(f"Send from {intent.sender_id} refused: {e.kind.value}: {e.detail}")
            return SendResult.err(e.kind, e.detail)

        if created:
            self._spawn(self._fan_out(message, conversation))
        else:
            logger.info(f"Duplicate send {intent.client_message_id} from {intent.sender_id}")
        return SendResult.ok(message, duplicate=not created)

    async def _persist(self, intent: SendMessageIntent) -> Tuple[MessageRecord, ConversationRecord, bool]:
        sender = await self.directory.find_user(intent.sender_id)
        if sender is None:
            raise ValidationFailed("unknown sender")

        check = validate_message(
            intent.content,
            intent.message_type,
            has_attachment=intent.attachment is not None,
            max_length=self.max_message_length,
        )
        if not check["is_valid"]:
            raise ValidationFailed("; ".join(check["errors"]))

        conversation = await self._resolve(intent)

        message = MessageRecord(
            conversation_id=conversation.id,
            sender_id=intent.sender_id,
            content=check["sanitized_content"] or "",
            attachment=intent.attachment,
            message_type=MessageType(intent.message_type),
            receipts={p: MessageStatus.SENT for p in conversation.others(intent.sender_id)},
            client_message_id=intent.client_message_id,
        )
        stored, created = await self.store.append(message, conversation)
        return stored, conversation, created

    async def _resolve(self, intent: SendMessageIntent) -> ConversationRecord:
        sender_id = intent.sender_id
        cid = intent.conversation_id

        if cid and not is_direct_id(cid):
            conversation = await self.store.get_conversation(cid)
            if conversation is None:
                raise NotFound("unknown conversation")
            if not conversation.has_participant(sender_id):
                raise AccessDenied("not a participant of this conversation")
            return conversation

        if cid:
            pair = split_direct_id(cid)
            if sender_id not in pair:
                raise AccessDenied("not a participant of this conversation")
            receiver_id = pair[1] if pair[0] == sender_id else pair[0]
            if intent.receiver_id and intent.receiver_id != receiver_id:
                raise ValidationFailed("receiver_id does not match conversation_id")
        elif intent.receiver_id:
            receiver_id = intent.receiver_id
        else:
            raise ValidationFailed("receiver_id or conversation_id is required")

        cid = direct_conversation_id(sender_id, receiver_id)
        if await self.directory.find_user(receiver_id) is None:
            raise NotFound("unknown recipient")
        if (await self.directory.is_blocked(receiver_id, sender_id)
                or await self.directory.is_blocked(sender_id, receiver_id)):
            raise RecipientBlocked("messages between these users are blocked")

        return await self.store.get_conversation(cid) or direct_conversation(sender_id, receiver_id)

    # ---- fan-out ----
    def _spawn(self, coro):
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self):
        """Wait for every pending fan-out to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _fan_out(self, message: MessageRecord, conversation: ConversationRecord):
        async with self._fanout_locks.hold(conversation.id):
            if self.typing is not None:
                try:
                    await self.typing.stop_typing(conversation.id, message.sender_id)
                except Exception as e:
                    logger.error(f"Error clearing typing state for {message.sender_id}: {e}")

            for recipient_id in conversation.others(message.sender_id):
                await self._deliver(message, recipient_id)

            updated = conversation.model_copy(update={
                "last_activity": message.created_at,
                "last_message_at": message.created_at,
                "last_message_id": message.id,
            })
            await self.presence.push_many(
                updated.participant_ids, events.conversation_updated(updated)
            )

        for hook in self.hooks:
            try:
                await hook(message, conversation)
            except Exception as e:
                logger.error(f"Post-persist hook {hook!r} failed on {message.id}: {e}")

    async def _deliver(self, message: MessageRecord, recipient_id: str):
        if not self.presence.is_online(recipient_id):
            logger.debug(f"Recipient {recipient_id} offline, {message.id} stays sent")
            return
        if not await self.presence.push(recipient_id, events.message_new(message)):
            return
        try:
            await self.tracker.mark_delivered(message, recipient_id)
        except ChatError as e:
            logger.error(f"Could not record delivery of {message.id} to {recipient_id}: {e}")

    # ---- other message operations ----
    async def _message_in_reach(self, user_id: str, message_id: str) -> Tuple[MessageRecord, ConversationRecord]:
        message = await self.store.get_message(message_id)
        if message is None or not message.is_visible_to(user_id):
            raise NotFound("unknown message")
        conversation = await self.store.get_conversation(message.conversation_id)
        if conversation is None or not conversation.has_participant(user_id):
            raise AccessDenied("not a participant of this conversation")
        return message, conversation

    async def delete_message(self, user_id: str, message_id: str,
                             for_everyone: bool = False) -> MessageRecord:
        """Soft-delete for every participant (sender only) or hide for user_id."""
        message, conversation = await self._message_in_reach(user_id, message_id)

        if for_everyone:
            if message.sender_id != user_id:
                raise AccessDenied("only the sender can delete a message for everyone")
            await self.store.soft_delete(message_id)
            message.deleted = True
            audience = conversation.participant_ids
        else:
            await self.store.hide_for(message_id, user_id)
            message.deleted_for.append(user_id)
            audience = [user_id]

        await self.presence.push_many(audience, events.message_deleted(message, for_everyone))
        return message

    async def react(self, user_id: str, message_id: str, emoji: str) -> MessageRecord:
        """Toggle user_id's reaction. One reaction per user; a new emoji replaces the old one."""
        if not emoji or len(emoji) > 10:
            raise ValidationFailed("emoji must be 1-10 characters")
        message, conversation = await self._message_in_reach(user_id, message_id)

        mine = [r for r in message.reactions if r.user_id == user_id]
        reactions = [r for r in message.reactions if r.user_id != user_id]
        if not (mine and mine[0].emoji == emoji):
            reactions.append(Reaction(user_id=user_id, emoji=emoji, created_at=utcnow()))

        await self.store.set_reactions(message_id, reactions)
        message.reactions = reactions
        await self.presence.push_many(
            conversation.participant_ids, events.message_reaction(message)
        )
        return message

    async def relay_signal(self, sender_id: str, conversation_id: str, target_id: str,
                           signal: Dict[str, Any]) -> bool:
        """Pass an opaque call signal to one online participant. False if unreachable."""
        if is_direct_id(conversation_id):
            participants = list(split_direct_id(conversation_id))
        else:
            conversation = await self.store.get_conversation(conversation_id)
            if conversation is None:
                raise NotFound("unknown conversation")
            participants = conversation.participant_ids
        if sender_id not in participants or target_id not in participants or sender_id == target_id:
            raise AccessDenied("signal target is not a peer in this conversation")
        if (await self.directory.is_blocked(target_id, sender_id)
                or await self.directory.is_blocked(sender_id, target_id)):
            raise RecipientBlocked("calls between these users are blocked")
        return await self.presence.push(
            target_id, events.call_signal(sender_id, conversation_id, signal)
        )
