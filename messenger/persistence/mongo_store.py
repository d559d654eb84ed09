# messenger/persistence/mongo_store.py
'''
MongoDB implementation of the store boundaries, on beanie documents.

Appends are serialized by the conversation document itself: a
compare-and-set on message_seq claims the next seq and last_message_at,
and the new message takes both values. Every pymongo failure is surfaced as
TransientStoreFailure.
'''

from __future__ import annotations

import functools
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple, Type, TypeVar

from pydantic import BaseModel
from pymongo.errors import DuplicateKeyError, PyMongoError

from messenger.errors import TransientStoreFailure, ValidationFailed
from messenger.models.base import new_id, utcnow
from messenger.models.conversation import ConversationDocument, ConversationRecord
from messenger.models.message import MessageDocument, MessageRecord, MessageStatus, Reaction
from messenger.models.moderation import ModerationFlagDocument, ModerationFlagRecord
from messenger.models.user import UserDocument, UserRecord

from .interfaces import ORDER_STEP, IdentityDirectory, MessageStore

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=BaseModel)

UNREAD_STATUSES = [MessageStatus.SENT.value, MessageStatus.DELIVERED.value]

APPEND_ATTEMPTS = 20


def _wrap_store_errors(fn):
    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            return await fn(*args, **kwargs)
        except PyMongoError as e:
            logger.error(f"Store operation {fn.__name__} failed: {e}")
            raise TransientStoreFailure(f"store unavailable during {fn.__name__}") from e
    return wrapper


def _to_record(model: Type[R], doc) -> Optional[R]:
    if doc is None:
        return None
    if isinstance(doc, dict):
        raw = dict(doc)
        raw["id"] = raw.pop("_id")
        return model.model_validate(raw)
    return model.model_validate(doc.model_dump())


def _lower_statuses(new_status: MessageStatus) -> List[str]:
    return [s.value for s in MessageStatus if s.rank < new_status.rank]


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_millis(value: datetime) -> datetime:
    # what Mongo keeps of a datetime
    return _as_utc(value).replace(microsecond=value.microsecond // 1000 * 1000)


class MongoIdentityDirectory(IdentityDirectory):

    @_wrap_store_errors
    async def find_user(self, user_id: str) -> Optional[UserRecord]:
        return _to_record(UserRecord, await UserDocument.get(user_id))

    @_wrap_store_errors
    async def find_by_username(self, username: str) -> Optional[UserRecord]:
        doc = await UserDocument.find_one(UserDocument.username == username)
        return _to_record(UserRecord, doc)

    @_wrap_store_errors
    async def create_user(self, user: UserRecord) -> UserRecord:
        doc = UserDocument(**user.model_dump())
        try:
            await doc.insert()
        except DuplicateKeyError:
            raise ValidationFailed("username already taken")
        return _to_record(UserRecord, doc)

    @_wrap_store_errors
    async def search_users(self, query: str, limit: int = 20) -> List[UserRecord]:
        pattern = {"$regex": re.escape(query or ""), "$options": "i"}
        docs = await UserDocument.find(
            {"$or": [{"username": pattern}, {"display_name": pattern}]}
        ).sort("username").limit(limit).to_list()
        return [_to_record(UserRecord, d) for d in docs]

    @_wrap_store_errors
    async def update_last_seen(self, user_id: str, timestamp: datetime) -> None:
        await UserDocument.get_motor_collection().update_one(
            {"_id": user_id}, {"$set": {"last_seen": timestamp}}
        )

    @_wrap_store_errors
    async def set_online(self, user_id: str, is_online: bool) -> None:
        await UserDocument.get_motor_collection().update_one(
            {"_id": user_id}, {"$set": {"is_online": is_online}}
        )

    @_wrap_store_errors
    async def is_blocked(self, blocker_id: str, blocked_id: str) -> bool:
        doc = await UserDocument.get_motor_collection().find_one(
            {"_id": blocker_id, "blocked_user_ids": blocked_id}, {"_id": 1}
        )
        return doc is not None

    @_wrap_store_errors
    async def block(self, blocker_id: str, blocked_id: str) -> None:
        await UserDocument.get_motor_collection().update_one(
            {"_id": blocker_id}, {"$addToSet": {"blocked_user_ids": blocked_id}}
        )

    @_wrap_store_errors
    async def unblock(self, blocker_id: str, blocked_id: str) -> None:
        await UserDocument.get_motor_collection().update_one(
            {"_id": blocker_id}, {"$pull": {"blocked_user_ids": blocked_id}}
        )


class MongoMessageStore(MessageStore):

    def __init__(self, clock=None):
        self._clock = clock or utcnow

    # ---- conversations ----
    @_wrap_store_errors
    async def get_conversation(self, conversation_id: str) -> Optional[ConversationRecord]:
        return _to_record(ConversationRecord, await ConversationDocument.get(conversation_id))

    @_wrap_store_errors
    async def ensure_conversation(self, conversation: ConversationRecord) -> ConversationRecord:
        existing = await ConversationDocument.get(conversation.id)
        if existing is None:
            try:
                await ConversationDocument(**conversation.model_dump()).insert()
            except DuplicateKeyError:
                pass  # created concurrently
            existing = await ConversationDocument.get(conversation.id)
        return _to_record(ConversationRecord, existing)

    @_wrap_store_errors
    async def list_conversations(self, user_id: str, limit: int = 100) -> List[ConversationRecord]:
        docs = await ConversationDocument.find(
            {"participant_ids": user_id}
        ).sort("-last_activity").limit(limit).to_list()
        return [_to_record(ConversationRecord, d) for d in docs]

    @_wrap_store_errors
    async def conversation_partners(self, user_id: str) -> Set[str]:
        ids = await ConversationDocument.get_motor_collection().distinct(
            "participant_ids", {"participant_ids": user_id}
        )
        return set(ids) - {user_id}

    # ---- messages ----
    @_wrap_store_errors
    async def append(self, message: MessageRecord,
                     conversation: ConversationRecord) -> Tuple[MessageRecord, bool]:
        if message.client_message_id:
            existing = await self.find_by_client_id(
                conversation.id, message.sender_id, message.client_message_id
            )
            if existing:
                return existing, False

        seq, created_at = await self._advance_conversation(conversation)

        record = message.model_copy(update={
            "id": message.id or new_id(),
            "conversation_id": conversation.id,
            "seq": seq,
            "created_at": created_at,
            "updated_at": created_at,
        })
        doc = MessageDocument(**record.model_dump(exclude={"status"}))
        try:
            await doc.insert()
        except DuplicateKeyError:
            # Lost a race on the same client_message_id; the seq is skipped
            existing = await self.find_by_client_id(
                conversation.id, message.sender_id, message.client_message_id
            )
            if existing is None:
                raise
            return existing, False

        await ConversationDocument.get_motor_collection().update_one(
            {"_id": conversation.id, "message_seq": seq},
            {"$set": {"last_message_id": record.id}},
        )
        return record, True

    async def _advance_conversation(self, conversation: ConversationRecord) -> Tuple[int, datetime]:
        """Claim the next seq and a created_at strictly after the previous message.

        The claim is a compare-and-set on message_seq, so two appenders
        racing on one conversation never share a seq.
        """
        collection = ConversationDocument.get_motor_collection()
        current = await self.ensure_conversation(conversation)
        for _ in range(APPEND_ATTEMPTS):
            now = _to_millis(self._clock())
            if current.last_message_at is not None:
                now = max(now, _as_utc(current.last_message_at) + ORDER_STEP)
            seq = current.message_seq + 1
            result = await collection.update_one(
                {"_id": conversation.id, "message_seq": current.message_seq},
                {"$set": {"message_seq": seq, "last_message_at": now, "last_activity": now}},
            )
            if result.modified_count == 1:
                return seq, now
            current = await self.get_conversation(conversation.id)
        logger.warning(f"Gave up appending to {conversation.id} after {APPEND_ATTEMPTS} attempts")
        raise TransientStoreFailure("conversation busy, retry the send")

    @_wrap_store_errors
    async def get_message(self, message_id: str) -> Optional[MessageRecord]:
        return _to_record(MessageRecord, await MessageDocument.get(message_id))

    @_wrap_store_errors
    async def find_by_client_id(self, conversation_id: str, sender_id: str,
                                client_message_id: str) -> Optional[MessageRecord]:
        doc = await MessageDocument.find_one({
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "client_message_id": client_message_id,
        })
        return _to_record(MessageRecord, doc)

    @_wrap_store_errors
    async def query_range(self, conversation_id: str, before: Optional[datetime] = None,
                          limit: int = 50, viewer_id: Optional[str] = None) -> List[MessageRecord]:
        if limit <= 0:
            return []
        query: Dict[str, Any] = {"conversation_id": conversation_id, "deleted": False}
        if viewer_id:
            query["deleted_for"] = {"$ne": viewer_id}
        if before is not None:
            query["created_at"] = {"$lt": before}
        docs = await MessageDocument.find(query).sort("-seq").limit(limit).to_list()
        docs.reverse()
        return [_to_record(MessageRecord, d) for d in docs]

    @_wrap_store_errors
    async def update_status(self, message_id: str, recipient_id: str,
                            new_status: MessageStatus) -> bool:
        field = f"receipts.{recipient_id}"
        result = await MessageDocument.get_motor_collection().update_one(
            {"_id": message_id, field: {"$in": _lower_statuses(new_status)}},
            {"$set": {field: new_status.value, "updated_at": self._clock()}},
        )
        return result.modified_count == 1

    @_wrap_store_errors
    async def count_unread(self, conversation_id: str, user_id: str) -> int:
        return await MessageDocument.get_motor_collection().count_documents({
            "conversation_id": conversation_id,
            "deleted": False,
            "deleted_for": {"$ne": user_id},
            f"receipts.{user_id}": {"$in": UNREAD_STATUSES},
        })

    @_wrap_store_errors
    async def soft_delete(self, message_id: str) -> bool:
        result = await MessageDocument.get_motor_collection().update_one(
            {"_id": message_id, "deleted": False},
            {"$set": {"deleted": True, "updated_at": self._clock()}},
        )
        return result.modified_count == 1

    @_wrap_store_errors
    async def hide_for(self, message_id: str, user_id: str) -> bool:
        result = await MessageDocument.get_motor_collection().update_one(
            {"_id": message_id}, {"$addToSet": {"deleted_for": user_id}}
        )
        return result.modified_count == 1

    @_wrap_store_errors
    async def set_reactions(self, message_id: str, reactions: List[Reaction]) -> None:
        await MessageDocument.get_motor_collection().update_one(
            {"_id": message_id},
            {"$set": {
                "reactions": [r.model_dump() for r in reactions],
                "updated_at": self._clock(),
            }},
        )

    # ---- moderation ----
    @_wrap_store_errors
    async def add_flag(self, flag: ModerationFlagRecord) -> ModerationFlagRecord:
        await ModerationFlagDocument(**flag.model_dump()).insert()
        return flag

    @_wrap_store_errors
    async def list_flags(self, reviewed: Optional[bool] = None) -> List[ModerationFlagRecord]:
        query = {} if reviewed is None else {"reviewed": reviewed}
        docs = await ModerationFlagDocument.find(query).sort("created_at").to_list()
        return [_to_record(ModerationFlagRecord, d) for d in docs]
