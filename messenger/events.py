# messenger/events.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from messenger.models.conversation import ConversationRecord
    from messenger.models.message import MessageRecord, MessageStatus

# ---- Events emitted by the core (server -> client) ----
MESSAGE_SENT = "message.sent"
MESSAGE_NEW = "message.new"
MESSAGE_DELIVERED = "message.delivered"
MESSAGE_READ = "message.read"
MESSAGE_DELETED = "message.deleted"
MESSAGE_REACTION = "message.reaction"
PRESENCE_CHANGED = "presence.changed"
TYPING_CHANGED = "typing.changed"
CONVERSATION_UPDATED = "conversation.updated"
CALL_SIGNAL = "call.signal"

# ---- Replies (server -> client) ----
CONNECTION_ESTABLISHED = "connection.established"
PONG = "pong"
HISTORY = "history"
CONVERSATIONS = "conversations"
PRESENCE = "presence"
ACK = "ack"
ERROR = "error"

# ---- Intents (client -> server) ----
PING = "ping"
SEND_MESSAGE = "message.send"
MARK_READ = "message.mark_read"
DELETE_MESSAGE = "message.delete"
REACT = "message.react"
TYPING_START = "typing.start"
TYPING_STOP = "typing.stop"
LOAD_HISTORY = "history.load"
LIST_CONVERSATIONS = "conversations.list"
QUERY_PRESENCE = "presence.query"
RELAY_SIGNAL = "call.relay"

# ---- Error codes not covered by ErrorKind ----
ERR_BAD_JSON = "BAD_JSON"
ERR_UNKNOWN_TYPE = "UNKNOWN_TYPE"
ERR_RATE_LIMITED = "RATE_LIMITED"
ERR_INTERNAL = "INTERNAL"


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def frame(type_: str, payload: Optional[Dict[str, Any]] = None,
          req_id: Optional[str] = None) -> Dict[str, Any]:
    out = {"type": type_, "payload": payload or {}, "timestamp": now_iso()}
    if req_id:
        out["req_id"] = req_id
    return out


def error(code: str, message: str, req_id: Optional[str] = None,
          retryable: bool = False) -> Dict[str, Any]:
    return frame(ERROR, {"code": code, "message": message, "retryable": retryable}, req_id)


# ---- message lifecycle ----
def message_sent(message: "MessageRecord", req_id: Optional[str] = None) -> Dict[str, Any]:
    return frame(MESSAGE_SENT, {
        "message": message.to_public(),
        "client_message_id": message.client_message_id,
    }, req_id)


def message_new(message: "MessageRecord") -> Dict[str, Any]:
    return frame(MESSAGE_NEW, {"message": message.to_public()})


def message_status(message: "MessageRecord", recipient_id: str,
                   status: "MessageStatus") -> Dict[str, Any]:
    type_ = MESSAGE_READ if status.value == "read" else MESSAGE_DELIVERED
    return frame(type_, {
        "message_id": message.id,
        "conversation_id": message.conversation_id,
        "user_id": recipient_id,
        "status": status.value,
    })


def message_deleted(message: "MessageRecord", for_everyone: bool) -> Dict[str, Any]:
    return frame(MESSAGE_DELETED, {
        "message_id": message.id,
        "conversation_id": message.conversation_id,
        "for_everyone": for_everyone,
    })


def message_reaction(message: "MessageRecord") -> Dict[str, Any]:
    return frame(MESSAGE_REACTION, {
        "message_id": message.id,
        "conversation_id": message.conversation_id,
        "reactions": [r.model_dump(mode="json") for r in message.reactions],
    })


# ---- ephemeral state ----
def presence_changed(user_id: str, is_online: bool,
                     last_seen: Optional[datetime] = None) -> Dict[str, Any]:
    return frame(PRESENCE_CHANGED, {
        "user_id": user_id,
        "is_online": is_online,
        "last_seen": last_seen.isoformat() if last_seen else None,
    })


def typing_changed(conversation_id: str, user_id: str, is_typing: bool) -> Dict[str, Any]:
    return frame(TYPING_CHANGED, {
        "conversation_id": conversation_id,
        "user_id": user_id,
        "is_typing": is_typing,
    })


def conversation_updated(conversation: "ConversationRecord") -> Dict[str, Any]:
    return frame(CONVERSATION_UPDATED, {
        "conversation_id": conversation.id,
        "last_message_id": conversation.last_message_id,
        "last_activity": conversation.last_activity.isoformat(),
    })


def call_signal(sender_id: str, conversation_id: str, signal: Dict[str, Any]) -> Dict[str, Any]:
    return frame(CALL_SIGNAL, {
        "from": sender_id,
        "conversation_id": conversation_id,
        "signal": signal,
    })


# ---- replies ----
def history(conversation_id: str, messages: Iterable["MessageRecord"], limit: int,
            req_id: Optional[str] = None) -> Dict[str, Any]:
    items: List[Dict[str, Any]] = [m.to_public() for m in messages]
    return frame(HISTORY, {
        "conversation_id": conversation_id,
        "messages": items,
        "has_more": len(items) == limit,
    }, req_id)
