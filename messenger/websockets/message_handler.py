import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from messenger import events
from messenger.errors import ChatError, ErrorKind
from messenger.routing.conversation_router import SendMessageIntent
from messenger.websockets.connection_manager import WebSocketConnection

logger = logging.getLogger(__name__)


class HistoryRequest(BaseModel):
    conversation_id: str
    limit: Optional[int] = None
    before: Optional[datetime] = None


class MarkReadRequest(BaseModel):
    message_ids: List[str] = Field(..., min_length=1)


class DeleteRequest(BaseModel):
    message_id: str
    for_everyone: bool = False


class ReactRequest(BaseModel):
    message_id: str
    emoji: str


class TypingRequest(BaseModel):
    conversation_id: str


class PresenceRequest(BaseModel):
    user_ids: List[str]


class RelayRequest(BaseModel):
    conversation_id: str
    target_id: str
    signal: Dict[str, Any] = Field(default_factory=dict)


class MessageHandler:
    """Turns inbound socket frames into engine calls and builds the reply frame"""

    def __init__(self, router, history, typing, presence):
        self.router = router
        self.history = history
        self.typing = typing
        self.presence = presence

    async def handle_message(self, connection: WebSocketConnection,
                             message_data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Handle one inbound frame; the return value is sent back on the same socket"""
        user_id = connection.user_id
        message_type = message_data.get('type')
        payload = message_data.get('payload') or {}
        req_id = message_data.get('req_id')
        self.presence.touch(user_id)
        if not isinstance(payload, dict):
            return events.error(ErrorKind.VALIDATION.value, "payload must be an object", req_id)

        try:
            if message_type == events.PING:
                return events.frame(events.PONG, req_id=req_id)
            elif message_type == events.SEND_MESSAGE:
                return await self.handle_send_message(user_id, payload, req_id)
            elif message_type == events.MARK_READ:
                return await self.handle_mark_read(user_id, payload, req_id)
            elif message_type == events.DELETE_MESSAGE:
                return await self.handle_delete(user_id, payload, req_id)
            elif message_type == events.REACT:
                return await self.handle_reaction(user_id, payload, req_id)
            elif message_type == events.TYPING_START:
                return await self.handle_typing(user_id, payload, req_id, True)
            elif message_type == events.TYPING_STOP:
                return await self.handle_typing(user_id, payload, req_id, False)
            elif message_type == events.LOAD_HISTORY:
                return await self.handle_history(user_id, payload, req_id)
            elif message_type == events.LIST_CONVERSATIONS:
                return await self.handle_list_conversations(user_id, req_id)
            elif message_type == events.QUERY_PRESENCE:
                return await self.handle_presence_query(payload, req_id)
            elif message_type == events.RELAY_SIGNAL:
                return await self.handle_relay(user_id, payload, req_id)
            else:
                return events.error(
                    events.ERR_UNKNOWN_TYPE, f"Unknown message type: {message_type}", req_id
                )
        except ChatError as e:
            return events.error(e.kind.value, e.detail, req_id, e.retryable)
        except ValidationError as e:
            return events.error(ErrorKind.VALIDATION.value, _describe(e), req_id)
        except Exception as e:
            logger.error(f"Error handling {message_type} for user {user_id}: {e}")
            return events.error(events.ERR_INTERNAL, "Failed to process message", req_id)

    async def handle_send_message(self, user_id: str, payload: Dict[str, Any],
                                  req_id: Optional[str]) -> Dict[str, Any]:
        intent = SendMessageIntent(**{**payload, 'sender_id': user_id})
        result = await self.router.send_message(intent)
        if not result.is_ok:
            return events.error(result.error.value, result.detail, req_id, result.retryable)
        return events.message_sent(result.message, req_id)

    async def handle_mark_read(self, user_id: str, payload: Dict[str, Any],
                               req_id: Optional[str]) -> Dict[str, Any]:
        request = MarkReadRequest(**payload)
        count = await self.history.mark_read(user_id, request.message_ids)
        return events.frame(events.ACK, {'read': count}, req_id)

    async def handle_delete(self, user_id: str, payload: Dict[str, Any],
                            req_id: Optional[str]) -> Dict[str, Any]:
        request = DeleteRequest(**payload)
        await self.router.delete_message(user_id, request.message_id, request.for_everyone)
        return events.frame(events.ACK, {
            'message_id': request.message_id,
            'for_everyone': request.for_everyone,
        }, req_id)

    async def handle_reaction(self, user_id: str, payload: Dict[str, Any],
                              req_id: Optional[str]) -> Dict[str, Any]:
        request = ReactRequest(**payload)
        message = await self.router.react(user_id, request.message_id, request.emoji)
        return events.frame(events.ACK, {
            'message_id': message.id,
            'reactions': [r.model_dump(mode='json') for r in message.reactions],
        }, req_id)

    async def handle_typing(self, user_id: str, payload: Dict[str, Any],
                            req_id: Optional[str], is_typing: bool) -> Dict[str, Any]:
        request = TypingRequest(**payload)
        if is_typing:
            await self.typing.start_typing(request.conversation_id, user_id)
        else:
            await self.typing.stop_typing(request.conversation_id, user_id)
        return events.frame(events.ACK, {
            'conversation_id': request.conversation_id,
            'is_typing': is_typing,
        }, req_id)

    async def handle_history(self, user_id: str, payload: Dict[str, Any],
                             req_id: Optional[str]) -> Dict[str, Any]:
        request = HistoryRequest(**payload)
        limit = self.history.clamp(request.limit)
        messages = await self.history.load_history(
            request.conversation_id, user_id, limit=limit, before=request.before
        )
        return events.history(request.conversation_id, messages, limit, req_id)

    async def handle_list_conversations(self, user_id: str, req_id: Optional[str]) -> Dict[str, Any]:
        summaries = await self.history.list_conversations(user_id)
        return events.frame(events.CONVERSATIONS, {
            'conversations': [s.to_public() for s in summaries],
        }, req_id)

    async def handle_presence_query(self, payload: Dict[str, Any],
                                    req_id: Optional[str]) -> Dict[str, Any]:
        request = PresenceRequest(**payload)
        users = [await self.presence.presence_of(uid) for uid in request.user_ids]
        return events.frame(events.PRESENCE, {'users': users}, req_id)

    async def handle_relay(self, user_id: str, payload: Dict[str, Any],
                           req_id: Optional[str]) -> Dict[str, Any]:
        request = RelayRequest(**payload)
        delivered = await self.router.relay_signal(
            user_id, request.conversation_id, request.target_id, request.signal
        )
        return events.frame(events.ACK, {'delivered': delivered}, req_id)


def _describe(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        where = ".".join(str(p) for p in item.get('loc', ()))
        parts.append(f"{where}: {item.get('msg')}" if where else item.get('msg', ''))
    return "; ".join(parts)
