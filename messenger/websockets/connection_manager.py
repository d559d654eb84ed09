import asyncio
import json
import logging
import uuid
from collections import defaultdict
from datetime import timedelta
from typing import Any, Dict, Set

from messenger import events
from messenger.models.base import utcnow

logger = logging.getLogger(__name__)


class WebSocketConnection:
    """Presence handle for one FastAPI WebSocket.

    Sends are serialized so frames pushed from fan-out tasks never
    interleave with replies on the same socket.
    """

    def __init__(self, websocket, user_id: str, session_id: str = None):
        self.websocket = websocket
        self.user_id = user_id
        self.session_id = session_id or uuid.uuid4().hex
        self.connected_at = utcnow()
        self._send_lock = asyncio.Lock()

    async def send(self, frame: Dict[str, Any]):
        async with self._send_lock:
            await self.websocket.send_text(json.dumps(frame, default=str))

    def __repr__(self):
        return f"<WebSocketConnection(user_id='{self.user_id}', session_id='{self.session_id}')>"


class ConnectionManager:
    """Binds sockets to the presence registry and rate-limits inbound frames"""

    def __init__(self, presence, rate_limit_per_minute: int = 120):
        self.presence = presence
        self.rate_limit_per_minute = rate_limit_per_minute

        # Rate limiting per connection
        self.rate_limits: Dict[str, Dict[str, Any]] = defaultdict(lambda: {
            'messages': 0,
            'last_reset': utcnow(),
            'blocked_until': None
        })

    async def connect(self, websocket, user_id: str) -> WebSocketConnection:
        """Register an accepted socket as user_id's live connection"""
        connection = WebSocketConnection(websocket, user_id)
        await self.presence.mark_online(user_id, connection)
        logger.info(f"User {user_id} connected with session {connection.session_id}")

        await connection.send(events.frame(events.CONNECTION_ESTABLISHED, {
            'user_id': user_id,
            'session_id': connection.session_id,
        }))
        return connection

    async def disconnect(self, connection: WebSocketConnection, reason: str = "Disconnected"):
        """Drop the binding unless a newer connection already replaced it"""
        self.rate_limits.pop(connection.session_id, None)
        await self.presence.mark_offline(connection.user_id, connection)
        logger.info(f"User {connection.user_id} disconnected session {connection.session_id}: {reason}")

    def get_online_users(self) -> Set[str]:
        return self.presence.online_users()

    def rate_limit_check(self, connection: WebSocketConnection) -> bool:
        """Check if connection is rate limited"""
        now = utcnow()
        rate_limit = self.rate_limits[connection.session_id]

        # Reset counter if minute has passed
        if now - rate_limit['last_reset'] > timedelta(minutes=1):
            rate_limit['messages'] = 0
            rate_limit['last_reset'] = now
            rate_limit['blocked_until'] = None

        # Check if currently blocked
        if rate_limit['blocked_until'] and now < rate_limit['blocked_until']:
            return False

        # Check rate limit
        if rate_limit['messages'] >= self.rate_limit_per_minute:
            rate_limit['blocked_until'] = now + timedelta(minutes=1)
            return False

        rate_limit['messages'] += 1
        return True
