import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Set

import redis.asyncio as redis
from redis.exceptions import RedisError

from messenger import events
from messenger.errors import ChatError
from messenger.models.base import utcnow
from messenger.utils.keyed_lock import KeyedLock

logger = logging.getLogger(__name__)


@dataclass
class PresenceEntry:
    user_id: str
    handle: Any
    connected_at: datetime = field(default_factory=utcnow)
    last_active: datetime = field(default_factory=utcnow)


class RedisPresenceMirror:
    """Copies online state into redis so other processes can read it.

    Advisory only; the in-process registry is authoritative and redis
    errors are logged and dropped.
    """

    def __init__(self, redis_client, ttl: int = 300):
        self.redis_client = redis_client
        self.presence_ttl = ttl

    @classmethod
    def from_url(cls, url: str, ttl: int = 300) -> "RedisPresenceMirror":
        return cls(redis.Redis.from_url(url, decode_responses=True), ttl)

    async def update_presence(self, user_id: str, status: str, last_seen: datetime):
        try:
            presence_key = f"presence:{user_id}"
            await self.redis_client.hset(presence_key, mapping={
                'status': status,
                'last_seen': last_seen.isoformat(),
            })
            await self.redis_client.expire(presence_key, self.presence_ttl)
        except RedisError as e:
            logger.error(f"Error mirroring presence for user {user_id}: {e}")

    async def get_presence(self, user_id: str) -> Optional[Dict[str, Any]]:
        try:
            data = await self.redis_client.hgetall(f"presence:{user_id}")
        except RedisError as e:
            logger.error(f"Error reading presence for user {user_id}: {e}")
            return None
        if not data:
            return None
        return {'user_id': user_id, **data}

    async def close(self):
        await self.redis_client.aclose()


class PresenceRegistry:
    """Who is reachable right now, and through which connection handle.

    One handle per user: a new connection replaces whatever was bound
    before. Mutations are serialized per user id; lookups never suspend.
    A handle is anything with an awaitable ``send(frame)``.
    """

    def __init__(self, directory, store, mirror: Optional[RedisPresenceMirror] = None):
        self._directory = directory
        self._store = store
        self._mirror = mirror
        self._entries: Dict[str, PresenceEntry] = {}
        self._locks = KeyedLock()

    # ---- lookups ----
    def is_online(self, user_id: str) -> bool:
        return user_id in self._entries

    def route(self, user_id: str) -> Optional[Any]:
        entry = self._entries.get(user_id)
        return entry.handle if entry else None

    def online_users(self) -> Set[str]:
        return set(self._entries)

    def touch(self, user_id: str):
        entry = self._entries.get(user_id)
        if entry:
            entry.last_active = utcnow()

    # ---- mutations ----
    async def mark_online(self, user_id: str, handle: Any):
        async with self._locks.hold(user_id):
            previous = self._entries.get(user_id)
            entry = PresenceEntry(user_id=user_id, handle=handle)
            self._entries[user_id] = entry
            if previous is not None and previous.handle is not handle:
                logger.info(f"User {user_id} reconnected, replacing stale binding")
            await self._record(user_id, True, entry.connected_at)
        logger.info(f"User {user_id} online")
        await self._broadcast(user_id, events.presence_changed(user_id, True))

    async def mark_offline(self, user_id: str, handle: Any = None) -> bool:
        """Remove the binding. With a handle, only if it is still the bound one."""
        async with self._locks.hold(user_id):
            entry = self._entries.get(user_id)
            if entry is None:
                return False
            if handle is not None and entry.handle is not handle:
                logger.debug(f"Ignoring stale disconnect for user {user_id}")
                return False
            del self._entries[user_id]
            last_seen = utcnow()
            await self._record(user_id, False, last_seen)
        logger.info(f"User {user_id} offline")
        await self._broadcast(user_id, events.presence_changed(user_id, False, last_seen))
        return True

    async def _record(self, user_id: str, is_online: bool, at: datetime):
        try:
            if not is_online:
                await self._directory.update_last_seen(user_id, at)
            await self._directory.set_online(user_id, is_online)
        except ChatError as e:
            logger.error(f"Could not record presence for user {user_id}: {e}")
        if self._mirror:
            await self._mirror.update_presence(user_id, 'online' if is_online else 'offline', at)

    async def _broadcast(self, user_id: str, frame: Dict[str, Any]):
        try:
            audience = await self._store.conversation_partners(user_id)
        except ChatError as e:
            logger.error(f"Could not load presence audience for user {user_id}: {e}")
            return
        await self.push_many(audience, frame)

    # ---- delivery ----
    async def push(self, user_id: str, frame: Dict[str, Any]) -> bool:
        """Send one frame to user_id. False if offline or the send failed."""
        handle = self.route(user_id)
        if handle is None:
            return False
        try:
            await handle.send(frame)
            return True
        except Exception as e:
            logger.error(f"Error pushing {frame.get('type')} to user {user_id}: {e}")
            return False

    async def push_many(self, user_ids: Iterable[str], frame: Dict[str, Any]) -> int:
        sent_count = 0
        for user_id in user_ids:
            if await self.push(user_id, frame):
                sent_count += 1
        return sent_count

    async def presence_of(self, user_id: str) -> Dict[str, Any]:
        """Local binding first, then the mirror (other processes), then the directory."""
        entry = self._entries.get(user_id)
        if entry:
            return {'user_id': user_id, 'is_online': True, 'last_seen': None}
        if self._mirror:
            mirrored = await self._mirror.get_presence(user_id)
            if mirrored:
                online = mirrored.get('status') == 'online'
                return {
                    'user_id': user_id,
                    'is_online': online,
                    'last_seen': None if online else mirrored.get('last_seen'),
                }
        user = await self._directory.find_user(user_id)
        last_seen = user.last_seen if user else None
        return {
            'user_id': user_id,
            'is_online': False,
            'last_seen': last_seen.isoformat() if last_seen else None,
        }

    async def shutdown(self):
        self._entries.clear()
        if self._mirror:
            await self._mirror.close()
