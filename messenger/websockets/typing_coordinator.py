import asyncio
import logging
from typing import Dict, List, Set

from messenger import events
from messenger.errors import AccessDenied, ValidationFailed
from messenger.routing.canonical import canonical_conversation_id, implied_participants
from messenger.utils.keyed_lock import KeyedLock

logger = logging.getLogger(__name__)


class TypingCoordinator:
    """Ephemeral "is typing" state per conversation.

    Every start (re)arms an expiry timer, so an indicator clears itself
    after `timeout` seconds even if the stop signal never arrives.
    Participants are told only about edges: idle -> typing and back.
    """

    def __init__(self, store, presence, timeout: float = 5.0):
        self._store = store
        self._presence = presence
        self.timeout = timeout
        # {conversation_id: {user_id: expiry task}}
        self._typing: Dict[str, Dict[str, asyncio.Task]] = {}
        self._locks = KeyedLock()

    def typing_users(self, conversation_id: str) -> Set[str]:
        conversation_id = canonical_conversation_id(conversation_id)
        return set(self._typing.get(conversation_id, {}))

    def is_typing(self, conversation_id: str, user_id: str) -> bool:
        conversation_id = canonical_conversation_id(conversation_id)
        return user_id in self._typing.get(conversation_id, {})

    async def start_typing(self, conversation_id: str, user_id: str) -> bool:
        """Returns True when this call turned the indicator on."""
        conversation_id = canonical_conversation_id(conversation_id)
        participants = await self._participants(conversation_id)
        if user_id not in participants:
            raise AccessDenied("not a participant of this conversation")

        async with self._locks.hold(conversation_id):
            users = self._typing.setdefault(conversation_id, {})
            previous = users.get(user_id)
            if previous is not None:
                previous.cancel()
            users[user_id] = asyncio.create_task(self._expire(conversation_id, user_id))

        if previous is None:
            await self._notify(conversation_id, user_id, participants, True)
        return previous is None

    async def stop_typing(self, conversation_id: str, user_id: str) -> bool:
        """Returns True when this call turned the indicator off."""
        conversation_id = canonical_conversation_id(conversation_id)
        async with self._locks.hold(conversation_id):
            task = self._pop(conversation_id, user_id)
        if task is None:
            return False
        if task is not asyncio.current_task():
            task.cancel()
        await self._notify(conversation_id, user_id, None, False)
        return True

    async def _expire(self, conversation_id: str, user_id: str):
        await asyncio.sleep(self.timeout)
        async with self._locks.hold(conversation_id):
            users = self._typing.get(conversation_id, {})
            if users.get(user_id) is not asyncio.current_task():
                return
            self._pop(conversation_id, user_id)
        logger.debug(f"Typing indicator for {user_id} in {conversation_id} expired")
        await self._notify(conversation_id, user_id, None, False)

    def _pop(self, conversation_id: str, user_id: str):
        users = self._typing.get(conversation_id)
        if not users:
            return None
        task = users.pop(user_id, None)
        if not users:
            del self._typing[conversation_id]
        return task

    async def _participants(self, conversation_id: str) -> List[str]:
        conversation = await self._store.get_conversation(conversation_id)
        if conversation is not None:
            return conversation.participant_ids
        # A direct conversation may be typed into before its first message
        try:
            return implied_participants(conversation_id) or []
        except ValidationFailed:
            return []

    async def _notify(self, conversation_id: str, user_id: str, participants, is_typing: bool):
        try:
            if participants is None:
                participants = await self._participants(conversation_id)
            others = [p for p in participants if p != user_id]
            await self._presence.push_many(
                others, events.typing_changed(conversation_id, user_id, is_typing)
            )
        except Exception as e:
            logger.error(f"Error broadcasting typing state in {conversation_id}: {e}")

    async def shutdown(self):
        tasks = [t for users in self._typing.values() for t in users.values()]
        self._typing.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
