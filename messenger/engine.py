# messenger/engine.py
'''
The process-wide object graph: stores, presence registry, typing
coordinator, router and history service. Built once at startup, torn
down at shutdown, and handed to the transport instead of living in
module globals.
'''

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from messenger.config import Settings, settings as default_settings
from messenger.database import close_database, init_database
from messenger.moderation import KeywordFlagger
from messenger.persistence import (
    IdentityDirectory, MemoryIdentityDirectory, MemoryMessageStore, MessageStore,
    MongoIdentityDirectory, MongoMessageStore,
)
from messenger.routing import ConversationRouter, DeliveryTracker, HistoryService
from messenger.websockets import (
    ConnectionManager, MessageHandler, PresenceRegistry, RedisPresenceMirror, TypingCoordinator,
)

logger = logging.getLogger(__name__)


@dataclass
class ChatEngine:
    directory: IdentityDirectory
    store: MessageStore
    presence: PresenceRegistry
    tracker: DeliveryTracker
    typing: TypingCoordinator
    router: ConversationRouter
    history: HistoryService
    connections: ConnectionManager
    handler: MessageHandler
    flagger: Optional[KeywordFlagger] = None
    uses_database: bool = False

    @classmethod
    def build(cls, directory: IdentityDirectory, store: MessageStore,
              config: Settings = default_settings,
              mirror: Optional[RedisPresenceMirror] = None) -> "ChatEngine":
        presence = PresenceRegistry(directory, store, mirror)
        tracker = DeliveryTracker(store, presence)
        typing = TypingCoordinator(store, presence, timeout=config.TYPING_TIMEOUT)

        hooks = []
        flagger = None
        if config.SENSITIVE_KEYWORDS:
            flagger = KeywordFlagger(store, config.SENSITIVE_KEYWORDS)
            hooks.append(flagger)

        router = ConversationRouter(
            directory=directory,
            store=store,
            presence=presence,
            tracker=tracker,
            typing=typing,
            hooks=hooks,
            max_message_length=config.MAX_MESSAGE_LENGTH,
        )
        history = HistoryService(
            store, tracker,
            page_size=config.HISTORY_PAGE_SIZE,
            max_page_size=config.HISTORY_MAX_PAGE_SIZE,
        )
        connections = ConnectionManager(presence, config.RATE_LIMIT_PER_MINUTE)
        handler = MessageHandler(router, history, typing, presence)
        return cls(
            directory=directory,
            store=store,
            presence=presence,
            tracker=tracker,
            typing=typing,
            router=router,
            history=history,
            connections=connections,
            handler=handler,
            flagger=flagger,
        )

    @classmethod
    def in_memory(cls, config: Settings = default_settings) -> "ChatEngine":
        return cls.build(MemoryIdentityDirectory(), MemoryMessageStore(), config)

    @classmethod
    async def from_settings(cls, config: Settings = default_settings) -> "ChatEngine":
        """Engine for the configured backend; connects to MongoDB when selected"""
        mirror = RedisPresenceMirror.from_url(config.REDIS_URL, config.PRESENCE_TTL) if config.REDIS_URL else None

        if config.STORE_BACKEND == "memory":
            logger.warning("Using the in-memory store; nothing survives a restart")
            return cls.build(MemoryIdentityDirectory(), MemoryMessageStore(), config, mirror)

        await init_database(config.MONGODB_URL, config.DATABASE_NAME)
        engine = cls.build(MongoIdentityDirectory(), MongoMessageStore(), config, mirror)
        engine.uses_database = True
        return engine

    async def shutdown(self):
        await self.router.drain()
        await self.typing.shutdown()
        await self.presence.shutdown()
        if self.uses_database:
            await close_database()
