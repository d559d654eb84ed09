from .connection_manager import ConnectionManager, WebSocketConnection
from .message_handler import MessageHandler
from .presence_manager import PresenceEntry, PresenceRegistry, RedisPresenceMirror
from .typing_coordinator import TypingCoordinator

__all__ = [
    "ConnectionManager",
    "WebSocketConnection",
    "MessageHandler",
    "PresenceEntry",
    "PresenceRegistry",
    "RedisPresenceMirror",
    "TypingCoordinator",
]
