from .interfaces import IdentityDirectory, MessageStore
from .memory_store import MemoryIdentityDirectory, MemoryMessageStore
from .mongo_store import MongoIdentityDirectory, MongoMessageStore

__all__ = [
    "IdentityDirectory",
    "MessageStore",
    "MemoryIdentityDirectory",
    "MemoryMessageStore",
    "MongoIdentityDirectory",
    "MongoMessageStore",
]
