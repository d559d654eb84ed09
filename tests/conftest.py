# tests/conftest.py
from __future__ import annotations

from types import SimpleNamespace

import pytest

from messenger.config import Settings
from messenger.engine import ChatEngine
from messenger.models.user import UserRecord
from messenger.routing import SendMessageIntent


class FakeConnection:
    """Presence handle that records every frame pushed to it."""

    def __init__(self, user_id: str, fail: bool = False):
        self.user_id = user_id
        self.fail = fail
        self.frames = []

    async def send(self, frame):
        if self.fail:
            raise ConnectionError("socket gone")
        self.frames.append(frame)

    def of_type(self, type_):
        return [f for f in self.frames if f["type"] == type_]

    def types(self):
        return [f["type"] for f in self.frames]

    def clear(self):
        self.frames.clear()


@pytest.fixture
def config():
    return Settings(
        _env_file=None,
        STORE_BACKEND="memory",
        TYPING_TIMEOUT=0.2,
        SENSITIVE_KEYWORDS=["scam", "wire transfer"],
        MAX_MESSAGE_LENGTH=200,
        HISTORY_PAGE_SIZE=50,
        HISTORY_MAX_PAGE_SIZE=100,
    )


@pytest.fixture
async def engine(config):
    engine = ChatEngine.in_memory(config)
    yield engine
    await engine.shutdown()


@pytest.fixture
async def users(engine):
    made = {}
    for name in ("alice", "bob", "carol"):
        made[name] = await engine.directory.create_user(
            UserRecord(username=name, display_name=name.title())
        )
    return SimpleNamespace(**made)


async def connect(engine, user, fail=False) -> FakeConnection:
    conn = FakeConnection(user.id, fail=fail)
    await engine.presence.mark_online(user.id, conn)
    return conn


async def send(engine, sender, receiver=None, content="hello", drain=True, **kwargs):
    intent = SendMessageIntent(
        sender_id=sender.id,
        receiver_id=receiver.id if receiver is not None else None,
        content=content,
        **kwargs,
    )
    result = await engine.router.send_message(intent)
    if drain:
        await engine.router.drain()
    return result
