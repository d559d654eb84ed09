# tests/test_message_handler.py
import pytest

from messenger import events
from messenger.routing import direct_conversation, direct_conversation_id

from .conftest import connect


@pytest.fixture
async def sockets(engine, users):
    return await connect(engine, users.alice), await connect(engine, users.bob)


async def handle(engine, conn, type_, payload=None, req_id="r1"):
    frame = {"type": type_, "payload": payload or {}, "req_id": req_id}
    reply = await engine.handler.handle_message(conn, frame)
    await engine.router.drain()
    return reply


async def test_ping(engine, sockets):
    alice, _ = sockets
    reply = await handle(engine, alice, events.PING)
    assert reply["type"] == events.PONG
    assert reply["req_id"] == "r1"


async def test_send_is_acknowledged_with_persisted_message(engine, users, sockets):
    alice, bob = sockets
    reply = await handle(engine, alice, events.SEND_MESSAGE, {
        "receiver_id": users.bob.id, "content": "hi bob", "client_message_id": "tmp-9",
    })

    assert reply["type"] == events.MESSAGE_SENT
    assert reply["req_id"] == "r1"
    message = reply["payload"]["message"]
    assert message["id"]
    assert message["seq"] == 1
    assert reply["payload"]["client_message_id"] == "tmp-9"
    assert bob.of_type(events.MESSAGE_NEW)[0]["payload"]["message"]["id"] == message["id"]


async def test_send_cannot_spoof_sender(engine, users, sockets):
    alice, _ = sockets
    reply = await handle(engine, alice, events.SEND_MESSAGE, {
        "sender_id": users.carol.id, "receiver_id": users.bob.id, "content": "hi",
    })
    assert reply["payload"]["message"]["sender_id"] == users.alice.id


async def test_send_refusal_becomes_error_frame(engine, users, sockets):
    alice, _ = sockets
    await engine.directory.block(users.bob.id, users.alice.id)

    reply = await handle(engine, alice, events.SEND_MESSAGE, {
        "receiver_id": users.bob.id, "content": "hi",
    })

    assert reply["type"] == events.ERROR
    assert reply["payload"]["code"] == "RecipientBlocked"
    assert reply["payload"]["retryable"] is False
    assert reply["req_id"] == "r1"


async def test_history_then_mark_read_ack(engine, users, sockets):
    alice, bob = sockets
    sent = await handle(engine, alice, events.SEND_MESSAGE, {
        "receiver_id": users.bob.id, "content": "one",
    })
    cid = direct_conversation_id(users.alice.id, users.bob.id)

    page = await handle(engine, bob, events.LOAD_HISTORY, {"conversation_id": cid, "limit": 10})
    assert page["type"] == events.HISTORY
    assert [m["content"] for m in page["payload"]["messages"]] == ["one"]
    assert page["payload"]["has_more"] is False
    assert len(alice.of_type(events.MESSAGE_READ)) == 1

    ack = await handle(engine, bob, events.MARK_READ, {
        "message_ids": [sent["payload"]["message"]["id"]],
    })
    assert ack["type"] == events.ACK
    assert ack["payload"] == {"read": 0}


async def test_history_of_foreign_conversation_is_denied(engine, users, sockets):
    alice, _ = sockets
    cid = direct_conversation_id(users.bob.id, users.carol.id)
    await engine.store.ensure_conversation(direct_conversation(users.bob.id, users.carol.id))
    reply = await handle(engine, alice, events.LOAD_HISTORY, {"conversation_id": cid})
    assert reply["type"] == events.ERROR
    assert reply["payload"]["code"] == "AccessDenied"


async def test_typing_frames(engine, users, sockets):
    alice, bob = sockets
    cid = direct_conversation_id(users.alice.id, users.bob.id)

    start = await handle(engine, alice, events.TYPING_START, {"conversation_id": cid})
    stop = await handle(engine, alice, events.TYPING_STOP, {"conversation_id": cid})

    assert start["payload"]["is_typing"] is True
    assert stop["payload"]["is_typing"] is False
    assert [f["payload"]["is_typing"] for f in bob.of_type(events.TYPING_CHANGED)] == [True, False]


async def test_delete_and_react(engine, users, sockets):
    alice, bob = sockets
    sent = await handle(engine, alice, events.SEND_MESSAGE, {
        "receiver_id": users.bob.id, "content": "react to me",
    })
    mid = sent["payload"]["message"]["id"]

    reacted = await handle(engine, bob, events.REACT, {"message_id": mid, "emoji": "❤️"})
    assert [r["emoji"] for r in reacted["payload"]["reactions"]] == ["❤️"]

    denied = await handle(engine, bob, events.DELETE_MESSAGE, {"message_id": mid, "for_everyone": True})
    assert denied["payload"]["code"] == "AccessDenied"

    deleted = await handle(engine, alice, events.DELETE_MESSAGE, {"message_id": mid, "for_everyone": True})
    assert deleted["type"] == events.ACK
    assert len(bob.of_type(events.MESSAGE_DELETED)) == 1


async def test_conversations_and_presence_queries(engine, users, sockets):
    alice, _ = sockets
    await handle(engine, alice, events.SEND_MESSAGE, {"receiver_id": users.bob.id, "content": "x"})

    listing = await handle(engine, alice, events.LIST_CONVERSATIONS)
    [row] = listing["payload"]["conversations"]
    assert row["id"] == direct_conversation_id(users.alice.id, users.bob.id)
    assert row["unread_count"] == 0

    presence = await handle(engine, alice, events.QUERY_PRESENCE, {
        "user_ids": [users.bob.id, users.carol.id],
    })
    assert [u["is_online"] for u in presence["payload"]["users"]] == [True, False]


async def test_relay(engine, users, sockets):
    alice, bob = sockets
    cid = direct_conversation_id(users.alice.id, users.bob.id)
    reply = await handle(engine, alice, events.RELAY_SIGNAL, {
        "conversation_id": cid, "target_id": users.bob.id, "signal": {"kind": "hangup"},
    })
    assert reply["payload"] == {"delivered": True}
    assert bob.of_type(events.CALL_SIGNAL)[0]["payload"]["signal"] == {"kind": "hangup"}


@pytest.mark.parametrize("frame, code", [
    ({"type": "nope"}, events.ERR_UNKNOWN_TYPE),
    ({"type": events.LOAD_HISTORY, "payload": {}}, "ValidationError"),
    ({"type": events.MARK_READ, "payload": {"message_ids": []}}, "ValidationError"),
    ({"type": events.SEND_MESSAGE, "payload": ["not", "a", "dict"]}, "ValidationError"),
])
async def test_malformed_frames(engine, sockets, frame, code):
    alice, _ = sockets
    reply = await engine.handler.handle_message(alice, frame)
    assert reply["type"] == events.ERROR
    assert reply["payload"]["code"] == code
