# tests/test_router.py
import asyncio

import pytest

from messenger import events
from messenger.engine import ChatEngine
from messenger.errors import AccessDenied, ErrorKind, TransientStoreFailure
from messenger.models.message import Attachment, MessageStatus
from messenger.models.user import UserRecord
from messenger.persistence import MemoryIdentityDirectory, MemoryMessageStore
from messenger.routing import SendMessageIntent, direct_conversation_id, group_conversation

from .conftest import FakeConnection, connect, send


async def test_offline_recipient_then_history_marks_read(engine, users):
    alice_conn = await connect(engine, users.alice)

    result = await send(engine, users.alice, users.bob, "hello")
    assert result.is_ok
    assert result.message.id
    assert result.message.status == MessageStatus.SENT
    stored = await engine.store.get_message(result.message.id)
    assert stored.receipts == {users.bob.id: MessageStatus.SENT}
    assert alice_conn.of_type(events.MESSAGE_DELIVERED) == []

    await connect(engine, users.bob)
    page = await engine.history.load_history(result.message.conversation_id, users.bob.id)

    assert [m.content for m in page] == ["hello"]
    assert page[0].status == MessageStatus.READ
    read = alice_conn.of_type(events.MESSAGE_READ)
    assert len(read) == 1
    assert read[0]["payload"]["message_id"] == result.message.id
    assert read[0]["payload"]["user_id"] == users.bob.id


async def test_both_online_delivered_then_read(engine, users):
    alice_conn = await connect(engine, users.alice)
    bob_conn = await connect(engine, users.bob)

    result = await send(engine, users.alice, users.bob, "hi")

    assert result.is_ok
    new = bob_conn.of_type(events.MESSAGE_NEW)
    assert [f["payload"]["message"]["content"] for f in new] == ["hi"]
    assert (await engine.store.get_message(result.message.id)).status == MessageStatus.DELIVERED
    assert len(alice_conn.of_type(events.MESSAGE_DELIVERED)) == 1

    await engine.history.load_history(result.message.conversation_id, users.bob.id)
    assert (await engine.store.get_message(result.message.id)).status == MessageStatus.READ
    assert len(alice_conn.of_type(events.MESSAGE_READ)) == 1


async def test_conversation_updated_reaches_reachable_participants(engine, users):
    alice_conn = await connect(engine, users.alice)
    bob_conn = await connect(engine, users.bob)

    result = await send(engine, users.alice, users.bob)

    for conn in (alice_conn, bob_conn):
        updated = conn.of_type(events.CONVERSATION_UPDATED)
        assert len(updated) == 1
        assert updated[0]["payload"]["last_message_id"] == result.message.id
    conv = await engine.store.get_conversation(result.message.conversation_id)
    assert conv.last_message_id == result.message.id
    assert conv.last_activity == result.message.created_at


async def test_direct_conversation_is_shared_by_both_sides(engine, users):
    first = await send(engine, users.alice, users.bob, "a->b")
    second = await send(engine, users.bob, users.alice, "b->a")

    cid = direct_conversation_id(users.alice.id, users.bob.id)
    assert first.message.conversation_id == second.message.conversation_id == cid
    assert [c.id for c in await engine.store.list_conversations(users.alice.id)] == [cid]


async def test_blocked_either_direction_persists_nothing(engine, users):
    cid = direct_conversation_id(users.alice.id, users.bob.id)

    await engine.directory.block(users.bob.id, users.alice.id)
    result = await send(engine, users.alice, users.bob)
    assert result.error == ErrorKind.RECIPIENT_BLOCKED
    assert not result.retryable

    reverse = await send(engine, users.bob, users.alice)
    assert reverse.error == ErrorKind.RECIPIENT_BLOCKED

    assert await engine.store.get_conversation(cid) is None
    assert await engine.store.query_range(cid) == []


async def test_non_participant_cannot_post_to_group(engine, users):
    group = await engine.store.ensure_conversation(
        group_conversation(users.alice.id, [users.bob.id], name="pair")
    )
    result = await send(
        engine, users.carol, content="let me in", conversation_id=group.id
    )
    assert result.error == ErrorKind.ACCESS_DENIED
    assert await engine.store.query_range(group.id) == []


async def test_non_participant_cannot_post_to_direct_id(engine, users):
    cid = direct_conversation_id(users.alice.id, users.bob.id)
    result = await send(engine, users.carol, conversation_id=cid)
    assert result.error == ErrorKind.ACCESS_DENIED


async def test_group_fan_out_tracks_each_recipient(engine, users):
    group = await engine.store.ensure_conversation(
        group_conversation(users.alice.id, [users.bob.id, users.carol.id])
    )
    alice_conn = await connect(engine, users.alice)
    carol_conn = await connect(engine, users.carol)

    result = await send(engine, users.alice, content="team", conversation_id=group.id)

    stored = await engine.store.get_message(result.message.id)
    assert stored.receipts == {
        users.bob.id: MessageStatus.SENT,
        users.carol.id: MessageStatus.DELIVERED,
    }
    assert stored.status == MessageStatus.SENT
    assert len(carol_conn.of_type(events.MESSAGE_NEW)) == 1
    delivered = alice_conn.of_type(events.MESSAGE_DELIVERED)
    assert [f["payload"]["user_id"] for f in delivered] == [users.carol.id]


async def test_one_broken_connection_does_not_stop_the_others(engine, users):
    group = await engine.store.ensure_conversation(
        group_conversation(users.alice.id, [users.bob.id, users.carol.id])
    )
    alice_conn = await connect(engine, users.alice)
    await connect(engine, users.bob, fail=True)
    carol_conn = await connect(engine, users.carol)

    result = await send(engine, users.alice, content="still works", conversation_id=group.id)

    assert result.is_ok
    stored = await engine.store.get_message(result.message.id)
    assert stored.receipts[users.bob.id] == MessageStatus.SENT
    assert stored.receipts[users.carol.id] == MessageStatus.DELIVERED
    assert len(carol_conn.of_type(events.MESSAGE_NEW)) == 1
    assert len(alice_conn.of_type(events.MESSAGE_DELIVERED)) == 1


async def test_validation_failures_leave_no_trace(engine, users):
    cid = direct_conversation_id(users.alice.id, users.bob.id)
    cases = [
        dict(receiver_id=users.bob.id, content="   "),
        dict(receiver_id=users.bob.id, content="x" * 201),
        dict(receiver_id=users.bob.id, content="hi", message_type="sticker"),
        dict(receiver_id=users.alice.id, content="me"),
        dict(content="nowhere"),
    ]
    for fields in cases:
        result = await engine.router.send_message(SendMessageIntent(sender_id=users.alice.id, **fields))
        assert result.error == ErrorKind.VALIDATION, fields
        assert not result.retryable

    assert await engine.store.get_conversation(cid) is None


async def test_control_characters_only_is_empty(engine, users):
    result = await send(engine, users.alice, users.bob, "\x00\x01\x02")

    assert result.error == ErrorKind.VALIDATION
    cid = direct_conversation_id(users.alice.id, users.bob.id)
    assert await engine.store.get_conversation(cid) is None
    assert await engine.store.query_range(cid) == []


async def test_control_characters_are_stripped_before_storing(engine, users):
    result = await send(engine, users.alice, users.bob, "\x07hi\x00 there\x1f")

    assert result.is_ok
    assert (await engine.store.get_message(result.message.id)).content == "hi there"


async def test_unknown_sender_and_receiver(engine, users):
    ghost = await engine.router.send_message(
        SendMessageIntent(sender_id="ghost", receiver_id=users.bob.id, content="boo")
    )
    assert ghost.error == ErrorKind.VALIDATION

    nobody = await engine.router.send_message(
        SendMessageIntent(sender_id=users.alice.id, receiver_id="nobody", content="hi")
    )
    assert nobody.error == ErrorKind.NOT_FOUND

    unknown_group = await send(engine, users.alice, conversation_id="f" * 32)
    assert unknown_group.error == ErrorKind.NOT_FOUND


async def test_attachment_allows_empty_content(engine, users):
    result = await send(
        engine, users.alice, users.bob, content="",
        message_type="image",
        attachment=Attachment(url="https://cdn.example/p.png", mime_type="image/png"),
    )
    assert result.is_ok
    assert result.message.attachment.url == "https://cdn.example/p.png"


async def test_retry_with_same_client_id_is_not_fanned_out_twice(engine, users):
    bob_conn = await connect(engine, users.bob)

    first = await send(engine, users.alice, users.bob, "once", client_message_id="tmp-1")
    again = await send(engine, users.alice, users.bob, "once", client_message_id="tmp-1")

    assert first.is_ok and again.is_ok
    assert again.duplicate
    assert again.message.id == first.message.id
    assert len(bob_conn.of_type(events.MESSAGE_NEW)) == 1
    assert len(await engine.store.query_range(first.message.conversation_id)) == 1


async def test_same_client_id_in_another_conversation_is_a_new_message(engine, users):
    carol_conn = await connect(engine, users.carol)

    to_bob = await send(engine, users.alice, users.bob, "for bob", client_message_id="tmp-1")
    to_carol = await send(engine, users.alice, users.carol, "for carol", client_message_id="tmp-1")

    assert not to_bob.duplicate and not to_carol.duplicate
    assert to_carol.message.id != to_bob.message.id
    assert to_carol.message.conversation_id == direct_conversation_id(users.alice.id, users.carol.id)
    assert [f["payload"]["message"]["content"] for f in carol_conn.of_type(events.MESSAGE_NEW)] == ["for carol"]


async def test_rapid_sends_keep_persisted_order(engine, users):
    bob_conn = await connect(engine, users.bob)

    results = await asyncio.gather(*[
        send(engine, users.alice, users.bob, f"m{i}", drain=False) for i in range(5)
    ])
    await engine.router.drain()

    by_seq = sorted((r.message for r in results), key=lambda m: m.seq)
    page = await engine.history.load_history(by_seq[0].conversation_id, users.alice.id)
    assert [m.id for m in page] == [m.id for m in by_seq]
    assert all(a.created_at < b.created_at for a, b in zip(page, page[1:]))

    pushed = [f["payload"]["message"]["id"] for f in bob_conn.of_type(events.MESSAGE_NEW)]
    assert pushed == [m.id for m in by_seq]


async def test_sending_clears_sender_typing(engine, users):
    bob_conn = await connect(engine, users.bob)
    cid = direct_conversation_id(users.alice.id, users.bob.id)

    await engine.typing.start_typing(cid, users.alice.id)
    await send(engine, users.alice, users.bob)

    assert not engine.typing.is_typing(cid, users.alice.id)
    states = [f["payload"]["is_typing"] for f in bob_conn.of_type(events.TYPING_CHANGED)]
    assert states == [True, False]


class FailingStore(MemoryMessageStore):
    async def append(self, message, conversation):
        raise TransientStoreFailure("mongo unavailable")


async def test_store_failure_is_retryable_and_not_fanned_out(config):
    directory = MemoryIdentityDirectory()
    engine = ChatEngine.build(directory, FailingStore(), config)
    alice = await directory.create_user(UserRecord(username="alice", display_name="Alice"))
    bob = await directory.create_user(UserRecord(username="bob", display_name="Bob"))
    bob_conn = FakeConnection(bob.id)
    await engine.presence.mark_online(bob.id, bob_conn)

    result = await send(engine, alice, bob, "lost")

    assert result.error == ErrorKind.TRANSIENT_STORE_FAILURE
    assert result.retryable
    assert result.to_payload()["retryable"] is True
    assert bob_conn.frames == []
    await engine.shutdown()


async def test_delete_for_everyone_and_for_me(engine, users):
    alice_conn = await connect(engine, users.alice)
    bob_conn = await connect(engine, users.bob)
    first = await send(engine, users.alice, users.bob, "oops")
    second = await send(engine, users.alice, users.bob, "keep")
    cid = first.message.conversation_id

    await engine.router.delete_message(users.alice.id, first.message.id, for_everyone=True)
    await engine.router.delete_message(users.bob.id, second.message.id)

    assert [m.content for m in await engine.history.load_history(cid, users.alice.id)] == ["keep"]
    assert await engine.history.load_history(cid, users.bob.id) == []
    assert len(alice_conn.of_type(events.MESSAGE_DELETED)) == 1
    assert len(bob_conn.of_type(events.MESSAGE_DELETED)) == 2


async def test_only_sender_deletes_for_everyone(engine, users):
    result = await send(engine, users.alice, users.bob)
    with pytest.raises(AccessDenied):
        await engine.router.delete_message(users.bob.id, result.message.id, for_everyone=True)
    assert (await engine.store.get_message(result.message.id)).deleted is False


async def test_reactions_toggle_and_replace(engine, users):
    alice_conn = await connect(engine, users.alice)
    result = await send(engine, users.alice, users.bob)
    mid = result.message.id

    msg = await engine.router.react(users.bob.id, mid, "👍")
    assert [(r.user_id, r.emoji) for r in msg.reactions] == [(users.bob.id, "👍")]
    msg = await engine.router.react(users.bob.id, mid, "🎉")
    assert [(r.user_id, r.emoji) for r in msg.reactions] == [(users.bob.id, "🎉")]
    msg = await engine.router.react(users.bob.id, mid, "🎉")
    assert msg.reactions == []

    assert len(alice_conn.of_type(events.MESSAGE_REACTION)) == 3


async def test_relay_signal_is_opaque_pass_through(engine, users):
    bob_conn = await connect(engine, users.bob)
    cid = direct_conversation_id(users.alice.id, users.bob.id)
    signal = {"kind": "offer", "sdp": "v=0..."}

    assert await engine.router.relay_signal(users.alice.id, cid, users.bob.id, signal)
    frame = bob_conn.of_type(events.CALL_SIGNAL)[0]
    assert frame["payload"] == {"from": users.alice.id, "conversation_id": cid, "signal": signal}

    assert not await engine.router.relay_signal(users.bob.id, cid, users.alice.id, signal)
