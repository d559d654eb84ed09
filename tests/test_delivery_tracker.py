# tests/test_delivery_tracker.py
import pytest

from messenger import events
from messenger.models.message import MessageStatus
from messenger.routing.delivery_tracker import next_status

from .conftest import connect, send

SENT, DELIVERED, READ = MessageStatus.SENT, MessageStatus.DELIVERED, MessageStatus.READ


@pytest.mark.parametrize("current,proposed,expected", [
    (SENT, DELIVERED, DELIVERED),
    (SENT, READ, READ),
    (DELIVERED, READ, READ),
    (DELIVERED, DELIVERED, None),
    (READ, DELIVERED, None),
    (READ, SENT, None),
    (DELIVERED, SENT, None),
    (None, READ, None),
])
def test_next_status_only_moves_forward(current, proposed, expected):
    assert next_status(current, proposed) == expected


async def test_late_delivered_after_read_is_silent(engine, users):
    alice_conn = await connect(engine, users.alice)
    result = await send(engine, users.alice, users.bob)
    message = await engine.store.get_message(result.message.id)

    assert await engine.tracker.mark_read(message, users.bob.id)
    assert not await engine.tracker.mark_delivered(message, users.bob.id)

    stored = await engine.store.get_message(message.id)
    assert stored.receipts[users.bob.id] == READ
    assert len(alice_conn.of_type(events.MESSAGE_READ)) == 1
    assert alice_conn.of_type(events.MESSAGE_DELIVERED) == []


async def test_stale_copy_cannot_regress_store(engine, users):
    result = await send(engine, users.alice, users.bob)
    fresh = await engine.store.get_message(result.message.id)
    stale = await engine.store.get_message(result.message.id)

    assert await engine.tracker.mark_read(fresh, users.bob.id)
    # stale copy still believes the receipt is "sent"
    assert not await engine.tracker.mark_delivered(stale, users.bob.id)
    assert (await engine.store.get_message(fresh.id)).receipts[users.bob.id] == READ


async def test_sender_cannot_ack_own_message(engine, users):
    result = await send(engine, users.alice, users.bob)
    message = await engine.store.get_message(result.message.id)

    assert not await engine.tracker.mark_read(message, users.alice.id)
    assert (await engine.store.get_message(message.id)).status == SENT


async def test_non_recipient_cannot_advance(engine, users):
    result = await send(engine, users.alice, users.bob)
    message = await engine.store.get_message(result.message.id)

    assert not await engine.tracker.mark_read(message, users.carol.id)
    assert users.carol.id not in (await engine.store.get_message(message.id)).receipts


async def test_status_sequence_is_non_decreasing(engine, users):
    alice_conn = await connect(engine, users.alice)
    await connect(engine, users.bob)
    result = await send(engine, users.alice, users.bob)
    message = await engine.store.get_message(result.message.id)

    for status in (SENT, READ, DELIVERED, READ, SENT, DELIVERED):
        await engine.tracker.advance(message, users.bob.id, status)

    seen = [f["payload"]["status"] for f in alice_conn.frames
            if f["type"] in (events.MESSAGE_DELIVERED, events.MESSAGE_READ)]
    assert seen == ["delivered", "read"]
