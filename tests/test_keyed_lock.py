# tests/test_keyed_lock.py
import asyncio

from messenger.utils.keyed_lock import KeyedLock


async def test_same_key_is_serialized_other_keys_are_not():
    locks = KeyedLock()
    order = []

    async def work(key, name, delay):
        async with locks.hold(key):
            order.append(f"{name}+")
            await asyncio.sleep(delay)
            order.append(f"{name}-")

    await asyncio.gather(work("a", "a1", 0.05), work("a", "a2", 0), work("b", "b1", 0))

    assert order.index("a1-") < order.index("a2+")
    assert order.index("b1-") < order.index("a1-")


async def test_released_keys_are_forgotten():
    locks = KeyedLock()
    async with locks.hold("a"):
        async with locks.hold("b"):
            pass
    assert locks._locks == {}
