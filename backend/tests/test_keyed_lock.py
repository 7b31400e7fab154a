"""Tests for per-key asyncio locks."""
import asyncio

from utils.keyed_lock import KeyedLock


def test_same_key_is_serialized():
    locks = KeyedLock()
    order = []

    async def worker(name):
        async with locks.hold(["k"]):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    async def run():
        await asyncio.gather(worker("a"), worker("b"))

    asyncio.run(run())
    assert order == ["a-in", "a-out", "b-in", "b-out"]


def test_overlapping_key_sets_do_not_deadlock():
    locks = KeyedLock()
    done = []

    async def worker(name, keys):
        for _ in range(5):
            async with locks.hold(keys):
                await asyncio.sleep(0)
        done.append(name)

    async def run():
        await asyncio.wait_for(
            asyncio.gather(worker("ab", ["a", "b"]), worker("ba", ["b", "a"])), timeout=2
        )

    asyncio.run(run())
    assert sorted(done) == ["ab", "ba"]


def test_locks_released_and_dropped():
    locks = KeyedLock()

    async def run():
        async with locks.hold([("PDU-1", "temperature", "critical_temperature_high")]):
            assert locks.is_locked(("PDU-1", "temperature", "critical_temperature_high"))
            assert len(locks) == 1
        return len(locks)

    assert asyncio.run(run()) == 0
    assert not locks.is_locked(("PDU-1", "temperature", "critical_temperature_high"))
