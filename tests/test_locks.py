import asyncio

import pytest

from core.locks import KeyedLock


@pytest.mark.asyncio
async def test_lock_is_dropped_once_idle():
    locks = KeyedLock()

    async with locks.hold("u1"):
        assert len(locks) == 1

    assert len(locks) == 0


@pytest.mark.asyncio
async def test_same_key_waits_other_keys_do_not():
    locks = KeyedLock()
    order = []

    async def worker(key, name):
        async with locks.hold(key):
            order.append(f"{name} in")
            await asyncio.sleep(0.01)
            order.append(f"{name} out")

    await asyncio.gather(worker("a", "first"), worker("a", "second"), worker("b", "other"))

    assert order.index("first out") < order.index("second in")
    assert order.index("other in") < order.index("first out")
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_waiter_keeps_the_lock_alive():
    locks = KeyedLock()
    entered = asyncio.Event()
    release = asyncio.Event()

    async def holder():
        async with locks.hold("u1"):
            entered.set()
            await release.wait()

    first = asyncio.create_task(holder())
    await entered.wait()
    second = asyncio.create_task(holder())
    await asyncio.sleep(0)
    release.set()
    await asyncio.gather(first, second)

    assert len(locks) == 0
