import asyncio

import pytest

from infrastructure.locks import InProcessKeyedLock


@pytest.mark.asyncio
async def test_hold_without_waiting_fails_on_a_held_key():
    locks = InProcessKeyedLock(blocking_timeout=1)

    async with locks.hold("payment-callback:TR001"):
        with pytest.raises(TimeoutError):
            async with locks.hold("payment-callback:TR001", wait=False):
                pass
        # other keys are independent
        async with locks.hold("payment-callback:TR002", wait=False):
            pass

    async with locks.hold("payment-callback:TR001", wait=False):
        pass


@pytest.mark.asyncio
async def test_blocking_hold_times_out():
    locks = InProcessKeyedLock(blocking_timeout=0.05)
    held = asyncio.Event()
    release = asyncio.Event()

    async def holder():
        async with locks.hold("initiate:1"):
            held.set()
            await release.wait()

    task = asyncio.create_task(holder())
    await held.wait()
    with pytest.raises(TimeoutError):
        async with locks.hold("initiate:1"):
            pass
    release.set()
    await task
    assert locks._locks == {}
