"""
Unit tests for the reconcile work queue.
"""

import asyncio

import pytest

from lb_controller.workqueue import WorkQueue, WorkQueueShutDown


async def get_soon(queue: WorkQueue, timeout: float = 1.0):
    return await asyncio.wait_for(queue.get(), timeout)


@pytest.mark.asyncio
async def test_add_deduplicates():
    queue = WorkQueue()

    queue.add("a")
    queue.add("a")
    queue.add("b")

    assert len(queue) == 2
    assert await get_soon(queue) == "a"
    assert await get_soon(queue) == "b"


@pytest.mark.asyncio
async def test_key_added_while_processing_is_deferred():
    """A key is never handed to two workers at once."""
    queue = WorkQueue()
    queue.add("a")
    key = await get_soon(queue)

    queue.add("a")
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(queue.get(), 0.05)

    queue.done(key)
    assert await get_soon(queue) == "a"


@pytest.mark.asyncio
async def test_done_without_readd():
    queue = WorkQueue()
    queue.add("a")
    key = await get_soon(queue)

    queue.done(key)

    assert len(queue) == 0


@pytest.mark.asyncio
async def test_add_after_delays():
    queue = WorkQueue()
    loop = asyncio.get_running_loop()
    start = loop.time()

    queue.add_after("a", 0.05)

    assert len(queue) == 0
    assert await get_soon(queue) == "a"
    assert loop.time() - start >= 0.04


@pytest.mark.asyncio
async def test_add_after_earlier_wins():
    queue = WorkQueue()

    queue.add_after("a", 60)
    queue.add_after("a", 0.01)

    assert await get_soon(queue) == "a"


@pytest.mark.asyncio
async def test_add_after_later_ignored():
    queue = WorkQueue()

    queue.add_after("a", 0.01)
    queue.add_after("a", 60)

    assert await get_soon(queue) == "a"


@pytest.mark.asyncio
async def test_rate_limited_backoff():
    queue = WorkQueue(base_delay=0.01, max_delay=0.02)

    queue.add_rate_limited("a")
    assert await get_soon(queue) == "a"
    queue.done("a")
    queue.add_rate_limited("a")
    queue.add_rate_limited("a")

    assert queue.num_requeues("a") == 3
    queue.forget("a")
    assert queue.num_requeues("a") == 0


@pytest.mark.asyncio
async def test_shutdown_wakes_getters():
    queue = WorkQueue()
    getters = [asyncio.create_task(queue.get()) for _ in range(3)]
    await asyncio.sleep(0)

    queue.shutdown()

    results = await asyncio.gather(*getters, return_exceptions=True)
    assert all(isinstance(r, WorkQueueShutDown) for r in results)


@pytest.mark.asyncio
async def test_add_after_shutdown_ignored():
    queue = WorkQueue()
    queue.shutdown()

    queue.add("a")
    queue.add_after("a", 0.01)

    assert len(queue) == 0
    with pytest.raises(WorkQueueShutDown):
        await queue.get()
