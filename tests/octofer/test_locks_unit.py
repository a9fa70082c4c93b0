"""Unit tests for the async reader-writer lock."""

import asyncio

from octofer.locks import AsyncReadWriteLock


def run_async(coro):
    return asyncio.run(coro)


def test_readers_overlap():
    async def scenario():
        lock = AsyncReadWriteLock()
        both_inside = asyncio.Event()
        inside = 0
        peak = 0

        async def reader():
            nonlocal inside, peak
            async with lock.read():
                inside += 1
                peak = max(peak, inside)
                if inside == 2:
                    both_inside.set()
                await asyncio.wait_for(both_inside.wait(), timeout=1)
                inside -= 1

        await asyncio.gather(reader(), reader())
        return peak

    assert run_async(scenario()) == 2


def test_writer_excludes_readers():
    async def scenario():
        lock = AsyncReadWriteLock()
        order = []

        async def writer():
            async with lock.write():
                order.append("write-start")
                await asyncio.sleep(0.01)
                order.append("write-end")

        async def reader():
            await asyncio.sleep(0)
            async with lock.read():
                order.append("read")

        await asyncio.gather(writer(), reader())
        return order

    assert run_async(scenario()) == ["write-start", "write-end", "read"]


def test_writer_waits_for_readers():
    async def scenario():
        lock = AsyncReadWriteLock()
        order = []

        async def reader():
            async with lock.read():
                order.append("read-start")
                await asyncio.sleep(0.01)
                order.append("read-end")

        async def writer():
            await asyncio.sleep(0)
            async with lock.write():
                order.append("write")

        await asyncio.gather(reader(), writer())
        return order, lock.readers, lock.writing

    order, readers, writing = run_async(scenario())
    assert order == ["read-start", "read-end", "write"]
    assert readers == 0
    assert writing is False


def test_lock_released_on_error():
    async def scenario():
        lock = AsyncReadWriteLock()
        try:
            async with lock.write():
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        async with lock.read():
            return lock.readers

    assert run_async(scenario()) == 1


def test_cancelled_reader_release_frees_lock():
    async def scenario():
        lock = AsyncReadWriteLock()
        inside = asyncio.Event()
        leave = asyncio.Event()

        async def reader():
            async with lock.read():
                inside.set()
                await leave.wait()

        task = asyncio.create_task(reader())
        await inside.wait()

        # Hold the condition's lock so the release has to wait for it
        await lock._condition.acquire()
        leave.set()
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        lock._condition.release()

        readers_after_cancel = lock.readers
        await asyncio.wait_for(lock.acquire_write(), timeout=0.5)
        await lock.release_write()
        return readers_after_cancel

    assert run_async(scenario()) == 0


def test_cancelled_writer_release_frees_lock():
    async def scenario():
        lock = AsyncReadWriteLock()
        inside = asyncio.Event()
        leave = asyncio.Event()

        async def writer():
            async with lock.write():
                inside.set()
                await leave.wait()

        task = asyncio.create_task(writer())
        await inside.wait()

        await lock._condition.acquire()
        leave.set()
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        lock._condition.release()

        writing_after_cancel = lock.writing
        async with lock.read():
            readers = lock.readers
        return writing_after_cancel, readers

    assert run_async(scenario()) == (False, 1)
