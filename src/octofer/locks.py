"""Async reader-writer lock shared by the token cache and handler registry.

asyncio only ships an exclusive Lock. The installation token cache and the
handler registry are read on every webhook delivery and written rarely, so
readers are allowed to overlap while writers get exclusive access.

Example:
    >>> lock = AsyncReadWriteLock()
    >>> async with lock.read():
    ...     value = shared.get(key)
    >>> async with lock.write():
    ...     shared[key] = value
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class AsyncReadWriteLock:
    """Reader-writer lock for coroutines on a single event loop.

    Any number of readers may hold the lock at once. A writer waits until
    all readers have left and then holds the lock alone. New readers are
    admitted while a writer is waiting, which favours the read-heavy
    workload (cache hits, handler lookups) over writes.

    Attributes:
        readers: Number of coroutines currently holding the read side.
        writing: Whether a writer currently holds the lock.
    """

    def __init__(self) -> None:
        self._condition = asyncio.Condition()
        self.readers = 0
        self.writing = False

    async def acquire_read(self) -> None:
        async with self._condition:
            await self._condition.wait_for(lambda: not self.writing)
            self.readers += 1

    async def release_read(self) -> None:
        # Counter changes happen before any await so a cancelled release
        # still frees the lock
        self.readers -= 1
        if self.readers == 0:
            await self._wake_waiters()

    async def acquire_write(self) -> None:
        async with self._condition:
            await self._condition.wait_for(
                lambda: not self.writing and self.readers == 0
            )
            self.writing = True

    async def release_write(self) -> None:
        self.writing = False
        await self._wake_waiters()

    async def _wake_waiters(self) -> None:
        await asyncio.shield(self._notify_all())

    async def _notify_all(self) -> None:
        async with self._condition:
            self._condition.notify_all()

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        """Hold the shared (read) side of the lock for the block."""
        await self.acquire_read()
        try:
            yield
        finally:
            await self.release_read()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        """Hold the exclusive (write) side of the lock for the block."""
        await self.acquire_write()
        try:
            yield
        finally:
            await self.release_write()
