"""Ordered non-blocking output queues, one per descriptor."""

from __future__ import annotations

import asyncio
import os
import select
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from types import TracebackType

from loguru import logger


@dataclass
class OutputChunk:
    """Bytes waiting to be written, `offset` of them already are."""

    data: bytes
    offset: int = 0

    @property
    def done(self) -> bool:
        return self.offset >= len(self.data)

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset


class AsyncWriter:
    """Write to descriptors without ever blocking the event loop.

    Bytes written to one descriptor come out in the order they were queued.
    When a descriptor would block, one writability callback is registered on
    the loop and the queue resumes draining from there. Used as a context
    manager it switches the given descriptors to non-blocking mode and, on
    exit, flushes whatever is left and restores their original mode.
    """

    def __init__(
        self,
        fds: Iterable[int] = (),
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        write: Callable[[int, memoryview], int] = os.write,
        on_error: Callable[[int, OSError], None] | None = None,
    ) -> None:
        self._fds = tuple(fds)
        self._loop = loop
        self._write = write
        self._on_error = on_error
        self._queues: dict[int, deque[OutputChunk]] = {}
        self._armed: set[int] = set()
        self._waiters: list[asyncio.Future[None]] = []
        self._blocking: dict[int, bool] = {}
        self.error: OSError | None = None

    def __enter__(self) -> AsyncWriter:
        for fd in self._fds:
            self._blocking[fd] = os.get_blocking(fd)
            os.set_blocking(fd, False)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            if self.error is None:
                self.flush()
        finally:
            for fd, blocking in self._blocking.items():
                os.set_blocking(fd, blocking)
            self._blocking.clear()

    def set_error_handler(self, on_error: Callable[[int, OSError], None]) -> None:
        self._on_error = on_error

    @property
    def pending(self) -> int:
        """Bytes queued on all descriptors and not yet written."""
        return sum(chunk.remaining for queue in self._queues.values() for chunk in queue)

    def pending_for(self, fd: int) -> int:
        return sum(chunk.remaining for chunk in self._queues.get(fd, ()))

    def write(self, fd: int, data: bytes | str) -> None:
        if isinstance(data, str):
            data = data.encode("utf-8")
        if not data:
            return
        self._queues.setdefault(fd, deque()).append(OutputChunk(data))
        if fd not in self._armed:
            self.drain(fd)

    def drain(self, fd: int) -> None:
        """Write as much of the queue of `fd` as it accepts right now."""
        try:
            blocked = self._write_out(fd)
        except OSError as exc:
            self._fail(fd, exc)
            return
        if blocked:
            self._arm(fd)
        else:
            self._disarm(fd)
            self._wake()

    async def wait_drained(self) -> None:
        if not self.pending:
            return
        waiter = self._get_loop().create_future()
        self._waiters.append(waiter)
        await waiter

    def detach(self) -> None:
        """Drop every writability registration held on the loop."""
        for fd in list(self._armed):
            self._disarm(fd)

    def flush(self) -> None:
        """Write out everything queued, waiting on the descriptors if needed."""
        self.detach()
        for fd, queue in self._queues.items():
            while queue:
                select.select([], [fd], [])
                self._write_out(fd)
        self._wake()

    def _write_out(self, fd: int) -> bool:
        queue = self._queues.get(fd)
        while queue:
            chunk = queue[0]
            try:
                written = self._write(fd, memoryview(chunk.data)[chunk.offset :])
            except BlockingIOError:
                return True
            except InterruptedError:
                continue
            if written == 0:
                return True
            chunk.offset += written
            if chunk.done:
                queue.popleft()
        return False

    def _arm(self, fd: int) -> None:
        if fd in self._armed:
            return
        self._armed.add(fd)
        self._get_loop().add_writer(fd, self.drain, fd)

    def _disarm(self, fd: int) -> None:
        if fd not in self._armed:
            return
        self._armed.discard(fd)
        self._get_loop().remove_writer(fd)

    def _fail(self, fd: int, exc: OSError) -> None:
        self.error = exc
        logger.error("writer.error fd={} error={}", fd, exc)
        self._queues.pop(fd, None)
        self._disarm(fd)
        self._wake()
        if self._on_error is None:
            raise exc
        self._on_error(fd, exc)

    def _wake(self) -> None:
        if self.pending:
            return
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop
