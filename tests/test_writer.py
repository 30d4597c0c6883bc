from __future__ import annotations

import asyncio
import errno
import os

import pytest
from loguru import logger

from callpipe.logging_utils import logs_through
from callpipe.writer import AsyncWriter


class _FakeLoop:
    def __init__(self) -> None:
        self.writers: dict[int, tuple] = {}
        self.registrations = 0

    def add_writer(self, fd: int, callback, *args) -> None:
        assert fd not in self.writers, "writer registered twice"
        self.writers[fd] = (callback, args)
        self.registrations += 1

    def remove_writer(self, fd: int) -> bool:
        return self.writers.pop(fd, None) is not None

    def fire(self, fd: int) -> None:
        callback, args = self.writers[fd]
        callback(*args)


class _ChokedWrite:
    """Accept `budget` bytes, then report would-block until refilled."""

    def __init__(self, budget: int) -> None:
        self.budget = budget
        self.output: dict[int, bytearray] = {}
        self.calls = 0

    def __call__(self, fd: int, view: memoryview) -> int:
        self.calls += 1
        if self.budget <= 0:
            raise BlockingIOError(errno.EAGAIN, "would block")
        size = min(len(view), self.budget)
        self.output.setdefault(fd, bytearray()).extend(view[:size])
        self.budget -= size
        return size


def test_write_drains_immediately_when_descriptor_accepts() -> None:
    loop = _FakeLoop()
    sink = _ChokedWrite(1000)
    writer = AsyncWriter(loop=loop, write=sink)
    writer.write(1, "hello\n")
    assert bytes(sink.output[1]) == b"hello\n"
    assert writer.pending == 0
    assert loop.writers == {}


def test_partial_write_resumes_on_writability() -> None:
    loop = _FakeLoop()
    sink = _ChokedWrite(3)
    writer = AsyncWriter(loop=loop, write=sink)

    writer.write(1, b"hello world")
    assert bytes(sink.output[1]) == b"hel"
    assert writer.pending_for(1) == 8
    assert 1 in loop.writers

    writer.write(1, b"!")
    assert loop.registrations == 1

    sink.budget = 4
    loop.fire(1)
    assert bytes(sink.output[1]) == b"hello w"
    assert 1 in loop.writers

    sink.budget = 100
    loop.fire(1)
    assert bytes(sink.output[1]) == b"hello world!"
    assert writer.pending == 0
    assert loop.writers == {}


def test_descriptors_are_independent() -> None:
    loop = _FakeLoop()
    sink = _ChokedWrite(2)
    writer = AsyncWriter(loop=loop, write=sink)
    writer.write(1, b"abcd")
    assert 1 in loop.writers
    sink.budget = 10
    writer.write(2, b"err")
    assert bytes(sink.output[2]) == b"err"
    assert writer.pending_for(1) == 2


def test_interrupted_write_is_retried() -> None:
    loop = _FakeLoop()
    written = bytearray()
    interrupted = [True]

    def write(_fd: int, view: memoryview) -> int:
        if interrupted[0]:
            interrupted[0] = False
            raise InterruptedError(errno.EINTR, "interrupted")
        written.extend(view)
        return len(view)

    writer = AsyncWriter(loop=loop, write=write)
    writer.write(1, b"data")
    assert bytes(written) == b"data"


def test_write_error_is_reported_and_queue_dropped() -> None:
    loop = _FakeLoop()
    failures: list[tuple[int, OSError]] = []

    def write(_fd: int, _view: memoryview) -> int:
        raise OSError(errno.EBADF, "Bad file descriptor")

    writer = AsyncWriter(loop=loop, write=write, on_error=lambda fd, exc: failures.append((fd, exc)))
    writer.write(1, b"lost")
    assert failures and failures[0][0] == 1
    assert writer.pending == 0
    assert writer.error is not None


def test_write_error_without_handler_raises() -> None:
    def write(_fd: int, _view: memoryview) -> int:
        raise OSError(errno.EPIPE, "Broken pipe")

    writer = AsyncWriter(loop=_FakeLoop(), write=write)
    with pytest.raises(OSError):
        writer.write(1, b"x")


def test_context_manager_flushes_and_restores_blocking(out_pipe) -> None:
    assert os.get_blocking(out_pipe.write_fd) is True
    with AsyncWriter((out_pipe.write_fd,), loop=_FakeLoop()) as writer:
        assert os.get_blocking(out_pipe.write_fd) is False
        writer.write(out_pipe.write_fd, b"line one\n")
        writer.write(out_pipe.write_fd, b"line two\n")
    assert os.get_blocking(out_pipe.write_fd) is True
    assert out_pipe.read_all() == b"line one\nline two\n"


@pytest.mark.asyncio
async def test_wait_drained_on_a_full_pipe(out_pipe) -> None:
    payload = b"z" * 300_000
    with AsyncWriter((out_pipe.write_fd,)) as writer:
        writer.write(out_pipe.write_fd, payload)
        assert writer.pending > 0

        received = bytearray()

        async def reader() -> None:
            os.set_blocking(out_pipe.read_fd, False)
            while len(received) < len(payload):
                try:
                    received.extend(os.read(out_pipe.read_fd, 65536))
                except BlockingIOError:
                    await asyncio.sleep(0.001)

        await asyncio.wait_for(asyncio.gather(writer.wait_drained(), reader()), timeout=5)
        writer.detach()
    assert bytes(received) == payload


def test_log_records_queue_behind_pending_output() -> None:
    loop = _FakeLoop()
    sink = _ChokedWrite(0)
    writer = AsyncWriter(loop=loop, write=sink)
    with logs_through(writer, 2):
        writer.write(2, b"calling hello/ping failed\n")
        logger.warning("late record")
    assert 2 not in sink.output

    sink.budget = 10_000
    loop.fire(2)
    text = bytes(sink.output[2]).decode()
    assert text.startswith("calling hello/ping failed\n")
    assert "late record" in text
    assert writer.pending == 0
