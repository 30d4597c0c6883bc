"""Line sources feeding a session: a raw descriptor or an interactive prompt."""

from __future__ import annotations

import asyncio
import os
import sys
from contextlib import suppress
from pathlib import Path
from typing import Protocol

from loguru import logger
from prompt_toolkit import PromptSession
from prompt_toolkit.history import FileHistory, InMemoryHistory
from prompt_toolkit.input import Input
from prompt_toolkit.output import Output
from prompt_toolkit.patch_stdout import patch_stdout

from callpipe.errors import ExitStatus, InputError, LineOverflowError
from callpipe.framer import DEFAULT_CHUNK_SIZE, LineFramer


class LineSink(Protocol):
    def feed_line(self, line: str) -> None: ...

    def end_of_input(self) -> None: ...

    def abort(self, status: ExitStatus, message: str) -> None: ...


class LineSource(Protocol):
    def start(self) -> None: ...

    def pause(self) -> None: ...

    def resume(self) -> None: ...

    def stop(self) -> None: ...


class FdLineSource:
    """Read lines from a non-blocking descriptor driven by loop readability."""

    def __init__(
        self,
        sink: LineSink,
        fd: int = 0,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        max_line_bytes: int = 0,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._sink = sink
        self._framer = LineFramer(fd, chunk_size=chunk_size, max_line_bytes=max_line_bytes)
        self._loop = loop
        self._reading = False
        self._paused = False
        self._stopped = False
        self._blocking: bool | None = None

    @property
    def fd(self) -> int:
        return self._framer.fd

    def start(self) -> None:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self._blocking = os.get_blocking(self.fd)
        os.set_blocking(self.fd, False)
        self._watch()

    def pause(self) -> None:
        self._paused = True
        self._unwatch()

    def resume(self) -> None:
        self._paused = False
        self._watch()

    def stop(self) -> None:
        self._stopped = True
        self._unwatch()
        if self._blocking is not None:
            os.set_blocking(self.fd, self._blocking)
            self._blocking = None

    def __enter__(self) -> FdLineSource:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def _watch(self) -> None:
        if self._reading or self._paused or self._stopped or self._framer.eof or self._loop is None:
            return
        self._loop.add_reader(self.fd, self._on_readable)
        self._reading = True

    def _unwatch(self) -> None:
        if not self._reading or self._loop is None:
            return
        self._loop.remove_reader(self.fd)
        self._reading = False

    def _on_readable(self) -> None:
        try:
            pull = self._framer.pull()
        except LineOverflowError as exc:
            self.stop()
            self._sink.abort(ExitStatus.LINE_OVERFLOW, str(exc))
            return
        except InputError as exc:
            self.stop()
            self._sink.abort(ExitStatus.INPUT_FAIL, str(exc))
            return
        except MemoryError:
            self.stop()
            self._sink.abort(ExitStatus.OUT_OF_MEMORY, "out of memory")
            return

        for line in pull.lines:
            self._sink.feed_line(line)
        if pull.eof:
            self._unwatch()
            self._sink.end_of_input()


class PromptLineSource:
    """Interactive lines from prompt_toolkit, with history and line editing."""

    def __init__(
        self,
        sink: LineSink,
        *,
        history_file: Path | None = None,
        message: str = "> ",
        input: Input | None = None,
        output: Output | None = None,
    ) -> None:
        self._sink = sink
        self._message = message
        history = FileHistory(str(history_file)) if history_file else InMemoryHistory()
        self._session: PromptSession[str] = PromptSession(history=history, input=input, output=output)
        self._admitting = asyncio.Event()
        self._admitting.set()
        self._task: asyncio.Task[None] | None = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    def pause(self) -> None:
        self._admitting.clear()

    def resume(self) -> None:
        self._admitting.set()

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _run(self) -> None:
        with patch_stdout(raw=True):
            while True:
                await self._admitting.wait()
                try:
                    line = await self._session.prompt_async(self._message)
                except (EOFError, KeyboardInterrupt):
                    logger.debug("prompt.eof")
                    self._sink.end_of_input()
                    return
                self._sink.feed_line(line)

    async def wait_closed(self) -> None:
        if self._task is None:
            return
        with suppress(asyncio.CancelledError):
            await self._task


def terminal_write(fd: int, data: memoryview) -> int:
    """Writer backend for interactive sessions.

    Goes through `sys.stdout` or `sys.stderr`, which the prompt patches while
    it is active, so replies land above the edit line instead of over it.
    """

    stream = sys.stderr if fd == 2 else sys.stdout
    stream.write(bytes(data).decode("utf-8", errors="replace"))
    stream.flush()
    return len(data)
