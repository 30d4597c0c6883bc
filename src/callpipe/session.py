"""One command pipeline: lines in, remote calls out, results written back."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from loguru import logger

from callpipe.channels.base import CallResult, Incoming, RpcChannel
from callpipe.dispatcher import Dispatcher
from callpipe.errors import ChannelError, CommandParseError, ExitStatus, InvariantError
from callpipe.gate import Admission, InFlightGate
from callpipe.parser import Command, CommandKind, parse_command
from callpipe.render import Renderer
from callpipe.shell import run_shell_escape
from callpipe.sources import LineSource
from callpipe.writer import AsyncWriter

STDOUT = 1
STDERR = 2


@dataclass(frozen=True)
class PipeOptions:
    """Behaviour switches of a session."""

    direct: bool = False
    ceiling: int = 0
    keep_running: bool = False
    echo: bool = False
    break_after_send: bool = False


class PipeSession:
    """Wire line parsing, admission, dispatch and output for one connection.

    All state lives on the instance and is only touched from the event loop
    thread. `run()` resolves with the process exit status.
    """

    def __init__(
        self,
        channel: RpcChannel,
        writer: AsyncWriter,
        renderer: Renderer,
        options: PipeOptions | None = None,
        *,
        stdout: int = STDOUT,
        stderr: int = STDERR,
    ) -> None:
        self.options = options or PipeOptions()
        self.channel = channel
        self.writer = writer
        self.renderer = renderer
        self.stdout = stdout
        self.stderr = stderr
        self.status = ExitStatus.SUCCESS
        self.dispatcher = Dispatcher(channel, self._on_complete)
        self.gate = InFlightGate(
            self.options.ceiling,
            dispatch=self._submit,
            on_pause=self._pause_input,
            on_resume=self._resume_input,
        )
        self._source: LineSource | None = None
        self._input_open = False
        self._finished: asyncio.Future[ExitStatus] | None = None

        writer.set_error_handler(self._on_write_error)
        channel.on_hangup(self._on_hangup)
        channel.on_incoming(self._on_incoming)

    @property
    def finished(self) -> bool:
        return self._finished is not None and self._finished.done()

    def attach(self, source: LineSource) -> None:
        """Read commands from `source` until it reports end of input."""
        self._source = source
        self._input_open = True
        source.start()

    def run_command(self, command: Command) -> None:
        """Process a single command given on the invocation."""
        self._dispatch(command)
        self._maybe_finish()

    async def run(self) -> ExitStatus:
        status = await self._finish_future()
        if self._source is not None:
            self._source.stop()
        if status != ExitStatus.INTERNAL:
            await self.writer.wait_drained()
        self.writer.detach()
        logger.info("session.finished status={} peak_in_flight={}", status.name, self.gate.peak)
        return status

    def feed_line(self, line: str) -> None:
        if self.finished:
            return
        try:
            command = parse_command(line, direct=self.options.direct)
        except CommandParseError as exc:
            self.writer.write(self.stderr, self.renderer.failure(str(exc)))
            return
        if command is not None:
            self._dispatch(command)

    def _dispatch(self, command: Command) -> None:
        if command.kind == CommandKind.SHELL:
            self._run_shell(command)
        elif command.kind == CommandKind.EVENT:
            self._emit(command)
        elif self.gate.admit(command) == Admission.PROCEED:
            self._submit(command)

    def end_of_input(self) -> None:
        logger.debug("session.input.closed in_flight={} pending={}", self.gate.count, self.gate.pending)
        self._input_open = False
        self._maybe_finish()

    def abort(self, status: ExitStatus, message: str) -> None:
        self.writer.write(self.stderr, self.renderer.failure(message))
        self.finish(status)

    def finish(self, status: ExitStatus) -> None:
        future = self._finish_future()
        if not future.done():
            future.set_result(status)

    def _finish_future(self) -> asyncio.Future[ExitStatus]:
        if self._finished is None:
            self._finished = asyncio.get_running_loop().create_future()
        return self._finished

    def _maybe_finish(self) -> None:
        if self._input_open or self.options.keep_running:
            return
        if self.gate.idle:
            self.finish(self.status)

    def _submit(self, command: Command) -> None:
        if self.options.echo:
            self.writer.write(self.stdout, self.renderer.echo(command))
        self.dispatcher.submit(command)
        if self.options.break_after_send:
            self.finish(ExitStatus.SUCCESS)

    def _emit(self, command: Command) -> None:
        if self.options.echo:
            self.writer.write(self.stdout, self.renderer.echo(command))
        try:
            self.dispatcher.emit(command)
        except ChannelError as exc:
            self.writer.write(self.stderr, self.renderer.failure(f"sending !{command.verb}({command.payload}) failed: {exc}"))
        if self.options.break_after_send:
            self.finish(ExitStatus.SUCCESS)

    def _run_shell(self, command: Command) -> None:
        outcome = run_shell_escape(command.payload)
        self.writer.write(self.stdout, outcome.stdout)
        self.writer.write(self.stderr, outcome.stderr)
        logger.debug("session.shell returncode={}", outcome.returncode)

    def _on_complete(self, token: str, command: Command, result: CallResult) -> None:
        if not self.finished:
            self.status = ExitStatus.SUCCESS if result.ok else ExitStatus.ERROR
            if result.refused:
                self.writer.write(self.stderr, self.renderer.failure(result.error or "call refused"))
            else:
                self.writer.write(self.stdout, self.renderer.reply(token, result))
        try:
            self.gate.release()
        except InvariantError as exc:
            logger.error("session.invariant error={}", exc)
            self.finish(ExitStatus.INTERNAL)
            return
        self._maybe_finish()

    def _on_incoming(self, message: Incoming) -> None:
        if not self.finished:
            self.writer.write(self.stdout, self.renderer.incoming(message))

    def _on_hangup(self) -> None:
        if self.finished:
            return
        self.writer.write(self.stdout, self.renderer.hangup())
        self.finish(ExitStatus.HANGUP)

    def _on_write_error(self, fd: int, exc: OSError) -> None:
        logger.error("session.write.failed fd={} error={}", fd, exc)
        self.finish(ExitStatus.INTERNAL)

    def _pause_input(self) -> None:
        if self._source is not None:
            self._source.pause()

    def _resume_input(self) -> None:
        if self._source is not None and self._input_open:
            self._source.resume()
