"""Command line entry point for callpipe."""

from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass

import typer

from callpipe.channels import connect
from callpipe.config import Settings, get_settings
from callpipe.errors import ConnectError, ExitStatus
from callpipe.logging_utils import configure_logging, logs_through
from callpipe.parser import Command, command_from_args
from callpipe.render import Renderer
from callpipe.session import STDERR, STDOUT, PipeOptions, PipeSession
from callpipe.sources import FdLineSource, PromptLineSource, terminal_write
from callpipe.writer import AsyncWriter

STDIN = 0

app = typer.Typer(
    name="callpipe",
    help="Send commands read from stdin, or given as arguments, as remote calls.",
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)


@dataclass(frozen=True)
class OutputOptions:
    human: bool = False
    raw: bool = False
    quiet: bool = False


def _request_command(request: list[str], *, direct: bool) -> Command | None:
    """Command given as arguments, None when stdin is to be read."""
    allowed = (0, 1, 2) if direct else (0, 2, 3)
    if len(request) not in allowed:
        usage = "URI [VERB [DATA]]" if direct else "URI [API VERB [DATA]]"
        typer.echo(f"usage: callpipe {'-d ' if direct else ''}[options]... {usage}", err=True)
        raise typer.Exit(int(ExitStatus.BAD_ARG))
    if not request:
        return None
    return command_from_args(request, direct=direct)


async def _run_pipe(
    uri: str,
    command: Command | None,
    options: PipeOptions,
    output: OutputOptions,
    settings: Settings,
    *,
    token: str | None,
    uuid: str | None,
    interactive: bool,
) -> ExitStatus:
    try:
        channel = await connect(
            uri,
            token=token,
            uuid=uuid,
            direct=options.direct,
            subprotocol=settings.subprotocol,
            timeout=settings.connect_timeout_seconds,
        )
    except ConnectError as exc:
        typer.echo(str(exc), err=True)
        return ExitStatus.CANT_CONNECT

    renderer = Renderer(
        human=output.human,
        raw=output.raw,
        quiet=output.quiet,
        color=output.human and sys.stdout.isatty(),
    )
    prompt: PromptLineSource | None = None
    if command is None and interactive:
        # the prompt owns the terminal, output goes through its patched stdout
        writer = AsyncWriter(write=terminal_write)
    else:
        writer = AsyncWriter((STDOUT, STDERR))
    with writer, logs_through(writer, STDERR):
        session = PipeSession(channel, writer, renderer, options)
        if command is not None:
            session.run_command(command)
        elif interactive:
            prompt = PromptLineSource(session, history_file=settings.history_file)
            session.attach(prompt)
        else:
            session.attach(
                FdLineSource(
                    session,
                    STDIN,
                    chunk_size=settings.read_chunk_size,
                    max_line_bytes=settings.max_line_bytes,
                )
            )
        try:
            status = await session.run()
            if prompt is not None:
                await prompt.wait_closed()
        finally:
            await channel.close()
    return status


@app.command()
def run(
    uri: str = typer.Argument(..., help="Uri of the service, e.g. 'localhost:1234/api?token=HELLO'"),
    request: list[str] | None = typer.Argument(None, help="API VERB [DATA], or VERB [DATA] with --direct"),  # noqa: B008
    direct: bool = typer.Option(False, "--direct", "-d", help="Direct api: lines name the verb only"),
    echo: bool = typer.Option(False, "--echo", "-e", help="Echo inputs"),
    human: bool = typer.Option(False, "--human", "-H", help="Display human readable JSON"),
    raw: bool = typer.Option(False, "--raw", "-r", help="Raw output (default)"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Do not print successful replies"),
    keep_running: bool = typer.Option(
        False, "--keep-running", "-k", help="Keep running until disconnect, even if input closed"
    ),
    pipe: int = typer.Option(0, "--pipe", "-p", min=0, help="Allow COUNT requests in flight (0: unlimited)"),
    sync: bool = typer.Option(False, "--sync", "-s", help="Synchronous: wait for answers (like -p 1)"),
    break_after_send: bool = typer.Option(
        False, "--break", "-b", help="Break connection just after event/call has been emitted"
    ),
    token: str | None = typer.Option(None, "--token", "-t", help="The token to use"),
    uuid: str | None = typer.Option(None, "--uuid", "-u", help="The identifier of session to use"),
    interactive: bool = typer.Option(False, "--interactive", "-i", help="Read stdin with line editing and history"),
    max_line: int | None = typer.Option(None, "--max-line", min=0, help="Reject input lines longer than BYTES"),
) -> None:
    """Run commands against the service at URI."""

    settings = get_settings()
    if max_line is not None:
        settings = settings.model_copy(update={"max_line_bytes": max_line})
    configure_logging(settings.log_level)

    command = _request_command(request or [], direct=direct)
    ceiling = pipe or (1 if sync else 0)
    options = PipeOptions(
        direct=direct,
        ceiling=ceiling,
        keep_running=keep_running,
        echo=echo,
        break_after_send=break_after_send,
    )
    output = OutputOptions(human=human, raw=raw, quiet=quiet)
    status = asyncio.run(
        _run_pipe(uri, command, options, output, settings, token=token, uuid=uuid, interactive=interactive)
    )
    raise typer.Exit(int(status))


def main() -> None:
    app()
