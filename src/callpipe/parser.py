"""Command line parsing."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from callpipe.errors import CommandParseError

COMMENT_PREFIX = "#"
ESCAPE_PREFIX = "!"
EVENT_API = "!"
SEPARATORS = " \t"


class CommandKind(StrEnum):
    CALL = "call"
    EVENT = "event"
    SHELL = "shell"


@dataclass(frozen=True)
class Command:
    """One parsed command line.

    `api` is None in direct mode. For events `verb` holds the event name and
    for shell escapes `payload` holds the shell command line.
    """

    kind: CommandKind
    verb: str
    api: str | None = None
    payload: str = ""
    raw: str = ""

    @property
    def target(self) -> str:
        if self.api is None:
            return self.verb
        return f"{self.api}/{self.verb}"


def _split_field(text: str) -> tuple[str, str]:
    """Split off the first whitespace-delimited field."""
    text = text.lstrip(SEPARATORS)
    for index, char in enumerate(text):
        if char in SEPARATORS:
            return text[:index], text[index:].lstrip(SEPARATORS)
    return text, ""


def parse_command(line: str, *, direct: bool = False) -> Command | None:
    """Parse one line into a `Command`.

    Returns None for blank and comment lines. Raises `CommandParseError` when
    the verb is missing.
    """

    first, rest = _split_field(line)
    if not first or first.startswith(COMMENT_PREFIX):
        return None

    if first.startswith(ESCAPE_PREFIX) and len(first) > 1:
        shell_line = line.lstrip(SEPARATORS)[len(ESCAPE_PREFIX) :]
        return Command(kind=CommandKind.SHELL, verb=first[1:], payload=shell_line, raw=line)

    if direct:
        if first == EVENT_API:
            raise CommandParseError(f"events need an api, bad line: {line}")
        return Command(kind=CommandKind.CALL, verb=first, payload=rest.rstrip(), raw=line)

    verb, payload = _split_field(rest)
    if not verb:
        raise CommandParseError(f"verb missing, bad line: {line}")
    if first == EVENT_API:
        return Command(kind=CommandKind.EVENT, verb=verb, payload=payload.rstrip(), raw=line)
    return Command(kind=CommandKind.CALL, api=first, verb=verb, payload=payload.rstrip(), raw=line)


def command_from_args(args: list[str], *, direct: bool = False) -> Command:
    """Build a `Command` from separate invocation arguments.

    The fields are taken as given: `API VERB [DATA]`, or `VERB [DATA]` in
    direct mode. Nothing is a shell escape here and an api of `!` names an
    event.
    """

    if direct:
        verb, *rest = args
        return Command(kind=CommandKind.CALL, verb=verb, payload=" ".join(rest), raw=" ".join(args))
    api, verb, *rest = args
    kind = CommandKind.EVENT if api == EVENT_API else CommandKind.CALL
    return Command(
        kind=kind,
        api=None if kind == CommandKind.EVENT else api,
        verb=verb,
        payload=" ".join(rest),
        raw=" ".join(args),
    )
