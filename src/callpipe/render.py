"""Output formatting for replies, events and echoed commands."""

from __future__ import annotations

import json
from typing import Any

from rich.console import Console
from rich.json import JSON

from callpipe.channels.base import CallResult, Incoming
from callpipe.parser import Command, CommandKind


def _compact(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


class Renderer:
    """Format messages as text ready for the writer.

    Raw output prints one compact JSON document per line; human output adds
    a header line and pretty JSON. Every method returns the complete text,
    newline terminated, or an empty string when nothing is to be shown.
    """

    def __init__(self, *, human: bool = False, raw: bool = False, quiet: bool = False, color: bool = False) -> None:
        self.human = human
        self.raw = raw or not human
        self.quiet = quiet
        self._console = Console(force_terminal=color, no_color=not color, width=120, soft_wrap=True)

    def _pretty(self, value: Any) -> str:
        if value is None:
            return "null\n"
        with self._console.capture() as capture:
            self._console.print(JSON.from_data(value, ensure_ascii=False))
        return capture.get()

    def reply(self, correlation: str, result: CallResult) -> str:
        if self.quiet and result.ok:
            return ""
        parts: list[str] = []
        if self.raw:
            parts.append(_compact(result.body) + "\n")
        if self.human:
            status = "OK" if result.ok else "ERROR"
            detail = "" if result.ok else f" {result.error}"
            info = f" {result.info}" if result.info else ""
            parts.append(f"ON-REPLY {correlation}: {status}{detail}{info}\n")
            parts.append(self._pretty(result.body))
        return "".join(parts)

    def incoming(self, message: Incoming) -> str:
        parts: list[str] = []
        if self.raw:
            parts.append(_compact(message.body) + "\n")
        if self.human:
            label = "ON-EVENT" if message.kind == "event" else "ON-CALL"
            parts.append(f"{label} {message.name}:\n")
            parts.append(self._pretty(message.body))
        return "".join(parts)

    def echo(self, command: Command) -> str:
        payload = command.payload or "null"
        if command.kind == CommandKind.EVENT:
            return f"SEND-EVENT: {command.verb} {payload}\n"
        return f"SEND-CALL {command.target} {payload}\n"

    def hangup(self) -> str:
        return "ON-HANGUP\n"

    def failure(self, message: str) -> str:
        return f"{message}\n"
