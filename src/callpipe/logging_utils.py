"""Runtime logging helpers."""

from __future__ import annotations

import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from callpipe.writer import AsyncWriter

_FORMAT = "{time:HH:mm:ss.SSS} | {level:<7} | {name}:{function}:{line} | {message}"
_CONFIGURED_LEVEL: str | None = None


def _add_sink(sink, level: str) -> None:
    logger.remove()
    logger.add(
        sink,
        level=level,
        format=_FORMAT,
        backtrace=False,
        diagnose=False,
    )


def configure_logging(level: str = "WARNING") -> None:
    """Configure process-level logging once."""
    global _CONFIGURED_LEVEL
    level = level.upper()
    if level == _CONFIGURED_LEVEL:
        return

    _add_sink(sys.stderr, level)
    _CONFIGURED_LEVEL = level


@contextmanager
def logs_through(writer: AsyncWriter, fd: int) -> Iterator[None]:
    """Queue log records on `writer` while it owns `fd`.

    Records then keep their place among the bytes already queued there, and
    never hit a descriptor switched to non-blocking mode directly.
    """

    level = _CONFIGURED_LEVEL or "WARNING"

    def sink(message: str) -> None:
        if writer.error is None:
            writer.write(fd, str(message))
        else:
            sys.stderr.write(message)

    _add_sink(sink, level)
    try:
        yield
    finally:
        _add_sink(sys.stderr, level)
