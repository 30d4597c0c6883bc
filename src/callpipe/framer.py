"""Split a non-blocking byte stream into command lines."""

from __future__ import annotations

import os
from collections.abc import Callable
from typing import NamedTuple

from loguru import logger

from callpipe.errors import InputError, LineOverflowError

DEFAULT_CHUNK_SIZE = 16384


class Pull(NamedTuple):
    """Lines extracted by one read cycle."""

    lines: list[str]
    eof: bool = False


class LineFramer:
    """Turn reads from one descriptor into newline-terminated lines.

    Every `pull()` performs a single non-blocking read. Bytes that do not yet
    hold a full line stay in an accumulator and are prepended to the next
    read, so a line may span any number of reads. `max_line_bytes` of 0
    leaves line length unbounded.
    """

    def __init__(
        self,
        fd: int,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        max_line_bytes: int = 0,
        read: Callable[[int, int], bytes] = os.read,
    ) -> None:
        self.fd = fd
        self.chunk_size = chunk_size
        self.max_line_bytes = max_line_bytes
        self._read = read
        self._pending = bytearray()
        self._eof = False

    @property
    def eof(self) -> bool:
        return self._eof

    @property
    def buffered(self) -> int:
        """Number of bytes held that are not yet part of a complete line."""
        return len(self._pending)

    def pull(self) -> Pull:
        if self._eof:
            return Pull([], eof=False)
        try:
            chunk = self._read(self.fd, self.chunk_size)
        except BlockingIOError:
            return Pull([])
        except OSError as exc:
            raise InputError(f"read error: {exc.strerror or exc}") from exc

        if not chunk:
            self._eof = True
            lines = []
            if self._pending:
                # an unterminated last line is still a line
                lines.append(_decode(bytes(self._pending)))
                self._pending.clear()
            logger.debug("framer.eof fd={} final_lines={}", self.fd, len(lines))
            return Pull(lines, eof=True)

        return Pull(self._extract(chunk))

    def _extract(self, chunk: bytes) -> list[str]:
        lines: list[str] = []
        start = 0
        end = chunk.find(b"\n")
        while end >= 0:
            if self._pending:
                self._pending += chunk[start:end]
                raw = bytes(self._pending)
                self._pending.clear()
            else:
                raw = chunk[start:end]
            self._check_length(len(raw))
            lines.append(_decode(raw))
            start = end + 1
            end = chunk.find(b"\n", start)

        if start < len(chunk):
            self._pending += chunk[start:]
            self._check_length(len(self._pending))
        return lines

    def _check_length(self, size: int) -> None:
        if self.max_line_bytes and size > self.max_line_bytes:
            raise LineOverflowError(f"line longer than {self.max_line_bytes} bytes")


def _decode(raw: bytes) -> str:
    if raw.endswith(b"\r"):
        raw = raw[:-1]
    return raw.decode("utf-8", errors="replace")
