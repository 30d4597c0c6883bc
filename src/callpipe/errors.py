"""Exception types and process exit statuses for callpipe."""

from __future__ import annotations

from enum import IntEnum


class ExitStatus(IntEnum):
    """Process exit statuses."""

    SUCCESS = 0
    ERROR = 1
    HANGUP = 2
    INPUT_FAIL = 3
    BAD_ARG = 4
    CANT_CONNECT = 5
    LINE_OVERFLOW = 6
    OUT_OF_MEMORY = 7
    INTERNAL = 8


class CallpipeError(Exception):
    """Base exception for callpipe."""


class InputError(CallpipeError):
    """Raised when the input descriptor fails with something other than would-block."""


class LineOverflowError(InputError):
    """Raised when a single line grows past the configured maximum."""


class CommandParseError(CallpipeError):
    """Raised when a command line is malformed."""


class ChannelError(CallpipeError):
    """Raised when the RPC channel cannot even enqueue a call or event."""


class ConnectError(CallpipeError):
    """Raised when the connection to the remote side cannot be established."""


class InvariantError(CallpipeError):
    """Raised when internal bookkeeping is found inconsistent."""
