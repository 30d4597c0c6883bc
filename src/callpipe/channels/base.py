"""RPC channel contract."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True)
class CallResult:
    """Outcome of one remote call.

    `body` is the decoded reply value; `error` is None on success. `refused`
    marks calls the channel would not even send.
    """

    body: Any = None
    error: str | None = None
    info: str | None = None
    refused: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failed(cls, reason: str, *, refused: bool = False) -> CallResult:
        return cls(body=None, error=reason, refused=refused)


@dataclass(frozen=True)
class Incoming:
    """Unsolicited message pushed by the peer: an event or a call to us."""

    kind: str  # event|call
    name: str
    body: Any = None


class RpcChannel(Protocol):
    """Contract of the connection a session sends its commands through.

    `call()` raises `ChannelError` when the call cannot even be enqueued,
    otherwise it returns a future resolved once on the running loop.
    """

    def call(self, api: str | None, verb: str, payload: str, *, correlation: str) -> asyncio.Future[CallResult]: ...

    def send_event(self, name: str, payload: str) -> None: ...

    def on_hangup(self, callback: Callable[[], None]) -> None: ...

    def on_incoming(self, callback: Callable[[Incoming], None]) -> None: ...

    async def close(self) -> None: ...
