"""Submit parsed commands to the RPC channel."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from loguru import logger

from callpipe.channels.base import CallResult, RpcChannel
from callpipe.errors import ChannelError
from callpipe.parser import Command

CompletionHandler = Callable[[str, Command, CallResult], None]


class Dispatcher:
    """Send commands and route every completion back exactly once.

    Each call gets a correlation token `<seq>:<api>/<verb>` (or `<seq>:<verb>`
    in direct mode) that labels its reply, since replies may come back out of
    order. A call the channel refuses up front completes immediately with a
    failed result.
    """

    def __init__(self, channel: RpcChannel, on_complete: CompletionHandler) -> None:
        self._channel = channel
        self._on_complete = on_complete
        self._sequence = 0
        self._outstanding: dict[str, asyncio.Future[CallResult]] = {}

    @property
    def outstanding(self) -> int:
        return len(self._outstanding)

    def next_token(self, command: Command) -> str:
        self._sequence += 1
        return f"{self._sequence}:{command.target}"

    def submit(self, command: Command) -> str:
        """Send one call; the caller has already been admitted by the gate."""
        token = self.next_token(command)
        try:
            future = self._channel.call(command.api, command.verb, command.payload, correlation=token)
        except ChannelError as exc:
            logger.warning("dispatch.refused token={} error={}", token, exc)
            self._complete(
                token,
                command,
                CallResult.failed(f"calling {command.target}({command.payload}) failed: {exc}", refused=True),
            )
            return token

        logger.debug("dispatch.submit token={}", token)
        self._outstanding[token] = future
        future.add_done_callback(lambda done: self._settle(token, command, done))
        return token

    def emit(self, command: Command) -> None:
        """Send an event; nothing comes back."""
        self._channel.send_event(command.verb, command.payload)
        logger.debug("dispatch.event name={}", command.verb)

    def _settle(self, token: str, command: Command, future: asyncio.Future[CallResult]) -> None:
        self._outstanding.pop(token, None)
        if future.cancelled():
            result = CallResult.failed("cancelled")
        elif (exc := future.exception()) is not None:
            result = CallResult.failed(str(exc) or type(exc).__name__)
        else:
            result = future.result()
        self._complete(token, command, result)

    def _complete(self, token: str, command: Command, result: CallResult) -> None:
        logger.debug("dispatch.complete token={} ok={}", token, result.ok)
        self._on_complete(token, command, result)
