"""Array-framed JSON RPC over a websocket."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from contextlib import suppress
from typing import Any
from urllib.parse import urlencode, urlparse

import websockets
from loguru import logger
from websockets.asyncio.client import ClientConnection

from callpipe.channels.base import CallResult, Incoming
from callpipe.errors import ChannelError, ConnectError

CALL = 2
RETOK = 3
RETERR = 4
EVENT = 5

DEFAULT_SUBPROTOCOL = "x-afb-ws-json1"


def build_url(uri: str, *, token: str | None = None, uuid: str | None = None) -> str:
    """Complete a `host:port/path` uri into a websocket url carrying session parameters."""

    url = uri if "://" in uri else f"ws://{uri}"
    params = [(key, value) for key, value in (("uuid", uuid), ("token", token)) if value]
    if params:
        url += ("&" if "?" in url else "?") + urlencode(params)
    return url


def api_of(uri: str) -> str | None:
    """Last path segment of the uri, naming the api in direct mode."""

    url = uri if "://" in uri else f"ws://{uri}"
    path = urlparse(url).path.rstrip("/")
    name = path.rsplit("/", 1)[-1]
    return name or None


def encode_payload(payload: str) -> Any:
    text = payload.strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def _request_field(body: Any, key: str) -> str | None:
    if not isinstance(body, dict):
        return None
    request = body.get("request")
    if not isinstance(request, dict):
        return None
    value = request.get(key)
    return None if value is None else str(value)


class Wsj1Channel:
    """RPC channel exchanging JSON arrays over one websocket connection.

    Frames are `[2, id, "api/verb", data]` for calls, `[3, id, data]` and
    `[4, id, data]` for successful and failed replies, `[5, name, data]` for
    events.
    """

    def __init__(self, connection: ClientConnection, *, api: str | None = None) -> None:
        self._connection = connection
        self._api = api
        self._next_id = 0
        self._pending: dict[str, asyncio.Future[CallResult]] = {}
        self._sends: set[asyncio.Task[None]] = set()
        self._hangup_callbacks: list[Callable[[], None]] = []
        self._incoming_callbacks: list[Callable[[Incoming], None]] = []
        self._reader: asyncio.Task[None] | None = None
        self._closed = False
        self._closing = False

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        if self._reader is None:
            self._reader = asyncio.create_task(self._read_loop())

    def on_hangup(self, callback: Callable[[], None]) -> None:
        self._hangup_callbacks.append(callback)

    def on_incoming(self, callback: Callable[[Incoming], None]) -> None:
        self._incoming_callbacks.append(callback)

    def call(self, api: str | None, verb: str, payload: str, *, correlation: str) -> asyncio.Future[CallResult]:
        if self._closed:
            raise ChannelError("connection closed")
        api = api or self._api
        if not api:
            raise ChannelError(f"no api to address {verb} to")

        self._next_id += 1
        msg_id = str(self._next_id)
        future: asyncio.Future[CallResult] = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = future
        logger.debug("wsj1.call id={} correlation={} target={}/{}", msg_id, correlation, api, verb)
        self._send([CALL, msg_id, f"{api}/{verb}", encode_payload(payload)], msg_id=msg_id)
        return future

    def send_event(self, name: str, payload: str) -> None:
        if self._closed:
            raise ChannelError("connection closed")
        self._send([EVENT, name, encode_payload(payload)])

    async def close(self) -> None:
        self._closing = True
        await self._connection.close()
        if self._reader is not None:
            with suppress(asyncio.CancelledError):
                await self._reader

    def _send(self, frame: list[Any], *, msg_id: str | None = None) -> None:
        text = json.dumps(frame, ensure_ascii=False)
        task = asyncio.create_task(self._connection.send(text))
        self._sends.add(task)
        task.add_done_callback(lambda done: self._sent(done, msg_id))

    def _sent(self, task: asyncio.Task[None], msg_id: str | None) -> None:
        self._sends.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        logger.warning("wsj1.send.error id={} error={}", msg_id, exc)
        if msg_id is not None:
            self._resolve(msg_id, CallResult.failed(f"sending failed: {exc}"))

    def _resolve(self, msg_id: str, result: CallResult) -> None:
        future = self._pending.pop(msg_id, None)
        if future is None or future.done():
            logger.warning("wsj1.reply.unexpected id={}", msg_id)
            return
        future.set_result(result)

    async def _read_loop(self) -> None:
        try:
            async for message in self._connection:
                self._handle_frame(message)
        except websockets.ConnectionClosed as exc:
            logger.debug("wsj1.closed reason={}", exc)
        finally:
            self._closed = True
            if not self._closing:
                self._hangup()
            for msg_id in list(self._pending):
                self._resolve(msg_id, CallResult.failed("connection closed"))

    def _hangup(self) -> None:
        callbacks, self._hangup_callbacks = self._hangup_callbacks, []
        for callback in callbacks:
            callback()

    def _handle_frame(self, message: str | bytes) -> None:
        try:
            frame = json.loads(message)
        except json.JSONDecodeError:
            logger.warning("wsj1.frame.invalid message={!r}", message)
            return
        if not isinstance(frame, list) or len(frame) < 2:
            logger.warning("wsj1.frame.invalid message={!r}", message)
            return

        code = frame[0]
        if code in (RETOK, RETERR):
            body = frame[2] if len(frame) > 2 else None
            error = None
            if code == RETERR:
                error = _request_field(body, "status") or "error"
            self._resolve(str(frame[1]), CallResult(body=body, error=error, info=_request_field(body, "info")))
        elif code == EVENT:
            self._notify(Incoming(kind="event", name=str(frame[1]), body=frame[2] if len(frame) > 2 else None))
        elif code == CALL and len(frame) > 2:
            self._notify(Incoming(kind="call", name=str(frame[2]), body=frame[3] if len(frame) > 3 else None))
            self._send([RETERR, frame[1], "unimplemented"])
        else:
            logger.warning("wsj1.frame.unknown code={}", code)

    def _notify(self, message: Incoming) -> None:
        for callback in self._incoming_callbacks:
            callback(message)


async def connect(
    uri: str,
    *,
    token: str | None = None,
    uuid: str | None = None,
    direct: bool = False,
    subprotocol: str = DEFAULT_SUBPROTOCOL,
    timeout: float = 10.0,
) -> Wsj1Channel:
    """Open the websocket and start reading replies."""

    url = build_url(uri, token=token, uuid=uuid)
    try:
        connection = await websockets.connect(url, subprotocols=[subprotocol], open_timeout=timeout)
    except (OSError, TimeoutError, websockets.WebSocketException) as exc:
        raise ConnectError(f"connection to {uri} failed: {exc}") from exc

    channel = Wsj1Channel(connection, api=api_of(uri) if direct else None)
    channel.start()
    logger.info("wsj1.connected url={}", url)
    return channel
