"""graphql-transport-ws subscription channel with graceful restart."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .config import RESTART_CLOSE_CODE, RESTART_CLOSE_REASON
from .errors import ApiError, TransportError

logger = logging.getLogger("pixai_client.websocket")

GRAPHQL_TRANSPORT_WS = "graphql-transport-ws"
TERMINATED_CLOSE_CODE = 4499
TERMINATED_CLOSE_REASON = "Terminated"
ACK_TIMEOUT_CLOSE_CODE = 4408


class WebSocketConnection(Protocol):
    """The subset of a ``websockets`` client connection the channel relies on.

    ``recv`` must raise :class:`websockets.exceptions.ConnectionClosed` once
    the socket is closed.
    """

    async def send(self, message: str) -> None: ...

    async def recv(self) -> str | bytes: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...


WebSocketConnect = Callable[[str, Sequence[str]], Awaitable[WebSocketConnection]]


async def websockets_connect(url: str, subprotocols: Sequence[str]) -> WebSocketConnection:
    return await websockets.connect(url, subprotocols=list(subprotocols))


class SubscriptionObserver(Protocol):
    def on_next(self, data: dict[str, Any]) -> None: ...

    def on_error(self, error: BaseException) -> None: ...

    def on_complete(self) -> None: ...


def _close_details(exc: ConnectionClosed) -> tuple[int | None, str | None]:
    frame = exc.rcvd or exc.sent
    if frame is None:
        return 1006, None
    return frame.code, frame.reason


# ---------------------------------------------------------------------------
# Restart latch
# ---------------------------------------------------------------------------


class RestartMode(str, Enum):
    DEFERRED = "deferred"
    LIVE = "live"


class RestartLatch:
    """Two-mode restart state machine.

    ``DEFERRED`` until the first socket opens: restart requests only set the
    ``requested`` flag. ``opened`` switches to ``LIVE`` and consumes the flag.
    In ``LIVE`` mode a request runs the bound action when the socket is ready
    and latches again otherwise. The flag is a boolean, so any number of
    requests made while not ready collapse into one restart.
    """

    def __init__(self) -> None:
        self.mode = RestartMode.DEFERRED
        self.requested = False
        self._action: Callable[[], None] | None = None
        self._is_ready: Callable[[], bool] | None = None

    def request(self) -> None:
        if self.mode is RestartMode.LIVE and self._action is not None and self._ready():
            self._action()
            return
        self.requested = True

    def opened(self, action: Callable[[], None], is_ready: Callable[[], bool]) -> None:
        self.mode = RestartMode.LIVE
        self._action = action
        self._is_ready = is_ready
        if self.requested:
            self.requested = False
            self.request()

    def reset(self) -> None:
        """Back to ``DEFERRED`` once the socket is gone; a latched request is kept."""

        self.mode = RestartMode.DEFERRED
        self._action = None
        self._is_ready = None

    def _ready(self) -> bool:
        return self._is_ready is not None and self._is_ready()


# ---------------------------------------------------------------------------
# Channel
# ---------------------------------------------------------------------------


class ChannelState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    RESTARTING = "restarting"
    CLOSED = "closed"


@dataclass(slots=True)
class _ActiveSubscription:
    id: str
    payload: dict[str, Any]
    observer: SubscriptionObserver
    sent: bool = False


class SubscriptionHandle:
    """One logical subscription registered on a channel."""

    def __init__(self, channel: RestartableSubscriptionChannel, subscription_id: str) -> None:
        self._channel = channel
        self.id = subscription_id

    @property
    def active(self) -> bool:
        return self._channel.has_subscription(self.id)

    async def dispose(self) -> None:
        await self._channel.unsubscribe(self.id)


class RestartableSubscriptionChannel:
    """Multiplexes GraphQL subscriptions over one restartable socket.

    The socket is opened lazily by the first ``subscribe``. ``restart()``
    closes it with code 4205; the reader then reconnects and replays every
    active subscription under its original id, so observers never see the
    restart. Any other close fails every active observer with
    :class:`TransportError` and leaves the channel disconnected until the
    next ``subscribe``.
    """

    def __init__(
        self,
        url: str,
        *,
        connection_params: Mapping[str, Any] | Callable[[], Mapping[str, Any]] | None = None,
        connect: WebSocketConnect | None = None,
        ack_timeout_s: float | None = 10.0,
    ) -> None:
        self.url = url
        self._connection_params = connection_params
        self._connect = connect or websockets_connect
        self._ack_timeout_s = ack_timeout_s
        self._state = ChannelState.DISCONNECTED
        self._socket: WebSocketConnection | None = None
        self._reader: asyncio.Task[None] | None = None
        self._subscriptions: dict[str, _ActiveSubscription] = {}
        self._latch = RestartLatch()
        self._connect_lock = asyncio.Lock()
        self._closing: set[asyncio.Task[None]] = set()

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state is ChannelState.CLOSED

    @property
    def restart_latch(self) -> RestartLatch:
        return self._latch

    def has_subscription(self, subscription_id: str) -> bool:
        return subscription_id in self._subscriptions

    async def subscribe(self, payload: Mapping[str, Any], observer: SubscriptionObserver) -> SubscriptionHandle:
        if self._state is ChannelState.CLOSED:
            raise TransportError.closed(TERMINATED_CLOSE_CODE, TERMINATED_CLOSE_REASON)
        subscription = _ActiveSubscription(id=uuid.uuid4().hex, payload=dict(payload), observer=observer)
        self._subscriptions[subscription.id] = subscription
        try:
            await self._ensure_connected()
        except BaseException:
            self._subscriptions.pop(subscription.id, None)
            raise
        if not subscription.sent and subscription.id in self._subscriptions:
            await self._send_subscribe(subscription)
        logger.debug("subscription_registered", extra={"subscription_id": subscription.id})
        return SubscriptionHandle(self, subscription.id)

    async def unsubscribe(self, subscription_id: str) -> None:
        subscription = self._subscriptions.pop(subscription_id, None)
        if subscription is None:
            return
        socket = self._socket
        if subscription.sent and socket is not None and self._state is ChannelState.OPEN:
            await self._send(socket, {"id": subscription_id, "type": "complete"})
        logger.debug("subscription_disposed", extra={"subscription_id": subscription_id})

    def restart(self) -> None:
        self._latch.request()

    def terminate(self) -> None:
        """Close immediately and fail every active subscription."""

        if self._state is ChannelState.CLOSED:
            return
        self._state = ChannelState.CLOSED
        socket, self._socket = self._socket, None
        reader, self._reader = self._reader, None
        if reader is not None and not reader.done() and reader is not _current_task():
            reader.cancel()
        if socket is not None:
            self._schedule_close(socket, 1000, "Normal Closure")
        logger.info("websocket_terminated", extra={"url": self.url})
        self._fail_all(TransportError.closed(TERMINATED_CLOSE_CODE, TERMINATED_CLOSE_REASON))

    async def aclose(self) -> None:
        self.terminate()
        if self._closing:
            await asyncio.gather(*list(self._closing), return_exceptions=True)

    # -- connection ---------------------------------------------------------

    def _is_ready(self) -> bool:
        return self._state is ChannelState.OPEN and self._socket is not None

    def _mark_disconnected(self) -> None:
        if self._state is not ChannelState.CLOSED:
            self._state = ChannelState.DISCONNECTED

    def _params(self) -> dict[str, Any]:
        params = self._connection_params
        if callable(params):
            params = params()
        return dict(params or {})

    async def _ensure_connected(self) -> None:
        async with self._connect_lock:
            if self._state is ChannelState.CLOSED:
                raise TransportError.closed(TERMINATED_CLOSE_CODE, TERMINATED_CLOSE_REASON)
            if self._is_ready():
                return
            await self._open()

    async def _open(self) -> None:
        self._state = ChannelState.CONNECTING
        logger.debug("websocket_connecting", extra={"url": self.url})
        try:
            socket = await self._connect(self.url, (GRAPHQL_TRANSPORT_WS,))
        except (OSError, WebSocketException) as exc:
            self._mark_disconnected()
            raise TransportError(f"WebSocket error: {exc}") from exc

        try:
            await socket.send(json.dumps({"type": "connection_init", "payload": self._params()}))
            await asyncio.wait_for(self._await_ack(socket), self._ack_timeout_s)
        except ConnectionClosed as exc:
            self._mark_disconnected()
            raise TransportError.closed(*_close_details(exc)) from exc
        except TimeoutError as exc:
            self._mark_disconnected()
            self._schedule_close(socket, ACK_TIMEOUT_CLOSE_CODE, "Connection acknowledgement timeout")
            raise TransportError("WebSocket error: connection acknowledgement timeout") from exc

        if self._state is ChannelState.CLOSED:
            # terminated while the handshake was in flight
            self._schedule_close(socket, 1000, "Normal Closure")
            raise TransportError.closed(TERMINATED_CLOSE_CODE, TERMINATED_CLOSE_REASON)

        self._socket = socket
        self._state = ChannelState.OPEN
        # a fresh socket carries no subscriptions yet
        for subscription in self._subscriptions.values():
            subscription.sent = False
        self._reader = asyncio.create_task(self._read_loop(socket))
        logger.info("websocket_opened", extra={"url": self.url})

        self._latch.opened(self._restart_now, self._is_ready)
        for subscription in list(self._subscriptions.values()):
            if self._state is not ChannelState.OPEN:
                break
            if not subscription.sent:
                await self._send_subscribe(subscription)

    async def _await_ack(self, socket: WebSocketConnection) -> None:
        while True:
            message = _decode(await socket.recv())
            if message is None:
                continue
            kind = message.get("type")
            if kind == "connection_ack":
                return
            if kind == "ping":
                await socket.send(json.dumps({"type": "pong"}))

    def _restart_now(self) -> None:
        socket = self._socket
        if socket is None:
            return
        logger.info("websocket_restart", extra={"url": self.url})
        self._state = ChannelState.RESTARTING
        self._schedule_close(socket, RESTART_CLOSE_CODE, RESTART_CLOSE_REASON)

    def _schedule_close(self, socket: WebSocketConnection, code: int, reason: str) -> None:
        try:
            task = asyncio.ensure_future(socket.close(code, reason))
        except RuntimeError:
            # no running loop; the connection is dropped with its owner
            return
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    # -- reading ------------------------------------------------------------

    async def _read_loop(self, socket: WebSocketConnection) -> None:
        try:
            while True:
                message = _decode(await socket.recv())
                if message is None:
                    continue
                try:
                    await self._handle_message(socket, message)
                except Exception as exc:
                    logger.exception("websocket_message_failed", extra={"message_type": message.get("type")})
                    await self._handle_error(socket, exc)
                    return
        except ConnectionClosed as exc:
            code, reason = _close_details(exc)
            await self._handle_close(socket, code, reason)
        except (OSError, WebSocketException) as exc:
            await self._handle_error(socket, exc)

    async def _handle_message(self, socket: WebSocketConnection, message: dict[str, Any]) -> None:
        kind = message.get("type")
        subscription_id = message.get("id")
        if subscription_id is not None and not isinstance(subscription_id, str):
            logger.warning("websocket_invalid_message", extra={"message_type": kind})
            return
        if kind == "ping":
            await self._send(socket, {"type": "pong"})
            return
        if kind == "pong":
            return
        if kind == "next":
            subscription = self._subscriptions.get(subscription_id)
            if subscription is None:
                return
            payload = message.get("payload")
            if not isinstance(payload, Mapping):
                payload = {}
            errors = payload.get("errors")
            if errors:
                self._subscriptions.pop(subscription.id, None)
                await self._send(socket, {"id": subscription.id, "type": "complete"})
                _notify(subscription.observer.on_error, ApiError.from_graphql_errors(errors))
                return
            data = payload.get("data")
            if data is not None:
                _notify(subscription.observer.on_next, data)
            return
        if kind == "error":
            subscription = self._subscriptions.pop(subscription_id, None)
            if subscription is None:
                return
            errors = message.get("payload")
            if not isinstance(errors, list):
                errors = [errors] if isinstance(errors, Mapping) else []
            _notify(subscription.observer.on_error, ApiError.from_graphql_errors(errors))
            return
        if kind == "complete":
            subscription = self._subscriptions.pop(subscription_id, None)
            if subscription is not None:
                _notify(subscription.observer.on_complete)
            return
        logger.debug("websocket_message_ignored", extra={"message_type": kind})

    async def _handle_close(self, socket: WebSocketConnection, code: int | None, reason: str | None) -> None:
        if socket is not self._socket:
            return
        self._socket = None
        self._reader = None
        self._latch.reset()
        for subscription in self._subscriptions.values():
            subscription.sent = False
        if self._state is ChannelState.CLOSED:
            return

        restarting = self._state is ChannelState.RESTARTING or code == RESTART_CLOSE_CODE
        if restarting and self._subscriptions:
            logger.info("websocket_reconnecting", extra={"url": self.url, "code": code})
            self._state = ChannelState.RESTARTING
            try:
                await self._ensure_connected()
            except TransportError as exc:
                self._fail_all(exc)
            return

        self._mark_disconnected()
        if restarting:
            return
        logger.warning("websocket_closed", extra={"url": self.url, "code": code, "reason": reason})
        self._fail_all(TransportError.closed(code, reason))

    async def _handle_error(self, socket: WebSocketConnection, exc: BaseException) -> None:
        if socket is not self._socket:
            return
        self._socket = None
        self._reader = None
        self._latch.reset()
        self._mark_disconnected()
        self._schedule_close(socket, 1011, "Internal Error")
        logger.warning("websocket_error", extra={"url": self.url, "error": str(exc)})
        self._fail_all(TransportError(f"WebSocket error: {exc}"))

    # -- writing ------------------------------------------------------------

    async def _send(self, socket: WebSocketConnection, message: Mapping[str, Any]) -> bool:
        try:
            await socket.send(json.dumps(message))
        except ConnectionClosed:
            # the reader observes the close and decides what happens next
            return False
        return True

    async def _send_subscribe(self, subscription: _ActiveSubscription) -> None:
        socket = self._socket
        if socket is None or self._state is not ChannelState.OPEN:
            return
        subscription.sent = True
        sent = await self._send(
            socket,
            {"id": subscription.id, "type": "subscribe", "payload": subscription.payload},
        )
        if not sent:
            subscription.sent = False

    def _fail_all(self, error: TransportError) -> None:
        subscriptions = list(self._subscriptions.values())
        self._subscriptions.clear()
        for subscription in subscriptions:
            _notify(subscription.observer.on_error, error)


def _current_task() -> asyncio.Task[Any] | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


def _decode(raw: str | bytes) -> dict[str, Any] | None:
    try:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        message = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError):
        logger.warning("websocket_invalid_message")
        return None
    if not isinstance(message, dict):
        return None
    return message


def _notify(callback: Callable[..., None], *args: Any) -> None:
    try:
        callback(*args)
    except Exception:
        logger.exception("subscription_observer_failed")


# ---------------------------------------------------------------------------
# Async iteration
# ---------------------------------------------------------------------------


class SubscriptionStream:
    """Lazy async iterator over one subscription's ``data`` payloads.

    Nothing is sent until the first ``__anext__``. A GraphQL or transport
    failure is raised from the iterator; server completion ends it.
    """

    def __init__(self, channel: RestartableSubscriptionChannel, payload: Mapping[str, Any]) -> None:
        self._channel = channel
        self._payload = dict(payload)
        self._queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()
        self._handle: SubscriptionHandle | None = None
        self._done = False

    def on_next(self, data: dict[str, Any]) -> None:
        self._queue.put_nowait(("next", data))

    def on_error(self, error: BaseException) -> None:
        self._queue.put_nowait(("error", error))

    def on_complete(self) -> None:
        self._queue.put_nowait(("complete", None))

    def __aiter__(self) -> SubscriptionStream:
        return self

    async def __anext__(self) -> dict[str, Any]:
        if self._done:
            raise StopAsyncIteration
        if self._handle is None:
            self._handle = await self._channel.subscribe(self._payload, self)
        kind, value = await self._queue.get()
        if kind == "next":
            return value
        self._done = True
        if kind == "error":
            raise value
        raise StopAsyncIteration

    async def aclose(self) -> None:
        self._done = True
        if self._handle is not None:
            await self._handle.dispose()


__all__ = [
    "ChannelState",
    "GRAPHQL_TRANSPORT_WS",
    "RestartLatch",
    "RestartMode",
    "RestartableSubscriptionChannel",
    "SubscriptionHandle",
    "SubscriptionObserver",
    "SubscriptionStream",
    "TERMINATED_CLOSE_CODE",
    "WebSocketConnect",
    "WebSocketConnection",
    "websockets_connect",
]
