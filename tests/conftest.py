import asyncio
import json
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest
from websockets.exceptions import ConnectionClosedError
from websockets.frames import Close

# Ensure repository root (where pixai_client lives) is on sys.path for test imports.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from pixai_client import PixAIClient  # noqa: E402
from pixai_client.gateway import operation_name  # noqa: E402

API_BASE_URL = "https://api.test"
WS_BASE_URL = "wss://gw.test"


async def wait_for(predicate: Callable[[], Any], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


def task_payload(task_id: str, status: str, outputs: dict[str, Any] | None = None) -> dict[str, Any]:
    return {"id": task_id, "status": status, "outputs": outputs, "parameters": {}}


def media_payload(media_id: str, *, public: bool = True) -> dict[str, Any]:
    urls = [{"variant": "THUMBNAIL", "url": f"https://cdn.test/{media_id}/thumb.webp"}]
    if public:
        urls.append({"variant": "PUBLIC", "url": f"https://cdn.test/{media_id}.png"})
    return {"id": media_id, "type": "IMAGE", "width": 512, "height": 512, "urls": urls}


# ---------------------------------------------------------------------------
# GraphQL over HTTP
# ---------------------------------------------------------------------------


class FakeGraphQLApi:
    """httpx transport answering GraphQL operations by name and raw file URLs."""

    def __init__(self) -> None:
        self.operations: list[tuple[str | None, dict[str, Any]]] = []
        self.requests: list[httpx.Request] = []
        self.transfers: list[httpx.Request] = []
        self._graphql: dict[str, Callable[[dict[str, Any]], tuple[int, Any]]] = {}
        self._files: dict[str, tuple[int, bytes, dict[str, str]]] = {}

    def data(self, operation: str, data: dict[str, Any] | Callable[[dict[str, Any]], dict[str, Any]]) -> None:
        def _respond(variables: dict[str, Any]) -> tuple[int, Any]:
            value = data(variables) if callable(data) else data
            return 200, {"data": value}

        self._graphql[operation] = _respond

    def body(self, operation: str, body: Any, *, status: int = 200) -> None:
        self._graphql[operation] = lambda _variables: (status, body)

    def file(self, url: str, content: bytes, *, content_type: str = "image/png", status: int = 200) -> None:
        self._files[url] = (status, content, {"content-type": content_type})

    def calls(self, operation: str) -> list[dict[str, Any]]:
        return [variables for name, variables in self.operations if name == operation]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/graphql" and request.method == "POST":
            payload = json.loads(request.content)
            name = operation_name(payload["query"])
            self.operations.append((name, payload.get("variables") or {}))
            respond = self._graphql.get(name or "")
            if respond is None:
                return httpx.Response(200, json={"errors": [{"message": f"unexpected operation {name}"}]})
            status, body = respond(payload.get("variables") or {})
            return httpx.Response(status, json=body)
        if request.method in {"PUT", "POST"}:
            self.transfers.append(request)
            return httpx.Response(200)
        entry = self._files.get(str(request.url))
        if entry is None:
            return httpx.Response(404)
        status, content, headers = entry
        return httpx.Response(status, content=content, headers=headers)


# ---------------------------------------------------------------------------
# graphql-transport-ws server
# ---------------------------------------------------------------------------


class FakeSocket:
    def __init__(self, server: "FakeGraphQLWebSocketServer", url: str, subprotocols: tuple[str, ...]) -> None:
        self.server = server
        self.url = url
        self.subprotocols = subprotocols
        self.sent: list[dict[str, Any]] = []
        self.subscriptions: dict[str, dict[str, Any]] = {}
        self.close_code: int | None = None
        self.close_reason: str | None = None
        self._incoming: asyncio.Queue[Any] = asyncio.Queue()
        self._closed: ConnectionClosedError | None = None

    @property
    def closed(self) -> bool:
        return self._closed is not None

    async def send(self, message: str) -> None:
        if self._closed is not None:
            raise self._closed
        decoded = json.loads(message)
        self.sent.append(decoded)
        self.server.handle(self, decoded)

    async def recv(self) -> str:
        if self._closed is not None and self._incoming.empty():
            raise self._closed
        item = await self._incoming.get()
        if isinstance(item, ConnectionClosedError):
            raise item
        return item

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.close_code is None:
            self.close_code = code
            self.close_reason = reason
        self.drop(code, reason)

    def push(self, message: dict[str, Any]) -> None:
        self._incoming.put_nowait(json.dumps(message))

    def push_raw(self, raw: str | bytes) -> None:
        self._incoming.put_nowait(raw)

    def drop(self, code: int, reason: str = "") -> None:
        if self._closed is not None:
            return
        frame = Close(code, reason)
        self._closed = ConnectionClosedError(frame, None)
        self._incoming.put_nowait(self._closed)


class FakeGraphQLWebSocketServer:
    def __init__(self, *, auto_ack: bool = True) -> None:
        self.auto_ack = auto_ack
        self.sockets: list[FakeSocket] = []
        self.connect_error: BaseException | None = None

    async def connect(self, url: str, subprotocols: Any) -> FakeSocket:
        if self.connect_error is not None:
            raise self.connect_error
        socket = FakeSocket(self, url, tuple(subprotocols))
        self.sockets.append(socket)
        return socket

    @property
    def socket(self) -> FakeSocket:
        return self.sockets[-1]

    @property
    def connect_count(self) -> int:
        return len(self.sockets)

    def handle(self, socket: FakeSocket, message: dict[str, Any]) -> None:
        kind = message.get("type")
        if kind == "connection_init" and self.auto_ack:
            socket.push({"type": "connection_ack"})
        elif kind == "subscribe":
            socket.subscriptions[message["id"]] = message["payload"]
        elif kind == "complete":
            socket.subscriptions.pop(message["id"], None)

    def subscription_ids(self) -> list[str]:
        if not self.sockets or self.socket.closed:
            return []
        return list(self.socket.subscriptions)

    def emit(self, data: dict[str, Any], *, subscription_id: str | None = None) -> None:
        socket = self.socket
        if subscription_id is None:
            (subscription_id,) = socket.subscriptions
        socket.push({"id": subscription_id, "type": "next", "payload": {"data": data}})

    def emit_task(self, task_id: str, status: str, outputs: dict[str, Any] | None = None) -> None:
        self.emit({"personalEvents": {"taskUpdated": task_payload(task_id, status, outputs)}})


@pytest.fixture
def api() -> FakeGraphQLApi:
    return FakeGraphQLApi()


@pytest.fixture
def ws_server() -> FakeGraphQLWebSocketServer:
    return FakeGraphQLWebSocketServer()


@pytest.fixture
def client(api: FakeGraphQLApi, ws_server: FakeGraphQLWebSocketServer) -> PixAIClient:
    return PixAIClient(
        "test-key",
        api_base_url=API_BASE_URL,
        web_socket_base_url=WS_BASE_URL,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(api.handler)),
        websocket_connect=ws_server.connect,
    )
