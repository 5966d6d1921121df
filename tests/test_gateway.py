from __future__ import annotations

import asyncio

import httpx
import pytest

from conftest import FakeGraphQLApi, FakeGraphQLWebSocketServer, wait_for
from pixai_client.config import PixAIClientConfig
from pixai_client.errors import ApiError
from pixai_client.gateway import GraphQLGateway, operation_name
from pixai_client.operations import GET_TASK, SUBSCRIBE_PERSONAL_EVENTS, UPLOAD_MEDIA, is_subscription
from pixai_client.websocket import SubscriptionStream


def _gateway(api: FakeGraphQLApi, ws_server: FakeGraphQLWebSocketServer | None = None) -> GraphQLGateway:
    config = PixAIClientConfig(api_key="secret", api_base_url="https://api.test", web_socket_base_url="wss://gw.test")
    return GraphQLGateway(
        config,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(api.handler)),
        websocket_connect=ws_server.connect if ws_server else None,
    )


def test_operation_names() -> None:
    assert operation_name(GET_TASK) == "getTaskById"
    assert operation_name(UPLOAD_MEDIA) == "uploadMedia"
    assert operation_name(SUBSCRIBE_PERSONAL_EVENTS) == "subscribePersonalEvents"
    assert is_subscription(SUBSCRIBE_PERSONAL_EVENTS)
    assert not is_subscription(GET_TASK)


@pytest.mark.asyncio
async def test_request_posts_document_with_auth_headers(api: FakeGraphQLApi) -> None:
    api.data("getTaskById", {"task": {"id": "t-1", "status": "running"}})
    gateway = _gateway(api)

    data = await gateway.request(GET_TASK, {"id": "t-1"})

    assert data == {"task": {"id": "t-1", "status": "running"}}
    request = api.requests[0]
    assert str(request.url) == "https://api.test/graphql"
    assert request.headers["authorization"] == "Bearer secret"
    assert request.headers["content-type"] == "application/json"
    assert request.headers["user-agent"] == "PixAIApiClient/1.0.0"
    assert api.calls("getTaskById") == [{"id": "t-1"}]


@pytest.mark.asyncio
async def test_graphql_errors_raise_api_error(api: FakeGraphQLApi) -> None:
    api.body("getTaskById", {"data": None, "errors": [{"message": "Task not found"}]})
    gateway = _gateway(api)

    with pytest.raises(ApiError) as excinfo:
        await gateway.request(GET_TASK, {"id": "missing"})

    assert excinfo.value.message == "Task not found"
    assert excinfo.value.status == 200
    assert excinfo.value.errors == [{"message": "Task not found"}]


@pytest.mark.asyncio
async def test_top_level_message_raises_api_error(api: FakeGraphQLApi) -> None:
    api.body("getTaskById", {"message": "Unauthorized"}, status=401)
    gateway = _gateway(api)

    with pytest.raises(ApiError) as excinfo:
        await gateway.request(GET_TASK, {"id": "t"})

    assert excinfo.value.message == "Unauthorized"
    assert excinfo.value.status == 401
    assert excinfo.value.response is not None


@pytest.mark.asyncio
async def test_http_failure_without_body_raises(api: FakeGraphQLApi) -> None:
    api.body("getTaskById", {}, status=502)
    gateway = _gateway(api)

    with pytest.raises(ApiError) as excinfo:
        await gateway.request(GET_TASK, {"id": "t"})
    assert excinfo.value.status == 502


@pytest.mark.asyncio
async def test_non_json_response_raises_api_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="upstream exploded")

    config = PixAIClientConfig(api_key="secret")
    gateway = GraphQLGateway(config, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    with pytest.raises(ApiError) as excinfo:
        await gateway.request(GET_TASK, {"id": "t"})
    assert excinfo.value.status == 500


@pytest.mark.asyncio
async def test_api_error_raised_before_any_socket_opens(
    api: FakeGraphQLApi, ws_server: FakeGraphQLWebSocketServer
) -> None:
    api.body("getTaskById", {"errors": [{"message": "boom"}]})
    gateway = _gateway(api, ws_server)

    with pytest.raises(ApiError):
        await gateway.send(GET_TASK, {"id": "t"})
    assert ws_server.connect_count == 0


@pytest.mark.asyncio
async def test_send_routes_subscriptions_to_channel(
    api: FakeGraphQLApi, ws_server: FakeGraphQLWebSocketServer
) -> None:
    gateway = _gateway(api, ws_server)
    stream = gateway.send(SUBSCRIBE_PERSONAL_EVENTS)
    assert isinstance(stream, SubscriptionStream)
    assert ws_server.connect_count == 0

    iterator = stream.__aiter__()
    first = iterator.__anext__()
    pending = asyncio.ensure_future(first)
    await wait_for(lambda: ws_server.subscription_ids())

    socket = ws_server.socket
    assert socket.url == "wss://gw.test/graphql"
    assert socket.subprotocols == ("graphql-transport-ws",)
    assert socket.sent[0] == {"type": "connection_init", "payload": {"token": "secret"}}
    assert socket.sent[1]["payload"]["query"] == SUBSCRIBE_PERSONAL_EVENTS

    ws_server.emit({"personalEvents": {"taskUpdated": None}})
    assert await pending == {"personalEvents": {"taskUpdated": None}}
    await stream.aclose()
    assert ws_server.socket.subscriptions == {}
    gateway.terminate()


@pytest.mark.asyncio
async def test_one_channel_per_gateway(api: FakeGraphQLApi, ws_server: FakeGraphQLWebSocketServer) -> None:
    channels: set = set()
    config = PixAIClientConfig(api_key="secret")
    gateway = GraphQLGateway(
        config,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(api.handler)),
        websocket_connect=ws_server.connect,
        channels=channels,
    )
    assert gateway.channel is gateway.channel
    assert channels == {gateway.channel}

    first = gateway.channel
    gateway.terminate()
    assert first.closed
    assert channels == set()
    assert gateway.channel is not first


@pytest.mark.asyncio
async def test_transfer_and_fetch(api: FakeGraphQLApi) -> None:
    api.file("https://cdn.test/a.png", b"png-bytes")
    gateway = _gateway(api)

    response = await gateway.fetch("https://cdn.test/a.png")
    assert response.content == b"png-bytes"

    await gateway.transfer("PUT", "https://upload.test/slot", content=b"raw", headers={"Content-Type": "image/png"})
    assert api.transfers[0].method == "PUT"
    assert api.transfers[0].content == b"raw"

    with pytest.raises(httpx.HTTPStatusError):
        await gateway.fetch("https://cdn.test/missing.png")
