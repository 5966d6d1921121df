"""Single entry point for every GraphQL operation sent to PixAI."""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Mapping
from typing import Any

import httpx

from .config import PixAIClientConfig
from .errors import ApiError
from .operations import is_subscription
from .websocket import (
    RestartableSubscriptionChannel,
    SubscriptionHandle,
    SubscriptionObserver,
    SubscriptionStream,
    WebSocketConnect,
)

logger = logging.getLogger("pixai_client.gateway")

_OPERATION_NAME = re.compile(r"^\s*(?:query|mutation|subscription)\s+(\w+)")


def operation_name(document: str) -> str | None:
    match = _OPERATION_NAME.match(document)
    return match.group(1) if match else None


def _operation_payload(document: str, variables: Mapping[str, Any] | None) -> dict[str, Any]:
    return {"query": document, "variables": dict(variables or {})}


class GraphQLGateway:
    """Sends operation documents over HTTP or the subscription channel.

    Queries and mutations go out as one ``POST {api_base_url}/graphql``;
    subscription documents are routed to a lazily created
    :class:`RestartableSubscriptionChannel`, which is registered in
    ``channels`` so the owning client can terminate it.
    """

    def __init__(
        self,
        config: PixAIClientConfig,
        *,
        http_client: httpx.AsyncClient,
        websocket_connect: WebSocketConnect | None = None,
        channels: set[RestartableSubscriptionChannel] | None = None,
    ) -> None:
        self._config = config
        self._http = http_client
        self._websocket_connect = websocket_connect
        self._channels = channels if channels is not None else set()
        self._channel: RestartableSubscriptionChannel | None = None

    @property
    def http_client(self) -> httpx.AsyncClient:
        return self._http

    @property
    def channel(self) -> RestartableSubscriptionChannel:
        if self._channel is None or self._channel.closed:
            self._channel = RestartableSubscriptionChannel(
                self._config.graphql_ws_url,
                connection_params=lambda: {"token": self._config.api_key},
                connect=self._websocket_connect,
            )
            self._channels.add(self._channel)
        return self._channel

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._config.api_key}",
            "User-Agent": self._config.user_agent,
        }

    def send(
        self, document: str, variables: Mapping[str, Any] | None = None
    ) -> Awaitable[dict[str, Any]] | SubscriptionStream:
        if is_subscription(document):
            return self.stream(document, variables)
        return self.request(document, variables)

    async def request(self, document: str, variables: Mapping[str, Any] | None = None) -> dict[str, Any]:
        name = operation_name(document)
        logger.debug("graphql_request", extra={"operation": name})
        response = await self._http.post(
            self._config.graphql_url,
            json=_operation_payload(document, variables),
            headers=self._headers(),
        )
        try:
            body = response.json()
        except ValueError as exc:
            raise ApiError(
                f"Invalid response from PixAI API ({response.status_code})",
                status=response.status_code,
                response=response,
            ) from exc
        if not isinstance(body, Mapping):
            raise ApiError(
                "Unexpected PixAI API response payload",
                status=response.status_code,
                response=response,
            )

        message = body.get("message")
        if message and body.get("data") is None:
            raise ApiError(str(message), status=response.status_code, response=response)

        errors = body.get("errors")
        if errors:
            logger.debug("graphql_errors", extra={"operation": name, "count": len(errors)})
            raise ApiError.from_graphql_errors(errors, status=response.status_code, response=response)

        data = body.get("data")
        if data is None:
            if response.is_success:
                return {}
            raise ApiError(
                f"PixAI API request failed ({response.status_code})",
                status=response.status_code,
                response=response,
            )
        return data

    def stream(self, document: str, variables: Mapping[str, Any] | None = None) -> SubscriptionStream:
        return SubscriptionStream(self.channel, _operation_payload(document, variables))

    async def subscribe(
        self,
        document: str,
        variables: Mapping[str, Any] | None,
        observer: SubscriptionObserver,
    ) -> SubscriptionHandle:
        logger.debug("graphql_subscribe", extra={"operation": operation_name(document)})
        return await self.channel.subscribe(_operation_payload(document, variables), observer)

    def restart(self) -> None:
        for channel in list(self._channels):
            channel.restart()

    def terminate(self) -> None:
        for channel in list(self._channels):
            channel.terminate()
        self._channels.clear()
        self._channel = None

    # -- raw media transfers --------------------------------------------------

    async def fetch(self, url: str) -> httpx.Response:
        response = await self._http.get(url, follow_redirects=True)
        response.raise_for_status()
        return response

    async def transfer(
        self,
        method: str,
        url: str,
        *,
        content: bytes | None = None,
        files: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        response = await self._http.request(method, url, content=content, files=files, headers=headers)
        response.raise_for_status()
        return response


__all__ = ["GraphQLGateway", "operation_name"]
