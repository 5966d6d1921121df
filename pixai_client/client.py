"""PixAI API client session."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import httpx

from .config import DEFAULT_API_BASE_URL, DEFAULT_WEBSOCKET_BASE_URL, PixAIClientConfig
from .events import PersonalEventStream
from .gateway import GraphQLGateway
from .media import MediaGateway
from .models import GenerationTask, MediaProvider, MediaRecord, TaskParameters
from .tasks import TaskOrchestrator, TaskUpdateCallback
from .websocket import RestartableSubscriptionChannel, WebSocketConnect

logger = logging.getLogger("pixai_client")


class PixAIClient:
    """Session bound to one API endpoint pair and credential.

    The session owns every subscription channel it opens and the shared
    personal event stream. ``close()`` terminates the channels immediately;
    any ``generate_image`` still waiting fails with ``TransportError``.
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        api_base_url: str | None = None,
        web_socket_base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        websocket_connect: WebSocketConnect | None = None,
        config: PixAIClientConfig | None = None,
    ) -> None:
        if config is None:
            if api_key is None:
                env = PixAIClientConfig.from_env()
                config = PixAIClientConfig(
                    api_key=env.api_key,
                    api_base_url=api_base_url or env.api_base_url,
                    web_socket_base_url=web_socket_base_url or env.web_socket_base_url,
                )
            else:
                config = PixAIClientConfig(
                    api_key=api_key,
                    api_base_url=api_base_url or DEFAULT_API_BASE_URL,
                    web_socket_base_url=web_socket_base_url or DEFAULT_WEBSOCKET_BASE_URL,
                )
        self.config = config
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=config.timeout_s)
        self._channels: set[RestartableSubscriptionChannel] = set()
        self.gateway = GraphQLGateway(
            config,
            http_client=self._http,
            websocket_connect=websocket_connect,
            channels=self._channels,
        )
        self._personal_events: PersonalEventStream | None = None
        self.tasks = TaskOrchestrator(self.gateway, lambda: self.personal_events, priority=config.task_priority)
        self.media = MediaGateway(self.gateway, provider=config.upload_provider)

    async def __aenter__(self) -> PixAIClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    @property
    def api_base_url(self) -> str:
        return self.config.api_base_url

    @property
    def web_socket_base_url(self) -> str:
        return self.config.web_socket_base_url

    @property
    def channels(self) -> frozenset[RestartableSubscriptionChannel]:
        return frozenset(self._channels)

    @property
    def personal_events(self) -> PersonalEventStream:
        if self._personal_events is None:
            self._personal_events = PersonalEventStream(self.gateway)
        return self._personal_events

    # -- tasks ------------------------------------------------------------------

    async def generate_image(
        self,
        parameters: TaskParameters | Mapping[str, Any],
        *,
        on_update: TaskUpdateCallback | None = None,
        priority: int | None = None,
    ) -> GenerationTask:
        return await self.tasks.generate_image(parameters, on_update=on_update, priority=priority)

    async def create_task(
        self, parameters: TaskParameters | Mapping[str, Any], *, priority: int | None = None
    ) -> GenerationTask:
        return await self.tasks.create_task(parameters, priority=priority)

    async def get_task(self, task_id: str) -> GenerationTask | None:
        return await self.tasks.get_task(task_id)

    # -- media ------------------------------------------------------------------

    async def upload_media(
        self,
        source: Any,
        *,
        filename: str | None = None,
        content_type: str | None = None,
        provider: MediaProvider | None = None,
    ) -> MediaRecord:
        return await self.media.upload_media(source, filename=filename, content_type=content_type, provider=provider)

    async def get_media(self, media_id: str) -> MediaRecord:
        return await self.media.get_media(media_id)

    async def get_media_from_task(self, task: GenerationTask) -> MediaRecord | list[MediaRecord]:
        return await self.media.get_media_from_task(task)

    def get_public_url(self, media: MediaRecord) -> str | None:
        return self.media.get_public_url(media)

    async def download_media(self, media: MediaRecord) -> bytes:
        return await self.media.download_media(media)

    # -- lifecycle --------------------------------------------------------------

    def restart(self) -> None:
        """Reconnect every subscription socket without dropping subscriptions."""

        self.gateway.restart()

    def reset(self) -> None:
        """Terminate all channels and forget the shared personal event stream."""

        self.gateway.terminate()
        self._personal_events = None

    def close(self) -> None:
        logger.debug("client_close", extra={"channels": len(self._channels)})
        self.gateway.terminate()

    async def aclose(self) -> None:
        channels = list(self._channels)
        self.close()
        for channel in channels:
            await channel.aclose()
        if self._owns_http_client:
            await self._http.aclose()


__all__ = ["PixAIClient"]
