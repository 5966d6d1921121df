from __future__ import annotations

import os
from dataclasses import dataclass

from .models import MediaProvider

DEFAULT_API_BASE_URL = "https://api.pixai.art"
DEFAULT_WEBSOCKET_BASE_URL = "wss://gw.pixai.art"
DEFAULT_USER_AGENT = "PixAIApiClient/1.0.0"
DEFAULT_TASK_PRIORITY = 1000

# graphql-transport-ws close code used to ask the server side for a clean reconnect.
RESTART_CLOSE_CODE = 4205
RESTART_CLOSE_REASON = "Client Restart"


def _normalize_base_url(url: str) -> str:
    return url.rstrip("/")


@dataclass(slots=True)
class PixAIClientConfig:
    api_key: str
    api_base_url: str = DEFAULT_API_BASE_URL
    web_socket_base_url: str = DEFAULT_WEBSOCKET_BASE_URL
    user_agent: str = DEFAULT_USER_AGENT
    timeout_s: float | None = 30.0
    task_priority: int = DEFAULT_TASK_PRIORITY
    upload_provider: MediaProvider = MediaProvider.S3

    def __post_init__(self) -> None:
        if not self.api_key:
            raise ValueError("api_key must be non-empty")
        self.api_base_url = _normalize_base_url(self.api_base_url or DEFAULT_API_BASE_URL)
        self.web_socket_base_url = _normalize_base_url(self.web_socket_base_url or DEFAULT_WEBSOCKET_BASE_URL)
        self.upload_provider = MediaProvider(self.upload_provider)

    @property
    def graphql_url(self) -> str:
        return f"{self.api_base_url}/graphql"

    @property
    def graphql_ws_url(self) -> str:
        return f"{self.web_socket_base_url}/graphql"

    @classmethod
    def from_env(cls, api_key: str | None = None) -> PixAIClientConfig:
        api_key = api_key or os.environ.get("PIXAI_API_KEY")
        if not api_key:
            raise ValueError("PixAI API key required. Set PIXAI_API_KEY environment variable or pass api_key.")
        return cls(
            api_key=api_key,
            api_base_url=os.environ.get("PIXAI_API_BASE_URL") or DEFAULT_API_BASE_URL,
            web_socket_base_url=os.environ.get("PIXAI_WEBSOCKET_BASE_URL") or DEFAULT_WEBSOCKET_BASE_URL,
        )
