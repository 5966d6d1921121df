"""Async client for the PixAI image generation API."""

from .client import PixAIClient
from .config import PixAIClientConfig
from .errors import ApiError, PixAIError, TaskFailedError, TransportError, UsageError
from .events import PersonalEventStream
from .gateway import GraphQLGateway
from .media import MediaGateway
from .models import (
    FileUpload,
    GenerationTask,
    MediaDescriptor,
    MediaProvider,
    MediaRecord,
    MediaType,
    PersonalEvent,
    TaskParameters,
    TaskStatus,
    UrlUpload,
)
from .tasks import TaskOrchestrator
from .websocket import ChannelState, RestartableSubscriptionChannel, RestartLatch, RestartMode

__all__ = [
    "ApiError",
    "ChannelState",
    "FileUpload",
    "GenerationTask",
    "GraphQLGateway",
    "MediaDescriptor",
    "MediaGateway",
    "MediaProvider",
    "MediaRecord",
    "MediaType",
    "PersonalEvent",
    "PersonalEventStream",
    "PixAIClient",
    "PixAIClientConfig",
    "PixAIError",
    "RestartLatch",
    "RestartMode",
    "RestartableSubscriptionChannel",
    "TaskFailedError",
    "TaskOrchestrator",
    "TaskParameters",
    "TaskStatus",
    "TransportError",
    "UrlUpload",
    "UsageError",
]

__version__ = "1.0.0"
