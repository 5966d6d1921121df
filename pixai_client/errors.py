from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover - import for typing only
    import httpx

    from .models import GenerationTask


class PixAIError(Exception):
    """Base class for every error raised by the client."""


class ApiError(PixAIError):
    """The PixAI API rejected a request or reported GraphQL errors."""

    def __init__(
        self,
        message: str,
        *,
        errors: Sequence[Mapping[str, Any]] | None = None,
        status: int | None = None,
        response: httpx.Response | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.errors = [dict(error) for error in errors] if errors is not None else None
        self.status = status
        self.response = response

    @classmethod
    def from_graphql_errors(
        cls,
        errors: Sequence[Mapping[str, Any]],
        *,
        status: int | None = None,
        response: httpx.Response | None = None,
    ) -> ApiError:
        message = "Unknown GraphQL error"
        if errors:
            first = errors[0]
            if isinstance(first, Mapping) and first.get("message"):
                message = str(first["message"])
        return cls(message, errors=errors, status=status, response=response)


class TaskFailedError(ApiError):
    def __init__(self, task: GenerationTask) -> None:
        super().__init__(f"Generation task '{task.id}' ended with status '{task.status_value}'.")
        self.task = task


class TransportError(PixAIError):
    """The subscription socket closed or failed."""

    def __init__(self, message: str, *, code: int | None = None, reason: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.reason = reason

    @classmethod
    def closed(cls, code: int | None, reason: str | None) -> TransportError:
        detail = reason or "no reason given"
        return cls(f"WebSocket closed ({code}): {detail}", code=code, reason=reason)


class UsageError(PixAIError):
    """A client-side precondition was not met."""


__all__ = [
    "PixAIError",
    "ApiError",
    "TaskFailedError",
    "TransportError",
    "UsageError",
]
