"""Shared fan-out of the account's personal event subscription."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from typing import TYPE_CHECKING, Any, Protocol

from .errors import TransportError
from .models import PersonalEvent
from .operations import SUBSCRIBE_PERSONAL_EVENTS

if TYPE_CHECKING:  # pragma: no cover - import for typing only
    from .gateway import GraphQLGateway
    from .websocket import SubscriptionHandle

logger = logging.getLogger("pixai_client.events")


class EventListener(Protocol):
    def on_event(self, event: PersonalEvent) -> None: ...

    def on_error(self, error: BaseException) -> None: ...

    def on_complete(self) -> None: ...


class _QueueListener:
    def __init__(self) -> None:
        self.queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()

    def on_event(self, event: PersonalEvent) -> None:
        self.queue.put_nowait(("event", event))

    def on_error(self, error: BaseException) -> None:
        self.queue.put_nowait(("error", error))

    def on_complete(self) -> None:
        self.queue.put_nowait(("complete", None))


class PersonalEventStream:
    """One ``personalEvents`` subscription shared by every interested party.

    The subscription is opened by the first ``attach`` and kept open for later
    attachers. Each envelope is handed to every attached listener
    synchronously, in arrival order, before the next envelope is read.
    Envelopes that arrived before a listener attached are not replayed.
    """

    def __init__(self, gateway: GraphQLGateway) -> None:
        self._gateway = gateway
        self._listeners: list[EventListener] = []
        self._handle: SubscriptionHandle | None = None
        self._lock = asyncio.Lock()

    @property
    def active(self) -> bool:
        return self._handle is not None and self._handle.active

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def attach(self, listener: EventListener) -> Callable[[], None]:
        self._listeners.append(listener)
        try:
            await self._ensure_subscribed()
        except BaseException:
            self._remove(listener)
            raise

        def detach() -> None:
            self._remove(listener)

        return detach

    async def events(self) -> AsyncIterator[PersonalEvent]:
        listener = _QueueListener()
        detach = await self.attach(listener)
        try:
            while True:
                kind, value = await listener.queue.get()
                if kind == "event":
                    yield value
                elif kind == "error":
                    raise value
                else:
                    return
        finally:
            detach()

    async def close(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            await handle.dispose()
        self._end(TransportError("Personal event stream closed"))

    async def _ensure_subscribed(self) -> None:
        async with self._lock:
            if self.active:
                return
            handle = await self._gateway.subscribe(SUBSCRIBE_PERSONAL_EVENTS, {}, self)
            # the subscription may already have failed while it was being set up
            self._handle = handle if handle.active else None
            logger.debug("personal_events_subscribed", extra={"subscription_id": handle.id})

    def _remove(self, listener: EventListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    # -- SubscriptionObserver -------------------------------------------------

    def on_next(self, data: dict[str, Any]) -> None:
        envelope = data.get("personalEvents")
        if envelope is None:
            return
        event = PersonalEvent.model_validate(envelope)
        for listener in list(self._listeners):
            try:
                listener.on_event(event)
            except Exception:
                logger.exception("personal_event_listener_failed", extra={"event_kind": event.kind})

    def on_error(self, error: BaseException) -> None:
        logger.warning("personal_events_failed", extra={"error": str(error)})
        self._end(error)

    def on_complete(self) -> None:
        self._handle = None
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            listener.on_complete()

    def _end(self, error: BaseException) -> None:
        self._handle = None
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            listener.on_error(error)


__all__ = ["EventListener", "PersonalEventStream"]
