"""Generation task submission and completion tracking."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

import httpx

from .config import DEFAULT_TASK_PRIORITY
from .errors import ApiError, TaskFailedError, TransportError
from .models import GenerationTask, PersonalEvent, TaskParameters, parameters_to_variables
from .operations import CREATE_GENERATION_TASK, GET_TASK

if TYPE_CHECKING:  # pragma: no cover - import for typing only
    from .events import PersonalEventStream
    from .gateway import GraphQLGateway

logger = logging.getLogger("pixai_client.tasks")

TaskUpdateCallback = Callable[[GenerationTask], None]


class TaskWatcher:
    """Follows one task id on the personal event stream.

    Every matching ``taskUpdated`` snapshot goes to ``on_update`` first and is
    then checked for a terminal status: ``completed`` resolves ``result``,
    ``failed``/``cancelled`` fail it with :class:`TaskFailedError`.
    """

    def __init__(
        self,
        task_id: str,
        future: asyncio.Future[GenerationTask],
        on_update: TaskUpdateCallback | None = None,
    ) -> None:
        self.task_id = task_id
        self.result = future
        self._on_update = on_update

    @property
    def done(self) -> bool:
        return self.result.done()

    def on_event(self, event: PersonalEvent) -> None:
        if self.result.done():
            return
        task = event.task_updated
        if task is None or task.id != self.task_id:
            return
        if self._on_update is not None:
            try:
                self._on_update(task)
            except Exception as exc:
                self.result.set_exception(exc)
                return
        self.settle(task)

    def settle(self, task: GenerationTask) -> None:
        if self.result.done():
            return
        if task.is_completed:
            self.result.set_result(task)
        elif task.is_failed:
            self.result.set_exception(TaskFailedError(task))

    def on_error(self, error: BaseException) -> None:
        if not self.result.done():
            self.result.set_exception(error)

    def on_complete(self) -> None:
        if not self.result.done():
            self.result.set_exception(
                TransportError(f"Personal event stream ended before task '{self.task_id}' finished")
            )


class TaskOrchestrator:
    def __init__(
        self,
        gateway: GraphQLGateway,
        events: Callable[[], PersonalEventStream],
        *,
        priority: int = DEFAULT_TASK_PRIORITY,
    ) -> None:
        self._gateway = gateway
        self._events = events
        self._priority = priority

    async def create_task(
        self,
        parameters: TaskParameters | Mapping[str, Any],
        *,
        priority: int | None = None,
    ) -> GenerationTask:
        variables = parameters_to_variables(parameters)
        variables["priority"] = self._priority if priority is None else priority
        data = await self._gateway.request(CREATE_GENERATION_TASK, {"parameters": variables})
        raw = data.get("createGenerationTask")
        if not raw:
            raise ApiError("Failed to create generation task with unknown error.")
        task = GenerationTask.model_validate(raw)
        logger.info("task_created", extra={"task_id": task.id, "status": task.status_value})
        return task

    async def get_task(self, task_id: str) -> GenerationTask | None:
        data = await self._gateway.request(GET_TASK, {"id": task_id})
        raw = data.get("task")
        if not raw:
            return None
        return GenerationTask.model_validate(raw)

    async def generate_image(
        self,
        parameters: TaskParameters | Mapping[str, Any],
        *,
        on_update: TaskUpdateCallback | None = None,
        priority: int | None = None,
    ) -> GenerationTask:
        """Create a generation task and wait until it reaches a terminal status.

        Returns the ``completed`` snapshot. Raises :class:`TaskFailedError` if
        the task fails or is cancelled, and the stream's error if the event
        subscription breaks first. ``on_update`` receives every snapshot of
        this task, in server order, until the call returns. A failed status
        lookup right after subscribing is logged and the call keeps waiting on
        the event stream.
        """

        task = await self.create_task(parameters, priority=priority)
        loop = asyncio.get_running_loop()
        watcher = TaskWatcher(task.id, loop.create_future(), on_update)
        detach = await self._events().attach(watcher)
        try:
            if not watcher.done:
                # the task may have finished before the subscription was in place
                try:
                    current = await self.get_task(task.id)
                except (ApiError, httpx.HTTPError) as exc:
                    logger.warning("task_catch_up_failed", extra={"task_id": task.id, "error": str(exc)})
                else:
                    if current is not None:
                        watcher.settle(current)
            result = await watcher.result
        finally:
            detach()
            if not watcher.done:
                watcher.result.cancel()
        logger.info("task_completed", extra={"task_id": result.id})
        return result


__all__ = ["TaskOrchestrator", "TaskUpdateCallback", "TaskWatcher"]
