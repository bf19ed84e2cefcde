"""Per-task event bus between the step executor and the task store.

Writes go through the store's atomic update, so ordering follows commit order
and anything arriving after a terminal state is a silent no-op. Observers (the
streaming endpoint) get committed events on an asyncio queue.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Union

from agentdirect.schemas import (
    Message,
    Task,
    TaskState,
    TaskStatus,
    TaskStatusUpdateEvent,
)
from agentdirect.store import Mutator, TaskStore

logger = logging.getLogger(__name__)

TaskEvent = Union[Message, TaskStatusUpdateEvent]

SUBSCRIBER_QUEUE_SIZE = 256


class EventBusManager:
    """Hands out per-task buses and fans committed events out to subscribers."""

    def __init__(self, store: TaskStore, max_queue_size: int = SUBSCRIBER_QUEUE_SIZE):
        self.store = store
        self._max_queue_size = max_queue_size
        self._subscribers: dict[str, list[asyncio.Queue[TaskEvent]]] = {}

    def bus_for(self, task_id: str) -> TaskEventBus:
        return TaskEventBus(self, task_id)

    def subscribe(self, task_id: str) -> asyncio.Queue[TaskEvent]:
        """Queue receiving every event committed for ``task_id`` from now on."""
        queue: asyncio.Queue[TaskEvent] = asyncio.Queue(maxsize=self._max_queue_size)
        self._subscribers.setdefault(task_id, []).append(queue)
        return queue

    def unsubscribe(self, task_id: str, queue: asyncio.Queue[TaskEvent]) -> None:
        queues = self._subscribers.get(task_id, [])
        if queue in queues:
            queues.remove(queue)
        if not queues:
            self._subscribers.pop(task_id, None)

    def _notify(self, task_id: str, event: TaskEvent) -> None:
        for queue in self._subscribers.get(task_id, []):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                # Slow consumer: drop its oldest event so the final status still lands.
                logger.warning(f"Subscriber queue full for task {task_id}; dropping oldest event")
                try:
                    queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass
                queue.put_nowait(event)


class TaskEventBus:
    """Sink for one task's progress, results and final state."""

    def __init__(self, manager: EventBusManager, task_id: str):
        self._manager = manager
        self.task_id = task_id

    def snapshot(self) -> Task | None:
        return self._manager.store.get(self.task_id)

    def is_terminal(self) -> bool:
        task = self.snapshot()
        return task is None or task.is_terminal

    def publish(self, message: Message) -> bool:
        """Append ``message`` to history. Returns False if the task is already terminal."""

        def append(task: Task) -> None:
            task.history.append(message)

        return self._commit(append, message=message)

    def finished(self) -> bool:
        """Mark the task completed."""
        return self._transition(TaskState.COMPLETED)

    def fail(self, reason: str, message: Message | None = None) -> bool:
        """Mark the task failed, appending ``message`` in the same commit."""
        return self._transition(TaskState.FAILED, reason=reason, message=message)

    def cancel(self) -> bool:
        """Mark the task canceled. Only the status changes."""
        return self._transition(TaskState.CANCELED)

    def _transition(
        self,
        state: TaskState,
        reason: str | None = None,
        message: Message | None = None,
    ) -> bool:
        status = TaskStatus(state=state, failure_reason=reason)

        def apply(task: Task) -> None:
            if message is not None:
                task.history.append(message)
            task.status = status

        return self._commit(apply, message=message, status=status)

    def _commit(
        self,
        mutator: Mutator,
        message: Message | None = None,
        status: TaskStatus | None = None,
    ) -> bool:
        result = self._manager.store.update(self.task_id, mutator)
        if not result.applied:
            logger.debug(f"Task {self.task_id} is terminal; event dropped")
            return False

        task = result.task
        if message is not None:
            self._manager._notify(self.task_id, message)
        if status is not None:
            logger.info(f"Task {self.task_id} -> {status.state.value}")
            self._manager._notify(
                self.task_id,
                TaskStatusUpdateEvent(
                    task_id=task.id,
                    context_id=task.context_id,
                    status=task.status,
                    final=task.is_terminal,
                ),
            )
        return True
