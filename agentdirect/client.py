"""JSON-RPC client for the agent endpoints plus the polling reconciler.

The reconciler is what makes polling safe to repeat: it remembers how many
agent messages of a task were already shown and only ever hands out the ones
after that.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx

from agentdirect.faults import RpcError, RpcErrorCode
from agentdirect.roles import AgentRole
from agentdirect.schemas import Message, MessageRole, Task, TaskState, TextPart

logger = logging.getLogger(__name__)


class TaskReconciler:
    """Tracks which agent messages of each task have been emitted."""

    def __init__(self) -> None:
        self._shown: dict[str, int] = {}

    def shown(self, task_id: str) -> int:
        return self._shown.get(task_id, 0)

    def reconcile(self, task: Task) -> list[Message]:
        """Agent messages not yet emitted for ``task``, in history order.

        Re-reconciling an unchanged task returns an empty list.
        """
        agent_messages = task.agent_messages()
        shown = self.shown(task.id)
        if len(agent_messages) <= shown:
            return []
        self._shown[task.id] = len(agent_messages)
        return agent_messages[shown:]

    @staticmethod
    def is_terminal(task: Task) -> bool:
        return task.is_terminal


@dataclass
class PollOutcome:
    """Where polling stopped."""

    task: Task
    attempts: int
    timed_out: bool = False
    messages: list[Message] = field(default_factory=list)


def user_message(text: str, context_id: str | None = None) -> Message:
    return Message(role=MessageRole.USER, parts=(TextPart(text=text),), context_id=context_id)


def format_message(message: Message) -> str:
    """Render one agent message as text, data payload included."""
    lines = [message.text] if message.text else []
    if message.data is not None:
        lines.append(json.dumps(message.data, indent=2))
    return "\n".join(lines)


def describe_outcome(outcome: PollOutcome) -> str:
    """One-line summary that tells completed, failed and canceled apart."""
    task = outcome.task
    state = task.status.state
    if outcome.timed_out:
        return f"Task {task.id} still {state.value} after {outcome.attempts} polls"
    if state == TaskState.COMPLETED:
        return f"Task {task.id} completed"
    if state == TaskState.FAILED:
        reason = task.status.failure_reason or "unknown error"
        return f"Task {task.id} failed: {reason}"
    if state == TaskState.CANCELED:
        return f"Task {task.id} was canceled"
    return f"Task {task.id} is {state.value}"


class AgentClient:
    """Synchronous JSON-RPC client for one role's endpoint."""

    def __init__(
        self,
        base_url: str,
        role: AgentRole | str = AgentRole.BUYER,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.role = AgentRole(role)
        self.base_url = base_url.rstrip("/")
        self.endpoint = f"{self.base_url}/a2a/{self.role.value}/jsonrpc"
        self._sleep = sleep
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def __enter__(self) -> AgentClient:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _call(self, method: str, params: dict[str, Any]) -> Any:
        request_id = str(uuid.uuid4())
        response = self._client.post(
            self.endpoint,
            json={"jsonrpc": "2.0", "method": method, "params": params, "id": request_id},
        )
        try:
            body = response.json()
        except ValueError:
            response.raise_for_status()
            raise RpcError(RpcErrorCode.PARSE_ERROR, "Server returned a non-JSON response")

        if "error" in body:
            error = body["error"]
            raise RpcError(error.get("code", RpcErrorCode.INTERNAL_ERROR), error.get("message", ""), error.get("data"))
        response.raise_for_status()
        return body.get("result")

    # --- RPC methods ---

    def send_message(self, text: str, context_id: str | None = None) -> Task:
        params: dict[str, Any] = {"message": user_message(text, context_id).to_wire()}
        if context_id:
            params["contextId"] = context_id
        return Task.model_validate(self._call("message/send", params))

    def get_task(self, task_id: str) -> Task:
        return Task.model_validate(self._call("tasks/get", {"taskId": task_id}))

    def cancel_task(self, task_id: str) -> Task:
        return Task.model_validate(self._call("tasks/cancel", {"taskId": task_id}))

    def list_tasks(self, state: TaskState | str | None = None) -> list[Task]:
        params = {"state": TaskState(state).value} if state else {}
        result = self._call("tasks/list", params)
        return [Task.model_validate(t) for t in result.get("tasks", [])]

    def get_agent_card(self) -> dict[str, Any]:
        response = self._client.get(f"{self.base_url}/a2a/{self.role.value}/.well-known/agent-card.json")
        response.raise_for_status()
        return response.json()

    # --- Polling ---

    def poll_task(
        self,
        task_id: str,
        on_message: Callable[[Message], None] | None = None,
        interval: float = 1.0,
        max_attempts: int = 30,
        reconciler: TaskReconciler | None = None,
    ) -> PollOutcome:
        """Fetch the task until it is terminal or ``max_attempts`` fetches were made.

        Each agent message is passed to ``on_message`` exactly once, in order.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        reconciler = reconciler or TaskReconciler()
        emitted: list[Message] = []
        task: Task | None = None

        for attempt in range(1, max_attempts + 1):
            task = self.get_task(task_id)
            for message in reconciler.reconcile(task):
                emitted.append(message)
                if on_message is not None:
                    on_message(message)

            if reconciler.is_terminal(task):
                logger.debug(f"Task {task_id} reached {task.status.state.value} after {attempt} polls")
                return PollOutcome(task=task, attempts=attempt, messages=emitted)

            if attempt < max_attempts:
                self._sleep(interval)

        logger.warning(f"Gave up polling task {task_id} after {max_attempts} attempts")
        return PollOutcome(task=task, attempts=max_attempts, timed_out=True, messages=emitted)

    def ask(
        self,
        text: str,
        on_message: Callable[[Message], None] | None = None,
        context_id: str | None = None,
        interval: float = 1.0,
        max_attempts: int = 30,
    ) -> PollOutcome:
        """Send ``text`` and poll the resulting task to the end."""
        task = self.send_message(text, context_id=context_id)
        return self.poll_task(task.id, on_message=on_message, interval=interval, max_attempts=max_attempts)
