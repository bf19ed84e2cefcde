"""JSON-RPC protocol router for one agent role."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

from pydantic import BaseModel, ValidationError

from agentdirect.events import EventBusManager
from agentdirect.executor import ExecutionContext, StepExecutor
from agentdirect.faults import RpcError, RpcErrorCode, TaskNotFoundError
from agentdirect.roles import AgentRole
from agentdirect.schemas import (
    JsonRpcRequest,
    ListTasksParams,
    MessageRole,
    SendMessageParams,
    Task,
    TaskIdParams,
    TaskState,
    TaskStatus,
    TaskStatusUpdateEvent,
)
from agentdirect.store import TaskStore

logger = logging.getLogger(__name__)

ParamsModel = TypeVar("ParamsModel", bound=BaseModel)

# Accepted spellings for each method
METHOD_ALIASES: dict[str, str] = {
    "message/send": "message/send",
    "sendMessage": "message/send",
    "send-message": "message/send",
    "message/stream": "message/stream",
    "sendStreamingMessage": "message/stream",
    "tasks/get": "tasks/get",
    "getTask": "tasks/get",
    "get-task": "tasks/get",
    "tasks/cancel": "tasks/cancel",
    "cancelTask": "tasks/cancel",
    "cancel-task": "tasks/cancel",
    "tasks/list": "tasks/list",
    "listTasks": "tasks/list",
}


def rpc_result(request_id: str | int | float | None, result: Any) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "result": result, "id": request_id}


def rpc_error(request_id: str | int | float | None, code: int, message: str, data: Any = None) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "error": RpcError(code, message, data).to_wire(), "id": request_id}


def extract_request_id(body: Any) -> str | int | float | None:
    """Request id to echo back, or None when absent or not a valid id."""
    if isinstance(body, dict):
        request_id = body.get("id")
        if isinstance(request_id, (str, int, float)) and not isinstance(request_id, bool):
            return request_id
    return None


@dataclass
class StreamingCall:
    """A method answered with a sequence of JSON-RPC responses instead of one."""

    request_id: str | int | float | None
    events: AsyncIterator[dict[str, Any]]

    async def responses(self) -> AsyncIterator[dict[str, Any]]:
        async for event in self.events:
            yield rpc_result(self.request_id, event)


class ProtocolRouter:
    """Maps JSON-RPC methods onto the task store and step executor."""

    def __init__(
        self,
        role: AgentRole,
        store: TaskStore,
        executor: StepExecutor,
        buses: EventBusManager | None = None,
    ):
        self.role = role
        self.store = store
        self.executor = executor
        self.buses = buses or EventBusManager(store)
        self._background: set[asyncio.Task[None]] = set()
        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[Any]]] = {
            "message/send": self._send_message,
            "message/stream": self._stream_message,
            "tasks/get": self._get_task,
            "tasks/cancel": self._cancel_task,
            "tasks/list": self._list_tasks,
        }

    def tool_names(self) -> list[str]:
        """Tools this agent can run, for discovery documents."""
        return self.executor.registry.tool_names()

    @property
    def active_executions(self) -> int:
        return len(self._background)

    async def handle(self, body: Any) -> dict[str, Any] | StreamingCall:
        """Dispatch one JSON-RPC request body.

        Returns a response dict, or a StreamingCall for message/stream.
        """
        request_id = extract_request_id(body)
        try:
            request = self._parse_envelope(body)
            method = METHOD_ALIASES.get(request.method)
            if method is None:
                raise RpcError(RpcErrorCode.METHOD_NOT_FOUND, f"Method not found: {request.method}")

            params = request.params if request.params is not None else {}
            if not isinstance(params, dict):
                raise RpcError(RpcErrorCode.INVALID_PARAMS, "params must be an object")

            logger.info(f"[{self.role.value}] JSON-RPC {method} id={request_id}")
            result = await self._handlers[method](params)

            if method == "message/stream":
                return StreamingCall(request_id=request_id, events=result)
            return rpc_result(request_id, result)

        except RpcError as e:
            logger.info(f"[{self.role.value}] JSON-RPC error {e.code}: {e.message}")
            return rpc_error(request_id, e.code, e.message, e.data)

        except Exception as e:
            logger.error(f"[{self.role.value}] Unhandled JSON-RPC error: {e}", exc_info=True)
            return rpc_error(request_id, RpcErrorCode.INTERNAL_ERROR, str(e) or "Internal error")

    def _parse_envelope(self, body: Any) -> JsonRpcRequest:
        if not isinstance(body, dict):
            raise RpcError(RpcErrorCode.INVALID_REQUEST, "Request must be a JSON object")
        if body.get("jsonrpc") != "2.0":
            raise RpcError(RpcErrorCode.INVALID_REQUEST, "Invalid JSON-RPC version; expected '2.0'")
        try:
            return JsonRpcRequest.model_validate(body)
        except ValidationError as e:
            raise RpcError(RpcErrorCode.INVALID_REQUEST, f"Invalid request: {_first_error(e)}") from e

    @staticmethod
    def _parse_params(model: type[ParamsModel], params: dict[str, Any]) -> ParamsModel:
        try:
            return model.model_validate(params)
        except ValidationError as e:
            raise RpcError(RpcErrorCode.INVALID_PARAMS, f"Invalid params: {_first_error(e)}") from e

    # --- Methods ---

    async def _send_message(self, params: dict[str, Any]) -> dict[str, Any]:
        task, context = self._create_task(params)
        self._spawn(context)
        return task.to_wire()

    async def _stream_message(self, params: dict[str, Any]) -> AsyncIterator[dict[str, Any]]:
        task, context = self._create_task(params)
        # Subscribe before spawning so no event is missed.
        queue = self.buses.subscribe(task.id)
        self._spawn(context)

        async def events() -> AsyncIterator[dict[str, Any]]:
            try:
                yield task.to_wire()
                while True:
                    event = await queue.get()
                    yield event.to_wire()
                    if isinstance(event, TaskStatusUpdateEvent) and event.final:
                        break
            finally:
                self.buses.unsubscribe(task.id, queue)

        return events()

    async def _get_task(self, params: dict[str, Any]) -> dict[str, Any]:
        ref = self._parse_params(TaskIdParams, params)
        task = self.store.get(ref.task_id)
        if task is None:
            raise _task_not_found(ref.task_id)
        return task.to_wire()

    async def _cancel_task(self, params: dict[str, Any]) -> dict[str, Any]:
        ref = self._parse_params(TaskIdParams, params)
        try:
            canceled = self.buses.bus_for(ref.task_id).cancel()
        except TaskNotFoundError:
            raise _task_not_found(ref.task_id) from None

        task = self.store.get(ref.task_id)
        if task is None:
            raise _task_not_found(ref.task_id)
        if not canceled:
            logger.info(f"Cancel ignored: task {ref.task_id} already {task.status.state.value}")
        return task.to_wire()

    async def _list_tasks(self, params: dict[str, Any]) -> dict[str, Any]:
        query = self._parse_params(ListTasksParams, params)
        tasks = self.store.list(query.state)
        return {"tasks": [t.to_wire() for t in tasks], "count": len(tasks)}

    # --- Helpers ---

    def _create_task(self, params: dict[str, Any]) -> tuple[Task, ExecutionContext]:
        send = self._parse_params(SendMessageParams, params)
        message = send.message
        if message.role != MessageRole.USER:
            raise RpcError(RpcErrorCode.INVALID_PARAMS, "Invalid params: message.role must be 'user'")

        utterance = message.text.strip()
        if not utterance:
            raise RpcError(RpcErrorCode.INVALID_PARAMS, "Invalid params: message has no text")

        task_id = str(uuid.uuid4())
        context_id = send.context_id or message.context_id or str(uuid.uuid4())
        user_message = message.model_copy(update={"task_id": task_id, "context_id": context_id})

        task = self.store.create(
            Task(
                id=task_id,
                context_id=context_id,
                status=TaskStatus(state=TaskState.WORKING),
                history=[user_message],
            )
        )
        logger.info(f"[{self.role.value}] Created task {task_id} (context {context_id})")
        return task, ExecutionContext(task_id=task_id, context_id=context_id, utterance=utterance)

    def _spawn(self, context: ExecutionContext) -> None:
        """Run the executor in the background; the RPC returns without waiting."""
        job = asyncio.create_task(
            self.executor.execute(context, self.buses.bus_for(context.task_id)),
            name=f"task-{context.task_id}",
        )
        self._background.add(job)
        job.add_done_callback(self._background.discard)

    async def wait_idle(self) -> None:
        """Wait for every background execution to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel background executions (process teardown)."""
        for job in list(self._background):
            job.cancel()
        await asyncio.gather(*list(self._background), return_exceptions=True)


def _task_not_found(task_id: str) -> RpcError:
    return RpcError(RpcErrorCode.TASK_NOT_FOUND, f"Task not found: {task_id}")


def _first_error(e: ValidationError) -> str:
    first = e.errors()[0]
    location = ".".join(str(p) for p in first["loc"])
    return f"{location}: {first['msg']}" if location else first["msg"]
