"""Error taxonomy for the orchestration engine and its JSON-RPC surface."""

from __future__ import annotations

from enum import IntEnum
from typing import Any


class RpcErrorCode(IntEnum):
    """JSON-RPC error codes used by the protocol router."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603
    TASK_NOT_FOUND = -32000


class RpcError(Exception):
    """Synchronous protocol-level failure, reported as a JSON-RPC error."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.code = int(code)
        self.message = message
        self.data = data

    def to_wire(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


class TaskNotFoundError(Exception):
    """Raised when a task id is unknown to the store."""

    def __init__(self, task_id: str):
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class AgentFault(Exception):
    """Failure discovered while a task runs in the background.

    Never surfaced as an RPC error: it ends the task as ``failed`` and its text
    becomes the task's ``failureReason``.
    """

    pass


class PlanningFault(AgentFault):
    """Planner unreachable, plan malformed, or a placeholder cannot be resolved."""

    pass


class ExecutionFault(AgentFault):
    """A tool rejected its parameters or failed while running."""

    pass
