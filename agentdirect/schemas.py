"""Pydantic schemas for AgentDirect wire and domain contracts."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

# Reserved parameter value: "put the previous step's result id here"
PREVIOUS_RESULT_PLACEHOLDER = "__PREVIOUS_RESULT_ID__"


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat()


def new_message_id() -> str:
    return f"msg-{uuid.uuid4().hex}"


class TaskState(str, Enum):
    """Task lifecycle states."""

    WORKING = "working"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self is not TaskState.WORKING


class MessageRole(str, Enum):
    """Who authored a message."""

    USER = "user"
    AGENT = "agent"


# --- Message parts ---


class TextPart(BaseModel):
    """Plain text fragment."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    text: str


class DataPart(BaseModel):
    """Structured payload fragment."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["data"] = "data"
    data: Any = None


Part = Annotated[Union[TextPart, DataPart], Field(discriminator="kind")]


class Message(BaseModel):
    """One utterance in a task's history. Parts never change after construction."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: Literal["message"] = "message"
    id: str = Field(
        default_factory=new_message_id,
        validation_alias=AliasChoices("id", "messageId"),
    )
    role: MessageRole
    parts: tuple[Part, ...] = ()
    task_id: str | None = Field(default=None, alias="taskId")
    context_id: str | None = Field(default=None, alias="contextId")
    timestamp: str = Field(default_factory=utc_now)

    @property
    def text(self) -> str:
        """Text parts joined by newlines."""
        return "\n".join(p.text for p in self.parts if isinstance(p, TextPart))

    @property
    def data(self) -> Any:
        """Payload of the first data part, if any."""
        for part in self.parts:
            if isinstance(part, DataPart):
                return part.data
        return None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# --- Tasks ---


class TaskStatus(BaseModel):
    """Current lifecycle state of a task."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    state: TaskState
    timestamp: str = Field(default_factory=utc_now)
    failure_reason: str | None = Field(default=None, alias="failureReason")


class Task(BaseModel):
    """A trackable unit of agent work with an append-only history."""

    model_config = ConfigDict(populate_by_name=True)

    kind: Literal["task"] = "task"
    id: str
    context_id: str = Field(alias="contextId")
    status: TaskStatus
    history: list[Message] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status.state.is_terminal

    def agent_messages(self) -> list[Message]:
        return [m for m in self.history if m.role == MessageRole.AGENT]

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TaskStatusUpdateEvent(BaseModel):
    """Streamed notice that a task's status changed."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: Literal["status-update"] = "status-update"
    task_id: str = Field(alias="taskId")
    context_id: str = Field(alias="contextId")
    status: TaskStatus
    final: bool = False

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# --- Tools and plans ---


class ToolSpec(BaseModel):
    """Declarative description of one invokable operation."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(..., min_length=1)
    description: str = ""
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        alias="inputSchema",
    )


class PlanStep(BaseModel):
    """One planned tool invocation."""

    model_config = ConfigDict(frozen=True)

    tool_name: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("toolName", "tool_name", "tool"),
        serialization_alias="toolName",
    )
    params: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("toolParams", "params", "parameters"),
        serialization_alias="toolParams",
    )


class Plan(BaseModel):
    """Ordered tool invocations for one utterance.

    Accepts either the single-step shape ``{toolName, toolParams}`` or the
    multi-step shape ``{steps: [...]}`` and always exposes ``steps``.
    """

    model_config = ConfigDict(frozen=True)

    steps: list[PlanStep] = Field(..., min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _wrap_single_step(cls, data: Any) -> Any:
        if isinstance(data, dict) and "steps" not in data:
            if any(key in data for key in ("toolName", "tool_name", "tool")):
                return {"steps": [data]}
        return data


# --- JSON-RPC ---


class JsonRpcRequest(BaseModel):
    """JSON-RPC 2.0 request envelope."""

    jsonrpc: Literal["2.0"]
    method: str = Field(..., min_length=1)
    params: Any = None
    id: str | int | float | None = None


class SendMessageParams(BaseModel):
    """Params for message/send and message/stream."""

    model_config = ConfigDict(populate_by_name=True)

    message: Message
    context_id: str | None = Field(default=None, alias="contextId")


class TaskIdParams(BaseModel):
    """Params naming one task."""

    task_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("taskId", "id", "task_id"),
    )


class ListTasksParams(BaseModel):
    """Params for tasks/list."""

    state: TaskState | None = None


# --- Discovery ---


class Skill(BaseModel):
    """Advertised agent skill."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    description: str
    tags: list[str] = Field(default_factory=list)
    examples: list[str] = Field(default_factory=list)
    input_modes: list[str] = Field(default_factory=lambda: ["application/json"], alias="inputModes")
    output_modes: list[str] = Field(default_factory=lambda: ["application/json"], alias="outputModes")


class AgentCapabilities(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    push_notifications: bool = Field(default=False, alias="pushNotifications")
    streaming: bool = True
    mcp_integration: bool = Field(default=True, alias="mcpIntegration")


class AgentInterface(BaseModel):
    protocol: str
    version: str
    transport: str
    url: str | None = None
    tools: list[str] | None = None


class AgentCard(BaseModel):
    """Agent discovery document."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: str
    protocol_version: str = Field(default="0.3.0", alias="protocolVersion")
    version: str
    url: str
    skills: list[Skill]
    capabilities: AgentCapabilities = Field(default_factory=AgentCapabilities)
    default_input_modes: list[str] = Field(
        default_factory=lambda: ["text/plain", "application/json"], alias="defaultInputModes"
    )
    default_output_modes: list[str] = Field(
        default_factory=lambda: ["text/plain", "application/json"], alias="defaultOutputModes"
    )
    security_schemes: dict[str, Any] = Field(default_factory=dict, alias="securitySchemes")
    security: list[dict[str, list[str]]] = Field(default_factory=list)
    additional_interfaces: list[AgentInterface] = Field(
        default_factory=list, alias="additionalInterfaces"
    )


# --- Health Check ---


class HealthResponse(BaseModel):
    """Health check response."""

    server: Literal["healthy", "unhealthy"] = "healthy"
    planner: Literal["healthy", "unhealthy"] = "healthy"
    planner_backend: str
    tools: int = 0
    active_tasks: int = 0
    timestamp: str = Field(default_factory=utc_now)
