"""Pytest configuration and fixtures for AgentDirect tests."""

from pathlib import Path
from typing import Any, Callable

import pytest

from agentdirect.events import EventBusManager
from agentdirect.registry import ToolRegistry
from agentdirect.schemas import (
    Message,
    MessageRole,
    Plan,
    Task,
    TaskState,
    TaskStatus,
    TextPart,
)
from agentdirect.store import InMemoryTaskStore


class StubPlanner:
    """Planner returning a canned plan (or raising) without any LLM."""

    def __init__(self, response: Any = None, error: Exception | None = None):
        self.response = response
        self.error = error
        self.calls: list[str] = []

    async def plan(self, utterance, tools) -> Plan:
        self.calls.append(utterance)
        if self.error is not None:
            raise self.error
        return Plan.model_validate(self.response)


@pytest.fixture
def stub_planner() -> Callable[..., StubPlanner]:
    """Factory for canned planners."""
    return StubPlanner


@pytest.fixture
def registry() -> ToolRegistry:
    return ToolRegistry.default()


@pytest.fixture
def store() -> InMemoryTaskStore:
    return InMemoryTaskStore()


@pytest.fixture
def buses(store) -> EventBusManager:
    return EventBusManager(store)


@pytest.fixture
def make_task() -> Callable[..., Task]:
    """Factory for a fresh working task with one user message."""

    def factory(task_id: str = "task-1", text: str = "Create an account for Nike") -> Task:
        return Task(
            id=task_id,
            context_id="ctx-1",
            status=TaskStatus(state=TaskState.WORKING),
            history=[
                Message(
                    role=MessageRole.USER,
                    parts=(TextPart(text=text),),
                    task_id=task_id,
                    context_id="ctx-1",
                )
            ],
        )

    return factory


@pytest.fixture
def agent_text() -> Callable[[str], Message]:
    """Factory for agent messages carrying one text part."""

    def factory(text: str) -> Message:
        return Message(role=MessageRole.AGENT, parts=(TextPart(text=text),))

    return factory


@pytest.fixture
def sqlite_path(tmp_path: Path) -> Path:
    """Temporary path for a task database."""
    return tmp_path / "tasks.db"


@pytest.fixture
def mcp_tools_document() -> dict:
    """MCP-format tool document."""
    return {
        "tools": [
            {
                "name": "create_line",
                "description": "Create an order line",
                "inputSchema": {
                    "type": "object",
                    "properties": {"orderId": {"type": "string"}, "quantity": {"type": "integer"}},
                    "required": ["orderId"],
                },
            },
            {"name": "ping", "description": "No parameters"},
        ]
    }


@pytest.fixture
def openapi_document() -> dict:
    """Minimal OpenAPI 3 document with a $ref request body."""
    return {
        "openapi": "3.0.0",
        "paths": {
            "/accounts": {
                "post": {
                    "operationId": "createAccount",
                    "summary": "Create account",
                    "requestBody": {
                        "content": {
                            "application/json": {"schema": {"$ref": "#/components/schemas/Account"}}
                        }
                    },
                },
                "get": {
                    "operationId": "listAccounts",
                    "description": "List all accounts",
                    "parameters": [
                        {"name": "limit", "in": "query", "schema": {"type": "integer"}},
                    ],
                },
            },
            "/accounts/{id}": {
                "get": {
                    "operationId": "getAccount",
                    "parameters": [
                        {"name": "id", "in": "path", "required": True, "schema": {"type": "string"}},
                    ],
                },
                "delete": {"summary": "No operationId, skipped"},
            },
        },
        "components": {
            "schemas": {
                "Account": {
                    "type": "object",
                    "required": ["name"],
                    "properties": {
                        "name": {"type": "string", "description": "Account name"},
                        "tags": {"type": "array", "items": {"type": "string"}},
                    },
                }
            }
        },
    }
