"""MCP server exposing AgentDirect agents to MCP hosts."""

import asyncio
import os
import uuid

import httpx
from mcp.server.fastmcp import FastMCP

from agentdirect.client import TaskReconciler, format_message, user_message
from agentdirect.config import get_settings
from agentdirect.registry import ToolInvocationError, ToolNotFoundError, ToolRegistry, load_registry
from agentdirect.schemas import Task

mcp = FastMCP("agentdirect")
SERVER = os.environ.get("AGENTDIRECT_URL", "http://localhost:3000")
POLL_INTERVAL = 1.0  # seconds

_registry: ToolRegistry | None = None


def get_registry() -> ToolRegistry:
    """Get or load the tool registry served by call_tool."""
    global _registry
    if _registry is None:
        _registry = load_registry(get_settings().tool_schema_path)
    return _registry


async def _rpc(role: str, method: str, params: dict, timeout: float = 30.0) -> dict:
    async with httpx.AsyncClient(timeout=timeout) as client:
        r = await client.post(f"{SERVER}/a2a/{role}/jsonrpc", json={
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": str(uuid.uuid4()),
        })
        return r.json()


@mcp.tool()
async def ask_agent(
    request: str,
    role: str = "buyer",
    context_id: str | None = None,
    wait: bool = True,
    max_attempts: int = 30,
) -> dict:
    """Ask the buyer or seller agent to perform an OpenDirect operation.

    Args:
        request: Natural language request, e.g. "Create an account for Nike"
        role: 'buyer' (advertiser) or 'seller' (publisher)
        context_id: Conversation context to attach the task to
        wait: Poll until the task finishes instead of returning right away
        max_attempts: Polls (one per second) before giving up

    Returns:
        The task with its state and the agent's messages
    """
    params = {"message": user_message(request, context_id).to_wire()}
    if context_id:
        params["contextId"] = context_id

    response = await _rpc(role, "message/send", params)
    if "error" in response or not wait:
        return response

    task = Task.model_validate(response["result"])
    reconciler = TaskReconciler()
    messages = []
    for _ in range(max_attempts):
        response = await _rpc(role, "tasks/get", {"taskId": task.id})
        if "error" in response:
            return response
        task = Task.model_validate(response["result"])
        messages.extend(format_message(m) for m in reconciler.reconcile(task))
        if task.is_terminal:
            break
        await asyncio.sleep(POLL_INTERVAL)

    return {
        "taskId": task.id,
        "contextId": task.context_id,
        "state": task.status.state.value,
        "failureReason": task.status.failure_reason,
        "messages": messages,
    }


@mcp.tool()
async def get_task(task_id: str, role: str = "buyer") -> dict:
    """Fetch the current state and history of a task."""
    return await _rpc(role, "tasks/get", {"taskId": task_id})


@mcp.tool()
async def cancel_task(task_id: str, role: str = "buyer") -> dict:
    """Cancel a working task. Finished tasks are returned unchanged."""
    return await _rpc(role, "tasks/cancel", {"taskId": task_id})


@mcp.tool()
async def list_tools(role: str = "buyer") -> dict:
    """List the OpenDirect tools an agent can plan with."""
    async with httpx.AsyncClient(timeout=30.0) as client:
        r = await client.get(f"{SERVER}/a2a/{role}/.well-known/agent-card.json")
        card = r.json()
    for interface in card.get("additionalInterfaces", []):
        if interface.get("protocol") == "mcp":
            return {"role": role, "tools": interface.get("tools", [])}
    return {"role": role, "tools": []}


@mcp.tool()
async def call_tool(name: str, params: dict | None = None) -> dict:
    """Run one OpenDirect tool directly, without planning.

    Args:
        name: Tool name, e.g. "create_account"
        params: Arguments matching the tool's input schema

    Returns:
        The tool's result, or an error message
    """
    try:
        result = await get_registry().invoke(name, params or {})
    except (ToolNotFoundError, ToolInvocationError) as e:
        return {"tool": name, "error": str(e)}
    return {"tool": name, "result": result}


if __name__ == "__main__":
    mcp.run()
