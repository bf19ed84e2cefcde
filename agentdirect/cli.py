"""CLI for AgentDirect - run the agent server and talk to it."""

from __future__ import annotations

import json
import sys

import click
import httpx

from agentdirect import __version__
from agentdirect.config import get_settings
from agentdirect.faults import RpcError
from agentdirect.roles import AgentRole
from agentdirect.schemas import TaskState

ROLE_CHOICE = click.Choice([r.value for r in AgentRole])


def _default_url() -> str:
    settings = get_settings()
    return settings.public_url or f"http://{settings.host}:{settings.port}"


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _client(url: str | None, role: str):
    from agentdirect.client import AgentClient

    return AgentClient(url or _default_url(), role=role)


@click.group()
@click.version_option(version=__version__, prog_name="agentdirect")
def main() -> None:
    """AgentDirect - role-scoped agents for OpenDirect operations.

    Send natural-language requests to the buyer or seller agent and follow
    the resulting tasks until they finish.
    """
    pass


@main.command()
@click.option("--port", default=None, type=int, help="Port to run the server on")
@click.option("--host", default=None, help="Host to bind to")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
def serve(port: int | None, host: str | None, reload: bool) -> None:
    """Start the AgentDirect HTTP server."""
    import uvicorn

    settings = get_settings()
    host = host or settings.host
    port = port or settings.port

    click.echo(f"Starting AgentDirect on {host}:{port}")
    uvicorn.run(
        "agentdirect.server:app",
        host=host,
        port=port,
        reload=reload,
    )


@main.command()
@click.argument("utterance")
@click.option("--role", "-r", type=ROLE_CHOICE, default=AgentRole.BUYER.value, help="Agent to ask")
@click.option("--url", "-u", default=None, help="Server base URL (defaults to configured host/port)")
@click.option("--context-id", "-c", default=None, help="Conversation context to attach the task to")
@click.option("--no-wait", is_flag=True, help="Return after the task is created")
@click.option("--interval", default=None, type=float, help="Seconds between polls")
@click.option("--max-attempts", default=None, type=int, help="Polls before giving up")
@click.option(
    "--raw",
    is_flag=True,
    help="Output raw JSON instead of formatted text",
)
def ask(
    utterance: str,
    role: str,
    url: str | None,
    context_id: str | None,
    no_wait: bool,
    interval: float | None,
    max_attempts: int | None,
    raw: bool,
) -> None:
    """Ask an agent to do something and follow the task.

    \b
    Example:
        agentdirect ask "Create an account for Nike"
        agentdirect ask "List available products" --role seller
    """
    from agentdirect.client import describe_outcome, format_message

    settings = get_settings()
    interval = interval or settings.poll_interval
    max_attempts = max_attempts or settings.poll_max_attempts

    def show(message) -> None:
        if not raw:
            click.echo(format_message(message))
            click.echo()

    try:
        with _client(url, role) as client:
            task = client.send_message(utterance, context_id=context_id)
            if no_wait:
                click.echo(json.dumps(task.to_wire(), indent=2) if raw else f"Task {task.id} created")
                return

            if not raw:
                click.echo(f"Task {task.id} ({role} agent)\n")
            outcome = client.poll_task(task.id, on_message=show, interval=interval, max_attempts=max_attempts)
    except RpcError as e:
        _fail(f"{e.message} (code {e.code})")
    except httpx.HTTPError as e:
        _fail(f"Cannot reach AgentDirect server: {e}")

    if raw:
        click.echo(json.dumps(outcome.task.to_wire(), indent=2))
    else:
        click.echo(describe_outcome(outcome))

    if outcome.timed_out or outcome.task.status.state != TaskState.COMPLETED:
        sys.exit(1)


@main.command()
@click.argument("task_id")
@click.option("--role", "-r", type=ROLE_CHOICE, default=AgentRole.BUYER.value, help="Agent owning the task")
@click.option("--url", "-u", default=None, help="Server base URL")
def task(task_id: str, role: str, url: str | None) -> None:
    """Show a task as JSON."""
    try:
        with _client(url, role) as client:
            result = client.get_task(task_id)
    except RpcError as e:
        _fail(f"{e.message} (code {e.code})")
    except httpx.HTTPError as e:
        _fail(f"Cannot reach AgentDirect server: {e}")

    click.echo(json.dumps(result.to_wire(), indent=2))


@main.command()
@click.argument("task_id")
@click.option("--role", "-r", type=ROLE_CHOICE, default=AgentRole.BUYER.value, help="Agent owning the task")
@click.option("--url", "-u", default=None, help="Server base URL")
def cancel(task_id: str, role: str, url: str | None) -> None:
    """Cancel a working task.

    A task that already finished is left as it is.
    """
    try:
        with _client(url, role) as client:
            result = client.cancel_task(task_id)
    except RpcError as e:
        _fail(f"{e.message} (code {e.code})")
    except httpx.HTTPError as e:
        _fail(f"Cannot reach AgentDirect server: {e}")

    click.echo(f"Task {result.id} is {result.status.state.value}")


@main.command()
@click.option(
    "--schema", "-s",
    default=None,
    type=click.Path(exists=True, dir_okay=False, resolve_path=True),
    help="MCP tools document or OpenAPI spec (defaults to configured catalogue)",
)
@click.option("--raw", is_flag=True, help="Output raw JSON")
def tools(schema: str | None, raw: bool) -> None:
    """List the tools agents can plan with."""
    from agentdirect.registry import load_registry

    registry = load_registry(schema or get_settings().tool_schema_path)
    specs = registry.list_tools()

    if raw:
        click.echo(json.dumps([t.model_dump(by_alias=True) for t in specs], indent=2))
        return

    click.echo(f"{len(specs)} tools:")
    for spec in specs:
        click.echo(f"  - {spec.name}: {spec.description}")


@main.command()
def mcp() -> None:
    """Run the MCP server for MCP hosts.

    The MCP server forwards tool calls to a running AgentDirect server.

    \b
    Configure in .mcp.json:
        {
            "mcpServers": {
                "agentdirect": {
                    "command": "agentdirect",
                    "args": ["mcp"]
                }
            }
        }
    """
    from mcp_agentdirect.server import mcp as mcp_server
    mcp_server.run()


if __name__ == "__main__":
    main()
