"""HTTP server exposing one JSON-RPC agent endpoint per role."""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse

from agentdirect import __version__
from agentdirect.card import AGENT_CARD_PATH, agent_url, build_agent_card
from agentdirect.config import Settings, get_settings
from agentdirect.executor import StepExecutor
from agentdirect.faults import RpcErrorCode
from agentdirect.planner import PlannerOracle, create_planner
from agentdirect.registry import ToolRegistry, load_registry
from agentdirect.roles import AgentRole, RoleProfile, get_role
from agentdirect.router import ProtocolRouter, StreamingCall, rpc_error
from agentdirect.schemas import AgentCard, HealthResponse
from agentdirect.store import TaskStore, create_task_store

logger = logging.getLogger(__name__)

# Configure logging
logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


@dataclass
class AgentRuntime:
    """Everything behind one role's endpoint."""

    role: AgentRole
    router: ProtocolRouter
    planner: PlannerOracle


async def _sse(call: StreamingCall) -> AsyncIterator[str]:
    async for response in call.responses():
        yield f"data: {json.dumps(response)}\n\n"


def create_app(
    settings: Settings | None = None,
    registry: ToolRegistry | None = None,
    planner_factory: Callable[[RoleProfile], PlannerOracle] | None = None,
    store_factory: Callable[[AgentRole], TaskStore] | None = None,
) -> FastAPI:
    """Build the application.

    Args:
        settings: Configuration, defaults to the environment
        registry: Tool registry shared by all roles
        planner_factory: Builds the planner for a role profile
        store_factory: Builds the task store for a role

    Returns:
        FastAPI app with buyer and seller agents mounted under /a2a
    """
    settings = settings or get_settings()
    registry = registry or load_registry(settings.tool_schema_path)

    if planner_factory is None:
        def planner_factory(profile: RoleProfile) -> PlannerOracle:
            return create_planner(settings, profile)

    if store_factory is None:
        def store_factory(role: AgentRole) -> TaskStore:
            return create_task_store(settings.store_backend, settings.store_path, namespace=role.value)

    runtimes: dict[AgentRole, AgentRuntime] = {}
    for role in AgentRole:
        planner = planner_factory(get_role(role))
        router = ProtocolRouter(role, store_factory(role), StepExecutor(registry, planner))
        runtimes[role] = AgentRuntime(role=role, router=router, planner=planner)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"AgentDirect ready: {len(registry)} tools, roles={[r.value for r in runtimes]}")
        yield
        for runtime in runtimes.values():
            await runtime.router.aclose()
        logger.info("AgentDirect stopped")

    app = FastAPI(
        title="AgentDirect",
        description="Role-scoped JSON-RPC agents that plan and execute OpenDirect operations",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.runtimes = runtimes
    app.state.registry = registry

    def base_url(request: Request) -> str:
        return settings.public_url or str(request.base_url).rstrip("/")

    # --- HTTP Endpoints ---

    @app.get("/")
    async def index(request: Request) -> dict:
        """List available agents."""
        root = base_url(request)
        return {
            "name": "AgentDirect",
            "version": __version__,
            "protocol": "A2A v0.3.0",
            "agents": [
                {
                    "role": role.value,
                    "agentCard": f"{agent_url(root, role)}/{AGENT_CARD_PATH}",
                    "jsonrpc": f"{agent_url(root, role)}/jsonrpc",
                }
                for role in runtimes
            ],
        }

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        """Check server and planner health."""
        planner = runtimes[AgentRole.BUYER].planner
        check = getattr(planner, "check_health", None)
        planner_healthy = await check() if check is not None else True

        return HealthResponse(
            planner="healthy" if planner_healthy else "unhealthy",
            planner_backend=settings.planner_backend,
            tools=len(registry),
            active_tasks=sum(r.router.active_executions for r in runtimes.values()),
        )

    @app.get("/mcp/info")
    async def mcp_info() -> dict:
        """Tools the MCP server exposes for direct calls."""
        return {
            "name": "agentdirect",
            "version": __version__,
            "specification": "MCP",
            "tools": len(registry),
            "toolsList": registry.tool_names(),
        }

    @app.get(
        f"/a2a/{{role}}/{AGENT_CARD_PATH}",
        response_model=AgentCard,
        response_model_exclude_none=True,
    )
    @app.get("/a2a/{role}/card", response_model=AgentCard, response_model_exclude_none=True)
    async def agent_card(role: AgentRole, request: Request) -> AgentCard:
        """Discovery document for one agent."""
        return build_agent_card(role, runtimes[role].router.tool_names(), base_url(request))

    @app.post("/a2a/{role}")
    @app.post("/a2a/{role}/jsonrpc")
    async def jsonrpc(role: AgentRole, request: Request):
        """JSON-RPC 2.0 endpoint.

        Methods:
            message/send    - create a task and start it in the background
            message/stream  - same, answered as a Server-Sent-Event stream
            tasks/get       - current task snapshot
            tasks/cancel    - cancel a working task
            tasks/list      - all tasks, optionally by state
        """
        try:
            body = await request.json()
        except ValueError as e:
            return JSONResponse(rpc_error(None, RpcErrorCode.PARSE_ERROR, f"Parse error: {e}"))

        result = await runtimes[role].router.handle(body)
        if isinstance(result, StreamingCall):
            return StreamingResponse(
                _sse(result),
                media_type="text/event-stream",
                headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
            )
        return JSONResponse(result)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions."""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content=rpc_error(None, RpcErrorCode.INTERNAL_ERROR, str(exc) or "Internal error"),
        )

    return app


app = create_app()
