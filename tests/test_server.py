"""Tests for the HTTP server contract."""

import json
import time
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from agentdirect.config import Settings
from agentdirect.registry import ToolRegistry
from agentdirect.server import create_app
from agentdirect.store import InMemoryTaskStore

NIKE_PLAN = {"toolName": "create_account", "toolParams": {"name": "Nike"}}


def send_body(text="Create an account for Nike", method="message/send"):
    return {
        "jsonrpc": "2.0",
        "method": method,
        "params": {"message": {"role": "user", "parts": [{"kind": "text", "text": text}]}},
        "id": "req-1",
    }


def get_body(task_id):
    return {"jsonrpc": "2.0", "method": "tasks/get", "params": {"taskId": task_id}, "id": "req-2"}


def wait_for_terminal(client, task_id, role="buyer"):
    for _ in range(200):
        task = client.post(f"/a2a/{role}/jsonrpc", json=get_body(task_id)).json()["result"]
        if task["status"]["state"] != "working":
            return task
        time.sleep(0.01)
    pytest.fail(f"task {task_id} never finished")


@pytest.fixture
def planner(stub_planner):
    return stub_planner(NIKE_PLAN)


@pytest.fixture
def app(planner):
    return create_app(
        settings=Settings(public_url=None),
        registry=ToolRegistry.default(),
        planner_factory=lambda profile: planner,
        store_factory=lambda role: InMemoryTaskStore(),
    )


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


class TestDiscovery:
    """Test index, health and agent cards."""

    def test_index_lists_agents(self, client):
        response = client.get("/")

        assert response.status_code == 200
        agents = {a["role"]: a for a in response.json()["agents"]}
        assert set(agents) == {"buyer", "seller"}
        assert agents["seller"]["jsonrpc"] == "http://testserver/a2a/seller/jsonrpc"

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["server"] == "healthy"
        assert data["planner"] == "healthy"
        assert data["tools"] == len(ToolRegistry.default())

    def test_health_planner_down(self, client, planner):
        planner.check_health = AsyncMock(return_value=False)

        data = client.get("/health").json()

        assert data["planner"] == "unhealthy"
        assert data["server"] == "healthy"

    @pytest.mark.parametrize("path", ["/a2a/buyer/.well-known/agent-card.json", "/a2a/buyer/card"])
    def test_agent_card(self, client, path):
        response = client.get(path)

        assert response.status_code == 200
        card = response.json()
        assert card["name"] == "opendirect-buyer-agent"
        assert card["url"] == "http://testserver/a2a/buyer"
        assert card["protocolVersion"] == "0.3.0"
        assert card["capabilities"]["streaming"] is True
        assert "oauth2" in card["securitySchemes"]

        interfaces = {i["protocol"]: i for i in card["additionalInterfaces"]}
        assert interfaces["jsonrpc"]["url"] == "http://testserver/a2a/buyer/jsonrpc"
        assert interfaces["mcp"]["tools"] == ToolRegistry.default().tool_names()

    def test_seller_card(self, client):
        card = client.get("/a2a/seller/card").json()
        assert card["name"] == "opendirect-seller-agent"
        assert any(s["id"] == "creative-approval" for s in card["skills"])

    def test_mcp_info(self, client):
        response = client.get("/mcp/info")

        assert response.status_code == 200
        data = response.json()
        assert data["specification"] == "MCP"
        assert data["toolsList"] == ToolRegistry.default().tool_names()
        assert data["tools"] == len(ToolRegistry.default())
        assert "create_account" in data["toolsList"]

    def test_unknown_role(self, client):
        assert client.get("/a2a/broker/card").status_code == 422

    def test_public_url_in_card(self, planner):
        app = create_app(
            settings=Settings(public_url="https://agents.example.com"),
            registry=ToolRegistry.default(),
            planner_factory=lambda profile: planner,
            store_factory=lambda role: InMemoryTaskStore(),
        )
        with TestClient(app) as client:
            card = client.get("/a2a/seller/card").json()
        assert card["url"] == "https://agents.example.com/a2a/seller"


class TestJsonRpcEndpoint:
    """Test the JSON-RPC contract over HTTP."""

    def test_parse_error(self, client):
        response = client.post(
            "/a2a/buyer/jsonrpc",
            content="{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["error"]["code"] == -32700
        assert body["id"] is None

    def test_send_then_poll(self, client, planner):
        """Send returns a working task; polling sees it complete."""
        response = client.post("/a2a/buyer/jsonrpc", json=send_body())

        assert response.status_code == 200
        body = response.json()
        assert body["id"] == "req-1"
        assert body["result"]["status"]["state"] == "working"

        task = wait_for_terminal(client, body["result"]["id"])
        assert task["status"]["state"] == "completed"
        assert len(task["history"]) == 2
        assert task["history"][1]["parts"][1]["data"]["name"] == "Nike"
        assert planner.calls == ["Create an account for Nike"]

    def test_bare_role_path(self, client):
        response = client.post("/a2a/seller", json=send_body())
        assert response.json()["result"]["status"]["state"] == "working"

    def test_unknown_task(self, client):
        body = client.post("/a2a/buyer/jsonrpc", json=get_body("missing")).json()
        assert body["error"]["code"] == -32000

    def test_roles_have_separate_tasks(self, client):
        task_id = client.post("/a2a/buyer/jsonrpc", json=send_body()).json()["result"]["id"]

        body = client.post("/a2a/seller/jsonrpc", json=get_body(task_id)).json()

        assert body["error"]["code"] == -32000

    def test_stream(self, client):
        response = client.post("/a2a/buyer/jsonrpc", json=send_body(method="message/stream"))

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")

        events = [
            json.loads(line[len("data: "):])
            for line in response.text.splitlines()
            if line.startswith("data: ")
        ]
        assert [e["result"]["kind"] for e in events] == ["task", "message", "status-update"]
        assert events[-1]["result"]["final"] is True
        assert all(e["id"] == "req-1" for e in events)
