"""Tests for the LLM planner oracle."""

import json

import httpx
import pytest

from agentdirect.config import Settings
from agentdirect.faults import PlanningFault
from agentdirect.planner import (
    OllamaPlanner,
    OpenAIPlanner,
    build_planning_prompt,
    create_planner,
    parse_plan_response,
)
from agentdirect.roles import AgentRole, get_role
from agentdirect.schemas import PREVIOUS_RESULT_PLACEHOLDER

SINGLE_STEP = {"toolName": "create_account", "toolParams": {"name": "Nike"}}


def ollama_reply(payload) -> httpx.Response:
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return httpx.Response(200, json={"model": "test", "response": text, "done": True})


class TestPlanningPrompt:
    """Test the system prompt contents."""

    def test_lists_tools_and_placeholder(self, registry):
        prompt = build_planning_prompt("the OpenDirect buyer agent", registry.list_tools())

        assert prompt.startswith("You are the OpenDirect buyer agent.")
        assert "- create_account: Create a new advertiser or agency account" in prompt
        assert '"accountId"' in prompt
        assert PREVIOUS_RESULT_PLACEHOLDER in prompt
        assert '"toolName"' in prompt


class TestParsePlanResponse:
    """Test decoding LLM replies."""

    def test_plain_json(self):
        plan = parse_plan_response(json.dumps(SINGLE_STEP))
        assert plan.steps[0].tool_name == "create_account"

    def test_code_fenced_json(self):
        plan = parse_plan_response("```json\n" + json.dumps(SINGLE_STEP) + "\n```")
        assert plan.steps[0].params == {"name": "Nike"}

    def test_empty_reply(self):
        with pytest.raises(PlanningFault, match="empty"):
            parse_plan_response("   ")

    def test_malformed_json(self):
        with pytest.raises(PlanningFault, match="malformed JSON"):
            parse_plan_response("{toolName: create_account")

    def test_wrong_shape(self):
        with pytest.raises(PlanningFault, match="invalid plan"):
            parse_plan_response('{"steps": []}')


class TestOllamaPlanner:
    """Test the Ollama backend over a mock transport."""

    async def test_plan_request(self, registry):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return ollama_reply(SINGLE_STEP)

        planner = OllamaPlanner(
            "http://ollama:11434/", "mistral", persona="a tester", transport=httpx.MockTransport(handler)
        )
        plan = await planner.plan("Create an account for Nike", registry.list_tools())

        assert plan.steps[0].tool_name == "create_account"
        assert seen["url"] == "http://ollama:11434/api/generate"
        assert seen["body"]["format"] == "json"
        assert seen["body"]["stream"] is False
        assert seen["body"]["prompt"] == "Create an account for Nike"
        assert seen["body"]["system"].startswith("You are a tester.")

    async def test_connect_error(self, registry):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        planner = OllamaPlanner("http://ollama:11434", "m", transport=httpx.MockTransport(handler))
        with pytest.raises(PlanningFault, match="unavailable"):
            await planner.plan("hi", registry.list_tools())

    async def test_timeout_retries_once(self, registry):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ReadTimeout("slow", request=request)
            return ollama_reply(SINGLE_STEP)

        planner = OllamaPlanner("http://ollama:11434", "m", transport=httpx.MockTransport(handler))
        plan = await planner.plan("hi", registry.list_tools())

        assert len(attempts) == 2
        assert plan.steps[0].tool_name == "create_account"

    async def test_timeout_twice_fails(self, registry):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        planner = OllamaPlanner("http://ollama:11434", "m", transport=httpx.MockTransport(handler))
        with pytest.raises(PlanningFault, match="timed out"):
            await planner.plan("hi", registry.list_tools())

    async def test_http_error_status(self, registry):
        planner = OllamaPlanner(
            "http://ollama:11434", "m",
            transport=httpx.MockTransport(lambda request: httpx.Response(500, text="oops")),
        )
        with pytest.raises(PlanningFault, match="500"):
            await planner.plan("hi", registry.list_tools())

    async def test_non_json_body(self, registry):
        planner = OllamaPlanner(
            "http://ollama:11434", "m",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>")),
        )
        with pytest.raises(PlanningFault, match="non-JSON"):
            await planner.plan("hi", registry.list_tools())

    async def test_model_reply_not_json(self, registry):
        planner = OllamaPlanner(
            "http://ollama:11434", "m",
            transport=httpx.MockTransport(lambda request: ollama_reply("I would create an account")),
        )
        with pytest.raises(PlanningFault, match="malformed JSON"):
            await planner.plan("hi", registry.list_tools())

    async def test_check_health(self):
        def handler(request):
            assert request.url.path == "/api/tags"
            return httpx.Response(200, json={"models": []})

        planner = OllamaPlanner("http://ollama:11434", "m", transport=httpx.MockTransport(handler))
        assert await planner.check_health()

    async def test_check_health_down(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        planner = OllamaPlanner("http://ollama:11434", "m", transport=httpx.MockTransport(handler))
        assert not await planner.check_health()


class TestOpenAIPlanner:
    """Test the OpenAI-compatible backend."""

    async def test_plan_request(self, registry):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "choices": [{"message": {"role": "assistant", "content": json.dumps(SINGLE_STEP)}}]
            })

        planner = OpenAIPlanner(
            "https://llm.example.com", "gpt-test", api_key="sk-test", transport=httpx.MockTransport(handler)
        )
        plan = await planner.plan("Create an account for Nike", registry.list_tools())

        assert plan.steps[0].params == {"name": "Nike"}
        assert seen["url"] == "https://llm.example.com/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["response_format"] == {"type": "json_object"}
        assert [m["role"] for m in seen["body"]["messages"]] == ["system", "user"]

    async def test_no_choices(self, registry):
        planner = OpenAIPlanner(
            "https://llm.example.com", "gpt-test",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"choices": []})),
        )
        with pytest.raises(PlanningFault, match="No response"):
            await planner.plan("hi", registry.list_tools())


class TestCreatePlanner:
    def test_backend_selection(self):
        profile = get_role(AgentRole.SELLER)

        ollama = create_planner(Settings(planner_backend="ollama"), profile)
        openai = create_planner(
            Settings(planner_backend="openai", planner_base_url="https://llm.example.com"), profile
        )

        assert isinstance(ollama, OllamaPlanner)
        assert isinstance(openai, OpenAIPlanner)
        assert openai.persona == profile.persona


@pytest.mark.integration
class TestLivePlanner:
    """Requires a running Ollama server."""

    async def test_plans_account_creation(self, registry):
        planner = create_planner(Settings(), get_role(AgentRole.BUYER))
        if not await planner.check_health():
            pytest.skip("Ollama not available")

        plan = await planner.plan("Create an account for Nike", registry.list_tools())
        assert plan.steps[0].tool_name == "create_account"
