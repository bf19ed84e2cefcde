"""Planner oracle: asks an LLM to turn an utterance into a tool plan."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Protocol, Sequence

import httpx
from pydantic import ValidationError

from agentdirect.config import Settings
from agentdirect.faults import PlanningFault
from agentdirect.roles import RoleProfile
from agentdirect.schemas import PREVIOUS_RESULT_PLACEHOLDER, Plan, ToolSpec

logger = logging.getLogger(__name__)

# Timeouts
DEFAULT_TIMEOUT = 60.0  # seconds
HEALTH_TIMEOUT = 5.0

_CODE_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


class PlannerOracle(Protocol):
    """Anything that can plan an utterance against a tool catalogue."""

    async def plan(self, utterance: str, tools: Sequence[ToolSpec]) -> Plan: ...


def build_planning_prompt(persona: str, tools: Sequence[ToolSpec]) -> str:
    """Build the system prompt listing tools and the plan formats."""
    tool_lines = []
    for tool in tools:
        properties = tool.input_schema.get("properties", {})
        tool_lines.append(
            f"- {tool.name}: {tool.description}\n"
            f"  Parameters: {json.dumps(properties, indent=2)}"
        )
    tool_block = "\n".join(tool_lines)

    example = {
        "steps": [
            {"toolName": "create_account", "toolParams": {"name": "Nike", "type": "advertiser"}},
            {
                "toolName": "create_order",
                "toolParams": {"accountId": PREVIOUS_RESULT_PLACEHOLDER, "name": "Nike", "budget": 500},
            },
        ]
    }

    return f"""You are {persona}.
Your job is to analyze user requests and determine which tools to execute.

Available tools with their exact parameter names:
{tool_block}

IMPORTANT RULES:
1. Use the EXACT tool and parameter names from the list above
2. Use entity names EXACTLY as provided by the user (do NOT add suffixes like "Account" or "Order")
3. When a step needs the id of the record created by the step right before it, use the placeholder "{PREVIOUS_RESULT_PLACEHOLDER}"
4. A placeholder can only refer to the immediately preceding step, never the first step's own input
5. You must respond with a valid JSON object and nothing else

Example for "create account for Nike and create order for Nike with budget 500":
{json.dumps(example, indent=2)}

If the request requires only ONE tool, respond with this JSON format:
{{"toolName": "the_tool_to_use", "toolParams": {{"paramName": "value"}}}}"""


def parse_plan_response(text: str) -> Plan:
    """Decode an LLM reply into a Plan.

    Raises:
        PlanningFault: the reply is empty, not JSON, or not a plan
    """
    text = (text or "").strip()
    if not text:
        raise PlanningFault("Planner returned an empty response")

    fenced = _CODE_FENCE.match(text)
    if fenced:
        text = fenced.group(1)

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise PlanningFault(f"Planner returned malformed JSON: {e.msg}") from e

    try:
        return Plan.model_validate(payload)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(p) for p in first["loc"]) or "plan"
        raise PlanningFault(f"Planner returned an invalid plan ({location}: {first['msg']})") from e


class HttpPlanner:
    """Base class for planners backed by an HTTP LLM endpoint."""

    backend = "http"

    def __init__(
        self,
        base_url: str,
        model: str,
        persona: str = "an OpenDirect agent",
        timeout: float = DEFAULT_TIMEOUT,
        temperature: float = 0.3,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.persona = persona
        self.timeout = timeout
        self.temperature = temperature
        self.api_key = api_key
        self._transport = transport

    async def plan(self, utterance: str, tools: Sequence[ToolSpec]) -> Plan:
        system_prompt = build_planning_prompt(self.persona, tools)
        logger.info(f"Planning with {self.backend} model {self.model} over {len(tools)} tools")
        text = await self._complete(system_prompt, utterance)
        plan = parse_plan_response(text)
        logger.info(f"Planner produced {len(plan.steps)} step(s): {[s.tool_name for s in plan.steps]}")
        return plan

    async def _complete(self, system_prompt: str, utterance: str) -> str:
        """Call the LLM, retrying once on timeout."""
        try:
            return await self._request(system_prompt, utterance, self.timeout)

        except httpx.ConnectError as e:
            logger.error(f"Failed to connect to planner at {self.base_url}: {e}")
            raise PlanningFault("Planner service unavailable") from e

        except httpx.TimeoutException as e:
            logger.warning("Planner request timed out, retrying once...")
            try:
                return await self._request(system_prompt, utterance, self.timeout * 1.5)
            except httpx.HTTPError as retry_error:
                logger.error(f"Planner retry failed: {retry_error}")
                raise PlanningFault("Planner request timed out after retry") from e

        except httpx.HTTPStatusError as e:
            logger.error(f"Planner HTTP error: {e}")
            raise PlanningFault(f"Planner returned error: {e.response.status_code}") from e

        except httpx.HTTPError as e:
            logger.error(f"Planner request failed: {e}")
            raise PlanningFault(f"Planner request failed: {e}") from e

    async def _request(self, system_prompt: str, utterance: str, timeout: float) -> str:
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            response = await client.post(
                self._endpoint(),
                json=self._payload(system_prompt, utterance),
                headers=self._headers(),
            )
            response.raise_for_status()
            try:
                body = response.json()
            except ValueError as e:
                raise PlanningFault("Planner returned a non-JSON body") from e
            return self._extract_text(body)

    def _headers(self) -> dict[str, str]:
        if self.api_key:
            return {"Authorization": f"Bearer {self.api_key}"}
        return {}

    def _endpoint(self) -> str:
        raise NotImplementedError

    def _payload(self, system_prompt: str, utterance: str) -> dict[str, Any]:
        raise NotImplementedError

    def _extract_text(self, body: Any) -> str:
        raise NotImplementedError

    def _health_path(self) -> str:
        raise NotImplementedError

    async def check_health(self) -> bool:
        """Check if the planner service answers."""
        try:
            async with httpx.AsyncClient(timeout=HEALTH_TIMEOUT, transport=self._transport) as client:
                response = await client.get(f"{self.base_url}{self._health_path()}", headers=self._headers())
                return response.status_code == 200
        except httpx.HTTPError:
            return False


class OllamaPlanner(HttpPlanner):
    """Planner using Ollama's generate API in JSON mode."""

    backend = "ollama"

    def _endpoint(self) -> str:
        return f"{self.base_url}/api/generate"

    def _payload(self, system_prompt: str, utterance: str) -> dict[str, Any]:
        return {
            "model": self.model,
            "system": system_prompt,
            "prompt": utterance,
            "format": "json",
            "stream": False,
            "options": {"temperature": self.temperature},
        }

    def _extract_text(self, body: Any) -> str:
        return body.get("response", "") if isinstance(body, dict) else ""

    def _health_path(self) -> str:
        return "/api/tags"


class OpenAIPlanner(HttpPlanner):
    """Planner using an OpenAI-compatible chat completions API."""

    backend = "openai"

    def _endpoint(self) -> str:
        return f"{self.base_url}/v1/chat/completions"

    def _payload(self, system_prompt: str, utterance: str) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": utterance},
            ],
            "response_format": {"type": "json_object"},
            "temperature": self.temperature,
        }

    def _extract_text(self, body: Any) -> str:
        try:
            return body["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError):
            raise PlanningFault("No response from planner")

    def _health_path(self) -> str:
        return "/v1/models"


def create_planner(settings: Settings, profile: RoleProfile) -> HttpPlanner:
    """Planner for one role, as configured."""
    planner_cls = OpenAIPlanner if settings.planner_backend == "openai" else OllamaPlanner
    return planner_cls(
        base_url=settings.planner_base_url,
        model=settings.planner_model,
        persona=profile.persona,
        timeout=settings.planner_timeout,
        temperature=settings.planner_temperature,
        api_key=settings.planner_api_key,
    )
