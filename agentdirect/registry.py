"""Tool registry: named, schema-typed operations with mock handlers."""

from __future__ import annotations

import inspect
import json
import logging
import uuid
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable

import jsonschema

from agentdirect.schemas import ToolSpec, utc_now

logger = logging.getLogger(__name__)

ToolHandler = Callable[[dict[str, Any]], Any | Awaitable[Any]]

HTTP_METHODS = ("get", "post", "put", "patch", "delete")


class ToolNotFoundError(Exception):
    """Raised when a tool name is not registered."""

    pass


class ToolInvocationError(Exception):
    """Raised when a tool rejects its params or fails while running."""

    pass


def _obj(properties: dict[str, Any], required: list[str] | None = None) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


# Built-in OpenDirect catalogue, used when no schema document is configured.
DEFAULT_TOOLS: list[ToolSpec] = [
    ToolSpec(
        name="create_account",
        description="Create a new advertiser or agency account",
        input_schema=_obj(
            {
                "name": {"type": "string", "description": "Account name"},
                "type": {"type": "string", "enum": ["advertiser", "agency", "publisher"]},
            },
            ["name"],
        ),
    ),
    ToolSpec(
        name="get_account",
        description="Fetch an account by id",
        input_schema=_obj({"accountId": {"type": "string"}}, ["accountId"]),
    ),
    ToolSpec(
        name="list_accounts",
        description="List accounts, optionally filtered by name",
        input_schema=_obj({"name": {"type": "string"}}),
    ),
    ToolSpec(
        name="create_order",
        description="Create an advertising order under an account",
        input_schema=_obj(
            {
                "accountId": {"type": "string", "description": "Owning account id"},
                "name": {"type": "string"},
                "budget": {"type": "number", "minimum": 0},
                "startDate": {"type": "string", "format": "date"},
                "endDate": {"type": "string", "format": "date"},
            },
            ["accountId", "name"],
        ),
    ),
    ToolSpec(
        name="get_order",
        description="Fetch an order by id",
        input_schema=_obj({"orderId": {"type": "string"}}, ["orderId"]),
    ),
    ToolSpec(
        name="update_order_status",
        description="Move an order to a new status",
        input_schema=_obj(
            {
                "orderId": {"type": "string"},
                "status": {"type": "string", "enum": ["pending", "approved", "rejected", "completed"]},
            },
            ["orderId", "status"],
        ),
    ),
    ToolSpec(
        name="search_products",
        description="Search available advertising products",
        input_schema=_obj(
            {
                "query": {"type": "string"},
                "adFormat": {"type": "string", "enum": ["display", "video", "native", "audio"]},
            }
        ),
    ),
    ToolSpec(
        name="create_product",
        description="Publish a new advertising product",
        input_schema=_obj(
            {
                "name": {"type": "string"},
                "rate": {"type": "number", "minimum": 0},
                "adFormat": {"type": "string"},
            },
            ["name"],
        ),
    ),
    ToolSpec(
        name="create_creative",
        description="Submit a creative asset for an order",
        input_schema=_obj(
            {
                "orderId": {"type": "string"},
                "name": {"type": "string"},
                "adFormat": {"type": "string", "enum": ["banner", "video", "native"]},
            },
            ["name"],
        ),
    ),
    ToolSpec(
        name="approve_creative",
        description="Approve or reject a submitted creative",
        input_schema=_obj(
            {
                "creativeId": {"type": "string"},
                "approved": {"type": "boolean"},
                "feedback": {"type": "string"},
            },
            ["creativeId", "approved"],
        ),
    ),
]


def generate_mock_response(tool_name: str, params: dict[str, Any]) -> dict[str, Any]:
    """Fabricate a plausible record for a tool call. Every record has a fresh ``id``."""
    record_id = str(uuid.uuid4())
    now = utc_now()

    if "account" in tool_name:
        return {
            "id": record_id,
            "name": params.get("name") or "Mock Account",
            "type": params.get("type") or "advertiser",
            "status": "active",
            "createdAt": now,
        }

    if "order" in tool_name:
        return {
            "id": record_id,
            "accountId": params.get("accountId") or str(uuid.uuid4()),
            "name": params.get("name") or "Mock Order",
            "budget": params.get("budget", 10000),
            "status": params.get("status") or "pending",
            "createdAt": now,
        }

    if "product" in tool_name:
        return {
            "id": record_id,
            "name": params.get("name") or "Mock Product",
            "type": params.get("adFormat") or "display",
            "rate": params.get("rate", 10.0),
            "available": True,
            "createdAt": now,
        }

    if "creative" in tool_name:
        return {
            "id": record_id,
            "name": params.get("name") or "Mock Creative",
            "adFormat": params.get("adFormat") or "banner",
            "status": "pending_review",
            "createdAt": now,
        }

    return {"id": record_id, **params, "status": "success", "timestamp": now}


def _mock_handler(tool_name: str) -> ToolHandler:
    def handler(params: dict[str, Any]) -> dict[str, Any]:
        return generate_mock_response(tool_name, params)

    return handler


# --- Schema document parsing ---


def _resolve_ref(schema: dict[str, Any], document: dict[str, Any]) -> dict[str, Any]:
    ref = schema.get("$ref")
    if not ref:
        return schema
    name = ref.split("/")[-1]
    return document.get("components", {}).get("schemas", {}).get(name, schema)


def _to_json_schema(schema: dict[str, Any], document: dict[str, Any]) -> dict[str, Any]:
    """Convert an OpenAPI schema object into plain JSON Schema."""
    resolved = _resolve_ref(schema, document)
    converted: dict[str, Any] = {"type": resolved.get("type", "string")}
    for key in ("description", "enum", "format"):
        if key in resolved:
            converted[key] = resolved[key]
    if "items" in resolved:
        converted["items"] = _to_json_schema(resolved["items"], document)
    if "properties" in resolved:
        converted["properties"] = {
            name: _to_json_schema(value, document)
            for name, value in resolved["properties"].items()
        }
    return converted


def _operation_to_tool(
    path: str,
    method: str,
    operation: dict[str, Any],
    document: dict[str, Any],
) -> ToolSpec | None:
    operation_id = operation.get("operationId")
    if not operation_id:
        logger.warning(f"Skipping operation without operationId: {method.upper()} {path}")
        return None

    properties: dict[str, Any] = {}
    required: list[str] = []

    for param in operation.get("parameters", []):
        if "name" not in param:
            continue
        properties[param["name"]] = _to_json_schema(param.get("schema", {}), document)
        if param.get("required"):
            required.append(param["name"])

    body = operation.get("requestBody", {}).get("content", {}).get("application/json", {})
    if "schema" in body:
        body_schema = _resolve_ref(body["schema"], document)
        for name, value in body_schema.get("properties", {}).items():
            properties[name] = _to_json_schema(value, document)
        required.extend(body_schema.get("required", []))

    return ToolSpec(
        name=operation_id,
        description=operation.get("description") or operation.get("summary") or f"Execute {operation_id}",
        input_schema=_obj(properties, required),
    )


def parse_tool_document(document: dict[str, Any]) -> list[ToolSpec]:
    """Extract ToolSpecs from an MCP ``{"tools": [...]}`` or OpenAPI 3 document."""
    if isinstance(document.get("tools"), list):
        tools = [ToolSpec.model_validate(tool) for tool in document["tools"]]
        logger.info(f"Loaded {len(tools)} tools from MCP-format document")
        return tools

    tools: list[ToolSpec] = []
    for path, path_item in document.get("paths", {}).items():
        for method in HTTP_METHODS:
            operation = path_item.get(method)
            if isinstance(operation, dict) and "operationId" in operation:
                tool = _operation_to_tool(path, method, operation, document)
                if tool:
                    tools.append(tool)

    logger.info(f"Parsed {len(tools)} tools from OpenAPI paths")
    return tools


# --- Registry ---


class ToolRegistry:
    """Named tool catalogue with per-tool handlers."""

    def __init__(
        self,
        tools: Iterable[ToolSpec],
        handlers: dict[str, ToolHandler] | None = None,
    ):
        self._tools: dict[str, ToolSpec] = {}
        self._handlers: dict[str, ToolHandler] = {}
        handlers = handlers or {}
        for tool in tools:
            self.register(tool, handlers.get(tool.name))

    @classmethod
    def from_file(cls, path: Path | str) -> ToolRegistry:
        """Build a registry with mock handlers from a schema document on disk."""
        document = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls(parse_tool_document(document))

    @classmethod
    def default(cls) -> ToolRegistry:
        return cls(DEFAULT_TOOLS)

    def register(self, tool: ToolSpec, handler: ToolHandler | None = None) -> None:
        """Add or replace a tool. Tools without a handler get a mock one."""
        self._tools[tool.name] = tool
        self._handlers[tool.name] = handler or _mock_handler(tool.name)

    def list_tools(self) -> list[ToolSpec]:
        return list(self._tools.values())

    def tool_names(self) -> list[str]:
        return list(self._tools)

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    async def invoke(self, name: str, params: dict[str, Any]) -> Any:
        """Validate params against the tool's input schema and run its handler.

        Raises:
            ToolNotFoundError: the tool is not registered
            ToolInvocationError: params are invalid or the handler failed
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(f"Tool not found: {name}")

        try:
            jsonschema.validate(instance=params, schema=tool.input_schema)
        except jsonschema.ValidationError as e:
            raise ToolInvocationError(f"Invalid parameters for {name}: {e.message}") from e
        except jsonschema.SchemaError as e:
            raise ToolInvocationError(f"Tool {name} has an invalid input schema: {e.message}") from e

        logger.debug(f"Invoking tool {name} with {params}")
        try:
            result = self._handlers[name](params)
            if inspect.isawaitable(result):
                result = await result
        except ToolInvocationError:
            raise
        except Exception as e:
            raise ToolInvocationError(f"Tool execution failed: {e}") from e

        return result


def load_registry(schema_path: Path | str | None = None) -> ToolRegistry:
    """Registry from a schema document, or the built-in catalogue."""
    if schema_path:
        return ToolRegistry.from_file(schema_path)
    return ToolRegistry.default()
