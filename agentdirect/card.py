"""Agent card (discovery document) generation."""

from __future__ import annotations

from agentdirect import __version__
from agentdirect.roles import SCOPES, AgentRole, get_role
from agentdirect.schemas import AgentCapabilities, AgentCard, AgentInterface

AGENT_CARD_PATH = ".well-known/agent-card.json"


def agent_url(base_url: str, role: AgentRole) -> str:
    return f"{base_url.rstrip('/')}/a2a/{role.value}"


def build_agent_card(role: AgentRole, tool_names: list[str], base_url: str) -> AgentCard:
    """Describe one role's agent, advertising the registry's current tool names."""
    profile = get_role(role)
    base_url = base_url.rstrip("/")
    url = agent_url(base_url, role)

    oauth_flows = {
        "clientCredentials": {
            "tokenUrl": f"{base_url}/oauth/token",
            "scopes": dict(SCOPES),
        },
        "authorizationCode": {
            "tokenUrl": f"{base_url}/oauth/token",
            "authorizationUrl": f"{base_url}/oauth/authorize",
            "scopes": dict(SCOPES),
        },
    }

    return AgentCard(
        name=f"opendirect-{role.value}-agent",
        description=profile.description,
        version=__version__,
        url=url,
        skills=profile.skills,
        capabilities=AgentCapabilities(streaming=True, push_notifications=False, mcp_integration=True),
        security_schemes={
            "oauth2": {
                "type": "oauth2",
                "description": "OAuth 2.0 authentication for OpenDirect API access",
                "flows": oauth_flows,
            }
        },
        security=[{"oauth2": list(profile.required_scopes)}],
        additional_interfaces=[
            AgentInterface(protocol="jsonrpc", version="2.0", transport="http", url=f"{url}/jsonrpc"),
            AgentInterface(protocol="mcp", version="2024-11-05", transport="stdio", tools=list(tool_names)),
        ],
    )
