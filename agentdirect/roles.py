"""Agent role definitions: who each JSON-RPC endpoint speaks for."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from agentdirect.schemas import Skill


class AgentRole(str, Enum):
    """Available agent roles, one endpoint each."""

    BUYER = "buyer"
    SELLER = "seller"


# Declared for discovery only; requests are never checked against them.
SCOPES: dict[str, str] = {
    "opendirect:read": "Read access to OpenDirect resources",
    "opendirect:write": "Write access to OpenDirect resources",
    "opendirect:admin": "Administrative access to OpenDirect resources",
}


@dataclass
class RoleProfile:
    """What a role advertises and how the planner should speak for it."""

    role: AgentRole
    description: str
    persona: str
    skills: list[Skill] = field(default_factory=list)
    required_scopes: list[str] = field(default_factory=lambda: ["opendirect:read", "opendirect:write"])


ROLES: dict[AgentRole, RoleProfile] = {
    AgentRole.BUYER: RoleProfile(
        role=AgentRole.BUYER,
        description=(
            "Use this agent for ALL advertising-related requests including: creating accounts, "
            "managing campaigns, creating orders, submitting creatives, and searching for "
            "advertising products. Handles advertiser (buyer) operations using OpenDirect v2.1."
        ),
        persona="the OpenDirect buyer agent, acting for an advertiser",
        skills=[
            Skill(
                id="campaign-planning",
                name="Campaign Planning",
                description="Plan and design advertising campaigns",
                tags=["advertising", "campaign", "planning"],
                examples=[
                    "Create a campaign for Nike summer collection",
                    "Plan an advertising campaign targeting millennials",
                ],
                input_modes=["text/plain", "application/json"],
                output_modes=["text/plain", "application/json"],
            ),
            Skill(
                id="order-creation",
                name="Order Creation",
                description="Create and manage advertising orders",
                tags=["advertising", "order", "creation"],
                examples=[
                    "Create an account for Nike",
                    "Create an order for Adidas campaign",
                    "Create order with budget $50000",
                ],
            ),
            Skill(
                id="creative-submission",
                name="Creative Submission",
                description="Submit and manage creative assets",
                tags=["advertising", "creative", "assets"],
                examples=["Submit creative for Nike banner ad"],
            ),
            Skill(
                id="product-discovery",
                name="Product Discovery",
                description="Search and discover advertising products",
                tags=["advertising", "product", "search"],
                examples=["Find premium advertising products", "List available ad products"],
                input_modes=["text/plain"],
            ),
        ],
    ),
    AgentRole.SELLER: RoleProfile(
        role=AgentRole.SELLER,
        description=(
            "Use this agent for ALL publisher-related requests including: searching inventory, "
            "managing products, processing orders, and approving creatives. Handles publisher "
            "(seller) operations using OpenDirect v2.1."
        ),
        persona="the OpenDirect seller agent, acting for a publisher",
        skills=[
            Skill(
                id="product-search",
                name="Product Search",
                description="Search available advertising inventory",
                tags=["advertising", "inventory", "search"],
                examples=["List available products", "Find video ad inventory"],
                input_modes=["text/plain", "application/json"],
            ),
            Skill(
                id="inventory-management",
                name="Inventory Management",
                description="Manage advertising inventory and products",
                tags=["advertising", "inventory", "management"],
                examples=["Create new ad product", "Update product availability"],
            ),
            Skill(
                id="order-processing",
                name="Order Processing",
                description="Process and fulfill advertising orders",
                tags=["advertising", "order", "fulfillment"],
                examples=["Approve pending order", "Update order status"],
            ),
            Skill(
                id="creative-approval",
                name="Creative Approval",
                description="Review and approve creative submissions",
                tags=["advertising", "creative", "approval"],
                examples=["Approve banner ad creative", "Reject creative with feedback"],
            ),
        ],
    ),
}


def get_role(role: AgentRole | str) -> RoleProfile:
    """Get role profile by name."""
    return ROLES[AgentRole(role)]
