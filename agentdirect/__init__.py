"""AgentDirect: role-scoped agents that plan and run OpenDirect operations.

Callers send a natural-language request over JSON-RPC, the agent plans tool
invocations with an LLM, runs them, and the resulting task is tracked until it
completes, fails, or is canceled.
"""

__version__ = "0.1.0"
