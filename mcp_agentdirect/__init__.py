"""MCP bridge to the AgentDirect HTTP server."""
