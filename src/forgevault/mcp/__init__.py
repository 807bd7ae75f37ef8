"""MCP tool surface for upstream callers."""
