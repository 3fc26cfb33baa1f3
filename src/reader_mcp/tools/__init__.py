"""MCP tools over the Readwise Reader API."""
