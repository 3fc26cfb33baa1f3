"""Remote MCP server for Readwise Reader."""
