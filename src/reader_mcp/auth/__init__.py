"""OAuth authorization flow binding a Readwise token to an MCP grant."""
