"""MCP tools for tag operations."""

from __future__ import annotations

from typing import Annotated, Any

import httpx
from mcp.server.fastmcp import FastMCP
from pydantic import Field

from reader_mcp.api.client import READER_BASE_URL, ReaderClient
from reader_mcp.tools.session import reader_client, session_props, upstream_error


async def list_tags(client: ReaderClient, limit: int = 50) -> dict[str, Any]:
    try:
        tags = await client.list_all_tags(limit=limit)
    except httpx.HTTPError as e:
        raise upstream_error("fetching tags", e) from e
    return {
        "tags": [{"key": tag.key, "name": tag.name} for tag in tags],
        "count": len(tags),
    }


def register_tag_tools(mcp: FastMCP, base_url: str = READER_BASE_URL) -> None:
    """Register tag-related MCP tools."""

    @mcp.tool(name="tagList")
    async def tag_list_tool(
        limit: Annotated[
            int,
            Field(ge=1, le=100, description="Maximum number of tags to return (default: 50, max: 100)"),
        ] = 50,
    ) -> dict[str, Any]:
        """List all available tags from your Readwise Reader library."""
        async with reader_client(session_props(), base_url) as client:
            return await list_tags(client, limit=limit)
