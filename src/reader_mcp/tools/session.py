"""Bind the current MCP session's grant to a Readwise client."""

from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator

import httpx
from mcp.server.auth.middleware.auth_context import get_access_token
from mcp.server.fastmcp.exceptions import ToolError

from reader_mcp.api.client import READER_BASE_URL, ReaderClient
from reader_mcp.auth.provider import GrantAccessToken, GrantProps


def session_props() -> GrantProps:
    """Props of the grant behind the bearer token on the current request."""
    access_token = get_access_token()
    if not isinstance(access_token, GrantAccessToken):
        raise ToolError("Not authenticated")
    return access_token.props


@contextlib.asynccontextmanager
async def reader_client(
    props: GrantProps, base_url: str = READER_BASE_URL
) -> AsyncIterator[ReaderClient]:
    """A client scoped to one tool call, using the grant's Readwise token."""
    async with ReaderClient(token=props.api_token, base_url=base_url) as client:
        yield client


def upstream_error(action: str, exc: httpx.HTTPError) -> ToolError:
    """Turn an upstream failure into a tool error the caller can read."""
    if isinstance(exc, httpx.HTTPStatusError):
        response = exc.response
        reason = f"API request failed: {response.status_code} {response.reason_phrase}"
    else:
        reason = f"API request failed: {type(exc).__name__}"
    return ToolError(f"Error {action}: {reason}")
