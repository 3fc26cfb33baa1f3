"""E2E test fixtures: in-process ASGI app with MCP client session."""

from __future__ import annotations

import asyncio
import base64
import contextlib
import hashlib
import secrets
from collections.abc import AsyncGenerator
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from mcp.client.session import ClientSession
from mcp.client.streamable_http import streamable_http_client
from mcp.server.fastmcp import FastMCP
from mcp.shared.auth import OAuthClientInformationFull
from pydantic import AnyUrl
from starlette.applications import Starlette

from reader_mcp.auth.provider import SCOPES, AuthorizationRequest, GrantProps, ReaderOAuthProvider
from reader_mcp.config import Settings
from reader_mcp.server import create_app

TEST_SERVER_URL = "http://localhost:8787"
E2E_REDIRECT_URI = "http://localhost:3000/callback"
E2E_API_TOKEN = "readwise_" + "E2eTestToken" * 3 + "Ab"


def pkce_pair() -> tuple[str, str]:
    verifier = secrets.token_urlsafe(48)
    challenge = base64.urlsafe_b64encode(
        hashlib.sha256(verifier.encode()).digest()
    ).rstrip(b"=").decode()
    return verifier, challenge


# -- Component fixtures --


@pytest.fixture
def e2e_settings() -> Settings:
    return Settings(
        cookie_encryption_key="e2e-cookie-secret",
        jwt_secret="e2e" * 32,
        server_url=TEST_SERVER_URL,
    )


@pytest.fixture
def e2e_app(e2e_settings: Settings) -> Starlette:
    """ASGI app for raw HTTP tests (OAuth endpoints, auth rejection).

    httpx.ASGITransport doesn't trigger ASGI lifespan events, so tests that
    reach /mcp enter ``app.state.mcp.session_manager.run()`` themselves.
    """
    return create_app(e2e_settings)


@pytest.fixture
def e2e_mcp(e2e_app: Starlette) -> FastMCP:
    return e2e_app.state.mcp


@pytest.fixture
def e2e_provider(e2e_app: Starlette) -> ReaderOAuthProvider:
    return e2e_app.state.provider


@pytest.fixture
def e2e_http_client(e2e_app: Starlette) -> httpx.AsyncClient:
    """Unauthenticated async HTTP client against the ASGI app."""
    transport = httpx.ASGITransport(app=e2e_app)  # type: ignore[arg-type]
    return httpx.AsyncClient(transport=transport, base_url=TEST_SERVER_URL)


@pytest.fixture
async def e2e_access_token(e2e_provider: ReaderOAuthProvider) -> str:
    """Access token for a grant bound to ``E2E_API_TOKEN``, issued without the browser steps."""
    await e2e_provider.register_client(OAuthClientInformationFull(
        client_id="e2e-test-client",
        client_name="e2e-test-client",
        redirect_uris=[AnyUrl(E2E_REDIRECT_URI)],
        token_endpoint_auth_method="none",
        scope=" ".join(SCOPES),
    ))
    _, challenge = pkce_pair()
    redirect = await e2e_provider.complete_authorization(
        request=AuthorizationRequest(
            client_id="e2e-test-client",
            redirect_uri=E2E_REDIRECT_URI,
            scopes=list(SCOPES),
            code_challenge=challenge,
        ),
        user_id="reader_user_e2e",
        scope=list(SCOPES),
        props=GrantProps(api_token=E2E_API_TOKEN),
        metadata={"label": "Readwise Reader User"},
    )
    code = parse_qs(urlparse(redirect).query)["code"][0]
    client = await e2e_provider.get_client("e2e-test-client")
    assert client is not None
    auth_code = await e2e_provider.load_authorization_code(client, code)
    assert auth_code is not None
    tokens = await e2e_provider.exchange_authorization_code(client, auth_code)
    return tokens.access_token


@pytest.fixture
async def e2e_mcp_session(
    e2e_app: Starlette,
    e2e_mcp: FastMCP,
    e2e_access_token: str,
) -> AsyncGenerator[ClientSession]:
    """Connected and initialized MCP ClientSession over in-process ASGI transport.

    Runs the full MCP client stack in a dedicated asyncio task so that all
    anyio cancel scopes are entered and exited within the same task.
    pytest-asyncio tears down async generator fixtures in a different task
    from setup, which causes anyio to raise 'Attempted to exit cancel scope
    in a different task' during teardown of nested context managers.
    """
    ready: asyncio.Event = asyncio.Event()
    done: asyncio.Event = asyncio.Event()
    session_ref: dict[str, ClientSession] = {}

    async def _run() -> None:
        async with e2e_mcp.session_manager.run():
            transport = httpx.ASGITransport(app=e2e_app)  # type: ignore[arg-type]
            async with httpx.AsyncClient(
                transport=transport,
                base_url=TEST_SERVER_URL,
                headers={"Authorization": f"Bearer {e2e_access_token}"},
            ) as http_client:
                async with streamable_http_client(
                    f"{TEST_SERVER_URL}/mcp",
                    http_client=http_client,
                ) as (read_stream, write_stream, _):
                    async with ClientSession(read_stream, write_stream) as session:
                        await session.initialize()
                        session_ref["session"] = session
                        ready.set()
                        await done.wait()

    task = asyncio.create_task(_run())
    await ready.wait()

    yield session_ref["session"]

    done.set()
    try:
        await asyncio.wait_for(task, timeout=5.0)
    except (TimeoutError, RuntimeError, BaseExceptionGroup):
        pass
    if not task.done():
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
