"""Readwise Reader MCP Server -- Streamable HTTP entry point."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator
from urllib.parse import urlparse

from mcp.server.auth.settings import AuthSettings, ClientRegistrationOptions, RevocationOptions
from mcp.server.fastmcp import FastMCP
from mcp.server.transport_security import TransportSecuritySettings
from pydantic import AnyHttpUrl
from starlette.applications import Starlette
from starlette.routing import Mount

from reader_mcp.api.client import READER_BASE_URL
from reader_mcp.auth.approval import ApprovalCookie
from reader_mcp.auth.handler import AuthorizeHandler
from reader_mcp.auth.provider import REQUIRED_SCOPES, SCOPES, ReaderOAuthProvider
from reader_mcp.config import Settings
from reader_mcp.tools.documents import register_document_tools
from reader_mcp.tools.tags import register_tag_tools

logger = logging.getLogger(__name__)


def _transport_security(server_url: str) -> TransportSecuritySettings:
    """DNS rebinding protection that also admits the public server URL."""
    public = urlparse(server_url)
    return TransportSecuritySettings(
        enable_dns_rebinding_protection=True,
        allowed_hosts=["127.0.0.1:*", "localhost:*", "[::1]:*", public.netloc],
        allowed_origins=[
            "http://127.0.0.1:*",
            "http://localhost:*",
            "http://[::1]:*",
            f"{public.scheme}://{public.netloc}",
        ],
    )


def build_mcp(
    provider: ReaderOAuthProvider,
    settings: Settings,
    reader_base_url: str = READER_BASE_URL,
) -> FastMCP:
    """Create the FastMCP server with the SDK's OAuth routes backed by ``provider``."""
    mcp = FastMCP(
        name="Readwise Reader MCP",
        instructions=(
            "Readwise Reader MCP server. List, read, save, update and delete documents "
            "in your Reader library, and list your tags."
        ),
        host=settings.host,
        port=settings.port,
        auth_server_provider=provider,
        auth=AuthSettings(
            issuer_url=AnyHttpUrl(settings.server_url),
            resource_server_url=AnyHttpUrl(settings.server_url),
            required_scopes=REQUIRED_SCOPES,
            client_registration_options=ClientRegistrationOptions(
                enabled=True,
                valid_scopes=SCOPES,
                default_scopes=SCOPES,
            ),
            revocation_options=RevocationOptions(enabled=True),
            # Audience is checked when the provider decodes the JWT
            validate_token_resource=False,
        ),
        transport_security=_transport_security(settings.server_url),
    )

    register_document_tools(mcp, base_url=reader_base_url)
    register_tag_tools(mcp, base_url=reader_base_url)
    return mcp


def create_app(
    settings: Settings | None = None,
    reader_base_url: str = READER_BASE_URL,
) -> Starlette:
    """Create the full ASGI application with MCP and authorization routes."""
    settings = settings or Settings()

    provider = ReaderOAuthProvider(server_url=settings.server_url, jwt_secret=settings.jwt_secret)
    authorize_handler = AuthorizeHandler(
        provider=provider,
        cookie=ApprovalCookie(settings.cookie_encryption_key),
        reader_base_url=reader_base_url,
    )
    mcp = build_mcp(provider, settings, reader_base_url=reader_base_url)

    # The MCP app handles /mcp, /register, /token, /revoke and metadata
    mcp_app = mcp.streamable_http_app()

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        async with mcp.session_manager.run():
            yield
        logger.info("Server shutdown: MCP sessions closed")

    routes = [
        # Our /authorize shadows the SDK's
        *authorize_handler.routes(),
        Mount("/", mcp_app),
    ]

    app = Starlette(routes=routes, lifespan=lifespan)
    app.state.mcp = mcp
    app.state.provider = provider
    return app


def main() -> None:
    """Entry point: start the Readwise Reader MCP server."""
    import uvicorn

    settings = Settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    if bool(settings.ssl_certfile) != bool(settings.ssl_keyfile):
        raise ValueError("SSL_CERTFILE and SSL_KEYFILE must be set together")
    if settings.ssl_certfile:
        logger.info("TLS certs: %s, %s", settings.ssl_certfile, settings.ssl_keyfile)
    logger.info("Starting Readwise Reader MCP server on %s", settings.server_url)

    app = create_app(settings)
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        ssl_certfile=settings.ssl_certfile,
        ssl_keyfile=settings.ssl_keyfile,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
