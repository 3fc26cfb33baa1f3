"""OAuth 2.1 authorization server storage for the Reader MCP server.

The MCP SDK serves ``/register``, ``/token``, ``/revoke`` and the metadata
documents, and calls into :class:`ReaderOAuthProvider` for storage. The
``/authorize`` step is ours (see ``reader_mcp.auth.handler``); it uses
:meth:`ReaderOAuthProvider.parse_auth_request`,
:meth:`ReaderOAuthProvider.lookup_client` and
:meth:`ReaderOAuthProvider.complete_authorization`.

Every successful authorization records a :class:`Grant` whose ``props`` hold
the user's Readwise token. MCP clients receive short-lived JWTs that reference
the grant; they never see the Readwise token.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Literal
from urllib.parse import urlencode

import jwt
from mcp.server.auth.provider import (
    AccessToken,
    AuthorizationCode,
    AuthorizationParams,
    AuthorizeError,
    RefreshToken,
    TokenError,
    construct_redirect_uri,
)
from mcp.shared.auth import (
    InvalidRedirectUriError,
    InvalidScopeError,
    OAuthClientInformationFull,
    OAuthToken,
)
from pydantic import AnyUrl, BaseModel, Field
from starlette.requests import Request

logger = logging.getLogger(__name__)

SCOPES = ["readwise:read", "readwise:write"]
REQUIRED_SCOPES = ["readwise:read"]

AUTH_CODE_TTL = 600  # 10 minutes
ACCESS_TOKEN_TTL = 3600  # 1 hour
REFRESH_TOKEN_TTL = 86400 * 30  # 30 days


class AuthorizationRequest(BaseModel):
    """An /authorize request as understood by this server.

    Serialized into the consent and token forms, so it must round-trip
    through JSON unchanged.
    """

    client_id: str
    redirect_uri: str
    redirect_uri_provided_explicitly: bool = True
    scopes: list[str]
    state: str | None = None
    code_challenge: str
    code_challenge_method: Literal["S256"] = "S256"
    resource: str | None = None

    model_config = {"frozen": True}


class GrantProps(BaseModel):
    """Custom properties bound to a grant."""

    api_token: str = Field(alias="apiToken", repr=False)

    model_config = {"populate_by_name": True, "frozen": True}


@dataclass(frozen=True)
class Grant:
    """A completed authorization: one user, one client, one Readwise token."""

    grant_id: str
    client_id: str
    user_id: str
    scopes: list[str]
    props: GrantProps
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)


class ReaderAuthorizationCode(AuthorizationCode):
    grant_id: str


class ReaderRefreshToken(RefreshToken):
    grant_id: str


class GrantAccessToken(AccessToken):
    """Access token resolved to its grant; ``props`` carry the Readwise token."""

    grant_id: str
    user_id: str
    props: GrantProps


class ReaderOAuthProvider:
    """In-memory ``OAuthAuthorizationServerProvider`` with grant props.

    State lives for the process lifetime only; restarting the server forces
    clients to register and authorize again.
    """

    def __init__(
        self,
        server_url: str = "http://localhost:8787",
        jwt_secret: str | None = None,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self._jwt_secret = jwt_secret or secrets.token_hex(64)
        self._clients: dict[str, OAuthClientInformationFull] = {}
        self._grants: dict[str, Grant] = {}
        # code -> pending authorization code
        self._auth_codes: dict[str, ReaderAuthorizationCode] = {}
        # token -> refresh token
        self._refresh_tokens: dict[str, ReaderRefreshToken] = {}

    # -- Client registration --

    async def get_client(self, client_id: str) -> OAuthClientInformationFull | None:
        return self._clients.get(client_id)

    async def register_client(self, client_info: OAuthClientInformationFull) -> None:
        if not client_info.client_id:
            raise ValueError("client_id is required")
        self._clients[client_info.client_id] = client_info
        logger.info(
            "Registered client %s (%s)", client_info.client_id, client_info.client_name or "unnamed"
        )

    async def lookup_client(self, client_id: str) -> OAuthClientInformationFull | None:
        """Client details for the consent screen."""
        return await self.get_client(client_id)

    # -- Authorization --

    async def parse_auth_request(self, request: Request) -> AuthorizationRequest:
        """Parse and validate the query string of an /authorize request.

        Raises:
            AuthorizeError: If the request is malformed, the client is unknown,
                or the redirect URI or scopes are not registered for it.
        """
        params = request.query_params
        client_id = params.get("client_id", "")
        if not client_id:
            raise AuthorizeError("invalid_request", "Invalid request")

        client = await self.get_client(client_id)
        if client is None:
            raise AuthorizeError("invalid_request", "Unknown client")

        response_type = params.get("response_type", "code")
        if response_type != "code":
            raise AuthorizeError("unsupported_response_type", "Only response_type=code is supported")

        code_challenge = params.get("code_challenge", "")
        if not code_challenge:
            raise AuthorizeError("invalid_request", "Missing code_challenge")
        if params.get("code_challenge_method", "S256") != "S256":
            raise AuthorizeError("invalid_request", "Only S256 is supported")

        raw_redirect_uri = params.get("redirect_uri")
        try:
            redirect_uri = client.validate_redirect_uri(
                AnyUrl(raw_redirect_uri) if raw_redirect_uri else None
            )
            scopes = client.validate_scope(params.get("scope"))
        except InvalidRedirectUriError as e:
            raise AuthorizeError("invalid_request", e.message) from e
        except InvalidScopeError as e:
            raise AuthorizeError("invalid_scope", e.message) from e
        except ValueError as e:
            raise AuthorizeError("invalid_request", "Malformed redirect_uri") from e

        if scopes is None:
            scopes = client.scope.split() if client.scope else list(SCOPES)

        return AuthorizationRequest(
            client_id=client_id,
            redirect_uri=str(redirect_uri),
            redirect_uri_provided_explicitly=raw_redirect_uri is not None,
            scopes=scopes,
            state=params.get("state"),
            code_challenge=code_challenge,
            resource=params.get("resource"),
        )

    async def authorize(
        self, client: OAuthClientInformationFull, params: AuthorizationParams
    ) -> str:
        """Send the user-agent to this server's consent flow."""
        query: dict[str, str] = {
            "response_type": "code",
            "client_id": client.client_id or "",
            "code_challenge": params.code_challenge,
            "code_challenge_method": "S256",
        }
        if params.redirect_uri_provided_explicitly:
            query["redirect_uri"] = str(params.redirect_uri)
        if params.state:
            query["state"] = params.state
        if params.scopes:
            query["scope"] = " ".join(params.scopes)
        if params.resource:
            query["resource"] = params.resource
        return f"{self.server_url}/authorize?{urlencode(query)}"

    async def complete_authorization(
        self,
        *,
        request: AuthorizationRequest,
        user_id: str,
        scope: list[str],
        props: GrantProps,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Record a grant, mint its authorization code and return the client redirect URL."""
        client = await self.get_client(request.client_id)
        if client is None:
            raise AuthorizeError("invalid_request", "Unknown client")
        # Re-check the carried request against registration
        try:
            client.validate_redirect_uri(AnyUrl(request.redirect_uri))
        except InvalidRedirectUriError as e:
            raise AuthorizeError("invalid_request", e.message) from e
        except ValueError as e:
            raise AuthorizeError("invalid_request", "Malformed redirect_uri") from e
        allowed = client.scope.split() if client.scope else SCOPES
        for name in scope:
            if name not in allowed:
                raise AuthorizeError("invalid_scope", f"Client was not registered with scope {name}")

        self._purge_expired(time.time())
        grant = Grant(
            grant_id=secrets.token_urlsafe(16),
            client_id=request.client_id,
            user_id=user_id,
            scopes=list(scope),
            props=props,
            metadata=dict(metadata or {}),
        )
        self._grants[grant.grant_id] = grant

        code = secrets.token_urlsafe(32)
        self._auth_codes[code] = ReaderAuthorizationCode(
            code=code,
            scopes=grant.scopes,
            expires_at=time.time() + AUTH_CODE_TTL,
            client_id=request.client_id,
            code_challenge=request.code_challenge,
            redirect_uri=AnyUrl(request.redirect_uri),
            redirect_uri_provided_explicitly=request.redirect_uri_provided_explicitly,
            resource=request.resource,
            grant_id=grant.grant_id,
        )
        logger.info("Created grant %s for user %s (client %s)", grant.grant_id, user_id, request.client_id)
        return construct_redirect_uri(request.redirect_uri, code=code, state=request.state)

    def get_grant(self, grant_id: str) -> Grant | None:
        return self._grants.get(grant_id)

    # -- Token endpoint --

    async def load_authorization_code(
        self, client: OAuthClientInformationFull, authorization_code: str
    ) -> ReaderAuthorizationCode | None:
        code = self._auth_codes.get(authorization_code)
        if code is None or code.client_id != client.client_id:
            return None
        return code

    async def exchange_authorization_code(
        self, client: OAuthClientInformationFull, authorization_code: ReaderAuthorizationCode
    ) -> OAuthToken:
        # Codes are single-use
        self._auth_codes.pop(authorization_code.code, None)
        grant = self._grants.get(authorization_code.grant_id)
        if grant is None:
            raise TokenError("invalid_grant", "Grant no longer exists")
        return self._issue_tokens(grant, authorization_code.scopes, authorization_code.resource)

    async def load_refresh_token(
        self, client: OAuthClientInformationFull, refresh_token: str
    ) -> ReaderRefreshToken | None:
        stored = self._refresh_tokens.get(refresh_token)
        if stored is None or stored.client_id != client.client_id:
            return None
        if stored.grant_id not in self._grants:
            return None
        return stored

    async def exchange_refresh_token(
        self,
        client: OAuthClientInformationFull,
        refresh_token: ReaderRefreshToken,
        scopes: list[str],
    ) -> OAuthToken:
        """Rotate: the presented refresh token is consumed."""
        self._refresh_tokens.pop(refresh_token.token, None)
        grant = self._grants.get(refresh_token.grant_id)
        if grant is None:
            raise TokenError("invalid_grant", "Grant no longer exists")
        return self._issue_tokens(grant, scopes or refresh_token.scopes, refresh_token.resource)

    def _issue_tokens(self, grant: Grant, scopes: list[str], resource: str | None) -> OAuthToken:
        """Issue an access JWT and an opaque refresh token for a grant."""
        now = time.time()
        claims: dict[str, Any] = {
            "sub": grant.user_id,
            "gid": grant.grant_id,
            "client_id": grant.client_id,
            "iss": self.server_url,
            "aud": self.server_url,
            "scope": " ".join(scopes),
            "iat": int(now),
            "exp": int(now + ACCESS_TOKEN_TTL),
            "jti": secrets.token_hex(8),
        }
        if resource:
            claims["resource"] = resource
        access_token = jwt.encode(claims, self._jwt_secret, algorithm="HS256")

        refresh_token = secrets.token_urlsafe(48)
        self._refresh_tokens[refresh_token] = ReaderRefreshToken(
            token=refresh_token,
            client_id=grant.client_id,
            scopes=scopes,
            expires_at=int(now + REFRESH_TOKEN_TTL),
            resource=resource,
            grant_id=grant.grant_id,
        )
        self._purge_expired(now)

        return OAuthToken(
            access_token=access_token,
            token_type="Bearer",
            expires_in=ACCESS_TOKEN_TTL,
            scope=" ".join(scopes),
            refresh_token=refresh_token,
        )

    def _purge_expired(self, now: float) -> None:
        """Drop expired codes and refresh tokens, and grants left with neither."""
        self._auth_codes = {
            value: code for value, code in self._auth_codes.items() if code.expires_at > now
        }
        self._refresh_tokens = {
            value: stored
            for value, stored in self._refresh_tokens.items()
            if stored.expires_at is None or stored.expires_at > now
        }
        live = {code.grant_id for code in self._auth_codes.values()}
        live.update(stored.grant_id for stored in self._refresh_tokens.values())
        for grant_id in [grant_id for grant_id in self._grants if grant_id not in live]:
            del self._grants[grant_id]
            logger.debug("Expired grant %s", grant_id)

    # -- Token validation (for MCP requests) --

    async def load_access_token(self, token: str) -> GrantAccessToken | None:
        """Validate a JWT access token and resolve its grant."""
        try:
            claims = jwt.decode(
                token,
                self._jwt_secret,
                algorithms=["HS256"],
                audience=self.server_url,
                issuer=self.server_url,
            )
        except jwt.ExpiredSignatureError:
            logger.debug("Access token expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.debug("Invalid access token: %s", e)
            return None

        grant = self._grants.get(claims.get("gid", ""))
        if grant is None:
            logger.debug("Access token references unknown grant")
            return None

        return GrantAccessToken(
            token=token,
            client_id=grant.client_id,
            scopes=claims.get("scope", "").split(),
            expires_at=claims.get("exp"),
            resource=claims.get("resource"),
            grant_id=grant.grant_id,
            user_id=grant.user_id,
            props=grant.props,
        )

    async def revoke_token(self, token: GrantAccessToken | ReaderRefreshToken) -> None:
        """Revoke the whole grant behind an access or refresh token."""
        grant = self._grants.pop(token.grant_id, None)
        self._refresh_tokens = {
            value: stored
            for value, stored in self._refresh_tokens.items()
            if stored.grant_id != token.grant_id
        }
        self._auth_codes = {
            value: code
            for value, code in self._auth_codes.items()
            if code.grant_id != token.grant_id
        }
        if grant is not None:
            logger.info("Revoked grant %s", grant.grant_id)
