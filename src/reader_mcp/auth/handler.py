"""The /authorize endpoint: consent, Readwise token entry and grant completion.

GET /authorize shows the consent screen, or the token form when this browser
already approved the client. POST /authorize receives one of two forms:

- the consent form (``state`` only): approve the client, show the token form
- the token form (``apiToken`` + ``state``): verify the token upstream and
  complete the authorization, binding the token to the new grant

The request body is parsed once and the branch is chosen from its fields.
"""

from __future__ import annotations

import enum
import logging
import re
import secrets
import time
from html import escape

import httpx
from mcp.server.auth.provider import AuthorizeError
from starlette.datastructures import FormData
from starlette.requests import Request
from starlette.responses import HTMLResponse, PlainTextResponse, RedirectResponse, Response
from starlette.routing import Route

from reader_mcp.api.client import READER_BASE_URL, ReaderClient
from reader_mcp.auth.approval import (
    ApprovalCookie,
    ApprovalError,
    ServerInfo,
    parse_redirect_approval,
    render_approval_dialog,
)
from reader_mcp.auth.provider import AuthorizationRequest, GrantProps, ReaderOAuthProvider
from reader_mcp.auth.state import StateError, decode_request, encode_request, request_from_state

logger = logging.getLogger(__name__)

AUTHORIZE_PATH = "/authorize"

# Client-side pattern and server-side check must agree
API_TOKEN_PATTERN = "readwise_[A-Za-z0-9]{38}"
_API_TOKEN_RE = re.compile(API_TOKEN_PATTERN)

GRANT_LABEL = "Readwise Reader User"

DEFAULT_SERVER_INFO = ServerInfo(
    name="Readwise Reader MCP Server",
    description="Access your Readwise Reader documents through MCP",
    logo="https://readwise.io/favicon.ico",
)


class Submission(enum.Enum):
    """Which form arrived at POST /authorize."""

    APPROVAL = "approval"
    TOKEN = "token"


class Verification(enum.Enum):
    """Outcome of checking a submitted token against Readwise."""

    VERIFIED = "verified"
    REJECTED = "rejected"
    UNAVAILABLE = "unavailable"


def classify_submission(form: FormData) -> Submission:
    return Submission.TOKEN if "apiToken" in form else Submission.APPROVAL


def is_api_token_shaped(value: str) -> bool:
    return _API_TOKEN_RE.fullmatch(value) is not None


def new_user_id() -> str:
    """A fresh user id per grant; there is no login, so every grant is a new user."""
    return f"reader_user_{time.time_ns()}_{secrets.token_hex(4)}"


async def verify_api_token(api_token: str, base_url: str = READER_BASE_URL) -> Verification:
    """Check the token with Readwise's auth endpoint, then confirm library access.

    Not retried: the user resubmits the form on failure.
    """
    async with ReaderClient(token=api_token, base_url=base_url) as client:
        try:
            valid = await client.validate_token()
        except httpx.HTTPError as e:
            logger.warning("Token verification request failed: %s", type(e).__name__)
            return Verification.REJECTED
        if not valid:
            return Verification.REJECTED

        try:
            has_access = await client.check_access()
        except httpx.HTTPError as e:
            logger.warning("Library access check failed: %s", type(e).__name__)
            return Verification.UNAVAILABLE
        return Verification.VERIFIED if has_access else Verification.UNAVAILABLE


class AuthorizeHandler:
    """Starlette endpoints for GET and POST /authorize."""

    def __init__(
        self,
        provider: ReaderOAuthProvider,
        cookie: ApprovalCookie,
        server_info: ServerInfo = DEFAULT_SERVER_INFO,
        reader_base_url: str = READER_BASE_URL,
    ) -> None:
        self.provider = provider
        self.cookie = cookie
        self.server_info = server_info
        self.reader_base_url = reader_base_url

    async def authorize(self, request: Request) -> Response:
        """GET /authorize: consent screen, or token form for approved clients."""
        try:
            auth_request = await self.provider.parse_auth_request(request)
        except AuthorizeError as e:
            logger.warning("Rejected authorization request: %s", e.error_description or e.error)
            return PlainTextResponse(e.error_description or "Invalid request", status_code=400)

        if self.cookie.is_approved(request, auth_request.client_id):
            return HTMLResponse(render_token_entry_page(auth_request))

        client = await self.provider.lookup_client(auth_request.client_id)
        return HTMLResponse(
            render_approval_dialog(
                request,
                client=client,
                server=self.server_info,
                state={"oauthReqInfo": auth_request.model_dump(mode="json")},
            )
        )

    async def authorize_submit(self, request: Request) -> Response:
        """POST /authorize: dispatch on which form was submitted."""
        form = await request.form()
        if classify_submission(form) is Submission.TOKEN:
            return await self._handle_token_submission(form)
        return await self._handle_approval_submission(request, form)

    async def _handle_approval_submission(self, request: Request, form: FormData) -> Response:
        try:
            state, headers = parse_redirect_approval(request, form, self.cookie)
        except ApprovalError as e:
            logger.warning("Invalid approval submission: %s", e)
            return PlainTextResponse("Invalid request", status_code=400)

        request_info = state.get("oauthReqInfo")
        if not request_info:
            return PlainTextResponse("Invalid request", status_code=400)
        try:
            auth_request = request_from_state(request_info)
        except StateError:
            return PlainTextResponse("Invalid request", status_code=400)

        return HTMLResponse(render_token_entry_page(auth_request), headers=headers)

    async def _handle_token_submission(self, form: FormData) -> Response:
        encoded_state = form.get("state")
        if not isinstance(encoded_state, str):
            return PlainTextResponse("Invalid request", status_code=400)
        try:
            auth_request = decode_request(encoded_state)
        except StateError:
            return PlainTextResponse("Invalid request", status_code=400)

        api_token = form.get("apiToken")
        if not isinstance(api_token, str) or not is_api_token_shaped(api_token.strip()):
            logger.info("Token for client %s failed the shape check", auth_request.client_id)
            return PlainTextResponse("Invalid API token", status_code=400)
        api_token = api_token.strip()

        verification = await verify_api_token(api_token, base_url=self.reader_base_url)
        if verification is Verification.REJECTED:
            logger.info("Readwise rejected token for client %s", auth_request.client_id)
            return PlainTextResponse("Invalid API token", status_code=400)
        if verification is Verification.UNAVAILABLE:
            return PlainTextResponse("Failed to fetch user data", status_code=500)

        try:
            redirect_to = await self.provider.complete_authorization(
                request=auth_request,
                user_id=new_user_id(),
                scope=list(auth_request.scopes),
                props=GrantProps(api_token=api_token),
                metadata={"label": GRANT_LABEL},
            )
        except AuthorizeError as e:
            return PlainTextResponse(e.error_description or "Invalid request", status_code=400)

        return RedirectResponse(redirect_to, status_code=302)

    def routes(self) -> list[Route]:
        """Return Starlette routes for the authorization endpoint."""
        return [
            Route(AUTHORIZE_PATH, self.authorize, methods=["GET"]),
            Route(AUTHORIZE_PATH, self.authorize_submit, methods=["POST"]),
        ]


def render_token_entry_page(auth_request: AuthorizationRequest) -> str:
    """Generate the Readwise token entry form.

    The pending authorization rides along as an encoded hidden field.
    """
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <title>Connect Your Readwise Reader Account</title>
    <style>
        body {{
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', system-ui, sans-serif;
            max-width: 480px;
            margin: 80px auto;
            padding: 0 20px;
            background: #f8f9fa;
            color: #212529;
        }}
        .card {{
            background: white;
            border-radius: 12px;
            padding: 32px;
            box-shadow: 0 1px 3px rgba(0,0,0,0.1);
        }}
        h1 {{
            font-size: 1.5rem;
            margin: 0 0 8px 0;
        }}
        .subtitle {{
            color: #6c757d;
            margin: 0 0 24px 0;
        }}
        label {{
            display: block;
            font-weight: 600;
            margin-bottom: 8px;
        }}
        input[type="password"] {{
            width: 100%;
            padding: 10px 12px;
            border: 1px solid #dee2e6;
            border-radius: 8px;
            font-size: 14px;
            box-sizing: border-box;
        }}
        input[type="password"]:focus {{
            outline: none;
            border-color: #0d6efd;
            box-shadow: 0 0 0 3px rgba(13, 110, 253, 0.15);
        }}
        button {{
            width: 100%;
            padding: 12px;
            background: #0d6efd;
            color: white;
            border: none;
            border-radius: 8px;
            font-size: 16px;
            font-weight: 600;
            cursor: pointer;
            margin-top: 16px;
        }}
        button:hover {{
            background: #0b5ed7;
        }}
        button:disabled {{
            background: #adb5bd;
            cursor: not-allowed;
        }}
        .help {{
            font-size: 13px;
            color: #6c757d;
            margin-top: 8px;
        }}
        .error {{
            color: #dc3545;
            font-size: 13px;
            margin-top: 8px;
            display: none;
        }}
        a {{ color: #0d6efd; }}
    </style>
</head>
<body>
    <div class="card">
        <h1>Connect Your Readwise Reader</h1>
        <p class="subtitle">Enter your API token to access your documents</p>
        <form id="tokenForm" method="POST" action="{AUTHORIZE_PATH}">
            <input type="hidden" name="state" value="{escape(encode_request(auth_request))}">
            <label for="apiToken">Readwise API Token</label>
            <input type="password" id="apiToken" name="apiToken"
                   placeholder="readwise_XXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXX"
                   autocomplete="off" required
                   pattern="{API_TOKEN_PATTERN}"
                   title="API token should start with 'readwise_' followed by 38 characters">
            <div class="error" id="error">Please enter a valid Readwise API token</div>
            <p class="help">
                Get your token at <a href="https://readwise.io/access_token"
                target="_blank" rel="noopener noreferrer">readwise.io/access_token</a>
            </p>
            <button type="submit" id="submitBtn">Connect Account</button>
        </form>
    </div>
    <script>
        document.getElementById('tokenForm').addEventListener('submit', (e) => {{
            const apiToken = document.getElementById('apiToken').value;
            const errorDiv = document.getElementById('error');
            if (!/^{API_TOKEN_PATTERN}$/.test(apiToken)) {{
                e.preventDefault();
                errorDiv.style.display = 'block';
                return;
            }}
            errorDiv.style.display = 'none';
            const submitBtn = document.getElementById('submitBtn');
            submitBtn.disabled = true;
            submitBtn.textContent = 'Verifying...';
        }});
    </script>
</body>
</html>"""
