"""Consent screen and the signed approved-clients cookie.

A browser that approved a client once skips the consent screen for that
client afterwards. The list of approved client ids is held client-side in a
Fernet token keyed from the server secret, so it cannot be forged or edited.
"""

from __future__ import annotations

import base64
import hashlib
import logging
from dataclasses import dataclass
from html import escape
from typing import Any

import orjson
from cryptography.fernet import Fernet, InvalidToken
from mcp.shared.auth import OAuthClientInformationFull
from starlette.datastructures import FormData
from starlette.requests import Request

from reader_mcp.auth.state import StateError, decode_state, encode_state

logger = logging.getLogger(__name__)

APPROVAL_COOKIE = "mcp-approved-clients"
COOKIE_MAX_AGE = 86400 * 365  # 1 year


class ApprovalError(ValueError):
    """The consent form submission could not be understood."""


class ApprovalCookie:
    """Reads and writes the approved-clients cookie.

    The Fernet key is derived from an arbitrary-length secret, so any
    configured string works as ``COOKIE_ENCRYPTION_KEY``.
    """

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("A cookie secret is required")
        key = base64.urlsafe_b64encode(hashlib.sha256(secret.encode()).digest())
        self._fernet = Fernet(key)

    def approved_clients(self, request: Request) -> list[str]:
        """Client ids this browser approved. Invalid cookies count as none."""
        value = request.cookies.get(APPROVAL_COOKIE)
        if not value:
            return []
        try:
            payload = self._fernet.decrypt(value.encode(), ttl=COOKIE_MAX_AGE)
            client_ids = orjson.loads(payload)
        except InvalidToken:
            logger.warning("Ignoring approval cookie that failed verification")
            return []
        except orjson.JSONDecodeError:
            logger.warning("Ignoring approval cookie with malformed payload")
            return []
        if not isinstance(client_ids, list):
            return []
        return [str(client_id) for client_id in client_ids]

    def is_approved(self, request: Request, client_id: str) -> bool:
        return client_id in self.approved_clients(request)

    def set_cookie_header(self, client_ids: list[str]) -> str:
        token = self._fernet.encrypt(orjson.dumps(client_ids)).decode("ascii")
        return (
            f"{APPROVAL_COOKIE}={token}; HttpOnly; Secure; Path=/; "
            f"SameSite=Lax; Max-Age={COOKIE_MAX_AGE}"
        )


@dataclass(frozen=True)
class ServerInfo:
    """How this server presents itself on the consent screen."""

    name: str
    description: str = ""
    logo: str | None = None


def parse_redirect_approval(
    request: Request, form: FormData, cookie: ApprovalCookie
) -> tuple[dict[str, Any], dict[str, str]]:
    """Recover the carried state from a consent form and approve its client.

    Returns the decoded state and the response headers that persist the
    updated approved-clients cookie.

    Raises:
        ApprovalError: If the form has no decodable ``state``.
    """
    encoded = form.get("state")
    if not isinstance(encoded, str) or not encoded:
        raise ApprovalError("Missing state in approval form")
    try:
        state = decode_state(encoded)
    except StateError as e:
        raise ApprovalError(str(e)) from e

    headers: dict[str, str] = {}
    request_info = state.get("oauthReqInfo")
    if request_info is None:
        return state, headers

    client_id = request_info.get("client_id") if isinstance(request_info, dict) else None
    if not isinstance(client_id, str) or not client_id:
        raise ApprovalError("Approval state has no client id")

    approved = cookie.approved_clients(request)
    if client_id not in approved:
        approved.append(client_id)
    headers["Set-Cookie"] = cookie.set_cookie_header(approved)
    logger.info("Client %s approved", client_id)
    return state, headers


def render_approval_dialog(
    request: Request,
    *,
    client: OAuthClientInformationFull | None,
    server: ServerInfo,
    state: dict[str, Any],
) -> str:
    """Render the consent page; approving POSTs the encoded state back here."""
    client_name = escape(client.client_name if client and client.client_name else "Unknown MCP Client")
    server_name = escape(server.name)
    logo_html = (
        f'<img src="{escape(server.logo)}" alt="{server_name} logo" class="logo">'
        if server.logo
        else ""
    )
    description_html = (
        f'<p class="description">{escape(server.description)}</p>' if server.description else ""
    )

    details = []
    if client and client.client_uri:
        uri = escape(str(client.client_uri))
        details.append(("Website", f'<a href="{uri}" target="_blank" rel="noopener noreferrer">{uri}</a>'))
    if client and client.redirect_uris:
        details.append(("Redirect URIs", "<br>".join(escape(str(u)) for u in client.redirect_uris)))
    if client and client.contacts:
        details.append(("Contact", escape(", ".join(client.contacts))))
    details_html = "".join(
        f'<div class="detail"><span class="label">{label}:</span> '
        f'<span class="value">{value}</span></div>'
        for label, value in details
    )

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <title>{client_name} | Authorization Request</title>
    <style>
        body {{
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', system-ui, sans-serif;
            max-width: 560px;
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
        .header {{
            display: flex;
            align-items: center;
            gap: 12px;
            margin-bottom: 16px;
        }}
        .logo {{
            width: 40px;
            height: 40px;
            object-fit: contain;
        }}
        h1 {{
            font-size: 1.5rem;
            margin: 0;
        }}
        h2 {{
            font-size: 1.15rem;
            margin: 24px 0 12px 0;
        }}
        .description {{
            color: #6c757d;
            margin: 0 0 16px 0;
        }}
        .client-info {{
            border: 1px solid #dee2e6;
            border-radius: 8px;
            padding: 16px;
            margin-bottom: 16px;
        }}
        .client-name {{
            font-weight: 600;
            margin-bottom: 8px;
        }}
        .detail {{
            font-size: 14px;
            margin-top: 6px;
            word-break: break-all;
        }}
        .label {{
            font-weight: 600;
            color: #495057;
        }}
        .actions {{
            display: flex;
            justify-content: flex-end;
            gap: 12px;
            margin-top: 24px;
        }}
        button {{
            padding: 10px 20px;
            border-radius: 8px;
            font-size: 16px;
            font-weight: 600;
            cursor: pointer;
        }}
        .primary {{
            background: #0d6efd;
            color: white;
            border: none;
        }}
        .primary:hover {{
            background: #0b5ed7;
        }}
        .secondary {{
            background: white;
            color: #212529;
            border: 1px solid #dee2e6;
        }}
        a {{ color: #0d6efd; }}
    </style>
</head>
<body>
    <div class="card">
        <div class="header">
            {logo_html}
            <h1>{server_name}</h1>
        </div>
        {description_html}
        <h2>{client_name} is requesting access</h2>
        <div class="client-info">
            <div class="client-name">{client_name}</div>
            {details_html}
        </div>
        <p>This MCP client is requesting to be authorized on {server_name}.
        If you approve, you will be asked for your Readwise API token next.</p>
        <form method="POST" action="{escape(request.url.path)}">
            <input type="hidden" name="state" value="{escape(encode_state(state))}">
            <div class="actions">
                <button type="button" class="secondary" onclick="window.history.back()">Cancel</button>
                <button type="submit" class="primary">Approve</button>
            </div>
        </form>
    </div>
</body>
</html>"""
