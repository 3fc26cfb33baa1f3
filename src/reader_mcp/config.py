"""Environment-driven server settings."""

from __future__ import annotations

import secrets

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Signs the approved-clients cookie
    cookie_encryption_key: str = Field(..., description="Secret for the client approval cookie")
    # HS256 key for access tokens; a fresh one per process invalidates old tokens on restart
    jwt_secret: str = Field(default_factory=lambda: secrets.token_hex(64))

    # Public URL clients reach us at (issuer and resource identifier)
    server_url: str = Field("http://localhost:8787")

    host: str = Field("127.0.0.1")
    port: int = Field(8787)
    ssl_certfile: str | None = Field(None)
    ssl_keyfile: str | None = Field(None)

    log_level: str = Field("info")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
