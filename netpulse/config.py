"""Runtime configuration for the NetPulse API.

Settings are read from the environment (and an optional ``.env`` file in the
working directory).  Secrets and OAuth credentials have no defaults: if any of
them is missing the application refuses to start instead of silently running
with a well-known value.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal
from urllib.parse import urlsplit

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def origin_of(url: str) -> str:
    """Return the ``scheme://host[:port]`` part of ``url``."""

    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"not an absolute URL: {url!r}")
    return f"{parts.scheme}://{parts.netloc}"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    host: str = "0.0.0.0"
    port: int = 3000

    # Session cookie signing key (SESSION_SECRET)
    session_secret: str = Field(..., min_length=16)
    # Lifetime of both the cookie and the server-side session row, in seconds
    session_max_age: int = Field(default=14 * 24 * 60 * 60, gt=0)
    session_cookie_secure: bool = False
    # A client served from another site needs "none" (which requires secure)
    session_same_site: Literal["lax", "strict", "none"] = "lax"

    google_client_id: str = Field(..., min_length=1)
    google_client_secret: str = Field(..., min_length=1)
    google_callback_url: str = Field(..., min_length=1)

    # Browser destination after login/logout
    client_url: str = Field(..., min_length=1)
    login_failure_url: str | None = None
    redirect_with_profile: bool = False

    cors_origin: str | None = None

    @field_validator("cors_origin")
    @classmethod
    def _no_wildcard_origin(cls, value: str | None) -> str | None:
        if value is not None and value.strip() == "*":
            raise ValueError(
                "CORS_ORIGIN='*' cannot be combined with credentialed requests"
            )
        return value

    @model_validator(mode="after")
    def _derive_defaults(self) -> "Settings":
        if self.session_same_site == "none" and not self.session_cookie_secure:
            raise ValueError("SESSION_SAME_SITE=none requires SESSION_COOKIE_SECURE")
        if self.cors_origin is None:
            self.cors_origin = origin_of(self.client_url)
        if self.login_failure_url is None:
            sep = "&" if urlsplit(self.client_url).query else "?"
            self.login_failure_url = f"{self.client_url}{sep}login=failed"
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached settings instance."""
    return Settings()
