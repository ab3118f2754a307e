from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Tuple

DEFAULT_BASE_URL = "https://sentry.io"
DEFAULT_FRONTEND_URL = "http://localhost:5173"

# Read access to organizations, projects, teams, members and issues/events.
SCOPE_LIST: Tuple[str, ...] = (
    "org:read",
    "project:read",
    "team:read",
    "member:read",
    "event:read",
)


@dataclass(frozen=True)
class AuthConfig:
    # Sentry OAuth application
    client_id: Optional[str]
    client_secret: Optional[str]
    redirect_uri: Optional[str]
    base_url: str

    # Session configuration
    session_secret: Optional[str]  # Required for session cookie signing
    session_ttl_seconds: int
    cookie_secure: bool

    # Where the browser lands after the callback
    frontend_url: str

    # Outbound HTTP
    http_timeout_seconds: float

    @property
    def oauth_configured(self) -> bool:
        """OAuth is usable once the client credentials and redirect URI are set."""
        return bool(self.client_id and self.client_secret and self.redirect_uri)

    @property
    def scope(self) -> str:
        return " ".join(SCOPE_LIST)


def _parse_bool(value: str) -> Optional[bool]:
    v = (value or "").strip().lower()
    if v in ("1", "true", "yes", "on"):
        return True
    if v in ("0", "false", "no", "off"):
        return False
    return None


def _env(name: str) -> Optional[str]:
    return (os.getenv(name, "") or "").strip() or None


@lru_cache(maxsize=1)
def load_auth_config() -> AuthConfig:
    """
    Load authentication configuration from environment variables.

    Missing OAuth credentials are not an error here; the OAuth client refuses to
    construct without them (see `SentryOAuthClient`).
    """
    redirect_uri = _env("SENTRY_OAUTH_REDIRECT_URI")
    frontend_url = (_env("FRONTEND_URL") or DEFAULT_FRONTEND_URL).rstrip("/")

    cookie_secure = _parse_bool(os.getenv("AUTH_COOKIE_SECURE", ""))
    if cookie_secure is None:
        # Default: secure cookies when the callback is served over https; otherwise allow local dev.
        cookie_secure = (redirect_uri or "").startswith("https://")

    ttl = int(float((os.getenv("AUTH_SESSION_TTL_SECONDS", "") or "86400").strip() or "86400"))  # 24h default
    if ttl <= 60:
        ttl = 60

    timeout = float((os.getenv("SENTRY_HTTP_TIMEOUT_SECONDS", "") or "10").strip() or "10")
    if timeout <= 0:
        timeout = 10.0

    return AuthConfig(
        client_id=_env("SENTRY_OAUTH_CLIENT_ID"),
        client_secret=_env("SENTRY_OAUTH_CLIENT_SECRET"),
        redirect_uri=redirect_uri,
        base_url=(_env("SENTRY_BASE_URL") or DEFAULT_BASE_URL).rstrip("/"),
        session_secret=_env("SESSION_SECRET"),
        session_ttl_seconds=ttl,
        cookie_secure=cookie_secure,
        frontend_url=frontend_url,
        http_timeout_seconds=timeout,
    )
