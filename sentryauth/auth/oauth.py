"""
Sentry OAuth 2.0 client: authorization URL, code exchange, profile resolution.

Network calls use `requests` on a worker thread (`asyncio.to_thread`) so a slow
provider only suspends the login that is waiting on it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Iterator, List, Mapping, Optional, Tuple
from urllib.parse import urlencode

import requests
from pydantic import ValidationError

from sentryauth.auth.config import AuthConfig
from sentryauth.auth.errors import (
    ConfigurationError,
    NetworkError,
    ProfileResolutionError,
    TokenExchangeError,
)
from sentryauth.auth.models import OAuthResult, ProviderProfile, TokenResult

logger = logging.getLogger(__name__)

# Standard userinfo paths first, then Sentry's own API.
PROFILE_ENDPOINT_PATHS: Tuple[str, ...] = (
    "/oauth/userinfo",
    "/userinfo",
    "/oauth/userinfo/",
    "/userinfo/",
    "/api/0/user/",
    "/api/0/users/me/",
)

# Token responses that carry the profile inline use one of these keys.
EMBEDDED_PROFILE_KEYS: Tuple[str, ...] = ("user", "user_info", "profile")


def is_usable_profile(payload: Any) -> bool:
    """A profile payload is usable when it has a non-empty id and a non-empty email."""
    if not isinstance(payload, Mapping):
        return False
    return bool(str(payload.get("id") or "").strip()) and bool(str(payload.get("email") or "").strip())


def _avatar_url(payload: Mapping[str, Any]) -> Optional[str]:
    avatar = payload.get("avatar")
    if isinstance(avatar, Mapping):
        url = avatar.get("avatarUrl") or avatar.get("url")
        return str(url) if url else None
    if isinstance(avatar, str) and avatar:
        return avatar
    url = payload.get("avatarUrl") or payload.get("avatar_url")
    return str(url) if url else None


def normalize_profile(payload: Mapping[str, Any]) -> ProviderProfile:
    """
    Normalize one of Sentry's user payload shapes.

    `name` falls back to `username`, then to the local part of the email.
    """
    email = str(payload.get("email") or "").strip()
    username = str(payload.get("username") or "").strip() or None
    name = str(payload.get("name") or "").strip() or username or email.split("@", 1)[0]
    return ProviderProfile(
        id=str(payload.get("id")).strip(),
        email=email,
        name=name,
        username=username,
        avatar_url=_avatar_url(payload),
    )


class SentryOAuthClient:
    """
    OAuth client for one Sentry installation.

    Configuration is captured at construction; the instance holds no per-login state.
    """

    def __init__(self, cfg: AuthConfig, *, http: Optional[requests.Session] = None) -> None:
        if not cfg.client_id or not cfg.client_secret:
            raise ConfigurationError("Sentry OAuth credentials not configured (SENTRY_OAUTH_CLIENT_ID/SECRET)")
        if not cfg.redirect_uri:
            raise ConfigurationError("Sentry OAuth redirect URI not configured (SENTRY_OAUTH_REDIRECT_URI)")
        self.client_id: str = cfg.client_id
        self.client_secret: str = cfg.client_secret
        self.redirect_uri: str = cfg.redirect_uri
        self.base_url = cfg.base_url.rstrip("/")
        self.scope = cfg.scope
        self.timeout = cfg.http_timeout_seconds
        self._http = http if http is not None else requests.Session()

        logger.info(
            "Sentry OAuth client initialized: base_url=%s client_id=%s redirect_uri=%s",
            self.base_url,
            self.client_id,
            self.redirect_uri,
        )

    @property
    def token_url(self) -> str:
        return f"{self.base_url}/oauth/token/"

    def profile_endpoints(self) -> List[str]:
        return [f"{self.base_url}{path}" for path in PROFILE_ENDPOINT_PATHS]

    def build_authorization_url(self, state: str) -> str:
        params = [
            ("response_type", "code"),
            ("client_id", self.client_id),
            ("redirect_uri", self.redirect_uri),
            ("scope", self.scope),
            ("state", state),
        ]
        return f"{self.base_url}/oauth/authorize/?{urlencode(params)}"

    async def exchange_code_for_token(self, code: str) -> TokenResult:
        payload = {
            "grant_type": "authorization_code",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": code,
            "redirect_uri": self.redirect_uri,
        }
        logger.info("Exchanging authorization code at %s (code length=%d)", self.token_url, len(code))
        try:
            r = await asyncio.to_thread(
                self._http.post,
                self.token_url,
                data=payload,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning("Token exchange transport failure: %s", type(e).__name__)
            raise NetworkError(f"Network error during token exchange: {e}") from e

        if not r.ok:
            body = r.text or ""
            logger.warning("Token exchange failed: status=%s body=%s", r.status_code, body[:200])
            raise TokenExchangeError(r.status_code, body)

        try:
            data = r.json()
        except ValueError as e:
            raise TokenExchangeError(r.status_code, "invalid JSON in token response") from e
        if not isinstance(data, dict):
            raise TokenExchangeError(r.status_code, "token response is not an object")
        try:
            token = TokenResult.model_validate(data)
        except ValidationError as e:
            raise TokenExchangeError(r.status_code, "token response missing access_token") from e

        logger.info(
            "Received access token: token_type=%s scope=%s has_refresh_token=%s",
            token.token_type,
            token.scope,
            bool(token.refresh_token),
        )
        return token

    def _profile_candidates(self, access_token: str) -> Iterator[Tuple[str, Callable[[], requests.Response]]]:
        headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
        for url in self.profile_endpoints():
            yield url, (lambda u=url: self._http.get(u, headers=headers, timeout=self.timeout))

    async def resolve_user_profile(self, access_token: str) -> ProviderProfile:
        """
        Try each profile endpoint in order; the first usable payload wins.
        """
        last_error: Optional[Exception] = None
        tried: List[str] = []
        for url, fetch in self._profile_candidates(access_token):
            tried.append(url)
            try:
                r = await asyncio.to_thread(fetch)
            except requests.RequestException as e:
                logger.warning("Profile endpoint %s transport failure: %s", url, type(e).__name__)
                last_error = NetworkError(f"{url}: {e}")
                continue

            if not r.ok:
                logger.debug("Profile endpoint %s returned %s", url, r.status_code)
                last_error = Exception(f"{r.status_code}: {(r.text or '')[:200]}")
                continue

            try:
                data = r.json()
            except ValueError:
                last_error = Exception(f"Invalid JSON from {url}")
                continue

            if not is_usable_profile(data):
                logger.warning("Profile endpoint %s returned incomplete user data", url)
                last_error = Exception(f"Invalid user data from {url}")
                continue

            profile = normalize_profile(data)
            logger.info("Resolved Sentry profile from %s: id=%s", url, profile.id)
            return profile

        logger.error("All Sentry user endpoints failed (tried %d): %s", len(tried), last_error)
        raise ProfileResolutionError(last_error, tried)

    async def complete_oauth_flow(self, code: str) -> OAuthResult:
        token = await self.exchange_code_for_token(code)

        for key in EMBEDDED_PROFILE_KEYS:
            embedded = token.extra_field(key)
            if is_usable_profile(embedded):
                logger.info("Using profile embedded in token response (%s)", key)
                return OAuthResult(profile=normalize_profile(embedded), access_token=token.access_token)

        profile = await self.resolve_user_profile(token.access_token)
        return OAuthResult(profile=profile, access_token=token.access_token)
