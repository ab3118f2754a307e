"""
Error taxonomy for the login flow.

Every error carries two texts: `str(err)` is internal detail for the server log,
`user_message` is the short human-readable text that may be shown in the browser.
"""

from __future__ import annotations

from typing import List, Optional


class AuthError(Exception):
    """Base class for login-flow failures."""

    user_message = "Authentication failed. Please try again."

    def __init__(self, message: str, *, user_message: Optional[str] = None) -> None:
        super().__init__(message)
        if user_message is not None:
            self.user_message = user_message


class ConfigurationError(AuthError):
    """OAuth client credentials or redirect URI are missing (fatal at startup)."""

    user_message = "Sentry login is not configured on this server."


class CsrfError(AuthError):
    """Callback `state` is absent or does not match the pending one."""

    user_message = "Invalid state parameter. Please start the login again."


class MissingCodeError(AuthError):
    user_message = "Authorization code not provided."


class TokenExchangeError(AuthError):
    """Token endpoint answered with a non-success status (or an unusable body)."""

    user_message = "Could not complete login with Sentry."

    def __init__(self, status: int, body: str) -> None:
        super().__init__(f"Sentry token exchange failed: {status} {body[:200]}")
        self.status = status
        self.body = body


class NetworkError(AuthError):
    """Transport failure or timeout talking to Sentry."""

    user_message = "Sentry could not be reached. Please try again in a moment."


class ProfileResolutionError(AuthError):
    """No candidate profile endpoint returned a usable identity."""

    user_message = "Could not read your Sentry profile. Check the granted permissions."

    def __init__(self, last_error: Optional[Exception], tried: List[str]) -> None:
        detail = str(last_error) if last_error is not None else "no endpoints tried"
        super().__init__(f"All Sentry user endpoints failed: {detail}")
        self.last_error = last_error
        self.tried = list(tried)


class DirectoryError(AuthError):
    """User directory is internally inconsistent (storage fault)."""

    user_message = "Internal error while saving your account."


class ResourceApiError(AuthError):
    """Sentry resource API call failed (proxy endpoints)."""

    user_message = "Sentry API request failed."

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message, user_message=message)
        self.status = status
