from __future__ import annotations

import base64
import os
from urllib.parse import quote


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def random_token(nbytes: int = 32) -> str:
    return b64url(os.urandom(nbytes))


def success_redirect_url(frontend_url: str) -> str:
    return f"{frontend_url.rstrip('/')}/auth/success"


def error_redirect_url(frontend_url: str, message: str) -> str:
    """
    Build the error-page redirect. Only the short user-facing message travels in the URL.
    """
    # Strip CR/LF so the message cannot break the Location header.
    msg = (message or "").replace("\r", " ").replace("\n", " ").strip() or "Authentication failed"
    return f"{frontend_url.rstrip('/')}/auth/error?message={quote(msg, safe='')}"
