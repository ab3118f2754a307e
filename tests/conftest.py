"""
Pytest config.

Pins the repo root on sys.path so `import sentryauth` works when a global `pytest`
entrypoint is used without installing the package, and provides shared fixtures for
configuration and fake HTTP responses.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable, Optional
from unittest.mock import MagicMock

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

from sentryauth.auth.config import AuthConfig, load_auth_config  # noqa: E402

BASE_URL = "https://sentry.example.com"
REDIRECT_URI = "http://localhost:3001/api/auth/callback"
FRONTEND_URL = "http://localhost:5173"


@pytest.fixture(autouse=True)
def _clear_auth_config_cache():
    load_auth_config.cache_clear()
    yield
    load_auth_config.cache_clear()


@pytest.fixture
def cfg() -> AuthConfig:
    return AuthConfig(
        client_id="test-client-id",
        client_secret="test-client-secret",
        redirect_uri=REDIRECT_URI,
        base_url=BASE_URL,
        session_secret="test-secret-key-for-testing-purposes-only",
        session_ttl_seconds=3600,
        cookie_secure=False,
        frontend_url=FRONTEND_URL,
        http_timeout_seconds=5.0,
    )


@pytest.fixture
def make_response() -> Callable[..., MagicMock]:
    """Factory for `requests.Response`-like mocks."""

    def _make(status: int, payload: Optional[Any] = None, text: str = "") -> MagicMock:
        r = MagicMock()
        r.status_code = status
        r.ok = 200 <= status < 300
        r.text = text
        if payload is None:
            r.json.side_effect = ValueError("No JSON object could be decoded")
        else:
            r.json.return_value = payload
        return r

    return _make
