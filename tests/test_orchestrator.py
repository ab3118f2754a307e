"""
Login flow tests: real orchestrator, directory and OAuth client over a mocked HTTP session.
"""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import pytest

from sentryauth.auth.directory import InMemoryUserDirectory
from sentryauth.auth.errors import CsrfError, MissingCodeError, ProfileResolutionError, TokenExchangeError
from sentryauth.auth.oauth import SentryOAuthClient
from sentryauth.auth.orchestrator import (
    AUTHENTICATED,
    AWAITING_CALLBACK,
    UNAUTHENTICATED,
    AuthOrchestrator,
)
from sentryauth.auth.session import SessionBag, SessionStore


@pytest.fixture
def http(make_response):
    h = MagicMock()
    h.post.return_value = make_response(200, {"access_token": "T", "token_type": "bearer"})
    h.get.return_value = make_response(200, {"id": "u1", "email": "u@x.com", "name": "U"})
    return h


@pytest.fixture
def orch(cfg, http) -> AuthOrchestrator:
    return AuthOrchestrator(SentryOAuthClient(cfg, http=http), InMemoryUserDirectory())


@pytest.fixture
def bag() -> SessionBag:
    return SessionBag(SessionStore())


def _state_from(url: str) -> str:
    return parse_qs(urlparse(url).query)["state"][0]


def test_begin_login_stores_state_from_url(orch, bag) -> None:
    url = orch.begin_login(bag)
    assert bag.get_pending_state() == _state_from(url)
    assert orch.session_state(bag) == AWAITING_CALLBACK


def test_begin_login_replaces_previous_state(orch, bag) -> None:
    first = _state_from(orch.begin_login(bag))
    second = _state_from(orch.begin_login(bag))
    assert first != second
    assert bag.get_pending_state() == second


@pytest.mark.asyncio
async def test_callback_binds_session(orch, bag, http) -> None:
    state = _state_from(orch.begin_login(bag))

    user = await orch.handle_callback(bag, "code-1", state)

    assert user.provider_id == "u1"
    assert user.access_token == "T"
    assert bag.get_bound_user() == user.local_id
    assert bag.get_bound_provider_id() == "u1"
    assert bag.get_pending_state() is None
    assert orch.session_state(bag) == AUTHENTICATED
    assert orch.current_user(bag) == user
    assert http.post.call_args.kwargs["data"]["code"] == "code-1"


@pytest.mark.asyncio
async def test_mismatched_state_rejected_without_network(orch, bag, http) -> None:
    orch.begin_login(bag)

    with pytest.raises(CsrfError):
        await orch.handle_callback(bag, "code-1", "wrong")

    assert bag.get_bound_user() is None
    assert bag.get_pending_state() is None
    http.post.assert_not_called()
    assert len(orch.directory) == 0


@pytest.mark.asyncio
async def test_callback_without_login_is_rejected(orch, bag) -> None:
    with pytest.raises(CsrfError):
        await orch.handle_callback(bag, "code-1", "any")
    assert orch.session_state(bag) == UNAUTHENTICATED


@pytest.mark.asyncio
async def test_state_is_single_use(orch, bag, http) -> None:
    state = _state_from(orch.begin_login(bag))
    await orch.handle_callback(bag, "code-1", state)

    with pytest.raises(CsrfError):
        await orch.handle_callback(bag, "code-1", state)
    assert http.post.call_count == 1


@pytest.mark.asyncio
async def test_missing_code_consumes_state(orch, bag) -> None:
    state = _state_from(orch.begin_login(bag))

    with pytest.raises(MissingCodeError):
        await orch.handle_callback(bag, "  ", state)

    assert bag.get_pending_state() is None
    assert bag.get_bound_user() is None


@pytest.mark.asyncio
async def test_token_failure_leaves_session_unbound(orch, bag, http, make_response) -> None:
    http.post.return_value = make_response(400, text="invalid_grant")
    state = _state_from(orch.begin_login(bag))

    with pytest.raises(TokenExchangeError):
        await orch.handle_callback(bag, "code-1", state)

    assert bag.get_bound_user() is None
    assert len(orch.directory) == 0


@pytest.mark.asyncio
async def test_profile_failure_leaves_session_unbound(orch, bag, http, make_response) -> None:
    http.get.return_value = make_response(500, text="boom")
    state = _state_from(orch.begin_login(bag))

    with pytest.raises(ProfileResolutionError):
        await orch.handle_callback(bag, "code-1", state)

    assert bag.get_bound_user() is None


def test_repeat_logins_reuse_local_user(orch) -> None:
    """Two browsers logging in as the same Sentry user end up on one local record."""
    bags = [SessionBag(SessionStore()), SessionBag(SessionStore())]
    states = [_state_from(orch.begin_login(b)) for b in bags]

    async def _both():
        return await asyncio.gather(*(orch.handle_callback(b, "c", s) for b, s in zip(bags, states)))

    users = asyncio.run(_both())

    assert users[0].local_id == users[1].local_id
    assert len(orch.directory) == 1


@pytest.mark.asyncio
async def test_logout_is_idempotent(orch, bag) -> None:
    state = _state_from(orch.begin_login(bag))
    await orch.handle_callback(bag, "c", state)

    orch.logout(bag)
    orch.logout(bag)

    assert orch.current_user(bag) is None
    assert orch.session_state(bag) == UNAUTHENTICATED


def test_stale_binding_reads_as_unauthenticated(orch, bag) -> None:
    bag.set_bound_user(99, "ghost")
    assert orch.current_user(bag) is None


@pytest.mark.asyncio
async def test_successful_callback_moves_session_to_new_id(orch) -> None:
    store = SessionStore()
    bag = SessionBag(store)
    state = _state_from(orch.begin_login(bag))
    pre_login_sid = bag.commit()

    await orch.handle_callback(bag, "c", state)
    post_login_sid = bag.commit()

    assert post_login_sid != pre_login_sid
    assert store.load(pre_login_sid) is None
    assert store.load(post_login_sid)["boundUserId"] == "1"


@pytest.mark.asyncio
async def test_failed_callback_unbinds_previous_login(orch, bag) -> None:
    state = _state_from(orch.begin_login(bag))
    await orch.handle_callback(bag, "c", state)
    orch.begin_login(bag)

    with pytest.raises(CsrfError):
        await orch.handle_callback(bag, "c", "forged")

    assert bag.get_bound_user() is None
    assert orch.session_state(bag) == UNAUTHENTICATED


@pytest.mark.asyncio
async def test_missing_received_state_is_rejected(orch, bag, http) -> None:
    orch.begin_login(bag)

    with pytest.raises(CsrfError):
        await orch.handle_callback(bag, "code-1", None)

    assert bag.get_pending_state() is None
    assert bag.get_bound_user() is None
    http.post.assert_not_called()
