"""
Dashboard API server.

Serves the Sentry OAuth login flow and read-only proxies over the Sentry API for the
signed-in user. Components are built once in `create_app` and shared through `app.state`.
"""

from __future__ import annotations

import logging
import os
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from sentryauth.auth.config import AuthConfig, load_auth_config
from sentryauth.auth.directory import InMemoryUserDirectory, UserDirectory
from sentryauth.auth.errors import AuthError, ConfigurationError, NetworkError, ResourceApiError
from sentryauth.auth.models import LocalUser
from sentryauth.auth.oauth import SentryOAuthClient
from sentryauth.auth.orchestrator import AuthOrchestrator
from sentryauth.auth.session import (
    SessionBag,
    SessionError,
    SessionStore,
    clear_session_cookie_kwargs,
    decode_session_id,
    encode_session_id,
    session_cookie_kwargs,
    session_cookie_name,
)
from sentryauth.auth.util import error_redirect_url, success_redirect_url
from sentryauth.providers.sentry_api import MAX_PAGE_SIZE, SentryApiClient

logger = logging.getLogger(__name__)

GENERIC_LOGIN_FAILURE = "Authentication failed. Please try again."

router = APIRouter()


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _is_public_path(path: str) -> bool:
    if path in ("/health", "/api/demo/stats"):
        return True
    # Login/callback must be reachable without a session.
    if path in ("/api/auth/login", "/api/auth/callback"):
        return True
    # Allow logout even if the cookie is already missing/invalid.
    if path == "/api/auth/logout":
        return True
    return False


def _no_store(resp):
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _persist_session(cfg: AuthConfig, bag: SessionBag, response) -> None:
    if bag.destroyed:
        response.set_cookie(**clear_session_cookie_kwargs(cfg))
        return
    sid = bag.commit()
    if sid is None:
        return
    value = encode_session_id(cfg, sid)
    if value is None:
        raise SessionError("Session signing is not configured (SESSION_SECRET)")
    response.set_cookie(**session_cookie_kwargs(cfg, value))


async def session_middleware(request: Request, call_next):
    """Load the session bag, enforce the session gate, and persist session changes."""
    start_time = time.time()
    logger.debug("%s %s", request.method, request.url.path)
    cfg: AuthConfig = request.app.state.cfg

    sid = decode_session_id(cfg, request.cookies.get(session_cookie_name(cfg)))
    bag = SessionBag.load(request.app.state.sessions, sid)
    request.state.session = bag

    path = request.url.path or ""
    # Fail closed: anything not explicitly public requires a bound session.
    if request.method != "OPTIONS" and not _is_public_path(path) and bag.get_bound_user() is None:
        return JSONResponse(status_code=401, content={"error": "Authentication required"})

    try:
        response = await call_next(request)
        _persist_session(cfg, bag, response)
    except SessionError:
        logger.exception("%s %s - session store failure", request.method, path)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})
    except Exception as e:
        process_time = time.time() - start_time
        logger.exception("%s %s - ERROR after %.3fs: %s", request.method, path, process_time, str(e))
        raise

    process_time = time.time() - start_time
    logger.debug("%s %s - %d (%.3fs)", request.method, path, response.status_code, process_time)
    return response


def _session(request: Request) -> SessionBag:
    return request.state.session


def _orchestrator(request: Request) -> Optional[AuthOrchestrator]:
    return request.app.state.orchestrator


def _current_user(request: Request) -> Optional[LocalUser]:
    """Bound user for this request; a stale binding clears the session."""
    bag = _session(request)
    orch = _orchestrator(request)
    if orch is None:
        return None
    user = orch.current_user(bag)
    if user is None and bag.get_bound_user() is not None:
        orch.logout(bag)
    return user


@router.get("/health")
def health() -> Dict[str, Any]:
    return {"ok": True, "status": "OK", "timestamp": _utcnow_iso()}


@router.get("/api/auth/login")
def auth_login(request: Request):
    """Start the Sentry OAuth flow; the UI redirects the browser to `authUrl`."""
    orch = _orchestrator(request)
    if orch is None:
        return JSONResponse(status_code=500, content={"error": "Failed to generate authentication URL"})
    auth_url = orch.begin_login(_session(request))
    return _no_store(JSONResponse(content={"authUrl": auth_url}))


@router.get("/api/auth/callback")
async def auth_callback(
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
):
    """Handle the provider redirect. Always answers with a redirect to the frontend."""
    cfg: AuthConfig = request.app.state.cfg
    orch = _orchestrator(request)
    try:
        if orch is None:
            raise ConfigurationError("OAuth callback received but Sentry OAuth is not configured")
        user = await orch.handle_callback(_session(request), code, state)
    except AuthError as e:
        # Detail stays in the server log; the browser only gets the short message.
        logger.warning("OAuth callback failed (%s): %s", type(e).__name__, e)
        return _no_store(RedirectResponse(url=error_redirect_url(cfg.frontend_url, e.user_message), status_code=302))
    except Exception:
        logger.exception("Unexpected error during OAuth callback")
        return _no_store(RedirectResponse(url=error_redirect_url(cfg.frontend_url, GENERIC_LOGIN_FAILURE), status_code=302))

    logger.info("OAuth login completed for local user %d", user.local_id)
    return _no_store(RedirectResponse(url=success_redirect_url(cfg.frontend_url), status_code=302))


@router.get("/api/auth/me")
def auth_me(request: Request):
    user = _current_user(request)
    if user is None:
        return JSONResponse(status_code=401, content={"error": "User not found"})
    return _no_store(JSONResponse(content={"user": user.to_public_dict()}))


@router.post("/api/auth/logout")
def auth_logout(request: Request):
    bag = _session(request)
    try:
        orch = _orchestrator(request)
        if orch is not None:
            orch.logout(bag)
        else:
            bag.clear()
    except SessionError:
        logger.exception("Error destroying session")
        return JSONResponse(status_code=500, content={"error": "Failed to logout"})
    return _no_store(JSONResponse(content={"message": "Logged out successfully"}))


@router.get("/api/protected")
def protected(request: Request):
    user = _current_user(request)
    if user is None:
        return JSONResponse(status_code=401, content={"error": "Authentication required"})
    return {
        "message": "This is a protected route - you are authenticated with Sentry!",
        "userId": user.local_id,
        "sentryId": user.provider_id,
        "timestamp": _utcnow_iso(),
    }


def _proxy(request: Request, key: str, call: Callable[[SentryApiClient, str], Any]):
    user = _current_user(request)
    if user is None or not user.access_token:
        return JSONResponse(status_code=401, content={"error": "No Sentry access token found"})
    try:
        data = call(request.app.state.sentry_api, user.access_token)
    except ResourceApiError as e:
        status = e.status if e.status in (401, 403, 404) else 502
        return JSONResponse(status_code=status, content={"error": e.user_message})
    except NetworkError as e:
        logger.warning("Sentry API unreachable while fetching %s: %s", key, e)
        return JSONResponse(status_code=502, content={"error": e.user_message})
    return {key: data}


@router.get("/api/dashboard/organizations")
def dashboard_organizations(request: Request):
    return _proxy(request, "organizations", lambda api, token: api.get_organizations(token))


@router.get("/api/dashboard/{org_slug}/projects")
def dashboard_projects(request: Request, org_slug: str):
    return _proxy(request, "projects", lambda api, token: api.get_projects(org_slug, token))


@router.get("/api/dashboard/{org_slug}/members")
def dashboard_members(request: Request, org_slug: str):
    return _proxy(request, "members", lambda api, token: api.get_members(org_slug, token))


@router.get("/api/dashboard/{org_slug}/issues")
def dashboard_issues(
    request: Request,
    org_slug: str,
    stats_period: str = Query("14d", alias="statsPeriod"),
    limit: int = Query(MAX_PAGE_SIZE, ge=1),
    project: Optional[str] = Query(None),
    query: str = Query(""),
):
    return _proxy(
        request,
        "issues",
        lambda api, token: api.get_issues(
            org_slug, token, stats_period=stats_period, limit=limit, project_id=project, query=query
        ),
    )


@router.get("/api/dashboard/{org_slug}/alert-rules")
def dashboard_alert_rules(request: Request, org_slug: str):
    return _proxy(request, "alertRules", lambda api, token: api.get_alert_rules(org_slug, token))


@router.get("/api/dashboard/{org_slug}/replays")
def dashboard_replays(
    request: Request,
    org_slug: str,
    stats_period: str = Query("14d", alias="statsPeriod"),
    limit: int = Query(MAX_PAGE_SIZE, ge=1),
    project_slug: Optional[str] = Query(None, alias="projectSlug"),
):
    return _proxy(
        request,
        "replays",
        lambda api, token: api.get_replays(
            org_slug, token, stats_period=stats_period, limit=limit, project_slug=project_slug
        ),
    )


@router.get("/api/demo/stats")
def demo_stats(request: Request) -> Dict[str, Any]:
    directory: UserDirectory = request.app.state.directory
    return {"message": "Sentry OAuth Demo - User Storage Stats", **directory.stats()}


def create_app(
    cfg: Optional[AuthConfig] = None,
    *,
    oauth: Optional[SentryOAuthClient] = None,
    directory: Optional[UserDirectory] = None,
    sessions: Optional[SessionStore] = None,
    sentry_api: Optional[SentryApiClient] = None,
) -> FastAPI:
    """
    Build the API with explicitly constructed components.

    Missing OAuth credentials do not prevent startup here (login answers 500);
    `run` refuses to start without them. A session secret is always required.
    """
    cfg = cfg or load_auth_config()
    if not cfg.session_secret:
        raise ConfigurationError("SESSION_SECRET is required for session signing")

    if oauth is None:
        try:
            oauth = SentryOAuthClient(cfg)
        except ConfigurationError as e:
            logger.error("Sentry OAuth disabled: %s", e)
    directory = directory if directory is not None else InMemoryUserDirectory()

    app = FastAPI(title="Sentry OAuth dashboard API")
    app.state.cfg = cfg
    app.state.directory = directory
    app.state.sessions = sessions if sessions is not None else SessionStore(ttl_seconds=cfg.session_ttl_seconds)
    app.state.orchestrator = AuthOrchestrator(oauth, directory) if oauth is not None else None
    app.state.sentry_api = sentry_api or SentryApiClient(cfg.base_url, timeout=cfg.http_timeout_seconds)

    app.middleware("http")(session_middleware)
    app.include_router(router)
    return app


def run(host: str = "0.0.0.0", port: int = 3001) -> None:
    import uvicorn

    # Configure logging for the application
    log_level = os.getenv("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Fail fast at startup on missing credentials.
    cfg = load_auth_config()
    oauth = SentryOAuthClient(cfg)
    app = create_app(cfg, oauth=oauth)

    # Map Python logging levels to uvicorn log levels
    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    logger.info("Starting API server on %s:%d (log_level=%s)", host, port, log_level)
    uvicorn.run(app, host=host, port=port, log_level=uvicorn_log_level)
