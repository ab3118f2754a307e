from __future__ import annotations

import threading
import time
from typing import Dict, Optional, Tuple

from itsdangerous import BadSignature, BadTimeSignature, URLSafeTimedSerializer

from sentryauth.auth.config import AuthConfig
from sentryauth.auth.util import random_token

SESSION_SALT = "sentryauth-session-v1"

# Reserved keys; nothing else in the bag is touched by the login flow.
PENDING_STATE_KEY = "pendingState"
BOUND_USER_KEY = "boundUserId"
BOUND_PROVIDER_KEY = "boundProviderId"


def session_cookie_name(cfg: AuthConfig) -> str:
    # `__Host-` requires Secure + Path=/ + no Domain; browsers may reject it on HTTP.
    return "__Host-sentryauth_session" if cfg.cookie_secure else "sentryauth_session"


def _serializer(cfg: AuthConfig) -> Optional[URLSafeTimedSerializer]:
    if not cfg.session_secret:
        return None
    return URLSafeTimedSerializer(secret_key=cfg.session_secret, salt=SESSION_SALT)


def encode_session_id(cfg: AuthConfig, session_id: str) -> Optional[str]:
    s = _serializer(cfg)
    if s is None:
        return None
    return s.dumps(session_id)


def decode_session_id(cfg: AuthConfig, value: str | None) -> Optional[str]:
    if not value:
        return None
    s = _serializer(cfg)
    if s is None:
        return None
    try:
        sid = s.loads(value, max_age=cfg.session_ttl_seconds)
    except (BadSignature, BadTimeSignature):
        return None
    return sid if isinstance(sid, str) and sid else None


def clear_session_cookie_kwargs(cfg: AuthConfig) -> dict:
    return {
        "key": session_cookie_name(cfg),
        "value": "",
        "max_age": 0,
        "httponly": True,
        "secure": cfg.cookie_secure,
        "samesite": "lax",
        "path": "/",
    }


def session_cookie_kwargs(cfg: AuthConfig, value: str) -> dict:
    return {
        "key": session_cookie_name(cfg),
        "value": value,
        "max_age": cfg.session_ttl_seconds,
        "httponly": True,
        "secure": cfg.cookie_secure,
        "samesite": "lax",
        "path": "/",
    }


class SessionError(Exception):
    """Session store failed to persist or destroy a session."""


class SessionStore:
    """
    Simple in-memory session store keyed by random session id.

    Entries expire `ttl_seconds` after their last write.
    """

    def __init__(self, ttl_seconds: int = 86400):
        self._ttl = ttl_seconds
        self._data: Dict[str, Tuple[float, Dict[str, str]]] = {}
        self._lock = threading.Lock()

    def new_id(self) -> str:
        return random_token(32)

    def load(self, session_id: str) -> Optional[Dict[str, str]]:
        now = time.time()
        with self._lock:
            entry = self._data.get(session_id)
            if entry is None:
                return None
            ts, values = entry
            if now - ts > self._ttl:
                del self._data[session_id]
                return None
            return dict(values)

    def save(self, session_id: str, values: Dict[str, str]) -> None:
        now = time.time()
        with self._lock:
            # Drop expired sessions on write so abandoned logins do not accumulate.
            expired = [sid for sid, (ts, _) in self._data.items() if now - ts > self._ttl]
            for sid in expired:
                del self._data[sid]
            self._data[session_id] = (now, dict(values))

    def destroy(self, session_id: str) -> None:
        with self._lock:
            self._data.pop(session_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class SessionBag:
    """
    Per-request view of one browser session.

    Only the reserved login keys are exposed. Writes are buffered and persisted by
    `commit`; `clear` destroys the stored session immediately.
    """

    def __init__(self, store: SessionStore, session_id: Optional[str] = None, values: Optional[Dict[str, str]] = None):
        self._store = store
        self.session_id = session_id
        self._values: Dict[str, str] = dict(values or {})
        self.modified = False
        self.destroyed = False

    @classmethod
    def load(cls, store: SessionStore, session_id: Optional[str]) -> "SessionBag":
        if not session_id:
            return cls(store)
        values = store.load(session_id)
        if values is None:
            # Unknown or expired id: start fresh instead of resurrecting it.
            return cls(store)
        return cls(store, session_id, values)

    # ---- CSRF state ----

    def get_pending_state(self) -> Optional[str]:
        return self._values.get(PENDING_STATE_KEY)

    def set_pending_state(self, state: str) -> None:
        self._values[PENDING_STATE_KEY] = state
        self.modified = True

    def clear_pending_state(self) -> None:
        if PENDING_STATE_KEY in self._values:
            del self._values[PENDING_STATE_KEY]
            self.modified = True

    def pop_pending_state(self) -> Optional[str]:
        state = self.get_pending_state()
        self.clear_pending_state()
        return state

    # ---- bound user ----

    def get_bound_user(self) -> Optional[int]:
        raw = self._values.get(BOUND_USER_KEY)
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            return None

    def get_bound_provider_id(self) -> Optional[str]:
        return self._values.get(BOUND_PROVIDER_KEY)

    def set_bound_user(self, local_id: int, provider_id: Optional[str] = None) -> None:
        self._values[BOUND_USER_KEY] = str(local_id)
        if provider_id is not None:
            self._values[BOUND_PROVIDER_KEY] = provider_id
        self.modified = True

    def clear_bound_user(self) -> None:
        for key in (BOUND_USER_KEY, BOUND_PROVIDER_KEY):
            if key in self._values:
                del self._values[key]
                self.modified = True

    def rotate(self) -> None:
        """
        Move the session to a fresh id on the next commit; the old id stops resolving.
        """
        if self.session_id is not None:
            try:
                self._store.destroy(self.session_id)
            except Exception as e:
                raise SessionError(f"Failed to rotate session: {e}") from e
        self.session_id = None
        self.modified = True

    def clear(self) -> None:
        """Destroy the whole session. Safe to call on an empty session."""
        if self.session_id is not None:
            try:
                self._store.destroy(self.session_id)
            except Exception as e:
                raise SessionError(f"Failed to destroy session: {e}") from e
        self._values.clear()
        self.session_id = None
        self.destroyed = True
        self.modified = False

    def commit(self) -> Optional[str]:
        """
        Persist buffered writes. Returns the session id when a cookie must be (re)issued.
        """
        if self.destroyed or not self.modified:
            return None
        if self.session_id is None:
            self.session_id = self._store.new_id()
        try:
            self._store.save(self.session_id, self._values)
        except Exception as e:
            raise SessionError(f"Failed to persist session: {e}") from e
        self.modified = False
        return self.session_id
