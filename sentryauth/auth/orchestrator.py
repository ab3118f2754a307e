"""
Login flow orchestration.

Per browser session:

    UNAUTHENTICATED --begin_login--> AWAITING_CALLBACK
    AWAITING_CALLBACK --handle_callback ok--> AUTHENTICATED
    AWAITING_CALLBACK --handle_callback error--> UNAUTHENTICATED
    AUTHENTICATED --logout--> UNAUTHENTICATED

Only this module writes the pending CSRF state and the bound user id.
"""

from __future__ import annotations

import hmac
import logging
from typing import Optional

from sentryauth.auth.directory import UserDirectory
from sentryauth.auth.errors import CsrfError, MissingCodeError
from sentryauth.auth.models import LocalUser
from sentryauth.auth.oauth import SentryOAuthClient
from sentryauth.auth.session import SessionBag
from sentryauth.auth.util import random_token

logger = logging.getLogger(__name__)

UNAUTHENTICATED = "UNAUTHENTICATED"
AWAITING_CALLBACK = "AWAITING_CALLBACK"
AUTHENTICATED = "AUTHENTICATED"


class AuthOrchestrator:
    def __init__(self, oauth: SentryOAuthClient, directory: UserDirectory) -> None:
        self.oauth = oauth
        self.directory = directory

    def begin_login(self, session: SessionBag) -> str:
        """
        Start a login: store a fresh state (replacing any pending one) and return the authorize URL.
        """
        state = random_token(32)
        session.set_pending_state(state)
        logger.info("Login started; redirecting browser to Sentry")
        return self.oauth.build_authorization_url(state)

    async def handle_callback(
        self,
        session: SessionBag,
        code: Optional[str],
        state: Optional[str],
    ) -> LocalUser:
        """
        Validate the provider callback and bind the session to the local user.

        The pending state is consumed whether or not validation succeeds, and a failed
        callback leaves the session unauthenticated. Errors from the OAuth client and
        the directory propagate unchanged. On success the session moves to a new id.
        """
        try:
            return await self._complete_callback(session, code, state)
        except Exception:
            session.clear_bound_user()
            raise

    async def _complete_callback(self, session: SessionBag, code: Optional[str], state: Optional[str]) -> LocalUser:
        expected = session.pop_pending_state()
        received = (state or "").strip()
        if not expected or not received or not hmac.compare_digest(expected, received):
            logger.warning("OAuth callback rejected: state missing or mismatched (possible CSRF)")
            raise CsrfError("Invalid OAuth state")

        if not (code or "").strip():
            logger.warning("OAuth callback rejected: no authorization code")
            raise MissingCodeError("Authorization code not provided")

        result = await self.oauth.complete_oauth_flow(code.strip())
        user = self.directory.upsert(result.profile, result.access_token)
        session.rotate()
        session.set_bound_user(user.local_id, user.provider_id)
        logger.info("Session bound to local user %d (Sentry id %s)", user.local_id, user.provider_id)
        return user

    def current_user(self, session: SessionBag) -> Optional[LocalUser]:
        """
        Return the bound user, or None. A bound id with no directory record counts as
        unauthenticated; the caller should clear the session.
        """
        local_id = session.get_bound_user()
        if local_id is None:
            return None
        user = self.directory.find_by_local_id(local_id)
        if user is None:
            logger.warning("Session bound to unknown local user %d", local_id)
        return user

    def logout(self, session: SessionBag) -> None:
        session.clear()

    def session_state(self, session: SessionBag) -> str:
        if session.get_bound_user() is not None:
            return AUTHENTICATED
        if session.get_pending_state():
            return AWAITING_CALLBACK
        return UNAUTHENTICATED
