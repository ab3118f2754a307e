from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from sentryauth.auth.errors import DirectoryError
from sentryauth.auth.models import LocalUser, ProviderProfile

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserDirectory(Protocol):
    """
    Store of local users keyed by Sentry identity.

    `upsert` is the single write entry point; implementations must serialize it per
    provider id so concurrent logins never create duplicate records.
    """

    def find_by_provider_id(self, provider_id: str) -> Optional[LocalUser]:
        ...

    def find_by_local_id(self, local_id: int) -> Optional[LocalUser]:
        ...

    def find_by_email(self, email: str) -> Optional[LocalUser]:
        ...

    def upsert(self, profile: ProviderProfile, access_token: str) -> LocalUser:
        ...

    def stats(self) -> Dict[str, Any]:
        ...


class InMemoryUserDirectory:
    """
    In-process user directory.

    Rows live in a table keyed by a synthetic integer id; provider id and email
    indexes point into it. One lock covers the table and both indexes, so a reader
    never sees one index updated without the others. Callers get copies.
    """

    def __init__(self) -> None:
        self._rows: Dict[int, LocalUser] = {}
        self._by_provider_id: Dict[str, int] = {}
        self._by_email: Dict[str, int] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def _row(self, local_id: Optional[int]) -> Optional[LocalUser]:
        if local_id is None:
            return None
        row = self._rows.get(local_id)
        if row is None:
            raise DirectoryError(f"Index points at missing user row {local_id}")
        return row

    def find_by_provider_id(self, provider_id: str) -> Optional[LocalUser]:
        with self._lock:
            row = self._row(self._by_provider_id.get(provider_id))
            return replace(row) if row else None

    def find_by_local_id(self, local_id: int) -> Optional[LocalUser]:
        with self._lock:
            row = self._rows.get(local_id)
            return replace(row) if row else None

    def find_by_email(self, email: str) -> Optional[LocalUser]:
        with self._lock:
            row = self._row(self._by_email.get(email))
            return replace(row) if row else None

    def upsert(self, profile: ProviderProfile, access_token: str) -> LocalUser:
        if not profile.id:
            raise DirectoryError("Cannot store a profile without a provider id")
        now = utcnow()
        with self._lock:
            existing = self._row(self._by_provider_id.get(profile.id))
            if existing is None:
                user = LocalUser(
                    local_id=self._next_id,
                    provider_id=profile.id,
                    email=profile.email,
                    display_name=profile.name,
                    username=profile.username,
                    avatar_url=profile.avatar_url,
                    access_token=access_token,
                    created_at=now,
                    updated_at=now,
                )
                self._next_id += 1
                self._rows[user.local_id] = user
                self._by_provider_id[user.provider_id] = user.local_id
                self._by_email[user.email] = user.local_id
                logger.info("Created local user %d for Sentry id %s", user.local_id, user.provider_id)
                return replace(user)

            user = replace(
                existing,
                email=profile.email,
                display_name=profile.name,
                username=profile.username,
                avatar_url=profile.avatar_url,
                access_token=access_token,
                updated_at=now,
            )
            self._rows[user.local_id] = user
            if existing.email != user.email:
                if self._by_email.get(existing.email) == user.local_id:
                    del self._by_email[existing.email]
                self._by_email[user.email] = user.local_id
            logger.info("Updated local user %d for Sentry id %s", user.local_id, user.provider_id)
            return replace(user)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            rows = sorted(self._rows.values(), key=lambda u: u.local_id)
        users: List[Dict[str, Any]] = [
            {
                "id": u.local_id,
                "sentryId": u.provider_id,
                "email": u.email,
                "name": u.display_name,
                "createdAt": u.created_at.isoformat(),
            }
            for u in rows
        ]
        return {"totalUsers": len(users), "users": users}

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)
