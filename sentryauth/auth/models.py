from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


@dataclass(frozen=True)
class ProviderProfile:
    """Sentry identity normalized from any of the profile response shapes."""

    id: str
    email: str
    name: str
    username: Optional[str] = None
    avatar_url: Optional[str] = None


@dataclass
class LocalUser:
    """Local account bound to exactly one Sentry identity."""

    local_id: int
    provider_id: str
    email: str
    display_name: str
    username: Optional[str]
    avatar_url: Optional[str]
    access_token: str
    created_at: datetime
    updated_at: datetime

    def to_public_dict(self) -> Dict[str, Any]:
        # Never hand the provider token to the browser.
        return {
            "id": self.local_id,
            "sentryId": self.provider_id,
            "email": self.email,
            "name": self.display_name,
            "username": self.username,
            "avatarUrl": self.avatar_url,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


class TokenResult(BaseModel):
    """
    Token endpoint response.

    Unknown fields are kept (`model_extra`) because some deployments embed the
    user profile next to the token.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    access_token: str = Field(min_length=1)
    token_type: Optional[str] = None
    scope: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_in: Optional[float] = None

    def extra_field(self, name: str) -> Any:
        return (self.model_extra or {}).get(name)


@dataclass(frozen=True)
class OAuthResult:
    profile: ProviderProfile
    access_token: str
