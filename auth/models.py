"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, almost no logic). Stores and the
service do the work; these classes only own the domain shape.

Timestamps on users and identities are ISO 8601 UTC strings (display and
audit only). Refresh session timestamps are naive UTC datetimes because the
registry compares them against "now" on every validation.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class Role(str, Enum):
    INFLUENCER = "INFLUENCER"
    ADVERTISER = "ADVERTISER"
    ADMIN = "ADMIN"


class UserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"


@dataclass
class User:
    """A marketplace account.

    email is None for OAuth-only users whose provider did not share one.
    hashed_password is None for OAuth-only users; such a user must always keep
    at least one linked UserIdentity (enforced by the store and unlink).
    """

    role: str  # Role value
    email: Optional[str] = None
    id: Optional[int] = None
    username: Optional[str] = None
    display_name: Optional[str] = None
    hashed_password: Optional[str] = None  # None = OAuth-only user
    status: str = UserStatus.ACTIVE.value
    website: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    last_login_at: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE.value

    @property
    def has_password(self) -> bool:
        return bool(self.hashed_password)


@dataclass
class UserIdentity:
    """Link between a User and one external provider account.

    (user_id, provider) is unique: one google account per user.
    (provider, provider_subject) is unique: a provider account belongs to
    exactly one user.
    """

    user_id: int
    provider: str  # "google", "kakao", "naver"
    provider_subject: str  # provider's stable account ID
    provider_email: Optional[str] = None
    id: Optional[int] = None
    linked_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass(frozen=True)
class RefreshSession:
    """Whitelist entry for one outstanding refresh token. Never updated in place."""

    jti: str
    user_id: int
    expires_at: datetime
    created_at: datetime
    ua_hash: Optional[str] = None
    ip_hash: Optional[str] = None


@dataclass(frozen=True)
class SessionParams:
    """Input for RefreshSessionRegistry.create() / rotate().

    user_agent and ip_address are raw request values; the registry hashes them
    before they touch storage.
    """

    user_id: int
    jti: str
    expires_at: datetime
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None


@dataclass(frozen=True)
class TokenPair:
    """Access + refresh token issued together. Transient, never persisted whole."""

    access_token: str
    refresh_token: str
    jti: str
    access_expires_at: datetime
    refresh_expires_at: datetime


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, as seen by route handlers and guards."""

    user_id: int
    role: str
    email: Optional[str] = None

    def has_role(self, *roles: str) -> bool:
        return self.role in roles


@dataclass(frozen=True)
class ClientContext:
    """Request facts used to fingerprint refresh sessions."""

    user_agent: Optional[str] = None
    ip_address: Optional[str] = None


@dataclass(frozen=True)
class OAuthProfile:
    """Provider-normalized identity returned by auth.oauth.get_oauth_profile()."""

    provider: str
    subject: str
    email: Optional[str] = None
    display_name: Optional[str] = None


@dataclass
class AuthResult:
    """Outcome of a flow that starts a session (signup, login, refresh, OAuth)."""

    user: User
    tokens: TokenPair


@dataclass
class LinkedAccounts:
    """Authentication methods attached to one user."""

    identities: list[UserIdentity] = field(default_factory=list)
    has_password: bool = False
    primary_email: Optional[str] = None

    @property
    def providers(self) -> list[str]:
        return [i.provider for i in self.identities]

    @property
    def total_auth_methods(self) -> int:
        return len(self.identities) + (1 if self.has_password else 0)
