"""
auth/tokens.py -- JWT access / refresh token issuance and verification.

Security design decisions:
  JWT: python-jose with HS256, signed with SECRET_KEY. Every token carries a
       "type" claim ("access" or "refresh") and verify() checks it, so a
       refresh token can never be presented as an access token or vice versa.

  Refresh tokens carry a random jti (uuid4, 122 bits of entropy). The
       signature alone is NOT sufficient to refresh: the jti must also be on
       the server-side whitelist (auth/sessions.py). This module never looks
       at the whitelist.

  One lifetime policy: the refresh token exp, the whitelist expires_at and
       the cookie max-age all come from the same TokenPair.refresh_expires_at.

  decode() skips signature verification and exists only for best-effort
       cleanup during logout. Its output must never drive an authorization
       decision.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import InvalidTokenError, TokenExpiredError
from auth.models import TokenPair, User
from core.config import Settings

logger = logging.getLogger("marketplace.auth.tokens")

_ALGORITHM = "HS256"

ACCESS = "access"
REFRESH = "refresh"


class TokenIssuer:
    """Creates and verifies signed access / refresh tokens.

    Usage:
        issuer = TokenIssuer.from_settings(get_settings())
        pair = issuer.issue_pair(user)
        claims = issuer.verify(pair.refresh_token, expected_type="refresh")
    """

    def __init__(self, secret_key: str, access_ttl: timedelta, refresh_ttl: timedelta) -> None:
        self._secret_key = secret_key
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenIssuer":
        return cls(
            secret_key=settings.secret_key,
            access_ttl=timedelta(seconds=settings.access_token_expire_seconds),
            refresh_ttl=timedelta(days=settings.refresh_token_expire_days),
        )

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def issue_access_token(
        self, user_id: int, email: Optional[str], role: str, now: Optional[datetime] = None
    ) -> str:
        """Encode a short-lived access token: {sub, email, role, type, iat, exp}."""
        now = now or datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "email": email,
            "role": role,
            "type": ACCESS,
            "iat": now,
            "exp": now + self.access_ttl,
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def issue_refresh_token(self, user_id: int, now: Optional[datetime] = None) -> tuple[str, str]:
        """Encode a refresh token with a fresh jti. Returns (token, jti)."""
        now = now or datetime.now(timezone.utc)
        jti = str(uuid.uuid4())
        payload = {
            "sub": str(user_id),
            "jti": jti,
            "type": REFRESH,
            "iat": now,
            "exp": now + self.refresh_ttl,
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM), jti

    def issue_pair(self, user: User) -> TokenPair:
        """Issue an access + refresh token for user, sharing one clock reading."""
        now = datetime.now(timezone.utc)
        access_token = self.issue_access_token(user.id, user.email, user.role, now=now)
        refresh_token, jti = self.issue_refresh_token(user.id, now=now)
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            jti=jti,
            access_expires_at=now + self.access_ttl,
            refresh_expires_at=now + self.refresh_ttl,
        )

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify(self, token: str, expected_type: Optional[str] = None) -> dict:
        """Verify signature and exp; return the claims.

        Raises TokenExpiredError when exp has passed and InvalidTokenError for
        any other failure (bad signature, malformed token, wrong type, missing
        sub / jti).
        """
        try:
            claims = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except ExpiredSignatureError as exc:
            raise TokenExpiredError("Token has expired.") from exc
        except JWTError as exc:
            raise InvalidTokenError("Invalid token.") from exc

        if expected_type is not None and claims.get("type") != expected_type:
            raise InvalidTokenError("Invalid token type.")
        sub = claims.get("sub")
        if not isinstance(sub, str) or not sub.isdigit():
            raise InvalidTokenError("Invalid token subject.")
        if claims.get("type") == REFRESH and not claims.get("jti"):
            raise InvalidTokenError("Refresh token has no jti.")
        return claims

    def decode(self, token: str) -> Optional[dict]:
        """Parse claims WITHOUT verifying the signature. Returns None if malformed."""
        try:
            return jwt.get_unverified_claims(token)
        except JWTError:
            logger.debug("Token decode failed")
            return None
