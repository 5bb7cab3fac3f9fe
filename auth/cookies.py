"""
auth/cookies.py -- httpOnly cookie transport for access and refresh tokens.

Tokens never appear in a response body. They travel only as cookies:

  access_token   path=/        SameSite=Lax     max-age = access TTL
  refresh_token  path=/auth    SameSite=Strict  max-age = refresh TTL

Both are HttpOnly. Secure follows Settings.cookies_secure (on unless DEBUG).
The refresh cookie is scoped to the auth routes so the browser only sends it
where it can be exchanged, and Strict keeps it off every cross-site request.

Clearing writes an empty value with Max-Age=0 and an epoch Expires using the
same path / domain the cookie was set with; a mismatched path would leave the
original cookie in place.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from starlette.requests import Request
from starlette.responses import Response

from auth.models import TokenPair
from core.config import Settings

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class CookieTransport:
    """Writes, reads and clears the auth cookies on Starlette responses."""

    def __init__(
        self,
        access_max_age: int,
        refresh_max_age: int,
        secure: bool,
        domain: Optional[str] = None,
        refresh_path: str = "/auth",
    ) -> None:
        self.access_max_age = access_max_age
        self.refresh_max_age = refresh_max_age
        self.secure = secure
        self.domain = domain or None
        self.refresh_path = refresh_path

    @classmethod
    def from_settings(cls, settings: Settings) -> "CookieTransport":
        return cls(
            access_max_age=settings.access_token_expire_seconds,
            refresh_max_age=settings.refresh_token_expire_seconds,
            secure=settings.cookies_secure,
            domain=settings.cookie_domain,
            refresh_path=settings.refresh_cookie_path,
        )

    def set_token_cookies(self, response: Response, tokens: TokenPair) -> None:
        response.set_cookie(
            ACCESS_COOKIE,
            tokens.access_token,
            max_age=self.access_max_age,
            path="/",
            domain=self.domain,
            secure=self.secure,
            httponly=True,
            samesite="lax",
        )
        response.set_cookie(
            REFRESH_COOKIE,
            tokens.refresh_token,
            max_age=self.refresh_max_age,
            path=self.refresh_path,
            domain=self.domain,
            secure=self.secure,
            httponly=True,
            samesite="strict",
        )

    def clear_token_cookies(self, response: Response) -> None:
        """Expire both cookies on the client."""
        for name, path, samesite in (
            (ACCESS_COOKIE, "/", "lax"),
            (REFRESH_COOKIE, self.refresh_path, "strict"),
        ):
            response.set_cookie(
                name,
                "",
                max_age=0,
                expires=_EPOCH,
                path=path,
                domain=self.domain,
                secure=self.secure,
                httponly=True,
                samesite=samesite,
            )

    @staticmethod
    def read_access(request: Request) -> Optional[str]:
        return request.cookies.get(ACCESS_COOKIE) or None

    @staticmethod
    def read_refresh(request: Request) -> Optional[str]:
        return request.cookies.get(REFRESH_COOKIE) or None
