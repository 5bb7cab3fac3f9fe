"""
tests/test_tokens.py -- Unit tests for TokenIssuer.

Covers:
  - access / refresh claim shape and lifetimes
  - type confusion is rejected in both directions
  - expired tokens raise TokenExpiredError; tampered ones InvalidTokenError
  - decode() reads claims without the key and tolerates garbage
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from auth.errors import InvalidTokenError, TokenExpiredError, UnauthorizedError
from auth.models import User
from auth.tokens import ACCESS, REFRESH, TokenIssuer

_SECRET = "s" * 40


@pytest.fixture
def issuer() -> TokenIssuer:
    return TokenIssuer(_SECRET, access_ttl=timedelta(minutes=15), refresh_ttl=timedelta(days=14))


def test_access_token_claims(issuer: TokenIssuer) -> None:
    token = issuer.issue_access_token(7, "a@x.com", "ADVERTISER")
    claims = issuer.verify(token, expected_type=ACCESS)
    assert claims["sub"] == "7"
    assert claims["email"] == "a@x.com"
    assert claims["role"] == "ADVERTISER"
    assert claims["exp"] - claims["iat"] == 15 * 60


def test_refresh_token_carries_unique_jti(issuer: TokenIssuer) -> None:
    t1, jti1 = issuer.issue_refresh_token(7)
    _, jti2 = issuer.issue_refresh_token(7)
    assert jti1 != jti2
    claims = issuer.verify(t1, expected_type=REFRESH)
    assert claims["jti"] == jti1
    assert claims["exp"] - claims["iat"] == 14 * 24 * 3600


def test_issue_pair_shares_refresh_expiry(issuer: TokenIssuer) -> None:
    pair = issuer.issue_pair(User(id=3, role="INFLUENCER", email="p@x.com"))
    claims = issuer.verify(pair.refresh_token, expected_type=REFRESH)
    assert claims["jti"] == pair.jti
    assert claims["exp"] == int(pair.refresh_expires_at.timestamp())


def test_type_confusion_rejected(issuer: TokenIssuer) -> None:
    access = issuer.issue_access_token(1, None, "INFLUENCER")
    refresh, _ = issuer.issue_refresh_token(1)
    with pytest.raises(InvalidTokenError):
        issuer.verify(access, expected_type=REFRESH)
    with pytest.raises(InvalidTokenError):
        issuer.verify(refresh, expected_type=ACCESS)


def test_expired_token(issuer: TokenIssuer) -> None:
    past = datetime.now(timezone.utc) - timedelta(hours=1)
    token = issuer.issue_access_token(1, None, "INFLUENCER", now=past)
    with pytest.raises(TokenExpiredError):
        issuer.verify(token)


def test_wrong_key_rejected(issuer: TokenIssuer) -> None:
    other = TokenIssuer("o" * 40, timedelta(minutes=15), timedelta(days=14))
    token = other.issue_access_token(1, None, "INFLUENCER")
    with pytest.raises(UnauthorizedError):
        issuer.verify(token)


def test_decode_without_verification(issuer: TokenIssuer) -> None:
    other = TokenIssuer("o" * 40, timedelta(minutes=15), timedelta(days=14))
    token, jti = other.issue_refresh_token(9)
    assert issuer.decode(token)["jti"] == jti
    assert issuer.decode("not-a-jwt") is None
