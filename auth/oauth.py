"""
auth/oauth.py -- Authlib OAuth provider registry and profile normalization.

The enabled provider set is resolved ONCE, at application startup, from
Settings: build_oauth() registers every provider that is enabled and returns a
fresh authlib OAuth registry, which api/main.py stores on app.state.oauth.
Nothing is registered at import time, so tests and the CLI can build their own
registry (or none) from their own Settings.

A provider is enabled when ENABLE_OAUTH is true AND both its client ID and
secret are configured.

Security notes:
  [H1] Account matching by email is only safe with a provider-verified email.
       Google: email_verified must be true or the login is rejected.
       Kakao:  the email is kept only when kakao_account reports it valid and
               verified; otherwise the profile carries no email and the user is
               matched by provider subject alone.
       Naver:  only verified addresses are released by the profile API.

  OAuth state parameter (CSRF protection) is handled by authlib automatically
  via Starlette SessionMiddleware. The session stores the state between the
  authorization redirect and the callback.

Supported providers:
  google -- Authorization code flow; OIDC discovery; claims in token["userinfo"].
  kakao  -- Authorization code flow; static endpoints; GET v2/user/me.
  naver  -- Authorization code flow; static endpoints; GET v1/nid/me.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuth

from auth.models import OAuthProfile
from core.config import SUPPORTED_PROVIDERS, Settings

logger = logging.getLogger("marketplace.auth.oauth")

_LABELS = {"google": "Google", "kakao": "Kakao", "naver": "Naver"}

# Static registration arguments per provider. client_id / client_secret are
# merged in by build_oauth().
_PROVIDER_CONFIG: dict[str, dict] = {
    "google": {
        "server_metadata_url": "https://accounts.google.com/.well-known/openid-configuration",
        "client_kwargs": {"scope": "openid email profile"},
    },
    "kakao": {
        "authorize_url": "https://kauth.kakao.com/oauth/authorize",
        "access_token_url": "https://kauth.kakao.com/oauth/token",  # noqa: S106 -- URL, not a password
        "api_base_url": "https://kapi.kakao.com/",
        "client_kwargs": {"scope": "profile_nickname account_email", "token_endpoint_auth_method": "client_secret_post"},
    },
    "naver": {
        "authorize_url": "https://nid.naver.com/oauth2.0/authorize",
        "access_token_url": "https://nid.naver.com/oauth2.0/token",  # noqa: S106 -- URL, not a password
        "api_base_url": "https://openapi.naver.com/",
        "client_kwargs": {"token_endpoint_auth_method": "client_secret_post"},
    },
}


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


def enabled_providers(settings: Settings) -> list[str]:
    """Names of providers that are switched on and fully configured."""
    if not settings.enable_oauth:
        return []
    enabled = []
    for provider in SUPPORTED_PROVIDERS:
        client_id, client_secret = settings.provider_credentials(provider)
        if client_id and client_secret:
            enabled.append(provider)
    return enabled


def provider_metadata(providers: list[str]) -> list[dict]:
    """Return [{"name", "label"}] for GET /auth/providers."""
    return [{"name": p, "label": _LABELS[p]} for p in providers]


def build_oauth(settings: Settings) -> OAuth:
    """Create an authlib OAuth registry holding every enabled provider."""
    oauth = OAuth()
    for provider in enabled_providers(settings):
        client_id, client_secret = settings.provider_credentials(provider)
        oauth.register(
            name=provider,
            client_id=client_id,
            client_secret=client_secret,
            **_PROVIDER_CONFIG[provider],
        )
        logger.info("%s OAuth provider registered", _LABELS[provider])
    if not settings.enable_oauth:
        logger.info("OAuth disabled (ENABLE_OAUTH is false)")
    return oauth


# ---------------------------------------------------------------------------
# Profile extraction -- provider-specific normalization [H1]
# ---------------------------------------------------------------------------


async def get_oauth_profile(client, provider: str, token: dict) -> OAuthProfile:
    """Normalize a provider token response into an OAuthProfile.

    Args:
        client:   The authlib OAuth client for this provider.
        provider: "google", "kakao" or "naver".
        token:    The token dict returned by authlib after code exchange.

    Raises:
        ValueError: the response lacks a subject, or google did not verify
            the email. The caller treats this as an authentication failure.
    """
    if provider == "google":
        return _google_profile(token)
    elif provider == "kakao":
        return await _kakao_profile(client, token)
    elif provider == "naver":
        return await _naver_profile(client, token)
    else:
        raise ValueError(f"Unknown OAuth provider: {provider!r}")


def _google_profile(token: dict) -> OAuthProfile:
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError("google OAuth: no userinfo in token response")

    if not userinfo.get("email_verified", False):
        raise ValueError(
            "google OAuth: email is not verified. "
            "The provider must confirm email ownership before login is allowed."
        )

    subject = userinfo.get("sub")
    email = userinfo.get("email")
    if not subject or not email:
        raise ValueError("google OAuth: missing email or sub claim in userinfo")

    return OAuthProfile(provider="google", subject=str(subject), email=email, display_name=userinfo.get("name"))


async def _kakao_profile(client, token: dict) -> OAuthProfile:
    """GET v2/user/me -> {id, kakao_account: {email, is_email_verified, profile: {nickname}}}."""
    resp = await client.get("v2/user/me", token=token)
    resp.raise_for_status()
    data = resp.json()

    subject = data.get("id")
    if subject is None:
        raise ValueError("kakao OAuth: missing id in user profile")

    account = data.get("kakao_account") or {}
    email = account.get("email")
    if email and not (account.get("is_email_valid", True) and account.get("is_email_verified", False)):
        logger.info("kakao OAuth: ignoring unverified email for subject %s", subject)
        email = None
    nickname = (account.get("profile") or {}).get("nickname")

    return OAuthProfile(provider="kakao", subject=str(subject), email=email or None, display_name=nickname)


async def _naver_profile(client, token: dict) -> OAuthProfile:
    """GET v1/nid/me -> {resultcode, message, response: {id, email, name, nickname}}."""
    resp = await client.get("v1/nid/me", token=token)
    resp.raise_for_status()
    data = resp.json()

    if data.get("resultcode") not in (None, "00"):
        raise ValueError(f"naver OAuth: profile lookup failed ({data.get('message')})")
    info = data.get("response") or {}
    subject = info.get("id")
    if not subject:
        raise ValueError("naver OAuth: missing id in user profile")

    return OAuthProfile(
        provider="naver",
        subject=str(subject),
        email=info.get("email") or None,
        display_name=info.get("name") or info.get("nickname"),
    )
