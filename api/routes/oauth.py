"""
api/routes/oauth.py -- OAuth login / signup redirect flow.

Routes:
  GET /auth/{provider}            -- redirect the browser to the provider
  GET /auth/{provider}/callback   -- exchange code, integrate account, set cookies

Both always answer with a 302. Success lands on OAUTH_REDIRECT_SUCCESS with
?provider=<name>; every failure lands on OAUTH_REDIRECT_FAILURE with
?error=<code>&provider=<name>. The browser never sees a JSON error from here.

Security:
  [H1] Profile extraction rejects unverified emails (auth/oauth.py).
  The provider name is checked against the set enabled at startup before
  any redirect, so a spoofed name cannot select an unregistered client.
  OAuth state (CSRF) is stored by authlib in the Starlette session.

This router is mounted AFTER the auth and link routers: /auth/{provider}
would otherwise shadow /auth/me, /auth/link and friends.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

import httpx
from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Request
from fastapi.responses import RedirectResponse
from starlette.concurrency import run_in_threadpool

from api.routes.auth import client_context
from auth.errors import AuthError
from auth.models import OAuthProfile
from auth.oauth import get_oauth_profile
from auth.service import AuthService
from core.config import get_settings

logger = logging.getLogger("marketplace.api.oauth")

_settings = get_settings()

router = APIRouter()


def redirect_with(base: str, **params: str) -> RedirectResponse:
    """302 to base with params appended to its query string."""
    sep = "&" if "?" in base else "?"
    resp = RedirectResponse(f"{base}{sep}{urlencode(params)}", status_code=302)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def failure_redirect(error: str, provider: str, **params: str) -> RedirectResponse:
    return redirect_with(_settings.oauth_redirect_failure, error=error, provider=provider, **params)


def provider_enabled(request: Request, provider: str) -> bool:
    return provider in request.app.state.oauth_providers


async def exchange_profile(request: Request, provider: str) -> OAuthProfile:
    """Complete the code exchange and normalize the provider profile.

    Raises OAuthError when the exchange fails (bad state, denied consent) and
    ValueError / httpx.HTTPError when the profile is unusable.
    """
    client = request.app.state.oauth.create_client(provider)
    token = await client.authorize_access_token(request)
    return await get_oauth_profile(client, provider, token)


@router.get("/auth/{provider}")
async def oauth_redirect(request: Request, provider: str) -> RedirectResponse:
    """Redirect the browser to the provider's authorization page."""
    if not provider_enabled(request, provider):
        return failure_redirect("provider_disabled", provider)

    client = request.app.state.oauth.create_client(provider)
    redirect_uri = str(request.url_for("oauth_callback", provider=provider))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/{provider}/callback", name="oauth_callback")
async def oauth_callback(request: Request, provider: str) -> RedirectResponse:
    """Handle the provider callback: sign the user in (or up) and set cookies.

    Flow:
      1. Exchange authorization code for token (authlib checks state).
      2. Normalize the profile -- raises ValueError if unverified [H1].
      3. Integrate: returning identity, email match, or new user.
      4. Refuse inactive accounts, then start a session and set cookies.
    """
    if not provider_enabled(request, provider):
        return failure_redirect("provider_disabled", provider)

    try:
        profile = await exchange_profile(request, provider)
    except OAuthError:
        logger.exception("OAuth token exchange failed for provider %r", provider)
        return failure_redirect("oauth_failed", provider)
    except (ValueError, httpx.HTTPError) as exc:
        logger.warning("OAuth login rejected for provider %r: %s", provider, exc)
        return failure_redirect("oauth_failed", provider)

    service: AuthService = request.app.state.auth
    try:
        result = await run_in_threadpool(service.oauth_login, profile, client_context(request))
    except AuthError as exc:
        logger.info("OAuth login via %r refused: %s", provider, exc.message)
        return failure_redirect(exc.code, provider)

    resp = redirect_with(_settings.oauth_redirect_success, provider=provider)
    request.app.state.cookies.set_token_cookies(resp, result.tokens)
    return resp
