"""
api/routes/link.py -- Account linking: attach / detach OAuth providers.

Routes:
  GET    /auth/link                       -- linked accounts summary (requires auth)
  GET    /auth/link/{provider}            -- start linking (requires auth)
  GET    /auth/link/{provider}/callback   -- finish linking; redirect
  DELETE /auth/link/{provider}            -- unlink (requires auth)

The user id that started a link flow is kept in the signed Starlette session
("linking_user_id") across the provider round trip. The callback only links
when that id matches the authenticated caller, so a callback URL replayed in
another user's browser links nothing. The callback itself needs a live access
cookie; an access token that expired during the provider round trip is
reported as error=session_expired.

Unlink is refused with 403 when it would remove the user's last way to sign
in (see OAuthIntegration.unlink).
"""

from __future__ import annotations

import logging

import httpx
from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from starlette.concurrency import run_in_threadpool

from api.models import LinkStatusResponse, SuccessResponse
from api.routes.oauth import exchange_profile, failure_redirect, provider_enabled, redirect_with
from auth.dependencies import get_current_principal, try_get_principal
from auth.errors import AuthError
from auth.models import Principal
from core.config import get_settings

logger = logging.getLogger("marketplace.api.link")

_settings = get_settings()

_SESSION_KEY = "linking_user_id"

router = APIRouter()


@router.get("/auth/link", response_model=LinkStatusResponse)
def link_status(request: Request, principal: Principal = Depends(get_current_principal)) -> LinkStatusResponse:
    """Return linked identities, password presence and total auth methods."""
    return LinkStatusResponse.build(request.app.state.auth.linked_accounts(principal.user_id))


@router.get("/auth/link/{provider}")
async def link_redirect(
    request: Request, provider: str, principal: Principal = Depends(get_current_principal)
) -> RedirectResponse:
    """Remember who is linking, then redirect to the provider."""
    if not provider_enabled(request, provider):
        return failure_redirect("provider_disabled", provider, action="link")

    request.session[_SESSION_KEY] = principal.user_id
    client = request.app.state.oauth.create_client(provider)
    redirect_uri = str(request.url_for("link_callback", provider=provider))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/link/{provider}/callback", name="link_callback")
async def link_callback(request: Request, provider: str) -> RedirectResponse:
    """Attach the provider account to the user who started the flow.

    The callback authenticates with the access cookie, which can expire while
    the user is at the provider. That case redirects with
    error=session_expired so the client can POST /auth/refresh and start the
    link again; a missing or foreign link session is error=link_session_invalid.
    """
    linking_user_id = request.session.pop(_SESSION_KEY, None)
    if not provider_enabled(request, provider):
        return failure_redirect("provider_disabled", provider, action="link")

    principal = await run_in_threadpool(try_get_principal, request)
    if principal is None and linking_user_id is not None:
        logger.info("Link callback for %r after the access token expired", provider)
        return failure_redirect("session_expired", provider, action="link")
    if principal is None or linking_user_id != principal.user_id:
        logger.warning("Link callback for %r without a matching link session", provider)
        return failure_redirect("link_session_invalid", provider, action="link")

    try:
        profile = await exchange_profile(request, provider)
    except OAuthError:
        logger.exception("OAuth token exchange failed while linking %r", provider)
        return failure_redirect("oauth_failed", provider, action="link")
    except (ValueError, httpx.HTTPError) as exc:
        logger.warning("Link rejected for provider %r: %s", provider, exc)
        return failure_redirect("oauth_failed", provider, action="link")

    try:
        await run_in_threadpool(request.app.state.auth.link_account, principal.user_id, profile)
    except AuthError as exc:
        logger.info("Linking %r to user %s refused: %s", provider, principal.user_id, exc.message)
        return failure_redirect(exc.code, provider, action="link")

    return redirect_with(_settings.oauth_redirect_success, action="link", provider=provider, success="true")


@router.delete("/auth/link/{provider}", response_model=SuccessResponse)
def unlink(request: Request, provider: str, principal: Principal = Depends(get_current_principal)) -> SuccessResponse:
    request.app.state.auth.unlink_account(principal.user_id, provider)
    return SuccessResponse(success=True, message=f"{provider} account unlinked.")
