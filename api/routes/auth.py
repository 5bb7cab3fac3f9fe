"""
api/routes/auth.py -- Password authentication, session and account endpoints.

Routes:
  POST  /auth/signup                 -- create account; sets cookies; 201
  POST  /auth/login                  -- password login; sets cookies
  POST  /auth/refresh                -- rotate refresh token; sets new cookies
  POST  /auth/logout                 -- revoke current session; clears cookies
  POST  /auth/logout-all             -- revoke every session (requires auth)
  GET   /auth/me                     -- user + linked accounts (requires auth)
  GET   /auth/sessions               -- active session count (requires auth)
  PUT   /auth/password               -- set or change password (requires auth)
  GET   /auth/providers              -- enabled OAuth providers (public)
  PATCH /auth/users/{id}/status      -- activate / suspend a user (admin only)

Security:
  [H2] POST /login and /signup are rate-limited per IP (LOGIN_RATE_LIMIT,
       SIGNUP_RATE_LIMIT).
  [C1] Login timing equalization lives in AuthService.login -- never inline
       the lookup + verify here.
  [M5] Cache-Control: no-store on every response that sets or clears cookies.
  Tokens are never written to a response body; CookieTransport is the only
  writer of the auth cookies.

Handlers are plain `def`: bcrypt and SQLite calls block, and FastAPI runs
sync handlers on its threadpool.
"""

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    ErrorDetail,
    ErrorResponse,
    LoginRequest,
    LogoutAllResponse,
    MeResponse,
    PasswordChangeRequest,
    ProviderInfo,
    ProvidersResponse,
    SessionCountResponse,
    SignupRequest,
    StatusUpdateRequest,
    SuccessResponse,
    UserEnvelope,
    UserResponse,
)
from auth.cookies import CookieTransport
from auth.dependencies import get_current_principal, require_admin
from auth.errors import UnauthorizedError
from auth.models import ClientContext, Principal
from auth.oauth import provider_metadata
from auth.service import AuthService
from core.config import get_settings

_settings = get_settings()

# Auth policy:
# - POST  /auth/signup, /auth/login:  public, rate-limited
# - POST  /auth/refresh:              public -- the refresh cookie IS the credential
# - POST  /auth/logout:               public -- must work with an expired access token
# - GET   /auth/providers:            public -- login page renders buttons from it
# - POST  /auth/logout-all, GET /auth/me, GET /auth/sessions, PUT /auth/password:
#                                     requires auth (get_current_principal)
# - PATCH /auth/users/{id}/status:    requires admin (require_admin)
router = APIRouter()


def client_context(request: Request) -> ClientContext:
    """User-Agent and client IP of the current request, for session fingerprints."""
    return ClientContext(
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
    )


def _no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"  # [M5]


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/signup", status_code=201, response_model=UserEnvelope)
@limiter.limit(_settings.signup_rate_limit)  # [H2]
def signup(request: Request, body: SignupRequest, response: Response) -> UserEnvelope:
    """Create a password account and start its first session."""
    service: AuthService = request.app.state.auth
    result = service.signup(
        email=body.email,
        password=body.password,
        role=body.role,
        display_name=body.display_name,
        username=body.username,
        website=body.website,
        client=client_context(request),
    )
    request.app.state.cookies.set_token_cookies(response, result.tokens)
    _no_store(response)
    return UserEnvelope(user=UserResponse.from_user(result.user))


@router.post("/auth/login", response_model=UserEnvelope)
@limiter.limit(_settings.login_rate_limit)  # [H2] brute-force mitigation
def login(request: Request, body: LoginRequest, response: Response) -> UserEnvelope:
    """Authenticate with email and password; set access and refresh cookies.

    Unknown email, OAuth-only account and wrong password all produce the same
    401 body, so the response never reveals whether an email is registered.
    """
    service: AuthService = request.app.state.auth
    result = service.login(body.email, body.password, client=client_context(request))
    request.app.state.cookies.set_token_cookies(response, result.tokens)
    _no_store(response)
    return UserEnvelope(user=UserResponse.from_user(result.user))


@router.post("/auth/refresh", response_model=SuccessResponse)
def refresh(request: Request, response: Response):
    """Exchange the refresh cookie for a new token pair.

    On failure the stale cookies are cleared along with the 401, so the client
    stops presenting a token that can never succeed again.
    """
    service: AuthService = request.app.state.auth
    cookies: CookieTransport = request.app.state.cookies
    try:
        result = service.refresh(cookies.read_refresh(request), client=client_context(request))
    except UnauthorizedError as exc:
        resp = JSONResponse(
            status_code=401,
            content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(),
        )
        cookies.clear_token_cookies(resp)
        _no_store(resp)
        return resp
    cookies.set_token_cookies(response, result.tokens)
    _no_store(response)
    return SuccessResponse(success=True)


@router.post("/auth/logout", response_model=SuccessResponse)
def logout(request: Request, response: Response) -> SuccessResponse:
    """Revoke the current refresh session and clear cookies. Always succeeds."""
    cookies: CookieTransport = request.app.state.cookies
    request.app.state.auth.logout(cookies.read_refresh(request))
    cookies.clear_token_cookies(response)
    _no_store(response)
    return SuccessResponse(success=True, message="Logged out.")


@router.get("/auth/providers", response_model=ProvidersResponse)
def list_providers(request: Request) -> ProvidersResponse:
    """Return the OAuth providers enabled at startup. Empty when OAuth is off."""
    return ProvidersResponse(
        providers=[ProviderInfo(**p) for p in provider_metadata(request.app.state.oauth_providers)]
    )


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout-all", response_model=LogoutAllResponse)
def logout_all(
    request: Request, response: Response, principal: Principal = Depends(get_current_principal)
) -> LogoutAllResponse:
    """Revoke every refresh session of the caller ("log out everywhere")."""
    count = request.app.state.auth.logout_all(principal.user_id)
    request.app.state.cookies.clear_token_cookies(response)
    _no_store(response)
    return LogoutAllResponse(success=True, session_count=count)


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, principal: Principal = Depends(get_current_principal)) -> MeResponse:
    """Return the current user with linked accounts and available auth methods."""
    user, linked = request.app.state.auth.get_user_with_identities(principal.user_id)
    return MeResponse.build(user, linked)


@router.get("/auth/sessions", response_model=SessionCountResponse)
def session_count(request: Request, principal: Principal = Depends(get_current_principal)) -> SessionCountResponse:
    return SessionCountResponse(active_session_count=request.app.state.auth.session_count(principal.user_id))


@router.put("/auth/password", response_model=SuccessResponse)
def set_password(
    request: Request, body: PasswordChangeRequest, principal: Principal = Depends(get_current_principal)
) -> SuccessResponse:
    """Set a password (OAuth-only users) or change it (currentPassword required)."""
    request.app.state.auth.set_password(principal.user_id, body.new_password, body.current_password)
    return SuccessResponse(success=True, message="Password updated.")


# ---------------------------------------------------------------------------
# Admin endpoints
# ---------------------------------------------------------------------------


@router.patch("/auth/users/{user_id}/status", response_model=UserEnvelope)
def update_user_status(
    request: Request, user_id: int, body: StatusUpdateRequest, admin: Principal = Depends(require_admin)
) -> UserEnvelope:
    """Change another user's status. Suspending or deactivating ends all their sessions."""
    user = request.app.state.auth.set_user_status(admin, user_id, body.status)
    return UserEnvelope(user=UserResponse.from_user(user))
