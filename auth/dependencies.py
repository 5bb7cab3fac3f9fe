"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two transports are checked in priority order:
  1. JWT cookie ("access_token") -- set by every login / refresh response.
  2. Authorization: Bearer <token> header -- API clients and tests.

Both converge on a Principal (user_id, role, email). Route handlers receive
the Principal and nothing else; they never decode tokens themselves.

try_get_principal() is the soft variant (returns None on failure).
get_current_principal() wraps it and raises UnauthorizedError (401).
require_role(*roles) builds a guard that raises ForbiddenError (403).

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Depends/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Depends, Request

from auth.cookies import CookieTransport
from auth.errors import ForbiddenError, UnauthorizedError
from auth.models import Principal, Role


def try_get_principal(request: Request) -> Principal | None:
    """Attempt to authenticate the request via cookie or Bearer header.

    Returns the Principal on success, None on any failure. Never raises.
    """
    token = CookieTransport.read_access(request)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    if not token:
        return None
    return request.app.state.auth.authenticate_access_token(token)


def get_current_principal(request: Request) -> Principal:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: Principal = Depends(get_current_principal)): ...
    """
    principal = try_get_principal(request)
    if principal is None:
        raise UnauthorizedError("Authentication required.")
    return principal


def require_role(*roles: str):
    """Build a dependency that admits only principals holding one of roles."""

    def _guard(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not principal.has_role(*roles):
            raise ForbiddenError("Insufficient role for this action.")
        return principal

    return _guard


require_admin = require_role(Role.ADMIN.value)
