"""
auth/service.py -- Auth Orchestrator: every flow that starts, renews or ends a session.

AuthService composes the Credential Store, Token Issuer, Refresh Session
Registry and OAuth Integration. Route handlers call exactly one method per
request and map the result onto cookies / JSON; they never touch the stores.

Flows and their failure policy:

  signup        BadRequest (bad URL / role), Conflict (email or username taken).
                Role profile creation is best-effort: logged, never fatal.
  login         Unauthorized("Invalid email or password.") for unknown email,
                password-less account and wrong password alike. bcrypt runs
                against a dummy hash when there is nothing real to check, so
                timing does not reveal which case hit. Status is checked only
                after the password matched.
  refresh       Every failure in the chain (bad signature, expired, unknown or
                consumed jti, owner mismatch, inactive user, store error)
                collapses to Unauthorized("Invalid refresh token"). The cause
                is logged, never returned.
  logout        Best-effort. Never raises.
  oauth_login   Integrate profile, require ACTIVE, then start a session.

All methods are synchronous and do blocking work (bcrypt, SQLite). Call them
from sync route handlers or through run_in_threadpool.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urlparse

from sqlalchemy.exc import SQLAlchemyError

from auth.errors import AuthError, BadRequestError, ConflictError, InvalidTokenError, NotFoundError, UnauthorizedError
from auth.integration import OAuthIntegration
from auth.models import (
    AuthResult,
    ClientContext,
    LinkedAccounts,
    OAuthProfile,
    Principal,
    Role,
    SessionParams,
    User,
    UserStatus,
)
from auth.passwords import DUMMY_HASH, MAX_PASSWORD_BYTES, hash_password, password_too_long, verify_password
from auth.sessions import RefreshSessionRegistry
from auth.store import UserStore, normalize_email
from auth.tokens import ACCESS, REFRESH, TokenIssuer
from core.config import Settings

logger = logging.getLogger("marketplace.auth.service")

_BAD_CREDENTIALS = "Invalid email or password."
_INVALID_REFRESH = "Invalid refresh token"
_SIGNUP_ROLES = frozenset({Role.INFLUENCER.value, Role.ADVERTISER.value})


def _check_password_length(password: str) -> None:
    if password_too_long(password):
        raise BadRequestError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")


def _validate_url(value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise BadRequestError("Website must be a valid http(s) URL.")


class AuthService:
    """Facade over the auth core used by the HTTP layer and the CLI.

    Usage:
        service = create_auth_service(UserStore(), get_settings())
        result = service.login("a@x.com", "secret1", ClientContext(user_agent="...", ip_address="..."))
        cookies.set_token_cookies(response, result.tokens)
    """

    def __init__(
        self,
        users: UserStore,
        tokens: TokenIssuer,
        sessions: RefreshSessionRegistry,
        integration: OAuthIntegration,
    ) -> None:
        self.users = users
        self.tokens = tokens
        self.sessions = sessions
        self.integration = integration

    # ------------------------------------------------------------------
    # Session start (shared by signup, login and OAuth)
    # ------------------------------------------------------------------

    def _start_session(self, user: User, client: Optional[ClientContext]) -> AuthResult:
        client = client or ClientContext()
        pair = self.tokens.issue_pair(user)
        self.sessions.create(
            SessionParams(
                user_id=user.id,
                jti=pair.jti,
                expires_at=pair.refresh_expires_at,
                user_agent=client.user_agent,
                ip_address=client.ip_address,
            )
        )
        return AuthResult(user=user, tokens=pair)

    # ------------------------------------------------------------------
    # Password flows
    # ------------------------------------------------------------------

    def signup(
        self,
        email: str,
        password: str,
        role: str,
        display_name: Optional[str] = None,
        username: Optional[str] = None,
        website: Optional[str] = None,
        client: Optional[ClientContext] = None,
    ) -> AuthResult:
        """Create a password user, its role profile and a first session."""
        if role not in _SIGNUP_ROLES:
            raise BadRequestError("Role must be INFLUENCER or ADVERTISER.")
        _check_password_length(password)
        if website:
            _validate_url(website)
        email = normalize_email(email)
        if not email:
            raise BadRequestError("Email is required.")

        # Specific messages for the common case; the UNIQUE constraints in
        # create_user() still catch a concurrent duplicate.
        if self.users.get_by_email(email) is not None:
            raise ConflictError("Email is already registered.")
        if username and self.users.get_by_username(username) is not None:
            raise ConflictError("Username is already taken.")

        user_id = self.users.create_user(
            User(
                role=role,
                email=email,
                username=username,
                display_name=display_name,
                website=website,
                hashed_password=hash_password(password),
            )
        )
        try:
            self.users.create_role_profile(user_id, role)
        except SQLAlchemyError:
            logger.warning("Role profile creation failed for user %s", user_id, exc_info=True)

        user = self.users.get_by_id(user_id)
        logger.info("User %s signed up as %s", user_id, role)
        return self._start_session(user, client)

    def login(self, email: str, password: str, client: Optional[ClientContext] = None) -> AuthResult:
        user = self.users.get_by_email(email)
        stored_hash = user.hashed_password if user is not None and user.hashed_password else DUMMY_HASH
        password_ok = verify_password(password, stored_hash)

        if user is None or not user.has_password or not password_ok:
            logger.info("Failed login attempt")
            raise UnauthorizedError(_BAD_CREDENTIALS)
        if not user.is_active:
            logger.info("Login refused for %s user %s", user.status, user.id)
            raise UnauthorizedError("Account is not active.")

        self.users.update_last_login(user.id)
        logger.info("User %s logged in", user.id)
        return self._start_session(user, client)

    def set_password(self, user_id: int, new_password: str, current_password: Optional[str] = None) -> None:
        """Set or change a password.

        A user who already has one must supply it. An OAuth-only user may add
        a password without one, which is what makes unlinking their last
        provider possible afterwards.
        """
        _check_password_length(new_password)
        user = self.users.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found.")
        if user.has_password and not (current_password and verify_password(current_password, user.hashed_password)):
            raise UnauthorizedError("Current password is incorrect.")
        self.users.update_user(user_id, hashed_password=hash_password(new_password))
        logger.info("Password %s for user %s", "changed" if user.has_password else "added", user_id)

    # ------------------------------------------------------------------
    # Refresh / logout
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: Optional[str], client: Optional[ClientContext] = None) -> AuthResult:
        """Exchange a refresh token for a new pair, consuming the old jti."""
        if not refresh_token:
            raise UnauthorizedError(_INVALID_REFRESH)
        client = client or ClientContext()
        try:
            claims = self.tokens.verify(refresh_token, expected_type=REFRESH)
            user_id = int(claims["sub"])
            jti = claims["jti"]

            session = self.sessions.validate(jti, client.user_agent, client.ip_address)
            if session.user_id != user_id:
                raise InvalidTokenError("Session owner does not match token subject.")

            user = self.users.get_by_id(user_id)
            if user is None or not user.is_active:
                raise UnauthorizedError("User is missing or not active.")

            pair = self.tokens.issue_pair(user)
            self.sessions.rotate(
                jti,
                SessionParams(
                    user_id=user.id,
                    jti=pair.jti,
                    expires_at=pair.refresh_expires_at,
                    user_agent=client.user_agent,
                    ip_address=client.ip_address,
                ),
            )
        except (AuthError, SQLAlchemyError, KeyError, ValueError) as exc:
            logger.info("Refresh rejected: %s: %s", type(exc).__name__, exc)
            raise UnauthorizedError(_INVALID_REFRESH) from None

        logger.debug("Refreshed session for user %s", user.id)
        return AuthResult(user=user, tokens=pair)

    def logout(self, refresh_token: Optional[str]) -> None:
        """Revoke the session behind refresh_token. Never raises."""
        if not refresh_token:
            return
        claims = self.tokens.decode(refresh_token)
        jti = claims.get("jti") if claims else None
        if not isinstance(jti, str):
            logger.debug("Logout without a usable jti")
            return
        try:
            self.sessions.revoke(jti)
        except SQLAlchemyError:
            logger.warning("Logout could not revoke session %s", jti, exc_info=True)

    def logout_all(self, user_id: int) -> int:
        return self.sessions.revoke_all(user_id)

    def session_count(self, user_id: int) -> int:
        return self.sessions.count_active(user_id)

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def oauth_login(self, profile: OAuthProfile, client: Optional[ClientContext] = None) -> AuthResult:
        user = self.integration.integrate_user(profile, link_mode=False)
        if not user.is_active:
            logger.info("OAuth login refused for %s user %s", user.status, user.id)
            raise UnauthorizedError("Account is not active.")
        self.users.update_last_login(user.id)
        logger.info("User %s logged in via %s", user.id, profile.provider)
        return self._start_session(user, client)

    def link_account(self, user_id: int, profile: OAuthProfile) -> User:
        return self.integration.integrate_user(profile, link_mode=True, existing_user_id=user_id)

    def unlink_account(self, user_id: int, provider: str) -> None:
        self.integration.unlink(user_id, provider)

    def linked_accounts(self, user_id: int) -> LinkedAccounts:
        return self.integration.linked_accounts(user_id)

    # ------------------------------------------------------------------
    # Identity / admin
    # ------------------------------------------------------------------

    def get_user_with_identities(self, user_id: int) -> tuple[User, LinkedAccounts]:
        """Return the user and their auth methods for GET /auth/me."""
        user = self.users.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found.")
        return user, self.integration.linked_accounts(user_id)

    def set_user_status(self, actor: Principal, user_id: int, status: str) -> User:
        """ADMIN operation. A non-ACTIVE status ends every session of the user."""
        if actor.user_id == user_id:
            raise BadRequestError("You cannot change your own status.")
        try:
            status = UserStatus(status).value
        except ValueError:
            raise BadRequestError(f"Unknown status: {status}") from None

        self.users.update_user(user_id, status=status)
        revoked = 0
        if status != UserStatus.ACTIVE.value:
            revoked = self.sessions.revoke_all(user_id)
        logger.info("Admin %s set user %s to %s (%d session(s) revoked)", actor.user_id, user_id, status, revoked)
        return self.users.get_by_id(user_id)

    def authenticate_access_token(self, token: str) -> Optional[Principal]:
        """Principal for a valid access token of an ACTIVE user, else None."""
        try:
            claims = self.tokens.verify(token, expected_type=ACCESS)
        except UnauthorizedError:
            return None
        user = self.users.get_by_id(int(claims["sub"]))
        if user is None or not user.is_active:
            return None
        return Principal(user_id=user.id, role=user.role, email=user.email)


def create_auth_service(users: UserStore, settings: Settings) -> AuthService:
    """Wire an AuthService from a UserStore and Settings."""
    return AuthService(
        users=users,
        tokens=TokenIssuer.from_settings(settings),
        sessions=RefreshSessionRegistry(users.engine, settings.secret_key, cap=settings.refresh_session_cap),
        integration=OAuthIntegration(users, default_role=settings.oauth_default_role),
    )
