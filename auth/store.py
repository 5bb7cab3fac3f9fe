"""
auth/store.py -- SQLAlchemy Core persistence layer for users and identities.

Pattern: Repository + Data Mapper. UserStore is the repository;
_row_to_user / _row_to_identity are the mappers. Route, service and
dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Uniqueness (email, username, provider links) is enforced by SQL
  constraints. IntegrityError is mapped to ConflictError here so callers
  never import SQLAlchemy to detect a duplicate.

Auth-method invariant:
  A user must own a password hash or at least one identity. create_user()
  refuses a user with neither and inserts the user and its first identity in
  one transaction, so an OAuth-only user is never visible without its link.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import ConflictError, NotFoundError
from auth.models import Role, User, UserIdentity
from auth.schema import advertiser_companies, influencer_profiles, make_engine, user_identities, users
from core.config import get_settings

logger = logging.getLogger("marketplace.auth.store")

# Columns update_user() accepts. Anything else is a programming error.
_UPDATABLE_FIELDS = frozenset(
    {"status", "last_login_at", "hashed_password", "display_name", "role", "website", "username"}
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email: Optional[str]) -> Optional[str]:
    """Emails are stored and matched lower-cased and stripped."""
    if email is None:
        return None
    email = email.strip().lower()
    return email or None


def _conflict_message(exc: IntegrityError) -> str:
    text = str(exc.orig).lower()
    if "email" in text:
        return "Email is already registered."
    if "username" in text:
        return "Username is already taken."
    if "provider" in text:
        return "This provider account is already linked."
    return "Record already exists."


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and UserIdentity entities.

    Usage:
        store = UserStore()
        uid = store.create_user(User(email="a@x.com", role="INFLUENCER", hashed_password=hash_password("pw")))
        user = store.get_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: Optional[str] = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().database_url)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def get_by_email(self, email: str) -> Optional[User]:
        """Look up a user by email (case-insensitive). Returns None if not found."""
        email = normalize_email(email)
        if email is None:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_username(self, username: str) -> Optional[User]:
        """Look up a user by exact username. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> Optional[User]:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def create_user(self, user: User, identity: Optional[UserIdentity] = None) -> int:
        """Insert a new user (and optionally its first identity); return the user ID.

        Raises ConflictError if the email, username or provider link is taken.
        Raises ValueError if the user would have no authentication method.
        """
        if not user.hashed_password and identity is None:
            raise ValueError("A user needs a password hash or a linked identity.")
        now = _now_iso()
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    users.insert().values(
                        email=normalize_email(user.email),
                        username=user.username,
                        hashed_password=user.hashed_password,
                        display_name=user.display_name,
                        role=user.role,
                        status=user.status,
                        website=user.website,
                        created_at=now,
                        updated_at=now,
                    )
                )
                user_id = result.inserted_primary_key[0]
                if identity is not None:
                    conn.execute(
                        user_identities.insert().values(
                            user_id=user_id,
                            provider=identity.provider,
                            provider_subject=identity.provider_subject,
                            provider_email=normalize_email(identity.provider_email),
                            linked_at=now,
                            updated_at=now,
                        )
                    )
        except IntegrityError as exc:
            raise ConflictError(_conflict_message(exc)) from exc
        return user_id

    def update_user(self, user_id: int, **fields) -> None:
        """Update mutable fields on an existing user.

        Accepted fields: status, last_login_at, hashed_password, display_name,
        role, website, username. Raises NotFoundError if user_id does not exist.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        fields["updated_at"] = _now_iso()
        try:
            with self.engine.begin() as conn:
                result = conn.execute(users.update().where(users.c.id == user_id).values(**fields))
        except IntegrityError as exc:
            raise ConflictError(_conflict_message(exc)) from exc
        if result.rowcount == 0:
            raise NotFoundError("User not found.")

    def update_last_login(self, user_id: int) -> None:
        """Stamp the current UTC timestamp as last_login_at for the given user."""
        with self.engine.begin() as conn:
            conn.execute(users.update().where(users.c.id == user_id).values(last_login_at=_now_iso()))

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user. Identities, sessions and profiles cascade.

        Returns True if deleted, False if not found.
        """
        with self.engine.begin() as conn:
            result = conn.execute(users.delete().where(users.c.id == user_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Identity queries
    # ------------------------------------------------------------------

    def get_identity(self, provider: str, provider_subject: str) -> Optional[UserIdentity]:
        """Look up the identity owning a provider account, if any."""
        with self.engine.connect() as conn:
            row = conn.execute(
                user_identities.select().where(
                    (user_identities.c.provider == provider)
                    & (user_identities.c.provider_subject == provider_subject)
                )
            ).fetchone()
        return _row_to_identity(row) if row is not None else None

    def get_identity_for_user(self, user_id: int, provider: str) -> Optional[UserIdentity]:
        with self.engine.connect() as conn:
            row = conn.execute(
                user_identities.select().where(
                    (user_identities.c.user_id == user_id) & (user_identities.c.provider == provider)
                )
            ).fetchone()
        return _row_to_identity(row) if row is not None else None

    def list_identities(self, user_id: int) -> list[UserIdentity]:
        """Return all identities for a user, most recently linked first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                user_identities.select()
                .where(user_identities.c.user_id == user_id)
                .order_by(user_identities.c.linked_at.desc(), user_identities.c.id.desc())
            ).fetchall()
        return [_row_to_identity(r) for r in rows]

    def count_identities(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(user_identities).where(user_identities.c.user_id == user_id)
            ).scalar()
        return result or 0

    def add_identity(self, identity: UserIdentity) -> int:
        """Attach a provider identity to an existing user; return its ID.

        Raises ConflictError if the user already has this provider or the
        provider account belongs to someone else.
        """
        now = _now_iso()
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    user_identities.insert().values(
                        user_id=identity.user_id,
                        provider=identity.provider,
                        provider_subject=identity.provider_subject,
                        provider_email=normalize_email(identity.provider_email),
                        linked_at=now,
                        updated_at=now,
                    )
                )
        except IntegrityError as exc:
            raise ConflictError(_conflict_message(exc)) from exc
        return result.inserted_primary_key[0]

    def touch_identity(self, identity_id: int, provider_email: Optional[str]) -> None:
        """Refresh the provider email and updated_at after a successful OAuth login."""
        with self.engine.begin() as conn:
            conn.execute(
                user_identities.update()
                .where(user_identities.c.id == identity_id)
                .values(provider_email=normalize_email(provider_email), updated_at=_now_iso())
            )

    def remove_identity(self, user_id: int, provider: str) -> bool:
        """Delete the user's identity for a provider. Returns True if one was removed.

        The DELETE only fires while the user would keep another auth method
        (a password or a second identity), checked in the same statement so two
        concurrent unlinks cannot strip the last one. OAuthIntegration.unlink
        checks first to produce a precise error; False here means the link was
        missing or was the last method.
        """
        identity_count = (
            select(func.count())
            .select_from(user_identities)
            .where(user_identities.c.user_id == user_id)
            .scalar_subquery()
        )
        password_count = (
            select(func.count())
            .select_from(users)
            .where((users.c.id == user_id) & users.c.hashed_password.is_not(None))
            .scalar_subquery()
        )
        with self.engine.begin() as conn:
            result = conn.execute(
                user_identities.delete().where(
                    (user_identities.c.user_id == user_id)
                    & (user_identities.c.provider == provider)
                    & ((identity_count + password_count) > 1)
                )
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Role profiles
    # ------------------------------------------------------------------

    def create_role_profile(self, user_id: int, role: str) -> bool:
        """Create the empty role-specific profile row for a new user.

        INFLUENCER -> influencer_profiles, ADVERTISER -> advertiser_companies,
        ADMIN -> nothing. Returns False when the profile already existed.
        Other database errors propagate; the service treats them as non-fatal.
        """
        now = _now_iso()
        if role == Role.INFLUENCER.value:
            stmt = influencer_profiles.insert().values(
                user_id=user_id,
                categories=json.dumps([]),
                followers=0,
                avg_engagement=0.0,
                languages=json.dumps(["ko"]),
                created_at=now,
            )
        elif role == Role.ADVERTISER.value:
            stmt = advertiser_companies.insert().values(
                user_id=user_id,
                company_name="Not set",
                industry="Unclassified",
                created_at=now,
            )
        else:
            return False
        try:
            with self.engine.begin() as conn:
                conn.execute(stmt)
        except IntegrityError:
            return False
        return True

    def has_role_profile(self, user_id: int, role: str) -> bool:
        table = influencer_profiles if role == Role.INFLUENCER.value else advertiser_companies
        with self.engine.connect() as conn:
            row = conn.execute(select(table.c.id).where(table.c.user_id == user_id)).fetchone()
        return row is not None

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        username=row.username,
        hashed_password=row.hashed_password,
        display_name=row.display_name,
        role=row.role,
        status=row.status,
        website=row.website,
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login_at=row.last_login_at,
    )


def _row_to_identity(row) -> UserIdentity:
    return UserIdentity(
        id=row.id,
        user_id=row.user_id,
        provider=row.provider,
        provider_subject=row.provider_subject,
        provider_email=row.provider_email,
        linked_at=row.linked_at,
        updated_at=row.updated_at,
    )
