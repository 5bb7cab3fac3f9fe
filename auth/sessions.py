"""
auth/sessions.py -- Refresh Session Registry: the server-side whitelist.

A refresh token is only honoured while its jti has a row in
refresh_sessions. Signature validity alone is never enough.

Session lifecycle (no update-in-place, rows are immutable):

    create() ──> ACTIVE ──rotate()──> CONSUMED   (row deleted, successor inserted)
                   │
                   ├──revoke()/revoke_all()──> REVOKED  (row deleted)
                   └──sweep_expired()/validate()──> EXPIRED (row deleted)

Consumed, revoked and never-issued jtis are indistinguishable to callers:
all three are "no row", and validate() reports them with the same
UnauthorizedError.

Rotation atomicity:
  rotate() runs DELETE old + INSERT new in one transaction. The DELETE is
  conditional (jti AND user_id) and the transaction aborts unless it removed
  exactly one row. Two concurrent refreshes holding the same token therefore
  serialize on the database write lock: the first deletes the row and
  commits, the second deletes nothing and fails. No other locking exists.

Fingerprints:
  User-Agent and IP are stored as HMAC-SHA256(SECRET_KEY, value). A mismatch
  is logged and never invalidates the session: user agents change on browser
  updates and IPs change whenever a phone switches networks.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import and_, func, select
from sqlalchemy.engine import Engine

from auth.errors import UnauthorizedError
from auth.models import RefreshSession, SessionParams, UserStatus
from auth.schema import refresh_sessions, users

logger = logging.getLogger("marketplace.auth.sessions")

_INVALID = "Invalid refresh token"


def _utcnow() -> datetime:
    # Stored as naive UTC; see auth/schema.py.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class _RotationFailed(Exception):
    """Internal: aborts the rotate() transaction when the old row is gone."""


class RefreshSessionRegistry:
    """Repository + state machine for refresh sessions.

    Usage:
        registry = RefreshSessionRegistry(store.engine, secret_key, cap=5)
        registry.create(SessionParams(user_id=1, jti=pair.jti, expires_at=pair.refresh_expires_at))
        session = registry.validate(jti)
        registry.rotate(jti, SessionParams(...))
    """

    def __init__(self, engine: Engine, secret_key: str, cap: int = 5) -> None:
        self.engine = engine
        self._secret = secret_key.encode()
        self.cap = cap

    def fingerprint(self, value: Optional[str]) -> Optional[str]:
        """HMAC-SHA256 hex of a User-Agent or IP, or None when value is empty."""
        if not value:
            return None
        return hmac.new(self._secret, value.encode(), hashlib.sha256).hexdigest()

    # ------------------------------------------------------------------
    # Create / rotate
    # ------------------------------------------------------------------

    def create(self, params: SessionParams) -> RefreshSession:
        """Insert a new ACTIVE session after per-user housekeeping.

        In the same transaction: delete the user's expired sessions, then
        prune to the newest cap-1 so the insert leaves at most `cap` rows.
        """
        now = _utcnow()
        with self.engine.begin() as conn:
            conn.execute(
                refresh_sessions.delete().where(
                    (refresh_sessions.c.user_id == params.user_id) & (refresh_sessions.c.expires_at <= now)
                )
            )
            keep = (
                select(refresh_sessions.c.jti)
                .where(refresh_sessions.c.user_id == params.user_id)
                .order_by(refresh_sessions.c.created_at.desc(), refresh_sessions.c.expires_at.desc())
                .limit(self.cap - 1)
            )
            pruned = conn.execute(
                refresh_sessions.delete().where(
                    (refresh_sessions.c.user_id == params.user_id) & refresh_sessions.c.jti.not_in(keep)
                )
            ).rowcount
            session = self._insert(conn, params, now)
        if pruned:
            logger.info("Pruned %d old refresh session(s) for user %s", pruned, params.user_id)
        logger.debug("Created refresh session %s for user %s", params.jti, params.user_id)
        return session

    def rotate(self, old_jti: str, params: SessionParams) -> RefreshSession:
        """Atomically consume old_jti and insert its successor.

        Raises UnauthorizedError if old_jti is not an outstanding session of
        params.user_id -- including when a concurrent rotate got there first.
        Nothing is inserted in that case.
        """
        now = _utcnow()
        try:
            with self.engine.begin() as conn:
                deleted = conn.execute(
                    refresh_sessions.delete().where(
                        (refresh_sessions.c.jti == old_jti) & (refresh_sessions.c.user_id == params.user_id)
                    )
                ).rowcount
                if deleted != 1:
                    raise _RotationFailed(old_jti)
                session = self._insert(conn, params, now)
        except _RotationFailed:
            logger.warning("Rotation rejected: session %s already consumed or revoked", old_jti)
            raise UnauthorizedError(_INVALID) from None
        logger.debug("Rotated session %s -> %s", old_jti, params.jti)
        return session

    def _insert(self, conn, params: SessionParams, now: datetime) -> RefreshSession:
        session = RefreshSession(
            jti=params.jti,
            user_id=params.user_id,
            expires_at=_naive_utc(params.expires_at),
            created_at=now,
            ua_hash=self.fingerprint(params.user_agent),
            ip_hash=self.fingerprint(params.ip_address),
        )
        conn.execute(
            refresh_sessions.insert().values(
                jti=session.jti,
                user_id=session.user_id,
                expires_at=session.expires_at,
                created_at=session.created_at,
                ua_hash=session.ua_hash,
                ip_hash=session.ip_hash,
            )
        )
        return session

    # ------------------------------------------------------------------
    # Validate
    # ------------------------------------------------------------------

    def get(self, jti: str) -> Optional[RefreshSession]:
        """Return the stored session for jti, expired or not. None if absent."""
        with self.engine.connect() as conn:
            row = conn.execute(refresh_sessions.select().where(refresh_sessions.c.jti == jti)).fetchone()
        return _row_to_session(row) if row is not None else None

    def validate(
        self, jti: str, user_agent: Optional[str] = None, ip_address: Optional[str] = None
    ) -> RefreshSession:
        """Return the ACTIVE session for jti or raise UnauthorizedError.

        Expired sessions and sessions whose user is no longer ACTIVE are
        deleted on the way out (delete-on-read).
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                select(refresh_sessions, users.c.status.label("user_status"))
                .select_from(refresh_sessions.outerjoin(users, users.c.id == refresh_sessions.c.user_id))
                .where(refresh_sessions.c.jti == jti)
            ).fetchone()

        if row is None:
            logger.info("Refresh session %s not found", jti)
            raise UnauthorizedError(_INVALID)

        session = _row_to_session(row)
        if session.expires_at <= _utcnow():
            self.revoke(jti)
            logger.info("Refresh session %s expired", jti)
            raise UnauthorizedError(_INVALID)

        if row.user_status != UserStatus.ACTIVE.value:
            self.revoke(jti)
            logger.info("Refresh session %s belongs to inactive user %s", jti, session.user_id)
            raise UnauthorizedError(_INVALID)

        if session.ua_hash and user_agent and self.fingerprint(user_agent) != session.ua_hash:
            logger.warning("User-Agent mismatch for session %s", jti)
        if session.ip_hash and ip_address and self.fingerprint(ip_address) != session.ip_hash:
            logger.warning("IP address changed for session %s", jti)

        return session

    # ------------------------------------------------------------------
    # Revoke / sweep / count
    # ------------------------------------------------------------------

    def revoke(self, jti: str) -> bool:
        """Delete one session. Idempotent: returns False if it was already gone."""
        with self.engine.begin() as conn:
            deleted = conn.execute(refresh_sessions.delete().where(refresh_sessions.c.jti == jti)).rowcount
        logger.debug("Revoked refresh session %s (existed=%s)", jti, bool(deleted))
        return deleted > 0

    def revoke_all(self, user_id: int) -> int:
        """Delete every session of a user (logout everywhere). Returns the count."""
        with self.engine.begin() as conn:
            deleted = conn.execute(refresh_sessions.delete().where(refresh_sessions.c.user_id == user_id)).rowcount
        logger.info("Revoked %d refresh session(s) for user %s", deleted, user_id)
        return deleted

    def sweep_expired(self) -> int:
        """Delete every expired session, across all users. Returns the count.

        Only touches rows whose expiry has already passed, so it never races
        with create() or rotate() over a live row.
        """
        with self.engine.begin() as conn:
            deleted = conn.execute(refresh_sessions.delete().where(refresh_sessions.c.expires_at <= _utcnow())).rowcount
        if deleted:
            logger.info("Swept %d expired refresh session(s)", deleted)
        return deleted

    def count_active(self, user_id: int) -> int:
        """Number of unexpired sessions for user_id."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(refresh_sessions)
                .where(and_(refresh_sessions.c.user_id == user_id, refresh_sessions.c.expires_at > _utcnow()))
            ).scalar()
        return result or 0


def _row_to_session(row) -> RefreshSession:
    return RefreshSession(
        jti=row.jti,
        user_id=row.user_id,
        expires_at=row.expires_at,
        created_at=row.created_at,
        ua_hash=row.ua_hash,
        ip_hash=row.ip_hash,
    )
