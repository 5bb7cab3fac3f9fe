"""
auth/schema.py -- SQLAlchemy Core tables and engine factory for the auth core.

The Credential Store (auth/store.py) and the Refresh Session Registry
(auth/sessions.py) are separate repositories over one database, so the
table definitions live here and both import them.

Constraints enforced in SQL:
  users.email / users.username UNIQUE (NULLs allowed, OAuth-only users)
  user_identities UNIQUE(user_id, provider) and UNIQUE(provider, provider_subject)
  refresh_sessions.jti PRIMARY KEY; user_id FK with ON DELETE CASCADE
  role profile tables: user_id UNIQUE, FK with ON DELETE CASCADE

SQLite needs PRAGMA foreign_keys=ON per connection for the cascades to fire;
_on_sqlite_connect() sets it together with WAL mode.
"""

from __future__ import annotations

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), unique=True),  # NULL for OAuth-only users without email
    Column("username", String(50), unique=True),
    Column("hashed_password", Text),  # NULL for OAuth-only users
    Column("display_name", String(100)),
    Column("role", String(20), nullable=False),
    Column("status", String(20), nullable=False, server_default="ACTIVE"),
    Column("website", String(500)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login_at", String(32)),
)

user_identities = Table(
    "user_identities",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("provider", String(20), nullable=False),
    Column("provider_subject", String(255), nullable=False),
    Column("provider_email", String(255)),
    Column("linked_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("user_id", "provider", name="uq_identity_user_provider"),
    UniqueConstraint("provider", "provider_subject", name="uq_identity_provider_subject"),
)

refresh_sessions = Table(
    "refresh_sessions",
    metadata,
    Column("jti", String(64), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("expires_at", DateTime, nullable=False),  # naive UTC
    Column("ua_hash", String(64)),  # HMAC-SHA256 hex of User-Agent
    Column("ip_hash", String(64)),  # HMAC-SHA256 hex of client IP
    Column("created_at", DateTime, nullable=False),  # naive UTC
    Index("ix_refresh_sessions_user_id", "user_id"),
    Index("ix_refresh_sessions_expires_at", "expires_at"),
)

influencer_profiles = Table(
    "influencer_profiles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
    Column("categories", Text, nullable=False, server_default="[]"),  # JSON list
    Column("followers", Integer, nullable=False, server_default="0"),
    Column("avg_engagement", Float, nullable=False, server_default="0"),
    Column("languages", Text, nullable=False, server_default='["ko"]'),  # JSON list
    Column("created_at", String(32), nullable=False),
)

advertiser_companies = Table(
    "advertiser_companies",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
    Column("company_name", String(200), nullable=False),
    Column("industry", String(100), nullable=False),
    Column("created_at", String(32), nullable=False),
)


def _on_sqlite_connect(dbapi_conn, connection_record) -> None:
    """Enable WAL and foreign keys on every new SQLite connection.

    WAL lets readers proceed while a refresh rotation holds the write lock.
    PRAGMAs are per-connection, so this runs from the pool's connect event.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def make_engine(db_url: str) -> Engine:
    """Create an engine for db_url and make sure every table exists."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        # Route handlers run on a threadpool; connections cross threads.
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = 15
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _on_sqlite_connect)
    metadata.create_all(engine)
    return engine
