"""
auth/passwords.py -- bcrypt password hashing with timing equalization.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

Cost factor comes from Settings.password_hash_rounds (validated >= 12).
bcrypt.gensalt() draws a fresh random salt on every call and checkpw()
compares in constant time.

Length limit:
  bcrypt only reads the first 72 BYTES of its input; bcrypt 5.x raises
  ValueError beyond that. The limit is on UTF-8 bytes, not characters: 24
  Hangul syllables already take 72 bytes. hash_password() refuses longer
  input with BadRequestError instead of truncating, and the API request
  models reject it up front with a 422.

hash_password() is CPU-bound (~250ms at cost 12). Call it from sync route
handlers (FastAPI runs those on its threadpool) or via run_in_threadpool,
never directly inside an async handler.
"""

from __future__ import annotations

import bcrypt

from auth.errors import BadRequestError
from core.config import get_settings

_settings = get_settings()

MAX_PASSWORD_BYTES = 72


def password_too_long(plain: str) -> bool:
    """True when plain exceeds bcrypt's 72-byte input limit once UTF-8 encoded."""
    return len(plain.encode("utf-8")) > MAX_PASSWORD_BYTES


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Raises BadRequestError when the password is longer than 72 UTF-8 bytes.
    """
    if password_too_long(plain):
        raise BadRequestError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")
    salt = bcrypt.gensalt(rounds=_settings.password_hash_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    if password_too_long(plain):
        # Never stored, so never a match. Checked here so bcrypt 4.x cannot
        # truncate it into one.
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash -- treat as a mismatch, never as a match.
        return False


# Timing equalization dummy hash [C1].
# Always run bcrypt during login, even when the email is unknown or the
# account has no password, so response time does not reveal which case hit.
DUMMY_HASH: str = hash_password("marketplace_timing_dummy")
