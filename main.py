#!/usr/bin/env python3
"""
Marketplace auth -- operations CLI.

Usage:
  python main.py sweep-sessions
  python main.py create-admin --email admin@example.com --password 's3cret-pass'
  python main.py create-admin --email admin@example.com --password 's3cret-pass' --display-name Ops
  python main.py revoke-sessions --user-id 42
  python main.py --db sqlite:///other.db sweep-sessions

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the auth database (default: marketplace_auth.db).
  SECRET_KEY    Required unless DEBUG=true. Must match the API server's key so
                session fingerprints stay comparable.
"""

import argparse
from typing import Optional

from auth.errors import BadRequestError, ConflictError
from auth.models import Role, User
from auth.passwords import hash_password
from auth.service import create_auth_service
from auth.store import UserStore
from core.config import get_settings


def _sweep(service, args: argparse.Namespace) -> int:
    count = service.sessions.sweep_expired()
    print(f"  Removed {count} expired refresh session(s).")
    return 0


def _create_admin(service, args: argparse.Namespace) -> int:
    if len(args.password) < 6:
        print("  [!] Password must be at least 6 characters.")
        return 1
    try:
        user_id = service.users.create_user(
            User(
                role=Role.ADMIN.value,
                email=args.email,
                display_name=args.display_name,
                hashed_password=hash_password(args.password),
            )
        )
    except (BadRequestError, ConflictError) as e:
        print(f"  [!] {e.message}")
        return 1
    print(f"  Admin user created (id={user_id}).")
    return 0


def _revoke(service, args: argparse.Namespace) -> int:
    if service.users.get_by_id(args.user_id) is None:
        print(f"  [!] No user with id {args.user_id}.")
        return 1
    count = service.logout_all(args.user_id)
    print(f"  Revoked {count} refresh session(s) for user {args.user_id}.")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="marketplace-auth",
        description="Maintenance commands for the marketplace auth database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py sweep-sessions
  python main.py create-admin --email admin@example.com --password 's3cret-pass'
  python main.py revoke-sessions --user-id 42
        """,
    )
    parser.add_argument(
        "--db",
        metavar="URL",
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL from the environment)",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    sweep = sub.add_parser("sweep-sessions", help="Delete every expired refresh session")
    sweep.set_defaults(handler=_sweep)

    admin = sub.add_parser("create-admin", help="Create an ADMIN account with a password")
    admin.add_argument("--email", required=True, help="Login email of the new admin")
    admin.add_argument("--password", required=True, help="Initial password (min. 6 characters)")
    admin.add_argument("--display-name", default=None, help="Optional display name")
    admin.set_defaults(handler=_create_admin)

    revoke = sub.add_parser("revoke-sessions", help="Log a user out of every device")
    revoke.add_argument("--user-id", type=int, required=True, metavar="N", help="ID of the user")
    revoke.set_defaults(handler=_revoke)

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    store = UserStore(args.db)
    try:
        return args.handler(create_auth_service(store, get_settings()), args)
    finally:
        store.close()


if __name__ == "__main__":
    raise SystemExit(main())
