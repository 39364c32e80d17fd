#!/usr/bin/env python3
"""
MonoAuth -- management commands.

Usage:
  python main.py serve [--host 0.0.0.0] [--port 5000] [--reload]
  python main.py seed
  python main.py create-admin admin@example.com

Environment variables (see core/config.py for the full list):
  SECRET_KEY     Required unless DEBUG=true. At least 32 characters.
  DATABASE_URL   SQLAlchemy URL. Defaults to sqlite:///./monoauth.db
  SMTP_HOST      Leave empty to log emails instead of sending them.
"""

import argparse
import getpass
import sys
from typing import Optional

from core.clock import to_iso, utcnow
from core.config import get_settings


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _cmd_seed(args: argparse.Namespace) -> int:
    from auth.seed import seed_roles_and_permissions
    from auth.store import UserStore

    store = UserStore(get_settings().database_url)
    try:
        granted = seed_roles_and_permissions(store)
    finally:
        store.close()
    print(f"  Roles and permissions seeded ({granted} new grants).")
    return 0


def create_admin(store, email: str, password: str) -> Optional[int]:
    """Create a pre-verified user holding the Admin role.

    Returns the new user ID, or None if the email is already registered.
    Seeds roles first so the Admin role exists on a fresh database.
    """
    from auth.models import User
    from auth.seed import ADMIN_ROLE, seed_roles_and_permissions
    from auth.tokens import hash_password

    if store.get_by_email(email) is not None:
        return None
    seed_roles_and_permissions(store)
    now = utcnow()
    user_id = store.create_user(
        User(email=email, hashed_password=hash_password(password), email_verified_at=to_iso(now)),
        now,
    )
    store.assign_role(user_id, ADMIN_ROLE)
    return user_id


def _cmd_create_admin(args: argparse.Namespace) -> int:
    from auth.store import UserStore

    password = args.password or getpass.getpass("  Password: ")
    if len(password) < 8:
        print("  [!] Password must be at least 8 characters.")
        return 1

    store = UserStore(get_settings().database_url)
    try:
        user_id = create_admin(store, args.email, password)
    finally:
        store.close()
    if user_id is None:
        print(f"  [!] '{args.email}' is already registered.")
        return 1
    print(f"  Admin '{args.email}' created (id={user_id}).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="monoauth", description="MonoAuth management commands.")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the API with uvicorn.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=5000)
    serve.add_argument("--reload", action="store_true", help="Auto-reload on code changes (development).")
    serve.set_defaults(func=_cmd_serve)

    seed = sub.add_parser("seed", help="Create the default roles and permissions (idempotent).")
    seed.set_defaults(func=_cmd_seed)

    admin = sub.add_parser("create-admin", help="Create a verified user with the Admin role.")
    admin.add_argument("email")
    admin.add_argument("--password", help="Omit to be prompted (keeps it out of shell history).")
    admin.set_defaults(func=_cmd_create_admin)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
