#!/usr/bin/env python3
"""
Nano Admin -- operator command line.

Usage:
  python main.py create-admin --email admin@example.com --name "Admin"
  python main.py create-signup-key --name "Acme Web" --project acme --auto-approve
  python main.py serve --host 0.0.0.0 --port 8000

Environment variables:
  SECRET_KEY    Required unless DEBUG=true. Signs access tokens and keys API-key
                digests; keys created under one SECRET_KEY do not work under another.
  DATABASE_URL  SQLAlchemy URL. Defaults to a SQLite file beside the auth package.
"""

import argparse
import getpass
import logging
import sys

from auth.errors import AuthError
from auth.models import Role
from auth.service import AuthService
from auth.store import AccountStore
from auth.tokens import TokenIssuer
from core.config import get_settings
from mail.sender import build_notifier

logger = logging.getLogger("nanoadmin.cli")


def _build_service() -> AuthService:
    settings = get_settings()
    store = AccountStore(settings.database_url) if settings.database_url else AccountStore()
    return AuthService(store, TokenIssuer(settings), build_notifier(settings))


def _read_password(args: argparse.Namespace) -> str:
    if args.password:
        return args.password
    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Repeat password: "):
        raise SystemExit("  [!] Passwords do not match.")
    return password


def create_admin(args: argparse.Namespace) -> int:
    """Create an active admin account. Used to bootstrap a fresh installation."""
    password = _read_password(args)
    if len(password) < 6:
        print("  [!] Password must be at least 6 characters.")
        return 1
    service = _build_service()
    try:
        user = service.create_user(None, args.email, password, args.name, role=Role.admin)
    except AuthError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        service.store.close()
    print(f"  Admin account created: {user.email} ({user.id})")
    return 0


def create_signup_key(args: argparse.Namespace) -> int:
    """Issue an external signup key for a tenant. The raw key is printed once."""
    service = _build_service()
    try:
        signup_key, raw_key = service.create_signup_key(
            args.name,
            args.project,
            rate_limit=args.rate_limit,
            auto_approve_signup=args.auto_approve,
        )
    finally:
        service.store.close()
    print(f"  Signup key '{signup_key.name}' created for project {signup_key.project_id}.")
    print(f"  Key (shown once): {raw_key}")
    return 0


def serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="nano-admin",
        description="Operator commands for the Nano Admin auth service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin --email admin@example.com --name "Admin"
  python main.py create-signup-key --name "Acme Web" --project acme --rate-limit 50
  python main.py serve --reload
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_admin = sub.add_parser("create-admin", help="Create an active admin account")
    p_admin.add_argument("--email", required=True)
    p_admin.add_argument("--name", required=True)
    p_admin.add_argument("--password", help="Password (prompted for when omitted)")
    p_admin.set_defaults(func=create_admin)

    p_key = sub.add_parser("create-signup-key", help="Issue an external signup key for a project")
    p_key.add_argument("--name", required=True, help="Integration name shown in verification e-mails")
    p_key.add_argument("--project", required=True, metavar="PROJECT_ID", help="Opaque tenant label")
    p_key.add_argument("--rate-limit", type=int, default=100, metavar="N", help="Requests per minute (default: 100)")
    p_key.add_argument(
        "--auto-approve",
        action="store_true",
        help="Activate accounts as soon as their e-mail is verified",
    )
    p_key.set_defaults(func=create_signup_key)

    p_serve = sub.add_parser("serve", help="Run the API with uvicorn")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8000)
    p_serve.add_argument("--reload", action="store_true")
    p_serve.set_defaults(func=serve)

    args = parser.parse_args(argv)
    logging.basicConfig(level=get_settings().log_level.upper(), format="%(levelname)-5s %(name)s %(message)s")
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
