#!/usr/bin/env python3
"""
Feedback auth -- operator command line.

Administrative tasks against the same database and signing key the API uses.
Reads configuration from the environment / .env (see core/config.py).

Usage:
  python main.py create-user --email alice@example.com --password 'correct horse'
  python main.py create-user --contact +237690000000 --password 'correct horse'
  python main.py issue-token 3f0c9a4e-...
  python main.py check-token eyJhbGciOi...

Environment variables:
  SECRET_KEY    Signing key. Tokens issued here only verify against a server
                running with the same key.
  DATABASE_URL  SQLAlchemy async URL (default: sqlite+aiosqlite:///feedback_auth.db)
"""

import argparse
import asyncio
import sys
from datetime import datetime, timezone
from typing import Optional

from jose import jwt
from sqlalchemy.exc import IntegrityError

from auth.errors import TokenError
from auth.models import Credential
from auth.store import AuthStore
from auth.tokens import TokenCodec, hash_password
from core.config import get_settings


async def _create_user(email: Optional[str], contact: Optional[str], password: str) -> int:
    settings = get_settings()
    store = AuthStore(settings.database_url)
    try:
        await store.initialize()
        hashed = await asyncio.to_thread(hash_password, password)
        try:
            user_id = await store.create_credential(Credential(email=email, contact=contact, hashed_password=hashed))
        except IntegrityError:
            print("  [!] A user with that email or contact already exists.")
            return 1
    finally:
        await store.close()
    print(f"Created user {user_id}")
    return 0


async def _issue_token(user_id: str) -> int:
    settings = get_settings()
    store = AuthStore(settings.database_url)
    try:
        await store.initialize()
        credential = await store.get_by_id(user_id)
    finally:
        await store.close()
    if credential is None:
        print(f"  [!] No user with id '{user_id}'.")
        return 1
    codec = TokenCodec.from_settings(settings)
    print(codec.issue(user_id))
    return 0


def _check_token(token: str) -> int:
    codec = TokenCodec.from_settings(get_settings())
    try:
        subject = codec.validate_and_extract(token)
    except TokenError as exc:
        print(f"  [!] {exc.code}: {exc.message}")
        return 1
    expires = datetime.fromtimestamp(jwt.get_unverified_claims(token)["exp"], tz=timezone.utc)
    print(f"Valid token for subject {subject} (expires {expires.isoformat()})")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="feedback-auth",
        description="Operator tools for the feedback auth service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user --email alice@example.com --password 'correct horse'
  python main.py issue-token 3f0c9a4e-0f4e-4d1b-9d57-8f3c0a1b2c3d
  python main.py check-token eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9...
        """,
    )
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = subparsers.add_parser("create-user", help="Create an account")
    create.add_argument("--email", default=None, help="Account email")
    create.add_argument("--contact", default=None, help="Account phone contact")
    create.add_argument("--password", required=True, help="Initial password (min 8 characters)")

    issue = subparsers.add_parser("issue-token", help="Print a bearer token for an existing user")
    issue.add_argument("user_id", metavar="USER_ID", help="Account UUID")

    check = subparsers.add_parser("check-token", help="Verify a bearer token and print its subject")
    check.add_argument("token", metavar="TOKEN", help="Bearer token (without the 'Bearer ' prefix)")

    args = parser.parse_args(argv)

    if args.command == "create-user":
        if not args.email and not args.contact:
            parser.error("create-user needs --email or --contact")
        if len(args.password) < 8:
            parser.error("password must be at least 8 characters")
        return asyncio.run(_create_user(args.email, args.contact, args.password))
    if args.command == "issue-token":
        return asyncio.run(_issue_token(args.user_id))
    if args.command == "check-token":
        return _check_token(args.token)

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
