#!/usr/bin/env python3
"""
Amlak -- account administration from the command line.

Self-registration only ever creates "user" accounts, so the first admin has
to be created here.

Usage:
  python main.py create-admin --username admin --name "Site Admin" --phone 09120000000
  python main.py create-admin --username admin --name Admin --phone 09120000000 --password s3cret!
  python main.py list-users

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the database (default: sqlite amlak.db next to this file)
  SECRET_KEY    Not needed by the CLI itself, but read by the shared settings.
                Set DEBUG=true to run without one locally.
"""

import argparse
import getpass
import logging
import re
import sys
from typing import Optional

from api.models import PHONE_PATTERN, USERNAME_PATTERN
from auth.models import Role, User
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings

logger = logging.getLogger("amlak.cli")

_MIN_PASSWORD = 6


def _read_password(given: Optional[str]) -> Optional[str]:
    """Use --password if given, otherwise prompt twice without echo."""
    if given:
        return given
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Repeat password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        return None
    return first


def create_admin(store: UserStore, args: argparse.Namespace) -> int:
    if not re.fullmatch(USERNAME_PATTERN, args.username) or not 3 <= len(args.username) <= 30:
        print("  [!] Username must be 3-30 characters: letters, digits and underscore.")
        return 1
    if not re.fullmatch(PHONE_PATTERN, args.phone):
        print("  [!] Phone must look like 09XXXXXXXXX.")
        return 1
    if store.get_by_username(args.username) is not None:
        print(f"  [!] Username '{args.username}' already exists.")
        return 1
    if store.get_by_phone(args.phone) is not None:
        print(f"  [!] Phone '{args.phone}' is already registered.")
        return 1

    password = _read_password(args.password)
    if password is None:
        return 1
    if len(password) < _MIN_PASSWORD or len(password.encode("utf-8")) > 72:
        print(f"  [!] Password must be at least {_MIN_PASSWORD} characters and at most 72 bytes.")
        return 1

    uid = store.create_user(
        User(
            username=args.username,
            name=args.name,
            phone=args.phone,
            email=args.email,
            hashed_password=hash_password(password),
            role=Role.admin,
        )
    )
    logger.info("Created admin account id=%s", uid)
    print(f"  Admin '{args.username}' created (id {uid}).")
    return 0


def list_users(store: UserStore) -> int:
    users = store.list_users()
    if not users:
        print("  No users yet.")
        return 0
    print(f"  {'ID':>4}  {'USERNAME':<30} {'PHONE':<12} {'ROLE':<6} STATE")
    for u in users:
        if u.is_banned:
            state = "banned"
        elif not u.is_active:
            state = "inactive"
        else:
            state = "active"
        print(f"  {u.id:>4}  {u.username:<30} {u.phone:<12} {u.role.value:<6} {state}")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="amlak",
        description="Account administration for the Amlak API.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin --username admin --name "Site Admin" --phone 09120000000
  python main.py list-users
  DATABASE_URL=sqlite:////var/lib/amlak/amlak.db python main.py list-users
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    admin = sub.add_parser("create-admin", help="Create an admin account")
    admin.add_argument("--username", required=True, help="Login name (3-30 chars, letters/digits/_)")
    admin.add_argument("--name", required=True, help="Display name")
    admin.add_argument("--phone", required=True, help="Mobile number, 09XXXXXXXXX")
    admin.add_argument("--email", default=None, help="Optional e-mail address")
    admin.add_argument(
        "--password",
        default=None,
        help="Password (prompted without echo when omitted; avoid on shared machines)",
    )

    sub.add_parser("list-users", help="List every account")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 0

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)-5s %(name)s %(message)s")

    store = UserStore(get_settings().database_url)
    try:
        if args.command == "create-admin":
            return create_admin(store, args)
        return list_users(store)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
