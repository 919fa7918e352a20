#!/usr/bin/env python3
"""
secure-user-auth -- management CLI.

Registration over HTTP only ever creates `user` accounts, so the first admin
has to come from somewhere else. This is that somewhere.

Usage:
  python main.py create-admin --email admin@example.com --name "Site Admin"
  python main.py create-admin --email admin@example.com --name Admin --password-stdin < pw.txt
  python main.py list-users --limit 20

Environment variables (see core/config.py):
  DATABASE_URL   SQLAlchemy URL of the identity store (default sqlite:///./userauth.db)
  BCRYPT_ROUNDS  bcrypt cost for the new password hash (default 12)
"""

import argparse
import getpass
import sys
from dataclasses import replace
from typing import Optional

from auth.clock import Clock, utc_now
from auth.errors import AuthError
from auth.events import SUCCESS, AuthEvent, log_auth_event
from auth.lifecycle import apply_credential_change
from auth.models import Identity, Role
from auth.passwords import MAX_PASSWORD_BYTES, CredentialHasher
from auth.store import IdentityStore, normalize_email
from core.config import get_settings
from core.logging_config import configure_logging

_MIN_PASSWORD_LENGTH = 8
_MAX_NAME_LENGTH = 50


def _read_password(from_stdin: bool) -> Optional[str]:
    """Read the new admin password without echoing it.

    Interactive mode asks twice. Returns None (after printing why) when the
    password is unusable.
    """
    if from_stdin:
        password = sys.stdin.readline().rstrip("\n")
    else:
        password = getpass.getpass("  Password: ")
        if password != getpass.getpass("  Repeat password: "):
            print("  [!] Passwords do not match.")
            return None
    if len(password) < _MIN_PASSWORD_LENGTH:
        print(f"  [!] Password must be at least {_MIN_PASSWORD_LENGTH} characters.")
        return None
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        print(f"  [!] Password must be at most {MAX_PASSWORD_BYTES} bytes.")
        return None
    return password


def create_admin(
    store: IdentityStore,
    hasher: CredentialHasher,
    name: str,
    email: str,
    password: str,
    clock: Clock = utc_now,
) -> Identity:
    """Insert an active admin identity and return it.

    Raises ConflictFailure when the email is taken.
    """
    now = clock()
    draft = Identity(email=normalize_email(email), name=name, hashed_password="", role=Role.admin, created_at=now)
    draft = apply_credential_change(draft, password, hasher, now, initial=True)
    admin = replace(draft, id=store.create(draft))
    log_auth_event(AuthEvent.user_created, SUCCESS, admin.email, actor="cli", user_id=admin.id)
    return admin


def _cmd_create_admin(args: argparse.Namespace, store: IdentityStore, settings) -> int:
    args.name = args.name.strip()
    if not 1 <= len(args.name) <= _MAX_NAME_LENGTH:
        print(f"  [!] Name must be 1-{_MAX_NAME_LENGTH} characters.")
        return 1
    password = _read_password(args.password_stdin)
    if password is None:
        return 1
    admin = create_admin(store, CredentialHasher(rounds=settings.bcrypt_rounds), args.name, args.email, password)
    print(f"  Admin created: id={admin.id} email={admin.email}")
    return 0


def _cmd_list_users(args: argparse.Namespace, store: IdentityStore, settings) -> int:
    users = store.list_users(offset=0, limit=args.limit)
    print(f"  {store.count_users()} user(s), {store.count_active_admins()} active admin(s)")
    for u in users:
        status = "active" if u.is_active else "inactive"
        print(f"  {u.id:>5}  {u.role.value:<6} {status:<9} {u.email}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="secure-user-auth",
        description="Management commands for the secure-user-auth identity store.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin --email admin@example.com --name "Site Admin"
  DATABASE_URL=sqlite:///./prod.db python main.py list-users
        """,
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        default=None,
        help="Override DATABASE_URL for this command",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-admin", help="Create an admin account")
    create.add_argument("--email", required=True, help="Email address (login name) of the new admin")
    create.add_argument("--name", required=True, help="Display name, 1-50 characters")
    create.add_argument(
        "--password-stdin",
        action="store_true",
        help="Read the password from the first line of stdin instead of prompting",
    )
    create.set_defaults(handler=_cmd_create_admin)

    listing = sub.add_parser("list-users", help="Print the newest users")
    listing.add_argument("--limit", type=int, default=50, help="How many users to show (default: 50)")
    listing.set_defaults(handler=_cmd_list_users)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "handler", None):
        parser.print_help()
        return 2

    settings = get_settings()
    configure_logging(settings)
    store = IdentityStore(db_url=args.database_url or settings.database_url)
    try:
        return args.handler(args, store, settings)
    except AuthError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
