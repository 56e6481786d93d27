#!/usr/bin/env python3
"""
Secure Blog auth -- operator command line.

Self-registration can only create readers and authors. The first admin comes
from here; later admins can be promoted through the admin API.

Usage:
  python main.py bootstrap-admin
  python main.py bootstrap-admin --email ops@secureblog.com --username ops
  python main.py bootstrap-admin --dry-run
  python main.py list-users

Environment variables:
  DATABASE_URL     SQLAlchemy URL of the user store (default: sqlite:///secureblog_auth.db)
  ADMIN_USERNAME   Username for bootstrap-admin (default: admin)
  ADMIN_EMAIL      Email for bootstrap-admin (default: admin@secureblog.com)
  ADMIN_PASSWORD   Password for bootstrap-admin. Required when creating a new account.
"""

import argparse
import getpass
import sys

from auth.errors import DuplicateIdentity
from auth.models import Role
from auth.store import UserStore
from core.config import get_settings

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128


def bootstrap_admin(store: UserStore, username: str, email: str, password: str, dry_run: bool = False) -> str:
    """Create a verified admin, or promote the existing account with that email.

    Returns one of: "created", "promoted", "already_admin", "dry_run".
    Raises DuplicateIdentity if the username belongs to a different account.
    """
    existing = store.get_by_email(email)
    if existing is not None:
        if existing.role is Role.admin:
            print(f"  {existing.email} is already an admin (id: {existing.id}).")
            return "already_admin"
        if dry_run:
            print(f"  [dry run] Would promote {existing.email} (id: {existing.id}) to admin.")
            return "dry_run"
        store.set_role(existing.id, Role.admin)
        # An admin that cannot log in is no use; promotion also skips OTP verification.
        store.mark_verified(existing.id)
        print(f"  Promoted {existing.email} (id: {existing.id}) to admin.")
        return "promoted"

    if dry_run:
        print(f"  [dry run] Would create admin {username} <{email}>.")
        return "dry_run"

    user = store.create_credential(username, email, password, Role.admin, is_verified=True)
    print(f"  Created admin {user.username} <{user.email}> (id: {user.id}).")
    return "created"


def _resolve_password(args: argparse.Namespace, configured: str) -> str:
    if args.password_prompt:
        return getpass.getpass("Admin password: ")
    return configured


def _list_users(store: UserStore) -> None:
    users = store.list_users()
    if not users:
        print("  No users.")
        return
    print(f"  {'ID':>5}  {'ROLE':<7} {'VERIFIED':<9} {'USERNAME':<30} EMAIL")
    for u in users:
        print(f"  {u.id:>5}  {u.role.value:<7} {'yes' if u.is_verified else 'no':<9} {u.username:<30} {u.email}")


def main(argv: list[str] | None = None) -> int:
    settings = get_settings()

    parser = argparse.ArgumentParser(
        prog="secureblog-auth",
        description="Operator tasks for the Secure Blog identity store.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  ADMIN_PASSWORD='S3cure-Passphrase' python main.py bootstrap-admin
  python main.py bootstrap-admin --email ops@secureblog.com --username ops --password-prompt
  python main.py list-users
        """,
    )
    parser.add_argument(
        "--database-url",
        default=settings.database_url,
        metavar="URL",
        help="User store location (default: DATABASE_URL or %(default)s)",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    boot = sub.add_parser("bootstrap-admin", help="Create the first admin, or promote an existing account")
    boot.add_argument("--username", default=settings.admin_username, help="Username for a new admin account")
    boot.add_argument("--email", default=settings.admin_email, help="Email of the admin account")
    boot.add_argument(
        "--password-prompt",
        action="store_true",
        help="Read the password interactively instead of from ADMIN_PASSWORD",
    )
    boot.add_argument("--dry-run", action="store_true", help="Show what would be done without changing anything")

    sub.add_parser("list-users", help="Print every account with its role and verification state")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 1

    store = UserStore(args.database_url)
    try:
        if args.command == "list-users":
            _list_users(store)
            return 0

        password = _resolve_password(args, settings.admin_password)
        needs_password = store.get_by_email(args.email) is None and not args.dry_run
        if needs_password and not MIN_PASSWORD_LENGTH <= len(password) <= MAX_PASSWORD_LENGTH:
            print(
                f"  [!] Set ADMIN_PASSWORD (or use --password-prompt): "
                f"{MIN_PASSWORD_LENGTH}-{MAX_PASSWORD_LENGTH} characters required."
            )
            return 1
        try:
            bootstrap_admin(store, args.username, args.email, password, dry_run=args.dry_run)
        except DuplicateIdentity:
            print(f"  [!] Username '{args.username}' is taken by another account. Pass --username.")
            return 1
        return 0
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
