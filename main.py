#!/usr/bin/env python3
"""
CropKeeper -- administration CLI.

Self-registration only ever creates GROWER accounts, so the first ADMIN has
to be made out-of-band. This script talks to the identity store directly.

Usage:
  python main.py create-admin ana@example.com "Ana Grower"
  python main.py set-role ana@example.com ADMIN
  python main.py set-role ana@example.com GROWER

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the identity database (default: ./cropkeeper.db)
  SECRET_KEY    Required unless DEBUG=true
"""

import argparse
import getpass
import sys

from auth.models import Identity, Role
from auth.store import IdentityStore
from auth.tokens import hash_password
from core.config import get_settings


def _create_admin(store: IdentityStore, email: str, name: str) -> int:
    if store.email_in_use(email):
        print(f"  [!] An account for {email} already exists. Use set-role instead.")
        return 1
    password = getpass.getpass("  Password: ")
    if len(password) < 8:
        print("  [!] Password must be at least 8 characters.")
        return 1
    if len(password.encode("utf-8")) > 72:
        print("  [!] Password must be at most 72 bytes.")
        return 1
    if password != getpass.getpass("  Confirm password: "):
        print("  [!] Passwords do not match.")
        return 1
    identity = store.create(Identity(email=email, name=name, hashed_password=hash_password(password), role=Role.ADMIN))
    print(f"  Created ADMIN {identity.email} (id={identity.id})")
    return 0


def _set_role(store: IdentityStore, email: str, role: Role) -> int:
    identity = store.find_by_email(email)
    if identity is None:
        print(f"  [!] No active account for {email}.")
        return 1
    if identity.role is Role.ADMIN and role is not Role.ADMIN and store.count_admins() <= 1:
        print("  [!] Refusing to demote the last ADMIN.")
        return 1
    store.update(identity.id, role=role)
    print(f"  {identity.email}: {identity.role.value} -> {role.value}")
    print("  The new role takes effect on the user's next login or token refresh.")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="cropkeeper",
        description="CropKeeper identity administration.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-admin", help="Create an ADMIN account (prompts for the password).")
    create.add_argument("email")
    create.add_argument("name")

    set_role = sub.add_parser("set-role", help="Change the role of an existing account.")
    set_role.add_argument("email")
    set_role.add_argument("role", type=str.upper, choices=[r.value for r in Role])

    args = parser.parse_args()
    store = IdentityStore(get_settings().database_url)
    try:
        if args.command == "create-admin":
            code = _create_admin(store, args.email, args.name)
        else:
            code = _set_role(store, args.email, Role(args.role))
    finally:
        store.close()
    sys.exit(code)


if __name__ == "__main__":
    main()
