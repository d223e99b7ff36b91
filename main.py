#!/usr/bin/env python3
"""
splkit -- operator command line.

Usage:
  python main.py keygen
  python main.py encrypt "some text"
  python main.py decrypt "<base64>"
  python main.py init-db
  python main.py create-user admin admin@mail.com --role admin

Configuration comes from the environment / .env file (see core/config.py):
  VAULT_KEY, VAULT_IV   Vault key material, generated by `keygen`
  DATABASE_TYPE, ...    Database handler and connection options
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.store import UserStore
from auth.users import Users
from core.config import get_settings
from core.errors import SplError
from db.database import Database
from security.vault import Vault, vault_from_settings


def _keygen(args) -> int:
    material = Vault(layers=args.layers).config_data
    print("# Add these lines to your .env file")
    print(f"VAULT_KEY='{material['key']}'")
    print(f"VAULT_IV={material['iv']}")
    return 0


def _crypt(args) -> int:
    vault = vault_from_settings(get_settings())
    if args.command == "encrypt":
        print(vault.encrypt(args.text))
    else:
        print(vault.decrypt(args.text))
    return 0


def _init_db(args) -> int:
    settings = get_settings()
    db = Database.init(settings.database_options())
    UserStore.create_schema(db)
    print(f"Schema ready ({db.type}).")
    return 0


def _create_user(args) -> int:
    settings = get_settings()
    db = Database.init(settings.database_options())
    store = UserStore(bind_ip=settings.bind_ip)
    store.create_schema(db)

    password = args.password or getpass.getpass("Password: ")
    if not args.password and getpass.getpass("Repeat password: ") != password:
        print("  [!] Passwords do not match.")
        return 1

    users = Users(db, store, vault_from_settings(settings), settings)
    ok = users.user_add(
        {
            "username": args.username,
            "passwd": password,
            "email": args.email,
            "role": args.role,
            "active": 1,
        }
    )
    if not ok:
        print(f"  [!] Could not create user (errors: {users.get_errors()}): {db.error()}")
        return 1
    print(f"Created user {args.username} (id {db.insert_id()}, role {args.role}).")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="splkit",
        description="Vault, database and user administration for splkit.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p = sub.add_parser("keygen", help="Generate VAULT_KEY / VAULT_IV")
    p.add_argument("--layers", type=int, default=1, help="Encryption layers (default: 1)")
    p.set_defaults(func=_keygen)

    for name, helptext in (("encrypt", "Encrypt TEXT with the configured vault"), ("decrypt", "Decrypt TEXT")):
        p = sub.add_parser(name, help=helptext)
        p.add_argument("text", metavar="TEXT")
        p.set_defaults(func=_crypt)

    p = sub.add_parser("init-db", help="Create the users and auth_tokens tables")
    p.set_defaults(func=_init_db)

    p = sub.add_parser("create-user", help="Add an account (prompts for the password)")
    p.add_argument("username")
    p.add_argument("email")
    p.add_argument("--role", choices=["admin", "member"], default="member")
    p.add_argument("--password", help=argparse.SUPPRESS)
    p.set_defaults(func=_create_user)

    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 1

    try:
        return args.func(args)
    except SplError as exc:
        print(f"  [!] {exc}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
