#!/usr/bin/env python3
"""
SessionKeeper -- operator CLI for the credential and session store.

Usage:
  python main.py sweep
  python main.py revoke-user <USER-ID>
  python main.py deactivate <USER-ID>
  python main.py activate <USER-ID>
  python main.py create-user --email alice@example.com --user-name alice

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the auth database (default: ./sessionkeeper.db)
  SECRET_KEY    Access-token signing key (>= 32 chars). Not needed by sweep /
                revoke-user / activate / deactivate, but Settings validates it.
"""

import argparse
import asyncio
import getpass
import logging
import sys

from pydantic import ValidationError

from auth.errors import AuthError
from auth.models import RegisterRequest
from auth.service import AuthService
from auth.store import TokenStore, UserStore
from auth.sweeper import TokenSweeper
from core.config import Settings, get_settings


def _cmd_sweep(settings: Settings, args: argparse.Namespace) -> int:
    tokens = TokenStore(settings.database_url)
    try:
        sweeper = TokenSweeper(tokens, timeout_seconds=settings.sweep_timeout_seconds)
        removed = asyncio.run(sweeper.sweep_once())
    finally:
        tokens.close()
    if removed is None:
        print("  [!] Sweep failed; see log output.")
        return 1
    print(f"  Removed {removed} expired token(s).")
    return 0


def _cmd_revoke_user(settings: Settings, args: argparse.Namespace) -> int:
    users, tokens = UserStore(settings.database_url), TokenStore(settings.database_url)
    try:
        users.get_by_id(args.user_id)
        service = AuthService.from_settings(settings, users, tokens)
        removed = asyncio.run(service.revoke_all_sessions(args.user_id))
    finally:
        tokens.close()
        users.close()
    print(f"  Revoked {removed} refresh token(s) for {args.user_id}.")
    return 0


def _cmd_set_active(settings: Settings, args: argparse.Namespace) -> int:
    active = args.command == "activate"
    users, tokens = UserStore(settings.database_url), TokenStore(settings.database_url)
    try:
        users.set_active(args.user_id, active)
        if not active:
            # A deactivated account already fails refresh; dropping its tokens frees the rows now.
            tokens.delete_all_for_user(args.user_id)
    finally:
        tokens.close()
        users.close()
    print(f"  User {args.user_id} {'activated' if active else 'deactivated'}.")
    return 0


def _cmd_create_user(settings: Settings, args: argparse.Namespace) -> int:
    password = getpass.getpass("Password: ")
    confirm = getpass.getpass("Confirm password: ")
    users, tokens = UserStore(settings.database_url), TokenStore(settings.database_url)
    try:
        service = AuthService.from_settings(settings, users, tokens)
        profile = asyncio.run(
            service.register(
                RegisterRequest(
                    email=args.email,
                    user_name=args.user_name,
                    password=password,
                    confirm_password=confirm,
                    first_name=args.first_name,
                    last_name=args.last_name,
                )
            )
        )
    finally:
        tokens.close()
        users.close()
    print(f"  Created user {profile.email} (id={profile.id}).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sessionkeeper",
        description="Operator commands for the SessionKeeper credential store.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("sweep", help="Delete expired refresh and verification tokens now")

    revoke = sub.add_parser("revoke-user", help="Delete every refresh token of a user (account compromise)")
    revoke.add_argument("user_id", metavar="USER-ID")

    for name, text in (("activate", "Re-enable a user account"), ("deactivate", "Disable a user account")):
        cmd = sub.add_parser(name, help=text)
        cmd.add_argument("user_id", metavar="USER-ID")

    create = sub.add_parser("create-user", help="Register a user (password prompted)")
    create.add_argument("--email", required=True)
    create.add_argument("--user-name", required=True)
    create.add_argument("--first-name", default="")
    create.add_argument("--last-name", default="")
    return parser


_COMMANDS = {
    "sweep": _cmd_sweep,
    "revoke-user": _cmd_revoke_user,
    "activate": _cmd_set_active,
    "deactivate": _cmd_set_active,
    "create-user": _cmd_create_user,
}


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)-5s %(name)s %(message)s")
    args = build_parser().parse_args(argv)
    try:
        settings = get_settings()
    except ValidationError as exc:
        print(f"  [!] Invalid configuration: {exc.errors()[0].get('msg', exc)}")
        return 1
    try:
        return _COMMANDS[args.command](settings, args)
    except AuthError as exc:
        print(f"  [!] {exc.message}")
        if exc.detail.get("fields"):
            for field, problem in exc.detail["fields"].items():
                print(f"      {field}: {problem}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
