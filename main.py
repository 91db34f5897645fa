#!/usr/bin/env python3
"""
RackGuard -- operator utilities.

The web app itself runs under uvicorn (uvicorn asgi:app). This CLI covers the
one-off chores around it: minting credentials for the .env file and trimming
the session table.

Usage:
  python main.py hash-password              # prompts twice, prints bcrypt hash
  echo 's3cret' | python main.py hash-password --stdin
  python main.py generate-app-key
  python main.py generate-api-key
  python main.py purge-sessions             # SESSION_BACKEND=sql only
  python main.py check-config

Environment variables are read through core.config exactly as the server
reads them, so check-config reports what the server would see.
"""

import argparse
import getpass
import secrets
import sys
from typing import Optional

from auth.remember import RememberTokenCodec
from auth.tokens import generate_api_key, hash_password
from core.config import get_settings
from session.store import create_session_store


def _read_password(from_stdin: bool) -> Optional[str]:
    """Return the new password, or None after printing why it was refused."""
    if from_stdin:
        password = sys.stdin.readline().rstrip("\n")
    else:
        password = getpass.getpass("New password: ")
        if password != getpass.getpass("Repeat password: "):
            print("  [!] Passwords do not match.", file=sys.stderr)
            return None
    if len(password) < 8:
        print("  [!] Password must be at least 8 characters.", file=sys.stderr)
        return None
    return password


def cmd_hash_password(args: argparse.Namespace) -> int:
    password = _read_password(args.stdin)
    if password is None:
        return 1
    print(hash_password(password))
    return 0


def cmd_generate_app_key(args: argparse.Namespace) -> int:
    print(secrets.token_hex(32))
    return 0


def cmd_generate_api_key(args: argparse.Namespace) -> int:
    print(generate_api_key())
    return 0


def cmd_purge_sessions(args: argparse.Namespace) -> int:
    settings = get_settings()
    if settings.session_backend != "sql":
        print("  [!] SESSION_BACKEND is 'memory'; sessions live in the server process.", file=sys.stderr)
        return 1
    store = create_session_store(settings)
    try:
        removed = store.purge_expired()
    finally:
        store.close()
    print(f"  Removed {removed} expired session(s).")
    return 0


def cmd_check_config(args: argparse.Namespace) -> int:
    """Print a credential-free summary of the effective configuration."""
    settings = get_settings()
    remember = RememberTokenCodec(settings.app_key).enabled
    print("\nRackGuard configuration")
    print("-" * 40)
    print(f"  debug             {settings.debug}")
    print(f"  operator          {settings.auth_username}")
    print(f"  password login    {'enabled' if settings.auth_password_hash else 'DISABLED (no AUTH_PASSWORD_HASH)'}")
    print(f"  remember-me       {'enabled' if remember else 'DISABLED (no APP_KEY)'}")
    print(f"  api keys          {len(settings.api_key_list)}")
    print(f"  session backend   {settings.session_backend}")
    print(f"  session lifetime  {settings.session_lifetime} min")
    print(f"  secure cookies    {settings.cookie_secure}")
    print(f"  allowed hosts     {', '.join(settings.allowed_host_list)}\n")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rackguard",
        description="RackGuard operator utilities.",
        epilog=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    hp = sub.add_parser("hash-password", help="Print a bcrypt hash for AUTH_PASSWORD_HASH.")
    hp.add_argument("--stdin", action="store_true", help="Read the password from stdin instead of prompting.")
    hp.set_defaults(func=cmd_hash_password)

    sub.add_parser("generate-app-key", help="Print a random 64-character APP_KEY.").set_defaults(
        func=cmd_generate_app_key
    )
    sub.add_parser("generate-api-key", help="Print a new entry for API_KEYS.").set_defaults(func=cmd_generate_api_key)
    sub.add_parser("purge-sessions", help="Delete expired rows from the SQL session table.").set_defaults(
        func=cmd_purge_sessions
    )
    sub.add_parser("check-config", help="Summarize the effective configuration.").set_defaults(func=cmd_check_config)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 2
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
