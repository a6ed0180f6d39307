#!/usr/bin/env python3
"""
DataCatalog auth -- administrative command line.

Usage:
  python main.py create-user alice --email alice@example.org
  python main.py create-user root --email root@example.org --role admin
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080 --reload

create-user prompts for the password twice (never pass it on the command
line -- it would land in shell history and the process list) and goes
through the same Authority path as POST /api/users. This is how the first
admin is created on a headless install.

Environment variables (see core/config.py):
  SECRET_KEY     Required unless DEBUG=true.
  DATABASE_URL   Optional. Defaults to auth/datacatalog_auth.db.
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.authority import Authority
from auth.errors import AuthError
from auth.models import NewUser, Role
from auth.sessions import SessionStore
from auth.store import DEFAULT_DB_URL, UserStore
from core.config import get_settings


def _prompt_password() -> Optional[str]:
    """Ask for the password twice. Returns None if the entries differ or are empty."""
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Confirm password: ")
    if not first:
        print("  [!] Password must not be empty.")
        return None
    if first != second:
        print("  [!] Passwords do not match.")
        return None
    return first


def cmd_create_user(args: argparse.Namespace) -> int:
    password = _prompt_password()
    if password is None:
        return 1

    db_url = args.db_url or get_settings().database_url or DEFAULT_DB_URL
    users = UserStore(db_url=db_url)
    sessions = SessionStore(db_url=db_url)
    try:
        authority = Authority(users, sessions)
        created = authority.create_user(
            NewUser(
                username=args.username,
                password=password,
                email=args.email,
                display_name=args.display_name,
                organization=args.organization,
            ),
            role=Role(args.role),
        )
    except AuthError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        sessions.close()
        users.close()

    print(f"  Created user '{created.username}' (id={created.id}, role={created.role.value})")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="main.py",
        description="DataCatalog auth administration.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-user", help="Create a user account (prompts for the password).")
    create.add_argument("username")
    create.add_argument("--email", required=True)
    create.add_argument("--role", choices=[r.value for r in Role], default=Role.USER.value)
    create.add_argument("--display-name", default=None)
    create.add_argument("--organization", default=None)
    create.add_argument("--db-url", default=None, help="Override DATABASE_URL for this command.")
    create.set_defaults(func=cmd_create_user)

    serve = sub.add_parser("serve", help="Run the API with uvicorn.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true")
    serve.set_defaults(func=cmd_serve)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
