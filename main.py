"""Command-line interface for the banking API service."""

from __future__ import annotations
import argparse
import logging
import sys
from getpass import getpass
from pathlib import Path
from typing import Sequence

from bankapi.config import Settings, load_settings
from bankapi.database import Database
from bankapi.errors import BankingError
from bankapi.passwords import PasswordHasher
from bankapi.users import UserService

logger = logging.getLogger("bankapi.main")

_LOG_LEVELS = ("debug", "info", "warning", "error")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Bank API service utilities")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a YAML settings file (default: BANKAPI_CONFIG or built-in defaults)",
    )
    parser.add_argument(
        "--log-level",
        default="info",
        choices=_LOG_LEVELS,
        help="Logging verbosity (default: info)",
    )
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the database")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address for the API")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port for the API (default: 8000)")

    user_parser = subparsers.add_parser("create-user", help="Create a user that can sign in to the API")
    user_parser.add_argument("name", help="Display name for the user")
    user_parser.add_argument("email", help="Unique email address for login")

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db", "create-user"}

    # Global options come first; a missing subcommand means "serve".
    index = 0
    while index < len(args_list) and args_list[index] in ("--config", "--log-level"):
        index += 2
    remaining = args_list[index:]
    if not remaining:
        args_list = [*args_list, "serve"]
    elif remaining[0] not in known_commands and not any(flag in remaining for flag in ("-h", "--help")):
        args_list = [*args_list[:index], "serve", *remaining]

    return parser.parse_args(args_list)


def _initialise_database(settings: Settings) -> Database:
    database = Database(settings.database_path, timeout=settings.database_timeout)
    database.initialize()
    logger.info("Database initialised at %s", settings.database_path)
    return database


def _serve(*, settings: Settings, database: Database, host: str, port: int, log_level: str) -> None:
    from bankapi.api import create_app
    import uvicorn

    logger.info("Starting bank API on http://%s:%s", host, port)
    app = create_app(settings=settings, database=database)
    uvicorn.run(app, host=host, port=port, log_level=log_level)


def _prompt_for_password() -> str:
    for _ in range(3):
        password = getpass("Password: ")
        confirm = getpass("Confirm password: ")
        if password != confirm:
            print("Passwords do not match. Try again.", file=sys.stderr)
            continue
        if len(password) < 6:
            print("Password must be at least 6 characters long.", file=sys.stderr)
            continue
        return password
    raise SystemExit("Failed to set password after three attempts.")


def _create_user(settings: Settings, database: Database, name: str, email: str) -> int:
    password = _prompt_for_password()
    service = UserService(database, PasswordHasher(rounds=settings.password_rounds))
    try:
        user = service.create_user(name.strip(), email.strip().lower(), password, password)
    except BankingError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1
    print(f"Created user {user.id}: {user.name} <{user.email}>")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    settings = load_settings(Path(args.config).expanduser() if args.config else None)
    database = _initialise_database(settings)

    if args.command == "serve":
        _serve(settings=settings, database=database, host=args.host, port=args.port, log_level=args.log_level)
    elif args.command == "create-user":
        return _create_user(settings, database, args.name, args.email)
    elif args.command == "init-db":
        print("Database initialisation complete.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
