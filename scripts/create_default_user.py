"""Seed the default administrator account used to obtain the first API token."""

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from bankapi.config import load_settings
from bankapi.database import Database
from bankapi.errors import BankingError
from bankapi.models import User
from bankapi.passwords import PasswordHasher
from bankapi.users import UserService

logger = logging.getLogger("bankapi.scripts.default_user")

DEFAULT_NAME = "Admin"
DEFAULT_EMAIL = "admins@example.com"
DEFAULT_PASSWORD = "123456"


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create the default administrator user")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a YAML settings file (defaults to BANKAPI_CONFIG or built-in defaults)",
    )
    return parser.parse_args()


def create_default_user(database: Database, hasher: PasswordHasher) -> User:
    """Create the default administrator, refusing if it already exists."""

    if database.count_users(name=DEFAULT_NAME, email=DEFAULT_EMAIL) > 0:
        raise ValueError(f"User {DEFAULT_EMAIL} already exists")

    service = UserService(database, hasher)
    return service.create_user(DEFAULT_NAME, DEFAULT_EMAIL, DEFAULT_PASSWORD, DEFAULT_PASSWORD)


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
    args = parse_args()
    settings = load_settings(Path(args.config).expanduser() if args.config else None)

    database = Database(settings.database_path, timeout=settings.database_timeout)
    database.initialize()

    logger.info("Creating default users")
    try:
        user = create_default_user(database, PasswordHasher(rounds=settings.password_rounds))
    except (ValueError, BankingError) as exc:
        logger.error("%s", exc)
        return 1

    print(f"Created user {user.id}: {user.name} <{user.email}>")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
