"""SQLite-backed persistence for users and bank accounts."""
from __future__ import annotations

import logging
import secrets
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from .errors import AccountNotFound, BalanceLimitExceeded, EmailTaken, InsufficientFunds, StoreUnavailable
from .models import Account, User

logger = logging.getLogger("bankapi.database")

DEFAULT_TIMEOUT = 5.0
_ACCOUNT_NUMBER_ATTEMPTS = 5
# Largest balance held exactly by SQLite INTEGER arithmetic and JSON clients.
MAX_BALANCE = 2**53 - 1


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "bank.sqlite3").resolve(strict=False)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _generate_id() -> str:
    return uuid.uuid4().hex


def _generate_account_number() -> str:
    return str(1_000_000_000 + secrets.randbelow(9_000_000_000))


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _violated_column(exc: sqlite3.IntegrityError) -> str:
    # "UNIQUE constraint failed: accounts.email"
    message = str(exc)
    if ":" not in message:
        return ""
    return message.rsplit(":", 1)[1].strip()


class Database:
    """Simple wrapper around SQLite for persisting users and accounts.

    Every public method opens its own connection. ``timeout`` bounds how long
    a call waits on a locked database before failing with
    :class:`StoreUnavailable`.
    """

    def __init__(self, path: Path, *, timeout: float = DEFAULT_TIMEOUT) -> None:
        _ensure_directory(path)
        self._path = path
        self._timeout = timeout

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self, timeout: Optional[float] = None) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self._path,
            timeout=self._timeout if timeout is None else timeout,
            check_same_thread=False,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _session(self, timeout: Optional[float] = None, *, write: bool = False) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside a transaction, committing on success.

        Write sessions take the database write lock up front so that reads
        made inside them cannot go stale before the writes land.
        """

        try:
            conn = self._connect(timeout)
        except sqlite3.Error as exc:
            logger.exception("Unable to open database at %s", self._path)
            raise StoreUnavailable() from exc

        try:
            conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.IntegrityError:
            conn.rollback()
            raise
        except sqlite3.Error as exc:
            if conn.in_transaction:
                conn.rollback()
            logger.exception("Database operation failed")
            raise StoreUnavailable() from exc
        except BaseException:
            if conn.in_transaction:
                conn.rollback()
            raise
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with self._session(write=True) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS accounts (
                    id TEXT PRIMARY KEY,
                    account_number TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    balance INTEGER NOT NULL CHECK (balance >= 0),
                    created_at TEXT NOT NULL
                )
                """
            )

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------
    def create_user(self, name: str, email: str, password_hash: str) -> User:
        created_at = _current_timestamp()
        user_id = _generate_id()
        normalized_email = _normalize_email(email)

        try:
            with self._session(write=True) as conn:
                conn.execute(
                    "INSERT INTO users (id, name, email, password_hash, created_at) VALUES (?, ?, ?, ?, ?)",
                    (user_id, name, normalized_email, password_hash, _serialize_datetime(created_at)),
                )
        except sqlite3.IntegrityError as exc:
            raise EmailTaken(normalized_email) from exc

        return User(id=user_id, name=name, email=normalized_email, created_at=created_at)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?",
                (_normalize_email(email),),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_user_credentials(self, email: str, *, timeout: Optional[float] = None) -> Optional[Tuple[User, str]]:
        with self._session(timeout) as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?",
                (_normalize_email(email),),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row), str(row["password_hash"])

    def get_user_password_hash(self, user_id: str) -> Optional[str]:
        with self._session() as conn:
            row = conn.execute("SELECT password_hash FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return str(row["password_hash"])

    def list_users(self) -> List[User]:
        with self._session() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY created_at, rowid").fetchall()
        return [self._row_to_user(row) for row in rows]

    def count_users(self, *, name: Optional[str] = None, email: Optional[str] = None) -> int:
        clauses: List[str] = []
        values: List[object] = []
        if name is not None:
            clauses.append("name = ?")
            values.append(name)
        if email is not None:
            clauses.append("email = ?")
            values.append(_normalize_email(email))
        query = "SELECT COUNT(*) FROM users"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        with self._session() as conn:
            return int(conn.execute(query, values).fetchone()[0])

    def update_user(self, user_id: str, *, name: str, email: str) -> Optional[User]:
        normalized_email = _normalize_email(email)
        try:
            with self._session(write=True) as conn:
                cursor = conn.execute(
                    "UPDATE users SET name = ?, email = ? WHERE id = ?",
                    (name, normalized_email, user_id),
                )
                if cursor.rowcount == 0:
                    return None
        except sqlite3.IntegrityError as exc:
            raise EmailTaken(normalized_email) from exc
        return self.get_user(user_id)

    def set_user_password(self, user_id: str, password_hash: str) -> bool:
        with self._session(write=True) as conn:
            cursor = conn.execute(
                "UPDATE users SET password_hash = ? WHERE id = ?",
                (password_hash, user_id),
            )
            return cursor.rowcount > 0

    def delete_user(self, user_id: str) -> bool:
        with self._session(write=True) as conn:
            cursor = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Account management
    # ------------------------------------------------------------------
    def create_account(self, name: str, email: str, password_hash: str, balance: int) -> Account:
        """Insert a new account with a freshly generated public account number."""

        if balance < 0:
            raise ValueError("Opening balance must not be negative")
        if balance > MAX_BALANCE:
            raise BalanceLimitExceeded(None, balance=0, amount=balance, limit=MAX_BALANCE)

        created_at = _current_timestamp()
        normalized_email = _normalize_email(email)

        for _ in range(_ACCOUNT_NUMBER_ATTEMPTS):
            account_id = _generate_id()
            account_number = _generate_account_number()
            try:
                with self._session(write=True) as conn:
                    conn.execute(
                        """
                        INSERT INTO accounts (id, account_number, name, email, password_hash, balance, created_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            account_id,
                            account_number,
                            name,
                            normalized_email,
                            password_hash,
                            balance,
                            _serialize_datetime(created_at),
                        ),
                    )
            except sqlite3.IntegrityError as exc:
                if _violated_column(exc) == "accounts.account_number":
                    logger.info("Account number %s collided, generating another", account_number)
                    continue
                raise EmailTaken(normalized_email) from exc

            return Account(
                id=account_id,
                account_number=account_number,
                name=name,
                email=normalized_email,
                balance=balance,
                created_at=created_at,
            )

        raise StoreUnavailable("Could not allocate a unique account number")

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM accounts WHERE id = ?", (account_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_account(row)

    def get_account_by_email(self, email: str) -> Optional[Account]:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM accounts WHERE email = ?",
                (_normalize_email(email),),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_account(row)

    def get_account_credentials(self, email: str, *, timeout: Optional[float] = None) -> Optional[Tuple[Account, str]]:
        with self._session(timeout) as conn:
            row = conn.execute(
                "SELECT * FROM accounts WHERE email = ?",
                (_normalize_email(email),),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_account(row), str(row["password_hash"])

    def get_account_password_hash(self, account_id: str) -> Optional[str]:
        with self._session() as conn:
            row = conn.execute("SELECT password_hash FROM accounts WHERE id = ?", (account_id,)).fetchone()
        if row is None:
            return None
        return str(row["password_hash"])

    def list_accounts(self) -> List[Account]:
        with self._session() as conn:
            rows = conn.execute("SELECT * FROM accounts ORDER BY created_at, rowid").fetchall()
        return [self._row_to_account(row) for row in rows]

    def update_account_profile(self, account_id: str, *, name: str, email: str) -> Optional[Account]:
        normalized_email = _normalize_email(email)
        try:
            with self._session(write=True) as conn:
                cursor = conn.execute(
                    "UPDATE accounts SET name = ?, email = ? WHERE id = ?",
                    (name, normalized_email, account_id),
                )
                if cursor.rowcount == 0:
                    return None
        except sqlite3.IntegrityError as exc:
            raise EmailTaken(normalized_email) from exc
        return self.get_account(account_id)

    def set_account_password(self, account_id: str, password_hash: str) -> bool:
        with self._session(write=True) as conn:
            cursor = conn.execute(
                "UPDATE accounts SET password_hash = ? WHERE id = ?",
                (password_hash, account_id),
            )
            return cursor.rowcount > 0

    def delete_account(self, account_id: str) -> bool:
        with self._session(write=True) as conn:
            cursor = conn.execute("DELETE FROM accounts WHERE id = ?", (account_id,))
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Balance mutations
    # ------------------------------------------------------------------
    def deposit(self, account_id: str, amount: int, *, timeout: Optional[float] = None) -> Account:
        with self._session(timeout, write=True) as conn:
            self._credit(conn, account_id, amount)
            row = self._fetch_account_row(conn, account_id)
        return self._row_to_account(row)

    def withdraw(self, account_id: str, amount: int, *, timeout: Optional[float] = None) -> Account:
        with self._session(timeout, write=True) as conn:
            self._debit(conn, account_id, amount)
            row = self._fetch_account_row(conn, account_id)
        return self._row_to_account(row)

    def transfer(
        self,
        from_id: str,
        to_id: str,
        amount: int,
        *,
        timeout: Optional[float] = None,
    ) -> Tuple[Account, Account]:
        """Move ``amount`` between two accounts in a single transaction."""

        with self._session(timeout, write=True) as conn:
            if self._fetch_account_row(conn, to_id) is None:
                raise AccountNotFound(to_id)
            self._debit(conn, from_id, amount)
            self._credit(conn, to_id, amount)
            source = self._fetch_account_row(conn, from_id)
            destination = self._fetch_account_row(conn, to_id)
        return self._row_to_account(source), self._row_to_account(destination)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _debit(self, conn: sqlite3.Connection, account_id: str, amount: int) -> None:
        # Amounts above MAX_BALANCE can never be covered and may not fit an INTEGER.
        if amount <= MAX_BALANCE:
            cursor = conn.execute(
                "UPDATE accounts SET balance = balance - ? WHERE id = ? AND balance >= ?",
                (amount, account_id, amount),
            )
            if cursor.rowcount > 0:
                return
        row = self._fetch_account_row(conn, account_id)
        if row is None:
            raise AccountNotFound(account_id)
        raise InsufficientFunds(account_id, balance=int(row["balance"]), requested=amount)

    def _credit(self, conn: sqlite3.Connection, account_id: str, amount: int) -> None:
        if amount <= MAX_BALANCE:
            cursor = conn.execute(
                "UPDATE accounts SET balance = balance + ? WHERE id = ? AND balance <= ? - ?",
                (amount, account_id, MAX_BALANCE, amount),
            )
            if cursor.rowcount > 0:
                return
        row = self._fetch_account_row(conn, account_id)
        if row is None:
            raise AccountNotFound(account_id)
        raise BalanceLimitExceeded(account_id, balance=int(row["balance"]), amount=amount, limit=MAX_BALANCE)

    @staticmethod
    def _fetch_account_row(conn: sqlite3.Connection, account_id: str) -> Optional[sqlite3.Row]:
        return conn.execute("SELECT * FROM accounts WHERE id = ?", (account_id,)).fetchone()

    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=str(row["id"]),
            name=str(row["name"]),
            email=str(row["email"]),
            created_at=_parse_datetime(str(row["created_at"])),
        )

    def _row_to_account(self, row: sqlite3.Row) -> Account:
        return Account(
            id=str(row["id"]),
            account_number=str(row["account_number"]),
            name=str(row["name"]),
            email=str(row["email"]),
            balance=int(row["balance"]),
            created_at=_parse_datetime(str(row["created_at"])),
        )


__all__ = ["DEFAULT_TIMEOUT", "Database", "resolve_database_path"]
