"""Password hashing built on passlib."""
from __future__ import annotations

from passlib.context import CryptContext

DEFAULT_ROUNDS = 600_000


class PasswordHasher:
    """Hash and verify passwords with a configurable PBKDF2 cost factor."""

    def __init__(self, *, rounds: int = DEFAULT_ROUNDS) -> None:
        if rounds < 1000:
            raise ValueError("Password hashing rounds must be at least 1000")
        self._context = CryptContext(
            schemes=["pbkdf2_sha256"],
            deprecated="auto",
            pbkdf2_sha256__default_rounds=rounds,
        )
        # Compared against when the looked up identity does not exist, so a
        # miss costs the same as a wrong password.
        self._decoy_hash = self._context.hash("<RANDOM_PASSWORD_FILLER>")

    @property
    def decoy_hash(self) -> str:
        return self._decoy_hash

    def hash(self, password: str) -> str:
        if not password:
            raise ValueError("Password must not be empty")
        return self._context.hash(password)

    def verify(self, password: str, hashed: str | None) -> bool:
        try:
            return self._context.verify(password, hashed or self._decoy_hash)
        except (ValueError, TypeError):
            return False


__all__ = ["DEFAULT_ROUNDS", "PasswordHasher"]
