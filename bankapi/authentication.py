"""Credential checks gated by a login rate limiter."""
from __future__ import annotations

import logging
from typing import Callable, Optional, Tuple

from .database import Database
from .errors import InvalidCredentials
from .models import SessionInfo
from .passwords import PasswordHasher
from .rate_limit import LoginRateLimiter, normalize_identifier

logger = logging.getLogger("bankapi.authentication")

# Called as lookup(email, timeout); timeout bounds the store wait in seconds.
CredentialLookup = Callable[[str, Optional[float]], Optional[Tuple[SessionInfo, str]]]


def user_credentials(database: Database) -> CredentialLookup:
    """Resolve general users by email."""

    def lookup(email: str, timeout: Optional[float] = None) -> Optional[Tuple[SessionInfo, str]]:
        found = database.get_user_credentials(email, timeout=timeout)
        if found is None:
            return None
        user, password_hash = found
        return SessionInfo(email=user.email, name=user.name, id=user.id), password_hash

    return lookup


def account_credentials(database: Database) -> CredentialLookup:
    """Resolve bank accounts by email."""

    def lookup(email: str, timeout: Optional[float] = None) -> Optional[Tuple[SessionInfo, str]]:
        found = database.get_account_credentials(email, timeout=timeout)
        if found is None:
            return None
        account, password_hash = found
        session = SessionInfo(
            email=account.email,
            name=account.name,
            id=account.id,
            account_number=account.account_number,
        )
        return session, password_hash

    return lookup


class AuthenticationService:
    """Validate an email/password pair for one login surface.

    The limiter is consulted before the store is touched; a locked identifier
    is rejected even when the password is correct.
    """

    def __init__(
        self,
        lookup: CredentialLookup,
        hasher: PasswordHasher,
        limiter: LoginRateLimiter,
    ) -> None:
        self._lookup = lookup
        self._hasher = hasher
        self._limiter = limiter

    @property
    def limiter(self) -> LoginRateLimiter:
        return self._limiter

    def authenticate(self, email: str, password: str, *, timeout: Optional[float] = None) -> SessionInfo:
        identifier = normalize_identifier(email)
        self._limiter.check_allowed(identifier)

        found = self._lookup(identifier, timeout)
        stored_hash = found[1] if found is not None else self._hasher.decoy_hash
        password_ok = self._hasher.verify(password, stored_hash)

        if found is not None and password_ok:
            self._limiter.record_success(identifier)
            session = found[0]
            logger.info("Login succeeded for %s (%s)", session.id, self._limiter.policy.name)
            return session

        entry = self._limiter.record_failure(identifier)
        locked = self._limiter.is_locked(entry.attempts)
        logger.warning(
            "Failed %s login for %s, attempt %d%s",
            self._limiter.policy.name,
            identifier,
            entry.attempts,
            " (locked)" if locked else "",
        )
        raise InvalidCredentials(
            self._failure_message(identifier, entry.attempts, locked),
            attempts=entry.attempts,
            locked=locked,
        )

    def _failure_message(self, identifier: str, attempts: int, locked: bool) -> str:
        message = f"User {identifier} failed to login. Attempt = {attempts}."
        if not locked:
            return message
        if self._limiter.policy.permanent:
            return f"{message} Your account has been blocked"
        return f"{message} Limit reached"


__all__ = [
    "AuthenticationService",
    "CredentialLookup",
    "account_credentials",
    "user_credentials",
]
