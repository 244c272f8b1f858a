"""In-memory login attempt limiting keyed by login identifier."""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from .errors import RateLimitExceeded

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _format_timestamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S")


def normalize_identifier(identifier: str) -> str:
    return identifier.strip().lower()


@dataclass(frozen=True)
class RateLimitPolicy:
    """Attempt threshold and lockout window for one login surface.

    A ``lockout`` of ``None`` means a locked identifier stays blocked until a
    successful login is recorded for it or the process restarts.
    """

    name: str
    max_attempts: int
    lockout: Optional[timedelta] = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.lockout is not None and self.lockout <= timedelta(0):
            raise ValueError("lockout window must be positive")

    @property
    def permanent(self) -> bool:
        return self.lockout is None


GENERAL_LOGIN_POLICY = RateLimitPolicy("general", max_attempts=5, lockout=timedelta(minutes=30))
BANK_LOGIN_POLICY = RateLimitPolicy("bank", max_attempts=3, lockout=None)


class LimiterState(str, enum.Enum):
    CLEAR = "clear"
    ACCUMULATING = "accumulating"
    LOCKED = "locked"


@dataclass
class RateLimitEntry:
    attempts: int = 0
    last_attempt_at: Optional[datetime] = None


class LoginRateLimiter:
    """Count failed logins per identifier and lock identifiers out.

    Each instance owns its map exclusively. Services receive a limiter at
    construction time; nothing here is module level state.
    """

    def __init__(self, policy: RateLimitPolicy, *, clock: Clock | None = None) -> None:
        self._policy = policy
        self._clock: Clock = clock or _utcnow
        self._entries: Dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()

    @property
    def policy(self) -> RateLimitPolicy:
        return self._policy

    def check_allowed(self, identifier: str) -> None:
        """Raise :class:`RateLimitExceeded` if ``identifier`` is locked out.

        A lock whose window has elapsed is cleared as a side effect.
        """

        key = normalize_identifier(identifier)
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.attempts < self._policy.max_attempts:
                return

            if self._policy.lockout is None:
                raise RateLimitExceeded(
                    key,
                    f"[{_format_timestamp(now)}] User {key} has been blocked",
                )

            last = entry.last_attempt_at or now
            remaining = self._policy.lockout - (now - last)
            if remaining <= timedelta(0):
                self._entries.pop(key, None)
                return

            seconds = max(1, int(remaining.total_seconds()))
            minutes = -(-seconds // 60)
            raise RateLimitExceeded(
                key,
                f"[{_format_timestamp(now)}] User {key} login limit reached. "
                f"Please try again in {minutes} minute{'s' if minutes != 1 else ''}",
                retry_after_seconds=seconds,
            )

    def record_failure(self, identifier: str) -> RateLimitEntry:
        """Count a failed attempt and return a snapshot of the entry."""

        key = normalize_identifier(identifier)
        now = self._clock()
        with self._lock:
            entry = self._entries.setdefault(key, RateLimitEntry())
            entry.attempts += 1
            entry.last_attempt_at = now
            return RateLimitEntry(attempts=entry.attempts, last_attempt_at=entry.last_attempt_at)

    def record_success(self, identifier: str) -> None:
        key = normalize_identifier(identifier)
        with self._lock:
            self._entries.pop(key, None)

    def attempts(self, identifier: str) -> int:
        with self._lock:
            entry = self._entries.get(normalize_identifier(identifier))
            return entry.attempts if entry else 0

    def is_locked(self, attempts: int) -> bool:
        return attempts >= self._policy.max_attempts

    def state(self, identifier: str) -> LimiterState:
        key = normalize_identifier(identifier)
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.attempts == 0:
                return LimiterState.CLEAR
            if entry.attempts < self._policy.max_attempts:
                return LimiterState.ACCUMULATING
            if self._policy.lockout is not None and entry.last_attempt_at is not None:
                if now - entry.last_attempt_at >= self._policy.lockout:
                    return LimiterState.CLEAR
            return LimiterState.LOCKED

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()


__all__ = [
    "BANK_LOGIN_POLICY",
    "GENERAL_LOGIN_POLICY",
    "LimiterState",
    "LoginRateLimiter",
    "RateLimitEntry",
    "RateLimitPolicy",
    "normalize_identifier",
]
