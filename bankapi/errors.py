"""Domain errors raised by the banking services.

Each error carries a stable machine readable ``code`` and the HTTP status
the API layer responds with, so handlers never need to inspect messages.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class BankingError(Exception):
    """Base class for expected failures in the banking domain."""

    code = "BANKING_ERROR"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def extra(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        payload.update(self.extra())
        return payload


class RateLimitExceeded(BankingError):
    code = "RATE_LIMIT_EXCEEDED"
    status_code = 403

    def __init__(self, identifier: str, message: str, *, retry_after_seconds: Optional[int] = None) -> None:
        super().__init__(message)
        self.identifier = identifier
        self.retry_after_seconds = retry_after_seconds

    @property
    def permanent(self) -> bool:
        return self.retry_after_seconds is None

    def extra(self) -> Dict[str, Any]:
        return {
            "identifier": self.identifier,
            "retry_after_seconds": self.retry_after_seconds,
        }


class InvalidCredentials(BankingError):
    code = "INVALID_CREDENTIALS"
    status_code = 401

    def __init__(self, message: str = "Invalid email or password", *, attempts: int = 0, locked: bool = False) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.locked = locked

    def extra(self) -> Dict[str, Any]:
        return {"attempts": self.attempts, "locked": self.locked}


class AccountNotFound(BankingError):
    code = "ACCOUNT_NOT_FOUND"
    status_code = 404

    def __init__(self, account_id: str) -> None:
        super().__init__("Unknown account")
        self.account_id = account_id

    def extra(self) -> Dict[str, Any]:
        return {"account_id": self.account_id}


class UserNotFound(BankingError):
    code = "USER_NOT_FOUND"
    status_code = 404

    def __init__(self, user_id: str) -> None:
        super().__init__("Unknown user")
        self.user_id = user_id


class InsufficientFunds(BankingError):
    code = "INSUFFICIENT_FUNDS"
    status_code = 422

    def __init__(self, account_id: str, *, balance: int, requested: int) -> None:
        super().__init__("Insufficient balance for this transaction")
        self.account_id = account_id
        self.balance = balance
        self.requested = requested

    def extra(self) -> Dict[str, Any]:
        return {"balance": self.balance, "requested": self.requested}


class BalanceLimitExceeded(BankingError):
    code = "BALANCE_LIMIT_EXCEEDED"
    status_code = 422

    def __init__(self, account_id: Optional[str], *, balance: int, amount: int, limit: int) -> None:
        super().__init__(f"Balance must not exceed {limit}")
        self.account_id = account_id
        self.balance = balance
        self.amount = amount
        self.limit = limit

    def extra(self) -> Dict[str, Any]:
        return {"balance": self.balance, "amount": self.amount, "limit": self.limit}


class EmailTaken(BankingError):
    code = "EMAIL_ALREADY_TAKEN"
    status_code = 409

    def __init__(self, email: str) -> None:
        super().__init__("Email is already registered")
        self.email = email


class PasswordMismatch(BankingError):
    code = "PASSWORD_MISMATCH"
    status_code = 400

    def __init__(self) -> None:
        super().__init__("Password confirmation mismatched")


class MinimumDepositNotMet(BankingError):
    code = "MINIMUM_DEPOSIT_NOT_MET"
    status_code = 422

    def __init__(self, minimum: int, provided: int) -> None:
        super().__init__(f"Opening deposit must be greater than or equal to {minimum}")
        self.minimum = minimum
        self.provided = provided

    def extra(self) -> Dict[str, Any]:
        return {"minimum": self.minimum}


class StoreUnavailable(BankingError):
    code = "STORE_UNAVAILABLE"
    status_code = 503

    def __init__(self, message: str = "The account store is currently unavailable") -> None:
        super().__init__(message)


__all__ = [
    "AccountNotFound",
    "BalanceLimitExceeded",
    "BankingError",
    "EmailTaken",
    "InsufficientFunds",
    "InvalidCredentials",
    "MinimumDepositNotMet",
    "PasswordMismatch",
    "RateLimitExceeded",
    "StoreUnavailable",
    "UserNotFound",
]
