"""Domain models shared by the store, the services and the API layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Generic, List, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class User:
    """A general (non-banking) user that can sign in to the service."""

    id: str
    name: str
    email: str
    created_at: datetime


@dataclass(frozen=True)
class Account:
    """A bank account: identity plus balance in currency minor units."""

    id: str
    account_number: str
    name: str
    email: str
    balance: int
    created_at: datetime


@dataclass(frozen=True)
class SessionInfo:
    """What a successful login hands back to the caller."""

    email: str
    name: str
    id: str
    account_number: str | None = None


@dataclass(frozen=True)
class BalanceInfo:
    id: str
    account_number: str
    name: str
    email: str
    balance: int
    checked_at: datetime


@dataclass(frozen=True)
class TransferParty:
    account_number: str
    name: str

    def describe(self) -> str:
        return f"ID : [{self.account_number}], Name : {self.name}"


@dataclass(frozen=True)
class TransferRecord:
    """Receipt for a completed transfer. Generated per request, never stored."""

    transaction_id: str
    source: TransferParty
    destination: TransferParty
    amount: int
    created_at: datetime
    description: str | None = None


@dataclass(frozen=True)
class Page(Generic[T]):
    page_number: int
    page_size: int
    count: int
    data: List[T] = field(default_factory=list)

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return -(-self.count // self.page_size)

    @property
    def has_previous_page(self) -> bool:
        return self.page_number > 1

    @property
    def has_next_page(self) -> bool:
        return self.page_number < self.total_pages


__all__ = [
    "Account",
    "BalanceInfo",
    "Page",
    "SessionInfo",
    "TransferParty",
    "TransferRecord",
    "User",
]
