"""Bank account lifecycle and balance operations."""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional

from .database import Database
from .errors import (
    AccountNotFound,
    EmailTaken,
    InvalidCredentials,
    MinimumDepositNotMet,
    PasswordMismatch,
)
from .models import Account, BalanceInfo, TransferParty, TransferRecord
from .passwords import PasswordHasher

logger = logging.getLogger("bankapi.ledger")

MINIMUM_OPENING_DEPOSIT = 50_000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LedgerService:
    """Operations on bank accounts.

    Amounts are integers in currency minor units. Callers validate that they
    are positive; the ledger enforces existence and keeps every balance
    between zero and :data:`~bankapi.database.MAX_BALANCE`.
    """

    def __init__(
        self,
        database: Database,
        hasher: PasswordHasher,
        *,
        minimum_opening_deposit: int = MINIMUM_OPENING_DEPOSIT,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._database = database
        self._hasher = hasher
        self._minimum_opening_deposit = minimum_opening_deposit
        self._clock = clock or _utcnow

    @property
    def minimum_opening_deposit(self) -> int:
        return self._minimum_opening_deposit

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------
    def open_account(
        self,
        name: str,
        email: str,
        password: str,
        password_confirm: str,
        opening_deposit: int,
    ) -> Account:
        if password != password_confirm:
            raise PasswordMismatch()
        if self._database.get_account_by_email(email) is not None:
            raise EmailTaken(email.strip().lower())
        if opening_deposit < self._minimum_opening_deposit:
            raise MinimumDepositNotMet(self._minimum_opening_deposit, opening_deposit)

        account = self._database.create_account(
            name,
            email,
            self._hasher.hash(password),
            opening_deposit,
        )
        logger.info("Opened account %s (%s) with %d", account.id, account.account_number, opening_deposit)
        return account

    def list_accounts(self) -> List[Account]:
        return self._database.list_accounts()

    def get_account(self, account_id: str) -> Account:
        account = self._database.get_account(account_id)
        if account is None:
            raise AccountNotFound(account_id)
        return account

    def update_profile(self, account_id: str, *, name: str, email: str) -> Account:
        existing = self._database.get_account_by_email(email)
        if existing is not None and existing.id != account_id:
            raise EmailTaken(existing.email)
        account = self._database.update_account_profile(account_id, name=name, email=email)
        if account is None:
            raise AccountNotFound(account_id)
        return account

    def change_password(
        self,
        account_id: str,
        old_password: str,
        new_password: str,
        confirm_password: str,
    ) -> None:
        if new_password != confirm_password:
            raise PasswordMismatch()
        stored_hash = self._database.get_account_password_hash(account_id)
        if stored_hash is None:
            raise AccountNotFound(account_id)
        if not self._hasher.verify(old_password, stored_hash):
            raise InvalidCredentials("Wrong password")
        if not self._database.set_account_password(account_id, self._hasher.hash(new_password)):
            raise AccountNotFound(account_id)
        logger.info("Password changed for account %s", account_id)

    def delete_account(self, account_id: str) -> None:
        if not self._database.delete_account(account_id):
            raise AccountNotFound(account_id)
        logger.info("Deleted account %s", account_id)

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------
    def get_balance(self, account_id: str) -> BalanceInfo:
        account = self.get_account(account_id)
        return BalanceInfo(
            id=account.id,
            account_number=account.account_number,
            name=account.name,
            email=account.email,
            balance=account.balance,
            checked_at=self._clock(),
        )

    def withdraw(self, account_id: str, amount: int, *, timeout: Optional[float] = None) -> Account:
        account = self._database.withdraw(account_id, amount, timeout=timeout)
        logger.info("Withdrew %d from %s, balance now %d", amount, account_id, account.balance)
        return account

    def deposit(self, account_id: str, amount: int, *, timeout: Optional[float] = None) -> Account:
        account = self._database.deposit(account_id, amount, timeout=timeout)
        logger.info("Deposited %d to %s, balance now %d", amount, account_id, account.balance)
        return account

    def transfer(
        self,
        from_id: str,
        to_id: str,
        amount: int,
        description: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
    ) -> TransferRecord:
        """Debit ``from_id`` and credit ``to_id`` atomically.

        Fails with :class:`InsufficientFunds` when the source balance is below
        ``amount``, with :class:`BalanceLimitExceeded` when the credit would
        push ``to_id`` past the balance ceiling and with
        :class:`AccountNotFound` when either side is missing. Neither balance
        changes on failure.
        """

        source, destination = self._database.transfer(from_id, to_id, amount, timeout=timeout)
        record = TransferRecord(
            transaction_id=uuid.uuid4().hex,
            source=TransferParty(account_number=source.account_number, name=source.name),
            destination=TransferParty(account_number=destination.account_number, name=destination.name),
            amount=amount,
            created_at=self._clock(),
            description=description,
        )
        logger.info(
            "Transfer %s: %d from %s to %s",
            record.transaction_id,
            amount,
            from_id,
            to_id,
        )
        return record


__all__ = ["LedgerService", "MINIMUM_OPENING_DEPOSIT"]
