"""
Account Ledger Module

Per-account state (principal, assigned rate, last settlement time) and the
settlement algorithm that realizes accrued interest into principal.

Interest is linear: an account holding principal P at rate r, last settled at
t0, is worth P * (PRECISION + r * (t - t0)) / PRECISION at time t. Settlement
writes that projection back as the new principal and restarts the clock, which
is the only place where value is created with time.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional, Any

from .clock import AccrualClock
from .errors import InsufficientBalanceError
from .fixed_point import checked_add, checked_sub, project_balance, validate_amount
from .storage import StorageInterface, StorageRecord


@dataclass
class Account(StorageRecord):
    """
    Ledger account keyed by account identifier

    last_settled_at is None until the first settlement, so that timestamp 0
    stays a usable point in time.
    """
    principal: int = 0
    assigned_rate: int = 0  # 0 means never enrolled
    last_settled_at: Optional[int] = None

    @property
    def is_settled(self) -> bool:
        """Whether the account has been settled at least once"""
        return self.last_settled_at is not None

    @property
    def is_enrolled(self) -> bool:
        """Whether the account has ever been pinned to a rate"""
        return self.assigned_rate > 0

    def project(self, now: int) -> int:
        """Principal plus interest accrued since the last settlement"""
        elapsed = AccrualClock.elapsed(self.last_settled_at, now)
        return project_balance(self.principal, self.assigned_rate, elapsed)


class PrincipalStore(ABC):
    """
    Capability for storing and moving principal

    This is the conventional token-ledger surface the interest layer builds on:
    it knows nothing about time or rates.
    """

    @abstractmethod
    def principal_of(self, account_id: str) -> int:
        pass

    @abstractmethod
    def total_supply(self) -> int:
        pass

    @abstractmethod
    def credit(self, account_id: str, amount: int) -> int:
        """Create principal on an account; returns the new principal"""
        pass

    @abstractmethod
    def debit(self, account_id: str, amount: int) -> int:
        """Destroy principal on an account; returns the new principal"""
        pass

    @abstractmethod
    def move(self, source_id: str, destination_id: str, amount: int) -> None:
        """Move principal between two accounts without changing supply"""
        pass


class AccountLedger(PrincipalStore):
    """
    Owns every Account record and the total supply
    """

    SUPPLY_ID = "total"

    def __init__(self, storage: StorageInterface, table_name: str = "accounts"):
        self.storage = storage
        self.table_name = table_name
        self.supply_table = f"{table_name}_supply"

    # Account records

    def get_account(self, account_id: str) -> Account:
        """Load an account, or a blank unsaved one if it has never been touched"""
        data = self.storage.load(self.table_name, account_id)
        if data:
            return Account.from_dict(data)

        now = datetime.now(timezone.utc)
        return Account(id=account_id, created_at=now, updated_at=now)

    def has_account(self, account_id: str) -> bool:
        return self.storage.exists(self.table_name, account_id)

    def _save_account(self, account: Account) -> None:
        account.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.table_name, account.id, account.to_dict())

    def rate_of(self, account_id: str) -> int:
        return self.get_account(account_id).assigned_rate

    def last_settled_at(self, account_id: str) -> Optional[int]:
        return self.get_account(account_id).last_settled_at

    def assign_rate(self, account_id: str, rate: int) -> int:
        """Pin an account to a rate; returns the rate it had before"""
        account = self.get_account(account_id)
        previous = account.assigned_rate
        account.assigned_rate = rate
        self._save_account(account)
        return previous

    # Settlement

    def settle(self, account_id: str, now: int) -> int:
        """
        Realize accrued interest into principal.

        Steps:
        1. Project the principal forward from last_settled_at to now
           (zero elapsed time if the account was never settled).
        2. Credit the difference to principal and to total supply.
        3. Record now as the last settlement time, even when nothing accrued.

        Args:
            account_id: Account to settle
            now: Settlement time

        Returns:
            Amount of interest realized (0 for an empty account or a repeat
            settlement at the same time)

        Raises:
            NonMonotonicTimeError: If now precedes the last settlement
            ArithmeticOverflowError: If the projection exceeds MAX_AMOUNT
        """
        account = self.get_account(account_id)
        projected = account.project(now)
        realized = projected - account.principal

        if realized:
            account.principal = projected
            self._set_supply(checked_add(self.total_supply(), realized))

        account.last_settled_at = now
        self._save_account(account)
        return realized

    def balance_of(self, account_id: str, now: int) -> int:
        """Effective balance at now, without writing anything"""
        return self.get_account(account_id).project(now)

    # PrincipalStore

    def principal_of(self, account_id: str) -> int:
        return self.get_account(account_id).principal

    def total_supply(self) -> int:
        record = self.storage.load(self.supply_table, self.SUPPLY_ID)
        return record["amount"] if record else 0

    def _set_supply(self, amount: int) -> None:
        self.storage.save(self.supply_table, self.SUPPLY_ID, {"id": self.SUPPLY_ID, "amount": amount})

    def credit(self, account_id: str, amount: int) -> int:
        validate_amount(amount)
        account = self.get_account(account_id)
        account.principal = checked_add(account.principal, amount)
        self._set_supply(checked_add(self.total_supply(), amount))
        self._save_account(account)
        return account.principal

    def debit(self, account_id: str, amount: int) -> int:
        validate_amount(amount)
        account = self.get_account(account_id)
        if amount > account.principal:
            raise InsufficientBalanceError(account.principal, amount, account_id)
        account.principal = checked_sub(account.principal, amount)
        self._set_supply(checked_sub(self.total_supply(), amount))
        self._save_account(account)
        return account.principal

    def move(self, source_id: str, destination_id: str, amount: int) -> None:
        validate_amount(amount)
        source = self.get_account(source_id)
        if amount > source.principal:
            raise InsufficientBalanceError(source.principal, amount, source_id)
        if source_id == destination_id:
            return

        destination = self.get_account(destination_id)
        source.principal = checked_sub(source.principal, amount)
        destination.principal = checked_add(destination.principal, amount)
        self._save_account(source)
        self._save_account(destination)

    def snapshot(self, account_id: str, now: int) -> Dict[str, Any]:
        """Read-only view of an account for hosts and reports"""
        account = self.get_account(account_id)
        return {
            "account_id": account_id,
            "principal": account.principal,
            "effective_balance": account.project(now),
            "assigned_rate": account.assigned_rate,
            "last_settled_at": account.last_settled_at
        }
