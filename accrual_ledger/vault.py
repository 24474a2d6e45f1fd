"""
Escrow Vault Module

Wraps deposits and redemptions of an external asset. Deposits are taken into
custody and minted 1:1 on the ledger; redemptions burn on the ledger and then
release the same amount from custody. A redemption whose release fails is
rolled back in full, so tokens are never burned without a matching release.
"""

from abc import ABC, abstractmethod
from typing import Optional

from .audit import AuditEventType
from .errors import CustodyError, RedeemFailedError
from .events import DomainEvent, EventPayload
from .fixed_point import checked_add, validate_amount
from .ledger import InterestAccruingLedger
from .logging_config import get_logger, log_action
from .storage import StorageInterface


class AssetCustody(ABC):
    """Holder of the external asset backing the ledger"""

    @abstractmethod
    def collect(self, account_id: str, amount: int) -> None:
        """Take external value from account_id into custody"""
        pass

    @abstractmethod
    def release(self, account_id: str, amount: int) -> None:
        """
        Send external value from custody to account_id

        Raises:
            CustodyError: If the value cannot be released
        """
        pass

    @abstractmethod
    def reserves(self) -> int:
        """External value currently held"""
        pass


class InMemoryCustody(AssetCustody):
    """
    Custody that books reserves in ledger storage

    Reserves live in the same store as the ledger, so a rolled-back
    redemption also restores them.
    """

    RECORD_ID = "reserves"

    def __init__(self, storage: StorageInterface, table_name: str = "custody"):
        self.storage = storage
        self.table_name = table_name

    def reserves(self) -> int:
        record = self.storage.load(self.table_name, self.RECORD_ID)
        return record["amount"] if record else 0

    def _set_reserves(self, amount: int) -> None:
        self.storage.save(self.table_name, self.RECORD_ID, {"id": self.RECORD_ID, "amount": amount})

    def collect(self, account_id: str, amount: int) -> None:
        self._set_reserves(checked_add(self.reserves(), amount))

    def release(self, account_id: str, amount: int) -> None:
        available = self.reserves()
        if amount > available:
            raise CustodyError(account_id, amount, f"reserves of {available} cannot cover release")
        self._set_reserves(available - amount)


class EscrowVault:
    """
    Deposit/redeem boundary in front of an InterestAccruingLedger
    """

    def __init__(self, ledger: InterestAccruingLedger, custody: AssetCustody):
        self.ledger = ledger
        self.custody = custody
        self.storage = ledger.storage
        self.audit_trail = ledger.audit_trail
        self.logger = get_logger("accrual_ledger.vault")

    def rebase_token_address(self) -> str:
        """Identity of the ledger this vault mints and burns on"""
        return self.ledger.address

    def reserves(self) -> int:
        return self.custody.reserves()

    def _notify(self, event_type: DomainEvent, account_id: str, amount: int, message: str) -> None:
        def deliver():
            log_action(
                self.logger, "info", message,
                account_id=account_id, action=event_type.value,
                resource=f"vault:{self.ledger.address}",
                extra={"amount": amount}
            )
            if self.ledger.event_dispatcher:
                self.ledger.event_dispatcher.publish(EventPayload(
                    event_type=event_type,
                    entity_type="vault",
                    entity_id=account_id,
                    data={"account_id": account_id, "amount": amount}
                ))

        self.storage.on_commit(deliver)

    def deposit(self, caller: str, amount: int, now: Optional[int] = None) -> int:
        """
        Take amount of external value into custody and mint it to caller

        Returns:
            Amount minted
        """
        validate_amount(amount)
        with self.storage.atomic():
            self.custody.collect(caller, amount)
            minted = self.ledger.mint(caller, amount, now)

            self.audit_trail.log_event(
                event_type=AuditEventType.VAULT_DEPOSIT,
                entity_type="vault",
                entity_id=caller,
                metadata={"amount": minted},
                user_id=caller
            )
            self._notify(DomainEvent.DEPOSITED, caller, minted, "Vault deposit")

        return minted

    def redeem(self, caller: str, amount: int, now: Optional[int] = None) -> int:
        """
        Burn amount from caller and release the same external value

        MAX_AMOUNT redeems the caller's full effective balance.

        Returns:
            Amount redeemed

        Raises:
            InsufficientBalanceError: If caller holds less than amount
            RedeemFailedError: If custody could not release the value; the
                burn is rolled back
        """
        validate_amount(amount)
        try:
            with self.storage.atomic():
                burned = self.ledger.burn(caller, amount, now)
                try:
                    self.custody.release(caller, burned)
                except CustodyError as e:
                    raise RedeemFailedError(caller, burned, e.reason) from e

                self.audit_trail.log_event(
                    event_type=AuditEventType.VAULT_REDEEM,
                    entity_type="vault",
                    entity_id=caller,
                    metadata={"amount": burned},
                    user_id=caller
                )
                self._notify(DomainEvent.REDEEMED, caller, burned, "Vault redeem")
        except RedeemFailedError as e:
            log_action(
                self.logger, "error", f"Redeem failed and was rolled back: {e}",
                account_id=caller, action="redeem",
                resource=f"vault:{self.ledger.address}",
                extra={"amount": e.amount, "reason": e.reason}
            )
            raise

        return burned

    def fund_rewards(self, funder: str, amount: int) -> int:
        """
        Accept external value without minting

        Interest is minted out of thin air on the ledger; these reserves are
        what redemptions of that interest are paid from.
        """
        validate_amount(amount)
        with self.storage.atomic():
            self.custody.collect(funder, amount)
            self.audit_trail.log_event(
                event_type=AuditEventType.VAULT_REWARDS_FUNDED,
                entity_type="vault",
                entity_id=funder,
                metadata={"amount": amount},
                user_id=funder
            )
            self._notify(DomainEvent.REWARDS_FUNDED, funder, amount, "Vault rewards funded")

        return amount
