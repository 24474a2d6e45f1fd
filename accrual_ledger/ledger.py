"""
Interest-Accruing Ledger Module

Mint, burn and transfer with settlement semantics: every mutating operation
first settles the accounts it touches (folding accrued interest into
principal), then applies its change, all inside one storage transaction.
A failing operation rolls back everything it did, settlement included.

Rates:
- mint pins the account to the current global rate;
- a transfer into an empty account makes it inherit the sender's rate;
- the global rate itself only moves in the direction the policy allows.
"""

import json
from typing import Any, Dict, Optional

from .accounts import AccountLedger
from .audit import AuditTrail, AuditEventType
from .clock import AccrualClock
from .errors import InsufficientAllowanceError, LedgerError
from .events import DomainEvent, EventDispatcher, EventPayload
from .fixed_point import MAX_AMOUNT, checked_sub, validate_amount
from .logging_config import get_logger, log_action
from .policy import InterestPolicy, RateChange
from .storage import StorageInterface


class InterestAccruingLedger:
    """
    Interest-accruing token ledger

    Composes an AccountLedger (principal storage and settlement) with an
    InterestPolicy (global rate). Every operation accepts an explicit `now`;
    when it is omitted the injected clock supplies it.
    """

    def __init__(
        self,
        storage: StorageInterface,
        policy: InterestPolicy,
        audit_trail: AuditTrail,
        clock: Optional[AccrualClock] = None,
        accounts: Optional[AccountLedger] = None,
        event_dispatcher: Optional[EventDispatcher] = None,
        address: str = "accrual-ledger",
        repin_rate_on_mint: bool = True
    ):
        self.storage = storage
        self.policy = policy
        self.audit_trail = audit_trail
        self.clock = clock
        self.accounts = accounts or AccountLedger(storage)
        self.event_dispatcher = event_dispatcher
        self.address = address
        self.repin_rate_on_mint = repin_rate_on_mint
        self.allowances_table = "allowances"
        self.logger = get_logger("accrual_ledger.ledger")

        if policy.initialized:
            self.audit_trail.log_event(
                event_type=AuditEventType.POLICY_INITIALIZED,
                entity_type="policy",
                entity_id=self.address,
                metadata={
                    "rate": policy.current_rate(),
                    "direction": policy.direction.value
                }
            )

    # Plumbing

    def _now(self, now: Optional[int]) -> int:
        if now is not None:
            return now
        if self.clock is None:
            raise ValueError("No time supplied and no clock configured")
        return self.clock.now()

    def _emit(self, event_type: DomainEvent, entity_id: str, data: Dict[str, Any], message: str,
              entity_type: str = "account") -> None:
        """Log and publish a notification once the surrounding transaction commits"""
        def deliver():
            log_action(
                self.logger, "info", message,
                account_id=entity_id if entity_type == "account" else None,
                action=event_type.value,
                resource=f"ledger:{self.address}", extra=data
            )
            if self.event_dispatcher:
                self.event_dispatcher.publish(EventPayload(
                    event_type=event_type,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    data=data
                ))

        self.storage.on_commit(deliver)

    def _rejected(self, action: str, account_id: str, error: LedgerError) -> None:
        log_action(
            self.logger, "warning", f"{action} rejected: {error}",
            account_id=account_id, action=action,
            resource=f"ledger:{self.address}",
            extra={"error": type(error).__name__}
        )

    def _settle(self, account_id: str, now: int) -> int:
        realized = self.accounts.settle(account_id, now)
        if realized:
            self.audit_trail.log_event(
                event_type=AuditEventType.INTEREST_REALIZED,
                entity_type="account",
                entity_id=account_id,
                metadata={"realized": realized, "settled_at": now}
            )
            self._emit(
                DomainEvent.INTEREST_REALIZED, account_id,
                {"account_id": account_id, "amount": realized, "settled_at": now},
                "Interest realized"
            )
        return realized

    def _pin_rate(self, account_id: str, rate: int, reason: str) -> None:
        previous = self.accounts.assign_rate(account_id, rate)
        if previous == rate:
            return

        self.audit_trail.log_event(
            event_type=AuditEventType.ACCOUNT_ENROLLED if previous == 0 else AuditEventType.ACCOUNT_RATE_ASSIGNED,
            entity_type="account",
            entity_id=account_id,
            metadata={"previous_rate": previous, "rate": rate, "reason": reason}
        )

    # Mutations

    def mint(self, to: str, amount: int, now: Optional[int] = None) -> int:
        """
        Create principal on an account

        Settles the account, pins it to the current global rate and credits
        the amount. With repin_rate_on_mint disabled, the rate is only pinned
        when the account is not enrolled yet or holds no principal.

        Args:
            to: Receiving account
            amount: Amount to mint
            now: Operation time (defaults to the clock)

        Returns:
            Amount minted
        """
        try:
            validate_amount(amount)
            now = self._now(now)

            with self.storage.atomic():
                self._settle(to, now)

                account = self.accounts.get_account(to)
                if self.repin_rate_on_mint or not account.is_enrolled or account.principal == 0:
                    self._pin_rate(to, self.policy.current_rate(), reason="mint")

                principal = self.accounts.credit(to, amount)

                self.audit_trail.log_event(
                    event_type=AuditEventType.TOKENS_MINTED,
                    entity_type="account",
                    entity_id=to,
                    metadata={"amount": amount, "principal": principal, "at": now}
                )
                self._emit(
                    DomainEvent.MINTED, to,
                    {"account_id": to, "amount": amount, "rate": self.accounts.rate_of(to)},
                    "Tokens minted"
                )
        except LedgerError as e:
            self._rejected("mint", to, e)
            raise

        return amount

    def burn(self, from_account: str, amount: int, now: Optional[int] = None) -> int:
        """
        Destroy principal on an account

        Settles first; MAX_AMOUNT is then resolved to the settled principal,
        which equals the effective balance at this moment.

        Returns:
            Amount burned (the resolved amount for MAX_AMOUNT)

        Raises:
            InsufficientBalanceError: If amount exceeds the settled principal
        """
        try:
            validate_amount(amount)
            now = self._now(now)

            with self.storage.atomic():
                self._settle(from_account, now)

                if amount == MAX_AMOUNT:
                    amount = self.accounts.principal_of(from_account)

                principal = self.accounts.debit(from_account, amount)

                self.audit_trail.log_event(
                    event_type=AuditEventType.TOKENS_BURNED,
                    entity_type="account",
                    entity_id=from_account,
                    metadata={"amount": amount, "principal": principal, "at": now}
                )
                self._emit(
                    DomainEvent.BURNED, from_account,
                    {"account_id": from_account, "amount": amount},
                    "Tokens burned"
                )
        except LedgerError as e:
            self._rejected("burn", from_account, e)
            raise

        return amount

    def transfer(self, sender: str, recipient: str, amount: int, now: Optional[int] = None) -> int:
        """
        Move principal between accounts

        Both accounts are settled first. An empty recipient inherits the
        sender's rate.

        Returns:
            Amount moved (the resolved amount for MAX_AMOUNT)

        Raises:
            InsufficientBalanceError: If the sender's settled principal is too small
        """
        try:
            validate_amount(amount)
            now = self._now(now)

            with self.storage.atomic():
                amount = self._transfer(sender, recipient, amount, now)
        except LedgerError as e:
            self._rejected("transfer", sender, e)
            raise

        return amount

    def transfer_from(
        self,
        spender: str,
        sender: str,
        recipient: str,
        amount: int,
        now: Optional[int] = None
    ) -> int:
        """
        Move principal on behalf of sender, consuming spender's allowance

        Raises:
            InsufficientAllowanceError: If the allowance is smaller than the resolved amount
            InsufficientBalanceError: If the sender's settled principal is too small
        """
        try:
            validate_amount(amount)
            now = self._now(now)

            with self.storage.atomic():
                amount = self._transfer(sender, recipient, amount, now, spender=spender)
        except LedgerError as e:
            self._rejected("transfer_from", sender, e)
            raise

        return amount

    def _transfer(
        self,
        sender: str,
        recipient: str,
        amount: int,
        now: int,
        spender: Optional[str] = None
    ) -> int:
        self._settle(sender, now)
        self._settle(recipient, now)

        if amount == MAX_AMOUNT:
            amount = self.accounts.principal_of(sender)

        if spender is not None:
            self._spend_allowance(sender, spender, amount)

        # Settled, so principal is the effective balance
        if self.accounts.principal_of(recipient) == 0:
            self._pin_rate(recipient, self.accounts.rate_of(sender), reason="transfer")

        self.accounts.move(sender, recipient, amount)

        metadata = {"from": sender, "to": recipient, "amount": amount, "at": now}
        if spender is not None:
            metadata["spender"] = spender
        self.audit_trail.log_event(
            event_type=AuditEventType.TOKENS_TRANSFERRED,
            entity_type="account",
            entity_id=sender,
            metadata=metadata
        )
        self._emit(
            DomainEvent.TRANSFERRED, sender,
            {"from_account_id": sender, "to_account_id": recipient, "amount": amount},
            "Tokens transferred"
        )
        return amount

    def settle(self, account_id: str, now: Optional[int] = None) -> int:
        """Realize accrued interest for one account; returns the amount realized"""
        now = self._now(now)
        with self.storage.atomic():
            return self._settle(account_id, now)

    # Allowances

    def _allowance_id(self, owner: str, spender: str) -> str:
        return json.dumps([owner, spender])

    def allowance(self, owner: str, spender: str) -> int:
        record = self.storage.load(self.allowances_table, self._allowance_id(owner, spender))
        return record["amount"] if record else 0

    def approve(self, owner: str, spender: str, amount: int) -> None:
        """Allow spender to move up to amount of owner's balance; MAX_AMOUNT never runs down"""
        validate_amount(amount)
        with self.storage.atomic():
            self.storage.save(self.allowances_table, self._allowance_id(owner, spender), {
                "owner": owner,
                "spender": spender,
                "amount": amount
            })
            self.audit_trail.log_event(
                event_type=AuditEventType.ALLOWANCE_APPROVED,
                entity_type="account",
                entity_id=owner,
                metadata={"spender": spender, "amount": amount}
            )
            self._emit(
                DomainEvent.APPROVED, owner,
                {"owner": owner, "spender": spender, "amount": amount},
                "Allowance approved"
            )

    def _spend_allowance(self, owner: str, spender: str, amount: int) -> None:
        current = self.allowance(owner, spender)
        if current == MAX_AMOUNT:
            return
        if amount > current:
            raise InsufficientAllowanceError(current, amount, owner, spender)
        self.storage.save(self.allowances_table, self._allowance_id(owner, spender), {
            "owner": owner,
            "spender": spender,
            "amount": checked_sub(current, amount)
        })

    # Policy

    def set_rate(self, new_rate: int, actor: Optional[str] = None) -> RateChange:
        """
        Change the global rate (administrative)

        Existing accounts keep their pinned rate; only later pins use the new one.

        Raises:
            PolicyViolationError: If the change moves against the policy direction
        """
        try:
            with self.storage.atomic():
                change = self.policy.set_rate(new_rate)
                self.audit_trail.log_event(
                    event_type=AuditEventType.GLOBAL_RATE_CHANGED,
                    entity_type="policy",
                    entity_id=self.address,
                    metadata={"old_rate": change.old_rate, "new_rate": change.new_rate},
                    user_id=actor
                )

                self._emit(
                    DomainEvent.RATE_CHANGED, self.address,
                    {"old_rate": change.old_rate, "new_rate": change.new_rate, "actor": actor},
                    "Global rate changed", entity_type="policy"
                )
        except LedgerError as e:
            self._rejected("set_rate", actor or self.address, e)
            raise

        return change

    # Queries

    def principal_balance_of(self, account_id: str) -> int:
        """Settled principal, without interest projection"""
        return self.accounts.principal_of(account_id)

    def effective_balance_of(self, account_id: str, now: Optional[int] = None) -> int:
        """Principal plus interest accrued since the last settlement"""
        return self.accounts.balance_of(account_id, self._now(now))

    def user_rate(self, account_id: str) -> int:
        return self.accounts.rate_of(account_id)

    def global_rate(self) -> int:
        return self.policy.current_rate()

    def last_settled_at(self, account_id: str) -> Optional[int]:
        return self.accounts.last_settled_at(account_id)

    def total_supply(self) -> int:
        """Sum of all settled principal"""
        return self.accounts.total_supply()

    def account_snapshot(self, account_id: str, now: Optional[int] = None) -> Dict[str, Any]:
        return self.accounts.snapshot(account_id, self._now(now))
