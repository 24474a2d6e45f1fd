"""
Ledger Error Types

Every rejected operation raises a subclass of LedgerError. LedgerError is a
ValueError so callers that already treat rejected operations as ValueError
keep working, while the subclasses carry structured fields for the host.
"""

from typing import Optional


class LedgerError(ValueError):
    """Base exception for all ledger-related errors."""
    pass


class InvalidAmountError(LedgerError):
    """Raised when an amount is not a non-negative integer within bounds."""

    def __init__(self, amount, reason: str = "amount must be a non-negative integer"):
        self.amount = amount
        self.reason = reason
        super().__init__(f"Invalid amount {amount!r}: {reason}")


class InvalidRateError(LedgerError):
    """Raised when a rate is negative or not an integer."""

    def __init__(self, rate):
        self.rate = rate
        super().__init__(f"Invalid rate {rate!r}: rate must be a non-negative integer")


class PolicyViolationError(LedgerError):
    """Raised when a rate change moves the global rate in the forbidden direction."""

    def __init__(self, old: int, attempted: int, direction: Optional[str] = None):
        self.old = old
        self.attempted = attempted
        self.direction = direction
        message = f"Rate change from {old} to {attempted} violates the rate policy"
        if direction:
            message += f" ({direction})"
        super().__init__(message)


class InsufficientBalanceError(LedgerError):
    """Raised when a burn, transfer or debit exceeds the settled principal."""

    def __init__(self, have: int, requested: int, account_id: Optional[str] = None):
        self.have = have
        self.requested = requested
        self.account_id = account_id
        target = f" on account {account_id}" if account_id else ""
        super().__init__(f"Insufficient balance{target}: have {have}, requested {requested}")


class InsufficientAllowanceError(LedgerError):
    """Raised when a spender tries to move more than it was approved for."""

    def __init__(self, have: int, requested: int, owner: str, spender: str):
        self.have = have
        self.requested = requested
        self.owner = owner
        self.spender = spender
        super().__init__(
            f"Insufficient allowance for {spender} on {owner}: have {have}, requested {requested}"
        )


class ArithmeticOverflowError(LedgerError):
    """Raised when a checked operation exceeds the maximum representable amount."""

    def __init__(self, operation: str, left: int, right: int):
        self.operation = operation
        self.left = left
        self.right = right
        super().__init__(f"Arithmetic overflow in {operation}({left}, {right})")


class ArithmeticUnderflowError(LedgerError):
    """Raised when a checked subtraction would go below zero."""

    def __init__(self, operation: str, left: int, right: int):
        self.operation = operation
        self.left = left
        self.right = right
        super().__init__(f"Arithmetic underflow in {operation}({left}, {right})")


class NonMonotonicTimeError(LedgerError):
    """Raised when settlement is asked to run at a time before the last settlement."""

    def __init__(self, since: int, now: int):
        self.since = since
        self.now = now
        super().__init__(f"Time went backwards: last settled at {since}, now is {now}")


class CustodyError(LedgerError):
    """Raised by asset custody when external value cannot be collected or released."""

    def __init__(self, account_id: str, amount: int, reason: str):
        self.account_id = account_id
        self.amount = amount
        self.reason = reason
        super().__init__(f"Custody failure for {account_id} ({amount}): {reason}")


class RedeemFailedError(LedgerError):
    """Raised when a redemption could not release external value; the burn is rolled back."""

    def __init__(self, account_id: str, amount: int, reason: str = ""):
        self.account_id = account_id
        self.amount = amount
        self.reason = reason
        message = f"Redeem of {amount} for {account_id} failed"
        if reason:
            message += f": {reason}"
        super().__init__(message)
