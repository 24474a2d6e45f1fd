"""
Fixed-Point Arithmetic Module

Integer-only arithmetic for balances and rates. Rates are scaled by PRECISION
(1e18 == 1.0) and every stored quantity is bounded to the unsigned 256-bit
range. NEVER uses float for amounts or rates.
"""

from .errors import ArithmeticOverflowError, ArithmeticUnderflowError, InvalidAmountError

PRECISION = 10 ** 18  # Fixed-point scale of 1.0

# Upper bound for every amount, and the "use the full balance" sentinel
MAX_AMOUNT = 2 ** 256 - 1


def checked_add(left: int, right: int) -> int:
    """Add two amounts, raising ArithmeticOverflowError above MAX_AMOUNT"""
    result = left + right
    if result > MAX_AMOUNT:
        raise ArithmeticOverflowError("add", left, right)
    return result


def checked_sub(left: int, right: int) -> int:
    """Subtract two amounts, raising ArithmeticUnderflowError below zero"""
    if right > left:
        raise ArithmeticUnderflowError("sub", left, right)
    return left - right


def checked_mul(left: int, right: int) -> int:
    """Multiply two amounts, raising ArithmeticOverflowError above MAX_AMOUNT"""
    result = left * right
    if result > MAX_AMOUNT:
        raise ArithmeticOverflowError("mul", left, right)
    return result


def validate_amount(amount) -> int:
    """
    Validate an amount supplied by a caller.

    Args:
        amount: Candidate amount

    Returns:
        The amount, unchanged

    Raises:
        InvalidAmountError: If amount is not an int, is a bool, is negative
            or exceeds MAX_AMOUNT
    """
    # bool is an int subclass; True is not an amount
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmountError(amount, "amount must be an integer")
    if amount < 0:
        raise InvalidAmountError(amount, "amount must not be negative")
    if amount > MAX_AMOUNT:
        raise InvalidAmountError(amount, "amount exceeds the maximum representable value")
    return amount


def accrued_factor(rate: int, elapsed: int) -> int:
    """Linear growth factor PRECISION + rate * elapsed"""
    return checked_add(PRECISION, checked_mul(rate, elapsed))


def project_balance(principal: int, rate: int, elapsed: int) -> int:
    """
    Project principal forward with linear (non-compounding) interest.

    Division truncates toward zero, so the projection never over-credits.
    """
    if principal == 0 or rate == 0 or elapsed == 0:
        return principal
    return checked_mul(principal, accrued_factor(rate, elapsed)) // PRECISION
