"""
Accrual Ledger

An interest-accruing balance ledger: every account carries a principal and a
locked-in accrual rate, its effective balance grows linearly with time, and
accrued interest is folded into principal whenever the account is touched.
An escrow vault mints and burns ledger entries 1:1 against asset custody.
"""

__version__ = "1.0.0"
