"""
Test suite for the account ledger

Tests settlement, linear accrual, idempotence and the principal store
operations that the interest layer composes with.
"""

import pytest

from accrual_ledger.storage import InMemoryStorage
from accrual_ledger.accounts import AccountLedger, Account, PrincipalStore
from accrual_ledger.errors import InsufficientBalanceError, InvalidAmountError, NonMonotonicTimeError
from accrual_ledger.fixed_point import PRECISION


RATE = 5 * 10 ** 13  # 0.005% per second


@pytest.fixture
def accounts():
    return AccountLedger(InMemoryStorage())


class TestAccount:
    """Test Account record behaviour"""

    def test_blank_account(self, accounts):
        account = accounts.get_account("ACC001")
        assert account.principal == 0
        assert account.assigned_rate == 0
        assert account.last_settled_at is None
        assert not account.is_settled
        assert not account.is_enrolled
        assert not accounts.has_account("ACC001")

    def test_round_trip(self, accounts):
        accounts.credit("ACC001", 500)
        accounts.assign_rate("ACC001", RATE)
        accounts.settle("ACC001", 7)

        account = accounts.get_account("ACC001")
        restored = Account.from_dict(account.to_dict())
        assert restored.principal == 500
        assert restored.assigned_rate == RATE
        assert restored.last_settled_at == 7

    def test_is_principal_store(self, accounts):
        assert isinstance(accounts, PrincipalStore)


class TestSettlement:
    """Test settlement of accrued interest"""

    def test_first_settlement_realizes_nothing(self, accounts):
        accounts.credit("ACC001", 1000)
        accounts.assign_rate("ACC001", RATE)

        assert accounts.settle("ACC001", 1_000_000) == 0
        assert accounts.principal_of("ACC001") == 1000
        assert accounts.last_settled_at("ACC001") == 1_000_000

    def test_linear_accrual(self, accounts):
        accounts.credit("ACC001", 1000)
        accounts.assign_rate("ACC001", RATE)
        accounts.settle("ACC001", 0)

        assert accounts.balance_of("ACC001", 100) == 1005
        assert accounts.settle("ACC001", 100) == 5
        assert accounts.principal_of("ACC001") == 1005
        assert accounts.last_settled_at("ACC001") == 100
        assert accounts.total_supply() == 1005

    def test_settlement_is_idempotent_at_same_time(self, accounts):
        accounts.credit("ACC001", 1000)
        accounts.assign_rate("ACC001", RATE)
        accounts.settle("ACC001", 0)

        assert accounts.settle("ACC001", 100) == 5
        assert accounts.settle("ACC001", 100) == 0
        assert accounts.principal_of("ACC001") == 1005

    def test_settlement_compounds_across_settlements(self, accounts):
        """Settling realizes interest, which then accrues itself"""
        accounts.credit("ACC001", 10 ** 18)
        accounts.assign_rate("ACC001", RATE)
        accounts.settle("ACC001", 0)

        accounts.settle("ACC001", 100)
        first = accounts.principal_of("ACC001")
        assert first == 10 ** 18 * (PRECISION + RATE * 100) // PRECISION

        accounts.settle("ACC001", 200)
        assert accounts.principal_of("ACC001") == first * (PRECISION + RATE * 100) // PRECISION

    def test_empty_account_settles_to_zero(self, accounts):
        assert accounts.settle("ACC001", 50) == 0
        assert accounts.has_account("ACC001")
        assert accounts.last_settled_at("ACC001") == 50

    def test_backwards_time_rejected(self, accounts):
        accounts.settle("ACC001", 100)
        with pytest.raises(NonMonotonicTimeError):
            accounts.settle("ACC001", 99)

    def test_snapshot(self, accounts):
        accounts.credit("ACC001", 1000)
        accounts.assign_rate("ACC001", RATE)
        accounts.settle("ACC001", 0)

        snapshot = accounts.snapshot("ACC001", 100)
        assert snapshot == {
            "account_id": "ACC001",
            "principal": 1000,
            "effective_balance": 1005,
            "assigned_rate": RATE,
            "last_settled_at": 0
        }


class TestPrincipalStore:
    """Test credit, debit and move"""

    def test_credit_and_debit_track_supply(self, accounts):
        accounts.credit("A", 700)
        accounts.credit("B", 300)
        assert accounts.total_supply() == 1000

        assert accounts.debit("A", 200) == 500
        assert accounts.total_supply() == 800

    def test_debit_more_than_principal(self, accounts):
        accounts.credit("A", 100)
        with pytest.raises(InsufficientBalanceError) as exc_info:
            accounts.debit("A", 101)
        assert exc_info.value.have == 100
        assert exc_info.value.requested == 101
        assert accounts.principal_of("A") == 100

    def test_move_conserves_supply(self, accounts):
        accounts.credit("A", 100)
        accounts.move("A", "B", 60)

        assert accounts.principal_of("A") == 40
        assert accounts.principal_of("B") == 60
        assert accounts.total_supply() == 100

    def test_move_to_self(self, accounts):
        accounts.credit("A", 100)
        accounts.move("A", "A", 100)
        assert accounts.principal_of("A") == 100

    def test_move_insufficient(self, accounts):
        accounts.credit("A", 10)
        with pytest.raises(InsufficientBalanceError):
            accounts.move("A", "B", 11)
        with pytest.raises(InsufficientBalanceError):
            accounts.move("A", "A", 11)

    def test_invalid_amount(self, accounts):
        with pytest.raises(InvalidAmountError):
            accounts.credit("A", -1)
