"""
Test suite for the interest-accruing ledger

Tests mint, burn, transfer and transfer_from with settlement, rate pinning
and inheritance, the maximum sentinel, rollback on failure, and the audit and
notification side effects of each operation.
"""

import pytest

from accrual_ledger.storage import InMemoryStorage
from accrual_ledger.audit import AuditTrail, AuditEventType
from accrual_ledger.clock import ManualClock
from accrual_ledger.events import DomainEvent, EventDispatcher, EventRecorder
from accrual_ledger.policy import InterestPolicy, RateDirection
from accrual_ledger.ledger import InterestAccruingLedger
from accrual_ledger.fixed_point import MAX_AMOUNT, PRECISION
from accrual_ledger.errors import (
    ArithmeticOverflowError, InsufficientAllowanceError, InsufficientBalanceError,
    InvalidAmountError, LedgerError, PolicyViolationError
)


RATE = 5 * 10 ** 10
FAST_RATE = 5 * 10 ** 13


def build_ledger(rate=RATE, direction=RateDirection.DECREASE_ONLY, repin_rate_on_mint=True):
    storage = InMemoryStorage()
    audit_trail = AuditTrail(storage)
    dispatcher = EventDispatcher()
    recorder = EventRecorder(dispatcher)
    ledger = InterestAccruingLedger(
        storage,
        InterestPolicy(storage, rate, direction=direction),
        audit_trail,
        clock=ManualClock(),
        event_dispatcher=dispatcher,
        repin_rate_on_mint=repin_rate_on_mint
    )
    return ledger, recorder


@pytest.fixture
def setup():
    return build_ledger()


@pytest.fixture
def fast_setup():
    return build_ledger(rate=FAST_RATE)


def state_of(ledger, account_id):
    return (
        ledger.principal_balance_of(account_id),
        ledger.user_rate(account_id),
        ledger.last_settled_at(account_id)
    )


class TestMint:
    """Test minting"""

    def test_scenario_mint_then_accrue(self, setup):
        """Mint 1000 at t=0 with rate 5e10, then read and settle at t=100"""
        ledger, _ = setup

        assert ledger.mint("A", 1000, now=0) == 1000
        assert ledger.principal_balance_of("A") == 1000
        assert ledger.user_rate("A") == RATE
        assert ledger.last_settled_at("A") == 0

        expected = 1000 * (PRECISION + RATE * 100) // PRECISION
        assert ledger.effective_balance_of("A", now=100) == expected

        ledger.settle("A", now=100)
        assert ledger.principal_balance_of("A") == expected
        assert ledger.last_settled_at("A") == 100

    def test_scenario_with_visible_interest(self, fast_setup):
        ledger, recorder = fast_setup

        ledger.mint("A", 1000, now=0)
        assert ledger.effective_balance_of("A", now=100) == 1005
        assert ledger.settle("A", now=100) == 5
        assert ledger.principal_balance_of("A") == 1005
        assert ledger.total_supply() == 1005

        realized = recorder.of_type(DomainEvent.INTEREST_REALIZED)
        assert len(realized) == 1
        assert realized[0].data["amount"] == 5

    def test_mint_uses_clock_when_now_omitted(self, fast_setup):
        ledger, _ = fast_setup
        ledger.clock.set(40)
        ledger.mint("A", 1000)
        assert ledger.last_settled_at("A") == 40

        ledger.clock.advance(100)
        assert ledger.effective_balance_of("A") == 1005

    def test_mint_settles_before_crediting(self, fast_setup):
        ledger, _ = fast_setup
        ledger.mint("A", 1000, now=0)
        ledger.mint("A", 1000, now=100)

        # 5 of interest realized on the first 1000 before the second mint
        assert ledger.principal_balance_of("A") == 2005
        assert ledger.effective_balance_of("A", now=200) == 2005 * (PRECISION + FAST_RATE * 100) // PRECISION

    def test_mint_repins_rate(self, setup):
        ledger, _ = setup
        ledger.mint("A", 1000, now=0)
        ledger.set_rate(RATE // 2)
        ledger.mint("A", 1, now=10)
        assert ledger.user_rate("A") == RATE // 2

    def test_mint_without_repin_keeps_enrolled_rate(self):
        ledger, _ = build_ledger(repin_rate_on_mint=False)
        ledger.mint("A", 1000, now=0)
        ledger.set_rate(RATE // 2)

        ledger.mint("A", 1, now=10)
        assert ledger.user_rate("A") == RATE

        ledger.burn("A", MAX_AMOUNT, now=20)
        ledger.mint("A", 1, now=30)
        assert ledger.user_rate("A") == RATE // 2

    def test_mint_records_audit_and_event(self, setup):
        ledger, recorder = setup
        ledger.mint("A", 1000, now=0)

        types = [e.event_type for e in ledger.audit_trail.get_events_for_entity("account", "A")]
        assert types == [AuditEventType.ACCOUNT_ENROLLED, AuditEventType.TOKENS_MINTED]

        minted = recorder.of_type(DomainEvent.MINTED)
        assert len(minted) == 1
        assert minted[0].data == {"account_id": "A", "amount": 1000, "rate": RATE}

    def test_mint_overflow_rolls_back(self, setup):
        ledger, recorder = setup
        ledger.mint("A", MAX_AMOUNT, now=0)
        recorder.clear()

        with pytest.raises(ArithmeticOverflowError):
            ledger.mint("B", 1, now=0)

        assert ledger.principal_balance_of("B") == 0
        assert ledger.user_rate("B") == 0
        assert ledger.total_supply() == MAX_AMOUNT
        assert recorder.events == []

    def test_invalid_amount(self, setup):
        ledger, _ = setup
        with pytest.raises(InvalidAmountError):
            ledger.mint("A", -5, now=0)

    def test_missing_time_without_clock(self):
        storage = InMemoryStorage()
        ledger = InterestAccruingLedger(storage, InterestPolicy(storage, RATE), AuditTrail(storage))
        with pytest.raises(ValueError):
            ledger.mint("A", 1)


class TestBurn:
    """Test burning"""

    def test_burn_partial(self, setup):
        ledger, recorder = setup
        ledger.mint("A", 1000, now=0)
        assert ledger.burn("A", 400, now=0) == 400
        assert ledger.principal_balance_of("A") == 600
        assert ledger.total_supply() == 600
        assert recorder.of_type(DomainEvent.BURNED)[0].data == {"account_id": "A", "amount": 400}

    def test_burn_max_after_time_burns_interest_too(self, fast_setup):
        ledger, _ = fast_setup
        ledger.mint("A", 1000, now=0)

        effective = ledger.effective_balance_of("A", now=100)
        assert ledger.burn("A", MAX_AMOUNT, now=100) == effective == 1005
        assert ledger.principal_balance_of("A") == 0
        assert ledger.total_supply() == 0

    def test_burn_more_than_balance_leaves_state_unchanged(self, fast_setup):
        ledger, recorder = fast_setup
        ledger.mint("A", 1000, now=0)
        recorder.clear()
        before = state_of(ledger, "A")

        with pytest.raises(InsufficientBalanceError) as exc_info:
            ledger.burn("A", 2000, now=100)

        assert exc_info.value.have == 1005
        assert exc_info.value.requested == 2000
        assert state_of(ledger, "A") == before
        assert ledger.total_supply() == 1000
        assert recorder.events == []


class TestTransfer:
    """Test transfers between accounts"""

    def test_full_transfer_to_empty_account_inherits_rate(self, setup):
        ledger, recorder = setup
        ledger.mint("A", 1000, now=0)
        ledger.set_rate(RATE // 4)

        assert ledger.transfer("A", "B", MAX_AMOUNT, now=0) == 1000
        assert ledger.principal_balance_of("A") == 0
        assert ledger.principal_balance_of("B") == 1000
        assert ledger.user_rate("B") == RATE

        moved = recorder.of_type(DomainEvent.TRANSFERRED)[0]
        assert moved.data == {"from_account_id": "A", "to_account_id": "B", "amount": 1000}

    def test_transfer_max_after_time_moves_interest_too(self, fast_setup):
        ledger, _ = fast_setup
        ledger.mint("A", 1000, now=0)

        assert ledger.effective_balance_of("A", now=100) == 1005
        assert ledger.transfer("A", "B", MAX_AMOUNT, now=100) == 1005
        assert ledger.principal_balance_of("A") == 0
        assert ledger.principal_balance_of("B") == 1005
        assert ledger.user_rate("B") == FAST_RATE
        assert ledger.total_supply() == 1005

    def test_funded_recipient_keeps_its_rate(self, setup):
        ledger, _ = setup
        ledger.mint("A", 1000, now=0)
        ledger.set_rate(RATE // 4)
        ledger.mint("B", 10, now=0)

        ledger.transfer("A", "B", 500, now=0)
        assert ledger.user_rate("B") == RATE // 4

    def test_transfer_settles_both_sides(self, fast_setup):
        ledger, _ = fast_setup
        ledger.mint("A", 1000, now=0)
        ledger.mint("B", 2000, now=0)

        ledger.transfer("A", "B", 5, now=100)
        assert ledger.principal_balance_of("A") == 1000
        assert ledger.principal_balance_of("B") == 2015
        assert ledger.last_settled_at("A") == 100
        assert ledger.last_settled_at("B") == 100

    def test_transfer_conserves_settled_principal(self, fast_setup):
        ledger, _ = fast_setup
        ledger.mint("A", 10 ** 6, now=0)
        ledger.mint("B", 3 * 10 ** 6, now=0)
        ledger.settle("A", now=50)
        ledger.settle("B", now=50)
        total_before = ledger.principal_balance_of("A") + ledger.principal_balance_of("B")
        supply_before = ledger.total_supply()

        ledger.transfer("A", "B", 12345, now=50)

        assert ledger.principal_balance_of("A") + ledger.principal_balance_of("B") == total_before
        assert ledger.total_supply() == supply_before

    def test_transfer_insufficient_rolls_back_settlement(self, fast_setup):
        ledger, recorder = fast_setup
        ledger.mint("A", 1000, now=0)
        recorder.clear()
        before_a = state_of(ledger, "A")
        before_b = state_of(ledger, "B")

        with pytest.raises(InsufficientBalanceError):
            ledger.transfer("A", "B", 5000, now=100)

        assert state_of(ledger, "A") == before_a
        assert state_of(ledger, "B") == before_b
        assert ledger.total_supply() == 1000
        assert recorder.events == []

    def test_transfer_to_self(self, setup):
        ledger, _ = setup
        ledger.mint("A", 1000, now=0)
        assert ledger.transfer("A", "A", 400, now=0) == 400
        assert ledger.principal_balance_of("A") == 1000


class TestTransferFrom:
    """Test allowance-based transfers"""

    def test_transfer_from_spends_allowance(self, setup):
        ledger, recorder = setup
        ledger.mint("owner", 1000, now=0)
        ledger.approve("owner", "spender", 300)
        assert recorder.of_type(DomainEvent.APPROVED)[0].data["amount"] == 300

        ledger.transfer_from("spender", "owner", "shop", 200, now=0)
        assert ledger.allowance("owner", "spender") == 100
        assert ledger.principal_balance_of("shop") == 200

    def test_transfer_from_beyond_allowance(self, setup):
        ledger, _ = setup
        ledger.mint("owner", 1000, now=0)
        ledger.approve("owner", "spender", 100)

        with pytest.raises(InsufficientAllowanceError) as exc_info:
            ledger.transfer_from("spender", "owner", "shop", 101, now=0)

        assert exc_info.value.have == 100
        assert ledger.allowance("owner", "spender") == 100
        assert ledger.principal_balance_of("owner") == 1000

    def test_unlimited_allowance_is_not_decremented(self, setup):
        ledger, _ = setup
        ledger.mint("owner", 1000, now=0)
        ledger.approve("owner", "spender", MAX_AMOUNT)

        ledger.transfer_from("spender", "owner", "shop", MAX_AMOUNT, now=0)
        assert ledger.allowance("owner", "spender") == MAX_AMOUNT
        assert ledger.principal_balance_of("shop") == 1000

    def test_no_allowance(self, setup):
        ledger, _ = setup
        ledger.mint("owner", 1000, now=0)
        with pytest.raises(InsufficientAllowanceError):
            ledger.transfer_from("stranger", "owner", "stranger", 1, now=0)


class TestRatePolicy:
    """Test global rate changes through the ledger"""

    def test_set_rate_records_actor(self, setup):
        ledger, recorder = setup
        change = ledger.set_rate(RATE - 1, actor="treasury")

        assert change.old_rate == RATE
        assert ledger.global_rate() == RATE - 1

        event = recorder.of_type(DomainEvent.RATE_CHANGED)[0]
        assert event.entity_type == "policy"
        assert event.data == {"old_rate": RATE, "new_rate": RATE - 1, "actor": "treasury"}

        audit = ledger.audit_trail.get_events_by_type(AuditEventType.GLOBAL_RATE_CHANGED)
        assert audit[0].user_id == "treasury"

    def test_rejected_rate_change_emits_nothing(self, setup):
        ledger, recorder = setup
        with pytest.raises(PolicyViolationError):
            ledger.set_rate(RATE + 1)
        assert ledger.global_rate() == RATE
        assert recorder.events == []

    def test_existing_accounts_keep_their_rate(self, setup):
        ledger, _ = setup
        ledger.mint("A", 1000, now=0)
        ledger.set_rate(1)
        assert ledger.user_rate("A") == RATE

    def test_increase_only_ledger(self):
        ledger, _ = build_ledger(direction=RateDirection.INCREASE_ONLY)
        ledger.set_rate(RATE * 2)
        with pytest.raises(PolicyViolationError):
            ledger.set_rate(RATE)


class TestNotificationsAndAudit:
    """Test that side effects follow the transaction outcome"""

    def test_events_wait_for_outer_commit(self, setup):
        ledger, recorder = setup
        with ledger.storage.atomic():
            ledger.mint("A", 1000, now=0)
            assert recorder.events == []
        assert len(recorder.of_type(DomainEvent.MINTED)) == 1

    def test_events_dropped_when_outer_block_fails(self, setup):
        ledger, recorder = setup
        with pytest.raises(RuntimeError):
            with ledger.storage.atomic():
                ledger.mint("A", 1000, now=0)
                raise RuntimeError("host failure")

        assert recorder.events == []
        assert ledger.principal_balance_of("A") == 0

    def test_policy_initialization_is_audited_once(self, setup):
        ledger, _ = setup
        InterestAccruingLedger(ledger.storage, InterestPolicy(ledger.storage, RATE), ledger.audit_trail)
        events = ledger.audit_trail.get_events_by_type(AuditEventType.POLICY_INITIALIZED)
        assert len(events) == 1

    def test_audit_chain_valid_after_mixed_workload(self, fast_setup):
        ledger, _ = fast_setup
        ledger.mint("A", 1000, now=0)
        ledger.mint("B", 500, now=10)
        ledger.transfer("A", "B", 100, now=20)
        ledger.approve("B", "C", 50)
        ledger.transfer_from("C", "B", "C", 50, now=30)
        with pytest.raises(LedgerError):
            ledger.burn("C", 10 ** 9, now=40)
        ledger.burn("A", MAX_AMOUNT, now=50)
        ledger.set_rate(FAST_RATE // 2)

        result = ledger.audit_trail.verify_integrity()
        assert result["valid"]
        assert result["total_events"] == ledger.audit_trail.count_events()

    def test_account_snapshot(self, fast_setup):
        ledger, _ = fast_setup
        ledger.mint("A", 1000, now=0)
        snapshot = ledger.account_snapshot("A", now=100)
        assert snapshot["principal"] == 1000
        assert snapshot["effective_balance"] == 1005
        assert snapshot["assigned_rate"] == FAST_RATE
