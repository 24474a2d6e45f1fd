"""
Interest Policy Module

Holds the single global accrual rate and enforces its monotonic change rule.
The rate applies to accounts when they are pinned (on mint) from now on; it
never touches an existing account.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from .storage import StorageInterface
from .errors import InvalidRateError, PolicyViolationError
from .fixed_point import MAX_AMOUNT


class RateDirection(Enum):
    """Direction in which the global rate may move"""
    DECREASE_ONLY = "decrease_only"  # Documented intent: the rate never rises
    INCREASE_ONLY = "increase_only"  # Inverted enforcement, kept as an explicit choice

    def permits(self, old_rate: int, new_rate: int) -> bool:
        if self is RateDirection.DECREASE_ONLY:
            return new_rate <= old_rate
        return new_rate >= old_rate


@dataclass(frozen=True)
class RateChange:
    """Outcome of a successful rate change"""
    old_rate: int
    new_rate: int


def _validate_rate(rate) -> int:
    if isinstance(rate, bool) or not isinstance(rate, int) or rate < 0 or rate > MAX_AMOUNT:
        raise InvalidRateError(rate)
    return rate


class InterestPolicy:
    """
    Global rate policy

    The rate and its direction are persisted in a single record so a
    restarted system keeps the rate it last agreed to.
    """

    RECORD_ID = "global"

    def __init__(
        self,
        storage: StorageInterface,
        initial_rate: int,
        direction: RateDirection = RateDirection.DECREASE_ONLY,
        table_name: str = "policy"
    ):
        self.storage = storage
        self.table_name = table_name

        record = self.storage.load(self.table_name, self.RECORD_ID)
        if record is None:
            now = datetime.now(timezone.utc).isoformat()
            self.storage.save(self.table_name, self.RECORD_ID, {
                "id": self.RECORD_ID,
                "current_rate": _validate_rate(initial_rate),
                "direction": direction.value,
                "created_at": now,
                "updated_at": now
            })
            self.initialized = True
        else:
            self.initialized = False

        self.direction = RateDirection(self._record()["direction"])

    def _record(self) -> dict:
        record = self.storage.load(self.table_name, self.RECORD_ID)
        if record is None:
            raise ValueError("Interest policy record is missing")
        return record

    def current_rate(self) -> int:
        """The rate applied to any account pinned from now on"""
        return self._record()["current_rate"]

    def set_rate(self, new_rate: int) -> RateChange:
        """
        Change the global rate

        Args:
            new_rate: Proposed rate

        Returns:
            RateChange with the old and new rate

        Raises:
            InvalidRateError: If new_rate is negative or not an integer
            PolicyViolationError: If the change moves against the policy direction
        """
        _validate_rate(new_rate)
        record = self._record()
        old_rate = record["current_rate"]

        if not self.direction.permits(old_rate, new_rate):
            raise PolicyViolationError(old_rate, new_rate, self.direction.value)

        record["current_rate"] = new_rate
        record["updated_at"] = datetime.now(timezone.utc).isoformat()
        self.storage.save(self.table_name, self.RECORD_ID, record)
        return RateChange(old_rate=old_rate, new_rate=new_rate)
