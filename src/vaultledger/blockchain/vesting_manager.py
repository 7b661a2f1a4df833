"""
Linear vesting with a cliff.

One schedule per beneficiary. After the cliff, the releasable amount for a
call is derived from what is still unvested and the time since the last
release:

    vested     = total * (now - cliff_end) / vesting_duration
    unreleased = total - vested
    releasable = unreleased * (now - max(cliff_end, last_released)) / vesting_duration

All steps use checked uint256 math. Past the end of the vesting window
``vested`` exceeds ``total`` and the subtraction raises
ArithmeticUnderflowError. Per-call amounts depend on how often release is
called. Each release is additionally capped so the cumulative amount
never exceeds ``total_amount``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..core.access_control import OwnerAccessControl
from ..core.clock import Clock, SystemClock
from ..core.contracts.asset import AssetTransfer
from ..core.events import EventLog
from ..core.exceptions import (
    CollaboratorError,
    DuplicateScheduleError,
    InvalidBeneficiaryError,
    InvalidDurationError,
    LedgerError,
    NoScheduleError,
    NothingToReleaseError,
)
from ..core.metrics import get_default_metrics
from ..core.reentrancy import ReentrancyGuard, non_reentrant
from ..core.safe_math import mul_div, safe_add, safe_sub
from ..core.validation import (
    normalize_address,
    require_address,
    require_positive_amount,
    require_positive_duration,
    require_timestamp,
)

logger = logging.getLogger(__name__)


@dataclass
class VestingSchedule:
    beneficiary: str
    total_amount: int
    start_time: int
    cliff_duration: int
    vesting_duration: int
    last_released_time: int = 0  # 0 means never released
    released_amount: int = 0

    @property
    def cliff_end(self) -> int:
        return safe_add(self.start_time, self.cliff_duration)

    @property
    def vesting_end(self) -> int:
        return safe_add(self.cliff_end, self.vesting_duration)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "beneficiary": self.beneficiary,
            "total_amount": self.total_amount,
            "start_time": self.start_time,
            "cliff_duration": self.cliff_duration,
            "vesting_duration": self.vesting_duration,
            "last_released_time": self.last_released_time,
            "released_amount": self.released_amount,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VestingSchedule":
        return cls(
            beneficiary=data["beneficiary"],
            total_amount=data["total_amount"],
            start_time=data["start_time"],
            cliff_duration=data["cliff_duration"],
            vesting_duration=data["vesting_duration"],
            last_released_time=data.get("last_released_time", 0),
            released_amount=data.get("released_amount", 0),
        )


def releasable_amount(schedule: VestingSchedule, now: int) -> int:
    """
    Amount the beneficiary may release at ``now``.

    Pure function of the schedule and the timestamp; see the module
    docstring for the formula. Returns 0 during the cliff.

    Raises:
        ArithmeticUnderflowError: If ``now`` is past the vesting window or
            earlier than the last release
        ArithmeticOverflowError: If an intermediate product overflows
    """
    require_timestamp(now, "now")
    cliff_end = schedule.cliff_end

    if now < cliff_end:
        return 0

    time_elapsed = safe_sub(now, cliff_end)
    vested_amount = mul_div(schedule.total_amount, time_elapsed, schedule.vesting_duration)
    unreleased_amount = safe_sub(schedule.total_amount, vested_amount)

    effective_last_release = max(cliff_end, schedule.last_released_time)
    time_since_last_release = safe_sub(now, effective_last_release)

    releasable = mul_div(unreleased_amount, time_since_last_release, schedule.vesting_duration)

    remaining = safe_sub(schedule.total_amount, schedule.released_amount)
    return min(releasable, remaining)


class VestingLedger:
    """
    Per-beneficiary vesting schedules paid out of the ledger's own balance.

    ``asset`` is the AssetTransfer handle bound to the ledger account that
    holds the tokens to be vested.
    """

    def __init__(
        self,
        asset: AssetTransfer,
        access_control: OwnerAccessControl,
        clock: Optional[Clock] = None,
        guard: Optional[ReentrancyGuard] = None,
        metrics=None,
    ):
        self.asset = asset
        self.access_control = access_control
        self.clock = clock or SystemClock()
        self._guard = guard or ReentrancyGuard("vesting")
        self.metrics = metrics or get_default_metrics()
        self.schedules: Dict[str, VestingSchedule] = {}
        self.events = EventLog("vesting")
        logger.info(
            "VestingLedger initialized",
            extra={"event": "vesting.init", "account": asset.account[:10]},
        )

    # ==================== Mutations ====================

    def create_schedule(
        self,
        caller: str,
        beneficiary: str,
        total_amount: int,
        start_time: int,
        cliff_duration: int,
        vesting_duration: int,
    ) -> VestingSchedule:
        """
        Create the vesting schedule for ``beneficiary``. Owner only.

        No tokens move; the ledger account must be funded separately.
        """
        self.access_control.require_owner(caller, "create_schedule")
        try:
            beneficiary_norm = require_address(beneficiary, "beneficiary", InvalidBeneficiaryError)
            require_positive_amount(total_amount, "total_amount")
            require_timestamp(start_time, "start_time")
            require_timestamp(cliff_duration, "cliff_duration")
            require_positive_duration(vesting_duration, "vesting_duration")
            if cliff_duration > vesting_duration:
                raise InvalidDurationError(
                    "Cliff duration cannot exceed vesting duration.",
                    details={"cliff_duration": cliff_duration, "vesting_duration": vesting_duration},
                )
            if beneficiary_norm in self.schedules:
                raise DuplicateScheduleError(
                    f"Vesting schedule already exists for {beneficiary_norm}",
                    details={"beneficiary": beneficiary_norm},
                )
            schedule = VestingSchedule(
                beneficiary=beneficiary_norm,
                total_amount=total_amount,
                start_time=start_time,
                cliff_duration=cliff_duration,
                vesting_duration=vesting_duration,
            )
            # Surface window overflow at creation instead of at release time
            schedule.vesting_end
        except LedgerError as exc:
            self._reject("create_schedule", exc)
            raise

        self.schedules[beneficiary_norm] = schedule
        self.metrics.schedules_created.inc()
        self.events.emit(
            "ScheduleCreated",
            start_time,
            beneficiary=beneficiary_norm,
            total_amount=total_amount,
            cliff_end=schedule.cliff_end,
            vesting_duration=vesting_duration,
        )
        logger.info(
            "Vesting schedule created for %s",
            beneficiary_norm,
            extra={
                "event": "vesting.create",
                "beneficiary": beneficiary_norm[:10],
                "total_amount": total_amount,
                "cliff_end": schedule.cliff_end,
            },
        )
        return schedule

    @non_reentrant
    def release(self, beneficiary: str, now: Optional[int] = None) -> int:
        """
        Release the currently releasable amount to ``beneficiary``.

        The schedule is updated before the outbound transfer. If the
        transfer fails the schedule is restored and the error re-raised.

        Returns:
            The amount transferred
        """
        beneficiary_norm = normalize_address(beneficiary)
        now = self._now(now)
        try:
            schedule = self._get(beneficiary_norm)
            amount = releasable_amount(schedule, now)
            if amount == 0:
                raise NothingToReleaseError(
                    f"Nothing to release for {beneficiary_norm} at {now}",
                    details={"beneficiary": beneficiary_norm, "now": now},
                )
        except LedgerError as exc:
            self._reject("release", exc)
            raise

        previous = (schedule.last_released_time, schedule.released_amount)
        schedule.last_released_time = now
        schedule.released_amount = safe_add(schedule.released_amount, amount)

        try:
            self.asset.transfer(beneficiary_norm, amount)
        except CollaboratorError as exc:
            schedule.last_released_time, schedule.released_amount = previous
            logger.error(
                "Vesting release transfer failed for %s; schedule restored",
                beneficiary_norm,
                extra={"event": "vesting.release_rollback", "amount": amount, "error": str(exc)},
            )
            self.metrics.record_rejection("vesting", exc)
            raise

        self.metrics.vesting_released.inc(amount)
        self.events.emit(
            "TokensReleased",
            now,
            beneficiary=beneficiary_norm,
            amount=amount,
            released_total=schedule.released_amount,
        )
        logger.info(
            "Released %s tokens to %s",
            amount,
            beneficiary_norm,
            extra={
                "event": "vesting.release",
                "beneficiary": beneficiary_norm[:10],
                "amount": amount,
                "released_total": schedule.released_amount,
            },
        )
        return amount

    # ==================== Views ====================

    def releasable_amount(self, beneficiary: str, now: Optional[int] = None) -> int:
        return releasable_amount(self._get(normalize_address(beneficiary)), self._now(now))

    def get_schedule(self, beneficiary: str) -> VestingSchedule:
        return self._get(normalize_address(beneficiary))

    def has_schedule(self, beneficiary: str) -> bool:
        return normalize_address(beneficiary) in self.schedules

    def released_amount(self, beneficiary: str) -> int:
        return self._get(normalize_address(beneficiary)).released_amount

    def beneficiaries(self) -> List[str]:
        return list(self.schedules)

    def to_dict(self) -> Dict[str, Any]:
        return {b: s.to_dict() for b, s in self.schedules.items()}

    def load_dict(self, data: Dict[str, Any]) -> None:
        self.schedules = {b: VestingSchedule.from_dict(s) for b, s in data.items()}

    # ==================== Helpers ====================

    def _get(self, beneficiary_norm: str) -> VestingSchedule:
        schedule = self.schedules.get(beneficiary_norm)
        if schedule is None:
            raise NoScheduleError(
                f"No vesting schedule for {beneficiary_norm}",
                details={"beneficiary": beneficiary_norm},
            )
        return schedule

    def _now(self, now: Optional[int]) -> int:
        return require_timestamp(self.clock.now() if now is None else now, "now")

    def _reject(self, operation: str, exc: LedgerError) -> None:
        self.metrics.record_rejection("vesting", exc)
        logger.warning(
            "Vesting %s rejected: %s",
            operation,
            exc.message,
            extra={"event": "vesting.rejected", "operation": operation, "error": type(exc).__name__},
        )
