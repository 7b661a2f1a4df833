"""
Time-locked token deposits.

A holder may hold many concurrent locks per asset. Each lock releases its
full amount once ``unlock_time`` has passed. Locks are addressed by their
position in the holder's per-asset sequence.

Two removal policies are supported:

- SOFT_DELETE: a withdrawn lock keeps its slot with amount 0. Indices are
  stable; withdrawing the same index twice raises AlreadyWithdrawnError.
- COMPACTING: a withdrawn lock is swapped with the last entry and the
  sequence is truncated. This moves the last lock to the withdrawn index,
  so callers must re-read get_locks() before addressing another lock.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from ..core.clock import Clock, SystemClock
from ..core.config import DEFAULT_REMOVAL_POLICY, RemovalPolicy
from ..core.contracts.asset import AssetTransfer
from ..core.events import EventLog
from ..core.exceptions import (
    AlreadyWithdrawnError,
    CollaboratorError,
    IndexOutOfRangeError,
    InvalidAssetError,
    InvalidHolderError,
    LedgerError,
    StillLockedError,
)
from ..core.metrics import get_default_metrics
from ..core.reentrancy import ReentrancyGuard, non_reentrant
from ..core.safe_math import safe_add, safe_sub
from ..core.validation import (
    is_null_address,
    normalize_address,
    require_address,
    require_positive_amount,
    require_positive_duration,
    require_timestamp,
)

logger = logging.getLogger(__name__)

AssetResolver = Callable[[str], Optional[AssetTransfer]]


@dataclass
class Lock:
    amount: int
    unlock_time: int

    def to_dict(self) -> Dict[str, Any]:
        return {"amount": self.amount, "unlock_time": self.unlock_time}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Lock":
        return cls(amount=data["amount"], unlock_time=data["unlock_time"])


@dataclass(frozen=True)
class LockInfo:
    """Read-only view of an active lock with its current position."""

    asset: str
    index: int
    amount: int
    unlock_time: int


class LockLedger:
    """
    Per-(holder, asset) lock sequences.

    ``assets`` maps asset identifiers to AssetTransfer handles bound to the
    ledger account, or is a callable resolving an identifier to one.
    """

    def __init__(
        self,
        assets: Union[Mapping[str, AssetTransfer], AssetResolver],
        clock: Optional[Clock] = None,
        removal_policy: Optional[RemovalPolicy] = None,
        guard: Optional[ReentrancyGuard] = None,
        metrics=None,
    ):
        if callable(assets):
            self._resolve = assets
        else:
            registry = {normalize_address(k): v for k, v in assets.items()}
            self._resolve = registry.get
        self.clock = clock or SystemClock()
        self.removal_policy = removal_policy or DEFAULT_REMOVAL_POLICY
        self._guard = guard or ReentrancyGuard("locker")
        self.metrics = metrics or get_default_metrics()

        # holder -> asset -> [Lock]
        self.locks: Dict[str, Dict[str, List[Lock]]] = {}
        # holder -> assets with a lock sequence, in first-seen order
        self.holder_assets: Dict[str, List[str]] = {}
        self.events = EventLog("locker")
        logger.info(
            "LockLedger initialized",
            extra={"event": "lock.init", "removal_policy": self.removal_policy.value},
        )

    # ==================== Mutations ====================

    @non_reentrant
    def lock(
        self,
        holder: str,
        asset: str,
        amount: int,
        duration: int,
        now: Optional[int] = None,
    ) -> int:
        """
        Pull ``amount`` of ``asset`` from ``holder`` and lock it for ``duration``.

        The pull happens first; if it fails nothing is recorded.

        Returns:
            Index of the new lock in the (holder, asset) sequence
        """
        now = self._now(now)
        try:
            holder_norm = require_address(holder, "holder", InvalidHolderError)
            asset_norm, handle = self._asset(asset)
            require_positive_amount(amount, "amount")
            require_positive_duration(duration, "duration")
            unlock_time = safe_add(now, duration)
        except LedgerError as exc:
            self._reject("lock", exc)
            raise

        try:
            handle.transfer_from(holder_norm, handle.account, amount)
        except CollaboratorError as exc:
            self._reject("lock", exc)
            raise

        sequence = self.locks.setdefault(holder_norm, {}).setdefault(asset_norm, [])
        sequence.append(Lock(amount=amount, unlock_time=unlock_time))
        assets = self.holder_assets.setdefault(holder_norm, [])
        if asset_norm not in assets:
            assets.append(asset_norm)
        index = len(sequence) - 1

        self.metrics.locks_created.labels(asset=asset_norm).inc()
        self.metrics.locked_amount.labels(asset=asset_norm).inc(amount)
        self.events.emit(
            "TokensLocked",
            now,
            holder=holder_norm,
            asset=asset_norm,
            amount=amount,
            unlock_time=unlock_time,
            index=index,
        )
        logger.info(
            "Locked %s of %s for %s until %s",
            amount,
            asset_norm,
            holder_norm,
            unlock_time,
            extra={
                "event": "lock.create",
                "holder": holder_norm[:10],
                "asset": asset_norm[:10],
                "amount": amount,
                "unlock_time": unlock_time,
                "index": index,
            },
        )
        return index

    @non_reentrant
    def withdraw(
        self,
        holder: str,
        asset: str,
        index: int,
        now: Optional[int] = None,
    ) -> int:
        """
        Withdraw the lock at ``index`` once it has unlocked.

        The entry is zeroed or removed before the outbound transfer; if the
        transfer fails the sequence and asset index are restored.

        Returns:
            The amount transferred to the holder
        """
        holder_norm = normalize_address(holder)
        asset_norm = normalize_address(asset)
        now = self._now(now)
        try:
            sequence = self._sequence(holder_norm, asset_norm, index)
            entry = sequence[index]
            if entry.amount == 0:
                raise AlreadyWithdrawnError(
                    f"Lock {index} of {asset_norm} already withdrawn",
                    details={"holder": holder_norm, "asset": asset_norm, "index": index},
                )
            if now < entry.unlock_time:
                raise StillLockedError(
                    f"Lock {index} of {asset_norm} is still locked. "
                    f"Unlock available in {entry.unlock_time - now} seconds.",
                    details={"unlock_time": entry.unlock_time, "now": now, "index": index},
                )
            _, handle = self._asset(asset_norm)
        except LedgerError as exc:
            self._reject("withdraw", exc)
            raise

        amount = entry.amount
        saved_sequence = list(sequence)
        saved_entry_amount = entry.amount
        saved_assets = list(self.holder_assets.get(holder_norm, []))

        if self.removal_policy is RemovalPolicy.SOFT_DELETE:
            entry.amount = 0
        else:
            last = len(sequence) - 1
            if index != last:
                sequence[index] = sequence[last]
            sequence.pop()
            if not sequence:
                self._deregister(holder_norm, asset_norm)

        try:
            handle.transfer(holder_norm, amount)
        except CollaboratorError as exc:
            entry.amount = saved_entry_amount
            self.locks.setdefault(holder_norm, {})[asset_norm] = saved_sequence
            self.holder_assets[holder_norm] = saved_assets
            logger.error(
                "Lock withdrawal transfer failed for %s; lock restored",
                holder_norm,
                extra={"event": "lock.withdraw_rollback", "asset": asset_norm[:10], "index": index, "error": str(exc)},
            )
            self.metrics.record_rejection("locker", exc)
            raise

        self.metrics.locks_withdrawn.labels(asset=asset_norm).inc()
        self.metrics.locked_amount.labels(asset=asset_norm).dec(amount)
        self.events.emit(
            "TokensWithdrawn",
            now,
            holder=holder_norm,
            asset=asset_norm,
            amount=amount,
            index=index,
        )
        logger.info(
            "Withdrew %s of %s for %s",
            amount,
            asset_norm,
            holder_norm,
            extra={
                "event": "lock.withdraw",
                "holder": holder_norm[:10],
                "asset": asset_norm[:10],
                "amount": amount,
                "index": index,
            },
        )
        return amount

    # ==================== Views ====================

    def get_locks(self, holder: str, asset: Optional[str] = None) -> List[LockInfo]:
        """
        Active locks for ``holder``, across all assets or for one asset.

        Ordered by asset (first-seen) then position. Zeroed soft-deleted
        entries are skipped; ``LockInfo.index`` is the current position.
        """
        holder_norm = normalize_address(holder)
        per_asset = self.locks.get(holder_norm, {})
        if asset is not None:
            assets = [normalize_address(asset)]
        else:
            assets = self.holder_assets.get(holder_norm, [])

        result: List[LockInfo] = []
        for asset_norm in assets:
            for index, entry in enumerate(per_asset.get(asset_norm, [])):
                if entry.amount > 0:
                    result.append(LockInfo(asset_norm, index, entry.amount, entry.unlock_time))
        return result

    def remaining_time(
        self,
        holder: str,
        asset: str,
        index: int,
        now: Optional[int] = None,
    ) -> int:
        """Seconds until the lock at ``index`` unlocks, 0 once unlocked."""
        entry = self._sequence(normalize_address(holder), normalize_address(asset), index)[index]
        now = self._now(now)
        if now >= entry.unlock_time:
            return 0
        return safe_sub(entry.unlock_time, now)

    def get_assets(self, holder: str) -> List[str]:
        return list(self.holder_assets.get(normalize_address(holder), []))

    def lock_count(self, holder: str, asset: str) -> int:
        """Length of the (holder, asset) sequence, including soft-deleted slots."""
        return len(self.locks.get(normalize_address(holder), {}).get(normalize_address(asset), []))

    def total_locked(self, holder: str, asset: Optional[str] = None) -> int:
        return sum(info.amount for info in self.get_locks(holder, asset))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "removal_policy": self.removal_policy.value,
            "locks": {
                holder: {a: [entry.to_dict() for entry in seq] for a, seq in per_asset.items()}
                for holder, per_asset in self.locks.items()
            },
            "holder_assets": {h: list(a) for h, a in self.holder_assets.items()},
        }

    def load_dict(self, data: Dict[str, Any]) -> None:
        self.removal_policy = RemovalPolicy(data.get("removal_policy", self.removal_policy.value))
        self.locks = {
            holder: {a: [Lock.from_dict(e) for e in seq] for a, seq in per_asset.items()}
            for holder, per_asset in data.get("locks", {}).items()
        }
        self.holder_assets = {h: list(a) for h, a in data.get("holder_assets", {}).items()}

    # ==================== Helpers ====================

    def _sequence(self, holder_norm: str, asset_norm: str, index: int) -> List[Lock]:
        sequence = self.locks.get(holder_norm, {}).get(asset_norm, [])
        if isinstance(index, bool) or not isinstance(index, int) or index < 0 or index >= len(sequence):
            raise IndexOutOfRangeError(
                f"Lock index {index} out of range for {asset_norm} (length {len(sequence)})",
                details={"holder": holder_norm, "asset": asset_norm, "index": index, "length": len(sequence)},
            )
        return sequence

    def _deregister(self, holder_norm: str, asset_norm: str) -> None:
        per_asset = self.locks.get(holder_norm, {})
        per_asset.pop(asset_norm, None)
        if not per_asset:
            self.locks.pop(holder_norm, None)
        assets = self.holder_assets.get(holder_norm, [])
        if asset_norm in assets:
            assets.remove(asset_norm)
        if not assets:
            self.holder_assets.pop(holder_norm, None)

    def _asset(self, asset: str):
        if is_null_address(asset):
            raise InvalidAssetError("Asset cannot be the null address", details={"asset": asset})
        asset_norm = normalize_address(asset)
        handle = self._resolve(asset_norm)
        if handle is None:
            raise InvalidAssetError(f"Unknown asset {asset_norm}", details={"asset": asset_norm})
        return asset_norm, handle

    def _now(self, now: Optional[int]) -> int:
        return require_timestamp(self.clock.now() if now is None else now, "now")

    def _reject(self, operation: str, exc: LedgerError) -> None:
        self.metrics.record_rejection("locker", exc)
        logger.warning(
            "Lock %s rejected: %s",
            operation,
            exc.message,
            extra={"event": "lock.rejected", "operation": operation, "error": type(exc).__name__},
        )
