"""
Tiered-price capacity sale.

A fixed total capacity is sold at one of four unit prices, chosen by the
percentage already sold (thresholds 0/25/50/75, first match in ascending
order). Prices are payment units per 10**18 tokens. Purchases must pay
the exact required amount and stay within a per-transaction cap of
``total_capacity / 4 / 100``.

The sale closes when ``now >= end_time``, when ``height >= end_height``,
or when the capacity is sold out. After it closes the owner finalizes it:
unsold inventory is burned and collected payment goes to the owner.

SaleState is an explicit aggregate passed into every operation; the
ledger only holds the collaborators.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence, Tuple

from ..core.access_control import OwnerAccessControl
from ..core.clock import Clock, SystemClock
from ..core.constants import (
    PRICE_PRECISION,
    SALE_TIER_COUNT,
    SALE_TIER_THRESHOLDS,
    SALE_TX_CAP_DIVISOR,
    SALE_TX_CAP_PERCENT,
)
from ..core.contracts.asset import AssetTransfer
from ..core.events import EventLog
from ..core.exceptions import (
    CapacityExceededError,
    CollaboratorError,
    InsufficientInventoryError,
    LedgerError,
    PaymentMismatchError,
    PerTransactionCapExceededError,
    SaleClosedError,
    SaleStillOngoingError,
    ValidationError,
)
from ..core.metrics import get_default_metrics
from ..core.reentrancy import ReentrancyGuard, non_reentrant
from ..core.safe_math import mul_div, safe_add, safe_sub
from ..core.validation import (
    normalize_address,
    require_address,
    require_positive_amount,
    require_timestamp,
)

logger = logging.getLogger(__name__)


@dataclass
class SaleState:
    total_capacity: int
    price_tiers: Tuple[int, ...]
    end_time: Optional[int] = None
    end_height: Optional[int] = None
    capacity_sold: int = 0
    value_collected: int = 0
    max_per_transaction: int = field(init=False)

    def __post_init__(self) -> None:
        require_positive_amount(self.total_capacity, "total_capacity")
        tiers = tuple(self.price_tiers)
        if len(tiers) != SALE_TIER_COUNT:
            raise ValidationError(
                f"Sale needs exactly {SALE_TIER_COUNT} price tiers, got {len(tiers)}",
                details={"price_tiers": list(tiers)},
            )
        for price in tiers:
            require_positive_amount(price, "price tier")
        if any(later < earlier for earlier, later in zip(tiers, tiers[1:])):
            raise ValidationError(
                "Price tiers must be non-decreasing", details={"price_tiers": list(tiers)}
            )
        if self.end_time is not None:
            require_timestamp(self.end_time, "end_time")
        if self.end_height is not None:
            require_timestamp(self.end_height, "end_height")
        if self.capacity_sold > self.total_capacity:
            raise CapacityExceededError(
                "capacity_sold cannot exceed total_capacity",
                details={"capacity_sold": self.capacity_sold, "total_capacity": self.total_capacity},
            )
        self.price_tiers = tiers
        self.max_per_transaction = self.total_capacity // SALE_TX_CAP_DIVISOR // SALE_TX_CAP_PERCENT

    @property
    def sold_out(self) -> bool:
        return self.capacity_sold == self.total_capacity

    @property
    def remaining_capacity(self) -> int:
        return safe_sub(self.total_capacity, self.capacity_sold)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_capacity": self.total_capacity,
            "price_tiers": list(self.price_tiers),
            "end_time": self.end_time,
            "end_height": self.end_height,
            "capacity_sold": self.capacity_sold,
            "value_collected": self.value_collected,
            "max_per_transaction": self.max_per_transaction,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SaleState":
        return cls(
            total_capacity=data["total_capacity"],
            price_tiers=tuple(data["price_tiers"]),
            end_time=data.get("end_time"),
            end_height=data.get("end_height"),
            capacity_sold=data.get("capacity_sold", 0),
            value_collected=data.get("value_collected", 0),
        )


@dataclass(frozen=True)
class SaleSettlement:
    burned: int
    paid_out: int


# ==================== Pure pricing functions ====================


def has_ended(state: SaleState, now: int, height: Optional[int] = None) -> bool:
    """
    True once the time or height boundary has been reached.

    ``height`` is required when the sale has an ``end_height``.

    Raises:
        ValidationError: If the sale has a height boundary and no height is given
    """
    if state.end_time is not None and now >= state.end_time:
        return True
    if state.end_height is not None and height is None:
        raise ValidationError(
            "Sale has an end_height; a block height is required",
            details={"end_height": state.end_height},
        )
    if state.end_height is not None and height >= state.end_height:
        return True
    return False


def is_closed(state: SaleState, now: int, height: Optional[int] = None) -> bool:
    return has_ended(state, now, height) or state.sold_out


def percent_sold(state: SaleState) -> int:
    return mul_div(state.capacity_sold, 100, state.total_capacity)


def _require_open(state: SaleState, now: int, height: Optional[int]) -> None:
    if is_closed(state, now, height):
        raise SaleClosedError(
            "Sale is closed",
            details={
                "now": now,
                "height": height,
                "end_time": state.end_time,
                "end_height": state.end_height,
                "sold_out": state.sold_out,
            },
        )


def current_price(state: SaleState, now: int, height: Optional[int] = None) -> int:
    """
    Unit price for the tier the sale is currently in.

    Raises:
        SaleClosedError: If the sale has ended or sold out
    """
    _require_open(state, now, height)
    sold = percent_sold(state)
    tier = 0
    for i, threshold in enumerate(SALE_TIER_THRESHOLDS):
        if sold >= threshold:
            tier = i
    return state.price_tiers[tier]


def quote(state: SaleState, payment_amount: int, now: int, height: Optional[int] = None) -> int:
    """Tokens ``payment_amount`` buys at the current price."""
    price = current_price(state, now, height)
    return mul_div(payment_amount, PRICE_PRECISION, price)


def required_payment(state: SaleState, requested_amount: int, now: int, height: Optional[int] = None) -> int:
    """Exact payment for ``requested_amount`` tokens at the current price (truncated)."""
    price = current_price(state, now, height)
    return mul_div(requested_amount, price, PRICE_PRECISION)


# ==================== Ledger ====================


class TieredSaleLedger:
    """
    Executes purchases and finalization against a SaleState.

    ``asset`` is the token being sold and ``payment`` the payment asset,
    both bound to the sale account that holds inventory and proceeds.
    """

    def __init__(
        self,
        asset: AssetTransfer,
        payment: AssetTransfer,
        access_control: OwnerAccessControl,
        clock: Optional[Clock] = None,
        guard: Optional[ReentrancyGuard] = None,
        metrics=None,
    ):
        self.asset = asset
        self.payment = payment
        self.access_control = access_control
        self.clock = clock or SystemClock()
        self._guard = guard or ReentrancyGuard("sale")
        self.metrics = metrics or get_default_metrics()
        self.events = EventLog("sale")
        # Payments whose refund failed; excluded from the owner payout
        self.pending_refunds: Dict[str, int] = {}

    @staticmethod
    def create_state(
        total_capacity: int,
        price_tiers: Sequence[int],
        end_time: Optional[int] = None,
        end_height: Optional[int] = None,
    ) -> SaleState:
        state = SaleState(
            total_capacity=total_capacity,
            price_tiers=tuple(price_tiers),
            end_time=end_time,
            end_height=end_height,
        )
        logger.info(
            "Sale initialized",
            extra={
                "event": "sale.init",
                "total_capacity": total_capacity,
                "max_per_transaction": state.max_per_transaction,
                "end_time": end_time,
                "end_height": end_height,
            },
        )
        return state

    # ==================== Views ====================

    def current_price(self, state: SaleState, now: Optional[int] = None, height: Optional[int] = None) -> int:
        now, height = self._moment(now, height)
        return current_price(state, now, height)

    def quote(
        self,
        state: SaleState,
        payment_amount: int,
        now: Optional[int] = None,
        height: Optional[int] = None,
    ) -> int:
        now, height = self._moment(now, height)
        return quote(state, payment_amount, now, height)

    def is_closed(self, state: SaleState, now: Optional[int] = None, height: Optional[int] = None) -> bool:
        now, height = self._moment(now, height)
        return is_closed(state, now, height)

    def inventory(self) -> int:
        return self.asset.balance_of(self.asset.account)

    def refunds_owed(self) -> int:
        return sum(self.pending_refunds.values())

    # ==================== Mutations ====================

    @non_reentrant
    def purchase(
        self,
        state: SaleState,
        buyer: str,
        requested_amount: int,
        payment_provided: int,
        now: Optional[int] = None,
        height: Optional[int] = None,
    ) -> int:
        """
        Buy ``requested_amount`` tokens for exactly ``payment_provided``.

        Payment is pulled from the buyer first. Counters are updated before
        the tokens are sent; if that transfer fails the counters are
        restored and the payment refunded.

        Returns:
            The number of tokens transferred
        """
        now, height = self._moment(now, height)
        try:
            buyer_norm = require_address(buyer, "buyer")
            _require_open(state, now, height)
            require_positive_amount(requested_amount, "requested_amount")
            if safe_add(state.capacity_sold, requested_amount) > state.total_capacity:
                raise CapacityExceededError(
                    "Purchase exceeds remaining capacity",
                    details={"requested": requested_amount, "remaining": state.remaining_capacity},
                )
            inventory = self.inventory()
            if inventory < requested_amount:
                raise InsufficientInventoryError(
                    f"Sale holds {inventory} tokens, {requested_amount} requested",
                    details={"inventory": inventory, "requested": requested_amount},
                )
            if requested_amount > state.max_per_transaction:
                raise PerTransactionCapExceededError(
                    f"Purchase of {requested_amount} exceeds per-transaction cap {state.max_per_transaction}",
                    details={"requested": requested_amount, "cap": state.max_per_transaction},
                )
            price = current_price(state, now, height)
            required = mul_div(requested_amount, price, PRICE_PRECISION)
            if payment_provided != required:
                raise PaymentMismatchError(
                    f"Payment {payment_provided} does not match required {required}",
                    details={"provided": payment_provided, "required": required, "price": price},
                )
        except LedgerError as exc:
            self._reject("purchase", exc)
            raise

        if payment_provided:
            try:
                self.payment.transfer_from(buyer_norm, self.payment.account, payment_provided)
            except CollaboratorError as exc:
                self._reject("purchase", exc)
                raise

        previous = (state.capacity_sold, state.value_collected)
        state.capacity_sold = safe_add(state.capacity_sold, requested_amount)
        state.value_collected = safe_add(state.value_collected, payment_provided)

        try:
            self.asset.transfer(buyer_norm, requested_amount)
        except CollaboratorError as exc:
            state.capacity_sold, state.value_collected = previous
            logger.error(
                "Sale delivery failed for %s; counters restored",
                buyer_norm,
                extra={"event": "sale.purchase_rollback", "requested": requested_amount, "error": str(exc)},
            )
            self.metrics.record_rejection("sale", exc)
            if payment_provided:
                self._refund(buyer_norm, payment_provided, now)
            raise

        self.metrics.sale_purchases.inc()
        self.metrics.sale_tokens_sold.inc(requested_amount)
        self.metrics.sale_value_collected.inc(payment_provided)
        self.events.emit(
            "TokensPurchased",
            now,
            buyer=buyer_norm,
            amount=requested_amount,
            payment=payment_provided,
            price=price,
            capacity_sold=state.capacity_sold,
        )
        logger.info(
            "Sold %s tokens to %s at price %s",
            requested_amount,
            buyer_norm,
            price,
            extra={
                "event": "sale.purchase",
                "buyer": buyer_norm[:10],
                "amount": requested_amount,
                "payment": payment_provided,
                "capacity_sold": state.capacity_sold,
            },
        )
        return requested_amount

    @non_reentrant
    def withdraw(
        self,
        state: SaleState,
        caller: str,
        now: Optional[int] = None,
        height: Optional[int] = None,
    ) -> SaleSettlement:
        """
        Finalize the sale. Owner only.

        Burns any unsold inventory and sends collected payment to the
        owner. Calling again after a successful finalization settles zero.
        """
        now, height = self._moment(now, height)
        try:
            self.access_control.require_owner(caller, "withdraw")
            if not has_ended(state, now, height) and not state.sold_out:
                raise SaleStillOngoingError(
                    "Sale is still ongoing",
                    details={"now": now, "end_time": state.end_time, "capacity_sold": state.capacity_sold},
                )
        except LedgerError as exc:
            self._reject("withdraw", exc)
            raise

        unsold = self.inventory()
        proceeds = safe_sub(self.payment.balance_of(self.payment.account), self.refunds_owed())
        try:
            if unsold:
                self.asset.burn(unsold)
        except CollaboratorError as exc:
            self._settlement_failed("burn", unsold, exc)
            raise
        try:
            if proceeds:
                self.payment.transfer(self.access_control.owner, proceeds)
        except CollaboratorError as exc:
            # Inventory is already burned; proceeds stay in the sale account for a retry
            self._settlement_failed("payout", proceeds, exc)
            raise

        settlement = SaleSettlement(burned=unsold, paid_out=proceeds)
        self.events.emit(
            "SaleFinalized",
            now,
            burned=unsold,
            paid_out=proceeds,
            capacity_sold=state.capacity_sold,
            value_collected=state.value_collected,
        )
        logger.info(
            "Sale finalized: burned %s, paid out %s",
            unsold,
            proceeds,
            extra={"event": "sale.withdraw", "burned": unsold, "paid_out": proceeds},
        )
        return settlement

    @non_reentrant
    def claim_refund(self, buyer: str, now: Optional[int] = None) -> int:
        """Retry a refund that failed during an aborted purchase."""
        buyer_norm = normalize_address(buyer)
        now, _ = self._moment(now, None)
        amount = self.pending_refunds.pop(buyer_norm, 0)
        if not amount:
            return 0
        try:
            self.payment.transfer(buyer_norm, amount)
        except CollaboratorError as exc:
            self.pending_refunds[buyer_norm] = amount
            self.metrics.record_rejection("sale", exc)
            logger.error(
                "Refund retry of %s to %s failed",
                amount,
                buyer_norm,
                extra={"event": "sale.refund_failed", "amount": amount, "error": str(exc)},
            )
            raise
        self.events.emit("RefundClaimed", now, buyer=buyer_norm, amount=amount)
        logger.info(
            "Refunded %s to %s",
            amount,
            buyer_norm,
            extra={"event": "sale.refund", "buyer": buyer_norm[:10], "amount": amount},
        )
        return amount

    # ==================== Helpers ====================

    def _moment(self, now: Optional[int], height: Optional[int]) -> Tuple[int, int]:
        now = require_timestamp(self.clock.now() if now is None else now, "now")
        height = require_timestamp(self.clock.height() if height is None else height, "height")
        return now, height

    def _refund(self, buyer_norm: str, amount: int, now: int) -> None:
        try:
            self.payment.transfer(buyer_norm, amount)
        except CollaboratorError as refund_exc:
            logger.error(
                "Refund of %s to %s failed; payment held in sale account",
                amount,
                buyer_norm,
                extra={"event": "sale.refund_failed", "amount": amount, "error": str(refund_exc)},
            )
            self.metrics.record_rejection("sale", refund_exc)
            self.pending_refunds[buyer_norm] = safe_add(self.pending_refunds.get(buyer_norm, 0), amount)
            self.events.emit("RefundFailed", now, buyer=buyer_norm, amount=amount)

    def _settlement_failed(self, step: str, amount: int, exc: CollaboratorError) -> None:
        logger.error(
            "Sale finalization %s of %s failed",
            step,
            amount,
            extra={"event": "sale.withdraw_failed", "step": step, "amount": amount, "error": str(exc)},
        )
        self.metrics.record_rejection("sale", exc)

    def _reject(self, operation: str, exc: LedgerError) -> None:
        self.metrics.record_rejection("sale", exc)
        logger.warning(
            "Sale %s rejected: %s",
            operation,
            exc.message,
            extra={"event": "sale.rejected", "operation": operation, "error": type(exc).__name__},
        )
