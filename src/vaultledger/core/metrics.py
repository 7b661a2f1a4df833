"""
Prometheus metrics for the release ledgers.
"""

from __future__ import annotations

import threading
from typing import Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge

from . import config


class LedgerMetrics:
    """Counters and gauges for vesting, lock and sale activity."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or REGISTRY

        self.vesting_released = Counter(
            "vaultledger_vesting_released_total",
            "Total quantity released from vesting schedules",
            registry=self.registry,
        )
        self.schedules_created = Counter(
            "vaultledger_vesting_schedules_created_total",
            "Total vesting schedules created",
            registry=self.registry,
        )

        self.locks_created = Counter(
            "vaultledger_locks_created_total",
            "Total locks created",
            ["asset"],
            registry=self.registry,
        )
        self.locks_withdrawn = Counter(
            "vaultledger_locks_withdrawn_total",
            "Total locks withdrawn",
            ["asset"],
            registry=self.registry,
        )
        self.locked_amount = Gauge(
            "vaultledger_locked_amount",
            "Quantity currently held in locks",
            ["asset"],
            registry=self.registry,
        )

        self.sale_purchases = Counter(
            "vaultledger_sale_purchases_total",
            "Total successful sale purchases",
            registry=self.registry,
        )
        self.sale_tokens_sold = Counter(
            "vaultledger_sale_tokens_sold_total",
            "Total tokens sold",
            registry=self.registry,
        )
        self.sale_value_collected = Counter(
            "vaultledger_sale_value_collected_total",
            "Total payment value collected",
            registry=self.registry,
        )

        self.rejections = Counter(
            "vaultledger_rejections_total",
            "Rejected ledger operations by error type",
            ["ledger", "error"],
            registry=self.registry,
        )

    def record_rejection(self, ledger: str, error: Exception) -> None:
        self.rejections.labels(ledger=ledger, error=type(error).__name__).inc()


class NullMetrics:
    """Drop-in sink used when metrics are disabled."""

    def record_rejection(self, ledger: str, error: Exception) -> None:
        return None

    def __getattr__(self, name):
        return _NullMetric()


class _NullMetric:
    def labels(self, *args, **kwargs) -> "_NullMetric":
        return self

    def inc(self, amount: float = 1) -> None:
        return None

    def dec(self, amount: float = 1) -> None:
        return None

    def set(self, value: float) -> None:
        return None


_default_metrics: Optional[LedgerMetrics] = None
_default_lock = threading.Lock()


def get_default_metrics():
    """Process-wide metrics on the default registry, or a null sink when disabled."""
    global _default_metrics
    if not config.METRICS_ENABLED:
        return NullMetrics()
    with _default_lock:
        if _default_metrics is None:
            _default_metrics = LedgerMetrics()
        return _default_metrics
