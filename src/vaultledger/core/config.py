"""
vaultledger configuration

Values are read from environment variables once at import time.
LedgerConfig.from_env() re-reads them for callers that need a fresh view.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class RemovalPolicy(Enum):
    """How a fully withdrawn lock leaves its (holder, asset) sequence."""

    SOFT_DELETE = "soft_delete"  # zero the amount in place, indices stay stable
    COMPACTING = "compacting"  # swap with last and pop, indices shift


def _parse_removal_policy(raw: str) -> RemovalPolicy:
    try:
        return RemovalPolicy(raw.strip().lower())
    except ValueError as exc:
        raise ConfigurationError(
            f"VAULTLEDGER_LOCK_REMOVAL_POLICY must be one of "
            f"{[p.value for p in RemovalPolicy]}, got {raw!r}"
        ) from exc


def _parse_flag(env_var: str, default: str) -> bool:
    raw = os.getenv(env_var, default).strip()
    if raw not in ("0", "1"):
        raise ConfigurationError(f"{env_var} must be 0 or 1, got {raw!r}")
    return raw == "1"


def _parse_level(raw: str) -> str:
    level = raw.strip().upper()
    if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ConfigurationError(f"VAULTLEDGER_LOG_LEVEL is not a logging level: {raw!r}")
    return level


DEFAULT_REMOVAL_POLICY = _parse_removal_policy(
    os.getenv("VAULTLEDGER_LOCK_REMOVAL_POLICY", RemovalPolicy.COMPACTING.value)
)
LOG_LEVEL = _parse_level(os.getenv("VAULTLEDGER_LOG_LEVEL", "INFO"))
LOG_FILE = os.getenv("VAULTLEDGER_LOG_FILE", "").strip() or None
ENVIRONMENT = os.getenv("VAULTLEDGER_ENVIRONMENT", "development").strip()
METRICS_ENABLED = _parse_flag("VAULTLEDGER_METRICS_ENABLED", "1")


@dataclass(frozen=True)
class LedgerConfig:
    removal_policy: RemovalPolicy = DEFAULT_REMOVAL_POLICY
    log_level: str = LOG_LEVEL
    log_file: Optional[str] = LOG_FILE
    environment: str = ENVIRONMENT
    metrics_enabled: bool = METRICS_ENABLED

    @classmethod
    def from_env(cls) -> "LedgerConfig":
        config = cls(
            removal_policy=_parse_removal_policy(
                os.getenv("VAULTLEDGER_LOCK_REMOVAL_POLICY", RemovalPolicy.COMPACTING.value)
            ),
            log_level=_parse_level(os.getenv("VAULTLEDGER_LOG_LEVEL", "INFO")),
            log_file=os.getenv("VAULTLEDGER_LOG_FILE", "").strip() or None,
            environment=os.getenv("VAULTLEDGER_ENVIRONMENT", "development").strip(),
            metrics_enabled=_parse_flag("VAULTLEDGER_METRICS_ENABLED", "1"),
        )
        logger.debug(
            "Loaded ledger configuration",
            extra={"event": "config.loaded", "removal_policy": config.removal_policy.value},
        )
        return config
