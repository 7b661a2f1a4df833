"""
Input validation helpers shared by the ledgers.
"""

from __future__ import annotations

from typing import Optional, Type

from .constants import MAX_UINT256, ZERO_ADDRESS
from .exceptions import InvalidAmountError, InvalidDurationError, ValidationError


def normalize_address(address: Optional[str]) -> str:
    """Normalize address to lowercase; None becomes the empty string."""
    if address is None:
        return ""
    return address.strip().lower()


def is_null_address(address: Optional[str]) -> bool:
    normalized = normalize_address(address)
    return not normalized or normalized == ZERO_ADDRESS


def require_address(
    address: Optional[str],
    field: str,
    error: Type[ValidationError] = ValidationError,
) -> str:
    """Return the normalized address or raise ``error`` for the null identity."""
    if is_null_address(address):
        raise error(f"{field} cannot be the null address", details={"field": field})
    return normalize_address(address)


def _is_uint(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= MAX_UINT256


def require_positive_amount(amount, field: str = "amount") -> int:
    if not _is_uint(amount) or amount == 0:
        raise InvalidAmountError(
            f"{field} must be a positive integer quantity", details={field: amount}
        )
    return amount


def require_positive_duration(duration, field: str = "duration") -> int:
    if not _is_uint(duration) or duration == 0:
        raise InvalidDurationError(
            f"{field} must be a positive integer number of seconds",
            details={field: duration},
        )
    return duration


def require_timestamp(value, field: str = "timestamp") -> int:
    if not _is_uint(value):
        raise ValidationError(
            f"{field} must be an unsigned integer timestamp", details={field: value}
        )
    return value
