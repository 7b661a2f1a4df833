"""
Overflow-checked unsigned arithmetic.

Every quantity and timestamp in the ledgers is an unsigned 256-bit
integer. Python integers never wrap, so the bounds are enforced
explicitly: results above MAX_UINT256 raise ArithmeticOverflowError,
subtractions below zero raise ArithmeticUnderflowError. Division always
truncates toward zero unless rounding up is requested.
"""

from __future__ import annotations

from .constants import MAX_UINT256, WAD
from .exceptions import (
    ArithmeticOverflowError,
    ArithmeticUnderflowError,
    DivisionByZeroError,
)


class SafeMath:
    """Checked uint256 operations."""

    @staticmethod
    def require_uint(value: int, name: str = "value") -> int:
        """Validate that value is an integer in [0, MAX_UINT256]."""
        if isinstance(value, bool) or not isinstance(value, int):
            raise ArithmeticOverflowError(
                f"{name} must be an integer, got {type(value).__name__}",
                details={"name": name},
            )
        if value < 0 or value > MAX_UINT256:
            raise ArithmeticOverflowError(
                f"{name} out of uint256 range: {value}",
                details={"name": name, "value": value},
            )
        return value

    @staticmethod
    def safe_add(a: int, b: int) -> int:
        SafeMath.require_uint(a, "a")
        SafeMath.require_uint(b, "b")
        result = a + b
        if result > MAX_UINT256:
            raise ArithmeticOverflowError(
                "Addition overflow", details={"a": a, "b": b}
            )
        return result

    @staticmethod
    def safe_sub(a: int, b: int) -> int:
        SafeMath.require_uint(a, "a")
        SafeMath.require_uint(b, "b")
        if b > a:
            raise ArithmeticUnderflowError(
                f"Subtraction underflow ({a} - {b})", details={"a": a, "b": b}
            )
        return a - b

    @staticmethod
    def safe_mul(a: int, b: int) -> int:
        SafeMath.require_uint(a, "a")
        SafeMath.require_uint(b, "b")
        result = a * b
        if result > MAX_UINT256:
            raise ArithmeticOverflowError(
                "Multiplication overflow", details={"a": a, "b": b}
            )
        return result

    @staticmethod
    def safe_div(a: int, b: int) -> int:
        SafeMath.require_uint(a, "a")
        SafeMath.require_uint(b, "b")
        if b == 0:
            raise DivisionByZeroError("Division by zero", details={"a": a})
        return a // b

    @staticmethod
    def mul_div(a: int, b: int, denominator: int, round_up: bool = False) -> int:
        """
        Calculate (a * b) / denominator.

        The product is overflow-checked before dividing.

        Args:
            a: First multiplicand
            b: Second multiplicand
            denominator: Divisor
            round_up: If True, round up instead of truncating

        Raises:
            DivisionByZeroError: If denominator is zero
            ArithmeticOverflowError: If the product overflows
        """
        SafeMath.require_uint(denominator, "denominator")
        if denominator == 0:
            raise DivisionByZeroError("Division by zero", details={"a": a, "b": b})

        product = SafeMath.safe_mul(a, b)

        if round_up:
            return (product + denominator - 1) // denominator
        return product // denominator

    @staticmethod
    def wad_mul(a: int, b: int) -> int:
        """Multiply two WAD (1e18) fixed-point numbers."""
        return SafeMath.mul_div(a, b, WAD)

    @staticmethod
    def wad_div(a: int, b: int) -> int:
        """Divide two WAD (1e18) fixed-point numbers."""
        return SafeMath.mul_div(a, WAD, b)


safe_add = SafeMath.safe_add
safe_sub = SafeMath.safe_sub
safe_mul = SafeMath.safe_mul
safe_div = SafeMath.safe_div
mul_div = SafeMath.mul_div
