"""
Ledger exception hierarchy for vaultledger.

Provides typed exceptions for the release ledgers so callers can tell
bad input apart from time-dependent rejections, arithmetic faults,
collaborator failures and reentrant calls.
"""

from __future__ import annotations
from typing import Optional, Any, Dict


class LedgerError(Exception):
    """Base exception for all ledger errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the call can succeed if re-attempted later
    """

    recoverable = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if recoverable is not None:
            self.recoverable = recoverable


# ==================== Validation Errors ====================


class ValidationError(LedgerError):
    """Raised when input has the wrong shape (null identity, zero quantity, bad index)."""
    pass


class InvalidBeneficiaryError(ValidationError):
    """Raised when a vesting beneficiary is the null identity."""
    pass


class InvalidHolderError(ValidationError):
    """Raised when a lock holder is the null identity."""
    pass


class InvalidAmountError(ValidationError):
    """Raised when a quantity is zero, negative or not an integer."""
    pass


class InvalidDurationError(ValidationError):
    """Raised when a duration is zero, negative, or a cliff exceeds its vesting duration."""
    pass


class InvalidAssetError(ValidationError):
    """Raised when an asset identifier is empty or cannot be resolved."""
    pass


class IndexOutOfRangeError(ValidationError):
    """Raised when a lock index does not address an entry in the sequence."""
    pass


class PerTransactionCapExceededError(ValidationError):
    """Raised when a single purchase asks for more than the per-transaction cap."""
    pass


class PaymentMismatchError(ValidationError):
    """Raised when the provided payment differs from the required payment."""
    pass


# ==================== State Errors ====================


class StateError(LedgerError):
    """Raised when the ledger state rejects the call."""
    pass


class DuplicateScheduleError(StateError):
    """Raised when a beneficiary already has a vesting schedule."""
    pass


class NoScheduleError(StateError):
    """Raised when no vesting schedule exists for a beneficiary."""
    pass


class NothingToReleaseError(StateError):
    """Raised when the releasable amount is zero."""
    recoverable = True


class StillLockedError(StateError):
    """Raised when a lock is withdrawn before its unlock time."""
    recoverable = True


class AlreadyWithdrawnError(StateError):
    """Raised when a soft-deleted lock is withdrawn a second time."""
    pass


class SaleClosedError(StateError):
    """Raised when the sale has ended or sold out."""
    pass


class SaleStillOngoingError(StateError):
    """Raised when the sale is finalized before it has ended."""
    recoverable = True


class CapacityExceededError(StateError):
    """Raised when a purchase would sell beyond the total capacity."""
    pass


# ==================== Arithmetic Errors ====================


class LedgerArithmeticError(LedgerError, ArithmeticError):
    """Raised when quantity or time math leaves the unsigned 256-bit range."""
    pass


class ArithmeticOverflowError(LedgerArithmeticError):
    """Raised when a result exceeds MAX_UINT256 or an operand is negative."""
    pass


class ArithmeticUnderflowError(LedgerArithmeticError):
    """Raised when a subtraction would go below zero."""
    pass


class DivisionByZeroError(LedgerArithmeticError):
    """Raised on division by zero."""
    pass


# ==================== Collaborator Errors ====================


class CollaboratorError(LedgerError):
    """Raised by or on behalf of an external collaborator."""
    pass


class TransferFailedError(CollaboratorError):
    """Raised when an asset transfer, pull or burn fails."""
    pass


class InsufficientInventoryError(CollaboratorError):
    """Raised when the sale holds fewer tokens than requested."""
    pass


class AccessDeniedError(CollaboratorError):
    """Raised when a caller is not the designated owner."""
    pass


# ==================== Reentrancy Errors ====================


class ReentrancyError(LedgerError):
    """Raised when a guarded operation is entered while another is in flight."""
    pass


class ReentrantCallError(ReentrancyError):
    """Raised on nested entry into a guarded operation."""
    pass


# ==================== Configuration Errors ====================


class ConfigurationError(LedgerError):
    """Raised when required configuration is missing or invalid."""
    pass


__all__ = [
    "LedgerError",
    "ValidationError",
    "InvalidBeneficiaryError",
    "InvalidHolderError",
    "InvalidAmountError",
    "InvalidDurationError",
    "InvalidAssetError",
    "IndexOutOfRangeError",
    "PerTransactionCapExceededError",
    "PaymentMismatchError",
    "StateError",
    "DuplicateScheduleError",
    "NoScheduleError",
    "NothingToReleaseError",
    "StillLockedError",
    "AlreadyWithdrawnError",
    "SaleClosedError",
    "SaleStillOngoingError",
    "CapacityExceededError",
    "LedgerArithmeticError",
    "ArithmeticOverflowError",
    "ArithmeticUnderflowError",
    "DivisionByZeroError",
    "CollaboratorError",
    "TransferFailedError",
    "InsufficientInventoryError",
    "AccessDeniedError",
    "ReentrancyError",
    "ReentrantCallError",
    "ConfigurationError",
]
