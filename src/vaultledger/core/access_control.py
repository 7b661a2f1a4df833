"""
Single-owner access control.

Gates schedule creation and sale finalization to one designated owner
identity. Nothing else in the ledgers is gated.
"""

from __future__ import annotations

import logging

from .exceptions import AccessDeniedError, ValidationError
from .validation import normalize_address, require_address

logger = logging.getLogger(__name__)


class OwnerAccessControl:
    """Ownable-style gate around a single owner address."""

    def __init__(self, owner: str):
        self._owner = require_address(owner, "owner")

    @property
    def owner(self) -> str:
        return self._owner

    def is_owner(self, caller: str | None) -> bool:
        return normalize_address(caller) == self._owner

    def require_owner(self, caller: str | None, operation: str = "") -> None:
        if not self.is_owner(caller):
            logger.warning(
                "Unauthorized caller rejected",
                extra={
                    "event": "access.denied",
                    "caller": normalize_address(caller)[:10],
                    "operation": operation,
                },
            )
            raise AccessDeniedError(
                f"Caller {caller} is not the owner",
                details={"caller": caller, "operation": operation},
            )

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        self.require_owner(caller, "transfer_ownership")
        previous = self._owner
        self._owner = require_address(new_owner, "new owner", ValidationError)
        logger.info(
            "Ownership transferred",
            extra={"event": "access.ownership_transferred", "from": previous[:10], "to": self._owner[:10]},
        )
