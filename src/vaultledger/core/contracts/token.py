"""
In-memory fungible token.

An ERC20-shaped token with balances, allowances, burning and a Transfer
event log. Balance changes are applied before post-transfer hooks run,
so a hook sees the same state a real recipient callback would. Hooks
model recipients that execute arbitrary code, including reentrant calls
into a ledger. A hook that raises reverts the whole transfer.

Failures raise TransferFailedError.
"""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..constants import MAX_UINT256
from ..exceptions import CollaboratorError, TransferFailedError
from ..validation import is_null_address, normalize_address

logger = logging.getLogger(__name__)

TransferHook = Callable[[str, str, int], None]


@dataclass
class TokenEvent:
    """Represents a token Transfer/Approval/Burn event."""

    event_type: str
    from_address: str
    to_address: str
    value: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class FungibleToken:
    """
    Minimal ERC20-style token.

    Security considerations:
    - Amounts are bounded to uint256
    - Zero address checks on recipients
    - Balance and allowance underflow prevention
    """

    symbol: str
    address: str = ""
    total_supply: int = 0

    balances: Dict[str, int] = field(default_factory=dict)
    allowances: Dict[str, Dict[str, int]] = field(default_factory=dict)
    events: List[TokenEvent] = field(default_factory=list)

    # Called as hook(from_addr, to_addr, amount) after every balance move
    hooks: List[TransferHook] = field(default_factory=list)

    # When set, every transfer/pull/burn fails with this message
    fail_transfers: str = ""

    def __post_init__(self) -> None:
        if not self.address:
            addr_hash = hashlib.sha3_256(f"{self.symbol}{time.time()}".encode()).digest()
            self.address = f"0x{addr_hash[-20:].hex()}"

    # ==================== View Functions ====================

    def balance_of(self, account: str) -> int:
        return self.balances.get(normalize_address(account), 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get(normalize_address(owner), {}).get(
            normalize_address(spender), 0
        )

    # ==================== Mutations ====================

    def mint(self, to: str, amount: int) -> None:
        to_norm = normalize_address(to)
        self._validate_recipient(to_norm)
        self._validate_amount(amount)
        if self.total_supply + amount > MAX_UINT256:
            raise TransferFailedError(f"{self.symbol}: supply overflow")
        self.total_supply += amount
        self.balances[to_norm] = self.balances.get(to_norm, 0) + amount
        self.events.append(TokenEvent("Transfer", "", to_norm, amount))

    def approve(self, owner: str, spender: str, amount: int) -> None:
        owner_norm = normalize_address(owner)
        spender_norm = normalize_address(spender)
        self._validate_recipient(spender_norm)
        self._validate_amount(amount)
        self.allowances.setdefault(owner_norm, {})[spender_norm] = amount
        self.events.append(TokenEvent("Approval", owner_norm, spender_norm, amount))

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        self._require_enabled()
        sender_norm = normalize_address(sender)
        recipient_norm = normalize_address(recipient)
        self._validate_recipient(recipient_norm)
        self._validate_amount(amount)

        sender_balance = self.balances.get(sender_norm, 0)
        if sender_balance < amount:
            raise TransferFailedError(
                f"{self.symbol}: transfer amount exceeds balance ({amount} > {sender_balance})",
                details={"from": sender_norm, "amount": amount, "balance": sender_balance},
            )

        self._move(sender_norm, recipient_norm, amount)

    def transfer_from(self, spender: str, from_addr: str, to_addr: str, amount: int) -> None:
        self._require_enabled()
        spender_norm = normalize_address(spender)
        from_norm = normalize_address(from_addr)
        to_norm = normalize_address(to_addr)
        self._validate_recipient(to_norm)
        self._validate_amount(amount)

        current_allowance = self.allowance(from_norm, spender_norm)
        if current_allowance < amount:
            raise TransferFailedError(
                f"{self.symbol}: insufficient allowance ({current_allowance} < {amount})",
                details={"owner": from_norm, "spender": spender_norm, "amount": amount},
            )
        from_balance = self.balances.get(from_norm, 0)
        if from_balance < amount:
            raise TransferFailedError(
                f"{self.symbol}: transfer amount exceeds balance ({amount} > {from_balance})",
                details={"from": from_norm, "amount": amount, "balance": from_balance},
            )

        self._move(from_norm, to_norm, amount, spender_norm)

    def burn(self, holder: str, amount: int) -> None:
        self._require_enabled()
        holder_norm = normalize_address(holder)
        self._validate_amount(amount)
        balance = self.balances.get(holder_norm, 0)
        if balance < amount:
            raise TransferFailedError(
                f"{self.symbol}: burn amount exceeds balance ({amount} > {balance})",
                details={"holder": holder_norm, "amount": amount, "balance": balance},
            )
        self.balances[holder_norm] = balance - amount
        self.total_supply -= amount
        self.events.append(TokenEvent("Transfer", holder_norm, "", amount))
        logger.info(
            "Tokens burned",
            extra={"event": "token.burn", "token": self.symbol, "holder": holder_norm[:10], "amount": amount},
        )

    def account(self, address: str) -> "TokenAccount":
        """Return an AssetTransfer handle bound to ``address``."""
        return TokenAccount(self, address)

    # ==================== Helpers ====================

    def _move(self, from_norm: str, to_norm: str, amount: int, spender_norm: str = "") -> None:
        """
        Apply a balance move, then run the hooks.

        The move is all-or-nothing: if any hook raises, balances, the
        spender allowance and the event log are restored before the
        error propagates. Non-collaborator errors from a hook surface as
        TransferFailedError.
        """
        saved_balances = {addr: self.balances.get(addr) for addr in (from_norm, to_norm)}
        saved_allowance = self.allowance(from_norm, spender_norm) if spender_norm else None
        events_before = len(self.events)

        if saved_allowance is not None and saved_allowance != MAX_UINT256:
            self.allowances[from_norm][spender_norm] = saved_allowance - amount
        self.balances[from_norm] = self.balances.get(from_norm, 0) - amount
        self.balances[to_norm] = self.balances.get(to_norm, 0) + amount
        self.events.append(TokenEvent("Transfer", from_norm, to_norm, amount))
        logger.debug(
            "Token transfer",
            extra={
                "event": "token.transfer",
                "token": self.symbol,
                "from": from_norm[:10],
                "to": to_norm[:10],
                "amount": amount,
            },
        )

        try:
            for hook in list(self.hooks):
                hook(from_norm, to_norm, amount)
        except CollaboratorError:
            self._revert_move(saved_balances, from_norm, spender_norm, saved_allowance, events_before)
            raise
        except Exception as exc:
            self._revert_move(saved_balances, from_norm, spender_norm, saved_allowance, events_before)
            raise TransferFailedError(
                f"{self.symbol}: recipient hook failed: {exc}",
                details={"from": from_norm, "to": to_norm, "amount": amount},
            ) from exc

    def _revert_move(
        self,
        saved_balances: Dict[str, Optional[int]],
        from_norm: str,
        spender_norm: str,
        saved_allowance: Optional[int],
        events_before: int,
    ) -> None:
        for addr, balance in saved_balances.items():
            if balance is None:
                self.balances.pop(addr, None)
            else:
                self.balances[addr] = balance
        if saved_allowance is not None:
            self.allowances.setdefault(from_norm, {})[spender_norm] = saved_allowance
        del self.events[events_before:]
        logger.warning(
            "Token transfer reverted by hook",
            extra={"event": "token.transfer_reverted", "token": self.symbol, "from": from_norm[:10]},
        )

    def _require_enabled(self) -> None:
        if self.fail_transfers:
            raise TransferFailedError(f"{self.symbol}: {self.fail_transfers}")

    def _validate_recipient(self, address: str) -> None:
        if is_null_address(address):
            raise TransferFailedError(f"{self.symbol}: recipient is zero address")

    def _validate_amount(self, amount: int) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise TransferFailedError(f"{self.symbol}: amount must be an integer")
        if amount < 0:
            raise TransferFailedError(f"{self.symbol}: amount cannot be negative")
        if amount > MAX_UINT256:
            raise TransferFailedError(f"{self.symbol}: amount exceeds uint256")

    # ==================== Serialization ====================

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "address": self.address,
            "total_supply": self.total_supply,
            "balances": dict(self.balances),
            "allowances": {k: dict(v) for k, v in self.allowances.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FungibleToken":
        token = cls(
            symbol=data["symbol"],
            address=data.get("address", ""),
            total_supply=data.get("total_supply", 0),
        )
        token.balances = dict(data.get("balances", {}))
        token.allowances = {k: dict(v) for k, v in data.get("allowances", {}).items()}
        return token


class TokenAccount:
    """AssetTransfer handle: a FungibleToken seen from one account."""

    def __init__(self, token: FungibleToken, account: str):
        self.token = token
        self._account = normalize_address(account)

    @property
    def account(self) -> str:
        return self._account

    def transfer(self, to: str, amount: int) -> None:
        self.token.transfer(self._account, to, amount)

    def transfer_from(self, from_addr: str, to: str, amount: int) -> None:
        self.token.transfer_from(self._account, from_addr, to, amount)

    def balance_of(self, holder: str) -> int:
        return self.token.balance_of(holder)

    def burn(self, amount: int) -> None:
        self.token.burn(self._account, amount)

    def __repr__(self) -> str:
        return f"TokenAccount(token={self.token.symbol!r}, account={self._account[:10]!r})"
