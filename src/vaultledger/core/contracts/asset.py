"""
AssetTransfer collaborator interface.

An AssetTransfer handle is bound to one account (the ledger's own
address). ``transfer`` and ``burn`` move that account's funds;
``transfer_from`` pulls funds the ``from_addr`` has approved for it.
Every call may fail with TransferFailedError and may run arbitrary code,
including calls back into the ledger, before returning.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class AssetTransfer(Protocol):
    @property
    def account(self) -> str:
        ...

    def transfer(self, to: str, amount: int) -> None:
        ...

    def transfer_from(self, from_addr: str, to: str, amount: int) -> None:
        ...

    def balance_of(self, holder: str) -> int:
        ...

    def burn(self, amount: int) -> None:
        ...
