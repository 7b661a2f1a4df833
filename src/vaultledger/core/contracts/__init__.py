"""
Asset collaborators used by the ledgers.
"""

from .asset import AssetTransfer
from .token import FungibleToken, TokenAccount, TokenEvent

__all__ = ["AssetTransfer", "FungibleToken", "TokenAccount", "TokenEvent"]
