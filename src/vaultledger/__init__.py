"""
vaultledger - Time and capacity gated value release

Deterministic accounting for how much of a fungible balance a beneficiary
may withdraw at a given moment:

- VestingLedger: linear vesting with a cliff
- LockLedger: concurrent lump-sum time locks per holder and asset
- TieredSaleLedger: four-tier priced capacity sale
"""

__version__ = "0.1.0"
__author__ = "vaultledger developers"

from .blockchain.tiered_sale import SaleSettlement, SaleState, TieredSaleLedger
from .blockchain.token_locker import Lock, LockInfo, LockLedger
from .blockchain.vesting_manager import VestingLedger, VestingSchedule
from .core.clock import Clock, ManualClock, SystemClock
from .core.config import RemovalPolicy

__all__ = [
    "Clock",
    "Lock",
    "LockInfo",
    "LockLedger",
    "ManualClock",
    "RemovalPolicy",
    "SaleSettlement",
    "SaleState",
    "SystemClock",
    "TieredSaleLedger",
    "VestingLedger",
    "VestingSchedule",
]
