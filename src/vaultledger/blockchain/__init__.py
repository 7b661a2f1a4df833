"""
Release ledgers.

- vesting_manager: per-beneficiary linear vesting with a cliff
- token_locker: per-(holder, asset) time locks with soft-delete or compacting removal
- tiered_sale: four-tier priced capacity sale over an explicit SaleState
"""

__all__ = []
