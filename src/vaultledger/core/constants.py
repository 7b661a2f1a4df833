"""
Shared constants for the vaultledger release engine.
"""

# Unsigned 256-bit ceiling used for every quantity and timestamp
MAX_UINT256 = 2**256 - 1

# Fixed-point precision for sale prices (payment units per 10**18 tokens)
PRICE_PRECISION = 10**18
WAD = 10**18

ZERO_ADDRESS = "0x" + "0" * 40

# Percent-sold thresholds for the four sale tiers, checked in ascending order
SALE_TIER_THRESHOLDS = (0, 25, 50, 75)
SALE_TIER_COUNT = len(SALE_TIER_THRESHOLDS)

# max_per_transaction = total_capacity / SALE_TX_CAP_DIVISOR / SALE_TX_CAP_PERCENT
SALE_TX_CAP_DIVISOR = 4
SALE_TX_CAP_PERCENT = 100
