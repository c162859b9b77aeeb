"""
Configuration keys and their defaults (``consignment_config.keys``).

Every number a calculator reads is named here exactly once.  Calculators
receive a ``ConfigProvider`` and look keys up through these constants; no
module reads environment variables or module-level tables.
"""

from decimal import Decimal

# Lots and pricing
THREE_TRANCHE_THRESHOLD = "lots.three_tranche_threshold"
PERCEIVED_UNIT_COST = "pricing.perceived_unit_cost"
SELLER_INVESTMENT_PERCENT = "investment.seller_percent"
MINOR_UNIT_PLACES = "currency.minor_unit_places"

# Profit split
FLAT_SELLER_PERCENT = "profit.flat_seller_percent"
CASCADE_SELLER_PERCENT = "profit.cascade_seller_percent"

# Settlement triggers (remaining stock %, inclusive)
THREE_TRANCHE_T2_PERCENT = "trigger.three_tranche.t2_percent"
THREE_TRANCHE_T3_PERCENT = "trigger.three_tranche.t3_percent"
TWO_TRANCHE_T1_PERCENT = "trigger.two_tranche.t1_percent"
TWO_TRANCHE_T2_PERCENT = "trigger.two_tranche.t2_percent"

RECOMPUTE_THRESHOLD = "settlement.recompute_threshold"
AUTO_TRANSIT_HOURS = "lifecycle.auto_transit_hours"
LOW_STOCK_PERCENT = "notifications.low_stock_percent"
GIFT_LIMIT_PERCENT = "gifts.limit_percent"
FUND_CONTRIBUTION_PER_UNIT = "fund.contribution_per_unit"

# Equipment
EQUIPMENT_MONTHLY_FEE = "equipment.monthly_fee"

# Wholesale tiers
WHOLESALE_TIER_PREFIX = "wholesale.tier_"
WHOLESALE_TIER_COUNT = 3


def tier_key(tier: int, field: str) -> str:
    """``wholesale.tier_<n>.<field>`` for field in min_quantity/with_liquor/without_liquor."""
    return f"{WHOLESALE_TIER_PREFIX}{tier}.{field}"


DEFAULTS: dict[str, Decimal] = {
    THREE_TRANCHE_THRESHOLD: Decimal("50"),
    PERCEIVED_UNIT_COST: Decimal("2400"),
    SELLER_INVESTMENT_PERCENT: Decimal("50"),
    MINOR_UNIT_PLACES: Decimal("2"),
    FLAT_SELLER_PERCENT: Decimal("60"),
    CASCADE_SELLER_PERCENT: Decimal("50"),
    THREE_TRANCHE_T2_PERCENT: Decimal("10"),
    THREE_TRANCHE_T3_PERCENT: Decimal("20"),
    TWO_TRANCHE_T1_PERCENT: Decimal("10"),
    TWO_TRANCHE_T2_PERCENT: Decimal("20"),
    RECOMPUTE_THRESHOLD: Decimal("1"),
    AUTO_TRANSIT_HOURS: Decimal("2"),
    LOW_STOCK_PERCENT: Decimal("25"),
    GIFT_LIMIT_PERCENT: Decimal("8"),
    FUND_CONTRIBUTION_PER_UNIT: Decimal("200"),
    EQUIPMENT_MONTHLY_FEE: Decimal("10000"),
    tier_key(1, "min_quantity"): Decimal("20"),
    tier_key(1, "with_liquor"): Decimal("4900"),
    tier_key(1, "without_liquor"): Decimal("4800"),
    tier_key(2, "min_quantity"): Decimal("50"),
    tier_key(2, "with_liquor"): Decimal("4700"),
    tier_key(2, "without_liquor"): Decimal("4500"),
    tier_key(3, "min_quantity"): Decimal("100"),
    tier_key(3, "with_liquor"): Decimal("4500"),
    tier_key(3, "without_liquor"): Decimal("4200"),
}

# Validated as 0..100
PERCENT_KEYS: frozenset[str] = frozenset({
    SELLER_INVESTMENT_PERCENT,
    FLAT_SELLER_PERCENT,
    CASCADE_SELLER_PERCENT,
    THREE_TRANCHE_T2_PERCENT,
    THREE_TRANCHE_T3_PERCENT,
    TWO_TRANCHE_T1_PERCENT,
    TWO_TRANCHE_T2_PERCENT,
    LOW_STOCK_PERCENT,
    GIFT_LIMIT_PERCENT,
})

# Validated as > 0
POSITIVE_KEYS: frozenset[str] = frozenset({
    THREE_TRANCHE_THRESHOLD,
    PERCEIVED_UNIT_COST,
    tier_key(1, "min_quantity"),
    tier_key(2, "min_quantity"),
    tier_key(3, "min_quantity"),
})

# Validated as >= 0
NON_NEGATIVE_KEYS: frozenset[str] = frozenset({
    MINOR_UNIT_PLACES,
    RECOMPUTE_THRESHOLD,
    AUTO_TRANSIT_HOURS,
    FUND_CONTRIBUTION_PER_UNIT,
    EQUIPMENT_MONTHLY_FEE,
})
