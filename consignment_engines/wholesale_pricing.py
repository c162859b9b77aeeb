"""
Wholesale tier pricing.

Pure functions. No I/O.

Tiers are keyed by minimum quantity and a with/without-liquor flag.  The
applicable tier is the highest threshold not exceeding the quantity;
below the lowest threshold the order is rejected.

    Q >= 100  ->  tier 3
    Q >= 50   ->  tier 2
    Q >= 20   ->  tier 1
    Q <  20   ->  BelowMinimumQuantityError
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from consignment_config.rules import WholesaleTier, WholesaleTierTable
from consignment_kernel.exceptions import BelowMinimumQuantityError
from consignment_engines.tracer import traced_engine


@dataclass(frozen=True)
class WholesaleQuote:
    quantity: int
    with_liquor: bool
    tier: WholesaleTier
    unit_price: Decimal

    @property
    def gross_revenue(self) -> Decimal:
        return Decimal(self.quantity) * self.unit_price


def resolve_tier(quantity: int, table: WholesaleTierTable) -> WholesaleTier:
    eligible = [t for t in table.tiers if t.min_quantity <= quantity]
    if not eligible:
        raise BelowMinimumQuantityError(quantity, table.minimum_quantity)
    return max(eligible, key=lambda t: t.min_quantity)


@traced_engine("wholesale_pricing", "1.0", fingerprint_fields=("quantity", "with_liquor"))
def quote_wholesale(
    *,
    quantity: int,
    with_liquor: bool,
    table: WholesaleTierTable,
) -> WholesaleQuote:
    """Unit price and gross revenue for a wholesale quantity."""
    tier = resolve_tier(quantity, table)
    return WholesaleQuote(
        quantity=quantity,
        with_liquor=with_liquor,
        tier=tier,
        unit_price=tier.price(with_liquor),
    )
