"""
Typed views over a ConfigProvider (``consignment_config.rules``).

Engines take these small frozen dataclasses instead of a provider so that a
calculation is a pure function of its arguments.  Each view is built with
``from_provider(config)`` at the service boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from consignment_config import keys
from consignment_config.provider import ConfigProvider
from consignment_kernel.exceptions import ConfigurationError


@dataclass(frozen=True)
class LotRules:
    three_tranche_threshold: int
    perceived_unit_cost: Decimal
    seller_investment_percent: Decimal
    fund_contribution_per_unit: Decimal
    gift_limit_percent: Decimal

    @classmethod
    def from_provider(cls, config: ConfigProvider) -> LotRules:
        return cls(
            three_tranche_threshold=int(config.get_number(keys.THREE_TRANCHE_THRESHOLD)),
            perceived_unit_cost=config.get_number(keys.PERCEIVED_UNIT_COST),
            seller_investment_percent=config.get_number(keys.SELLER_INVESTMENT_PERCENT),
            fund_contribution_per_unit=config.get_number(keys.FUND_CONTRIBUTION_PER_UNIT),
            gift_limit_percent=config.get_number(keys.GIFT_LIMIT_PERCENT),
        )


@dataclass(frozen=True)
class ProfitRules:
    flat_seller_percent: Decimal
    cascade_seller_percent: Decimal
    minor_unit_places: int = 2

    @classmethod
    def from_provider(cls, config: ConfigProvider) -> ProfitRules:
        return cls(
            flat_seller_percent=config.get_number(keys.FLAT_SELLER_PERCENT),
            cascade_seller_percent=config.get_number(keys.CASCADE_SELLER_PERCENT),
            minor_unit_places=int(config.get_number(keys.MINOR_UNIT_PLACES)),
        )


@dataclass(frozen=True)
class SettlementRules:
    """Trigger thresholds (remaining stock %) and recompute tolerance."""

    three_tranche_t2_percent: Decimal
    three_tranche_t3_percent: Decimal
    two_tranche_t1_percent: Decimal
    two_tranche_t2_percent: Decimal
    recompute_threshold: Decimal
    low_stock_percent: Decimal
    auto_transit_hours: Decimal

    @classmethod
    def from_provider(cls, config: ConfigProvider) -> SettlementRules:
        return cls(
            three_tranche_t2_percent=config.get_number(keys.THREE_TRANCHE_T2_PERCENT),
            three_tranche_t3_percent=config.get_number(keys.THREE_TRANCHE_T3_PERCENT),
            two_tranche_t1_percent=config.get_number(keys.TWO_TRANCHE_T1_PERCENT),
            two_tranche_t2_percent=config.get_number(keys.TWO_TRANCHE_T2_PERCENT),
            recompute_threshold=config.get_number(keys.RECOMPUTE_THRESHOLD),
            low_stock_percent=config.get_number(keys.LOW_STOCK_PERCENT),
            auto_transit_hours=config.get_number(keys.AUTO_TRANSIT_HOURS),
        )

    def trigger_percent(self, tranche_count: int, tranche_number: int) -> Decimal | None:
        """Remaining-stock threshold for a tranche, or None if it has none."""
        if tranche_count == 3:
            return {
                2: self.three_tranche_t2_percent,
                3: self.three_tranche_t3_percent,
            }.get(tranche_number)
        return {
            1: self.two_tranche_t1_percent,
            2: self.two_tranche_t2_percent,
        }.get(tranche_number)


@dataclass(frozen=True)
class WholesaleTier:
    min_quantity: int
    price_with_liquor: Decimal
    price_without_liquor: Decimal

    def price(self, with_liquor: bool) -> Decimal:
        return self.price_with_liquor if with_liquor else self.price_without_liquor


@dataclass(frozen=True)
class WholesaleTierTable:
    """Tiers sorted by ascending minimum quantity."""

    tiers: tuple[WholesaleTier, ...]

    def __post_init__(self) -> None:
        if not self.tiers:
            raise ConfigurationError(keys.WHOLESALE_TIER_PREFIX, "at least one tier is required")
        minimums = [t.min_quantity for t in self.tiers]
        if minimums != sorted(set(minimums)):
            raise ConfigurationError(
                keys.WHOLESALE_TIER_PREFIX,
                f"tier minimum quantities must be strictly increasing, got {minimums}",
            )

    @property
    def minimum_quantity(self) -> int:
        return self.tiers[0].min_quantity

    @classmethod
    def from_provider(cls, config: ConfigProvider) -> WholesaleTierTable:
        tiers = [
            WholesaleTier(
                min_quantity=int(config.get_number(keys.tier_key(n, "min_quantity"))),
                price_with_liquor=config.get_number(keys.tier_key(n, "with_liquor")),
                price_without_liquor=config.get_number(keys.tier_key(n, "without_liquor")),
            )
            for n in range(1, keys.WHOLESALE_TIER_COUNT + 1)
        ]
        return cls(tiers=tuple(sorted(tiers, key=lambda t: t.min_quantity)))
