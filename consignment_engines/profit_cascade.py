"""
Profit Cascade Calculator.

Pure functions with deterministic behavior. No I/O.

Splits the profit of a batch (or of a wholesale order) between the seller,
the seller's recruiter chain and the operator.

Flat split (``FLAT_SPLIT``)::

    seller   = profit * P          P = profit.flat_seller_percent (60)
    operator = profit - seller

Cascade (``CASCADE_SPLIT``)::

    seller    = profit * S         S = profit.cascade_seller_percent (50)
    level 1   = seller / 2
    level k   = level (k-1) / 2
    operator  = level N            (last recruiter's amount)
    operator  = profit * S         (empty chain)

With S = 50 the exact shares always sum to the profit.  Arithmetic is exact;
only the final amounts are rounded half-up to the minor unit, and the
operator absorbs the rounding residue so that

    seller + sum(recruiters) + operator == profit

holds exactly for every chain length.

Usage:
    from consignment_engines.profit_cascade import calculate_profit_distribution

    dist = calculate_profit_distribution(
        proceeds=Decimal("300000"),
        investment=Decimal("240000"),
        payout_model=PayoutModel.CASCADE_SPLIT,
        recruiter_chain=[r1, r2],
        rules=ProfitRules.from_provider(config),
    )
    dist.seller_share      # 30000.00
    dist.recruiter_payouts # (15000.00, 7500.00)
    dist.operator_share    # 7500.00
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from consignment_config.rules import ProfitRules
from consignment_kernel.domain.entities import PayoutModel
from consignment_kernel.domain.values import ZERO, percent_of, round_money
from consignment_kernel.logging_config import get_logger
from consignment_engines.tracer import traced_engine

logger = get_logger("engines.profit_cascade")

_HALF = Decimal("0.5")


@dataclass(frozen=True)
class RecruiterShare:
    level: int
    recruiter_id: UUID
    amount: Decimal


@dataclass(frozen=True)
class ProfitDistribution:
    """
    Result of a profit split.

    Attributes:
        profit: Proceeds minus investment (zero when there is no profit).
        seller_share: Amount kept by the seller.
        operator_share: Amount owed to the operator.
        recruiter_payouts: Per-level amounts, nearest recruiter first.
    """

    profit: Decimal
    seller_share: Decimal
    operator_share: Decimal
    recruiter_payouts: tuple[RecruiterShare, ...] = ()

    @property
    def has_profit(self) -> bool:
        return self.profit > ZERO

    @property
    def recruiter_total(self) -> Decimal:
        return sum((r.amount for r in self.recruiter_payouts), ZERO)

    @property
    def total(self) -> Decimal:
        return self.seller_share + self.recruiter_total + self.operator_share


NO_PROFIT = ProfitDistribution(profit=ZERO, seller_share=ZERO, operator_share=ZERO)


def split_profit(
    profit: Decimal,
    payout_model: PayoutModel,
    recruiter_chain: Sequence[UUID],
    rules: ProfitRules,
) -> ProfitDistribution:
    """
    Split an already-computed profit.

    Args:
        profit: The amount to split. Zero or negative yields NO_PROFIT.
        payout_model: FLAT_SPLIT ignores the chain.
        recruiter_chain: Recruiter ids, nearest first.
        rules: Percentages and minor unit.
    """
    places = rules.minor_unit_places
    profit = round_money(profit, places)
    if profit <= ZERO:
        return NO_PROFIT

    if payout_model == PayoutModel.FLAT_SPLIT:
        seller = round_money(percent_of(profit, rules.flat_seller_percent), places)
        return ProfitDistribution(
            profit=profit,
            seller_share=seller,
            operator_share=profit - seller,
        )

    seller_exact = percent_of(profit, rules.cascade_seller_percent)
    seller = round_money(seller_exact, places)

    payouts: list[RecruiterShare] = []
    level_exact = seller_exact
    for level, recruiter_id in enumerate(recruiter_chain, start=1):
        level_exact = level_exact * _HALF
        payouts.append(
            RecruiterShare(
                level=level,
                recruiter_id=recruiter_id,
                amount=round_money(level_exact, places),
            )
        )

    distributed = seller + sum((p.amount for p in payouts), ZERO)
    operator = profit - distributed

    exact_operator = level_exact if payouts else seller_exact
    residue = operator - exact_operator
    if residue:
        logger.debug(
            "cascade_rounding_residue",
            extra={"residue": str(residue), "levels": len(payouts)},
        )

    return ProfitDistribution(
        profit=profit,
        seller_share=seller,
        operator_share=operator,
        recruiter_payouts=tuple(payouts),
    )


@traced_engine(
    "profit_cascade", "1.0",
    fingerprint_fields=("proceeds", "investment", "payout_model", "recruiter_chain"),
)
def calculate_profit_distribution(
    *,
    proceeds: Decimal,
    investment: Decimal,
    payout_model: PayoutModel,
    recruiter_chain: Sequence[UUID] = (),
    rules: ProfitRules,
) -> ProfitDistribution:
    """Profit exists only when ``proceeds > investment``."""
    if proceeds <= investment:
        return NO_PROFIT
    return split_profit(proceeds - investment, payout_model, recruiter_chain, rules)
