"""
Batch issuance planning -- tranche split and investment split.

Pure functions with deterministic behavior. No I/O.

A batch of U units is split into ``n = 2 if U <= T else 3`` tranches
(T = ``lots.three_tranche_threshold``).  Each tranche receives ``U // n``
units and the first ``U % n`` tranches one extra, so the quantities always
sum to U and never differ by more than one unit.

The investment is ``U x perceived_unit_cost``; the seller funds
``investment.seller_percent`` of it and the operator the remainder.

Usage:
    from consignment_engines.tranche_split import plan_batch

    plan = plan_batch(
        seller_id=seller_id,
        unit_count=100,
        payout_model=PayoutModel.FLAT_SPLIT,
        rules=LotRules.from_provider(config),
        now=clock.now(),
    )
    plan.batch.tranche_count  # 3
    [t.initial_stock for t in plan.tranches]  # [34, 33, 33]
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from consignment_config.rules import LotRules
from consignment_kernel.domain.entities import Batch, PayoutModel, Tranche
from consignment_kernel.domain.values import percent_of, round_money
from consignment_engines.tracer import traced_engine


@dataclass(frozen=True)
class InvestmentSplit:
    total: Decimal
    seller: Decimal
    operator: Decimal


@dataclass(frozen=True)
class BatchPlan:
    """A new batch in CREATED state with its INACTIVE tranches."""

    batch: Batch
    tranches: tuple[Tranche, ...]


def tranche_count_for(unit_count: int, three_tranche_threshold: int) -> int:
    return 2 if unit_count <= three_tranche_threshold else 3


def split_units(unit_count: int, three_tranche_threshold: int) -> tuple[int, ...]:
    """
    Split ``unit_count`` into 2 or 3 tranche quantities.

    Raises:
        ValueError: If unit_count is not positive.
    """
    if unit_count <= 0:
        raise ValueError(f"unit_count must be positive, got {unit_count}")
    n = tranche_count_for(unit_count, three_tranche_threshold)
    base, extra = divmod(unit_count, n)
    return tuple(base + 1 if i < extra else base for i in range(n))


def split_investment(
    unit_count: int,
    perceived_unit_cost: Decimal,
    seller_percent: Decimal,
) -> InvestmentSplit:
    """Seller and operator investment; the operator absorbs any rounding."""
    total = round_money(Decimal(unit_count) * perceived_unit_cost)
    seller = round_money(percent_of(total, seller_percent))
    return InvestmentSplit(total=total, seller=seller, operator=total - seller)


@traced_engine("tranche_split", "1.0", fingerprint_fields=("unit_count", "payout_model"))
def plan_batch(
    *,
    seller_id: UUID,
    unit_count: int,
    payout_model: PayoutModel,
    rules: LotRules,
    now: datetime | None = None,
    batch_id: UUID | None = None,
    is_forced: bool = False,
    origin_wholesale_order_id: UUID | None = None,
) -> BatchPlan:
    """Build a CREATED batch and its INACTIVE tranches."""
    quantities = split_units(unit_count, rules.three_tranche_threshold)
    investment = split_investment(
        unit_count, rules.perceived_unit_cost, rules.seller_investment_percent,
    )
    batch_id = batch_id or uuid4()

    batch = Batch(
        id=batch_id,
        seller_id=seller_id,
        unit_count=unit_count,
        tranche_count=len(quantities),
        payout_model=payout_model,
        total_investment=investment.total,
        seller_investment=investment.seller,
        operator_investment=investment.operator,
        is_forced=is_forced,
        origin_wholesale_order_id=origin_wholesale_order_id,
        created_at=now,
    )
    tranches = tuple(
        Tranche(
            id=uuid4(),
            batch_id=batch_id,
            number=number,
            initial_stock=quantity,
            current_stock=quantity,
        )
        for number, quantity in enumerate(quantities, start=1)
    )
    return BatchPlan(batch=batch, tranches=tranches)
