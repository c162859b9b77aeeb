"""
Stock Consumption Planner for wholesale orders.

Pure functions with deterministic behavior. No I/O.

Given a required quantity Q and the seller's batches, builds a plan in
three phases::

    Phase 1  RESERVED  INACTIVE tranches with positive stock
    Phase 2  IN_HOME   IN_HOME tranches with positive stock
    Phase 3  FORCED    residual -> needs_forced_batch

Batches are visited oldest activation first (ties by id) and tranches in
ascending number.  Each tranche contributes ``min(available, remaining)``,
so the planned total is ``min(Q, total_available)``.

Usage:
    plan = plan_consumption(
        quantity=120,
        batches=active_batches,
        tranches_by_batch={b.id: tranches_of(b) for b in active_batches},
    )
    plan.planned_quantity    # 110
    plan.forced_quantity     # 10
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Mapping, Sequence
from uuid import UUID

from consignment_kernel.domain.entities import (
    Batch,
    BatchState,
    StockSource,
    StockSourceKind,
    Tranche,
    TrancheState,
)
from consignment_kernel.logging_config import get_logger
from consignment_engines.tracer import traced_engine

logger = get_logger("engines.stock_consumption")

_PHASES: tuple[tuple[StockSourceKind, TrancheState], ...] = (
    (StockSourceKind.RESERVED, TrancheState.INACTIVE),
    (StockSourceKind.IN_HOME, TrancheState.IN_HOME),
)


@dataclass(frozen=True)
class ConsumptionPlan:
    requested_quantity: int
    sources: tuple[StockSource, ...]
    forced_quantity: int = 0
    forced_batch_id: UUID | None = None

    @property
    def needs_forced_batch(self) -> bool:
        return self.forced_quantity > 0

    @property
    def planned_quantity(self) -> int:
        """Units taken from existing tranches."""
        return sum(s.quantity for s in self.sources if s.kind != StockSourceKind.FORCED)

    @property
    def total_quantity(self) -> int:
        return sum(s.quantity for s in self.sources)

    def quantity_by_kind(self, kind: StockSourceKind) -> int:
        return sum(s.quantity for s in self.sources if s.kind == kind)

    @property
    def involved_batch_ids(self) -> tuple[UUID, ...]:
        seen: list[UUID] = []
        for s in self.sources:
            if s.kind != StockSourceKind.FORCED and s.batch_id not in seen:
                seen.append(s.batch_id)
        return tuple(seen)


def _batch_order(batch: Batch):
    return (batch.activated_at is None, batch.activated_at, str(batch.id))


@traced_engine("stock_consumption", "1.0", fingerprint_fields=("quantity",))
def plan_consumption(
    *,
    quantity: int,
    batches: Sequence[Batch],
    tranches_by_batch: Mapping[UUID, Sequence[Tranche]],
) -> ConsumptionPlan:
    """
    Plan where ``quantity`` wholesale units come from.

    Raises:
        ValueError: If quantity is not positive.
    """
    if quantity <= 0:
        raise ValueError(f"quantity must be positive, got {quantity}")

    ordered = sorted(
        (b for b in batches if b.state == BatchState.ACTIVE),
        key=_batch_order,
    )
    remaining = quantity
    sources: list[StockSource] = []

    for kind, state in _PHASES:
        for batch in ordered:
            if remaining == 0:
                break
            tranches = sorted(tranches_by_batch.get(batch.id, ()), key=lambda t: t.number)
            for tranche in tranches:
                if remaining == 0:
                    break
                if tranche.state != state or tranche.current_stock <= 0:
                    continue
                take = min(tranche.current_stock, remaining)
                sources.append(
                    StockSource(
                        tranche_id=tranche.id,
                        batch_id=batch.id,
                        tranche_number=tranche.number,
                        quantity=take,
                        kind=kind,
                    )
                )
                remaining -= take

    plan = ConsumptionPlan(
        requested_quantity=quantity,
        sources=tuple(sources),
        forced_quantity=remaining,
    )
    logger.info(
        "consumption_planned",
        extra={
            "requested_quantity": quantity,
            "reserved_quantity": plan.quantity_by_kind(StockSourceKind.RESERVED),
            "in_home_quantity": plan.quantity_by_kind(StockSourceKind.IN_HOME),
            "forced_quantity": remaining,
        },
    )
    return plan


def with_forced_batch(plan: ConsumptionPlan, forced_tranches: Sequence[Tranche]) -> ConsumptionPlan:
    """
    Record consumption from the forced batch created for the residual.

    Raises:
        ValueError: If the plan needs no forced batch, or the forced batch
            does not hold exactly the residual quantity.
    """
    if not plan.needs_forced_batch:
        raise ValueError("plan does not need a forced batch")
    if plan.forced_batch_id is not None:
        raise ValueError("forced batch already recorded on this plan")
    total = sum(t.initial_stock for t in forced_tranches)
    if total != plan.forced_quantity:
        raise ValueError(
            f"forced batch holds {total} units but the residual is {plan.forced_quantity}"
        )
    batch_ids = {t.batch_id for t in forced_tranches}
    if len(batch_ids) != 1:
        raise ValueError("forced tranches must belong to a single batch")

    forced_sources = tuple(
        StockSource(
            tranche_id=t.id,
            batch_id=t.batch_id,
            tranche_number=t.number,
            quantity=t.initial_stock,
            kind=StockSourceKind.FORCED,
        )
        for t in sorted(forced_tranches, key=lambda t: t.number)
    )
    return replace(
        plan,
        sources=plan.sources + forced_sources,
        forced_batch_id=batch_ids.pop(),
    )
