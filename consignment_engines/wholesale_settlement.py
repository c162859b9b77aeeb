"""
Wholesale Settlement Engine.

Pure functions with deterministic behavior. No I/O.

Order lifecycle::

    WholesaleOrder       PENDING -> COMPLETED
    WholesaleSettlement  PENDING -> SUCCESS

Completing an order builds its settlement by distributing the available
money (gross revenue plus retail money collected but not yet remitted on
the involved batches) in strict order:

    1. seller's outstanding debts           -> operator
    2. operator investment, existing batches -> operator
       (less what pending settlements already claimed in step 1)
    3. operator investment, forced batch     -> operator
    4. seller investment, existing batches   -> seller
    5. seller investment, forced batch       -> seller
    6. remainder is profit, split by the profit cascade

Each step takes ``min(available, owed)`` so a step can only be partly
covered once the money runs out.

Usage:
    order = register_wholesale_order(
        seller_id=seller_id, quote=quote, plan=plan,
        modality=PaymentModality.ADVANCE,
        payout_model=PayoutModel.CASCADE_SPLIT, now=now,
    )
    completed = complete_wholesale_order(order, now)
    settlement = build_wholesale_settlement(
        order=completed, existing_batches=batches, forced_batch=None,
        pending_settlements=pending, equipment_debt=debt,
        recruiter_chain=chain, rules=profit_rules, now=now,
    )
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Mapping, Sequence
from uuid import UUID, uuid4

from consignment_config.rules import ProfitRules
from consignment_kernel.domain.effects import NotificationKind, SendNotification
from consignment_kernel.domain.entities import (
    Batch,
    BatchInvestmentShare,
    EquipmentDebt,
    PaymentModality,
    PayoutModel,
    RecruiterPayout,
    Settlement,
    SettlementState,
    StockSourceKind,
    WholesaleOrder,
    WholesaleOrderState,
    WholesaleSettlement,
    WholesaleSettlementState,
)
from consignment_kernel.domain.values import ZERO, non_negative, round_money
from consignment_kernel.exceptions import (
    EntityNotFoundError,
    InvalidTransitionError,
)
from consignment_kernel.logging_config import get_logger
from consignment_engines.profit_cascade import split_profit
from consignment_engines.stock_consumption import ConsumptionPlan
from consignment_engines.tracer import traced_engine
from consignment_engines.wholesale_pricing import WholesaleQuote

logger = get_logger("engines.wholesale_settlement")


@dataclass(frozen=True)
class BatchMoneyUpdate:
    """Collection and remittance a confirmed wholesale settlement books on one batch."""

    batch_id: UUID
    collected: Decimal
    remitted: Decimal
    to_debt: Decimal = ZERO


# ---------------------------------------------------------------------------
# Order
# ---------------------------------------------------------------------------


def register_wholesale_order(
    *,
    seller_id: UUID,
    quote: WholesaleQuote,
    plan: ConsumptionPlan,
    modality: PaymentModality,
    payout_model: PayoutModel,
    now: datetime,
    order_id: UUID | None = None,
) -> WholesaleOrder:
    """
    A PENDING order from a price quote and a consumption plan.

    Raises:
        ValueError: plan and quote disagree on quantity, or the plan needs a
            forced batch that has not been recorded yet.
    """
    if plan.requested_quantity != quote.quantity:
        raise ValueError(
            f"plan quantity {plan.requested_quantity} != quoted quantity {quote.quantity}"
        )
    if plan.needs_forced_batch and plan.forced_batch_id is None:
        raise ValueError("plan needs a forced batch; record it with with_forced_batch()")
    return WholesaleOrder(
        id=order_id or uuid4(),
        seller_id=seller_id,
        unit_count=quote.quantity,
        unit_price=quote.unit_price,
        gross_revenue=quote.gross_revenue,
        with_liquor=quote.with_liquor,
        modality=modality,
        payout_model=payout_model,
        sources=plan.sources,
        forced_quantity=plan.forced_quantity,
        forced_batch_id=plan.forced_batch_id,
        registered_at=now,
    )


def complete_wholesale_order(order: WholesaleOrder, now: datetime) -> WholesaleOrder:
    """PENDING -> COMPLETED."""
    if order.state != WholesaleOrderState.PENDING:
        raise InvalidTransitionError(
            "WholesaleOrder", str(order.id), order.state.value,
            WholesaleOrderState.COMPLETED.value,
        )
    return replace(
        order,
        state=WholesaleOrderState.COMPLETED,
        completed_at=now,
        version=order.version + 1,
    )


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------


def outstanding_debts(
    pending_settlements: Sequence[Settlement],
    equipment_debt: EquipmentDebt | None,
) -> Decimal:
    """
    Pending settlement shortfalls plus equipment debt.

    Equipment debt already folded into a pending settlement (its
    ``debt_component``) is counted once, through the shortfall.
    """
    pending = [s for s in pending_settlements if s.state == SettlementState.PENDING]
    shortfalls = sum((s.shortfall for s in pending), ZERO)
    equipment = equipment_debt.total if equipment_debt is not None else ZERO
    already_in_settlements = sum((s.debt_component for s in pending), ZERO)
    return shortfalls + non_negative(equipment - already_in_settlements)


@traced_engine(
    "wholesale_settlement", "1.0",
    fingerprint_fields=("order", "existing_batches", "forced_batch", "recruiter_chain"),
)
def build_wholesale_settlement(
    *,
    order: WholesaleOrder,
    existing_batches: Sequence[Batch],
    forced_batch: Batch | None,
    pending_settlements: Sequence[Settlement] = (),
    equipment_debt: EquipmentDebt | None = None,
    recruiter_chain: Sequence[UUID] = (),
    rules: ProfitRules,
    now: datetime,
    settlement_id: UUID | None = None,
) -> WholesaleSettlement:
    """
    Distribute the money available to a completed order.

    Args:
        order: COMPLETED wholesale order.
        existing_batches: Involved (non-forced) batches in plan order.
        forced_batch: The batch created for the order's residual, if any.
        pending_settlements: The seller's PENDING settlements.
        equipment_debt: The seller's outstanding equipment debt.
        recruiter_chain: Recruiter ids, nearest first.
        rules: Profit split rules.

    Raises:
        InvalidTransitionError: order is not COMPLETED.
    """
    if order.state != WholesaleOrderState.COMPLETED:
        raise InvalidTransitionError(
            "WholesaleOrder", str(order.id), order.state.value, "build_wholesale_settlement",
            reason="order must be completed first",
        )
    places = rules.minor_unit_places

    retail_money = sum((b.unremitted for b in existing_batches), ZERO)
    total_available = order.gross_revenue + retail_money
    available = total_available

    def take(owed: Decimal) -> Decimal:
        nonlocal available
        covered = min(available, non_negative(owed))
        available -= covered
        return covered

    # 1. debts
    debts_settled = take(outstanding_debts(pending_settlements, equipment_debt))

    # 2./3. operator investment; investment a pending settlement already
    # claims was taken with the debts
    claimed: dict[UUID, Decimal] = {}
    for s in pending_settlements:
        if s.state == SettlementState.PENDING:
            claimed[s.batch_id] = claimed.get(s.batch_id, ZERO) + s.investment_component
    operator_existing: dict[UUID, Decimal] = {}
    for batch in existing_batches:
        operator_existing[batch.id] = take(
            batch.operator_investment - batch.money_remitted - claimed.get(batch.id, ZERO)
        )
    operator_forced = take(forced_batch.operator_investment) if forced_batch else ZERO

    # 4./5. seller investment
    seller_existing: dict[UUID, Decimal] = {}
    for batch in existing_batches:
        seller_existing[batch.id] = take(batch.seller_investment)
    seller_forced = take(forced_batch.seller_investment) if forced_batch else ZERO

    # 6. profit
    distribution = split_profit(available, order.payout_model, recruiter_chain, rules)

    shares = [
        BatchInvestmentShare(
            batch_id=batch.id,
            operator_investment=operator_existing[batch.id],
            seller_investment=seller_existing[batch.id],
        )
        for batch in existing_batches
    ]
    if forced_batch is not None:
        shares.append(
            BatchInvestmentShare(
                batch_id=forced_batch.id,
                operator_investment=operator_forced,
                seller_investment=seller_forced,
                is_forced=True,
            )
        )

    operator_investment_existing = sum(operator_existing.values(), ZERO)
    seller_investment_existing = sum(seller_existing.values(), ZERO)
    operator_total = round_money(
        debts_settled + operator_investment_existing + operator_forced
        + distribution.operator_share,
        places,
    )
    seller_total = round_money(
        seller_investment_existing + seller_forced + distribution.seller_share,
        places,
    )

    settlement = WholesaleSettlement(
        id=settlement_id or uuid4(),
        order_id=order.id,
        seller_id=order.seller_id,
        gross_revenue=order.gross_revenue,
        retail_money_available=retail_money,
        total_available=total_available,
        debts_settled=debts_settled,
        operator_investment_existing=operator_investment_existing,
        operator_investment_forced=operator_forced,
        seller_investment_existing=seller_investment_existing,
        seller_investment_forced=seller_forced,
        net_profit=distribution.profit,
        operator_profit=distribution.operator_share,
        seller_profit=distribution.seller_share,
        operator_total=operator_total,
        seller_total=seller_total,
        recruiter_payouts=tuple(
            RecruiterPayout(level=r.level, recruiter_id=r.recruiter_id, amount=r.amount)
            for r in distribution.recruiter_payouts
        ),
        batch_shares=tuple(shares),
        affected_tranches=order.sources,
        involved_batch_ids=order.involved_batch_ids,
        forced_batch_id=order.forced_batch_id,
        created_at=now,
    )
    logger.info(
        "wholesale_settlement_built",
        extra={
            "order_id": str(order.id),
            "total_available": str(total_available),
            "debts_settled": str(debts_settled),
            "operator_total": str(operator_total),
            "seller_total": str(seller_total),
            "net_profit": str(distribution.profit),
        },
    )
    return settlement


def distribute_operator_total(
    pending_settlements: Sequence[Settlement],
    operator_total: Decimal,
) -> list[tuple[Settlement, Decimal]]:
    """
    Hand the operator total to PENDING settlements in order.

    Each settlement receives at most its shortfall; what is left after the
    last one stays with the wholesale settlement.
    """
    remaining = operator_total
    allocations: list[tuple[Settlement, Decimal]] = []
    for settlement in pending_settlements:
        if settlement.state != SettlementState.PENDING:
            continue
        amount = min(remaining, settlement.shortfall)
        allocations.append((settlement, amount))
        remaining -= amount
    return allocations


def allocate_batch_money(
    order: WholesaleOrder,
    batches: Sequence[Batch],
    operator_total: Decimal,
    *,
    earmarked: Mapping[UUID, Decimal] | None = None,
    debt_total: Decimal = ZERO,
) -> list[BatchMoneyUpdate]:
    """
    Per-batch collection, remittance and equipment-debt money for a
    confirmed order.

    Each batch collects ``units taken from it x unit price``.  Of the
    operator total, ``debt_total`` went to the seller's equipment debt and
    the rest is remittance.  Remittance is booked first on the batches it
    is ``earmarked`` for (their operator investment, or the cover of a
    pending settlement), then batch by batch; the debt money is booked
    last.  Nothing is booked beyond what a batch holds unremitted.
    """
    earmarked = earmarked or {}
    units: dict[UUID, int] = {}
    for source in order.sources:
        units[source.batch_id] = units.get(source.batch_id, 0) + source.quantity

    collected = {b.id: Decimal(units.get(b.id, 0)) * order.unit_price for b in batches}
    headroom = {b.id: non_negative(b.unremitted + collected[b.id]) for b in batches}
    remitted = {b.id: ZERO for b in batches}
    to_debt = {b.id: ZERO for b in batches}

    remaining = non_negative(operator_total - debt_total)
    for batch in batches:
        amount = min(remaining, earmarked.get(batch.id, ZERO), headroom[batch.id])
        remitted[batch.id] += amount
        headroom[batch.id] -= amount
        remaining -= amount
    for batch in batches:
        amount = min(remaining, headroom[batch.id])
        remitted[batch.id] += amount
        headroom[batch.id] -= amount
        remaining -= amount

    remaining_debt = min(debt_total, operator_total)
    for batch in batches:
        amount = min(remaining_debt, headroom[batch.id])
        to_debt[batch.id] = amount
        headroom[batch.id] -= amount
        remaining_debt -= amount

    return [
        BatchMoneyUpdate(
            batch_id=batch.id,
            collected=collected[batch.id],
            remitted=remitted[batch.id],
            to_debt=to_debt[batch.id],
        )
        for batch in batches
    ]


def confirm_wholesale_settlement(
    settlement: WholesaleSettlement,
    now: datetime,
    closed_settlement_ids: Sequence[UUID] = (),
) -> tuple[WholesaleSettlement, SendNotification]:
    """PENDING -> SUCCESS, recording the settlements it closed."""
    if settlement.state != WholesaleSettlementState.PENDING:
        raise InvalidTransitionError(
            "WholesaleSettlement", str(settlement.id), settlement.state.value,
            WholesaleSettlementState.SUCCESS.value,
        )
    confirmed = replace(
        settlement,
        state=WholesaleSettlementState.SUCCESS,
        closed_settlement_ids=tuple(closed_settlement_ids),
        confirmed_at=now,
        version=settlement.version + 1,
    )
    notice = SendNotification(
        NotificationKind.WHOLESALE_SETTLEMENT_SUCCESS,
        settlement.seller_id,
        {
            "wholesale_settlement_id": str(settlement.id),
            "order_id": str(settlement.order_id),
            "operator_total": str(settlement.operator_total),
            "seller_total": str(settlement.seller_total),
        },
    )
    return confirmed, notice


def mark_payout_transferred(
    settlement: WholesaleSettlement,
    level: int,
    now: datetime,
) -> WholesaleSettlement:
    """
    Stamp one recruiter payout as transferred.

    Raises:
        InvalidTransitionError: settlement not confirmed, or payout already
            transferred.
        EntityNotFoundError: no payout at ``level``.
    """
    if settlement.state != WholesaleSettlementState.SUCCESS:
        raise InvalidTransitionError(
            "WholesaleSettlement", str(settlement.id), settlement.state.value,
            "mark_payout_transferred", reason="settlement not confirmed",
        )
    payouts = list(settlement.recruiter_payouts)
    for i, payout in enumerate(payouts):
        if payout.level != level:
            continue
        if payout.transferred:
            raise InvalidTransitionError(
                "RecruiterPayout", f"{settlement.id}:{level}", "transferred", "transferred",
            )
        payouts[i] = replace(payout, transferred=True, transferred_at=now)
        return replace(
            settlement,
            recruiter_payouts=tuple(payouts),
            version=settlement.version + 1,
        )
    raise EntityNotFoundError("RecruiterPayout", f"{settlement.id}:{level}")


def forced_units(order: WholesaleOrder) -> int:
    return sum(s.quantity for s in order.sources if s.kind == StockSourceKind.FORCED)
