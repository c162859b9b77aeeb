"""
Settlement Engine -- trigger evaluation and the settlement state machine.

Pure functions with deterministic behavior. No I/O.

States::

    INACTIVE -> PENDING -> SUCCESS
                       \\-> CLOSED_BY_WHOLESALE

SUCCESS and CLOSED_BY_WHOLESALE are terminal: every further mutation raises
``InvalidTransitionError``.

Concepts per tranche::

    3 tranches: T1 INVESTMENT_ONLY, T2 PROFIT_ONLY, T3 PROFIT_ONLY
    2 tranches: T1 MIXED,           T2 PROFIT_ONLY

Triggers (remaining stock %, inclusive)::

    3 tranches: T1 fires on investment recovered (collected >= operator
                investment), T2 at <= 10%, T3 at <= 20%
    2 tranches: T1 at <= 10%, T2 at <= 20%

Transitions that imply follow-up work return it as effects
(``ReleaseNextTranche``, ``ArmFinalSettlement``, ``RecordRemittance``,
``SendNotification`` ...).  The caller applies them.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Mapping, Sequence
from uuid import UUID, uuid4

from consignment_config.rules import SettlementRules
from consignment_kernel.domain.effects import (
    ArmFinalSettlement,
    Effect,
    NotificationKind,
    RecordEquipmentDebtPaid,
    RecordRemittance,
    ReevaluateSellerTriggers,
    ReleaseNextTranche,
    SendNotification,
)
from consignment_kernel.domain.entities import (
    Batch,
    BatchState,
    Settlement,
    SettlementConcept,
    SettlementState,
    Tranche,
    TrancheState,
)
from consignment_kernel.domain.values import ZERO, non_negative
from consignment_kernel.exceptions import (
    AmountBelowExpectedError,
    InvalidTransitionError,
)
from consignment_engines.expected_amount import ExpectedAmountBreakdown


@dataclass(frozen=True)
class SettlementTransition:
    settlement: Settlement
    effects: tuple[Effect, ...] = ()
    applied_amount: Decimal = ZERO
    debt_applied: Decimal = ZERO


def concept_for(tranche_count: int, tranche_number: int) -> SettlementConcept:
    if tranche_number == 1:
        if tranche_count == 3:
            return SettlementConcept.INVESTMENT_ONLY
        return SettlementConcept.MIXED
    return SettlementConcept.PROFIT_ONLY


def build_settlements(batch: Batch, tranches: Sequence[Tranche]) -> tuple[Settlement, ...]:
    """One INACTIVE settlement per tranche, created at batch activation."""
    return tuple(
        Settlement(
            id=uuid4(),
            tranche_id=t.id,
            batch_id=batch.id,
            seller_id=batch.seller_id,
            tranche_number=t.number,
            concept=concept_for(batch.tranche_count, t.number),
        )
        for t in sorted(tranches, key=lambda t: t.number)
    )


def investment_recovered(batch: Batch) -> bool:
    return batch.money_collected >= batch.operator_investment


def check_trigger(
    settlement: Settlement,
    tranche: Tranche,
    batch: Batch,
    rules: SettlementRules,
) -> bool:
    """
    Should this settlement become PENDING now?

    Only an INACTIVE settlement whose tranche has left INACTIVE can fire.
    Deferral while the seller already has a PENDING settlement is the
    caller's concern.
    """
    if settlement.state != SettlementState.INACTIVE:
        return False
    if tranche.state == TrancheState.INACTIVE:
        return False
    if batch.tranche_count == 3 and tranche.number == 1:
        return investment_recovered(batch)
    threshold = rules.trigger_percent(batch.tranche_count, tranche.number)
    if threshold is None:
        return False
    return tranche.stock_percentage <= threshold


def _guard_not_terminal(settlement: Settlement, requested: str) -> None:
    if settlement.is_terminal:
        raise InvalidTransitionError(
            "Settlement", str(settlement.id), settlement.state.value, requested,
            reason="settlement is closed",
        )


def _with_breakdown(settlement: Settlement, breakdown: ExpectedAmountBreakdown) -> Settlement:
    expected = breakdown.total
    return replace(
        settlement,
        expected_amount=expected,
        investment_component=breakdown.investment,
        profit_component=breakdown.profit,
        debt_component=breakdown.debt,
        shortfall=non_negative(
            expected - settlement.amount_covered_by_wholesale - settlement.received_amount
        ),
    )


def activate_settlement(
    settlement: Settlement,
    breakdown: ExpectedAmountBreakdown,
    now: datetime,
    *,
    investment_recovered_notice: bool = False,
) -> SettlementTransition:
    """INACTIVE -> PENDING with the expected amount set."""
    if settlement.state != SettlementState.INACTIVE:
        raise InvalidTransitionError(
            "Settlement", str(settlement.id), settlement.state.value,
            SettlementState.PENDING.value,
        )
    activated = replace(
        _with_breakdown(settlement, breakdown),
        state=SettlementState.PENDING,
        pending_at=now,
        version=settlement.version + 1,
    )
    effects: list[Effect] = []
    if investment_recovered_notice:
        effects.append(
            SendNotification(
                NotificationKind.INVESTMENT_RECOVERED,
                settlement.seller_id,
                {"batch_id": str(settlement.batch_id)},
            )
        )
    effects.append(
        SendNotification(
            NotificationKind.SETTLEMENT_PENDING,
            settlement.seller_id,
            {
                "settlement_id": str(settlement.id),
                "batch_id": str(settlement.batch_id),
                "tranche_number": settlement.tranche_number,
                "expected_amount": str(activated.expected_amount),
            },
        )
    )
    return SettlementTransition(settlement=activated, effects=tuple(effects))


def recompute_expected_amount(
    settlement: Settlement,
    breakdown: ExpectedAmountBreakdown,
    threshold: Decimal,
) -> Settlement | None:
    """
    Apply a freshly computed breakdown.

    Returns None (nothing to write) when the total moved by less than
    ``threshold``, which makes repeated recomputation idempotent.
    """
    _guard_not_terminal(settlement, "recompute_expected_amount")
    if abs(breakdown.total - settlement.expected_amount) < threshold:
        return None
    return replace(
        _with_breakdown(settlement, breakdown),
        version=settlement.version + 1,
    )


def _follow_up(
    settlement: Settlement,
    next_tranche: Tranche | None,
    is_last_tranche: bool,
    wholesale_settlement_id: UUID | None = None,
) -> list[Effect]:
    effects: list[Effect] = []
    if is_last_tranche:
        effects.append(ArmFinalSettlement(settlement.batch_id))
    elif next_tranche is not None and next_tranche.state == TrancheState.INACTIVE:
        effects.append(
            ReleaseNextTranche(settlement.batch_id, next_tranche.id, wholesale_settlement_id)
        )
    effects.append(ReevaluateSellerTriggers(settlement.seller_id))
    return effects


def uncovered_debt(settlement: Settlement) -> Decimal:
    """Debt component not yet paid; wholesale cover pays the debt first."""
    return non_negative(settlement.debt_component - settlement.amount_covered_by_wholesale)


def confirm_settlement(
    settlement: Settlement,
    received: Decimal,
    now: datetime,
    *,
    next_tranche: Tranche | None,
    is_last_tranche: bool,
) -> SettlementTransition:
    """
    PENDING -> SUCCESS.

    The part of ``received`` that pays the debt component is reported as
    an equipment-debt payment; the rest is remitted to the batch.

    Raises:
        InvalidTransitionError: settlement is not PENDING.
        AmountBelowExpectedError: ``received`` does not cover
            ``expected - covered``.
    """
    _guard_not_terminal(settlement, SettlementState.SUCCESS.value)
    if settlement.state != SettlementState.PENDING:
        raise InvalidTransitionError(
            "Settlement", str(settlement.id), settlement.state.value,
            SettlementState.SUCCESS.value,
        )
    if received < settlement.amount_due:
        raise AmountBelowExpectedError(str(settlement.id), settlement.amount_due, received)

    confirmed = replace(
        settlement,
        state=SettlementState.SUCCESS,
        received_amount=received,
        shortfall=ZERO,
        success_at=now,
        version=settlement.version + 1,
    )
    debt_paid = uncovered_debt(settlement)
    effects: list[Effect] = [
        RecordRemittance(settlement.batch_id, non_negative(received - debt_paid)),
    ]
    if debt_paid > ZERO:
        effects.append(
            RecordEquipmentDebtPaid(settlement.seller_id, debt_paid, settlement.batch_id)
        )
    effects.append(
        SendNotification(
            NotificationKind.SETTLEMENT_SUCCESS,
            settlement.seller_id,
            {
                "settlement_id": str(settlement.id),
                "batch_id": str(settlement.batch_id),
                "received_amount": str(received),
                "debt_component": str(settlement.debt_component),
            },
        )
    )
    effects.extend(_follow_up(settlement, next_tranche, is_last_tranche))
    return SettlementTransition(
        settlement=confirmed, effects=tuple(effects), debt_applied=debt_paid,
    )


def close_by_wholesale(
    settlement: Settlement,
    wholesale_settlement_id: UUID,
    amount: Decimal,
    now: datetime,
    *,
    next_tranche: Tranche | None,
    is_last_tranche: bool,
) -> SettlementTransition:
    """
    Cover a PENDING settlement with money from a wholesale settlement.

    Applies ``min(amount, shortfall)``, paying the debt component first.
    When nothing remains due the settlement becomes CLOSED_BY_WHOLESALE and
    the next tranche is released as after a normal success; otherwise it
    stays PENDING with a reduced amount due.  The wholesale link is
    recorded either way.

    The debt share is reported through ``RecordEquipmentDebtPaid`` without
    a batch: the wholesale settlement books its batches itself.
    """
    _guard_not_terminal(settlement, SettlementState.CLOSED_BY_WHOLESALE.value)
    if settlement.state != SettlementState.PENDING:
        raise InvalidTransitionError(
            "Settlement", str(settlement.id), settlement.state.value,
            SettlementState.CLOSED_BY_WHOLESALE.value,
        )
    if amount < ZERO:
        raise ValueError(f"covered amount cannot be negative, got {amount}")

    applied = min(amount, settlement.shortfall)
    debt_applied = min(applied, uncovered_debt(settlement))
    remaining = settlement.shortfall - applied
    covered = replace(
        settlement,
        amount_covered_by_wholesale=settlement.amount_covered_by_wholesale + applied,
        shortfall=remaining,
        closed_by_wholesale_settlement_id=wholesale_settlement_id,
        version=settlement.version + 1,
    )
    effects: list[Effect] = []
    if debt_applied > ZERO:
        effects.append(RecordEquipmentDebtPaid(settlement.seller_id, debt_applied))
    if remaining > ZERO:
        return SettlementTransition(
            settlement=covered, effects=tuple(effects),
            applied_amount=applied, debt_applied=debt_applied,
        )

    closed = replace(covered, state=SettlementState.CLOSED_BY_WHOLESALE, success_at=now)
    effects.extend(_follow_up(settlement, next_tranche, is_last_tranche, wholesale_settlement_id))
    return SettlementTransition(
        settlement=closed, effects=tuple(effects),
        applied_amount=applied, debt_applied=debt_applied,
    )


def rebase_after_wholesale(
    settlement: Settlement,
    breakdown: ExpectedAmountBreakdown,
) -> Settlement:
    """
    Restate a partly covered PENDING settlement against the books.

    Once the wholesale money is booked (remittance on the batch, payment
    on the equipment debt) a fresh breakdown already reflects the cover,
    so the settlement takes that breakdown as its expected amount and
    drops ``amount_covered_by_wholesale`` back to zero.  No recompute
    threshold applies.
    """
    if settlement.state != SettlementState.PENDING:
        raise InvalidTransitionError(
            "Settlement", str(settlement.id), settlement.state.value,
            SettlementState.PENDING.value, reason="only a pending settlement is rebased",
        )
    uncovered = replace(settlement, amount_covered_by_wholesale=ZERO)
    return replace(_with_breakdown(uncovered, breakdown), version=settlement.version + 1)


def select_active_settlement(
    settlements: Iterable[Settlement],
    batches: Mapping[UUID, Batch],
) -> Settlement | None:
    """
    The one settlement of a seller that carries equipment debt.

    The PENDING settlement if any; otherwise the INACTIVE settlement with
    the lowest tranche number, ties broken by batch activation time and
    then batch id.  Settlements of batches that are not ACTIVE are ignored.
    """
    candidates = [
        s for s in settlements
        if s.batch_id in batches and batches[s.batch_id].state == BatchState.ACTIVE
    ]
    pending = [s for s in candidates if s.state == SettlementState.PENDING]
    if pending:
        return min(pending, key=lambda s: (s.pending_at is None, s.pending_at, str(s.id)))

    inactive = [s for s in candidates if s.state == SettlementState.INACTIVE]
    if not inactive:
        return None

    def sort_key(s: Settlement):
        batch = batches[s.batch_id]
        activated = batch.activated_at
        return (s.tranche_number, activated is None, activated, str(batch.id))

    return min(inactive, key=sort_key)
