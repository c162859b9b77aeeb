"""
Final mini-settlement of a batch.

Pure functions. No I/O.

When the last tranche's settlement succeeds, the seller still holds that
tranche's remaining stock.  The final settlement collects the money from
those last sales:

    INACTIVE --arm--> INACTIVE (armed) --stock hits 0--> PENDING --> SUCCESS

Expected amount = ``collected - remitted - money_to_debt - pending_profit``
floored at zero, where ``pending_profit`` is the profit still owed on PENDING
settlements of the batch (that money is collected through them instead).
Success finalizes the last tranche and the batch.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from consignment_kernel.domain.effects import (
    Effect,
    FinalizeBatch,
    FinalizeTranche,
    NotificationKind,
    RecordRemittance,
    SendNotification,
)
from consignment_kernel.domain.entities import (
    Batch,
    FinalSettlement,
    FinalSettlementState,
    Tranche,
)
from consignment_kernel.domain.values import non_negative, round_money
from consignment_kernel.exceptions import (
    AmountBelowExpectedError,
    InvalidTransitionError,
)


@dataclass(frozen=True)
class FinalSettlementTransition:
    final_settlement: FinalSettlement
    effects: tuple[Effect, ...] = ()


def build_final_settlement(batch: Batch, last_tranche: Tranche) -> FinalSettlement:
    return FinalSettlement(
        id=uuid4(),
        batch_id=batch.id,
        tranche_id=last_tranche.id,
        seller_id=batch.seller_id,
    )


def arm(final: FinalSettlement) -> FinalSettlement:
    """Mark the final settlement as reachable (last tranche settlement succeeded)."""
    if final.state != FinalSettlementState.INACTIVE or final.armed:
        raise InvalidTransitionError(
            "FinalSettlement", str(final.id), final.state.value, "arm",
            reason="already armed" if final.armed else None,
        )
    return replace(final, armed=True, version=final.version + 1)


def should_activate(final: FinalSettlement, last_tranche: Tranche) -> bool:
    return (
        final.state == FinalSettlementState.INACTIVE
        and final.armed
        and last_tranche.id == final.tranche_id
        and last_tranche.current_stock == 0
    )


def compute_final_expected(
    batch: Batch,
    pending_profit: Decimal,
    minor_unit_places: int = 2,
) -> Decimal:
    return round_money(
        non_negative(batch.unremitted - pending_profit),
        minor_unit_places,
    )


def activate_final_settlement(
    final: FinalSettlement,
    expected: Decimal,
    now: datetime,
) -> FinalSettlementTransition:
    """Armed INACTIVE -> PENDING."""
    if final.state != FinalSettlementState.INACTIVE or not final.armed:
        raise InvalidTransitionError(
            "FinalSettlement", str(final.id), final.state.value,
            FinalSettlementState.PENDING.value,
            reason=None if final.armed else "not armed",
        )
    activated = replace(
        final,
        state=FinalSettlementState.PENDING,
        expected_amount=expected,
        pending_at=now,
        version=final.version + 1,
    )
    notice = SendNotification(
        NotificationKind.FINAL_SETTLEMENT_PENDING,
        final.seller_id,
        {
            "final_settlement_id": str(final.id),
            "batch_id": str(final.batch_id),
            "expected_amount": str(expected),
        },
    )
    return FinalSettlementTransition(final_settlement=activated, effects=(notice,))


def confirm_final_settlement(
    final: FinalSettlement,
    received: Decimal,
    now: datetime,
) -> FinalSettlementTransition:
    """PENDING -> SUCCESS; finalizes the last tranche and the batch."""
    if final.state != FinalSettlementState.PENDING:
        raise InvalidTransitionError(
            "FinalSettlement", str(final.id), final.state.value,
            FinalSettlementState.SUCCESS.value,
        )
    if received < final.expected_amount:
        raise AmountBelowExpectedError(str(final.id), final.expected_amount, received)
    confirmed = replace(
        final,
        state=FinalSettlementState.SUCCESS,
        received_amount=received,
        success_at=now,
        version=final.version + 1,
    )
    effects: tuple[Effect, ...] = (
        RecordRemittance(final.batch_id, received),
        FinalizeTranche(final.tranche_id),
        FinalizeBatch(final.batch_id),
        SendNotification(
            NotificationKind.SETTLEMENT_SUCCESS,
            final.seller_id,
            {
                "final_settlement_id": str(final.id),
                "batch_id": str(final.batch_id),
                "received_amount": str(received),
            },
        ),
    )
    return FinalSettlementTransition(final_settlement=confirmed, effects=effects)
