"""
SettlementService -- admin-facing settlement operations.

Responsibility:
    Trigger evaluation, settlement confirmation, final mini-settlement
    confirmation and expected-amount recompute, each as one transaction.
    Effects returned by the SettlementEngine (release next tranche, arm the
    final settlement, remittance, re-evaluate deferred triggers) are applied
    by the coordinator before commit.

Architecture position:
    Services -- imperative shell over ``consignment_engines.settlement`` and
    ``consignment_engines.final_settlement``.

Invariants enforced:
    - A settlement is confirmed only with ``received >= expected - covered``.
    - SUCCESS and CLOSED_BY_WHOLESALE are terminal.
    - Recompute is idempotent: a second run with unchanged inputs writes
      nothing.

Failure modes:
    - AmountBelowExpectedError, InvalidTransitionError, VersionConflictError,
      EntityNotFoundError; all roll the operation back.

Usage:
    service = SettlementService(session, collaborators, clock=clock)
    settlement = service.active_settlement(seller_id)
    service.confirm_settlement(settlement.id, Decimal("120000"))
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from consignment_engines import final_settlement as final_engine
from consignment_engines.batch_lifecycle import next_inactive_tranche
from consignment_engines.settlement import confirm_settlement, select_active_settlement
from consignment_kernel.domain.entities import FinalSettlement, Settlement
from consignment_kernel.domain.values import to_decimal
from consignment_kernel.logging_config import get_logger
from consignment_services.base import ConsignmentService

logger = get_logger("services.settlement_service")


class SettlementService(ConsignmentService):
    """Settlement ("cuadre") lifecycle."""

    def active_settlement(self, seller_id: UUID) -> Settlement | None:
        """The seller's PENDING settlement, else the next INACTIVE one (read-only)."""
        settlements = self._repos.settlements.list_by_seller(seller_id)
        batches = self._repos.batches.get_many({s.batch_id for s in settlements})
        return select_active_settlement(settlements, batches)

    def evaluate_triggers(self, seller_id: UUID) -> Settlement | None:
        """Activate the seller's next settlement if its trigger holds."""
        with self._operation("evaluate_triggers", seller_id=seller_id) as op:
            return op.evaluate_triggers(seller_id)

    def confirm_settlement(self, settlement_id: UUID, received: Decimal) -> Settlement:
        """
        PENDING -> SUCCESS.

        Records the remittance (less the equipment-debt component), then
        releases the next tranche or, for the batch's last tranche, arms the
        final mini-settlement.  Deferred triggers of the seller are
        re-evaluated.

        Raises:
            AmountBelowExpectedError: ``received`` below the amount due.
            InvalidTransitionError: settlement is not PENDING.
        """
        received = to_decimal(received)
        settlement = self._repos.settlements.get(settlement_id)
        with self._operation(
            "confirm_settlement",
            seller_id=settlement.seller_id,
            batch_id=settlement.batch_id,
        ) as op:
            settlement = self._repos.settlements.get(settlement_id)
            batch = self._repos.batches.get(settlement.batch_id)
            tranches = self._repos.tranches.list_by_batch(batch.id)
            transition = confirm_settlement(
                settlement,
                received,
                op.now,
                next_tranche=next_inactive_tranche(tranches, settlement.tranche_number),
                is_last_tranche=settlement.tranche_number == batch.tranche_count,
            )
            confirmed = self._repos.settlements.save(transition.settlement, settlement.version)
            logger.info(
                "settlement_confirmed",
                extra={
                    "settlement_id": str(settlement_id),
                    "expected_amount": str(settlement.expected_amount),
                    "received_amount": str(received),
                },
            )
            op.apply(transition.effects)
            return confirmed

    def confirm_final_settlement(self, batch_id: UUID, received: Decimal) -> FinalSettlement:
        """
        Final mini-settlement PENDING -> SUCCESS; finalizes the last tranche
        and the batch.
        """
        received = to_decimal(received)
        batch = self._repos.batches.get(batch_id)
        with self._operation(
            "confirm_final_settlement", seller_id=batch.seller_id, batch_id=batch_id,
        ) as op:
            final = self._repos.final_settlements.get_by_batch(batch_id)
            transition = final_engine.confirm_final_settlement(final, received, op.now)
            confirmed = self._repos.final_settlements.save(
                transition.final_settlement, final.version,
            )
            logger.info(
                "final_settlement_confirmed",
                extra={
                    "final_settlement_id": str(final.id),
                    "expected_amount": str(final.expected_amount),
                    "received_amount": str(received),
                },
            )
            op.apply(transition.effects)
            return confirmed

    def recompute_expected_amounts(self, seller_id: UUID) -> list[Settlement]:
        """Recompute the seller's active settlement; returns what was written."""
        with self._operation("recompute_expected_amounts", seller_id=seller_id) as op:
            return op.recompute_seller(seller_id)

    def on_equipment_debt_changed(self, seller_id: UUID, reason: str) -> list[Settlement]:
        """
        Entry point for the equipment bookkeeping (monthly arrears, damage
        or loss charges): refresh the debt carried by the active settlement.
        """
        logger.info(
            "equipment_debt_changed",
            extra={"seller_id": str(seller_id), "reason": reason},
        )
        return self.recompute_expected_amounts(seller_id)
