"""
BatchService -- batch issuance, tranche logistics and retail sales.

Responsibility:
    Orchestrates the BatchTrancheLifecycle engine against persistence:
    issue and activate batches, move tranches through transit and
    delivery, register / approve / reject retail sales and hand out gift
    units.  Sale approval feeds the SettlementEngine (trigger evaluation
    and expected-amount recompute) through the coordinator.

Architecture position:
    Services -- imperative shell.  Each public method is one transaction
    (see ``ConsignmentService._operation``).

Invariants enforced:
    - The physical stock pool is decremented exactly once, at activation.
    - The sale decrement is a conditional UPDATE on ``(tranche, version)``
      that also requires enough stock.
    - LOW_STOCK is emitted once, when a decrement first crosses
      ``notifications.low_stock_percent``.

Failure modes:
    - InvalidTransitionError, InsufficientStockError,
      GiftLimitExceededError, VersionConflictError, EntityNotFoundError;
      all roll the operation back.

Usage:
    service = BatchService(session, collaborators, clock=clock, config=config)
    plan = service.issue_batch(seller_id, 100, PayoutModel.FLAT_SPLIT)
    service.activate_batch(plan.batch.id)
    sale = service.register_sale(plan.batch.id, quantity=5, amount=Decimal("17500"))
    service.approve_sale(sale.id)
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from consignment_engines import batch_lifecycle
from consignment_engines.final_settlement import build_final_settlement
from consignment_engines.gifts import record_gift
from consignment_engines.settlement import build_settlements
from consignment_engines.tranche_split import BatchPlan, plan_batch
from consignment_kernel.domain.effects import NotificationKind
from consignment_kernel.domain.entities import (
    Batch,
    PayoutModel,
    Sale,
    Tranche,
    TrancheState,
)
from consignment_kernel.domain.values import to_decimal
from consignment_kernel.exceptions import InsufficientStockError
from consignment_kernel.logging_config import get_logger
from consignment_services.base import ConsignmentService
from consignment_services.coordinator import SettlementCoordinator

logger = get_logger("services.batch_service")


class BatchService(ConsignmentService):
    """Batch and tranche lifecycle, retail sales and gifts."""

    # ------------------------------------------------------------------
    # Issuance and activation
    # ------------------------------------------------------------------

    def issue_batch(
        self,
        seller_id: UUID,
        unit_count: int,
        payout_model: PayoutModel,
    ) -> BatchPlan:
        """Create a batch (CREATED) and its INACTIVE tranches."""
        with self._operation("issue_batch", seller_id=seller_id) as op:
            plan = plan_batch(
                seller_id=seller_id,
                unit_count=unit_count,
                payout_model=payout_model,
                rules=op.lot_rules,
                now=op.now,
            )
            self._repos.batches.add(plan.batch)
            self._repos.tranches.add_all(plan.tranches)
            logger.info(
                "batch_issued",
                extra={
                    "batch_id": str(plan.batch.id),
                    "unit_count": unit_count,
                    "tranche_count": plan.batch.tranche_count,
                    "total_investment": str(plan.batch.total_investment),
                },
            )
            return plan

    def activate_batch(self, batch_id: UUID) -> Batch:
        """
        CREATED -> ACTIVE.

        Deducts the units from the stock pool, creates one INACTIVE
        settlement per tranche plus the final mini-settlement, and releases
        tranche 1.
        """
        batch = self._repos.batches.get(batch_id)
        with self._operation("activate_batch", seller_id=batch.seller_id, batch_id=batch_id) as op:
            return self._activate(op, batch_id)

    def _activate(self, op: SettlementCoordinator, batch_id: UUID) -> Batch:
        batch = self._repos.batches.get(batch_id)
        activated = self._repos.batches.save(
            batch_lifecycle.activate_batch(batch, op.now), batch.version,
        )
        if self._collaborators.stock_pool is not None:
            self._collaborators.stock_pool.deduct(batch.unit_count)

        tranches = self._repos.tranches.list_by_batch(batch_id)
        if not activated.is_forced:
            self._repos.settlements.add_all(build_settlements(activated, tranches))
            self._repos.final_settlements.add(build_final_settlement(activated, tranches[-1]))
            op.release_tranche(tranches[0].id)
        logger.info(
            "batch_activated",
            extra={"batch_id": str(batch_id), "is_forced": activated.is_forced},
        )
        return activated

    # ------------------------------------------------------------------
    # Tranche logistics
    # ------------------------------------------------------------------

    def auto_transit(self, tranche_id: UUID) -> Tranche:
        """RELEASED -> IN_TRANSIT for one tranche."""
        tranche = self._repos.tranches.get(tranche_id)
        batch = self._repos.batches.get(tranche.batch_id)
        with self._operation("auto_transit", seller_id=batch.seller_id, batch_id=batch.id) as op:
            tranche = self._repos.tranches.get(tranche_id)
            return self._repos.tranches.save(
                batch_lifecycle.auto_transit(tranche, op.now), tranche.version,
            )

    def run_auto_transit_sweep(self, now: datetime | None = None) -> list[Tranche]:
        """
        Move every RELEASED tranche whose delay elapsed to IN_TRANSIT.

        Called by an external scheduler.  ``now`` defaults to the service
        clock.
        """
        with self._operation("auto_transit_sweep") as op:
            at = now or op.now
            delay = op.settlement_rules.auto_transit_hours
            moved = []
            for tranche in self._repos.tranches.list_by_state(TrancheState.RELEASED):
                if not batch_lifecycle.is_due(tranche, at, delay):
                    continue
                moved.append(
                    self._repos.tranches.save(
                        batch_lifecycle.auto_transit(tranche, at), tranche.version,
                    )
                )
            logger.info("auto_transit_swept", extra={"moved": len(moved)})
            return moved

    def confirm_delivery(self, tranche_id: UUID) -> Tranche:
        """IN_TRANSIT -> IN_HOME (the seller received the units)."""
        tranche = self._repos.tranches.get(tranche_id)
        batch = self._repos.batches.get(tranche.batch_id)
        with self._operation("confirm_delivery", seller_id=batch.seller_id, batch_id=batch.id) as op:
            tranche = self._repos.tranches.get(tranche_id)
            delivered = self._repos.tranches.save(
                batch_lifecycle.confirm_delivery(tranche, op.now), tranche.version,
            )
            op.settle_empty_tranche(tranche_id)
            op.evaluate_triggers(batch.seller_id)
            return delivered

    # ------------------------------------------------------------------
    # Retail sales
    # ------------------------------------------------------------------

    def register_sale(
        self,
        batch_id: UUID,
        quantity: int,
        amount: Decimal,
        tranche_id: UUID | None = None,
    ) -> Sale:
        """
        Tentatively take ``quantity`` units from the batch's IN_HOME tranche.

        The tranche defaults to the lowest-numbered IN_HOME tranche that
        still has stock.
        """
        batch = self._repos.batches.get(batch_id)
        with self._operation("register_sale", seller_id=batch.seller_id, batch_id=batch_id) as op:
            return self._register_sale(op, batch, quantity, amount, tranche_id)

    def _register_sale(
        self,
        op: SettlementCoordinator,
        batch: Batch,
        quantity: int,
        amount: Decimal,
        tranche_id: UUID | None,
    ) -> Sale:
        amount = to_decimal(amount)
        if tranche_id is None:
            tranche = batch_lifecycle.select_sale_tranche(
                self._repos.tranches.list_by_batch(batch.id)
            )
            if tranche is None:
                raise InsufficientStockError(str(batch.id), 0, quantity)
        else:
            tranche = self._repos.tranches.get(tranche_id)

        updated = self._repos.tranches.decrement_stock(tranche.id, quantity, tranche.version)
        sale = self._repos.sales.add(
            Sale(
                id=uuid4(),
                batch_id=batch.id,
                tranche_id=tranche.id,
                seller_id=batch.seller_id,
                quantity=quantity,
                amount=amount,
                registered_at=op.now,
            )
        )
        logger.info(
            "sale_registered",
            extra={
                "sale_id": str(sale.id),
                "tranche_id": str(tranche.id),
                "quantity": quantity,
                "remaining_stock": updated.current_stock,
            },
        )
        if batch_lifecycle.crossed_low_stock(
            tranche.current_stock,
            updated.current_stock,
            updated.initial_stock,
            op.settlement_rules.low_stock_percent,
        ):
            op.notify(
                NotificationKind.LOW_STOCK,
                batch.seller_id,
                batch_id=str(batch.id),
                tranche_id=str(tranche.id),
                tranche_number=updated.number,
                remaining_stock=updated.current_stock,
                stock_percentage=str(updated.stock_percentage),
            )
        return sale

    def approve_sale(self, sale_id: UUID) -> Sale:
        """
        PENDING -> APPROVED.

        Books the sale amount as collected, finalizes an emptied tranche,
        evaluates the seller's triggers and recomputes the active
        settlement.
        """
        sale = self._repos.sales.get(sale_id)
        with self._operation("approve_sale", seller_id=sale.seller_id, batch_id=sale.batch_id) as op:
            return self._approve_sale(op, sale_id)

    def _approve_sale(self, op: SettlementCoordinator, sale_id: UUID) -> Sale:
        sale = self._repos.sales.get(sale_id)
        approved = self._repos.sales.save(batch_lifecycle.approve_sale(sale, op.now), sale.version)
        batch = self._repos.batches.get(sale.batch_id)
        self._repos.batches.save(
            batch_lifecycle.record_collection(batch, sale.amount), batch.version,
        )
        logger.info(
            "sale_approved",
            extra={"sale_id": str(sale_id), "amount": str(sale.amount)},
        )
        op.settle_empty_tranche(sale.tranche_id)
        op.evaluate_triggers(sale.seller_id)
        op.recompute_seller(sale.seller_id)
        return approved

    def reject_sale(self, sale_id: UUID) -> Sale:
        """PENDING -> REJECTED and the units go back to the tranche."""
        sale = self._repos.sales.get(sale_id)
        with self._operation("reject_sale", seller_id=sale.seller_id, batch_id=sale.batch_id) as op:
            sale = self._repos.sales.get(sale_id)
            rejected = self._repos.sales.save(batch_lifecycle.reject_sale(sale, op.now), sale.version)
            tranche = self._repos.tranches.get(sale.tranche_id)
            self._repos.tranches.save(
                batch_lifecycle.restore_stock(tranche, sale.quantity), tranche.version,
            )
            logger.info(
                "sale_rejected",
                extra={"sale_id": str(sale_id), "quantity": sale.quantity},
            )
            return rejected

    def record_sale(self, batch_id: UUID, quantity: int, amount: Decimal) -> Sale:
        """Register and approve a sale in one transaction."""
        batch = self._repos.batches.get(batch_id)
        with self._operation("record_sale", seller_id=batch.seller_id, batch_id=batch_id) as op:
            sale = self._register_sale(op, batch, quantity, amount, None)
            return self._approve_sale(op, sale.id)

    def register_gift(self, batch_id: UUID, units: int) -> Sale:
        """
        Hand out ``units`` as gifts: counted against the batch quota and
        taken from stock as a zero-amount approved sale.
        """
        batch = self._repos.batches.get(batch_id)
        with self._operation("register_gift", seller_id=batch.seller_id, batch_id=batch_id) as op:
            batch = self._repos.batches.get(batch_id)
            gifted = self._repos.batches.save(
                record_gift(batch, units, op.lot_rules.gift_limit_percent), batch.version,
            )
            sale = self._register_sale(op, gifted, units, Decimal("0"), None)
            logger.info(
                "gift_registered",
                extra={"units": units, "gift_units_used": gifted.gift_units_used},
            )
            return self._approve_sale(op, sale.id)
