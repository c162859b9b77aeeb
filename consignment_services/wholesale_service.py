"""
WholesaleService -- wholesale orders and their settlements ("cuadre-mayor").

Responsibility:
    register -> complete -> confirm for wholesale orders:

    * register: tier pricing, consumption plan over the seller's ACTIVE
      batches, and creation of a forced batch (CREATED) for any residual.
    * complete: order PENDING -> COMPLETED and the money waterfall of the
      WholesaleSettlementEngine (settlement PENDING).
    * confirm: consume the planned stock, activate and finalize the forced
      batch, book collections, remittances and equipment-debt money per
      batch, cover the seller's PENDING settlements on involved batches,
      settlement -> SUCCESS.

Architecture position:
    Services -- imperative shell over ``consignment_engines.stock_consumption``,
    ``wholesale_pricing`` and ``wholesale_settlement``.

Invariants enforced:
    - Stock is taken only at confirmation, exactly as planned.
    - A forced batch never gets tranche settlements; it is finalized in the
      confirming transaction and contributes to the reward fund.
    - Equipment debt is charged once: not again when a PENDING settlement
      outside the order's batches already carries it.
    - Wholesale money is booked once.  A settlement it covers only in part
      is restated against the new batch figures with its cover reset to
      zero, and the equipment debt it paid is reported to the provider.

Failure modes:
    - BelowMinimumQuantityError at registration.
    - InsufficientStockError at confirmation if retail sales drained the
      planned tranches in the meantime (the whole confirmation rolls back).
    - InvalidTransitionError, VersionConflictError, EntityNotFoundError.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID, uuid4

from consignment_config.rules import WholesaleTierTable
from consignment_config.provider import freeze
from consignment_engines import batch_lifecycle
from consignment_engines.settlement import SettlementTransition, close_by_wholesale, uncovered_debt
from consignment_engines.stock_consumption import plan_consumption, with_forced_batch
from consignment_engines.tranche_split import plan_batch
from consignment_engines.wholesale_pricing import WholesaleQuote, quote_wholesale
from consignment_engines.wholesale_settlement import (
    allocate_batch_money,
    build_wholesale_settlement,
    complete_wholesale_order,
    confirm_wholesale_settlement,
    distribute_operator_total,
    forced_units,
    mark_payout_transferred,
    register_wholesale_order,
)
from consignment_kernel.domain.effects import RecordEquipmentDebtPaid, RecordFundContribution
from consignment_kernel.domain.entities import (
    BatchState,
    PaymentModality,
    PayoutModel,
    Settlement,
    SettlementState,
    StockSourceKind,
    WholesaleOrder,
    WholesaleSettlement,
    WholesaleSettlementState,
)
from consignment_kernel.domain.values import ZERO, non_negative
from consignment_kernel.exceptions import InvalidTransitionError
from consignment_kernel.logging_config import get_logger
from consignment_services.base import ConsignmentService
from consignment_services.coordinator import SettlementCoordinator

logger = get_logger("services.wholesale_service")


class WholesaleService(ConsignmentService):
    """Wholesale order and settlement lifecycle."""

    def quote(self, quantity: int, with_liquor: bool) -> WholesaleQuote:
        """Tier price for ``quantity`` (read-only)."""
        table = WholesaleTierTable.from_provider(freeze(self._config))
        return quote_wholesale(quantity=quantity, with_liquor=with_liquor, table=table)

    # ------------------------------------------------------------------
    # Register
    # ------------------------------------------------------------------

    def register_order(
        self,
        seller_id: UUID,
        quantity: int,
        *,
        with_liquor: bool,
        modality: PaymentModality,
        payout_model: PayoutModel,
    ) -> WholesaleOrder:
        """
        Price the order and plan where its units come from.

        A residual the seller's batches cannot cover gets a forced batch of
        exactly that many units, created here in CREATED state.
        """
        with self._operation("register_wholesale_order", seller_id=seller_id) as op:
            quote = quote_wholesale(
                quantity=quantity,
                with_liquor=with_liquor,
                table=WholesaleTierTable.from_provider(op.config),
            )
            batches = self._repos.batches.list_by_seller(seller_id, [BatchState.ACTIVE])
            plan = plan_consumption(
                quantity=quantity,
                batches=batches,
                tranches_by_batch={b.id: self._repos.tranches.list_by_batch(b.id) for b in batches},
            )

            order_id = uuid4()
            if plan.needs_forced_batch:
                forced = plan_batch(
                    seller_id=seller_id,
                    unit_count=plan.forced_quantity,
                    payout_model=payout_model,
                    rules=op.lot_rules,
                    now=op.now,
                    is_forced=True,
                    origin_wholesale_order_id=order_id,
                )
                self._repos.batches.add(forced.batch)
                self._repos.tranches.add_all(forced.tranches)
                plan = with_forced_batch(plan, forced.tranches)
                logger.info(
                    "forced_batch_created",
                    extra={
                        "forced_batch_id": str(forced.batch.id),
                        "unit_count": plan.forced_quantity,
                    },
                )

            order = self._repos.wholesale_orders.add(
                register_wholesale_order(
                    seller_id=seller_id,
                    quote=quote,
                    plan=plan,
                    modality=modality,
                    payout_model=payout_model,
                    now=op.now,
                    order_id=order_id,
                )
            )
            logger.info(
                "wholesale_order_registered",
                extra={
                    "order_id": str(order.id),
                    "unit_count": quantity,
                    "unit_price": str(order.unit_price),
                    "gross_revenue": str(order.gross_revenue),
                    "forced_quantity": order.forced_quantity,
                },
            )
            return order

    # ------------------------------------------------------------------
    # Complete
    # ------------------------------------------------------------------

    def _pending_on(self, order: WholesaleOrder) -> list[Settlement]:
        involved = set(order.involved_batch_ids)
        return [
            s for s in self._repos.settlements.list_by_seller(
                order.seller_id, [SettlementState.PENDING],
            )
            if s.batch_id in involved
        ]

    def _debt_carried_elsewhere(self, order: WholesaleOrder) -> bool:
        involved = set(order.involved_batch_ids)
        return any(
            s.batch_id not in involved and s.debt_component > 0
            for s in self._repos.settlements.list_by_seller(
                order.seller_id, [SettlementState.PENDING],
            )
        )

    def complete_order(self, order_id: UUID) -> WholesaleSettlement:
        """Order PENDING -> COMPLETED and its settlement built (PENDING)."""
        order = self._repos.wholesale_orders.get(order_id)
        with self._operation(
            "complete_wholesale_order", seller_id=order.seller_id, order_id=order_id,
        ) as op:
            order = self._repos.wholesale_orders.get(order_id)
            completed = self._repos.wholesale_orders.save(
                complete_wholesale_order(order, op.now), order.version,
            )
            existing = self._repos.batches.get_many(completed.involved_batch_ids)
            forced = (
                self._repos.batches.get(completed.forced_batch_id)
                if completed.forced_batch_id is not None
                else None
            )
            equipment_debt = None
            if not self._debt_carried_elsewhere(completed):
                equipment_debt = self._collaborators.equipment_debts.get_outstanding_debt(
                    completed.seller_id,
                )
            settlement = build_wholesale_settlement(
                order=completed,
                existing_batches=[existing[b] for b in completed.involved_batch_ids],
                forced_batch=forced,
                pending_settlements=self._pending_on(completed),
                equipment_debt=equipment_debt,
                recruiter_chain=tuple(
                    self._collaborators.hierarchy.get_recruiter_chain(completed.seller_id)
                ),
                rules=op.profit_rules,
                now=op.now,
            )
            return self._repos.wholesale_settlements.add(settlement)

    # ------------------------------------------------------------------
    # Confirm
    # ------------------------------------------------------------------

    def confirm_settlement(self, wholesale_settlement_id: UUID) -> WholesaleSettlement:
        """
        Wholesale settlement PENDING -> SUCCESS with all its effects.

        The covers of the seller's PENDING settlements are worked out first
        so the money can be booked per batch (remittance, equipment debt)
        before any settlement is closed or restated.
        """
        settlement = self._repos.wholesale_settlements.get(wholesale_settlement_id)
        with self._operation(
            "confirm_wholesale_settlement",
            seller_id=settlement.seller_id,
            order_id=settlement.order_id,
        ) as op:
            settlement = self._repos.wholesale_settlements.get(wholesale_settlement_id)
            if settlement.state != WholesaleSettlementState.PENDING:
                raise InvalidTransitionError(
                    "WholesaleSettlement", str(settlement.id), settlement.state.value,
                    WholesaleSettlementState.SUCCESS.value,
                )
            order = self._repos.wholesale_orders.get(settlement.order_id)

            self._consume_stock(order)
            if order.forced_batch_id is not None:
                batch = self._repos.batches.get(order.forced_batch_id)
                self._repos.batches.save(
                    batch_lifecycle.activate_batch(batch, op.now), batch.version,
                )
                if self._collaborators.stock_pool is not None:
                    self._collaborators.stock_pool.deduct(batch.unit_count)

            covers = self._cover_pending_settlements(op, order, settlement)
            direct_debt = self._direct_debt_paid(order, settlement, covers)
            self._book_money(order, settlement, covers, direct_debt)
            if order.forced_batch_id is not None:
                self._finalize_forced_batch(op, order)
            if direct_debt > ZERO:
                op.apply([RecordEquipmentDebtPaid(order.seller_id, direct_debt)])

            closed_ids = self._apply_covers(op, covers)
            for source in order.sources:
                if source.kind != StockSourceKind.FORCED:
                    op.settle_empty_tranche(source.tranche_id)

            confirmed, notice = confirm_wholesale_settlement(settlement, op.now, closed_ids)
            self._repos.wholesale_settlements.save(confirmed, settlement.version)
            op.apply([notice])
            op.evaluate_triggers(order.seller_id)
            op.recompute_seller(order.seller_id)
            logger.info(
                "wholesale_settlement_confirmed",
                extra={
                    "wholesale_settlement_id": str(settlement.id),
                    "closed_settlements": len(closed_ids),
                    "operator_total": str(settlement.operator_total),
                    "seller_total": str(settlement.seller_total),
                    "equipment_debt_paid": str(
                        direct_debt + sum((t.debt_applied for _, t in covers), ZERO)
                    ),
                },
            )
            return confirmed

    def _consume_stock(self, order: WholesaleOrder) -> None:
        for source in order.sources:
            tranche = self._repos.tranches.get(source.tranche_id)
            self._repos.tranches.save(
                batch_lifecycle.consume_wholesale_stock(tranche, source.quantity),
                tranche.version,
            )

    def _cover_pending_settlements(
        self,
        op: SettlementCoordinator,
        order: WholesaleOrder,
        settlement: WholesaleSettlement,
    ) -> list[tuple[Settlement, SettlementTransition]]:
        covers = []
        allocations = distribute_operator_total(self._pending_on(order), settlement.operator_total)
        for pending, amount in allocations:
            batch = self._repos.batches.get(pending.batch_id)
            tranches = self._repos.tranches.list_by_batch(batch.id)
            transition = close_by_wholesale(
                pending,
                settlement.id,
                amount,
                op.now,
                next_tranche=batch_lifecycle.next_inactive_tranche(tranches, pending.tranche_number),
                is_last_tranche=pending.tranche_number == batch.tranche_count,
            )
            covers.append((pending, transition))
        return covers

    def _direct_debt_paid(
        self,
        order: WholesaleOrder,
        settlement: WholesaleSettlement,
        covers: list[tuple[Settlement, SettlementTransition]],
    ) -> Decimal:
        """
        Equipment debt the wholesale money paid outside any settlement.

        Step 1 of the waterfall settled pending shortfalls and the equipment
        debt no settlement carried; whatever of it did not go to a cover
        paid that debt, up to what is still owed.
        """
        applied = sum((t.applied_amount for _, t in covers), ZERO)
        left = non_negative(settlement.debts_settled - applied)
        if left == ZERO:
            return ZERO
        debt = self._collaborators.equipment_debts.get_outstanding_debt(order.seller_id)
        covered_ids = {s.id for s, _ in covers}
        carried = sum(
            (
                uncovered_debt(s)
                for s in self._repos.settlements.list_by_seller(
                    order.seller_id, [SettlementState.PENDING],
                )
                if s.id not in covered_ids
            ),
            ZERO,
        ) + sum((uncovered_debt(t.settlement) for _, t in covers), ZERO)
        paid_by_covers = sum((t.debt_applied for _, t in covers), ZERO)
        return min(left, non_negative(debt.total - paid_by_covers - carried))

    def _book_money(
        self,
        order: WholesaleOrder,
        settlement: WholesaleSettlement,
        covers: list[tuple[Settlement, SettlementTransition]],
        direct_debt: Decimal,
    ) -> None:
        batch_ids = list(order.involved_batch_ids)
        if order.forced_batch_id is not None:
            batch_ids.append(order.forced_batch_id)
        batches = self._repos.batches.get_many(batch_ids)

        earmarked = {share.batch_id: share.operator_investment for share in settlement.batch_shares}
        for pending, transition in covers:
            earmarked[pending.batch_id] = earmarked.get(pending.batch_id, ZERO) + (
                transition.applied_amount - transition.debt_applied
            )
        debt_total = direct_debt + sum((t.debt_applied for _, t in covers), ZERO)

        updates = allocate_batch_money(
            order,
            [batches[b] for b in batch_ids],
            settlement.operator_total,
            earmarked=earmarked,
            debt_total=debt_total,
        )
        for update in updates:
            batch = batches[update.batch_id]
            booked = batch_lifecycle.record_collection(batch, update.collected)
            booked = batch_lifecycle.record_remittance(booked, update.remitted)
            booked = batch_lifecycle.record_debt_payment(booked, update.to_debt)
            self._repos.batches.save(booked, batch.version)

    def _finalize_forced_batch(self, op: SettlementCoordinator, order: WholesaleOrder) -> None:
        for tranche in self._repos.tranches.list_by_batch(order.forced_batch_id):
            self._repos.tranches.save(
                batch_lifecycle.force_finalize_tranche(tranche, op.now), tranche.version,
            )
        op.finalize_batch(order.forced_batch_id)
        units = forced_units(order)
        op.apply([
            RecordFundContribution(
                order.forced_batch_id,
                units * op.lot_rules.fund_contribution_per_unit,
                f"forced batch for wholesale order {order.id}",
            )
        ])

    def _apply_covers(
        self,
        op: SettlementCoordinator,
        covers: list[tuple[Settlement, SettlementTransition]],
    ) -> list[UUID]:
        closed: list[UUID] = []
        for pending, transition in covers:
            saved = self._repos.settlements.save(transition.settlement, pending.version)
            logger.info(
                "settlement_covered_by_wholesale",
                extra={
                    "settlement_id": str(saved.id),
                    "applied_amount": str(transition.applied_amount),
                    "debt_applied": str(transition.debt_applied),
                    "remaining_shortfall": str(saved.shortfall),
                },
            )
            op.apply(transition.effects)
            if saved.state == SettlementState.CLOSED_BY_WHOLESALE:
                closed.append(saved.id)
            else:
                op.rebase_covered(saved)
        return closed

    # ------------------------------------------------------------------
    # Payouts
    # ------------------------------------------------------------------

    def mark_payout_transferred(self, wholesale_settlement_id: UUID, level: int) -> WholesaleSettlement:
        """Stamp the recruiter payout at ``level`` as transferred."""
        settlement = self._repos.wholesale_settlements.get(wholesale_settlement_id)
        with self._operation(
            "mark_payout_transferred",
            seller_id=settlement.seller_id,
            order_id=settlement.order_id,
        ) as op:
            settlement = self._repos.wholesale_settlements.get(wholesale_settlement_id)
            updated = self._repos.wholesale_settlements.save(
                mark_payout_transferred(settlement, level, op.now), settlement.version,
            )
            logger.info(
                "recruiter_payout_transferred",
                extra={"wholesale_settlement_id": str(settlement.id), "level": level},
            )
            return updated
