"""
SettlementCoordinator -- applies engine effects and settlement decisions.

Responsibility:
    Everything that happens *between* two engine calls inside one service
    operation: applying state effects returned by transitions, deciding
    which settlement of a seller fires next, recomputing expected amounts,
    finalizing emptied tranches and activating the final mini-settlement.

Architecture position:
    Services -- imperative shell.  Created per operation by
    ``ConsignmentService._operation`` with the operation's clock reading and
    frozen configuration.  Writes through ``Repositories`` only; never
    commits.  Notifications are collected in ``self.notifications`` and
    dispatched by the service after commit.

Invariants enforced:
    - At most one PENDING settlement per seller: activation decisions run
      under the seller's lock and are deferred while one is PENDING.
    - Equipment debt sits on the seller's single active settlement only;
      every other open settlement has it stripped on recompute.
    - A tranche with pending (tentative) sales is never finalized, so a
      later rejection can always restore its stock.

Failure modes:
    - Engine errors (InvalidTransitionError, ...) and VersionConflictError
      propagate; the owning operation rolls back.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from consignment_config.provider import StaticConfigProvider
from consignment_config.rules import LotRules, ProfitRules, SettlementRules
from consignment_engines import batch_lifecycle, final_settlement
from consignment_engines.expected_amount import (
    ExpectedAmountBreakdown,
    calculate_expected_amount,
    pending_profit,
    settled_profit,
)
from consignment_engines.settlement import (
    activate_settlement,
    check_trigger,
    rebase_after_wholesale,
    recompute_expected_amount,
    select_active_settlement,
)
from consignment_kernel.domain.effects import (
    ArmFinalSettlement,
    Effect,
    FinalizeBatch,
    FinalizeTranche,
    NotificationKind,
    RecordEquipmentDebtPaid,
    RecordFundContribution,
    RecordRemittance,
    ReevaluateSellerTriggers,
    ReleaseNextTranche,
    SendNotification,
)
from consignment_kernel.domain.entities import (
    Batch,
    BatchState,
    SaleState,
    Settlement,
    SettlementConcept,
    SettlementState,
    Tranche,
    TrancheState,
)
from consignment_kernel.domain.values import ZERO
from consignment_kernel.logging_config import get_logger
from consignment_services.interfaces import Collaborators
from consignment_services.locks import SellerLocks
from consignment_services.repositories import Repositories

logger = get_logger("services.coordinator")


class SettlementCoordinator:
    """Per-operation helper shared by the batch, settlement and wholesale services."""

    def __init__(
        self,
        repos: Repositories,
        collaborators: Collaborators,
        locks: SellerLocks,
        config: StaticConfigProvider,
        now: datetime,
    ):
        self.repos = repos
        self.collaborators = collaborators
        self.locks = locks
        self.config = config
        self.now = now
        self.lot_rules = LotRules.from_provider(config)
        self.profit_rules = ProfitRules.from_provider(config)
        self.settlement_rules = SettlementRules.from_provider(config)
        self.notifications: list[SendNotification] = []

    # ------------------------------------------------------------------
    # Effects
    # ------------------------------------------------------------------

    def apply(self, effects: tuple[Effect, ...] | list[Effect]) -> None:
        """Apply state effects now; queue notifications for after commit."""
        for effect in effects:
            if isinstance(effect, SendNotification):
                self.notifications.append(effect)
            elif isinstance(effect, RecordRemittance):
                self.record_remittance(effect.batch_id, effect.amount)
            elif isinstance(effect, RecordEquipmentDebtPaid):
                self.record_debt_payment(effect)
            elif isinstance(effect, ReleaseNextTranche):
                self.release_tranche(effect.tranche_id, effect.wholesale_settlement_id)
            elif isinstance(effect, ArmFinalSettlement):
                self.arm_final_settlement(effect.batch_id)
            elif isinstance(effect, FinalizeTranche):
                tranche = self.repos.tranches.get(effect.tranche_id)
                self.repos.tranches.save(
                    batch_lifecycle.finalize_tranche(tranche, self.now), tranche.version,
                )
            elif isinstance(effect, FinalizeBatch):
                self.finalize_batch(effect.batch_id)
            elif isinstance(effect, ReevaluateSellerTriggers):
                self.evaluate_triggers(effect.seller_id)
            elif isinstance(effect, RecordFundContribution):
                self.record_fund_contribution(effect)
            else:
                raise TypeError(f"Unknown effect type: {type(effect).__name__}")

    def notify(self, kind: NotificationKind, seller_id: UUID, **payload) -> None:
        self.notifications.append(SendNotification(kind, seller_id, payload))

    # ------------------------------------------------------------------
    # Batch and tranche helpers
    # ------------------------------------------------------------------

    def record_remittance(self, batch_id: UUID, amount) -> Batch:
        batch = self.repos.batches.get(batch_id)
        updated = batch_lifecycle.record_remittance(batch, amount)
        return self.repos.batches.save(updated, batch.version)

    def record_debt_payment(self, effect: RecordEquipmentDebtPaid) -> None:
        """Report the payment to the equipment bookkeeping; book it on the batch if named."""
        if effect.amount <= ZERO:
            return
        self.collaborators.equipment_debts.record_payment(effect.seller_id, effect.amount)
        if effect.batch_id is not None:
            batch = self.repos.batches.get(effect.batch_id)
            self.repos.batches.save(
                batch_lifecycle.record_debt_payment(batch, effect.amount), batch.version,
            )
        logger.info(
            "equipment_debt_paid",
            extra={
                "seller_id": str(effect.seller_id),
                "amount": str(effect.amount),
                "batch_id": str(effect.batch_id) if effect.batch_id else None,
            },
        )

    def release_tranche(self, tranche_id: UUID, wholesale_settlement_id: UUID | None = None) -> Tranche:
        tranche = self.repos.tranches.get(tranche_id)
        released = self.repos.tranches.save(
            batch_lifecycle.release_tranche(tranche, self.now, wholesale_settlement_id),
            tranche.version,
        )
        batch = self.repos.batches.get(tranche.batch_id)
        logger.info(
            "tranche_released",
            extra={
                "batch_id": str(batch.id),
                "tranche_id": str(tranche_id),
                "tranche_number": tranche.number,
            },
        )
        self.notify(
            NotificationKind.TRANCHE_RELEASED,
            batch.seller_id,
            batch_id=str(batch.id),
            tranche_id=str(tranche_id),
            tranche_number=tranche.number,
            units=tranche.current_stock,
        )
        return released

    def finalize_batch(self, batch_id: UUID) -> Batch:
        batch = self.repos.batches.get(batch_id)
        tranches = self.repos.tranches.list_by_batch(batch_id)
        finalized = self.repos.batches.save(
            batch_lifecycle.finalize_batch(batch, tranches, self.now), batch.version,
        )
        logger.info("batch_finalized", extra={"batch_id": str(batch_id)})
        return finalized

    def record_fund_contribution(self, effect: RecordFundContribution) -> None:
        fund = self.collaborators.reward_fund
        if fund is None:
            logger.info(
                "fund_contribution_skipped",
                extra={"batch_id": str(effect.batch_id), "amount": str(effect.amount)},
            )
            return
        fund.record_entry(effect.batch_id, effect.amount, effect.description)

    def has_pending_sales(self, tranche: Tranche) -> bool:
        return any(
            s.tranche_id == tranche.id and s.state == SaleState.PENDING
            for s in self.repos.sales.list_by_batch(tranche.batch_id)
        )

    def settle_empty_tranche(self, tranche_id: UUID) -> None:
        """
        React to an IN_HOME tranche reaching zero stock.

        A non-last tranche is finalized; the last tranche goes through the
        final mini-settlement instead.
        """
        tranche = self.repos.tranches.get(tranche_id)
        if tranche.state != TrancheState.IN_HOME or tranche.current_stock != 0:
            return
        if self.has_pending_sales(tranche):
            return
        batch = self.repos.batches.get(tranche.batch_id)
        if tranche.number == batch.tranche_count:
            self.check_final_activation(batch.id)
            return
        self.repos.tranches.save(
            batch_lifecycle.finalize_tranche(tranche, self.now), tranche.version,
        )
        logger.info(
            "tranche_finalized",
            extra={"batch_id": str(batch.id), "tranche_number": tranche.number},
        )

    # ------------------------------------------------------------------
    # Final mini-settlement
    # ------------------------------------------------------------------

    def arm_final_settlement(self, batch_id: UUID) -> None:
        final = self.repos.final_settlements.get_by_batch(batch_id)
        self.repos.final_settlements.save(final_settlement.arm(final), final.version)
        self.check_final_activation(batch_id)

    def check_final_activation(self, batch_id: UUID) -> None:
        final = self.repos.final_settlements.find_by_batch(batch_id)
        if final is None:
            return
        last = self.repos.tranches.get(final.tranche_id)
        if last.state != TrancheState.IN_HOME or self.has_pending_sales(last):
            return
        if not final_settlement.should_activate(final, last):
            return
        batch = self.repos.batches.get(batch_id)
        owed_profit = pending_profit(self.repos.settlements.list_by_batch(batch_id), batch_id)
        expected = final_settlement.compute_final_expected(
            batch, owed_profit, self.profit_rules.minor_unit_places,
        )
        transition = final_settlement.activate_final_settlement(final, expected, self.now)
        self.repos.final_settlements.save(transition.final_settlement, final.version)
        logger.info(
            "final_settlement_activated",
            extra={"batch_id": str(batch_id), "expected_amount": str(expected)},
        )
        self.apply(transition.effects)

    # ------------------------------------------------------------------
    # Settlement decisions
    # ------------------------------------------------------------------

    def breakdown_for(
        self,
        settlement: Settlement,
        batch: Batch,
        *,
        include_debt: bool,
    ) -> ExpectedAmountBreakdown:
        batch_settlements = self.repos.settlements.list_by_batch(batch.id)
        debt = None
        if include_debt:
            debt = self.collaborators.equipment_debts.get_outstanding_debt(settlement.seller_id)
        return calculate_expected_amount(
            concept=settlement.concept,
            tranche_number=settlement.tranche_number,
            batch=batch,
            already_settled_profit=settled_profit(batch_settlements, batch.id),
            equipment_debt=debt,
            recruiter_chain=tuple(
                self.collaborators.hierarchy.get_recruiter_chain(settlement.seller_id)
            ),
            rules=self.profit_rules,
        )

    def _open_settlements(self, seller_id: UUID) -> tuple[list[Settlement], dict[UUID, Batch]]:
        settlements = [
            s for s in self.repos.settlements.list_by_seller(seller_id) if not s.is_terminal
        ]
        batches = self.repos.batches.get_many({s.batch_id for s in settlements})
        active = [s for s in settlements if batches[s.batch_id].state == BatchState.ACTIVE]
        return active, batches

    def evaluate_triggers(self, seller_id: UUID) -> Settlement | None:
        """
        Fire the next settlement of a seller if its trigger holds.

        Deferred (returns None) while the seller has a PENDING settlement;
        the effect ``ReevaluateSellerTriggers`` brings us back here once it
        resolves.
        """
        with self.locks.hold(seller_id):
            settlements, batches = self._open_settlements(seller_id)
            pending = [s for s in settlements if s.state == SettlementState.PENDING]
            if pending:
                logger.debug(
                    "trigger_evaluation_deferred",
                    extra={"seller_id": str(seller_id), "pending_settlement_id": str(pending[0].id)},
                )
                return None

            fired = []
            for settlement in settlements:
                tranche = self.repos.tranches.get(settlement.tranche_id)
                if check_trigger(settlement, tranche, batches[settlement.batch_id], self.settlement_rules):
                    fired.append(settlement)
            chosen = select_active_settlement(fired, batches)
            if chosen is None:
                return None
            return self._activate(chosen, batches[chosen.batch_id])

    def _activate(self, settlement: Settlement, batch: Batch) -> Settlement:
        breakdown = self.breakdown_for(settlement, batch, include_debt=True)
        transition = activate_settlement(
            settlement,
            breakdown,
            self.now,
            investment_recovered_notice=settlement.concept == SettlementConcept.INVESTMENT_ONLY,
        )
        activated = self.repos.settlements.save(transition.settlement, settlement.version)
        logger.info(
            "settlement_activated",
            extra={
                "settlement_id": str(settlement.id),
                "batch_id": str(batch.id),
                "tranche_number": settlement.tranche_number,
                "expected_amount": str(activated.expected_amount),
                "debt_component": str(activated.debt_component),
            },
        )
        self.apply(transition.effects)
        self._strip_debt_from_others(settlement.seller_id, activated.id)
        return activated

    def _strip_debt_from_others(self, seller_id: UUID, active_id: UUID) -> None:
        settlements, batches = self._open_settlements(seller_id)
        for other in settlements:
            if other.id == active_id or other.debt_component == ZERO:
                continue
            breakdown = self.breakdown_for(other, batches[other.batch_id], include_debt=False)
            updated = recompute_expected_amount(other, breakdown, ZERO)
            if updated is not None:
                self.repos.settlements.save(updated, other.version)

    def recompute_seller(self, seller_id: UUID) -> list[Settlement]:
        """
        Refresh the expected amount of the seller's active settlement.

        Writes only when the amount moved by at least
        ``settlement.recompute_threshold``.
        """
        with self.locks.hold(seller_id):
            settlements, batches = self._open_settlements(seller_id)
            active = select_active_settlement(settlements, batches)
            if active is None:
                return []
            breakdown = self.breakdown_for(active, batches[active.batch_id], include_debt=True)
            updated = recompute_expected_amount(
                active, breakdown, self.settlement_rules.recompute_threshold,
            )
            if updated is None:
                return []
            saved = self.repos.settlements.save(updated, active.version)
            logger.info(
                "expected_amount_recomputed",
                extra={
                    "settlement_id": str(active.id),
                    "previous_amount": str(active.expected_amount),
                    "expected_amount": str(saved.expected_amount),
                },
            )
            self._strip_debt_from_others(seller_id, saved.id)
            return [saved]

    def rebase_covered(self, settlement: Settlement) -> Settlement:
        """
        Restate a settlement a wholesale settlement covered only in part.

        Runs after the wholesale money is booked, so the fresh breakdown
        already accounts for the cover.
        """
        batch = self.repos.batches.get(settlement.batch_id)
        breakdown = self.breakdown_for(settlement, batch, include_debt=True)
        rebased = self.repos.settlements.save(
            rebase_after_wholesale(settlement, breakdown), settlement.version,
        )
        logger.info(
            "settlement_rebased",
            extra={
                "settlement_id": str(settlement.id),
                "covered_amount": str(settlement.amount_covered_by_wholesale),
                "previous_amount": str(settlement.expected_amount),
                "expected_amount": str(rebased.expected_amount),
            },
        )
        return rebased
