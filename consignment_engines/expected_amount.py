"""
Expected Amount Calculator.

Pure functions with deterministic behavior. No I/O.

Computes what a seller owes the operator for one settlement:

    INVESTMENT_ONLY  operator investment not yet remitted (carried whole by
                     tranche 1)
    PROFIT_ONLY      operator profit share on collected-vs-invested, less
                     the profit already paid: the larger of what settled
                     settlements carried and what was remitted beyond the
                     operator investment (wholesale settlements remit both)
    MIXED            both of the above

Equipment debt is added only when the caller marks the settlement as the
seller's single active settlement, so it is never counted twice.
Recruiter cascade amounts are reported alongside but never added to the
seller-facing total.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Sequence
from uuid import UUID

from consignment_config.rules import ProfitRules
from consignment_kernel.domain.entities import (
    Batch,
    EquipmentDebt,
    Settlement,
    SettlementConcept,
    SettlementState,
)
from consignment_kernel.domain.values import ZERO, non_negative, round_money
from consignment_engines.profit_cascade import (
    RecruiterShare,
    calculate_profit_distribution,
)
from consignment_engines.tracer import traced_engine

_SETTLED_STATES = (SettlementState.SUCCESS, SettlementState.CLOSED_BY_WHOLESALE)


@dataclass(frozen=True)
class ExpectedAmountBreakdown:
    investment: Decimal
    profit: Decimal
    debt: Decimal
    recruiter_payouts: tuple[RecruiterShare, ...] = ()

    @property
    def total(self) -> Decimal:
        return self.investment + self.profit + self.debt


def settled_profit(settlements: Iterable[Settlement], batch_id: UUID) -> Decimal:
    """Profit already carried by SUCCESS / CLOSED_BY_WHOLESALE settlements of a batch."""
    return sum(
        (
            s.profit_component
            for s in settlements
            if s.batch_id == batch_id and s.state in _SETTLED_STATES
        ),
        ZERO,
    )


def pending_profit(settlements: Iterable[Settlement], batch_id: UUID) -> Decimal:
    """Profit component still owed on PENDING settlements of a batch."""
    return sum(
        (
            s.profit_component
            for s in settlements
            if s.batch_id == batch_id and s.state == SettlementState.PENDING
        ),
        ZERO,
    )


@traced_engine(
    "expected_amount", "1.0",
    fingerprint_fields=("concept", "tranche_number", "batch", "already_settled_profit"),
)
def calculate_expected_amount(
    *,
    concept: SettlementConcept,
    tranche_number: int,
    batch: Batch,
    already_settled_profit: Decimal = ZERO,
    equipment_debt: EquipmentDebt | None = None,
    recruiter_chain: Sequence[UUID] = (),
    rules: ProfitRules,
) -> ExpectedAmountBreakdown:
    """
    Break down the amount due for one settlement.

    Args:
        concept: What the settlement collects.
        tranche_number: Number of the settlement's tranche.  Only the first
            settlement of a batch carries the operator investment.
        batch: Batch figures (investment, collected money, payout model).
        already_settled_profit: Profit carried by earlier settled settlements.
        equipment_debt: Passed only for the seller's active settlement.
        recruiter_chain: Recruiter ids, nearest first.
        rules: Profit split rules.
    """
    places = rules.minor_unit_places

    investment = ZERO
    if concept in (SettlementConcept.INVESTMENT_ONLY, SettlementConcept.MIXED):
        if tranche_number == 1:
            investment = round_money(batch.operator_investment_outstanding, places)

    profit = ZERO
    recruiters: tuple[RecruiterShare, ...] = ()
    if concept in (SettlementConcept.PROFIT_ONLY, SettlementConcept.MIXED):
        distribution = calculate_profit_distribution(
            proceeds=batch.money_collected,
            investment=batch.total_investment,
            payout_model=batch.payout_model,
            recruiter_chain=recruiter_chain,
            rules=rules,
        )
        already_paid = max(
            already_settled_profit,
            non_negative(batch.money_remitted - batch.operator_investment),
        )
        profit = non_negative(distribution.operator_share - already_paid)
        recruiters = distribution.recruiter_payouts

    debt = ZERO
    if equipment_debt is not None:
        debt = round_money(equipment_debt.total, places)

    return ExpectedAmountBreakdown(
        investment=investment,
        profit=profit,
        debt=debt,
        recruiter_payouts=recruiters,
    )
