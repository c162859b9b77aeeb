"""
Tests for the final mini-settlement.
"""

from dataclasses import replace
from decimal import Decimal
from uuid import uuid4

import pytest

from consignment_engines.batch_lifecycle import activate_batch
from consignment_engines.final_settlement import (
    activate_final_settlement,
    arm,
    build_final_settlement,
    compute_final_expected,
    confirm_final_settlement,
    should_activate,
)
from consignment_engines.tranche_split import plan_batch
from consignment_kernel.domain.effects import (
    FinalizeBatch,
    FinalizeTranche,
    NotificationKind,
    RecordRemittance,
)
from consignment_kernel.domain.entities import FinalSettlementState, PayoutModel
from consignment_kernel.exceptions import AmountBelowExpectedError, InvalidTransitionError


@pytest.fixture
def plan(lot_rules, clock):
    return plan_batch(
        seller_id=uuid4(),
        unit_count=50,
        payout_model=PayoutModel.FLAT_SPLIT,
        rules=lot_rules,
        now=clock.now(),
    )


@pytest.fixture
def final(plan):
    return build_final_settlement(plan.batch, plan.tranches[-1])


class TestArming:
    def test_built_inactive_and_unarmed(self, plan, final):
        assert final.state == FinalSettlementState.INACTIVE
        assert not final.armed
        assert final.tranche_id == plan.tranches[-1].id

    def test_arm_once(self, final):
        armed = arm(final)
        assert armed.armed
        with pytest.raises(InvalidTransitionError):
            arm(armed)

    def test_activates_only_when_armed_and_empty(self, plan, final):
        last = plan.tranches[-1]
        empty = replace(last, current_stock=0)
        assert not should_activate(final, empty)
        assert not should_activate(arm(final), last)
        assert should_activate(arm(final), empty)

    def test_unarmed_cannot_activate(self, final, clock):
        with pytest.raises(InvalidTransitionError) as exc_info:
            activate_final_settlement(final, Decimal("1"), clock.now())
        assert exc_info.value.reason == "not armed"


class TestExpectedAmount:
    def test_collected_minus_remitted(self, plan, clock):
        batch = replace(
            activate_batch(plan.batch, clock.now()),
            money_collected=Decimal("175000"),
            money_remitted=Decimal("75000"),
        )
        assert compute_final_expected(batch, Decimal("0")) == Decimal("100000.00")

    def test_pending_profit_is_excluded(self, plan, clock):
        batch = replace(
            activate_batch(plan.batch, clock.now()),
            money_collected=Decimal("175000"),
            money_remitted=Decimal("75000"),
        )
        assert compute_final_expected(batch, Decimal("15000")) == Decimal("85000.00")

    def test_money_paid_to_equipment_debt_is_excluded(self, plan, clock):
        batch = replace(
            activate_batch(plan.batch, clock.now()),
            money_collected=Decimal("175000"),
            money_remitted=Decimal("75000"),
            money_to_debt=Decimal("10000"),
        )
        assert compute_final_expected(batch, Decimal("0")) == Decimal("90000.00")

    def test_floored_at_zero(self, plan):
        batch = replace(plan.batch, money_collected=Decimal("100"), money_remitted=Decimal("100"))
        assert compute_final_expected(batch, Decimal("50")) == Decimal("0.00")


class TestConfirmation:
    def test_confirm_finalizes_tranche_and_batch(self, final, clock):
        pending = activate_final_settlement(arm(final), Decimal("100000"), clock.now())
        assert pending.final_settlement.state == FinalSettlementState.PENDING
        assert pending.effects[0].kind == NotificationKind.FINAL_SETTLEMENT_PENDING

        done = confirm_final_settlement(pending.final_settlement, Decimal("100000"), clock.now())
        assert done.final_settlement.state == FinalSettlementState.SUCCESS
        assert done.final_settlement.received_amount == Decimal("100000")
        assert done.effects[:3] == (
            RecordRemittance(final.batch_id, Decimal("100000")),
            FinalizeTranche(final.tranche_id),
            FinalizeBatch(final.batch_id),
        )
        assert done.effects[3].kind == NotificationKind.SETTLEMENT_SUCCESS

    def test_confirm_below_expected(self, final, clock):
        pending = activate_final_settlement(arm(final), Decimal("100000"), clock.now())
        with pytest.raises(AmountBelowExpectedError):
            confirm_final_settlement(pending.final_settlement, Decimal("99999"), clock.now())

    def test_cannot_confirm_inactive(self, final, clock):
        with pytest.raises(InvalidTransitionError):
            confirm_final_settlement(arm(final), Decimal("0"), clock.now())
