"""
Tests for batch issuance planning (tranche split and investment split).
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from consignment_config import LotRules, StaticConfigProvider
from consignment_engines.tranche_split import (
    plan_batch,
    split_investment,
    split_units,
    tranche_count_for,
)
from consignment_kernel.domain.entities import BatchState, PayoutModel, TrancheState


class TestSplitUnits:
    @pytest.mark.parametrize(
        "units,expected",
        [
            (100, (34, 33, 33)),
            (50, (25, 25)),
            (51, (17, 17, 17)),
            (7, (4, 3)),
            (101, (34, 34, 33)),
            (2, (1, 1)),
        ],
    )
    def test_split_with_default_threshold(self, units, expected):
        assert split_units(units, 50) == expected

    def test_threshold_is_inclusive_for_two_tranches(self):
        assert tranche_count_for(50, 50) == 2
        assert tranche_count_for(51, 50) == 3

    def test_single_unit_leaves_second_tranche_empty(self):
        assert split_units(1, 50) == (1, 0)

    def test_non_positive_units_rejected(self):
        with pytest.raises(ValueError):
            split_units(0, 50)


class TestSplitInvestment:
    def test_even_split(self):
        split = split_investment(100, Decimal("2400"), Decimal("50"))
        assert split.total == Decimal("240000.00")
        assert split.seller == Decimal("120000.00")
        assert split.operator == Decimal("120000.00")

    def test_operator_absorbs_rounding(self):
        split = split_investment(3, Decimal("333.33"), Decimal("50"))
        assert split.total == Decimal("999.99")
        assert split.seller == Decimal("500.00")
        assert split.operator == Decimal("499.99")
        assert split.seller + split.operator == split.total


class TestPlanBatch:
    def test_plan_creates_inactive_tranches(self, lot_rules, clock):
        seller = uuid4()
        plan = plan_batch(
            seller_id=seller,
            unit_count=100,
            payout_model=PayoutModel.FLAT_SPLIT,
            rules=lot_rules,
            now=clock.now(),
        )

        assert plan.batch.state == BatchState.CREATED
        assert plan.batch.seller_id == seller
        assert plan.batch.tranche_count == 3
        assert plan.batch.total_investment == Decimal("240000.00")
        assert plan.batch.created_at == clock.now()
        assert [t.number for t in plan.tranches] == [1, 2, 3]
        assert all(t.state == TrancheState.INACTIVE for t in plan.tranches)
        assert all(t.batch_id == plan.batch.id for t in plan.tranches)
        assert [t.current_stock for t in plan.tranches] == [34, 33, 33]

    def test_forced_batch_records_origin(self, lot_rules):
        order_id = uuid4()
        plan = plan_batch(
            seller_id=uuid4(),
            unit_count=14,
            payout_model=PayoutModel.CASCADE_SPLIT,
            rules=lot_rules,
            is_forced=True,
            origin_wholesale_order_id=order_id,
        )
        assert plan.batch.is_forced
        assert plan.batch.origin_wholesale_order_id == order_id
        assert sum(t.initial_stock for t in plan.tranches) == 14

    def test_threshold_comes_from_configuration(self):
        rules = LotRules.from_provider(
            StaticConfigProvider({"lots.three_tranche_threshold": 200})
        )
        plan = plan_batch(
            seller_id=uuid4(),
            unit_count=100,
            payout_model=PayoutModel.FLAT_SPLIT,
            rules=rules,
        )
        assert plan.batch.tranche_count == 2

    def test_emits_engine_trace(self, lot_rules, captured_logs):
        plan_batch(
            seller_id=uuid4(),
            unit_count=10,
            payout_model=PayoutModel.FLAT_SPLIT,
            rules=lot_rules,
        )
        traces = [r for r in captured_logs() if r["message"] == "CONSIGNMENT_ENGINE_TRACE"]
        assert traces
        assert traces[0]["engine_name"] == "tranche_split"
        assert len(traces[0]["input_fingerprint"]) == 16
