"""
Tests for WholesaleService: register -> complete -> confirm.

The main flow uses a 100-unit FLAT batch whose first tranche is only
released, so an 80-unit order takes 66 reserved units from tranches 2-3 and
forces a 14-unit batch.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from consignment_kernel.domain.effects import NotificationKind
from consignment_kernel.domain.entities import (
    BatchState,
    EquipmentDebt,
    PaymentModality,
    PayoutModel,
    SettlementState,
    StockSourceKind,
    TrancheState,
    WholesaleOrderState,
    WholesaleSettlementState,
)
from consignment_kernel.exceptions import (
    BelowMinimumQuantityError,
    EntityNotFoundError,
    InsufficientStockError,
    InvalidTransitionError,
)


@pytest.fixture
def active_batch(batch_service, seller_id):
    plan = batch_service.issue_batch(seller_id, 100, PayoutModel.FLAT_SPLIT)
    batch_service.activate_batch(plan.batch.id)
    return plan


def _order(wholesale_service, seller_id, quantity=80, payout_model=PayoutModel.FLAT_SPLIT):
    return wholesale_service.register_order(
        seller_id,
        quantity,
        with_liquor=False,
        modality=PaymentModality.ADVANCE,
        payout_model=payout_model,
    )


class TestQuote:
    def test_tier_price(self, wholesale_service):
        quote = wholesale_service.quote(80, with_liquor=False)
        assert quote.unit_price == Decimal("4500")
        assert quote.gross_revenue == Decimal("360000")
        assert wholesale_service.quote(100, with_liquor=True).unit_price == Decimal("4500")

    def test_below_minimum(self, wholesale_service):
        with pytest.raises(BelowMinimumQuantityError):
            wholesale_service.quote(19, with_liquor=True)


class TestRegister:
    def test_plan_and_forced_batch(self, wholesale_service, repos, seller_id, stock_pool, active_batch):
        order = _order(wholesale_service, seller_id)
        assert order.state == WholesaleOrderState.PENDING
        assert order.forced_quantity == 14
        assert [(s.tranche_number, s.quantity, s.kind) for s in order.sources] == [
            (2, 33, StockSourceKind.RESERVED),
            (3, 33, StockSourceKind.RESERVED),
            (1, 7, StockSourceKind.FORCED),
            (2, 7, StockSourceKind.FORCED),
        ]

        forced = repos.batches.get(order.forced_batch_id)
        assert forced.is_forced
        assert forced.state == BatchState.CREATED
        assert forced.unit_count == 14
        assert forced.origin_wholesale_order_id == order.id

        # nothing is taken before confirmation
        assert repos.tranches.get(active_batch.tranches[1].id).current_stock == 33
        assert stock_pool.units == 9_900

    def test_no_forced_batch_when_stock_suffices(self, wholesale_service, seller_id, active_batch):
        order = _order(wholesale_service, seller_id, quantity=50)
        assert order.forced_quantity == 0
        assert order.forced_batch_id is None
        assert sum(s.quantity for s in order.sources) == 50

    def test_below_minimum_writes_nothing(self, wholesale_service, repos, seller_id, active_batch):
        with pytest.raises(BelowMinimumQuantityError):
            _order(wholesale_service, seller_id, quantity=10)
        assert [b.id for b in repos.batches.list_by_seller(seller_id)] == [active_batch.batch.id]


class TestCompleteAndConfirm:
    def test_full_flow(
        self, wholesale_service, settlement_service, repos, notifier, reward_fund,
        stock_pool, seller_id, active_batch,
    ):
        batch_id = active_batch.batch.id
        order = _order(wholesale_service, seller_id)

        ws = wholesale_service.complete_order(order.id)
        assert repos.wholesale_orders.get(order.id).state == WholesaleOrderState.COMPLETED
        assert ws.state == WholesaleSettlementState.PENDING
        assert ws.operator_total == Decimal("171360.00")
        assert ws.seller_total == Decimal("188640.00")
        assert repos.wholesale_settlements.get_by_order(order.id).id == ws.id

        notifier.clear()
        confirmed = wholesale_service.confirm_settlement(ws.id)
        assert confirmed.state == WholesaleSettlementState.SUCCESS
        assert confirmed.closed_settlement_ids == ()

        # stock taken exactly as planned
        _, second, third = repos.tranches.list_by_batch(batch_id)
        assert second.current_stock == 0
        assert second.consumed_by_wholesale == 33
        assert third.current_stock == 0

        batch = repos.batches.get(batch_id)
        assert batch.money_collected == Decimal("297000")
        # the forced batch gets its own operator investment back
        assert batch.money_remitted == Decimal("154560.00")

        forced = repos.batches.get(order.forced_batch_id)
        assert forced.state == BatchState.FINALIZED
        assert forced.money_collected == Decimal("63000")
        assert forced.money_remitted == Decimal("16800.00")
        assert all(
            t.state == TrancheState.FINALIZED
            for t in repos.tranches.list_by_batch(forced.id)
        )
        assert repos.settlements.list_by_batch(forced.id) == []
        assert stock_pool.units == 9_886
        assert reward_fund.balance == Decimal("2800")
        assert reward_fund.entries[0].batch_id == forced.id

        # investment is recovered, and already remitted
        t1 = repos.settlements.list_by_batch(batch_id)[0]
        assert t1.state == SettlementState.PENDING
        assert t1.expected_amount == Decimal("0")
        assert notifier.kinds() == [
            NotificationKind.WHOLESALE_SETTLEMENT_SUCCESS,
            NotificationKind.INVESTMENT_RECOVERED,
            NotificationKind.SETTLEMENT_PENDING,
        ]

        # emptied tranches still go through the normal release flow
        settlement_service.confirm_settlement(t1.id, Decimal("0"))
        assert repos.tranches.get(second.id).state == TrancheState.RELEASED
        t2 = repos.settlements.list_by_batch(batch_id)[1]
        assert t2.state == SettlementState.PENDING
        assert t2.expected_amount == Decimal("0")

    def test_each_step_runs_once(self, wholesale_service, seller_id, active_batch):
        order = _order(wholesale_service, seller_id)
        ws = wholesale_service.complete_order(order.id)
        with pytest.raises(InvalidTransitionError):
            wholesale_service.complete_order(order.id)
        wholesale_service.confirm_settlement(ws.id)
        with pytest.raises(InvalidTransitionError):
            wholesale_service.confirm_settlement(ws.id)

    def test_retail_drain_rolls_back_confirmation(
        self, wholesale_service, batch_service, repos, seller_id, delivered_batch,
    ):
        plan = delivered_batch()  # 25 at home, 25 reserved
        order = _order(wholesale_service, seller_id, quantity=30)
        assert [(s.kind, s.quantity) for s in order.sources] == [
            (StockSourceKind.RESERVED, 25),
            (StockSourceKind.IN_HOME, 5),
        ]
        ws = wholesale_service.complete_order(order.id)

        batch_service.register_sale(plan.batch.id, 22, Decimal("77000"))
        with pytest.raises(InsufficientStockError):
            wholesale_service.confirm_settlement(ws.id)

        assert repos.wholesale_settlements.get(ws.id).state == WholesaleSettlementState.PENDING
        assert repos.tranches.get(plan.tranches[1].id).current_stock == 25
        assert repos.tranches.get(plan.tranches[0].id).current_stock == 3
        assert repos.batches.get(plan.batch.id).money_remitted == Decimal("0")

    def test_closes_pending_settlement(
        self, wholesale_service, batch_service, repos, seller_id, delivered_batch,
    ):
        plan = delivered_batch()
        batch_service.record_sale(plan.batch.id, 23, Decimal("80500"))
        t1 = repos.settlements.list_by_batch(plan.batch.id)[0]
        assert t1.state == SettlementState.PENDING

        order = _order(wholesale_service, seller_id, quantity=20)
        ws = wholesale_service.complete_order(order.id)
        # 80500 retail + 96000 wholesale; T1's 60000 is the operator investment
        assert ws.total_available == Decimal("176500")
        assert ws.debts_settled == Decimal("60000")
        assert ws.operator_investment_existing == Decimal("0")
        assert ws.net_profit == Decimal("56500")
        assert ws.operator_total == Decimal("82600.00")

        confirmed = wholesale_service.confirm_settlement(ws.id)
        closed = repos.settlements.get(t1.id)
        assert closed.state == SettlementState.CLOSED_BY_WHOLESALE
        assert closed.amount_covered_by_wholesale == Decimal("60000")
        assert closed.closed_by_wholesale_settlement_id == ws.id
        assert confirmed.closed_settlement_ids == (t1.id,)

        second = repos.tranches.get(plan.tranches[1].id)
        assert second.state == TrancheState.RELEASED
        assert second.released_by_wholesale_settlement_id == ws.id
        assert second.current_stock == 5

        batch = repos.batches.get(plan.batch.id)
        assert batch.money_collected == Decimal("176500")
        assert batch.money_remitted == Decimal("82600.00")


class TestPartialCover:
    """
    A 500000 damage debt rides on T1 (60000 investment), so a 20-unit order
    (96000) plus 23000 of retail money covers only part of it.
    """

    @pytest.fixture
    def damage_debt(self, equipment_debts, seller_id):
        equipment_debts.set_debt(seller_id, EquipmentDebt(damage_charges=Decimal("500000")))

    @pytest.fixture
    def covered(self, wholesale_service, batch_service, repos, seller_id, delivered_batch, damage_debt):
        plan = delivered_batch()
        batch_service.record_sale(plan.batch.id, 23, Decimal("23000"))
        t1 = repos.settlements.list_by_batch(plan.batch.id)[0]
        assert t1.state == SettlementState.PENDING
        assert t1.expected_amount == Decimal("560000")

        order = _order(wholesale_service, seller_id, quantity=20)
        ws = wholesale_service.complete_order(order.id)
        assert ws.debts_settled == Decimal("119000")
        assert ws.operator_total == Decimal("119000")
        wholesale_service.confirm_settlement(ws.id)
        return plan, t1.id, ws

    def test_cover_is_not_counted_twice(self, covered, repos, equipment_debts, seller_id):
        plan, t1_id, ws = covered
        t1 = repos.settlements.get(t1_id)
        assert t1.state == SettlementState.PENDING
        assert t1.closed_by_wholesale_settlement_id == ws.id
        assert t1.amount_covered_by_wholesale == Decimal("0")
        assert t1.investment_component == Decimal("60000")
        assert t1.debt_component == Decimal("381000")
        assert t1.expected_amount == Decimal("441000")
        assert t1.amount_due == Decimal("441000")

        assert equipment_debts.get_outstanding_debt(seller_id).total == Decimal("381000")
        batch = repos.batches.get(plan.batch.id)
        assert batch.money_collected == Decimal("119000")
        assert batch.money_remitted == Decimal("0")
        assert batch.money_to_debt == Decimal("119000")

    def test_recompute_keeps_amount_due(self, covered, settlement_service, repos, seller_id):
        _, t1_id, _ = covered
        assert settlement_service.recompute_expected_amounts(seller_id) == []
        assert repos.settlements.get(t1_id).amount_due == Decimal("441000")

    def test_later_sale_then_confirm(
        self, covered, batch_service, settlement_service, repos, equipment_debts, seller_id,
    ):
        plan, t1_id, _ = covered
        # 126000 collected: 6000 profit, 40% of it for the operator
        batch_service.record_sale(plan.batch.id, 2, Decimal("7000"))
        t1 = repos.settlements.get(t1_id)
        assert t1.profit_component == Decimal("2400")
        assert t1.amount_due == Decimal("443400")

        settlement_service.confirm_settlement(t1_id, Decimal("443400"))
        assert repos.settlements.get(t1_id).state == SettlementState.SUCCESS
        assert equipment_debts.get_outstanding_debt(seller_id).total == Decimal("0")
        assert repos.batches.get(plan.batch.id).money_remitted == Decimal("62400")


class TestPayouts:
    def test_mark_transferred(self, wholesale_service, hierarchy, seller_id, active_batch):
        recruiter = uuid4()
        hierarchy.set_chain(seller_id, [recruiter])
        order = _order(wholesale_service, seller_id, payout_model=PayoutModel.CASCADE_SPLIT)
        ws = wholesale_service.complete_order(order.id)
        assert ws.recruiter_payouts[0].recruiter_id == recruiter
        assert ws.recruiter_payouts[0].amount == Decimal("21600.00")

        with pytest.raises(InvalidTransitionError):
            wholesale_service.mark_payout_transferred(ws.id, 1)
        wholesale_service.confirm_settlement(ws.id)

        paid = wholesale_service.mark_payout_transferred(ws.id, 1)
        assert paid.recruiter_payouts[0].transferred
        with pytest.raises(InvalidTransitionError):
            wholesale_service.mark_payout_transferred(ws.id, 1)
        with pytest.raises(EntityNotFoundError):
            wholesale_service.mark_payout_transferred(ws.id, 2)
