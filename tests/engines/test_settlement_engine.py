"""
Tests for the settlement engine: triggers, state machine and active
settlement selection.
"""

from dataclasses import replace
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from consignment_engines.batch_lifecycle import (
    activate_batch,
    auto_transit,
    confirm_delivery,
    release_tranche,
)
from consignment_engines.expected_amount import ExpectedAmountBreakdown
from consignment_engines.settlement import (
    activate_settlement,
    build_settlements,
    check_trigger,
    close_by_wholesale,
    concept_for,
    confirm_settlement,
    rebase_after_wholesale,
    recompute_expected_amount,
    select_active_settlement,
)
from consignment_engines.tranche_split import plan_batch
from consignment_kernel.domain.effects import (
    ArmFinalSettlement,
    NotificationKind,
    RecordEquipmentDebtPaid,
    RecordRemittance,
    ReevaluateSellerTriggers,
    ReleaseNextTranche,
    SendNotification,
)
from consignment_kernel.domain.entities import (
    BatchState,
    PayoutModel,
    SettlementConcept,
    SettlementState,
)
from consignment_kernel.exceptions import AmountBelowExpectedError, InvalidTransitionError


def _deliver(tranche, now):
    return confirm_delivery(auto_transit(release_tranche(tranche, now), now), now)


def _breakdown(investment="0", profit="0", debt="0"):
    return ExpectedAmountBreakdown(
        investment=Decimal(investment), profit=Decimal(profit), debt=Decimal(debt),
    )


@pytest.fixture
def three(lot_rules, clock):
    plan = plan_batch(
        seller_id=uuid4(),
        unit_count=100,
        payout_model=PayoutModel.FLAT_SPLIT,
        rules=lot_rules,
        now=clock.now(),
    )
    batch = activate_batch(plan.batch, clock.now())
    return batch, plan.tranches, build_settlements(batch, plan.tranches)


@pytest.fixture
def two(lot_rules, clock):
    plan = plan_batch(
        seller_id=uuid4(),
        unit_count=50,
        payout_model=PayoutModel.FLAT_SPLIT,
        rules=lot_rules,
        now=clock.now(),
    )
    batch = activate_batch(plan.batch, clock.now())
    return batch, plan.tranches, build_settlements(batch, plan.tranches)


@pytest.fixture
def pending(three, clock):
    batch, _, settlements = three
    return activate_settlement(
        settlements[0], _breakdown(investment="120000"), clock.now(),
    ).settlement


class TestConcepts:
    def test_concepts(self):
        assert concept_for(3, 1) == SettlementConcept.INVESTMENT_ONLY
        assert concept_for(3, 2) == SettlementConcept.PROFIT_ONLY
        assert concept_for(3, 3) == SettlementConcept.PROFIT_ONLY
        assert concept_for(2, 1) == SettlementConcept.MIXED
        assert concept_for(2, 2) == SettlementConcept.PROFIT_ONLY

    def test_one_inactive_settlement_per_tranche(self, three):
        batch, tranches, settlements = three
        assert [s.tranche_number for s in settlements] == [1, 2, 3]
        assert [s.tranche_id for s in settlements] == [t.id for t in tranches]
        assert all(s.state == SettlementState.INACTIVE for s in settlements)
        assert all(s.expected_amount == Decimal("0") for s in settlements)


class TestTriggers:
    def test_three_tranche_first_fires_on_investment_recovered(
        self, three, settlement_rules, clock,
    ):
        batch, tranches, settlements = three
        t1 = _deliver(tranches[0], clock.now())
        assert not check_trigger(settlements[0], t1, batch, settlement_rules)
        recovered = replace(batch, money_collected=Decimal("120000"))
        assert check_trigger(settlements[0], t1, recovered, settlement_rules)

    def test_three_tranche_second_at_ten_percent(self, three, settlement_rules, clock):
        batch, tranches, settlements = three
        t2 = _deliver(tranches[1], clock.now())
        assert not check_trigger(
            settlements[1], replace(t2, current_stock=4), batch, settlement_rules,
        )
        assert check_trigger(
            settlements[1], replace(t2, current_stock=3), batch, settlement_rules,
        )

    def test_three_tranche_third_at_twenty_percent(self, three, settlement_rules, clock):
        batch, tranches, settlements = three
        t3 = _deliver(tranches[2], clock.now())
        assert check_trigger(
            settlements[2], replace(t3, current_stock=6), batch, settlement_rules,
        )
        assert not check_trigger(
            settlements[2], replace(t3, current_stock=7), batch, settlement_rules,
        )

    def test_two_tranche_thresholds(self, two, settlement_rules, clock):
        batch, tranches, settlements = two
        t1 = _deliver(tranches[0], clock.now())
        assert check_trigger(settlements[0], replace(t1, current_stock=2), batch, settlement_rules)
        assert not check_trigger(
            settlements[0], replace(t1, current_stock=3), batch, settlement_rules,
        )
        t2 = _deliver(tranches[1], clock.now())
        assert check_trigger(settlements[1], replace(t2, current_stock=5), batch, settlement_rules)

    def test_inactive_tranche_never_fires(self, two, settlement_rules):
        batch, tranches, settlements = two
        emptied = replace(tranches[1], current_stock=0)
        assert not check_trigger(settlements[1], emptied, batch, settlement_rules)

    def test_non_inactive_settlement_never_fires(self, two, settlement_rules, clock):
        batch, tranches, settlements = two
        t1 = replace(_deliver(tranches[0], clock.now()), current_stock=0)
        active = activate_settlement(settlements[0], _breakdown(), clock.now()).settlement
        assert not check_trigger(active, t1, batch, settlement_rules)


class TestActivation:
    def test_activate_sets_amount_and_notifies(self, three, clock):
        _, _, settlements = three
        transition = activate_settlement(
            settlements[0],
            _breakdown(investment="120000", debt="20000"),
            clock.now(),
            investment_recovered_notice=True,
        )
        s = transition.settlement
        assert s.state == SettlementState.PENDING
        assert s.expected_amount == Decimal("140000")
        assert s.debt_component == Decimal("20000")
        assert s.shortfall == Decimal("140000")
        assert s.pending_at == clock.now()
        kinds = [e.kind for e in transition.effects]
        assert kinds == [
            NotificationKind.INVESTMENT_RECOVERED,
            NotificationKind.SETTLEMENT_PENDING,
        ]

    def test_cannot_activate_twice(self, pending, clock):
        with pytest.raises(InvalidTransitionError):
            activate_settlement(pending, _breakdown(), clock.now())


class TestRecompute:
    def test_change_below_threshold_writes_nothing(self, pending):
        assert recompute_expected_amount(
            pending, _breakdown(investment="120000.50"), Decimal("1"),
        ) is None

    def test_change_is_applied(self, pending):
        updated = recompute_expected_amount(
            pending, _breakdown(investment="120000", debt="10000"), Decimal("1"),
        )
        assert updated.expected_amount == Decimal("130000")
        assert updated.version == pending.version + 1
        assert recompute_expected_amount(
            updated, _breakdown(investment="120000", debt="10000"), Decimal("1"),
        ) is None

    def test_terminal_settlement_rejects_recompute(self, three, pending, clock):
        _, tranches, _ = three
        done = confirm_settlement(
            pending, Decimal("120000"), clock.now(),
            next_tranche=tranches[1], is_last_tranche=False,
        ).settlement
        with pytest.raises(InvalidTransitionError):
            recompute_expected_amount(done, _breakdown(), Decimal("1"))


class TestConfirm:
    def test_success_releases_next_tranche(self, three, pending, clock):
        batch, tranches, _ = three
        transition = confirm_settlement(
            pending, Decimal("120000"), clock.now(),
            next_tranche=tranches[1], is_last_tranche=False,
        )
        assert transition.settlement.state == SettlementState.SUCCESS
        assert transition.settlement.shortfall == Decimal("0")
        effects = transition.effects
        assert RecordRemittance(batch.id, Decimal("120000")) in effects
        assert ReleaseNextTranche(batch.id, tranches[1].id) in effects
        assert ReevaluateSellerTriggers(batch.seller_id) in effects

    def test_last_tranche_arms_final_settlement(self, three, clock):
        batch, _, settlements = three
        active = activate_settlement(settlements[2], _breakdown(profit="5000"), clock.now())
        transition = confirm_settlement(
            active.settlement, Decimal("5000"), clock.now(),
            next_tranche=None, is_last_tranche=True,
        )
        assert ArmFinalSettlement(batch.id) in transition.effects
        assert not any(isinstance(e, ReleaseNextTranche) for e in transition.effects)

    def test_debt_component_is_not_remitted_to_the_batch(self, three, clock):
        batch, tranches, settlements = three
        active = activate_settlement(
            settlements[0], _breakdown(investment="120000", debt="20000"), clock.now(),
        ).settlement
        transition = confirm_settlement(
            active, Decimal("140000"), clock.now(),
            next_tranche=tranches[1], is_last_tranche=False,
        )
        assert RecordRemittance(batch.id, Decimal("120000")) in transition.effects
        assert RecordEquipmentDebtPaid(batch.seller_id, Decimal("20000"), batch.id) in (
            transition.effects
        )
        assert transition.debt_applied == Decimal("20000")

    def test_amount_below_expected(self, three, pending, clock):
        _, tranches, _ = three
        with pytest.raises(AmountBelowExpectedError) as exc_info:
            confirm_settlement(
                pending, Decimal("119999.99"), clock.now(),
                next_tranche=tranches[1], is_last_tranche=False,
            )
        assert exc_info.value.shortfall == Decimal("0.01")
        assert exc_info.value.code == "AMOUNT_BELOW_EXPECTED"

    def test_inactive_cannot_be_confirmed(self, three, clock):
        _, tranches, settlements = three
        with pytest.raises(InvalidTransitionError):
            confirm_settlement(
                settlements[1], Decimal("0"), clock.now(),
                next_tranche=tranches[2], is_last_tranche=False,
            )

    def test_success_is_terminal(self, three, pending, clock):
        _, tranches, _ = three
        done = confirm_settlement(
            pending, Decimal("120000"), clock.now(),
            next_tranche=tranches[1], is_last_tranche=False,
        ).settlement
        with pytest.raises(InvalidTransitionError):
            confirm_settlement(
                done, Decimal("120000"), clock.now(),
                next_tranche=tranches[1], is_last_tranche=False,
            )
        with pytest.raises(InvalidTransitionError):
            close_by_wholesale(
                done, uuid4(), Decimal("1"), clock.now(),
                next_tranche=tranches[1], is_last_tranche=False,
            )


class TestCloseByWholesale:
    def test_partial_cover_leaves_amount_due(self, three, pending, clock):
        _, tranches, _ = three
        ws_id = uuid4()
        transition = close_by_wholesale(
            pending, ws_id, Decimal("40000"), clock.now(),
            next_tranche=tranches[1], is_last_tranche=False,
        )
        s = transition.settlement
        assert s.state == SettlementState.PENDING
        assert s.amount_covered_by_wholesale == Decimal("40000")
        assert s.shortfall == Decimal("80000")
        assert s.amount_due == Decimal("80000")
        assert s.closed_by_wholesale_settlement_id == ws_id
        assert transition.applied_amount == Decimal("40000")
        assert transition.effects == ()

    def test_full_cover_closes_and_releases(self, three, pending, clock):
        batch, tranches, _ = three
        ws_id = uuid4()
        transition = close_by_wholesale(
            pending, ws_id, Decimal("500000"), clock.now(),
            next_tranche=tranches[1], is_last_tranche=False,
        )
        assert transition.settlement.state == SettlementState.CLOSED_BY_WHOLESALE
        assert transition.applied_amount == Decimal("120000")
        assert ReleaseNextTranche(batch.id, tranches[1].id, ws_id) in transition.effects
        assert not any(isinstance(e, RecordRemittance) for e in transition.effects)

    def test_then_confirm_remaining(self, three, pending, clock):
        _, tranches, _ = three
        covered = close_by_wholesale(
            pending, uuid4(), Decimal("40000"), clock.now(),
            next_tranche=tranches[1], is_last_tranche=False,
        ).settlement
        with pytest.raises(AmountBelowExpectedError):
            confirm_settlement(
                covered, Decimal("79999"), clock.now(),
                next_tranche=tranches[1], is_last_tranche=False,
            )
        done = confirm_settlement(
            covered, Decimal("80000"), clock.now(),
            next_tranche=tranches[1], is_last_tranche=False,
        )
        assert done.settlement.state == SettlementState.SUCCESS
        notices = [e for e in done.effects if isinstance(e, SendNotification)]
        assert notices[0].kind == NotificationKind.SETTLEMENT_SUCCESS

    def test_cover_pays_the_debt_first(self, three, clock):
        batch, tranches, settlements = three
        active = activate_settlement(
            settlements[0], _breakdown(investment="120000", debt="20000"), clock.now(),
        ).settlement
        transition = close_by_wholesale(
            active, uuid4(), Decimal("30000"), clock.now(),
            next_tranche=tranches[1], is_last_tranche=False,
        )
        assert transition.debt_applied == Decimal("20000")
        assert transition.effects == (RecordEquipmentDebtPaid(batch.seller_id, Decimal("20000")),)

        done = confirm_settlement(
            transition.settlement, Decimal("110000"), clock.now(),
            next_tranche=tranches[1], is_last_tranche=False,
        )
        assert RecordRemittance(batch.id, Decimal("110000")) in done.effects
        assert not any(isinstance(e, RecordEquipmentDebtPaid) for e in done.effects)


class TestRebaseAfterWholesale:
    def test_cover_is_folded_into_the_new_amount(self, three, clock):
        _, tranches, settlements = three
        active = activate_settlement(
            settlements[0], _breakdown(investment="120000", debt="20000"), clock.now(),
        ).settlement
        covered = close_by_wholesale(
            active, uuid4(), Decimal("30000"), clock.now(),
            next_tranche=tranches[1], is_last_tranche=False,
        ).settlement
        assert covered.amount_due == Decimal("110000")

        # debt paid, 10000 remitted: the books now say 110000 of investment
        rebased = rebase_after_wholesale(covered, _breakdown(investment="110000"))
        assert rebased.expected_amount == Decimal("110000")
        assert rebased.debt_component == Decimal("0")
        assert rebased.amount_covered_by_wholesale == Decimal("0")
        assert rebased.amount_due == Decimal("110000")
        assert rebased.shortfall == Decimal("110000")
        assert rebased.version == covered.version + 1

    def test_only_pending_settlements(self, three):
        _, _, settlements = three
        with pytest.raises(InvalidTransitionError):
            rebase_after_wholesale(settlements[0], _breakdown(investment="1"))


class TestActiveSettlementSelection:
    def test_pending_wins(self, three, two, pending):
        batch3, _, settlements3 = three
        batch2, _, settlements2 = two
        batches = {batch3.id: batch3, batch2.id: batch2}
        chosen = select_active_settlement([*settlements2, pending], batches)
        assert chosen == pending

    def test_lowest_tranche_then_activation_time(self, three, two, clock):
        batch3, _, settlements3 = three
        batch2, _, settlements2 = two
        later = replace(batch2, activated_at=clock.now() + timedelta(minutes=5))
        batches = {batch3.id: batch3, later.id: later}
        chosen = select_active_settlement([*settlements2, *settlements3], batches)
        assert chosen == settlements3[0]

    def test_ignores_finalized_batches(self, three):
        batch, _, settlements = three
        finalized = replace(batch, state=BatchState.FINALIZED)
        assert select_active_settlement(settlements, {batch.id: finalized}) is None
