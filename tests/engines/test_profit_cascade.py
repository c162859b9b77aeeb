"""
Tests for the profit cascade calculator.
"""

from decimal import Decimal
from uuid import uuid4

from consignment_config import ProfitRules, StaticConfigProvider
from consignment_engines.profit_cascade import (
    NO_PROFIT,
    calculate_profit_distribution,
    split_profit,
)
from consignment_kernel.domain.entities import PayoutModel


class TestFlatSplit:
    def test_sixty_forty(self, profit_rules):
        dist = calculate_profit_distribution(
            proceeds=Decimal("300000"),
            investment=Decimal("240000"),
            payout_model=PayoutModel.FLAT_SPLIT,
            rules=profit_rules,
        )
        assert dist.profit == Decimal("60000.00")
        assert dist.seller_share == Decimal("36000.00")
        assert dist.operator_share == Decimal("24000.00")
        assert dist.recruiter_payouts == ()

    def test_chain_is_ignored(self, profit_rules):
        dist = calculate_profit_distribution(
            proceeds=Decimal("300000"),
            investment=Decimal("240000"),
            payout_model=PayoutModel.FLAT_SPLIT,
            recruiter_chain=[uuid4(), uuid4()],
            rules=profit_rules,
        )
        assert dist.recruiter_payouts == ()
        assert dist.operator_share == Decimal("24000.00")

    def test_percentage_from_configuration(self):
        rules = ProfitRules.from_provider(
            StaticConfigProvider({"profit.flat_seller_percent": 70})
        )
        dist = split_profit(Decimal("1000"), PayoutModel.FLAT_SPLIT, (), rules)
        assert dist.seller_share == Decimal("700.00")
        assert dist.operator_share == Decimal("300.00")


class TestCascadeSplit:
    def test_two_level_chain(self, profit_rules):
        r1, r2 = uuid4(), uuid4()
        dist = calculate_profit_distribution(
            proceeds=Decimal("300000"),
            investment=Decimal("240000"),
            payout_model=PayoutModel.CASCADE_SPLIT,
            recruiter_chain=[r1, r2],
            rules=profit_rules,
        )
        assert dist.seller_share == Decimal("30000.00")
        assert [(p.level, p.recruiter_id, p.amount) for p in dist.recruiter_payouts] == [
            (1, r1, Decimal("15000.00")),
            (2, r2, Decimal("7500.00")),
        ]
        assert dist.operator_share == Decimal("7500.00")
        assert dist.total == dist.profit

    def test_empty_chain_gives_operator_the_remainder(self, profit_rules):
        dist = split_profit(Decimal("60000"), PayoutModel.CASCADE_SPLIT, (), profit_rules)
        assert dist.seller_share == Decimal("30000.00")
        assert dist.operator_share == Decimal("30000.00")

    def test_operator_matches_last_recruiter(self, profit_rules):
        chain = [uuid4() for _ in range(4)]
        dist = split_profit(Decimal("64000"), PayoutModel.CASCADE_SPLIT, chain, profit_rules)
        amounts = [p.amount for p in dist.recruiter_payouts]
        assert amounts == [
            Decimal("16000.00"),
            Decimal("8000.00"),
            Decimal("4000.00"),
            Decimal("2000.00"),
        ]
        assert dist.operator_share == Decimal("2000.00")

    def test_rounding_residue_goes_to_operator(self, profit_rules):
        chain = [uuid4(), uuid4(), uuid4()]
        dist = split_profit(Decimal("100.01"), PayoutModel.CASCADE_SPLIT, chain, profit_rules)
        assert dist.total == Decimal("100.01")


class TestNoProfit:
    def test_proceeds_equal_to_investment(self, profit_rules):
        dist = calculate_profit_distribution(
            proceeds=Decimal("240000"),
            investment=Decimal("240000"),
            payout_model=PayoutModel.CASCADE_SPLIT,
            recruiter_chain=[uuid4()],
            rules=profit_rules,
        )
        assert dist is NO_PROFIT
        assert not dist.has_profit

    def test_loss(self, profit_rules):
        dist = calculate_profit_distribution(
            proceeds=Decimal("100000"),
            investment=Decimal("240000"),
            payout_model=PayoutModel.FLAT_SPLIT,
            rules=profit_rules,
        )
        assert dist.operator_share == Decimal("0")
        assert dist.seller_share == Decimal("0")
