"""
consignment_engines -- pure calculation and state-transition engines.

Every function here is deterministic and free of I/O: inputs are frozen
domain entities and typed rule views, outputs are new entities plus the
effects the caller must apply.  Services in ``consignment_services`` own
persistence, locking and notification dispatch.
"""

from consignment_engines.expected_amount import (
    ExpectedAmountBreakdown,
    calculate_expected_amount,
)
from consignment_engines.profit_cascade import (
    ProfitDistribution,
    RecruiterShare,
    calculate_profit_distribution,
    split_profit,
)
from consignment_engines.stock_consumption import (
    ConsumptionPlan,
    plan_consumption,
    with_forced_batch,
)
from consignment_engines.tranche_split import (
    BatchPlan,
    plan_batch,
    split_investment,
    split_units,
)
from consignment_engines.wholesale_pricing import WholesaleQuote, quote_wholesale

__all__ = [
    "BatchPlan",
    "ConsumptionPlan",
    "ExpectedAmountBreakdown",
    "ProfitDistribution",
    "RecruiterShare",
    "WholesaleQuote",
    "calculate_expected_amount",
    "calculate_profit_distribution",
    "plan_batch",
    "plan_consumption",
    "quote_wholesale",
    "split_investment",
    "split_profit",
    "split_units",
    "with_forced_batch",
]
