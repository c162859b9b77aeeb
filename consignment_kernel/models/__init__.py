"""ORM persistence models for the consignment kernel."""

from consignment_kernel.models.batch import BatchModel, SaleModel, TrancheModel
from consignment_kernel.models.settlement import FinalSettlementModel, SettlementModel
from consignment_kernel.models.wholesale import (
    WholesaleOrderModel,
    WholesaleSettlementModel,
)

__all__ = [
    "BatchModel",
    "FinalSettlementModel",
    "SaleModel",
    "SettlementModel",
    "TrancheModel",
    "WholesaleOrderModel",
    "WholesaleSettlementModel",
]
