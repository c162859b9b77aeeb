"""
consignment_services -- Package init and public API.

Responsibility:
    Stateful orchestration that composes the pure engines
    (consignment_engines/) with database sessions, collaborator ports and
    the wall clock.  This is the only layer that holds a session or sends
    notifications.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction (enforced by tests/architecture/test_layer_boundary.py):
        consignment_services/ -> consignment_engines/  (allowed)
        consignment_services/ -> consignment_kernel/   (allowed)
        consignment_engines/  -> consignment_services/ (FORBIDDEN)
        consignment_kernel/   -> consignment_services/ (FORBIDDEN)
"""

from consignment_services.batch_service import BatchService
from consignment_services.interfaces import (
    Collaborators,
    EquipmentDebtProvider,
    HierarchyProvider,
    InMemoryEquipmentDebts,
    InMemoryRewardFund,
    InMemoryStockPool,
    Notifier,
    NullNotifier,
    RecordingNotifier,
    RewardFund,
    StaticHierarchy,
    StockPool,
)
from consignment_services.locks import SellerLocks
from consignment_services.repositories import Repositories
from consignment_services.retry import with_version_retry
from consignment_services.settlement_service import SettlementService
from consignment_services.wholesale_service import WholesaleService

__all__ = [
    "BatchService",
    "Collaborators",
    "EquipmentDebtProvider",
    "HierarchyProvider",
    "InMemoryEquipmentDebts",
    "InMemoryRewardFund",
    "InMemoryStockPool",
    "Notifier",
    "NullNotifier",
    "RecordingNotifier",
    "Repositories",
    "RewardFund",
    "SellerLocks",
    "SettlementService",
    "StaticHierarchy",
    "StockPool",
    "WholesaleService",
    "with_version_retry",
]
