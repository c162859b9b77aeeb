"""
Pytest fixtures for the consignment test suite.

Provides:
- In-memory SQLite sessions (fresh schema per test)
- Deterministic clock, configuration and rule views
- In-memory collaborators (notifier, hierarchy, equipment debts, stock pool)
- Services wired to all of the above
- ``captured_logs`` for asserting on structured log output
"""

import json
import logging
from io import StringIO
from uuid import uuid4

import pytest

from consignment_config import LotRules, ProfitRules, SettlementRules, StaticConfigProvider
from consignment_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from consignment_kernel.domain.clock import DeterministicClock
from consignment_kernel.domain.entities import PayoutModel
from consignment_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from consignment_services import (
    BatchService,
    Collaborators,
    InMemoryEquipmentDebts,
    InMemoryRewardFund,
    InMemoryStockPool,
    RecordingNotifier,
    SellerLocks,
    SettlementService,
    StaticHierarchy,
    WholesaleService,
)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture consignment_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, batch_service):
            batch_service.issue_batch(...)
            logs = captured_logs()
            assert any(r["message"] == "batch_issued" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("consignment_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def db_engine():
    engine = init_engine_from_url("sqlite://")
    create_tables()
    yield engine
    drop_tables()
    reset_engine()


@pytest.fixture
def session(db_engine):
    s = get_session()
    yield s
    s.rollback()
    s.close()


# =============================================================================
# Time and configuration
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock()


@pytest.fixture
def config():
    return StaticConfigProvider()


@pytest.fixture
def lot_rules(config):
    return LotRules.from_provider(config)


@pytest.fixture
def profit_rules(config):
    return ProfitRules.from_provider(config)


@pytest.fixture
def settlement_rules(config):
    return SettlementRules.from_provider(config)


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def seller_id():
    return uuid4()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def hierarchy():
    return StaticHierarchy()


@pytest.fixture
def equipment_debts():
    return InMemoryEquipmentDebts()


@pytest.fixture
def stock_pool():
    return InMemoryStockPool(10_000)


@pytest.fixture
def reward_fund():
    return InMemoryRewardFund()


@pytest.fixture
def collaborators(notifier, hierarchy, equipment_debts, stock_pool, reward_fund):
    return Collaborators(
        notifier=notifier,
        hierarchy=hierarchy,
        equipment_debts=equipment_debts,
        stock_pool=stock_pool,
        reward_fund=reward_fund,
    )


@pytest.fixture
def locks():
    return SellerLocks()


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def batch_service(session, collaborators, clock, config, locks):
    return BatchService(session, collaborators, clock=clock, config=config, locks=locks)


@pytest.fixture
def settlement_service(session, collaborators, clock, config, locks):
    return SettlementService(session, collaborators, clock=clock, config=config, locks=locks)


@pytest.fixture
def wholesale_service(session, collaborators, clock, config, locks):
    return WholesaleService(session, collaborators, clock=clock, config=config, locks=locks)


@pytest.fixture
def repos(batch_service):
    return batch_service.repositories


@pytest.fixture
def delivered_batch(batch_service, seller_id):
    """
    Factory for an ACTIVE batch whose first tranche is IN_HOME.

    Returns the issuing ``BatchPlan``; re-read entities through ``repos``.
    """

    def _make(unit_count=50, payout_model=PayoutModel.FLAT_SPLIT, seller=None):
        plan = batch_service.issue_batch(seller or seller_id, unit_count, payout_model)
        batch_service.activate_batch(plan.batch.id)
        first = plan.tranches[0].id
        batch_service.auto_transit(first)
        batch_service.confirm_delivery(first)
        return plan

    return _make
