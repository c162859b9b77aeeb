"""
ConsignmentService -- common base for the orchestrating services.

Responsibility:
    Owns the transaction boundary of every public service operation:
    freeze configuration, read the clock once, run the operation with a
    fresh ``SettlementCoordinator``, commit on success, roll back and
    re-raise on any error, and dispatch queued notifications only after the
    commit.

Architecture position:
    Services -- imperative shell.  Subclassed by BatchService,
    SettlementService and WholesaleService.

Invariants enforced:
    - No operation leaves partial state: every write of an operation is in
      one transaction.
    - A notification is never sent for work that was rolled back.
    - Operations touching a seller run under that seller's lock for their
      whole duration, commit included.

Failure modes:
    - Any exception from the operation body propagates after rollback.
    - Notifier failures are logged by ``dispatch_notifications`` and never
      raised.

Audit relevance:
    Each operation logs ``<name>_completed`` or ``<name>_failed`` with its
    duration under a fresh correlation id (LogContext).
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from consignment_config.provider import ConfigProvider, StaticConfigProvider, freeze
from consignment_kernel.domain.clock import Clock, SystemClock
from consignment_kernel.logging_config import LogContext, get_logger
from consignment_services.coordinator import SettlementCoordinator
from consignment_services.effects import dispatch_notifications
from consignment_services.interfaces import Collaborators
from consignment_services.locks import DEFAULT_SELLER_LOCKS, SellerLocks
from consignment_services.repositories import Repositories

logger = get_logger("services.base")


class ConsignmentService:
    """
    Base class for services that own their transaction.

    Contract:
        ``auto_commit=True`` (default): each public operation commits on
        success and rolls back on failure.  ``auto_commit=False``: the
        operation only flushes and the caller owns commit/rollback; queued
        notifications are then dispatched when the operation returns.
    """

    def __init__(
        self,
        session: Session,
        collaborators: Collaborators | None = None,
        *,
        clock: Clock | None = None,
        config: ConfigProvider | None = None,
        locks: SellerLocks | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._repos = Repositories(session)
        self._collaborators = collaborators or Collaborators()
        self._clock = clock or SystemClock()
        self._config = config or StaticConfigProvider()
        self._locks = locks if locks is not None else DEFAULT_SELLER_LOCKS
        self._auto_commit = auto_commit

    @property
    def repositories(self) -> Repositories:
        return self._repos

    def _coordinator(self) -> SettlementCoordinator:
        return SettlementCoordinator(
            self._repos,
            self._collaborators,
            self._locks,
            freeze(self._config),
            self._clock.now(),
        )

    @contextmanager
    def _operation(
        self,
        name: str,
        *,
        seller_id: UUID | None = None,
        batch_id: UUID | None = None,
        order_id: UUID | None = None,
    ) -> Iterator[SettlementCoordinator]:
        with ExitStack() as stack:
            stack.enter_context(
                LogContext.bind(
                    correlation_id=str(uuid4()),
                    seller_id=seller_id,
                    batch_id=batch_id,
                    order_id=order_id,
                )
            )
            if seller_id is not None:
                stack.enter_context(self._locks.hold(seller_id))

            coordinator = self._coordinator()
            t0 = time.monotonic()
            try:
                yield coordinator
                if self._auto_commit:
                    self._session.commit()
                else:
                    self._session.flush()
            except Exception:
                if self._auto_commit:
                    self._session.rollback()
                logger.warning(
                    f"{name}_failed",
                    extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
                    exc_info=True,
                )
                raise

            logger.info(
                f"{name}_completed",
                extra={
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    "notifications": len(coordinator.notifications),
                },
            )
        dispatch_notifications(self._collaborators.notifier, coordinator.notifications)
