"""
Repositories -- load frozen entities, persist transitions with version checks.

Responsibility:
    The thin persistence adapter between the pure engines and the ORM
    models.  Reads return frozen domain entities (``model.to_dto()``);
    writes take the new entity and the version the caller read.

Architecture position:
    Services -- imperative shell.  Flushes within the caller's transaction;
    never commits or rolls back.

Invariants enforced:
    - Every update is a single conditional UPDATE
      ``WHERE id = :id AND version = :expected_version``.  Zero affected rows
      means the row changed (``VersionConflictError``) or never existed
      (``EntityNotFoundError``).
    - The sale stock decrement is one conditional UPDATE that also requires
      ``current_stock >= quantity``, so two concurrent sales can never both
      take the last units.

Failure modes:
    - VersionConflictError: stale ``expected_version`` (retryable).
    - EntityNotFoundError: unknown id.
    - InsufficientStockError: conditional decrement found too little stock.
"""

from __future__ import annotations

from typing import Generic, Iterable, TypeVar
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from consignment_kernel.domain.entities import (
    Batch,
    BatchState,
    FinalSettlement,
    Sale,
    Settlement,
    SettlementState,
    Tranche,
    TrancheState,
    WholesaleOrder,
    WholesaleSettlement,
)
from consignment_kernel.exceptions import (
    EntityNotFoundError,
    InsufficientStockError,
    InvalidTransitionError,
    VersionConflictError,
)
from consignment_kernel.logging_config import get_logger
from consignment_kernel.models import (
    BatchModel,
    FinalSettlementModel,
    SaleModel,
    SettlementModel,
    TrancheModel,
    WholesaleOrderModel,
    WholesaleSettlementModel,
)

logger = get_logger("services.repositories")

E = TypeVar("E")


class Repository(Generic[E]):
    """Version-checked load/save for one entity type."""

    model: type
    entity_name: str = "Entity"

    def __init__(self, session: Session):
        self._session = session

    def _select(self, *criteria, order_by=()) -> list[E]:
        stmt = select(self.model).where(*criteria).order_by(*order_by)
        rows = self._session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalars()
        return [row.to_dto() for row in rows]

    def find(self, entity_id: UUID) -> E | None:
        found = self._select(self.model.id == entity_id)
        return found[0] if found else None

    def get(self, entity_id: UUID) -> E:
        entity = self.find(entity_id)
        if entity is None:
            raise EntityNotFoundError(self.entity_name, str(entity_id))
        return entity

    def add(self, entity: E) -> E:
        self._session.add(self.model.from_dto(entity))
        self._session.flush()
        return entity

    def add_all(self, entities: Iterable[E]) -> None:
        self._session.add_all([self.model.from_dto(e) for e in entities])
        self._session.flush()

    def save(self, entity: E, expected_version: int) -> E:
        """
        Persist ``entity`` if the stored row is still at ``expected_version``.

        Raises:
            VersionConflictError: the row moved on since it was read.
            EntityNotFoundError: no row with this id.
        """
        if entity.version <= expected_version:
            raise ValueError(
                f"{self.entity_name} {entity.id}: new version {entity.version} "
                f"must be greater than expected {expected_version}"
            )
        stmt = (
            update(self.model)
            .where(self.model.id == entity.id, self.model.version == expected_version)
            .values(**self.model.values_from_dto(entity))
            .execution_options(synchronize_session=False)
        )
        result = self._session.execute(stmt)
        if result.rowcount == 0:
            self._raise_write_failure(entity.id, expected_version)
        return entity

    def _current_version(self, entity_id: UUID) -> int | None:
        return self._session.execute(
            select(self.model.version).where(self.model.id == entity_id)
        ).scalar_one_or_none()

    def _raise_write_failure(self, entity_id: UUID, expected_version: int) -> None:
        actual = self._current_version(entity_id)
        if actual is None:
            raise EntityNotFoundError(self.entity_name, str(entity_id))
        logger.warning(
            "version_conflict",
            extra={
                "entity_type": self.entity_name,
                "entity_id": str(entity_id),
                "expected_version": expected_version,
                "actual_version": actual,
            },
        )
        raise VersionConflictError(self.entity_name, str(entity_id), expected_version, actual)


class BatchRepository(Repository[Batch]):
    model = BatchModel
    entity_name = "Batch"

    def list_by_seller(
        self,
        seller_id: UUID,
        states: Iterable[BatchState] | None = None,
    ) -> list[Batch]:
        criteria = [BatchModel.seller_id == seller_id]
        if states is not None:
            criteria.append(BatchModel.state.in_([s.value for s in states]))
        return self._select(*criteria, order_by=(BatchModel.activated_at, BatchModel.id))

    def get_many(self, batch_ids: Iterable[UUID]) -> dict[UUID, Batch]:
        ids = list(batch_ids)
        if not ids:
            return {}
        return {b.id: b for b in self._select(BatchModel.id.in_(ids))}


class TrancheRepository(Repository[Tranche]):
    model = TrancheModel
    entity_name = "Tranche"

    def list_by_batch(self, batch_id: UUID) -> list[Tranche]:
        return self._select(TrancheModel.batch_id == batch_id, order_by=(TrancheModel.number,))

    def list_by_state(self, state: TrancheState) -> list[Tranche]:
        return self._select(
            TrancheModel.state == state.value,
            order_by=(TrancheModel.released_at, TrancheModel.id),
        )

    def decrement_stock(self, tranche_id: UUID, quantity: int, expected_version: int) -> Tranche:
        """
        Conditionally take ``quantity`` units from an IN_HOME tranche.

        One UPDATE scoped to ``(id, version)`` that also requires enough
        stock.  On zero affected rows the row is re-read to report why.

        Raises:
            VersionConflictError: tranche changed since it was read.
            InsufficientStockError: not enough stock at ``expected_version``.
            InvalidTransitionError: tranche is not IN_HOME.
            EntityNotFoundError: unknown tranche.
        """
        if quantity <= 0:
            raise ValueError(f"quantity must be positive, got {quantity}")
        stmt = (
            update(TrancheModel)
            .where(
                TrancheModel.id == tranche_id,
                TrancheModel.version == expected_version,
                TrancheModel.state == TrancheState.IN_HOME.value,
                TrancheModel.current_stock >= quantity,
            )
            .values(
                current_stock=TrancheModel.current_stock - quantity,
                version=TrancheModel.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        result = self._session.execute(stmt)
        if result.rowcount == 1:
            return self.get(tranche_id)

        current = self.find(tranche_id)
        if current is None:
            raise EntityNotFoundError(self.entity_name, str(tranche_id))
        if current.version != expected_version:
            raise VersionConflictError(
                self.entity_name, str(tranche_id), expected_version, current.version,
            )
        if current.state != TrancheState.IN_HOME:
            raise InvalidTransitionError(
                self.entity_name, str(tranche_id), current.state.value, "decrement_stock",
                reason="sales only draw from IN_HOME tranches",
            )
        raise InsufficientStockError(str(tranche_id), current.current_stock, quantity)


class SettlementRepository(Repository[Settlement]):
    model = SettlementModel
    entity_name = "Settlement"

    def list_by_seller(
        self,
        seller_id: UUID,
        states: Iterable[SettlementState] | None = None,
    ) -> list[Settlement]:
        criteria = [SettlementModel.seller_id == seller_id]
        if states is not None:
            criteria.append(SettlementModel.state.in_([s.value for s in states]))
        return self._select(
            *criteria,
            order_by=(SettlementModel.pending_at, SettlementModel.tranche_number, SettlementModel.id),
        )

    def list_by_batch(self, batch_id: UUID) -> list[Settlement]:
        return self._select(
            SettlementModel.batch_id == batch_id,
            order_by=(SettlementModel.tranche_number,),
        )

    def get_by_tranche(self, tranche_id: UUID) -> Settlement:
        found = self._select(SettlementModel.tranche_id == tranche_id)
        if not found:
            raise EntityNotFoundError("Settlement", f"tranche:{tranche_id}")
        return found[0]


class FinalSettlementRepository(Repository[FinalSettlement]):
    model = FinalSettlementModel
    entity_name = "FinalSettlement"

    def get_by_batch(self, batch_id: UUID) -> FinalSettlement:
        found = self._select(FinalSettlementModel.batch_id == batch_id)
        if not found:
            raise EntityNotFoundError("FinalSettlement", f"batch:{batch_id}")
        return found[0]

    def find_by_batch(self, batch_id: UUID) -> FinalSettlement | None:
        found = self._select(FinalSettlementModel.batch_id == batch_id)
        return found[0] if found else None


class SaleRepository(Repository[Sale]):
    model = SaleModel
    entity_name = "Sale"

    def list_by_batch(self, batch_id: UUID) -> list[Sale]:
        return self._select(SaleModel.batch_id == batch_id, order_by=(SaleModel.registered_at,))


class WholesaleOrderRepository(Repository[WholesaleOrder]):
    model = WholesaleOrderModel
    entity_name = "WholesaleOrder"


class WholesaleSettlementRepository(Repository[WholesaleSettlement]):
    model = WholesaleSettlementModel
    entity_name = "WholesaleSettlement"

    def get_by_order(self, order_id: UUID) -> WholesaleSettlement:
        found = self._select(WholesaleSettlementModel.order_id == order_id)
        if not found:
            raise EntityNotFoundError("WholesaleSettlement", f"order:{order_id}")
        return found[0]


class Repositories:
    """All repositories bound to one session."""

    def __init__(self, session: Session):
        self.session = session
        self.batches = BatchRepository(session)
        self.tranches = TrancheRepository(session)
        self.settlements = SettlementRepository(session)
        self.final_settlements = FinalSettlementRepository(session)
        self.sales = SaleRepository(session)
        self.wholesale_orders = WholesaleOrderRepository(session)
        self.wholesale_settlements = WholesaleSettlementRepository(session)
