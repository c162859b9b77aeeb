"""
Module: consignment_kernel.models.batch
Responsibility: ORM persistence for batches, tranches and retail sales.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ (for DTO conversion) only.

Invariants enforced:
    - CheckConstraints mirror the integer entity invariants
      (0 <= current_stock <= initial_stock, positive unit_count).  Money
      invariants are enforced by the frozen entities before any write.
    - UNIQUE(batch_id, number): one tranche per position.
    - ``version`` (TrackedBase) backs optimistic concurrency; rows are only
      changed by repository conditional UPDATEs.

Failure modes:
    - IntegrityError if a write would break a CheckConstraint.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from consignment_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from consignment_kernel.domain.entities import Batch, Sale, Tranche


class BatchModel(TrackedBase):
    """Persistent batch."""

    __tablename__ = "batches"

    __table_args__ = (
        CheckConstraint("unit_count > 0", name="ck_batches_unit_count_positive"),
        CheckConstraint(
            "tranche_count IN (2, 3)", name="ck_batches_tranche_count",
        ),
        Index("ix_batches_seller_state", "seller_id", "state"),
    )

    seller_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    unit_count: Mapped[int] = mapped_column(Integer, nullable=False)
    tranche_count: Mapped[int] = mapped_column(Integer, nullable=False)
    payout_model: Mapped[str] = mapped_column(String(20), nullable=False)
    total_investment: Mapped[Decimal] = mapped_column(nullable=False)
    seller_investment: Mapped[Decimal] = mapped_column(nullable=False)
    operator_investment: Mapped[Decimal] = mapped_column(nullable=False)
    money_collected: Mapped[Decimal] = mapped_column(nullable=False)
    money_remitted: Mapped[Decimal] = mapped_column(nullable=False)
    money_to_debt: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    state: Mapped[str] = mapped_column(String(20), nullable=False)
    gift_units_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_forced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    origin_wholesale_order_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True,
    )
    activated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    finalized_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<Batch {self.id} seller={self.seller_id} state={self.state} v{self.version}>"

    def to_dto(self) -> Batch:
        """Convert ORM model to frozen domain entity."""
        from consignment_kernel.domain.entities import Batch, BatchState, PayoutModel

        return Batch(
            id=self.id,
            seller_id=self.seller_id,
            unit_count=self.unit_count,
            tranche_count=self.tranche_count,
            payout_model=PayoutModel(self.payout_model),
            total_investment=self.total_investment,
            seller_investment=self.seller_investment,
            operator_investment=self.operator_investment,
            money_collected=self.money_collected,
            money_remitted=self.money_remitted,
            money_to_debt=self.money_to_debt,
            state=BatchState(self.state),
            gift_units_used=self.gift_units_used,
            is_forced=self.is_forced,
            origin_wholesale_order_id=self.origin_wholesale_order_id,
            created_at=self.created_at,
            activated_at=self.activated_at,
            finalized_at=self.finalized_at,
            version=self.version,
        )

    @staticmethod
    def values_from_dto(dto: Batch) -> dict:
        """Column values for INSERT/UPDATE (identity and created_at excluded)."""
        return {
            "seller_id": dto.seller_id,
            "unit_count": dto.unit_count,
            "tranche_count": dto.tranche_count,
            "payout_model": dto.payout_model.value,
            "total_investment": dto.total_investment,
            "seller_investment": dto.seller_investment,
            "operator_investment": dto.operator_investment,
            "money_collected": dto.money_collected,
            "money_remitted": dto.money_remitted,
            "money_to_debt": dto.money_to_debt,
            "state": dto.state.value,
            "gift_units_used": dto.gift_units_used,
            "is_forced": dto.is_forced,
            "origin_wholesale_order_id": dto.origin_wholesale_order_id,
            "activated_at": dto.activated_at,
            "finalized_at": dto.finalized_at,
            "version": dto.version,
        }

    @classmethod
    def from_dto(cls, dto: Batch) -> BatchModel:
        """Create ORM model from domain entity."""
        model = cls(id=dto.id, **cls.values_from_dto(dto))
        if dto.created_at is not None:
            model.created_at = dto.created_at
        return model


class TrancheModel(TrackedBase):
    """Persistent tranche."""

    __tablename__ = "tranches"

    __table_args__ = (
        UniqueConstraint("batch_id", "number", name="uq_tranches_batch_number"),
        CheckConstraint(
            "current_stock >= 0 AND current_stock <= initial_stock",
            name="ck_tranches_stock_bounds",
        ),
        CheckConstraint(
            "consumed_by_wholesale >= 0", name="ck_tranches_consumed_non_negative",
        ),
    )

    batch_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("batches.id"), nullable=False, index=True,
    )
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    initial_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    current_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    consumed_by_wholesale: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    state: Mapped[str] = mapped_column(String(20), nullable=False)
    released_at: Mapped[datetime | None] = mapped_column(nullable=True)
    in_transit_at: Mapped[datetime | None] = mapped_column(nullable=True)
    in_home_at: Mapped[datetime | None] = mapped_column(nullable=True)
    finalized_at: Mapped[datetime | None] = mapped_column(nullable=True)
    released_by_wholesale_settlement_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<Tranche {self.id} #{self.number} {self.state} "
            f"{self.current_stock}/{self.initial_stock} v{self.version}>"
        )

    def to_dto(self) -> Tranche:
        from consignment_kernel.domain.entities import Tranche, TrancheState

        return Tranche(
            id=self.id,
            batch_id=self.batch_id,
            number=self.number,
            initial_stock=self.initial_stock,
            current_stock=self.current_stock,
            consumed_by_wholesale=self.consumed_by_wholesale,
            state=TrancheState(self.state),
            released_at=self.released_at,
            in_transit_at=self.in_transit_at,
            in_home_at=self.in_home_at,
            finalized_at=self.finalized_at,
            released_by_wholesale_settlement_id=self.released_by_wholesale_settlement_id,
            version=self.version,
        )

    @staticmethod
    def values_from_dto(dto: Tranche) -> dict:
        return {
            "batch_id": dto.batch_id,
            "number": dto.number,
            "initial_stock": dto.initial_stock,
            "current_stock": dto.current_stock,
            "consumed_by_wholesale": dto.consumed_by_wholesale,
            "state": dto.state.value,
            "released_at": dto.released_at,
            "in_transit_at": dto.in_transit_at,
            "in_home_at": dto.in_home_at,
            "finalized_at": dto.finalized_at,
            "released_by_wholesale_settlement_id": dto.released_by_wholesale_settlement_id,
            "version": dto.version,
        }

    @classmethod
    def from_dto(cls, dto: Tranche) -> TrancheModel:
        return cls(id=dto.id, **cls.values_from_dto(dto))


class SaleModel(TrackedBase):
    """Persistent retail sale."""

    __tablename__ = "sales"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_sales_quantity_positive"),
        Index("ix_sales_batch_state", "batch_id", "state"),
    )

    batch_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("batches.id"), nullable=False,
    )
    tranche_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("tranches.id"), nullable=False,
    )
    seller_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    state: Mapped[str] = mapped_column(String(20), nullable=False)
    registered_at: Mapped[datetime | None] = mapped_column(nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> Sale:
        from consignment_kernel.domain.entities import Sale, SaleState

        return Sale(
            id=self.id,
            batch_id=self.batch_id,
            tranche_id=self.tranche_id,
            seller_id=self.seller_id,
            quantity=self.quantity,
            amount=self.amount,
            state=SaleState(self.state),
            registered_at=self.registered_at,
            resolved_at=self.resolved_at,
            version=self.version,
        )

    @staticmethod
    def values_from_dto(dto: Sale) -> dict:
        return {
            "batch_id": dto.batch_id,
            "tranche_id": dto.tranche_id,
            "seller_id": dto.seller_id,
            "quantity": dto.quantity,
            "amount": dto.amount,
            "state": dto.state.value,
            "registered_at": dto.registered_at,
            "resolved_at": dto.resolved_at,
            "version": dto.version,
        }

    @classmethod
    def from_dto(cls, dto: Sale) -> SaleModel:
        return cls(id=dto.id, **cls.values_from_dto(dto))
