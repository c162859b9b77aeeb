"""
Module: consignment_kernel.models.settlement
Responsibility: ORM persistence for tranche settlements and the final
    mini-settlement of a batch.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ (for DTO conversion) only.

Invariants enforced:
    - UNIQUE(tranche_id): one settlement per tranche.
    - UNIQUE(batch_id) on final_settlements: one closing settlement per batch.
    - Terminal states are enforced by the engines; rows are changed only by
      repository conditional UPDATEs on ``version``.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from consignment_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from consignment_kernel.domain.entities import FinalSettlement, Settlement


class SettlementModel(TrackedBase):
    """Persistent settlement ("cuadre")."""

    __tablename__ = "settlements"

    __table_args__ = (
        Index("ix_settlements_seller_state", "seller_id", "state"),
        Index("ix_settlements_batch", "batch_id", "tranche_number"),
    )

    tranche_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("tranches.id"), nullable=False, unique=True,
    )
    batch_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("batches.id"), nullable=False,
    )
    seller_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    tranche_number: Mapped[int] = mapped_column(Integer, nullable=False)
    concept: Mapped[str] = mapped_column(String(20), nullable=False)
    expected_amount: Mapped[Decimal] = mapped_column(nullable=False)
    received_amount: Mapped[Decimal] = mapped_column(nullable=False)
    shortfall: Mapped[Decimal] = mapped_column(nullable=False)
    amount_covered_by_wholesale: Mapped[Decimal] = mapped_column(nullable=False)
    investment_component: Mapped[Decimal] = mapped_column(nullable=False)
    profit_component: Mapped[Decimal] = mapped_column(nullable=False)
    debt_component: Mapped[Decimal] = mapped_column(nullable=False)
    state: Mapped[str] = mapped_column(String(30), nullable=False)
    closed_by_wholesale_settlement_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True,
    )
    pending_at: Mapped[datetime | None] = mapped_column(nullable=True)
    success_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Settlement {self.id} batch={self.batch_id} #{self.tranche_number} "
            f"{self.state} expected={self.expected_amount} v{self.version}>"
        )

    def to_dto(self) -> Settlement:
        """Convert ORM model to frozen domain entity."""
        from consignment_kernel.domain.entities import (
            Settlement,
            SettlementConcept,
            SettlementState,
        )

        return Settlement(
            id=self.id,
            tranche_id=self.tranche_id,
            batch_id=self.batch_id,
            seller_id=self.seller_id,
            tranche_number=self.tranche_number,
            concept=SettlementConcept(self.concept),
            expected_amount=self.expected_amount,
            received_amount=self.received_amount,
            shortfall=self.shortfall,
            amount_covered_by_wholesale=self.amount_covered_by_wholesale,
            investment_component=self.investment_component,
            profit_component=self.profit_component,
            debt_component=self.debt_component,
            state=SettlementState(self.state),
            closed_by_wholesale_settlement_id=self.closed_by_wholesale_settlement_id,
            pending_at=self.pending_at,
            success_at=self.success_at,
            version=self.version,
        )

    @staticmethod
    def values_from_dto(dto: Settlement) -> dict:
        return {
            "tranche_id": dto.tranche_id,
            "batch_id": dto.batch_id,
            "seller_id": dto.seller_id,
            "tranche_number": dto.tranche_number,
            "concept": dto.concept.value,
            "expected_amount": dto.expected_amount,
            "received_amount": dto.received_amount,
            "shortfall": dto.shortfall,
            "amount_covered_by_wholesale": dto.amount_covered_by_wholesale,
            "investment_component": dto.investment_component,
            "profit_component": dto.profit_component,
            "debt_component": dto.debt_component,
            "state": dto.state.value,
            "closed_by_wholesale_settlement_id": dto.closed_by_wholesale_settlement_id,
            "pending_at": dto.pending_at,
            "success_at": dto.success_at,
            "version": dto.version,
        }

    @classmethod
    def from_dto(cls, dto: Settlement) -> SettlementModel:
        return cls(id=dto.id, **cls.values_from_dto(dto))


class FinalSettlementModel(TrackedBase):
    """Persistent final mini-settlement."""

    __tablename__ = "final_settlements"

    batch_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("batches.id"), nullable=False, unique=True,
    )
    tranche_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("tranches.id"), nullable=False,
    )
    seller_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, index=True)
    state: Mapped[str] = mapped_column(String(20), nullable=False)
    armed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    expected_amount: Mapped[Decimal] = mapped_column(nullable=False)
    received_amount: Mapped[Decimal] = mapped_column(nullable=False)
    pending_at: Mapped[datetime | None] = mapped_column(nullable=True)
    success_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> FinalSettlement:
        from consignment_kernel.domain.entities import (
            FinalSettlement,
            FinalSettlementState,
        )

        return FinalSettlement(
            id=self.id,
            batch_id=self.batch_id,
            tranche_id=self.tranche_id,
            seller_id=self.seller_id,
            state=FinalSettlementState(self.state),
            armed=self.armed,
            expected_amount=self.expected_amount,
            received_amount=self.received_amount,
            pending_at=self.pending_at,
            success_at=self.success_at,
            version=self.version,
        )

    @staticmethod
    def values_from_dto(dto: FinalSettlement) -> dict:
        return {
            "batch_id": dto.batch_id,
            "tranche_id": dto.tranche_id,
            "seller_id": dto.seller_id,
            "state": dto.state.value,
            "armed": dto.armed,
            "expected_amount": dto.expected_amount,
            "received_amount": dto.received_amount,
            "pending_at": dto.pending_at,
            "success_at": dto.success_at,
            "version": dto.version,
        }

    @classmethod
    def from_dto(cls, dto: FinalSettlement) -> FinalSettlementModel:
        return cls(id=dto.id, **cls.values_from_dto(dto))
