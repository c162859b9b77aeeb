"""
Module: consignment_kernel.models.wholesale
Responsibility: ORM persistence for wholesale orders and their settlements.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ (for DTO conversion) only.

Invariants enforced:
    - UNIQUE(order_id) on wholesale_settlements: one settlement per order.
    - Nested collections (stock sources, recruiter payouts, per-batch
      shares) are stored as JSON lists of plain dicts; amounts inside them
      are decimal strings, never floats.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from consignment_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from consignment_kernel.domain.entities import WholesaleOrder, WholesaleSettlement


class WholesaleOrderModel(TrackedBase):
    """Persistent wholesale order."""

    __tablename__ = "wholesale_orders"

    seller_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, index=True)
    unit_count: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    gross_revenue: Mapped[Decimal] = mapped_column(nullable=False)
    with_liquor: Mapped[bool] = mapped_column(Boolean, nullable=False)
    modality: Mapped[str] = mapped_column(String(20), nullable=False)
    payout_model: Mapped[str] = mapped_column(String(20), nullable=False)
    sources: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    forced_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    forced_batch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    state: Mapped[str] = mapped_column(String(20), nullable=False)
    registered_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> WholesaleOrder:
        from consignment_kernel.domain.entities import (
            PaymentModality,
            PayoutModel,
            StockSource,
            WholesaleOrder,
            WholesaleOrderState,
        )

        return WholesaleOrder(
            id=self.id,
            seller_id=self.seller_id,
            unit_count=self.unit_count,
            unit_price=self.unit_price,
            gross_revenue=self.gross_revenue,
            with_liquor=self.with_liquor,
            modality=PaymentModality(self.modality),
            payout_model=PayoutModel(self.payout_model),
            sources=tuple(StockSource.from_dict(s) for s in self.sources or ()),
            forced_quantity=self.forced_quantity,
            forced_batch_id=self.forced_batch_id,
            state=WholesaleOrderState(self.state),
            registered_at=self.registered_at,
            completed_at=self.completed_at,
            version=self.version,
        )

    @staticmethod
    def values_from_dto(dto: WholesaleOrder) -> dict:
        return {
            "seller_id": dto.seller_id,
            "unit_count": dto.unit_count,
            "unit_price": dto.unit_price,
            "gross_revenue": dto.gross_revenue,
            "with_liquor": dto.with_liquor,
            "modality": dto.modality.value,
            "payout_model": dto.payout_model.value,
            "sources": [s.to_dict() for s in dto.sources],
            "forced_quantity": dto.forced_quantity,
            "forced_batch_id": dto.forced_batch_id,
            "state": dto.state.value,
            "registered_at": dto.registered_at,
            "completed_at": dto.completed_at,
            "version": dto.version,
        }

    @classmethod
    def from_dto(cls, dto: WholesaleOrder) -> WholesaleOrderModel:
        return cls(id=dto.id, **cls.values_from_dto(dto))


class WholesaleSettlementModel(TrackedBase):
    """Persistent wholesale settlement ("cuadre-mayor")."""

    __tablename__ = "wholesale_settlements"

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("wholesale_orders.id"), nullable=False, unique=True,
    )
    seller_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, index=True)
    gross_revenue: Mapped[Decimal] = mapped_column(nullable=False)
    retail_money_available: Mapped[Decimal] = mapped_column(nullable=False)
    total_available: Mapped[Decimal] = mapped_column(nullable=False)
    debts_settled: Mapped[Decimal] = mapped_column(nullable=False)
    operator_investment_existing: Mapped[Decimal] = mapped_column(nullable=False)
    operator_investment_forced: Mapped[Decimal] = mapped_column(nullable=False)
    seller_investment_existing: Mapped[Decimal] = mapped_column(nullable=False)
    seller_investment_forced: Mapped[Decimal] = mapped_column(nullable=False)
    net_profit: Mapped[Decimal] = mapped_column(nullable=False)
    operator_profit: Mapped[Decimal] = mapped_column(nullable=False)
    seller_profit: Mapped[Decimal] = mapped_column(nullable=False)
    operator_total: Mapped[Decimal] = mapped_column(nullable=False)
    seller_total: Mapped[Decimal] = mapped_column(nullable=False)
    recruiter_payouts: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    batch_shares: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    affected_tranches: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    involved_batch_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    forced_batch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    closed_settlement_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    state: Mapped[str] = mapped_column(String(20), nullable=False)
    confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> WholesaleSettlement:
        from consignment_kernel.domain.entities import (
            BatchInvestmentShare,
            RecruiterPayout,
            StockSource,
            WholesaleSettlement,
            WholesaleSettlementState,
        )

        return WholesaleSettlement(
            id=self.id,
            order_id=self.order_id,
            seller_id=self.seller_id,
            gross_revenue=self.gross_revenue,
            retail_money_available=self.retail_money_available,
            total_available=self.total_available,
            debts_settled=self.debts_settled,
            operator_investment_existing=self.operator_investment_existing,
            operator_investment_forced=self.operator_investment_forced,
            seller_investment_existing=self.seller_investment_existing,
            seller_investment_forced=self.seller_investment_forced,
            net_profit=self.net_profit,
            operator_profit=self.operator_profit,
            seller_profit=self.seller_profit,
            operator_total=self.operator_total,
            seller_total=self.seller_total,
            recruiter_payouts=tuple(
                RecruiterPayout.from_dict(p) for p in self.recruiter_payouts or ()
            ),
            batch_shares=tuple(
                BatchInvestmentShare.from_dict(s) for s in self.batch_shares or ()
            ),
            affected_tranches=tuple(
                StockSource.from_dict(s) for s in self.affected_tranches or ()
            ),
            involved_batch_ids=tuple(UUID(b) for b in self.involved_batch_ids or ()),
            forced_batch_id=self.forced_batch_id,
            closed_settlement_ids=tuple(UUID(s) for s in self.closed_settlement_ids or ()),
            state=WholesaleSettlementState(self.state),
            created_at=self.created_at,
            confirmed_at=self.confirmed_at,
            version=self.version,
        )

    @staticmethod
    def values_from_dto(dto: WholesaleSettlement) -> dict:
        return {
            "order_id": dto.order_id,
            "seller_id": dto.seller_id,
            "gross_revenue": dto.gross_revenue,
            "retail_money_available": dto.retail_money_available,
            "total_available": dto.total_available,
            "debts_settled": dto.debts_settled,
            "operator_investment_existing": dto.operator_investment_existing,
            "operator_investment_forced": dto.operator_investment_forced,
            "seller_investment_existing": dto.seller_investment_existing,
            "seller_investment_forced": dto.seller_investment_forced,
            "net_profit": dto.net_profit,
            "operator_profit": dto.operator_profit,
            "seller_profit": dto.seller_profit,
            "operator_total": dto.operator_total,
            "seller_total": dto.seller_total,
            "recruiter_payouts": [p.to_dict() for p in dto.recruiter_payouts],
            "batch_shares": [s.to_dict() for s in dto.batch_shares],
            "affected_tranches": [s.to_dict() for s in dto.affected_tranches],
            "involved_batch_ids": [str(b) for b in dto.involved_batch_ids],
            "forced_batch_id": dto.forced_batch_id,
            "closed_settlement_ids": [str(s) for s in dto.closed_settlement_ids],
            "state": dto.state.value,
            "confirmed_at": dto.confirmed_at,
            "version": dto.version,
        }

    @classmethod
    def from_dto(cls, dto: WholesaleSettlement) -> WholesaleSettlementModel:
        model = cls(id=dto.id, **cls.values_from_dto(dto))
        if dto.created_at is not None:
            model.created_at = dto.created_at
        return model
