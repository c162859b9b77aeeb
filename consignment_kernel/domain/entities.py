"""
Domain entities (``consignment_kernel.domain.entities``).

Responsibility
--------------
Immutable value structs for every aggregate the engines compute over:
Batch, Tranche, Settlement, FinalSettlement, Sale, WholesaleOrder and
WholesaleSettlement, plus the enums naming their states.

Architecture position
---------------------
Kernel > Domain -- pure, zero I/O.  Imported by engines, services and the
ORM models' ``to_dto()`` / ``from_dto()`` converters.

Invariants enforced
-------------------
* ``Batch``: ``seller_investment + operator_investment == total_investment``
  and ``money_remitted + money_to_debt <= money_collected``.
* ``Tranche``: ``0 <= current_stock <= initial_stock``.
* ``Settlement``: ``expected_amount`` equals the sum of its investment,
  profit and debt components.

Each violation raises ``ValueError`` at construction, so an invalid
instance can never be produced by ``dataclasses.replace`` either.

Audit relevance
---------------
Every entity carries ``version``.  Transitions return a new instance with
``version + 1``; repositories persist it only if the stored version still
matches the one that was read.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from consignment_kernel.domain.values import ZERO, non_negative, stock_percentage


class PayoutModel(str, Enum):
    """How a batch's profit is split."""

    FLAT_SPLIT = "flat_split"
    CASCADE_SPLIT = "cascade_split"


class BatchState(str, Enum):
    CREATED = "created"
    ACTIVE = "active"
    FINALIZED = "finalized"


class TrancheState(str, Enum):
    INACTIVE = "inactive"
    RELEASED = "released"
    IN_TRANSIT = "in_transit"
    IN_HOME = "in_home"
    FINALIZED = "finalized"


TRANCHE_STATE_ORDER: tuple[TrancheState, ...] = (
    TrancheState.INACTIVE,
    TrancheState.RELEASED,
    TrancheState.IN_TRANSIT,
    TrancheState.IN_HOME,
    TrancheState.FINALIZED,
)


class SettlementConcept(str, Enum):
    """What a settlement collects from the seller."""

    INVESTMENT_ONLY = "investment_only"
    PROFIT_ONLY = "profit_only"
    MIXED = "mixed"


class SettlementState(str, Enum):
    INACTIVE = "inactive"
    PENDING = "pending"
    SUCCESS = "success"
    CLOSED_BY_WHOLESALE = "closed_by_wholesale"


TERMINAL_SETTLEMENT_STATES = frozenset(
    {SettlementState.SUCCESS, SettlementState.CLOSED_BY_WHOLESALE}
)


class FinalSettlementState(str, Enum):
    INACTIVE = "inactive"
    PENDING = "pending"
    SUCCESS = "success"


class SaleState(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class WholesaleOrderState(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class WholesaleSettlementState(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"


class PaymentModality(str, Enum):
    ADVANCE = "advance"
    ON_DELIVERY = "on_delivery"


class StockSourceKind(str, Enum):
    """Where wholesale units are taken from."""

    RESERVED = "reserved"
    IN_HOME = "in_home"
    FORCED = "forced"


# ---------------------------------------------------------------------------
# Batch / Tranche
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Batch:
    """An inventory lot assigned to one seller and split into tranches."""

    id: UUID
    seller_id: UUID
    unit_count: int
    tranche_count: int
    payout_model: PayoutModel
    total_investment: Decimal
    seller_investment: Decimal
    operator_investment: Decimal
    money_collected: Decimal = ZERO
    money_remitted: Decimal = ZERO
    money_to_debt: Decimal = ZERO
    state: BatchState = BatchState.CREATED
    gift_units_used: int = 0
    is_forced: bool = False
    origin_wholesale_order_id: UUID | None = None
    created_at: datetime | None = None
    activated_at: datetime | None = None
    finalized_at: datetime | None = None
    version: int = 0

    def __post_init__(self) -> None:
        if self.unit_count <= 0:
            raise ValueError(f"unit_count must be positive, got {self.unit_count}")
        if self.tranche_count not in (2, 3):
            raise ValueError(f"tranche_count must be 2 or 3, got {self.tranche_count}")
        if self.seller_investment + self.operator_investment != self.total_investment:
            raise ValueError(
                "seller_investment + operator_investment must equal total_investment: "
                f"{self.seller_investment} + {self.operator_investment} "
                f"!= {self.total_investment}"
            )
        if min(self.money_collected, self.money_remitted, self.money_to_debt) < ZERO:
            raise ValueError("Batch money figures cannot be negative")
        if self.money_remitted + self.money_to_debt > self.money_collected:
            raise ValueError(
                f"money_remitted {self.money_remitted} + money_to_debt "
                f"{self.money_to_debt} exceeds money_collected {self.money_collected}"
            )

    @property
    def unremitted(self) -> Decimal:
        """
        Money collected but not yet handed over, neither as remittance nor
        against the seller's equipment debt.
        """
        return self.money_collected - self.money_remitted - self.money_to_debt

    @property
    def operator_investment_outstanding(self) -> Decimal:
        return non_negative(self.operator_investment - self.money_remitted)


@dataclass(frozen=True)
class Tranche:
    """A sequential sub-allocation of a batch's units."""

    id: UUID
    batch_id: UUID
    number: int
    initial_stock: int
    current_stock: int
    consumed_by_wholesale: int = 0
    state: TrancheState = TrancheState.INACTIVE
    released_at: datetime | None = None
    in_transit_at: datetime | None = None
    in_home_at: datetime | None = None
    finalized_at: datetime | None = None
    released_by_wholesale_settlement_id: UUID | None = None
    version: int = 0

    def __post_init__(self) -> None:
        if self.number < 1:
            raise ValueError(f"Tranche number must be >= 1, got {self.number}")
        if not 0 <= self.current_stock <= self.initial_stock:
            raise ValueError(
                f"current_stock {self.current_stock} outside "
                f"[0, {self.initial_stock}]"
            )
        if self.consumed_by_wholesale < 0:
            raise ValueError("consumed_by_wholesale cannot be negative")

    @property
    def stock_percentage(self) -> Decimal:
        return stock_percentage(self.current_stock, self.initial_stock)


# ---------------------------------------------------------------------------
# Settlements
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Settlement:
    """
    The seller's obligation to remit money for one tranche.

    ``shortfall`` is ``expected - covered - received`` floored at zero: while
    PENDING it is the amount still due, after SUCCESS it is zero.
    """

    id: UUID
    tranche_id: UUID
    batch_id: UUID
    seller_id: UUID
    tranche_number: int
    concept: SettlementConcept
    expected_amount: Decimal = ZERO
    received_amount: Decimal = ZERO
    shortfall: Decimal = ZERO
    amount_covered_by_wholesale: Decimal = ZERO
    investment_component: Decimal = ZERO
    profit_component: Decimal = ZERO
    debt_component: Decimal = ZERO
    state: SettlementState = SettlementState.INACTIVE
    closed_by_wholesale_settlement_id: UUID | None = None
    pending_at: datetime | None = None
    success_at: datetime | None = None
    version: int = 0

    def __post_init__(self) -> None:
        components = self.investment_component + self.profit_component + self.debt_component
        if components != self.expected_amount:
            raise ValueError(
                f"Settlement components {components} do not sum to "
                f"expected_amount {self.expected_amount}"
            )
        for name in (
            "expected_amount",
            "received_amount",
            "shortfall",
            "amount_covered_by_wholesale",
        ):
            if getattr(self, name) < ZERO:
                raise ValueError(f"{name} cannot be negative")

    @property
    def amount_due(self) -> Decimal:
        """What a confirmation must at least cover."""
        return non_negative(self.expected_amount - self.amount_covered_by_wholesale)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_SETTLEMENT_STATES


@dataclass(frozen=True)
class FinalSettlement:
    """Closing mini-settlement collecting what remains once the last tranche sells out."""

    id: UUID
    batch_id: UUID
    tranche_id: UUID
    seller_id: UUID
    state: FinalSettlementState = FinalSettlementState.INACTIVE
    armed: bool = False
    expected_amount: Decimal = ZERO
    received_amount: Decimal = ZERO
    pending_at: datetime | None = None
    success_at: datetime | None = None
    version: int = 0


# ---------------------------------------------------------------------------
# Retail sales
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Sale:
    """A retail sale, decremented tentatively and approved or rejected later."""

    id: UUID
    batch_id: UUID
    tranche_id: UUID
    seller_id: UUID
    quantity: int
    amount: Decimal
    state: SaleState = SaleState.PENDING
    registered_at: datetime | None = None
    resolved_at: datetime | None = None
    version: int = 0

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValueError(f"Sale quantity must be positive, got {self.quantity}")
        if self.amount < ZERO:
            raise ValueError("Sale amount cannot be negative")


# ---------------------------------------------------------------------------
# Equipment debt
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EquipmentDebt:
    """
    Outstanding equipment charges for a seller.

    ``paid_on_account`` holds money paid towards the next unpaid month
    that did not yet cover a whole monthly fee.
    """

    months_in_arrears: int = 0
    monthly_fee: Decimal = ZERO
    damage_charges: Decimal = ZERO
    loss_charges: Decimal = ZERO
    paid_on_account: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return non_negative(
            Decimal(self.months_in_arrears) * self.monthly_fee
            + self.damage_charges
            + self.loss_charges
            - self.paid_on_account
        )

    def after_payment(self, amount: Decimal) -> EquipmentDebt:
        """
        The debt left once ``amount`` is paid: damage charges first, then
        loss charges, then the months in arrears, oldest first.
        """
        if amount < ZERO:
            raise ValueError(f"payment cannot be negative, got {amount}")
        damage = min(amount, self.damage_charges)
        amount -= damage
        loss = min(amount, self.loss_charges)
        amount -= loss

        months = self.months_in_arrears
        on_account = self.paid_on_account + amount
        if self.monthly_fee > ZERO:
            paid_months = min(months, int(on_account // self.monthly_fee))
            months -= paid_months
            on_account -= paid_months * self.monthly_fee
        if months == 0:
            on_account = ZERO
        return replace(
            self,
            months_in_arrears=months,
            damage_charges=self.damage_charges - damage,
            loss_charges=self.loss_charges - loss,
            paid_on_account=on_account,
        )


NO_EQUIPMENT_DEBT = EquipmentDebt()


# ---------------------------------------------------------------------------
# Wholesale
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StockSource:
    """Units taken (or to be taken) from one tranche for a wholesale order."""

    tranche_id: UUID
    batch_id: UUID
    tranche_number: int
    quantity: int
    kind: StockSourceKind

    def to_dict(self) -> dict:
        return {
            "tranche_id": str(self.tranche_id),
            "batch_id": str(self.batch_id),
            "tranche_number": self.tranche_number,
            "quantity": self.quantity,
            "kind": self.kind.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> StockSource:
        return cls(
            tranche_id=UUID(data["tranche_id"]),
            batch_id=UUID(data["batch_id"]),
            tranche_number=int(data["tranche_number"]),
            quantity=int(data["quantity"]),
            kind=StockSourceKind(data["kind"]),
        )


@dataclass(frozen=True)
class WholesaleOrder:
    """A large order that may span several batches and force a new one."""

    id: UUID
    seller_id: UUID
    unit_count: int
    unit_price: Decimal
    gross_revenue: Decimal
    with_liquor: bool
    modality: PaymentModality
    payout_model: PayoutModel
    sources: tuple[StockSource, ...] = ()
    forced_quantity: int = 0
    forced_batch_id: UUID | None = None
    state: WholesaleOrderState = WholesaleOrderState.PENDING
    registered_at: datetime | None = None
    completed_at: datetime | None = None
    version: int = 0

    @property
    def involved_batch_ids(self) -> tuple[UUID, ...]:
        """Existing batches contributing stock, in plan order."""
        seen: list[UUID] = []
        for source in self.sources:
            if source.kind != StockSourceKind.FORCED and source.batch_id not in seen:
                seen.append(source.batch_id)
        return tuple(seen)

    @property
    def needs_forced_batch(self) -> bool:
        return self.forced_quantity > 0


@dataclass(frozen=True)
class RecruiterPayout:
    """Amount owed to one recruiter level of a wholesale settlement."""

    level: int
    recruiter_id: UUID
    amount: Decimal
    transferred: bool = False
    transferred_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "recruiter_id": str(self.recruiter_id),
            "amount": str(self.amount),
            "transferred": self.transferred,
            "transferred_at": self.transferred_at.isoformat() if self.transferred_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> RecruiterPayout:
        transferred_at = data.get("transferred_at")
        return cls(
            level=int(data["level"]),
            recruiter_id=UUID(data["recruiter_id"]),
            amount=Decimal(data["amount"]),
            transferred=bool(data.get("transferred", False)),
            transferred_at=datetime.fromisoformat(transferred_at) if transferred_at else None,
        )


@dataclass(frozen=True)
class BatchInvestmentShare:
    """Investment recovered for one batch by a wholesale settlement."""

    batch_id: UUID
    operator_investment: Decimal
    seller_investment: Decimal
    is_forced: bool = False

    def to_dict(self) -> dict:
        return {
            "batch_id": str(self.batch_id),
            "operator_investment": str(self.operator_investment),
            "seller_investment": str(self.seller_investment),
            "is_forced": self.is_forced,
        }

    @classmethod
    def from_dict(cls, data: dict) -> BatchInvestmentShare:
        return cls(
            batch_id=UUID(data["batch_id"]),
            operator_investment=Decimal(data["operator_investment"]),
            seller_investment=Decimal(data["seller_investment"]),
            is_forced=bool(data.get("is_forced", False)),
        )


@dataclass(frozen=True)
class WholesaleSettlement:
    """
    The settlement closing a wholesale order.

    Money figures follow the distribution order: debts, operator
    investment (existing then forced), seller investment (existing then
    forced), then profit.
    """

    id: UUID
    order_id: UUID
    seller_id: UUID
    gross_revenue: Decimal
    retail_money_available: Decimal
    total_available: Decimal
    debts_settled: Decimal
    operator_investment_existing: Decimal
    operator_investment_forced: Decimal
    seller_investment_existing: Decimal
    seller_investment_forced: Decimal
    net_profit: Decimal
    operator_profit: Decimal
    seller_profit: Decimal
    operator_total: Decimal
    seller_total: Decimal
    recruiter_payouts: tuple[RecruiterPayout, ...] = ()
    batch_shares: tuple[BatchInvestmentShare, ...] = ()
    affected_tranches: tuple[StockSource, ...] = ()
    involved_batch_ids: tuple[UUID, ...] = ()
    forced_batch_id: UUID | None = None
    closed_settlement_ids: tuple[UUID, ...] = field(default_factory=tuple)
    state: WholesaleSettlementState = WholesaleSettlementState.PENDING
    created_at: datetime | None = None
    confirmed_at: datetime | None = None
    version: int = 0

    @property
    def recruiter_total(self) -> Decimal:
        return sum((p.amount for p in self.recruiter_payouts), ZERO)
