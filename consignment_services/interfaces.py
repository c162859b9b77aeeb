"""
External collaborator contracts (``consignment_services.interfaces``).

Responsibility:
    Protocols for everything the consignment core talks to but does not
    own: seller notifications, the recruiter hierarchy, the equipment-rental
    debt (read, and paid down through settlements), the physical stock pool
    and the reward fund.  Each has an in-memory implementation used by
    tests and local tooling.

Architecture position:
    Services -- imported by the orchestrating services only.  Engines never
    see these protocols; they receive already-resolved values (a recruiter
    chain, an ``EquipmentDebt``).

Failure modes:
    - ``Notifier.notify`` may raise; the effect dispatcher logs the failure
      and carries on, since notifications run after commit.
    - ``InMemoryStockPool.deduct`` raises ``InsufficientStockError`` when
      the pool is short.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from consignment_kernel.domain.effects import NotificationKind
from consignment_kernel.domain.entities import NO_EQUIPMENT_DEBT, EquipmentDebt
from consignment_kernel.exceptions import InsufficientStockError


@runtime_checkable
class Notifier(Protocol):
    def notify(self, kind: NotificationKind, seller_id: UUID, payload: dict[str, Any]) -> None:
        ...


@runtime_checkable
class HierarchyProvider(Protocol):
    def get_recruiter_chain(self, seller_id: UUID) -> list[UUID]:
        """Recruiter ids above ``seller_id``, nearest first."""
        ...


@runtime_checkable
class EquipmentDebtProvider(Protocol):
    def get_outstanding_debt(self, seller_id: UUID) -> EquipmentDebt:
        ...

    def record_payment(self, seller_id: UUID, amount: Decimal) -> None:
        """``amount`` of the seller's debt was collected through a settlement."""
        ...


@runtime_checkable
class StockPool(Protocol):
    def deduct(self, units: int) -> None:
        ...


@runtime_checkable
class RewardFund(Protocol):
    def record_entry(self, batch_id: UUID, amount: Decimal, description: str) -> None:
        ...


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SentNotification:
    kind: NotificationKind
    seller_id: UUID
    payload: dict[str, Any]


class RecordingNotifier:
    """Keeps every notification in memory."""

    def __init__(self) -> None:
        self.sent: list[SentNotification] = []

    def notify(self, kind: NotificationKind, seller_id: UUID, payload: dict[str, Any]) -> None:
        self.sent.append(SentNotification(kind, seller_id, dict(payload)))

    def kinds(self) -> list[NotificationKind]:
        return [n.kind for n in self.sent]

    def of_kind(self, kind: NotificationKind) -> list[SentNotification]:
        return [n for n in self.sent if n.kind == kind]

    def clear(self) -> None:
        self.sent.clear()


class NullNotifier:
    def notify(self, kind: NotificationKind, seller_id: UUID, payload: dict[str, Any]) -> None:
        return None


class StaticHierarchy:
    """Recruiter chains keyed by seller id."""

    def __init__(self, chains: dict[UUID, list[UUID]] | None = None):
        self._chains = dict(chains or {})

    def set_chain(self, seller_id: UUID, chain: list[UUID]) -> None:
        self._chains[seller_id] = list(chain)

    def get_recruiter_chain(self, seller_id: UUID) -> list[UUID]:
        return list(self._chains.get(seller_id, ()))


class InMemoryEquipmentDebts:
    def __init__(self, debts: dict[UUID, EquipmentDebt] | None = None):
        self._debts = dict(debts or {})
        self.payments: list[tuple[UUID, Decimal]] = []

    def set_debt(self, seller_id: UUID, debt: EquipmentDebt) -> None:
        self._debts[seller_id] = debt

    def get_outstanding_debt(self, seller_id: UUID) -> EquipmentDebt:
        return self._debts.get(seller_id, NO_EQUIPMENT_DEBT)

    def record_payment(self, seller_id: UUID, amount: Decimal) -> None:
        self.payments.append((seller_id, amount))
        self._debts[seller_id] = self.get_outstanding_debt(seller_id).after_payment(amount)


class InMemoryStockPool:
    """Physical stock counter, decremented once per batch activation."""

    def __init__(self, units: int):
        self._lock = threading.Lock()
        self.units = units

    def deduct(self, units: int) -> None:
        with self._lock:
            if units > self.units:
                raise InsufficientStockError("stock_pool", self.units, units)
            self.units -= units


@dataclass(frozen=True)
class FundEntry:
    batch_id: UUID
    amount: Decimal
    description: str


class InMemoryRewardFund:
    def __init__(self) -> None:
        self.entries: list[FundEntry] = []

    def record_entry(self, batch_id: UUID, amount: Decimal, description: str) -> None:
        self.entries.append(FundEntry(batch_id, amount, description))

    @property
    def balance(self) -> Decimal:
        return sum((e.amount for e in self.entries), Decimal("0"))


@dataclass
class Collaborators:
    """The external collaborators one set of services talks to."""

    notifier: Notifier = field(default_factory=NullNotifier)
    hierarchy: HierarchyProvider = field(default_factory=StaticHierarchy)
    equipment_debts: EquipmentDebtProvider = field(default_factory=InMemoryEquipmentDebts)
    stock_pool: StockPool | None = None
    reward_fund: RewardFund | None = None
