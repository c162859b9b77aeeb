"""
Effects returned by pure transitions (``consignment_kernel.domain.effects``).

Engines never call collaborators.  A transition that implies follow-up work
(release the next tranche, record a remittance, notify the seller) returns
it as an effect value; the orchestrating service applies state effects
inside its transaction and dispatches notifications after commit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


class NotificationKind(str, Enum):
    TRANCHE_RELEASED = "tranche_released"
    SETTLEMENT_PENDING = "settlement_pending"
    SETTLEMENT_SUCCESS = "settlement_success"
    LOW_STOCK = "low_stock"
    INVESTMENT_RECOVERED = "investment_recovered"
    FINAL_SETTLEMENT_PENDING = "final_settlement_pending"
    WHOLESALE_SETTLEMENT_SUCCESS = "wholesale_settlement_success"


@dataclass(frozen=True)
class Effect:
    """Marker base class for all effects."""


@dataclass(frozen=True)
class ReleaseNextTranche(Effect):
    batch_id: UUID
    tranche_id: UUID
    wholesale_settlement_id: UUID | None = None


@dataclass(frozen=True)
class RecordRemittance(Effect):
    batch_id: UUID
    amount: Decimal


@dataclass(frozen=True)
class RecordEquipmentDebtPaid(Effect):
    """
    Money collected against the seller's equipment debt.

    With ``batch_id`` set the money came out of that batch's sales and is
    booked there too; without it the caller books the batches itself.
    """

    seller_id: UUID
    amount: Decimal
    batch_id: UUID | None = None


@dataclass(frozen=True)
class ArmFinalSettlement(Effect):
    batch_id: UUID


@dataclass(frozen=True)
class FinalizeTranche(Effect):
    tranche_id: UUID


@dataclass(frozen=True)
class FinalizeBatch(Effect):
    batch_id: UUID


@dataclass(frozen=True)
class ReevaluateSellerTriggers(Effect):
    """The seller's PENDING slot was freed; deferred triggers may fire now."""

    seller_id: UUID


@dataclass(frozen=True)
class RecordFundContribution(Effect):
    batch_id: UUID
    amount: Decimal
    description: str = ""


@dataclass(frozen=True)
class SendNotification(Effect):
    """Dispatched to the Notifier after commit. Unhashable (dict payload)."""

    kind: NotificationKind
    seller_id: UUID
    payload: dict[str, Any] = field(default_factory=dict)


def notifications(effects: tuple[Effect, ...] | list[Effect]) -> list[SendNotification]:
    return [e for e in effects if isinstance(e, SendNotification)]


def state_effects(effects: tuple[Effect, ...] | list[Effect]) -> list[Effect]:
    return [e for e in effects if not isinstance(e, SendNotification)]
