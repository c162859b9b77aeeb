"""
Batch and tranche lifecycle transitions.

Pure functions: ``(entity, input) -> new entity``.  Every successful
transition returns a copy with ``version + 1``; a guard violation raises
``InvalidTransitionError`` and leaves nothing changed.

Tranche states move strictly forward:

    INACTIVE -> RELEASED -> IN_TRANSIT -> IN_HOME -> FINALIZED

Batches move CREATED -> ACTIVE -> FINALIZED.  Retail sales move
PENDING -> APPROVED | REJECTED.

The auto-transit delay is exposed only as the ``is_due`` predicate; the
scheduler that polls it lives outside this package.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Sequence
from uuid import UUID

from consignment_kernel.domain.entities import (
    Batch,
    BatchState,
    Sale,
    SaleState,
    Tranche,
    TrancheState,
)
from consignment_kernel.domain.values import ZERO, stock_percentage
from consignment_kernel.exceptions import (
    InsufficientStockError,
    InvalidTransitionError,
)


def _tranche_guard(tranche: Tranche, allowed: TrancheState, requested: TrancheState) -> None:
    if tranche.state != allowed:
        raise InvalidTransitionError(
            "Tranche", str(tranche.id), tranche.state.value, requested.value,
        )


# ---------------------------------------------------------------------------
# Tranche transitions
# ---------------------------------------------------------------------------


def release_tranche(
    tranche: Tranche,
    now: datetime,
    wholesale_settlement_id: UUID | None = None,
) -> Tranche:
    """INACTIVE -> RELEASED, optionally recording the wholesale settlement that freed it."""
    _tranche_guard(tranche, TrancheState.INACTIVE, TrancheState.RELEASED)
    return replace(
        tranche,
        state=TrancheState.RELEASED,
        released_at=now,
        released_by_wholesale_settlement_id=wholesale_settlement_id,
        version=tranche.version + 1,
    )


def is_due(tranche: Tranche, now: datetime, delay_hours: Decimal) -> bool:
    """True once a RELEASED tranche has waited ``delay_hours``."""
    if tranche.state != TrancheState.RELEASED or tranche.released_at is None:
        return False
    return now - tranche.released_at >= timedelta(hours=float(delay_hours))


def auto_transit(tranche: Tranche, now: datetime) -> Tranche:
    """RELEASED -> IN_TRANSIT."""
    _tranche_guard(tranche, TrancheState.RELEASED, TrancheState.IN_TRANSIT)
    return replace(
        tranche,
        state=TrancheState.IN_TRANSIT,
        in_transit_at=now,
        version=tranche.version + 1,
    )


def confirm_delivery(tranche: Tranche, now: datetime) -> Tranche:
    """IN_TRANSIT -> IN_HOME."""
    _tranche_guard(tranche, TrancheState.IN_TRANSIT, TrancheState.IN_HOME)
    return replace(
        tranche,
        state=TrancheState.IN_HOME,
        in_home_at=now,
        version=tranche.version + 1,
    )


def finalize_tranche(tranche: Tranche, now: datetime) -> Tranche:
    """IN_HOME with zero stock -> FINALIZED."""
    _tranche_guard(tranche, TrancheState.IN_HOME, TrancheState.FINALIZED)
    if tranche.current_stock != 0:
        raise InvalidTransitionError(
            "Tranche", str(tranche.id), tranche.state.value,
            TrancheState.FINALIZED.value,
            reason=f"{tranche.current_stock} units still in stock",
        )
    return replace(
        tranche,
        state=TrancheState.FINALIZED,
        finalized_at=now,
        version=tranche.version + 1,
    )


def force_finalize_tranche(tranche: Tranche, now: datetime) -> Tranche:
    """Walk a forced-batch tranche straight to FINALIZED once it is fully consumed."""
    if tranche.state == TrancheState.FINALIZED:
        raise InvalidTransitionError(
            "Tranche", str(tranche.id), tranche.state.value, TrancheState.FINALIZED.value,
        )
    if tranche.current_stock != 0:
        raise InvalidTransitionError(
            "Tranche", str(tranche.id), tranche.state.value,
            TrancheState.FINALIZED.value,
            reason=f"{tranche.current_stock} units still in stock",
        )
    return replace(
        tranche,
        state=TrancheState.FINALIZED,
        released_at=tranche.released_at or now,
        in_transit_at=tranche.in_transit_at or now,
        in_home_at=tranche.in_home_at or now,
        finalized_at=now,
        version=tranche.version + 1,
    )


def decrement_stock(tranche: Tranche, quantity: int) -> Tranche:
    """Tentative sale decrement on an IN_HOME tranche."""
    if quantity <= 0:
        raise ValueError(f"quantity must be positive, got {quantity}")
    if tranche.state != TrancheState.IN_HOME:
        raise InvalidTransitionError(
            "Tranche", str(tranche.id), tranche.state.value, "decrement_stock",
            reason="sales only draw from IN_HOME tranches",
        )
    if quantity > tranche.current_stock:
        raise InsufficientStockError(str(tranche.id), tranche.current_stock, quantity)
    return replace(
        tranche,
        current_stock=tranche.current_stock - quantity,
        version=tranche.version + 1,
    )


def restore_stock(tranche: Tranche, quantity: int) -> Tranche:
    """Undo a rejected sale's decrement."""
    if quantity <= 0:
        raise ValueError(f"quantity must be positive, got {quantity}")
    if tranche.state != TrancheState.IN_HOME:
        raise InvalidTransitionError(
            "Tranche", str(tranche.id), tranche.state.value, "restore_stock",
        )
    if tranche.current_stock + quantity > tranche.initial_stock:
        raise InvalidTransitionError(
            "Tranche", str(tranche.id), tranche.state.value, "restore_stock",
            reason="restore would exceed the initial stock",
        )
    return replace(
        tranche,
        current_stock=tranche.current_stock + quantity,
        version=tranche.version + 1,
    )


def consume_wholesale_stock(tranche: Tranche, quantity: int) -> Tranche:
    """Take wholesale units from a reserved (INACTIVE) or IN_HOME tranche."""
    if quantity <= 0:
        raise ValueError(f"quantity must be positive, got {quantity}")
    if tranche.state not in (TrancheState.INACTIVE, TrancheState.IN_HOME):
        raise InvalidTransitionError(
            "Tranche", str(tranche.id), tranche.state.value, "consume_wholesale_stock",
            reason="wholesale stock comes from INACTIVE or IN_HOME tranches",
        )
    if quantity > tranche.current_stock:
        raise InsufficientStockError(str(tranche.id), tranche.current_stock, quantity)
    return replace(
        tranche,
        current_stock=tranche.current_stock - quantity,
        consumed_by_wholesale=tranche.consumed_by_wholesale + quantity,
        version=tranche.version + 1,
    )


def select_sale_tranche(tranches: Iterable[Tranche]) -> Tranche | None:
    """The lowest-numbered IN_HOME tranche that still has stock."""
    candidates = [
        t for t in tranches
        if t.state == TrancheState.IN_HOME and t.current_stock > 0
    ]
    return min(candidates, key=lambda t: t.number, default=None)


def next_inactive_tranche(tranches: Iterable[Tranche], after_number: int) -> Tranche | None:
    """The tranche numbered ``after_number + 1`` if it is still INACTIVE."""
    for t in tranches:
        if t.number == after_number + 1 and t.state == TrancheState.INACTIVE:
            return t
    return None


def crossed_low_stock(before: int, after: int, initial: int, percent: Decimal) -> bool:
    """True when a decrement moves remaining stock to or below ``percent`` for the first time."""
    return (
        stock_percentage(before, initial) > percent
        and stock_percentage(after, initial) <= percent
    )


# ---------------------------------------------------------------------------
# Batch transitions
# ---------------------------------------------------------------------------


def activate_batch(batch: Batch, now: datetime) -> Batch:
    """CREATED -> ACTIVE."""
    if batch.state != BatchState.CREATED:
        raise InvalidTransitionError(
            "Batch", str(batch.id), batch.state.value, BatchState.ACTIVE.value,
        )
    return replace(
        batch,
        state=BatchState.ACTIVE,
        activated_at=now,
        version=batch.version + 1,
    )


def finalize_batch(batch: Batch, tranches: Sequence[Tranche], now: datetime) -> Batch:
    """ACTIVE -> FINALIZED once every tranche is FINALIZED."""
    if batch.state != BatchState.ACTIVE:
        raise InvalidTransitionError(
            "Batch", str(batch.id), batch.state.value, BatchState.FINALIZED.value,
        )
    open_tranches = [t.number for t in tranches if t.state != TrancheState.FINALIZED]
    if open_tranches or len(tranches) != batch.tranche_count:
        raise InvalidTransitionError(
            "Batch", str(batch.id), batch.state.value, BatchState.FINALIZED.value,
            reason=f"tranches not finalized: {open_tranches}",
        )
    return replace(
        batch,
        state=BatchState.FINALIZED,
        finalized_at=now,
        version=batch.version + 1,
    )


def record_collection(batch: Batch, amount: Decimal) -> Batch:
    """Add retail or wholesale money collected by the seller."""
    if amount < ZERO:
        raise ValueError(f"collection amount cannot be negative, got {amount}")
    if batch.state == BatchState.FINALIZED:
        raise InvalidTransitionError(
            "Batch", str(batch.id), batch.state.value, "record_collection",
        )
    return replace(
        batch,
        money_collected=batch.money_collected + amount,
        version=batch.version + 1,
    )


def record_remittance(batch: Batch, amount: Decimal) -> Batch:
    """
    Add money handed to the operator, capped so remitted never exceeds collected.

    Remittance takes precedence over money booked against equipment debt:
    when both no longer fit in what the batch collected, the debt share is
    treated as paid out of the seller's own pocket.
    """
    if amount < ZERO:
        raise ValueError(f"remittance amount cannot be negative, got {amount}")
    remitted = min(batch.money_remitted + amount, batch.money_collected)
    return replace(
        batch,
        money_remitted=remitted,
        money_to_debt=min(batch.money_to_debt, batch.money_collected - remitted),
        version=batch.version + 1,
    )


def record_debt_payment(batch: Batch, amount: Decimal) -> Batch:
    """Book sales money handed over against the seller's equipment debt."""
    if amount < ZERO:
        raise ValueError(f"debt payment cannot be negative, got {amount}")
    return replace(
        batch,
        money_to_debt=batch.money_to_debt + min(amount, batch.unremitted),
        version=batch.version + 1,
    )


# ---------------------------------------------------------------------------
# Retail sales
# ---------------------------------------------------------------------------


def _sale_guard(sale: Sale, requested: SaleState) -> None:
    if sale.state != SaleState.PENDING:
        raise InvalidTransitionError(
            "Sale", str(sale.id), sale.state.value, requested.value,
        )


def approve_sale(sale: Sale, now: datetime) -> Sale:
    """PENDING -> APPROVED; the tentative decrement becomes final."""
    _sale_guard(sale, SaleState.APPROVED)
    return replace(sale, state=SaleState.APPROVED, resolved_at=now, version=sale.version + 1)


def reject_sale(sale: Sale, now: datetime) -> Sale:
    """PENDING -> REJECTED; the caller restores the tranche stock."""
    _sale_guard(sale, SaleState.REJECTED)
    return replace(sale, state=SaleState.REJECTED, resolved_at=now, version=sale.version + 1)
