"""
Gift-unit quota.

A seller may hand out ``floor(unit_count x gifts.limit_percent / 100)``
units of a batch as gifts.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

from consignment_kernel.domain.entities import Batch
from consignment_kernel.domain.values import floor_percent_of_units
from consignment_kernel.exceptions import GiftLimitExceededError


def max_gifts(unit_count: int, limit_percent: Decimal) -> int:
    return floor_percent_of_units(unit_count, limit_percent)


def validate_gift_allowance(
    batch: Batch,
    used: int,
    requested: int,
    limit_percent: Decimal,
) -> int:
    """
    Check a gift request against the batch quota.

    Returns:
        Gift units left after the request.

    Raises:
        ValueError: If requested is not positive.
        GiftLimitExceededError: If ``used + requested`` exceeds the quota.
    """
    if requested <= 0:
        raise ValueError(f"requested gifts must be positive, got {requested}")
    limit = max_gifts(batch.unit_count, limit_percent)
    if used + requested > limit:
        raise GiftLimitExceededError(str(batch.id), limit, used, requested)
    return limit - used - requested


def record_gift(batch: Batch, units: int, limit_percent: Decimal) -> Batch:
    """Validate and count ``units`` gift units against the batch quota."""
    validate_gift_allowance(batch, batch.gift_units_used, units, limit_percent)
    return replace(
        batch,
        gift_units_used=batch.gift_units_used + units,
        version=batch.version + 1,
    )
