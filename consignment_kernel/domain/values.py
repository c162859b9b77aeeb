"""
Monetary and percentage helpers (``consignment_kernel.domain.values``).

Amounts throughout the kernel are plain ``Decimal`` values in major units
of a single operating currency.  Intermediate arithmetic is exact; only
final persisted amounts pass through :func:`round_money`.
"""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal

DEFAULT_ROUNDING = ROUND_HALF_UP
DEFAULT_MINOR_UNIT_PLACES = 2

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value: Decimal | int | str) -> Decimal:
    """Coerce an int/str/Decimal to Decimal. Floats are rejected."""
    if isinstance(value, float):
        raise TypeError(f"Float amounts are not accepted: {value!r}")
    if isinstance(value, Decimal):
        return value
    return Decimal(value)


def round_money(
    value: Decimal,
    decimal_places: int = DEFAULT_MINOR_UNIT_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the currency minor unit.

    This is the only sanctioned rounding function for amounts; calculators
    delegate to it so precision handling stays consistent.
    """
    quantum = Decimal(1).scaleb(-decimal_places)
    return value.quantize(quantum, rounding=rounding)


def percent_of(value: Decimal, percent: Decimal) -> Decimal:
    """Exact ``value * percent / 100`` with no rounding."""
    return value * percent / HUNDRED


def floor_percent_of_units(units: int, percent: Decimal) -> int:
    """``floor(units * percent / 100)`` for unit quotas."""
    exact = Decimal(units) * percent / HUNDRED
    return int(exact.to_integral_value(rounding=ROUND_DOWN))


def stock_percentage(current: int, initial: int) -> Decimal:
    """Remaining stock as a percentage of the initial allocation.

    An empty allocation reports 0% so that percentage triggers on it fire.
    """
    if initial <= 0:
        return ZERO
    return Decimal(current) * HUNDRED / Decimal(initial)


def non_negative(value: Decimal) -> Decimal:
    return value if value > ZERO else ZERO
