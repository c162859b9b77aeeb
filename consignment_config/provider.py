"""
Configuration providers (``consignment_config.provider``).

Responsibility:
    Define the ``ConfigProvider`` contract (``get_number(key) -> Decimal``)
    and the in-repo implementations:

    * ``StaticConfigProvider`` -- immutable, validated mapping backed by
      ``keys.DEFAULTS``.
    * ``InMemoryConfigProvider`` -- mutable store for admin-editable values
      (the external configuration storage in production).

Invariants enforced:
    - Percentages lie in 0..100; thresholds and prices are positive.
    - A calculation sees one stable set of values: services call
      :func:`freeze` once per operation and hand the snapshot down.

Failure modes:
    - ``ConfigurationError`` for a value that fails validation or is not a
      number.
    - ``MissingConfigKeyError`` for a key with neither a value nor a default.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Protocol, runtime_checkable

from consignment_config import keys
from consignment_kernel.exceptions import ConfigurationError, MissingConfigKeyError


@runtime_checkable
class ConfigProvider(Protocol):
    """Source of every configurable number."""

    def get_number(self, key: str) -> Decimal:
        ...


def _coerce(key: str, value: object) -> Decimal:
    if isinstance(value, bool) or isinstance(value, float):
        raise ConfigurationError(key, f"expected an exact number, got {value!r}")
    try:
        return value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ConfigurationError(key, f"not a number: {value!r}") from exc


def validate_value(key: str, value: Decimal) -> None:
    """Raise ConfigurationError if ``value`` is out of range for ``key``."""
    if not value.is_finite():
        raise ConfigurationError(key, f"value must be finite, got {value}")
    if key in keys.PERCENT_KEYS and not (Decimal(0) <= value <= Decimal(100)):
        raise ConfigurationError(key, f"percentage must be within 0..100, got {value}")
    if key in keys.POSITIVE_KEYS and value <= 0:
        raise ConfigurationError(key, f"value must be positive, got {value}")
    if key in keys.NON_NEGATIVE_KEYS and value < 0:
        raise ConfigurationError(key, f"value cannot be negative, got {value}")
    if key.startswith(keys.WHOLESALE_TIER_PREFIX) and value <= 0:
        raise ConfigurationError(key, f"tier values must be positive, got {value}")


class StaticConfigProvider:
    """
    Immutable, validated configuration.

    Contract:
        Values are coerced to Decimal and validated at construction;
        lookups never change afterwards.  Keys absent from ``values`` fall
        back to ``keys.DEFAULTS`` when ``use_defaults`` is True.
    """

    def __init__(
        self,
        values: Mapping[str, object] | None = None,
        *,
        use_defaults: bool = True,
    ):
        merged: dict[str, Decimal] = dict(keys.DEFAULTS) if use_defaults else {}
        for key, raw in (values or {}).items():
            merged[key] = _coerce(key, raw)
        for key, value in merged.items():
            validate_value(key, value)
        self._values = merged

    def get_number(self, key: str) -> Decimal:
        try:
            return self._values[key]
        except KeyError:
            raise MissingConfigKeyError(key) from None

    def as_dict(self) -> dict[str, Decimal]:
        return dict(self._values)

    def with_overrides(self, overrides: Mapping[str, object]) -> StaticConfigProvider:
        """Copy with some values replaced."""
        values: dict[str, object] = dict(self._values)
        values.update(overrides)
        return StaticConfigProvider(values, use_defaults=False)

    def __repr__(self) -> str:
        return f"StaticConfigProvider({len(self._values)} keys)"


class InMemoryConfigProvider:
    """Mutable provider for values an administrator may change at runtime."""

    def __init__(self, values: Mapping[str, object] | None = None):
        self._lock = threading.Lock()
        self._values: dict[str, Decimal] = {}
        for key, raw in (values or {}).items():
            self.set(key, raw)

    def set(self, key: str, value: object) -> None:
        coerced = _coerce(key, value)
        validate_value(key, coerced)
        with self._lock:
            self._values[key] = coerced

    def get_number(self, key: str) -> Decimal:
        with self._lock:
            if key in self._values:
                return self._values[key]
        if key in keys.DEFAULTS:
            return keys.DEFAULTS[key]
        raise MissingConfigKeyError(key)


def freeze(provider: ConfigProvider) -> StaticConfigProvider:
    """Snapshot every known key so one operation sees stable values."""
    if isinstance(provider, StaticConfigProvider):
        return provider
    return StaticConfigProvider(
        {key: provider.get_number(key) for key in keys.DEFAULTS},
        use_defaults=False,
    )
