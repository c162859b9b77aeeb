"""
consignment_engines.tracer -- CONSIGNMENT_ENGINE_TRACE records for pure engines.

Responsibility:
    ``@traced_engine`` wraps a calculator so every call leaves one log line
    naming the engine and its version, a fingerprint of the inputs that
    determine the result, the duration and the outcome.  Two calls with the
    same fingerprint under the same engine version must produce the same
    figures, which is what makes a disputed settlement amount traceable.

Architecture position:
    Engines -- support for the pure calculation layer.  Emits a log record
    and nothing else.

Fingerprints:
    Domain entities (frozen dataclasses) are reduced to their fields, so a
    batch fingerprints by its money figures and version rather than by
    object identity.  Missing keyword arguments fingerprint as "null".
    A call that raises is traced with ``outcome="error"`` and re-raised.
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import logging
import time
from collections.abc import Callable, Mapping
from datetime import datetime
from enum import Enum
from typing import Any

# Under the kernel logger namespace so configure_logging() covers it.
_logger = logging.getLogger("consignment_kernel.engines.tracer")


def _canonicalize(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, datetime):
        return value.isoformat()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        inner = ",".join(
            f"{f.name}:{_canonicalize(getattr(value, f.name))}"
            for f in dataclasses.fields(value)
        )
        return f"{type(value).__name__}({inner})"
    if isinstance(value, Mapping):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "{" + ",".join(f"{k}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: Mapping[str, Any],
) -> str:
    """SHA-256 (first 16 hex chars) over the named keyword arguments."""
    canonical = "|".join(
        f"{name}={_canonicalize(kwargs.get(name))}" for name in fingerprint_fields
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """
    Trace every call of a pure engine function.

    Args:
        engine_name: e.g. "profit_cascade".
        engine_version: Bumped whenever the engine's figures can change.
        fingerprint_fields: Keyword arguments that determine the result.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = (
                compute_input_fingerprint(fingerprint_fields, kwargs)
                if fingerprint_fields
                else ""
            )
            outcome = "ok"
            t0 = time.monotonic()
            try:
                return func(*args, **kwargs)
            except Exception:
                outcome = "error"
                raise
            finally:
                _logger.info(
                    "CONSIGNMENT_ENGINE_TRACE",
                    extra={
                        "trace_type": "CONSIGNMENT_ENGINE_TRACE",
                        "engine_name": engine_name,
                        "engine_version": engine_version,
                        "input_fingerprint": fingerprint,
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                        "outcome": outcome,
                    },
                )

        return wrapper

    return decorator
