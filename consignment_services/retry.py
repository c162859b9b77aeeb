"""
Bounded retry for optimistic-concurrency conflicts.

``VersionConflictError`` is the only retryable error: the operation is
re-run from scratch, re-reading fresh state.  Anything else propagates on
the first attempt.

Usage:
    result = with_version_retry(
        lambda: settlement_service.confirm_settlement(settlement_id, received),
        max_attempts=3,
    )
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

from consignment_kernel.exceptions import VersionConflictError
from consignment_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3


def with_version_retry(
    operation: Callable[[], T],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> T:
    """
    Run ``operation``, re-running it on VersionConflictError.

    Raises:
        ValueError: max_attempts < 1.
        VersionConflictError: still conflicting after ``max_attempts``.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
    attempt = 1
    while True:
        try:
            return operation()
        except VersionConflictError as exc:
            if attempt >= max_attempts:
                logger.warning(
                    "version_retry_exhausted",
                    extra={
                        "attempts": attempt,
                        "entity_type": exc.entity_type,
                        "entity_id": exc.entity_id,
                    },
                )
                raise
            logger.info(
                "version_retry",
                extra={
                    "attempt": attempt,
                    "entity_type": exc.entity_type,
                    "entity_id": exc.entity_id,
                },
            )
            attempt += 1
