"""
Typed Exception Hierarchy for the Consignment Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Settlement and stock errors must be handled precisely. Generic exceptions
like ValueError force callers to parse error messages, which breaks the
moment the wording changes. Every error here:

  1. Has a TYPED exception class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA (offending ids, actual vs expected values)

Example:
    try:
        service.confirm_settlement(settlement_id, received)
    except AmountBelowExpectedError as e:
        api_response(
            code=e.code,
            expected=e.expected_amount,
            received=e.received_amount,
            shortfall=e.shortfall,
        )

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ConsignmentError (base)
    |
    +-- StateError
    |   +-- InvalidTransitionError
    |
    +-- StockError
    |   +-- InsufficientStockError
    |   +-- BelowMinimumQuantityError
    |   +-- GiftLimitExceededError
    |
    +-- SettlementError
    |   +-- AmountBelowExpectedError
    |
    +-- ConcurrencyError
    |   +-- VersionConflictError
    |
    +-- EntityNotFoundError
    |
    +-- ConfigurationError
        +-- MissingConfigKeyError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                    | When Raised
----------------|-------------------------|------------------------------------
State           | INVALID_TRANSITION      | State machine guard violated
----------------|-------------------------|------------------------------------
Stock           | INSUFFICIENT_STOCK      | Decrement/consumption > available
                | BELOW_MINIMUM_QUANTITY  | Wholesale order under tier floor
                | GIFT_LIMIT_EXCEEDED     | Gift-unit quota breach
----------------|-------------------------|------------------------------------
Settlement      | AMOUNT_BELOW_EXPECTED   | Confirmation with insufficient funds
----------------|-------------------------|------------------------------------
Concurrency     | VERSION_CONFLICT        | Optimistic version is stale (retry)
----------------|-------------------------|------------------------------------
Lookup          | ENTITY_NOT_FOUND        | Referenced entity missing
----------------|-------------------------|------------------------------------
Configuration   | CONFIGURATION_ERROR     | Invalid configuration value
                | MISSING_CONFIG_KEY      | Key with no value and no default

===============================================================================
HANDLING PATTERNS
===============================================================================

1. VersionConflictError is the only retryable error. Re-read fresh state
   and retry (see consignment_services.retry.with_version_retry).

2. Everything else is terminal for the current request and should be
   surfaced to the end user using the structured attributes.

3. Codes are class attributes so they can be listed without instantiation.
"""

from decimal import Decimal


class ConsignmentError(Exception):
    """
    Base exception for all consignment kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "CONSIGNMENT_ERROR"


# State machine exceptions


class StateError(ConsignmentError):
    """Base exception for state machine errors."""

    code: str = "STATE_ERROR"


class InvalidTransitionError(StateError):
    """A state machine guard was violated."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_state: str,
        requested: str,
        reason: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_state = current_state
        self.requested = requested
        self.reason = reason
        message = (
            f"Invalid transition on {entity_type} {entity_id}: "
            f"{current_state} -> {requested}"
        )
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


# Stock exceptions


class StockError(ConsignmentError):
    """Base exception for stock-related errors."""

    code: str = "STOCK_ERROR"


class InsufficientStockError(StockError):
    """Requested quantity exceeds what is available."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, entity_id: str, available: int, requested: int):
        self.entity_id = entity_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock on {entity_id}: "
            f"available={available}, requested={requested}"
        )


class BelowMinimumQuantityError(StockError):
    """Wholesale order quantity is under the lowest price tier."""

    code: str = "BELOW_MINIMUM_QUANTITY"

    def __init__(self, quantity: int, minimum: int):
        self.quantity = quantity
        self.minimum = minimum
        super().__init__(
            f"Wholesale quantity {quantity} is below the minimum of {minimum}"
        )


class GiftLimitExceededError(StockError):
    """Gift units would exceed the per-batch quota."""

    code: str = "GIFT_LIMIT_EXCEEDED"

    def __init__(self, batch_id: str, max_gifts: int, used: int, requested: int):
        self.batch_id = batch_id
        self.max_gifts = max_gifts
        self.used = used
        self.requested = requested
        super().__init__(
            f"Gift limit exceeded on batch {batch_id}: "
            f"max={max_gifts}, used={used}, requested={requested}"
        )


# Settlement exceptions


class SettlementError(ConsignmentError):
    """Base exception for settlement errors."""

    code: str = "SETTLEMENT_ERROR"


class AmountBelowExpectedError(SettlementError):
    """Confirmation amount does not cover what is due."""

    code: str = "AMOUNT_BELOW_EXPECTED"

    def __init__(
        self,
        settlement_id: str,
        expected_amount: Decimal,
        received_amount: Decimal,
    ):
        self.settlement_id = settlement_id
        self.expected_amount = expected_amount
        self.received_amount = received_amount
        self.shortfall = expected_amount - received_amount
        super().__init__(
            f"Received amount {received_amount} is below the expected "
            f"{expected_amount} for settlement {settlement_id} "
            f"(shortfall {self.shortfall})"
        )


# Concurrency exceptions


class ConcurrencyError(ConsignmentError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class VersionConflictError(ConcurrencyError):
    """Optimistic version check failed; caller must re-read and retry."""

    code: str = "VERSION_CONFLICT"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected_version: int,
        actual_version: int | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Version conflict on {entity_type} {entity_id}: "
            f"expected version {expected_version}, found {actual_version}"
        )


# Lookup exceptions


class EntityNotFoundError(ConsignmentError):
    """Referenced entity does not exist."""

    code: str = "ENTITY_NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


# Configuration exceptions


class ConfigurationError(ConsignmentError):
    """A configuration value is invalid."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid configuration for '{key}': {reason}")


class MissingConfigKeyError(ConfigurationError):
    """Configuration key has neither a value nor a default."""

    code: str = "MISSING_CONFIG_KEY"

    def __init__(self, key: str):
        super().__init__(key, "no value configured and no default defined")
