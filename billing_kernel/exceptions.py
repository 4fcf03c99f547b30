"""
Typed Exception Hierarchy for the Billing Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Billing jobs run unattended and report into task queues and log pipelines.
Callers must be able to tell a caller mistake (bad cursor override) from a
per-recurrence failure (unknown TLD, missing price) from an operator-level
inconsistency (checkpoint moved underneath a run) WITHOUT parsing messages.

Every exception therefore:
  1. Has its own class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (survives JSON logging)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    BillingKernelError (base)
    |
    +-- ExpansionError
    |   +-- InvalidCursorTimeError
    |   +-- InvalidRunParameterError
    |   +-- UnknownStrategyError
    |
    +-- RecurrenceError
    |   +-- MalformedRecurrenceError
    |
    +-- PricingError
    |   +-- TldNotConfiguredError
    |   +-- PriceNotFoundError
    |
    +-- ConcurrencyError
    |   +-- CursorConflictError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Expansion       | INVALID_CURSOR_TIME         | Cursor time is not before execution time
                | INVALID_RUN_PARAMETER       | Batch size or worker count not positive
                | UNKNOWN_STRATEGY            | Execution strategy name not recognized
----------------|-----------------------------|-----------------------------------------
Recurrence      | MALFORMED_RECURRENCE        | Stored time-of-year cannot be parsed
----------------|-----------------------------|-----------------------------------------
Pricing         | TLD_NOT_CONFIGURED          | Target's TLD has no configuration
                | PRICE_NOT_FOUND             | No renew price in force at the instant
----------------|-----------------------------|-----------------------------------------
Concurrency     | CURSOR_CONFLICT             | Checkpoint moved during an expansion run
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Update/delete of an append-only record
----------------|-----------------------------|-----------------------------------------
Configuration   | CONFIGURATION_ERROR         | YAML configuration is structurally invalid

===============================================================================
HANDLING PATTERNS
===============================================================================

1. PRECONDITION ERRORS are rejected before any work starts:

    try:
        expander.run(params)
    except InvalidCursorTimeError as e:
        return {"error": e.code, "cursor_time": e.cursor_time}

2. PER-ITEM ERRORS (PricingError, RecurrenceError, storage conflicts on one
   recurrence) never escape the driver -- they are counted and logged, and the
   checkpoint is left untouched.

3. CURSOR CONFLICTS need an operator.  Committed materializations stay valid
   and are re-detected as already materialized by the next run.
"""


class BillingKernelError(Exception):
    """
    Base exception for all billing kernel errors.

    All subclasses must have a `code` class attribute
    for machine-readable error identification.
    """

    code: str = "BILLING_KERNEL_ERROR"


# Expansion-run exceptions


class ExpansionError(BillingKernelError):
    """Base exception for expansion-run level errors."""

    code: str = "EXPANSION_ERROR"


class InvalidCursorTimeError(ExpansionError):
    """Cursor time must be strictly earlier than the execution time."""

    code: str = "INVALID_CURSOR_TIME"

    def __init__(self, cursor_time, execute_time):
        self.cursor_time = cursor_time
        self.execute_time = execute_time
        super().__init__(
            f"Cursor time {cursor_time} must be earlier than "
            f"execution time {execute_time}"
        )


class InvalidRunParameterError(ExpansionError):
    """A per-run limit (page size, worker count) is not a positive integer."""

    code: str = "INVALID_RUN_PARAMETER"

    def __init__(self, name: str, value):
        self.name = name
        self.value = value
        super().__init__(f"{name} must be a positive integer, got {value!r}")


class UnknownStrategyError(ExpansionError):
    """Requested execution strategy is not registered."""

    code: str = "UNKNOWN_STRATEGY"

    def __init__(self, strategy: str, available: tuple[str, ...]):
        self.strategy = strategy
        self.available = available
        super().__init__(
            f"Unknown expansion strategy '{strategy}'. Available: {list(available)}"
        )


# Recurrence exceptions


class RecurrenceError(BillingKernelError):
    """Base exception for recurrence definition errors."""

    code: str = "RECURRENCE_ERROR"


class MalformedRecurrenceError(RecurrenceError):
    """Stored recurrence rule cannot be interpreted."""

    code: str = "MALFORMED_RECURRENCE"

    def __init__(self, value: str, reason: str):
        self.value = value
        self.reason = reason
        super().__init__(f"Malformed recurrence rule {value!r}: {reason}")


# Pricing / target configuration exceptions


class PricingError(BillingKernelError):
    """Base exception for pricing and target configuration lookups."""

    code: str = "PRICING_ERROR"


class TldNotConfiguredError(PricingError):
    """No TLD configuration matches the billing target."""

    code: str = "TLD_NOT_CONFIGURED"

    def __init__(self, target_id: str):
        self.target_id = target_id
        super().__init__(f"No TLD configured for target {target_id}")


class PriceNotFoundError(PricingError):
    """No renew price is in force for the TLD at the requested instant."""

    code: str = "PRICE_NOT_FOUND"

    def __init__(self, tld: str, as_of):
        self.tld = tld
        self.as_of = as_of
        super().__init__(f"No renew price in force for TLD {tld} at {as_of}")


# Concurrency-related exceptions


class ConcurrencyError(BillingKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class CursorConflictError(ConcurrencyError):
    """
    The checkpoint no longer holds the value read at the start of the run.

    Another process altered the cursor mid-run.  The run's committed
    materializations remain valid; the cursor is NOT overwritten.
    """

    code: str = "CURSOR_CONFLICT"

    def __init__(self, cursor_type: str, expected_time, current_time, summary=None):
        self.cursor_type = cursor_type
        self.expected_time = expected_time
        self.current_time = current_time
        # Completion summary of the run that detected the conflict, if any.
        self.summary = summary
        super().__init__(
            f"Current cursor position {current_time} does not match "
            f"persisted cursor position {expected_time} for {cursor_type}"
        )


# Immutability-related exceptions


class ImmutabilityError(BillingKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted modification of an append-only billing record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )


# Configuration exceptions


class ConfigurationError(BillingKernelError):
    """Configuration file is structurally invalid."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, section: str, reason: str):
        self.section = section
        self.reason = reason
        super().__init__(f"Invalid configuration in '{section}': {reason}")
