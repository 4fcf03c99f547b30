"""
billing_batch.domain.types -- Pure frozen dataclasses and enums for the
recurring billing expansion engine.  ZERO I/O.

Frozen dataclasses with enum status fields and tuples for immutable
collections.  ORM models convert to these via ``to_dto()`` so that nothing
crossing a transaction boundary is a live ORM instance.

Invariants enforced:
    - All DTOs are frozen dataclasses (immutable).
    - All instants are timezone-aware UTC.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

# Checkpoint value when none has ever been written.
START_OF_TIME = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Recurrence end time of an open-ended (never cancelled) recurrence.
END_OF_TIME = datetime(9999, 12, 31, tzinfo=timezone.utc)


# =============================================================================
# Billing vocabulary
# =============================================================================


class BillingReason(str, Enum):
    """Why a billing event exists."""

    CREATE = "create"
    RENEW = "renew"
    RESTORE = "restore"
    TRANSFER = "transfer"
    SERVER_STATUS = "server_status"


class BillingFlag(str, Enum):
    """Descriptive flags carried on recurrences and copied to events."""

    ALLOCATION = "allocation"
    ANCHOR_TENANT = "anchor_tenant"
    AUTO_RENEW = "auto_renew"
    LANDRUSH = "landrush"
    RESERVED = "reserved"
    SUNRISE = "sunrise"
    # Set on every event created by the expansion job, not by a client action.
    SYNTHETIC = "synthetic"


class HistoryEntryType(str, Enum):
    """Kind of audit history entry."""

    DOMAIN_AUTORENEW = "domain_autorenew"
    DOMAIN_CREATE = "domain_create"
    DOMAIN_DELETE = "domain_delete"
    DOMAIN_RENEW = "domain_renew"
    DOMAIN_TRANSFER_APPROVE = "domain_transfer_approve"


class TransactionReportField(str, Enum):
    """Registry activity report columns a transaction record counts toward."""

    NET_ADDS_1_YR = "net_adds_1_yr"
    NET_RENEWS_1_YR = "net_renews_1_yr"
    NET_RENEWS_2_YR = "net_renews_2_yr"
    NET_RENEWS_3_YR = "net_renews_3_yr"
    NET_RENEWS_4_YR = "net_renews_4_yr"
    NET_RENEWS_5_YR = "net_renews_5_yr"
    NET_RENEWS_6_YR = "net_renews_6_yr"
    NET_RENEWS_7_YR = "net_renews_7_yr"
    NET_RENEWS_8_YR = "net_renews_8_yr"
    NET_RENEWS_9_YR = "net_renews_9_yr"
    NET_RENEWS_10_YR = "net_renews_10_yr"

    @classmethod
    def net_renews_field_from_years(cls, years: int) -> TransactionReportField:
        if not 1 <= years <= 10:
            raise ValueError(f"Renewal period must be 1-10 years, got {years}")
        return cls(f"net_renews_{years}_yr")


class CursorType(str, Enum):
    """Global checkpoints, one row each."""

    RECURRING_BILLING = "recurring_billing"


# =============================================================================
# Run lifecycle
# =============================================================================


class ExpansionStrategyKind(str, Enum):
    """Interchangeable execution strategies over the same expansion core."""

    PAGED = "paged"
    PARALLEL = "parallel"


class ExpansionState(str, Enum):
    """Batch driver state machine."""

    INIT = "init"
    SCANNING = "scanning"
    MATERIALIZING = "materializing"
    FINALIZING = "finalizing"
    DONE = "done"
    ABORTED = "aborted"


class ExpansionRunStatus(str, Enum):
    """Terminal outcome of a run."""

    COMPLETED = "completed"  # Checkpoint advanced (or dry run clean)
    COMPLETED_WITH_ERRORS = "completed_with_errors"  # Checkpoint untouched
    CANCELLED = "cancelled"  # Stopped on request; checkpoint untouched
    CURSOR_CONFLICT = "cursor_conflict"  # Checkpoint moved under the run


class CheckpointAdvanceOutcome(str, Enum):
    ADVANCED = "advanced"
    CONFLICT = "conflict"


# =============================================================================
# DTOs
# =============================================================================


@dataclass(frozen=True)
class RecurringDefinition:
    """Immutable snapshot of a recurring billing definition.

    ``recurrence_time_of_year`` is the serialized annual rule; see
    ``billing_batch.domain.time_of_year.TimeOfYear``.
    """

    recurrence_id: int
    target_id: str  # Fully qualified domain name
    target_repo_id: str
    registrar_id: str
    reason: BillingReason
    event_time: datetime
    recurrence_time_of_year: str
    recurrence_end_time: datetime = END_OF_TIME
    flags: frozenset[BillingFlag] = frozenset()


@dataclass(frozen=True)
class ExpansionWindow:
    """Half-open scan window ``[lower, upper)``."""

    lower: datetime
    upper: datetime

    def __post_init__(self) -> None:
        if self.lower.tzinfo is None or self.upper.tzinfo is None:
            raise ValueError("ExpansionWindow bounds must be timezone-aware")

    def contains(self, instant: datetime) -> bool:
        return self.lower <= instant < self.upper


@dataclass(frozen=True)
class ExpansionParameters:
    """Invocation parameters for one run.

    ``None`` means "use the configured default".
    """

    dry_run: bool = False
    cursor_override: datetime | None = None
    batch_size: int | None = None
    strategy: ExpansionStrategyKind | str | None = None
    worker_count: int | None = None
    actor_id: UUID | None = None
    correlation_id: str | None = None


@dataclass(frozen=True)
class MaterializationPlan:
    """Everything needed to write one (history entry, billing event) pair."""

    recurrence_id: int
    billing_time: datetime
    event_time: datetime
    tld: str
    cost_amount: Decimal
    cost_currency: str
    # False when the recurrence ended before this billing instant.
    include_transaction_record: bool


@dataclass(frozen=True)
class MaterializedEvent:
    """Immutable snapshot of a one-time billing event written by the engine."""

    event_id: UUID
    recurrence_id: int
    history_entry_id: UUID
    target_id: str
    registrar_id: str
    reason: BillingReason
    event_time: datetime
    billing_time: datetime
    cost_amount: Decimal
    cost_currency: str
    period_years: int
    synthetic_creation_time: datetime
    flags: frozenset[BillingFlag] = frozenset()


@dataclass(frozen=True)
class StrategyResult:
    """What a strategy hands back to the driver after scanning."""

    recurrences_processed: int = 0
    events_saved: int = 0
    error_count: int = 0
    error_counts: dict[str, int] = field(default_factory=dict)
    cancelled: bool = False
    max_processed_id: int = 0


@dataclass(frozen=True)
class ExpansionSummary:
    """Completion summary of a run, suitable for logs and task queue reporting."""

    run_id: UUID
    status: ExpansionRunStatus
    strategy: ExpansionStrategyKind
    dry_run: bool
    window: ExpansionWindow
    recurrences_processed: int
    events_saved: int
    error_count: int
    error_counts: dict[str, int] = field(default_factory=dict)
    checkpoint_before: datetime | None = None
    checkpoint_after: datetime | None = None
    checkpoint_advanced: bool = False
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0
    correlation_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation (CLI output, task queue payloads)."""
        return {
            "run_id": str(self.run_id),
            "status": self.status.value,
            "strategy": self.strategy.value,
            "dry_run": self.dry_run,
            "window_start": self.window.lower.isoformat(),
            "window_end": self.window.upper.isoformat(),
            "recurrences_processed": self.recurrences_processed,
            "events_saved": self.events_saved,
            "error_count": self.error_count,
            "error_counts": dict(self.error_counts),
            "checkpoint_before": _iso(self.checkpoint_before),
            "checkpoint_after": _iso(self.checkpoint_after),
            "checkpoint_advanced": self.checkpoint_advanced,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "duration_ms": self.duration_ms,
            "correlation_id": self.correlation_id,
        }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
