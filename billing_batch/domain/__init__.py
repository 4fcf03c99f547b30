"""
billing_batch.domain -- Pure types, the annual recurrence rule and the
billing time mapper.

ZERO I/O.  All types are frozen dataclasses.
"""

from billing_batch.domain.billing_times import (
    billing_times_owed,
    candidate_billing_times,
    to_billing_times,
)
from billing_batch.domain.time_of_year import TimeOfYear
from billing_batch.domain.types import (
    END_OF_TIME,
    START_OF_TIME,
    BillingFlag,
    BillingReason,
    CheckpointAdvanceOutcome,
    CursorType,
    ExpansionParameters,
    ExpansionRunStatus,
    ExpansionState,
    ExpansionStrategyKind,
    ExpansionSummary,
    ExpansionWindow,
    HistoryEntryType,
    MaterializedEvent,
    RecurringDefinition,
    StrategyResult,
    TransactionReportField,
)

__all__ = [
    "END_OF_TIME",
    "START_OF_TIME",
    "BillingFlag",
    "BillingReason",
    "CheckpointAdvanceOutcome",
    "CursorType",
    "ExpansionParameters",
    "ExpansionRunStatus",
    "ExpansionState",
    "ExpansionStrategyKind",
    "ExpansionSummary",
    "ExpansionWindow",
    "HistoryEntryType",
    "MaterializedEvent",
    "RecurringDefinition",
    "StrategyResult",
    "TimeOfYear",
    "TransactionReportField",
    "billing_times_owed",
    "candidate_billing_times",
    "to_billing_times",
]
