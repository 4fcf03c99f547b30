"""
billing_batch.models -- ORM models for recurring billing expansion.

Architecture: billing_batch/models. Imports from billing_kernel.db.base only.
"""

from billing_batch.models.billing import (
    AUTORENEW_HISTORY_REASON,
    BillingEventModel,
    BillingRecurrenceModel,
    HistoryEntryModel,
    TransactionRecordModel,
)
from billing_batch.models.cursor import CursorModel
from billing_batch.models.run import ExpansionRunModel

__all__ = [
    "AUTORENEW_HISTORY_REASON",
    "BillingEventModel",
    "BillingRecurrenceModel",
    "CursorModel",
    "ExpansionRunModel",
    "HistoryEntryModel",
    "TransactionRecordModel",
]
