"""
Module: billing_batch.selectors.billing_event_selector
Responsibility: Existing-Materialization Lookup.

The set of billing times already materialized for a recurrence is the sole
source of truth for idempotence: a run computes
``candidates - existing_billing_times(recurrence)`` and writes only the
difference, so re-running any window any number of times is harmless.
There is deliberately no "processed" flag on the recurrence itself.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select

from billing_batch.domain.types import MaterializedEvent
from billing_batch.models.billing import BillingEventModel
from billing_kernel.selectors.base import BaseSelector


class BillingEventSelector(BaseSelector[BillingEventModel]):
    """Read-only queries over ``billing_events``."""

    def existing_billing_times(self, recurrence_id: int) -> frozenset[datetime]:
        stmt = select(BillingEventModel.billing_time).where(
            BillingEventModel.cancellation_matching_recurrence_id == recurrence_id
        )
        return frozenset(self.session.scalars(stmt))

    def events_for_recurrence(self, recurrence_id: int) -> list[MaterializedEvent]:
        stmt = (
            select(BillingEventModel)
            .where(BillingEventModel.cancellation_matching_recurrence_id == recurrence_id)
            .order_by(BillingEventModel.billing_time)
        )
        return [row.to_dto() for row in self.session.scalars(stmt)]

    def count_events(self, recurrence_id: int | None = None) -> int:
        stmt = select(func.count()).select_from(BillingEventModel)
        if recurrence_id is not None:
            stmt = stmt.where(
                BillingEventModel.cancellation_matching_recurrence_id == recurrence_id
            )
        return self.session.scalar(stmt) or 0
