"""
Module: billing_batch.selectors.recurrence_selector
Responsibility: Candidate scan over recurring billing definitions.
Architecture position: Batch > Selectors.  May import from models/ and
    billing_kernel.selectors.base.

Invariants enforced:
    - Read-only: No mutations performed on any queried data.
    - DTO convention: returns RecurringDefinition, never ORM instances.
    - Keyset ordering by id, so a paged scan resumes after the last
      committed page instead of restarting from the beginning.

A definition is a candidate for window ``[lower, upper)`` when:
    event_time <= upper            (has started by the execution time)
    recurrence_end_time > lower    (an end at or before the cursor cannot
                                    contribute anything new)
    recurrence_end_time > event_time  (ended before its first anniversary)
"""

from __future__ import annotations

from sqlalchemy import Select, select

from billing_batch.domain.types import ExpansionWindow, RecurringDefinition
from billing_batch.models.billing import BillingRecurrenceModel
from billing_kernel.selectors.base import BaseSelector


class RecurrenceSelector(BaseSelector[BillingRecurrenceModel]):
    """Read-only queries over ``billing_recurrences``."""

    def _candidates(
        self,
        window: ExpansionWindow,
        after_id: int,
        shard: tuple[int, int] | None,
    ) -> Select:
        model = BillingRecurrenceModel
        stmt = select(model).where(
            model.event_time <= window.upper,
            model.recurrence_end_time > window.lower,
            model.recurrence_end_time > model.event_time,
            model.id > after_id,
        )
        if shard is not None:
            shard_index, shard_count = shard
            stmt = stmt.where(model.id % shard_count == shard_index)
        return stmt.order_by(model.id)

    def candidate_page(
        self,
        window: ExpansionWindow,
        after_id: int = 0,
        limit: int = 500,
        shard: tuple[int, int] | None = None,
    ) -> list[RecurringDefinition]:
        """Next ``limit`` candidates with id greater than ``after_id``.

        Args:
            shard: Optional ``(index, count)``; restricts to ids where
                ``id % count == index``.
        """
        stmt = self._candidates(window, after_id, shard).limit(limit)
        return [row.to_dto() for row in self.session.scalars(stmt)]

    def candidate_ids(
        self,
        window: ExpansionWindow,
        shard: tuple[int, int] | None = None,
    ) -> list[int]:
        """All candidate ids (ascending), optionally restricted to a shard."""
        stmt = self._candidates(window, 0, shard).with_only_columns(
            BillingRecurrenceModel.id
        )
        return list(self.session.scalars(stmt))

    def get(self, recurrence_id: int) -> RecurringDefinition | None:
        model = self.session.get(BillingRecurrenceModel, recurrence_id)
        return model.to_dto() if model is not None else None
