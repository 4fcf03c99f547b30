"""
billing_batch.domain.billing_times -- Billing Time Mapper.  ZERO I/O.

Pure functions shared by every execution strategy:

    anniversaries --(+ grace period)--> billing times --(window filter)-->
    candidates --(minus already materialized)--> owed

Nothing here touches storage or the clock, so a retried transaction can
recompute the same answer from the same inputs.
"""

from __future__ import annotations

from collections.abc import Iterable, Set
from datetime import datetime, timedelta

from billing_batch.domain.time_of_year import TimeOfYear
from billing_batch.domain.types import ExpansionWindow, RecurringDefinition


def to_billing_times(
    anniversaries: Iterable[datetime],
    grace_period: timedelta,
    window: ExpansionWindow,
) -> frozenset[datetime]:
    """Map each anniversary to ``anniversary + grace_period``, keeping only
    instants inside the half-open window."""
    billing_times = (a + grace_period for a in anniversaries)
    return frozenset(b for b in billing_times if window.contains(b))


def anniversary_range(
    definition: RecurringDefinition,
    grace_period: timedelta,
    window: ExpansionWindow,
) -> tuple[datetime, datetime]:
    """
    Bounds ``[lower, upper)`` within which anniversaries can matter.

    The upper bound is ``min(recurrence_end_time, window.upper)``: nothing
    recurs after the recurrence ended, and nothing past the execution time is
    due yet.  The lower bound skips anniversaries whose billing time would
    fall before the window anyway.
    """
    lower = max(definition.event_time, window.lower - grace_period)
    upper = min(definition.recurrence_end_time, window.upper)
    return lower, upper


def candidate_billing_times(
    definition: RecurringDefinition,
    grace_period: timedelta,
    window: ExpansionWindow,
) -> frozenset[datetime]:
    """All in-window billing times the definition's series produces.

    Raises:
        MalformedRecurrenceError: if the stored rule cannot be parsed.
    """
    rule = TimeOfYear.parse(definition.recurrence_time_of_year)
    lower, upper = anniversary_range(definition, grace_period, window)
    if lower >= upper:
        return frozenset()
    return to_billing_times(rule.instances_in_range(lower, upper), grace_period, window)


def billing_times_owed(
    candidates: Set[datetime],
    existing: Set[datetime],
) -> list[datetime]:
    """Candidates not yet materialized, in ascending order."""
    return sorted(candidates - existing)
