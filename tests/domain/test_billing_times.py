"""
Tests for billing_batch.domain.billing_times -- the Billing Time Mapper.

Pure, no database.
"""

from datetime import datetime, timedelta, timezone

import pytest

from billing_batch.domain.billing_times import (
    anniversary_range,
    billing_times_owed,
    candidate_billing_times,
    to_billing_times,
)
from billing_batch.domain.types import (
    END_OF_TIME,
    BillingReason,
    ExpansionWindow,
    RecurringDefinition,
)
from billing_kernel.exceptions import MalformedRecurrenceError

UTC = timezone.utc
GRACE = timedelta(days=5)


def _at(year, month=1, day=1):
    return datetime(year, month, day, tzinfo=UTC)


def _definition(event_time=_at(2020), end=END_OF_TIME, rule="01 01 00:00:00.000000"):
    return RecurringDefinition(
        recurrence_id=1,
        target_id="foo.example",
        target_repo_id="1-EXAMPLE",
        registrar_id="TheRegistrar",
        reason=BillingReason.RENEW,
        event_time=event_time,
        recurrence_time_of_year=rule,
        recurrence_end_time=end,
    )


class TestToBillingTimes:

    def test_adds_grace_and_filters_window(self):
        window = ExpansionWindow(_at(2023), _at(2023, 1, 10))
        result = to_billing_times([_at(2022), _at(2023)], GRACE, window)
        assert result == {_at(2023, 1, 6)}

    def test_window_is_half_open(self):
        window = ExpansionWindow(_at(2023, 1, 6), _at(2024, 1, 6))
        result = to_billing_times([_at(2023), _at(2024)], GRACE, window)
        assert result == {_at(2023, 1, 6)}

    def test_empty_input(self):
        window = ExpansionWindow(_at(2023), _at(2024))
        assert to_billing_times([], GRACE, window) == frozenset()


class TestAnniversaryRange:

    def test_bounded_by_event_time_and_execution_time(self):
        window = ExpansionWindow(_at(2019), _at(2023, 1, 10))
        assert anniversary_range(_definition(), GRACE, window) == (_at(2020), _at(2023, 1, 10))

    def test_lower_narrowed_to_window_minus_grace(self):
        window = ExpansionWindow(_at(2023), _at(2023, 1, 10))
        lower, _ = anniversary_range(_definition(event_time=_at(2000)), GRACE, window)
        assert lower == _at(2022, 12, 27)

    def test_upper_bounded_by_recurrence_end(self):
        window = ExpansionWindow(_at(2023), _at(2023, 1, 10))
        _, upper = anniversary_range(_definition(end=_at(2023, 1, 3)), GRACE, window)
        assert upper == _at(2023, 1, 3)


class TestCandidateBillingTimes:

    def test_single_anniversary_in_window(self):
        window = ExpansionWindow(_at(2023), _at(2023, 1, 10))
        assert candidate_billing_times(_definition(), GRACE, window) == {_at(2023, 1, 6)}

    def test_every_missed_anniversary_from_start_of_time(self):
        window = ExpansionWindow(_at(1970), _at(2023, 1, 10))
        assert candidate_billing_times(_definition(), GRACE, window) == {
            _at(2020, 1, 6), _at(2021, 1, 6), _at(2022, 1, 6), _at(2023, 1, 6),
        }

    def test_anniversary_before_end_still_billed(self):
        """Ended during the grace period: the anniversary is still owed."""
        window = ExpansionWindow(_at(2023), _at(2023, 1, 10))
        result = candidate_billing_times(_definition(end=_at(2023, 1, 3)), GRACE, window)
        assert result == {_at(2023, 1, 6)}

    def test_ended_before_anniversary(self):
        window = ExpansionWindow(_at(2023), _at(2023, 1, 10))
        assert candidate_billing_times(_definition(end=_at(2022, 12, 31)), GRACE, window) == frozenset()

    def test_billing_time_not_yet_reached(self):
        window = ExpansionWindow(_at(2023), _at(2023, 1, 5))
        assert candidate_billing_times(_definition(), GRACE, window) == frozenset()

    def test_starts_after_window(self):
        window = ExpansionWindow(_at(2023), _at(2023, 1, 10))
        assert candidate_billing_times(_definition(event_time=_at(2024)), GRACE, window) == frozenset()

    def test_malformed_rule(self):
        window = ExpansionWindow(_at(2023), _at(2023, 1, 10))
        with pytest.raises(MalformedRecurrenceError):
            candidate_billing_times(_definition(rule="not a rule"), GRACE, window)


class TestBillingTimesOwed:

    def test_set_difference_sorted(self):
        candidates = {_at(2022, 1, 6), _at(2020, 1, 6), _at(2021, 1, 6)}
        existing = {_at(2021, 1, 6)}
        assert billing_times_owed(candidates, existing) == [_at(2020, 1, 6), _at(2022, 1, 6)]

    def test_everything_materialized(self):
        candidates = frozenset({_at(2022, 1, 6)})
        assert billing_times_owed(candidates, candidates) == []
