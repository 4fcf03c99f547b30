"""
Property-based tests for the pure expansion core.

Properties checked here:
- Annual instances: ascending, inside the range, one per year, restartable
- Billing times: always inside the half-open window, each one an
  anniversary plus the grace period
- Consecutive windows: candidates of adjacent windows partition the
  candidates of their union (no billing time is owed by two runs)
- Owed set: disjoint from what exists; owed again after saving is empty
- Money: rounding is idempotent and lands on the currency's minor unit

Storage-backed exactly-once behaviour is covered in
tests/services/test_expander.py.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from hypothesis import HealthCheck, assume, given, settings
from hypothesis import strategies as st
from hypothesis.strategies import composite

from billing_batch.domain.billing_times import (
    billing_times_owed,
    candidate_billing_times,
    to_billing_times,
)
from billing_batch.domain.time_of_year import TimeOfYear
from billing_batch.domain.types import (
    END_OF_TIME,
    BillingReason,
    ExpansionWindow,
    RecurringDefinition,
)
from billing_kernel.domain.values import Money

_SETTINGS = dict(
    max_examples=200,
    suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
)

_UTC = st.just(timezone.utc)


def _instants(min_year=1990, max_year=2060):
    return st.datetimes(
        min_value=datetime(min_year, 1, 1),
        max_value=datetime(max_year, 12, 31, 23, 59, 59),
        timezones=_UTC,
    )


@composite
def times_of_year(draw):
    month = draw(st.integers(min_value=1, max_value=12))
    # 2001 is not a leap year, so Feb tops out at 28.
    days_in_month = (datetime(2001 + month // 12, month % 12 + 1, 1) - datetime(2001, month, 1)).days
    return TimeOfYear(
        month=month,
        day=draw(st.integers(min_value=1, max_value=days_in_month)),
        hour=draw(st.integers(min_value=0, max_value=23)),
        minute=draw(st.integers(min_value=0, max_value=59)),
        second=draw(st.integers(min_value=0, max_value=59)),
        microsecond=draw(st.integers(min_value=0, max_value=999999)),
    )


@composite
def ordered_instants(draw, count):
    values = sorted(draw(st.lists(_instants(), min_size=count, max_size=count)))
    return tuple(values)


@composite
def definitions(draw):
    event_time = draw(_instants(max_year=2040))
    ended = draw(st.booleans())
    end_time = (
        event_time + timedelta(days=draw(st.integers(min_value=1, max_value=20 * 366)))
        if ended
        else END_OF_TIME
    )
    return RecurringDefinition(
        recurrence_id=draw(st.integers(min_value=1, max_value=10**9)),
        target_id="example.tld",
        target_repo_id="1-TLD",
        registrar_id="TheRegistrar",
        reason=BillingReason.RENEW,
        event_time=event_time,
        recurrence_time_of_year=TimeOfYear.from_instant(event_time).serialize(),
        recurrence_end_time=end_time,
    )


grace_periods = st.integers(min_value=0, max_value=60).map(lambda days: timedelta(days=days))


class TestAnnualInstances:
    """Enumeration of a rule's yearly instants."""

    @given(rule=times_of_year(), bounds=ordered_instants(2))
    @settings(**_SETTINGS)
    def test_ascending_in_range_one_per_year(self, rule, bounds):
        lower, upper = bounds
        instances = list(rule.instances_in_range(lower, upper))

        assert instances == sorted(instances)
        assert all(lower <= i < upper for i in instances)
        years = [i.year for i in instances]
        assert len(years) == len(set(years))
        assert all(
            (i.month, i.day, i.hour, i.minute, i.second, i.microsecond)
            == (rule.month, rule.day, rule.hour, rule.minute, rule.second, rule.microsecond)
            for i in instances
        )

    @given(rule=times_of_year(), bounds=ordered_instants(2))
    @settings(**_SETTINGS)
    def test_no_year_in_range_is_skipped(self, rule, bounds):
        lower, upper = bounds
        expected = [
            rule.in_year(year)
            for year in range(lower.year, upper.year + 1)
            if lower <= rule.in_year(year) < upper
        ]
        assert list(rule.instances_in_range(lower, upper)) == expected

    @given(rule=times_of_year(), bounds=ordered_instants(2))
    @settings(**_SETTINGS)
    def test_restartable(self, rule, bounds):
        lower, upper = bounds
        assert list(rule.instances_in_range(lower, upper)) == list(
            rule.instances_in_range(lower, upper)
        )

    @given(instant=_instants())
    @settings(**_SETTINGS)
    def test_rule_reproduces_its_own_event_time(self, instant):
        assume(not (instant.month == 2 and instant.day == 29))
        rule = TimeOfYear.from_instant(instant)
        assert rule.in_year(instant.year) == instant
        assert TimeOfYear.parse(rule.serialize()) == rule


class TestBillingTimes:
    """Mapping anniversaries into the scan window."""

    @given(
        anniversaries=st.lists(_instants(), max_size=30),
        grace=grace_periods,
        bounds=ordered_instants(2),
    )
    @settings(**_SETTINGS)
    def test_results_inside_half_open_window(self, anniversaries, grace, bounds):
        window = ExpansionWindow(*bounds)
        result = to_billing_times(anniversaries, grace, window)

        assert all(window.lower <= b < window.upper for b in result)
        assert result <= {a + grace for a in anniversaries}

    @given(definition=definitions(), grace=grace_periods, bounds=ordered_instants(2))
    @settings(**_SETTINGS)
    def test_candidates_are_due_anniversaries(self, definition, grace, bounds):
        window = ExpansionWindow(*bounds)
        rule = TimeOfYear.parse(definition.recurrence_time_of_year)

        for billing_time in candidate_billing_times(definition, grace, window):
            anniversary = billing_time - grace
            assert window.contains(billing_time)
            assert anniversary >= definition.event_time
            assert anniversary < definition.recurrence_end_time
            assert anniversary < window.upper
            assert anniversary == rule.in_year(anniversary.year)

    @given(definition=definitions(), grace=grace_periods, bounds=ordered_instants(3))
    @settings(**_SETTINGS)
    def test_adjacent_windows_partition_candidates(self, definition, grace, bounds):
        first, middle, last = bounds
        earlier = candidate_billing_times(definition, grace, ExpansionWindow(first, middle))
        later = candidate_billing_times(definition, grace, ExpansionWindow(middle, last))
        whole = candidate_billing_times(definition, grace, ExpansionWindow(first, last))

        assert not (earlier & later)
        assert earlier | later == whole

    @given(definition=definitions(), grace=grace_periods, bounds=ordered_instants(2))
    @settings(**_SETTINGS)
    def test_deterministic(self, definition, grace, bounds):
        window = ExpansionWindow(*bounds)
        assert candidate_billing_times(definition, grace, window) == candidate_billing_times(
            definition, grace, window
        )


class TestOwed:
    """Subtraction of already-materialized billing times."""

    @given(
        candidates=st.frozensets(_instants(), max_size=20),
        existing=st.frozensets(_instants(), max_size=20),
    )
    @settings(**_SETTINGS)
    def test_owed_disjoint_from_existing(self, candidates, existing):
        owed = billing_times_owed(candidates, existing)

        assert owed == sorted(owed)
        assert set(owed) <= candidates
        assert not (set(owed) & existing)
        assert set(owed) | (candidates & existing) == candidates

    @given(
        candidates=st.frozensets(_instants(), max_size=20),
        existing=st.frozensets(_instants(), max_size=20),
    )
    @settings(**_SETTINGS)
    def test_nothing_owed_after_saving(self, candidates, existing):
        owed = billing_times_owed(candidates, existing)
        assert billing_times_owed(candidates, existing | set(owed)) == []


class TestMoneyRounding:

    @given(
        amount=st.decimals(
            min_value=Decimal("-1000000"),
            max_value=Decimal("1000000"),
            allow_nan=False,
            allow_infinity=False,
            places=6,
        ),
        currency=st.sampled_from(["USD", "JPY", "KWD"]),
        years=st.integers(min_value=1, max_value=10),
    )
    @settings(**_SETTINGS)
    def test_rounding_idempotent_on_minor_unit(self, amount, currency, years):
        rounded = (Money.of(amount, currency) * years).round()

        assert rounded.round() == rounded
        assert rounded.amount == rounded.amount.quantize(rounded.currency.quantum)
        assert abs(rounded.amount - amount * years) <= rounded.currency.quantum / 2
