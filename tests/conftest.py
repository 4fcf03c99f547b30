"""
Pytest fixtures for the recurring billing expansion test suite.

Provides:
- A file-backed SQLite database per test (engine, session factory, session)
- A DeterministicClock fixed at 2023-01-10T00:00Z
- Configuration, collaborators and expander factories
- A recurrence factory that writes BillingRecurrenceModel rows
- JSON log capture

SQLite is file-backed rather than in-memory so that the parallel strategy's
worker threads, which each open their own connections, see the same data.
"""

import json
import logging
from dataclasses import replace
from datetime import datetime, timezone
from io import StringIO
from uuid import uuid4

import pytest
from sqlalchemy.orm import sessionmaker

from billing_batch.domain.time_of_year import TimeOfYear
from billing_batch.domain.types import (
    END_OF_TIME,
    BillingFlag,
    BillingReason,
    RecurringDefinition,
)
from billing_batch.models.billing import BillingRecurrenceModel
from billing_batch.services.collaborators import TldPricingEngine, TldRegistry
from billing_batch.services.expander import RecurringBillingExpander
from billing_batch.services.materializer import EventMaterializer
from billing_config.loader import parse_configuration
from billing_kernel.db.engine import build_engine, create_tables
from billing_kernel.db.immutability import register_immutability_listeners
from billing_kernel.domain.clock import DeterministicClock
from billing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()

UTC = timezone.utc

# Default "now" for expansion runs in tests.
RUN_TIME = datetime(2023, 1, 10, tzinfo=UTC)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture billing_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, expander):
            expander.run()
            logs = captured_logs()
            assert any(r["message"] == "expansion_run_started" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("billing_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


@pytest.fixture(autouse=True, scope="session")
def _immutability_listeners():
    register_immutability_listeners()
    yield


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'billing.db'}")
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.rollback()
        s.close()


@pytest.fixture
def clock():
    return DeterministicClock(RUN_TIME)


@pytest.fixture
def actor_id():
    return TEST_ACTOR_ID


# =============================================================================
# Configuration and collaborators
# =============================================================================


TEST_CONFIG_DATA = {
    "expansion": {
        "batch_size": 2,
        "strategy": "paged",
        "worker_count": 3,
        "transaction_retries": 2,
        "noop_log_interval_seconds": 0,
    },
    "tlds": [
        {
            "tld": "example",
            "currency": "USD",
            "auto_renew_grace_period_days": 5,
            "renew_cost_transitions": [
                {"effective_from": "1970-01-01T00:00:00Z", "amount": "11.00"},
                {"effective_from": "2024-01-01T00:00:00Z", "amount": "13.00"},
            ],
        },
        {
            "tld": "test",
            "currency": "USD",
            "auto_renew_grace_period_days": 45,
            "renew_cost_transitions": [
                {"effective_from": "1970-01-01T00:00:00Z", "amount": "8.00"},
            ],
        },
        {
            "tld": "co.example",
            "currency": "EUR",
            "auto_renew_grace_period_days": 30,
            "renew_cost_transitions": [
                {"effective_from": "1970-01-01T00:00:00Z", "amount": "9.50"},
            ],
        },
    ],
}


@pytest.fixture
def billing_config():
    return parse_configuration(TEST_CONFIG_DATA, source="tests")


@pytest.fixture
def tld_registry(billing_config):
    return TldRegistry(billing_config.tlds)


@pytest.fixture
def pricing(tld_registry):
    return TldPricingEngine(tld_registry)


@pytest.fixture
def materializer(tld_registry, pricing, clock):
    return EventMaterializer(tld_registry, pricing, actor_id=TEST_ACTOR_ID, clock=clock)


@pytest.fixture
def make_expander(session_factory, tld_registry, pricing, clock, billing_config):
    """Factory for a RecurringBillingExpander; keyword overrides go to settings."""

    def _make(target_config=None, pricing_engine=None, **settings_overrides) -> RecurringBillingExpander:
        settings = billing_config.expansion
        if settings_overrides:
            settings = replace(settings, **settings_overrides)
        return RecurringBillingExpander(
            session_factory=session_factory,
            target_config=target_config or tld_registry,
            pricing=pricing_engine or pricing,
            settings=settings,
            clock=clock,
            retry_backoff_seconds=0,
        )

    return _make


@pytest.fixture
def expander(make_expander):
    return make_expander()


# =============================================================================
# Data factories
# =============================================================================


@pytest.fixture
def make_recurrence(session_factory):
    """Insert a recurring definition and return its snapshot (with id)."""

    def _make(
        target_id: str = "foo.example",
        event_time: datetime = datetime(2020, 1, 1, tzinfo=UTC),
        recurrence_end_time: datetime = END_OF_TIME,
        flags: frozenset = frozenset({BillingFlag.AUTO_RENEW}),
        time_of_year: str | None = None,
        registrar_id: str = "TheRegistrar",
    ) -> RecurringDefinition:
        definition = RecurringDefinition(
            recurrence_id=0,
            target_id=target_id,
            target_repo_id=f"{uuid4().hex[:8].upper()}-EXAMPLE",
            registrar_id=registrar_id,
            reason=BillingReason.RENEW,
            event_time=event_time,
            recurrence_time_of_year=time_of_year or TimeOfYear.from_instant(event_time).serialize(),
            recurrence_end_time=recurrence_end_time,
            flags=flags,
        )
        with session_factory() as s:
            model = BillingRecurrenceModel.from_dto(definition, created_by_id=TEST_ACTOR_ID)
            s.add(model)
            s.commit()
            return model.to_dto()

    return _make
