"""Tests for the structured logging system (billing_kernel/logging_config.py)."""

import contextvars
import json
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from billing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    """Parse the first JSON log line from a stream."""
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    """Tests for JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "billing_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info(
            "expansion_batch_saved", extra={"batch_events_saved": 3, "dry_run": False},
        )

        record = _parse_log(stream)
        assert record["batch_events_saved"] == 3
        assert record["dry_run"] is False

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(run_id="run-1", recurrence_id="42")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["run_id"] == "run-1"
        assert record["recurrence_id"] == "42"

    def test_extra_does_not_override_context(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        with LogContext.bind(target_id="bound.example"):
            get_logger("test").info("x", extra={"target_id": "other.example"})

        assert _parse_log(stream)["target_id"] == "bound.example"

    def test_billing_exception_fields_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        from billing_kernel.exceptions import TldNotConfiguredError

        try:
            raise TldNotConfiguredError("foo.invalid")
        except TldNotConfiguredError:
            get_logger("test").error("lookup_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "TLD_NOT_CONFIGURED"
        assert record["exc_type"] == "TldNotConfiguredError"
        assert record["exc_target_id"] == "foo.invalid"
        assert "traceback" in record

    def test_uuid_datetime_decimal_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        instant = datetime(2023, 1, 6, tzinfo=timezone.utc)
        get_logger("test").info(
            "typed", extra={"event_id": uid, "billing_time": instant, "cost": Decimal("11.00")},
        )

        record = _parse_log(stream)
        assert record["event_id"] == str(uid)
        assert record["billing_time"] == "2023-01-06T00:00:00+00:00"
        assert record["cost"] == "11.00"

    def test_billing_payload_types_serialized(self):
        from billing_batch.domain.types import BillingFlag, ExpansionRunStatus

        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info(
            "typed",
            extra={
                "grace_period": timedelta(days=5),
                "flags": frozenset({BillingFlag.SYNTHETIC, BillingFlag.AUTO_RENEW}),
                "status": ExpansionRunStatus.COMPLETED,
            },
        )

        record = _parse_log(stream)
        assert record["grace_period"] == 432000.0
        assert record["flags"] == sorted([BillingFlag.AUTO_RENEW.value, BillingFlag.SYNTHETIC.value])
        assert record["status"] == "completed"

    def test_unknown_types_fall_back_to_str(self):
        class Opaque:
            def __str__(self):
                return "opaque-value"

        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("typed", extra={"payload": Opaque(), "when": datetime(2023, 1, 6)})

        record = _parse_log(stream)
        assert record["payload"] == "opaque-value"
        assert record["when"] == "2023-01-06T00:00:00"

    def test_valid_json_every_line(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        # Default level is INFO.
        assert len(logs) == 2
        for record in logs:
            assert {"ts", "level", "logger", "message"} <= record.keys()


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_set_and_get(self):
        LogContext.set(correlation_id="x", run_id="y")
        assert LogContext.get_all() == {"correlation_id": "x", "run_id": "y"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_context_manager(self):
        LogContext.set(correlation_id="outer")
        with LogContext.bind(correlation_id="inner"):
            assert LogContext.get_all()["correlation_id"] == "inner"
        assert LogContext.get_all()["correlation_id"] == "outer"

    def test_bind_restores_none(self):
        assert "recurrence_id" not in LogContext.get_all()
        with LogContext.bind(recurrence_id="7"):
            assert LogContext.get_all()["recurrence_id"] == "7"
        assert "recurrence_id" not in LogContext.get_all()

    def test_bind_restores_on_exception(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(run_id="r"):
                raise RuntimeError("boom")
        assert "run_id" not in LogContext.get_all()

    def test_all_fields(self):
        LogContext.set(
            correlation_id="c",
            run_id="r",
            actor_id="a",
            recurrence_id="1",
            target_id="t.example",
            trace_id="tr",
        )
        ctx = LogContext.get_all()
        assert len(ctx) == 6
        assert ctx["target_id"] == "t.example"

    def test_ids_stored_as_strings(self):
        run_id = uuid4()
        with LogContext.bind(run_id=run_id, recurrence_id=42):
            assert LogContext.get_all() == {"run_id": str(run_id), "recurrence_id": "42"}

    def test_unknown_field_rejected(self):
        with pytest.raises(TypeError):
            LogContext.bind(event_id="x")
        with pytest.raises(TypeError):
            LogContext.set(entry_id="x")

    def test_nested_rebind_unwinds(self):
        with LogContext.bind(target_id="a.example"):
            with LogContext.bind(target_id="b.example"):
                assert LogContext.get_all()["target_id"] == "b.example"
            assert LogContext.get_all()["target_id"] == "a.example"

    def test_copied_context_carries_fields(self):
        """Worker threads run in a copy of the submitting context."""
        with LogContext.bind(run_id="run-9"):
            ctx = contextvars.copy_context()
        assert ctx.run(LogContext.get_all) == {"run_id": "run-9"}


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:

    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)
        handlers = logging.getLogger("billing_kernel").handlers
        assert h1 in handlers
        assert h2 not in handlers

    def test_level_by_name(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level="debug")
        get_logger("test").debug("debug_visible")
        assert _parse_log(stream)["message"] == "debug_visible"

    def test_get_logger_returns_child(self):
        assert get_logger("batch.expander").name == "billing_kernel.batch.expander"

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("deep.nested.module").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["message"] == "hierarchy_test"
        assert record["logger"] == "billing_kernel.deep.nested.module"
