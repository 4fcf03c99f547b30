"""
Tests for billing_config -- YAML loading, parsing and validation.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import yaml

from billing_config import get_active_config
from billing_config.loader import (
    compute_checksum,
    load_configuration,
    parse_configuration,
    parse_expansion,
    parse_instant,
    parse_tld,
)
from billing_kernel.domain.values import Money
from billing_kernel.exceptions import ConfigurationError

UTC = timezone.utc


def _tld(**overrides):
    data = {
        "tld": "example",
        "currency": "USD",
        "auto_renew_grace_period_days": 45,
        "renew_cost_transitions": [
            {"effective_from": "1970-01-01T00:00:00Z", "amount": "11.00"},
        ],
    }
    data.update(overrides)
    return data


class TestDefaultConfiguration:

    def test_packaged_default_loads(self):
        config = get_active_config()
        assert config.expansion.strategy == "paged"
        assert config.expansion.batch_size == 500
        assert {t.tld for t in config.tlds} == {"example", "test", "co.example"}
        assert config.checksum

    def test_load_logged(self, captured_logs):
        get_active_config()
        loaded = [r for r in captured_logs() if r["message"] == "billing_config_loaded"]
        assert loaded and loaded[0]["tld_count"] == 3

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "missing.yaml")

    def test_load_from_path(self, tmp_path):
        path = tmp_path / "billing.yaml"
        path.write_text(yaml.safe_dump({"expansion": {"strategy": "parallel"}, "tlds": [_tld()]}))
        config = load_configuration(path)
        assert config.expansion.strategy == "parallel"
        assert config.source == str(path)


class TestParseExpansion:

    def test_defaults(self):
        settings = parse_expansion(None)
        assert settings.batch_size == 500
        assert settings.worker_count == 4
        assert settings.transaction_retries == 3
        assert settings.noop_log_interval_seconds == 180.0

    def test_unknown_strategy(self):
        with pytest.raises(ConfigurationError) as exc_info:
            parse_expansion({"strategy": "turbo"})
        assert exc_info.value.section == "expansion"

    @pytest.mark.parametrize("value", [0, -1, "10", True])
    def test_batch_size_must_be_positive_int(self, value):
        with pytest.raises(ConfigurationError):
            parse_expansion({"batch_size": value})


class TestParseTld:

    def test_parses_schedule(self):
        tld = parse_tld(_tld(renew_cost_transitions=[
            {"effective_from": "1970-01-01T00:00:00Z", "amount": "11.00"},
            {"effective_from": "2024-01-01T00:00:00Z", "amount": 13},
        ]))
        assert tld.auto_renew_grace_period == timedelta(days=45)
        assert tld.renew_cost_transitions[1].effective_from == datetime(2024, 1, 1, tzinfo=UTC)
        assert tld.renew_cost_transitions[1].cost == Money.of("13", "USD")

    def test_name_lowercased(self):
        assert parse_tld(_tld(tld="EXAMPLE")).tld == "example"

    def test_grace_period_default(self):
        data = _tld()
        del data["auto_renew_grace_period_days"]
        assert parse_tld(data).auto_renew_grace_period == timedelta(days=45)

    @pytest.mark.parametrize("name", ["", ".example", "example."])
    def test_invalid_name(self, name):
        with pytest.raises(ConfigurationError):
            parse_tld(_tld(tld=name))

    def test_unknown_currency(self):
        with pytest.raises(ConfigurationError):
            parse_tld(_tld(currency="XXX"))

    def test_float_amount_rejected(self):
        with pytest.raises(ConfigurationError):
            parse_tld(_tld(renew_cost_transitions=[
                {"effective_from": "1970-01-01T00:00:00Z", "amount": 11.0},
            ]))

    def test_negative_amount_rejected(self):
        with pytest.raises(ConfigurationError):
            parse_tld(_tld(renew_cost_transitions=[
                {"effective_from": "1970-01-01T00:00:00Z", "amount": "-1"},
            ]))

    def test_transitions_must_increase(self):
        with pytest.raises(ConfigurationError):
            parse_tld(_tld(renew_cost_transitions=[
                {"effective_from": "2024-01-01T00:00:00Z", "amount": "13.00"},
                {"effective_from": "1970-01-01T00:00:00Z", "amount": "11.00"},
            ]))

    def test_missing_amount(self):
        with pytest.raises(ConfigurationError):
            parse_tld(_tld(renew_cost_transitions=[{"effective_from": "1970-01-01T00:00:00Z"}]))


class TestParseConfiguration:

    def test_duplicate_tlds_rejected(self):
        with pytest.raises(ConfigurationError):
            parse_configuration({"tlds": [_tld(), _tld(tld="Example")]})

    def test_lookup_by_name(self):
        config = parse_configuration({"tlds": [_tld()]})
        assert config.tld("example").currency == "USD"
        assert config.tld("missing") is None

    def test_checksum_deterministic(self):
        data = {"tlds": [_tld()]}
        assert compute_checksum(data) == compute_checksum({"tlds": [_tld()]})
        assert compute_checksum(data) != compute_checksum({"tlds": [_tld(currency="EUR")]})


class TestParseInstant:

    def test_z_suffix(self):
        assert parse_instant("2023-01-01T00:00:00Z", "s") == datetime(2023, 1, 1, tzinfo=UTC)

    def test_naive_taken_as_utc(self):
        assert parse_instant(datetime(2023, 1, 1), "s") == datetime(2023, 1, 1, tzinfo=UTC)

    def test_offset_normalized(self):
        assert parse_instant("2023-01-01T05:00:00+05:00", "s") == datetime(2023, 1, 1, tzinfo=UTC)

    def test_invalid(self):
        with pytest.raises(ConfigurationError):
            parse_instant("yesterday", "s")
