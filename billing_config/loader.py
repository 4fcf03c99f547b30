"""
Configuration Loader (``billing_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the typed
``billing_config.schema`` dataclasses.  The single public entry point for
runtime config is ``billing_config.get_active_config()``; tests may call
``parse_configuration`` directly with an in-memory dict.

Invariants enforced
-------------------
* Every structural problem raises ``ConfigurationError`` naming the
  offending section; no silent defaults for required fields.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity (logged with every load).

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid content  -> ``ConfigurationError``.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from billing_config.schema import (
    STRATEGY_NAMES,
    BillingConfiguration,
    ExpansionSettings,
    RenewCostTransition,
    TldDefinition,
)
from billing_kernel.domain.currency import CurrencyRegistry
from billing_kernel.domain.values import Money
from billing_kernel.exceptions import ConfigurationError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_instant(value: Any, section: str) -> datetime:
    """
    Parse a UTC instant from YAML (ISO string or YAML timestamp).

    Naive values are taken to be UTC; PyYAML yields naive datetimes for
    unquoted timestamps without an offset.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as e:
            raise ConfigurationError(section, f"invalid instant {value!r}") from e
    else:
        raise ConfigurationError(section, f"cannot parse instant from {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _positive_int(data: dict[str, Any], key: str, default: int, section: str) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigurationError(section, f"'{key}' must be a positive integer, got {value!r}")
    return value


def parse_expansion(data: dict[str, Any] | None) -> ExpansionSettings:
    """Parse the ``expansion`` section (all keys optional)."""
    data = data or {}
    defaults = ExpansionSettings()
    section = "expansion"

    strategy = data.get("strategy", defaults.strategy)
    if strategy not in STRATEGY_NAMES:
        raise ConfigurationError(
            section, f"'strategy' must be one of {list(STRATEGY_NAMES)}, got {strategy!r}"
        )

    interval = data.get("noop_log_interval_seconds", defaults.noop_log_interval_seconds)
    if isinstance(interval, bool) or not isinstance(interval, (int, float)) or interval < 0:
        raise ConfigurationError(
            section, f"'noop_log_interval_seconds' must be >= 0, got {interval!r}"
        )

    return ExpansionSettings(
        batch_size=_positive_int(data, "batch_size", defaults.batch_size, section),
        strategy=strategy,
        worker_count=_positive_int(data, "worker_count", defaults.worker_count, section),
        transaction_retries=_positive_int(
            data, "transaction_retries", defaults.transaction_retries, section
        ),
        noop_log_interval_seconds=float(interval),
    )


def parse_transition(data: dict[str, Any], currency: str, section: str) -> RenewCostTransition:
    """Parse one renew price transition; amounts must be given as strings or ints."""
    try:
        raw_amount = data["amount"]
        effective_from = data["effective_from"]
    except KeyError as e:
        raise ConfigurationError(section, f"missing required key {e.args[0]!r}") from e

    if isinstance(raw_amount, float):
        raise ConfigurationError(section, f"amount must be quoted, got float {raw_amount!r}")
    try:
        amount = Decimal(str(raw_amount))
    except InvalidOperation as e:
        raise ConfigurationError(section, f"invalid amount {raw_amount!r}") from e
    if amount < 0:
        raise ConfigurationError(section, f"amount must not be negative, got {amount}")

    return RenewCostTransition(
        effective_from=parse_instant(effective_from, section),
        cost=Money.of(amount, currency),
    )


def parse_tld(data: dict[str, Any]) -> TldDefinition:
    """Parse one entry of the ``tlds`` list."""
    name = str(data.get("tld", "")).strip().lower()
    section = f"tlds[{name or '?'}]"
    if not name or name.startswith(".") or name.endswith("."):
        raise ConfigurationError(section, f"invalid tld name {data.get('tld')!r}")

    currency = data.get("currency")
    if not CurrencyRegistry.is_valid(currency):
        raise ConfigurationError(section, f"unsupported currency {currency!r}")
    currency = CurrencyRegistry.validate(currency)

    grace_days = data.get("auto_renew_grace_period_days", 45)
    if isinstance(grace_days, bool) or not isinstance(grace_days, int) or grace_days < 0:
        raise ConfigurationError(
            section, f"'auto_renew_grace_period_days' must be >= 0, got {grace_days!r}"
        )

    transitions = tuple(
        parse_transition(t, currency, section)
        for t in data.get("renew_cost_transitions", [])
    )
    for earlier, later in zip(transitions, transitions[1:]):
        if later.effective_from <= earlier.effective_from:
            raise ConfigurationError(
                section, "renew_cost_transitions must be strictly increasing in effective_from"
            )

    return TldDefinition(
        tld=name,
        currency=currency,
        auto_renew_grace_period=timedelta(days=grace_days),
        renew_cost_transitions=transitions,
    )


def parse_configuration(data: dict[str, Any], source: str | None = None) -> BillingConfiguration:
    """Parse a whole configuration document."""
    tlds = tuple(parse_tld(t) for t in data.get("tlds", []))
    names = [t.tld for t in tlds]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ConfigurationError("tlds", f"duplicate tld entries: {duplicates}")

    return BillingConfiguration(
        expansion=parse_expansion(data.get("expansion")),
        tlds=tlds,
        source=source,
        checksum=compute_checksum(data),
    )


def load_configuration(path: Path) -> BillingConfiguration:
    """Load and parse a configuration file."""
    return parse_configuration(load_yaml_file(path), source=str(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
