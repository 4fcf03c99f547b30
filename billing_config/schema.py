"""
Billing configuration schema.

Frozen dataclasses describing the human-authored YAML configuration for the
recurring billing expansion job: run tuning (page size, strategy, workers,
retries) and the per-TLD data the engine's collaborators need (currency,
autorenew grace period, renew price schedule).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from billing_kernel.domain.values import Money

# Execution strategy names recognized by the loader.  The engine maps these
# onto its strategy classes.
STRATEGY_NAMES: tuple[str, ...] = ("paged", "parallel")


# ---------------------------------------------------------------------------
# Expansion run tuning
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExpansionSettings:
    """Defaults for an expansion run; invocation parameters override per run."""

    batch_size: int = 500
    strategy: str = "paged"
    worker_count: int = 4
    transaction_retries: int = 3
    noop_log_interval_seconds: float = 180.0


# ---------------------------------------------------------------------------
# TLD definitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RenewCostTransition:
    """A renew price that takes effect at ``effective_from`` (inclusive)."""

    effective_from: datetime
    cost: Money


@dataclass(frozen=True)
class TldDefinition:
    """Everything the expansion engine needs to know about one TLD."""

    tld: str
    currency: str
    auto_renew_grace_period: timedelta
    # Ordered by effective_from, strictly increasing.
    renew_cost_transitions: tuple[RenewCostTransition, ...] = ()


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BillingConfiguration:
    """Root configuration artifact returned by ``get_active_config()``."""

    expansion: ExpansionSettings = field(default_factory=ExpansionSettings)
    tlds: tuple[TldDefinition, ...] = ()
    source: str | None = None
    checksum: str = ""

    def tld(self, name: str) -> TldDefinition | None:
        for definition in self.tlds:
            if definition.tld == name:
                return definition
        return None
