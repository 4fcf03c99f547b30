"""
External collaborators consumed by the expansion engine.

Contract:
    ``TargetConfiguration`` answers per-target configuration questions (which
    TLD, how long the autorenew grace period is).  ``PricingEngine`` prices a
    renewal at a given instant.  The engine depends only on these protocols;
    ``TldRegistry`` and ``TldPricingEngine`` are the configuration-backed
    implementations wired by the orchestrator.

Architecture:
    billing_batch/services.  Imports from billing_config.schema (frozen
    dataclasses only), billing_kernel.domain and billing_kernel.exceptions.

Failure modes:
    - TldNotConfiguredError: the target's TLD has no configuration.
    - PriceNotFoundError: no renew price is in force at the instant.
    Both are per-item errors: the driver counts them and moves on.
"""

from __future__ import annotations

import bisect
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Protocol, runtime_checkable

from billing_config.schema import TldDefinition
from billing_kernel.domain.values import Money
from billing_kernel.exceptions import PriceNotFoundError, TldNotConfiguredError


# =============================================================================
# Protocols
# =============================================================================


@runtime_checkable
class TargetConfiguration(Protocol):
    """Per-target configuration lookups."""

    def tld_for(self, target_id: str) -> str:
        ...

    def grace_period_length(self, target_id: str) -> timedelta:
        ...


@runtime_checkable
class PricingEngine(Protocol):
    """Prices renewals at materialization time, not at definition time."""

    def renew_cost(self, target_id: str, as_of: datetime, years: int) -> Money:
        ...


# =============================================================================
# Configuration-backed implementations
# =============================================================================


class TldRegistry:
    """Resolves targets to configured TLDs.

    The TLD of a domain name is the longest configured suffix, so with both
    ``example`` and ``co.example`` configured, ``foo.co.example`` belongs to
    ``co.example``.
    """

    def __init__(self, tlds: Iterable[TldDefinition]):
        self._tlds: dict[str, TldDefinition] = {t.tld: t for t in tlds}

    def definition_for(self, target_id: str) -> TldDefinition:
        labels = target_id.strip().rstrip(".").lower().split(".")
        # Never match the whole name: a target is always a label under its TLD.
        for start in range(1, len(labels)):
            definition = self._tlds.get(".".join(labels[start:]))
            if definition is not None:
                return definition
        raise TldNotConfiguredError(target_id)

    def tld_for(self, target_id: str) -> str:
        return self.definition_for(target_id).tld

    def grace_period_length(self, target_id: str) -> timedelta:
        return self.definition_for(target_id).auto_renew_grace_period


class TldPricingEngine:
    """Prices renewals from each TLD's renew cost transition schedule."""

    def __init__(self, registry: TldRegistry):
        self._registry = registry

    def renew_cost(self, target_id: str, as_of: datetime, years: int) -> Money:
        definition = self._registry.definition_for(target_id)
        transitions = definition.renew_cost_transitions
        starts = [t.effective_from for t in transitions]
        index = bisect.bisect_right(starts, as_of) - 1
        if index < 0:
            raise PriceNotFoundError(definition.tld, as_of)
        return (transitions[index].cost * years).round()
