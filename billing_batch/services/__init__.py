"""Expansion services: collaborators, materializer, checkpoint, strategies, driver."""

from billing_batch.services.checkpoint import CheckpointStore
from billing_batch.services.collaborators import (
    PricingEngine,
    TargetConfiguration,
    TldPricingEngine,
    TldRegistry,
)
from billing_batch.services.expander import SYSTEM_ACTOR_ID, RecurringBillingExpander
from billing_batch.services.materializer import RENEWAL_PERIOD_YEARS, EventMaterializer
from billing_batch.services.strategies import (
    STRATEGIES,
    ExpansionContext,
    ExpansionStrategy,
    PagedExpansionStrategy,
    ParallelExpansionStrategy,
    create_strategy,
    resolve_strategy_kind,
)

__all__ = [
    "CheckpointStore",
    "EventMaterializer",
    "ExpansionContext",
    "ExpansionStrategy",
    "PagedExpansionStrategy",
    "ParallelExpansionStrategy",
    "PricingEngine",
    "RENEWAL_PERIOD_YEARS",
    "RecurringBillingExpander",
    "STRATEGIES",
    "SYSTEM_ACTOR_ID",
    "TargetConfiguration",
    "TldPricingEngine",
    "TldRegistry",
    "create_strategy",
    "resolve_strategy_kind",
]
