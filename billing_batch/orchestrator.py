"""
ExpansionOrchestrator -- DI container for recurring billing expansion.

Contract:
    Wires configuration, clock and the configuration-backed collaborators
    (TLD registry and pricing engine) into a RecurringBillingExpander.
    Single place where all expansion dependencies are composed.

Architecture: billing_batch (top-level).  This is the canonical entry point
    for configuring and running expansion jobs; the CLI and any task queue
    integration go through it.

Invariants enforced:
    - Clock injection: the driver, materializer and run log all read the
      same Clock.
    - Collaborators are injected; nothing below the orchestrator reads
      configuration files.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session

from billing_batch.services.collaborators import (
    PricingEngine,
    TargetConfiguration,
    TldPricingEngine,
    TldRegistry,
)
from billing_batch.services.expander import SYSTEM_ACTOR_ID, RecurringBillingExpander
from billing_batch.services.strategies import ExpansionStrategy, create_strategy
from billing_config import BillingConfiguration, get_active_config
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.logging_config import get_logger

logger = get_logger("batch.orchestrator")


class ExpansionOrchestrator:
    """DI container for the expansion job.

    Contract:
        - ``from_config()`` factory creates a fully wired orchestrator.
        - ``create_expander()`` returns a RecurringBillingExpander.
        - ``create_strategy()`` returns the configured execution strategy.

    Non-goals:
        - Does NOT run anything by itself -- caller decides.
        - Does NOT own the engine -- the session factory is injected.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        config: BillingConfiguration,
        clock: Clock | None = None,
        target_config: TargetConfiguration | None = None,
        pricing: PricingEngine | None = None,
        actor_id: UUID | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config = config
        self._clock = clock or SystemClock()
        registry = TldRegistry(config.tlds)
        self._target_config = target_config or registry
        self._pricing = pricing or TldPricingEngine(registry)
        self._actor_id = actor_id or SYSTEM_ACTOR_ID

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_config(
        cls,
        session_factory: Callable[[], Session],
        config_path: Path | str | None = None,
        clock: Clock | None = None,
        actor_id: UUID | None = None,
    ) -> ExpansionOrchestrator:
        """Create a fully wired orchestrator from a configuration file.

        Args:
            session_factory: Callable returning new sessions; every
                transactional unit opens its own.
            config_path: Optional YAML path; defaults to the packaged set.
            clock: Optional clock for deterministic testing.
            actor_id: Optional actor UUID for audit attribution.
        """
        config = get_active_config(config_path)
        logger.info(
            "expansion_orchestrator_created",
            extra={"config_source": config.source, "checksum": config.checksum},
        )
        return cls(
            session_factory=session_factory,
            config=config,
            clock=clock,
            actor_id=actor_id,
        )

    # -------------------------------------------------------------------------
    # Wiring
    # -------------------------------------------------------------------------

    def create_expander(self) -> RecurringBillingExpander:
        return RecurringBillingExpander(
            session_factory=self._session_factory,
            target_config=self._target_config,
            pricing=self._pricing,
            settings=self._config.expansion,
            clock=self._clock,
        )

    def create_strategy(self) -> ExpansionStrategy:
        settings = self._config.expansion
        return create_strategy(
            settings.strategy,
            batch_size=settings.batch_size,
            worker_count=settings.worker_count,
        )

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def config(self) -> BillingConfiguration:
        return self._config

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def actor_id(self) -> UUID:
        return self._actor_id
