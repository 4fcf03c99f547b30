"""
EventMaterializer -- turns owed billing instants into persisted records.

Contract:
    ``expand_recurrence()`` runs the whole per-recurrence pipeline:
    candidate billing times (pure) minus already-materialized billing times
    (lookup), then ``materialize()`` for each remaining instant.  Every
    execution strategy calls this same method; they differ only in how they
    scope transactions around it.

    ``materialize()`` builds one HistoryEntryModel (the audit record) and
    one BillingEventModel referencing it and the recurrence, and adds both
    to the session in a single flush.

Architecture: billing_batch/services.  Imports from billing_batch.domain,
    billing_batch.models, billing_batch.selectors and billing_kernel.

Non-goals:
    - Does NOT call ``session.commit()`` -- the caller owns the transaction
      or SAVEPOINT that makes the pair (and the recurrence's whole delta)
      atomic.
    - Does NOT catch errors -- per-item isolation belongs to the strategy.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from billing_batch.domain.billing_times import billing_times_owed, candidate_billing_times
from billing_batch.domain.types import (
    BillingFlag,
    ExpansionWindow,
    HistoryEntryType,
    MaterializationPlan,
    RecurringDefinition,
    TransactionReportField,
)
from billing_batch.models.billing import (
    AUTORENEW_HISTORY_REASON,
    BillingEventModel,
    HistoryEntryModel,
    TransactionRecordModel,
)
from billing_batch.selectors.billing_event_selector import BillingEventSelector
from billing_batch.services.collaborators import PricingEngine, TargetConfiguration
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.logging_config import get_logger

logger = get_logger("batch.materializer")

# Every synthetic renewal bills exactly one year.
RENEWAL_PERIOD_YEARS = 1


class EventMaterializer:
    """Writes (history entry, billing event) pairs for owed billing instants."""

    def __init__(
        self,
        target_config: TargetConfiguration,
        pricing: PricingEngine,
        actor_id: UUID,
        clock: Clock | None = None,
    ):
        self._target_config = target_config
        self._pricing = pricing
        self._actor_id = actor_id
        self._clock = clock or SystemClock()

    def plan(self, definition: RecurringDefinition, billing_time: datetime) -> MaterializationPlan:
        """Price and describe one billing instant without touching storage.

        The event time is the nominal anniversary, ``billing_time`` minus the
        grace period; the renewal is priced as of that instant.
        """
        tld = self._target_config.tld_for(definition.target_id)
        grace_period = self._target_config.grace_period_length(definition.target_id)
        event_time = billing_time - grace_period
        cost = self._pricing.renew_cost(
            definition.target_id, event_time, RENEWAL_PERIOD_YEARS,
        )
        return MaterializationPlan(
            recurrence_id=definition.recurrence_id,
            billing_time=billing_time,
            event_time=event_time,
            tld=tld,
            cost_amount=cost.amount,
            cost_currency=cost.currency.code,
            # No report if the target was removed during its grace period.
            include_transaction_record=not definition.recurrence_end_time < billing_time,
        )

    def materialize(
        self,
        session: Session,
        definition: RecurringDefinition,
        billing_time: datetime,
        execute_time: datetime,
        dry_run: bool = False,
    ) -> int:
        """Create the pair for one billing instant; returns the event count.

        In dry-run mode the pair is priced and built but never added to the
        session, so pricing and configuration errors still surface.
        """
        plan = self.plan(definition, billing_time)
        if dry_run:
            return 1

        history_entry = HistoryEntryModel(
            target_id=definition.target_id,
            target_repo_id=definition.target_repo_id,
            registrar_id=definition.registrar_id,
            history_type=HistoryEntryType.DOMAIN_AUTORENEW.value,
            modification_time=self._clock.now(),
            period_years=RENEWAL_PERIOD_YEARS,
            reason=AUTORENEW_HISTORY_REASON,
            by_superuser=False,
            requested_by_registrar=False,
            created_by_id=self._actor_id,
        )
        if plan.include_transaction_record:
            history_entry.transaction_records.append(
                TransactionRecordModel(
                    tld=plan.tld,
                    # Reported when the autorenew grace period ends.
                    report_time=billing_time,
                    report_field=TransactionReportField.net_renews_field_from_years(
                        RENEWAL_PERIOD_YEARS
                    ).value,
                    report_amount=1,
                    created_by_id=self._actor_id,
                )
            )

        flags = set(definition.flags) | {BillingFlag.SYNTHETIC}
        event = BillingEventModel(
            history_entry=history_entry,
            target_id=definition.target_id,
            target_repo_id=definition.target_repo_id,
            registrar_id=definition.registrar_id,
            reason=definition.reason.value,
            flags=sorted(f.value for f in flags),
            event_time=plan.event_time,
            billing_time=billing_time,
            cost_amount=plan.cost_amount,
            cost_currency=plan.cost_currency,
            period_years=RENEWAL_PERIOD_YEARS,
            synthetic_creation_time=execute_time,
            cancellation_matching_recurrence_id=definition.recurrence_id,
            created_by_id=self._actor_id,
        )
        session.add_all([history_entry, event])
        session.flush()

        logger.debug(
            "billing_event_materialized",
            extra={
                "recurrence_id": definition.recurrence_id,
                "target_id": definition.target_id,
                "billing_time": billing_time,
                "event_id": str(event.id),
                "transaction_record": plan.include_transaction_record,
            },
        )
        return 1

    def expand_recurrence(
        self,
        session: Session,
        definition: RecurringDefinition,
        window: ExpansionWindow,
        dry_run: bool = False,
    ) -> int:
        """Materialize every in-window billing instant not yet materialized.

        ``window.upper`` is the run's execution time.  Returns the number of
        events created (or that would be created, in a dry run).
        """
        grace_period = self._target_config.grace_period_length(definition.target_id)
        candidates = candidate_billing_times(definition, grace_period, window)
        if not candidates:
            return 0

        existing = BillingEventSelector(session).existing_billing_times(
            definition.recurrence_id
        )
        created = 0
        for billing_time in billing_times_owed(candidates, existing):
            created += self.materialize(
                session, definition, billing_time, window.upper, dry_run=dry_run,
            )
        return created
