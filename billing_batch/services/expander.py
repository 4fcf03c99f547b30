"""
RecurringBillingExpander -- the batch driver for recurring billing expansion.

Contract:
    ``run()`` expands every recurrence's anniversaries that came due in
    ``[cursor, now)`` into one-time billing events, exactly once each, and
    then advances the global cursor to ``now`` under a compare-and-advance
    guard.  Safe to interrupt at any point and simply run again: the
    existing-materialization lookup makes every unit idempotent, and the
    cursor only moves after a fully clean run.

State machine::

    INIT -> SCANNING -> MATERIALIZING -> FINALIZING -> DONE
      \\__________\\______________\\_____________\\-> ABORTED (hard error)

    INIT           execute_time = clock.now(); cursor = override or stored;
                   reject cursor >= execute_time.
    SCANNING /
    MATERIALIZING  delegated to the execution strategy (paged or parallel),
                   which interleaves candidate scanning with expansion.
    FINALIZING     errors or cancellation -> leave cursor untouched;
                   otherwise guarded advance (read-only check in dry runs).

Architecture: billing_batch/services.  Imports from billing_batch.domain,
    billing_batch.models, billing_batch.services and billing_kernel.

Failure modes:
    - InvalidCursorTimeError: precondition, raised from INIT, nothing done.
    - UnknownStrategyError: precondition, raised from INIT, nothing done.
    - InvalidRunParameterError: precondition (non-positive batch size or
      worker count), raised from INIT, nothing done.
    - CursorConflictError: the cursor moved during the run; raised after
      the run log is written.  Committed events stay valid.
    - OperationalError: storage retries exhausted; run ABORTED.
"""

from __future__ import annotations

import threading
import time
from datetime import datetime
from typing import Callable
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from billing_batch.domain.types import (
    CheckpointAdvanceOutcome,
    CursorType,
    ExpansionParameters,
    ExpansionRunStatus,
    ExpansionState,
    ExpansionSummary,
    ExpansionWindow,
    StrategyResult,
)
from billing_batch.models.run import ExpansionRunModel
from billing_batch.services.checkpoint import CheckpointStore
from billing_batch.services.collaborators import PricingEngine, TargetConfiguration
from billing_batch.services.materializer import EventMaterializer
from billing_batch.services.strategies import (
    ExpansionContext,
    create_strategy,
    resolve_strategy_kind,
)
from billing_config.schema import ExpansionSettings
from billing_kernel.db.engine import run_in_transaction
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.exceptions import (
    CursorConflictError,
    InvalidCursorTimeError,
    InvalidRunParameterError,
)
from billing_kernel.logging_config import LogContext, get_logger

logger = get_logger("batch.expander")

# Actor recorded on rows written by unattended runs.
SYSTEM_ACTOR_ID = UUID(int=0)


class RecurringBillingExpander:
    """Batch driver: window, strategy, finalize.

    Contract:
        - ``run()`` executes one run and returns its ``ExpansionSummary``.
        - ``request_cancel()`` asks a running ``run()`` (from another thread
          or from a collaborator) to stop scheduling further work.
        - ``state`` exposes the current state machine position.

    Non-goals:
        - One instance drives one run at a time.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        target_config: TargetConfiguration,
        pricing: PricingEngine,
        settings: ExpansionSettings | None = None,
        clock: Clock | None = None,
        cursor_type: CursorType = CursorType.RECURRING_BILLING,
        retry_backoff_seconds: float = 0.5,
    ):
        self._session_factory = session_factory
        self._target_config = target_config
        self._pricing = pricing
        self._settings = settings or ExpansionSettings()
        self._clock = clock or SystemClock()
        self._cursor_type = cursor_type
        self._retry_backoff_seconds = retry_backoff_seconds
        self._stop_event = threading.Event()
        self._state = ExpansionState.INIT

    @property
    def state(self) -> ExpansionState:
        return self._state

    def request_cancel(self) -> None:
        """Stop scheduling further pages / items; the cursor stays put."""
        logger.info("expansion_cancel_requested")
        self._stop_event.set()

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run(self, params: ExpansionParameters | None = None) -> ExpansionSummary:
        params = params or ExpansionParameters()
        run_id = uuid4()
        actor_id = params.actor_id or SYSTEM_ACTOR_ID
        correlation_id = params.correlation_id or str(run_id)

        with LogContext.bind(run_id=run_id, correlation_id=correlation_id, actor_id=actor_id):
            try:
                return self._run(params, run_id, actor_id, correlation_id)
            finally:
                self._stop_event.clear()

    def _run(
        self,
        params: ExpansionParameters,
        run_id: UUID,
        actor_id: UUID,
        correlation_id: str,
    ) -> ExpansionSummary:
        self._transition(ExpansionState.INIT)
        start_time = time.monotonic()
        execute_time = self._clock.now()

        try:
            kind = resolve_strategy_kind(params.strategy or self._settings.strategy)
            strategy = create_strategy(
                kind,
                batch_size=self._run_limit("batch_size", params.batch_size, self._settings.batch_size),
                worker_count=self._run_limit(
                    "worker_count", params.worker_count, self._settings.worker_count,
                ),
            )
            persisted_cursor = self._in_transaction(
                lambda session: CheckpointStore(session, self._cursor_type).read(),
                unit="cursor_read",
            )
            cursor_time = self._validate_cursor(params.cursor_override, persisted_cursor, execute_time)
        except Exception:
            self._transition(ExpansionState.ABORTED)
            raise

        window = ExpansionWindow(lower=cursor_time, upper=execute_time)
        logger.info(
            "expansion_run_started",
            extra={
                "window_start": window.lower,
                "window_end": window.upper,
                "persisted_cursor": persisted_cursor,
                "cursor_overridden": params.cursor_override is not None,
                "dry_run": params.dry_run,
                "strategy": kind.value,
            },
        )

        context = ExpansionContext(
            session_factory=self._session_factory,
            materializer=EventMaterializer(
                self._target_config, self._pricing, actor_id=actor_id, clock=self._clock,
            ),
            window=window,
            dry_run=params.dry_run,
            stop_event=self._stop_event,
            transaction_retries=self._settings.transaction_retries,
            retry_backoff_seconds=self._retry_backoff_seconds,
            noop_log_interval_seconds=self._settings.noop_log_interval_seconds,
        )

        self._transition(ExpansionState.SCANNING)
        self._transition(ExpansionState.MATERIALIZING)
        try:
            result = strategy.run(context)
        except Exception:
            self._transition(ExpansionState.ABORTED)
            logger.exception(
                "expansion_run_aborted",
                extra={"window_start": window.lower, "window_end": window.upper},
            )
            raise

        self._transition(ExpansionState.FINALIZING)
        self._log_totals(result, params.dry_run, window)

        def summarize(status: ExpansionRunStatus, cursor_after: datetime, advanced: bool) -> ExpansionSummary:
            return ExpansionSummary(
                run_id=run_id,
                status=status,
                strategy=kind,
                dry_run=params.dry_run,
                window=window,
                recurrences_processed=result.recurrences_processed,
                events_saved=result.events_saved,
                error_count=result.error_count,
                error_counts=dict(result.error_counts),
                checkpoint_before=persisted_cursor,
                checkpoint_after=cursor_after,
                checkpoint_advanced=advanced,
                started_at=execute_time,
                completed_at=self._clock.now(),
                duration_ms=int((time.monotonic() - start_time) * 1000),
                correlation_id=correlation_id,
            )

        try:
            summary = self._finalize(
                result, params.dry_run, persisted_cursor, execute_time, actor_id, summarize,
            )
        except Exception:
            self._transition(ExpansionState.ABORTED)
            raise

        logger.info("expansion_run_completed", extra=summary.to_dict())

        if summary.status is ExpansionRunStatus.CURSOR_CONFLICT:
            self._transition(ExpansionState.ABORTED)
            raise CursorConflictError(
                self._cursor_type.value,
                expected_time=persisted_cursor,
                current_time=summary.checkpoint_after,
                summary=summary,
            )

        self._transition(ExpansionState.DONE)
        return summary

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    @staticmethod
    def _run_limit(name: str, requested: int | None, configured: int) -> int:
        """Precondition: a per-run override, when given, is a positive int."""
        if requested is None:
            return configured
        if isinstance(requested, bool) or not isinstance(requested, int) or requested <= 0:
            raise InvalidRunParameterError(name, requested)
        return requested

    def _validate_cursor(
        self,
        cursor_override: datetime | None,
        persisted_cursor: datetime,
        execute_time: datetime,
    ) -> datetime:
        """Precondition: the scan window must be non-empty and the eventual
        advance must not move the stored cursor backwards."""
        if cursor_override is not None and cursor_override.tzinfo is None:
            raise InvalidCursorTimeError(cursor_override, execute_time)
        cursor_time = cursor_override if cursor_override is not None else persisted_cursor
        if cursor_time >= execute_time or persisted_cursor > execute_time:
            raise InvalidCursorTimeError(cursor_time, execute_time)
        return cursor_time

    def _finalize(
        self,
        result: StrategyResult,
        dry_run: bool,
        persisted_cursor: datetime,
        execute_time: datetime,
        actor_id: UUID,
        summarize: Callable[[ExpansionRunStatus, datetime, bool], ExpansionSummary],
    ) -> ExpansionSummary:
        if result.cancelled or result.error_count:
            if result.cancelled:
                status = ExpansionRunStatus.CANCELLED
            else:
                status = ExpansionRunStatus.COMPLETED_WITH_ERRORS
                logger.error(
                    "expansion_errors_cursor_not_advanced",
                    extra={
                        "error_count": result.error_count,
                        "error_counts": dict(result.error_counts),
                    },
                )
            summary = summarize(status, persisted_cursor, False)
            if not dry_run:
                self._in_transaction(
                    lambda session: self._record_run(session, summary, actor_id),
                    unit="expansion_run_log",
                )
            return summary

        if dry_run:
            # Consistency check only; nothing is written.
            current = self._in_transaction(
                lambda session: CheckpointStore(session, self._cursor_type).read(),
                unit="cursor_check",
            )
            if current != persisted_cursor:
                logger.warning(
                    "cursor_conflict",
                    extra={"expected_time": persisted_cursor, "current_time": current},
                )
                return summarize(ExpansionRunStatus.CURSOR_CONFLICT, current, False)
            return summarize(ExpansionRunStatus.COMPLETED, persisted_cursor, False)

        def advance(session: Session) -> ExpansionSummary:
            store = CheckpointStore(session, self._cursor_type)
            outcome = store.guarded_advance(persisted_cursor, execute_time, actor_id)
            if outcome is CheckpointAdvanceOutcome.ADVANCED:
                summary = summarize(ExpansionRunStatus.COMPLETED, execute_time, True)
            else:
                summary = summarize(ExpansionRunStatus.CURSOR_CONFLICT, store.read(), False)
            self._record_run(session, summary, actor_id)
            return summary

        return self._in_transaction(advance, unit="cursor_advance")

    @staticmethod
    def _record_run(session: Session, summary: ExpansionSummary, actor_id: UUID) -> ExpansionSummary:
        session.add(ExpansionRunModel.from_dto(summary, created_by_id=actor_id))
        session.flush()
        return summary

    def _in_transaction(self, work, unit: str):
        return run_in_transaction(
            self._session_factory,
            work,
            attempts=self._settings.transaction_retries,
            backoff_seconds=self._retry_backoff_seconds,
            unit=unit,
        )

    def _log_totals(self, result: StrategyResult, dry_run: bool, window: ExpansionWindow) -> None:
        if dry_run:
            logger.info(
                "expansion_events_generated_dry_run",
                extra={"total_events": result.events_saved},
            )
        else:
            logger.info(
                "expansion_events_saved",
                extra={"total_events": result.events_saved},
            )
        logger.info(
            "expansion_range_complete",
            extra={
                "window_start": window.lower,
                "window_end": window.upper,
                "dry_run": dry_run,
                "recurrences_processed": result.recurrences_processed,
            },
        )

    def _transition(self, new_state: ExpansionState) -> None:
        previous, self._state = self._state, new_state
        logger.debug(
            "expansion_state_changed",
            extra={"from_state": previous.value, "to_state": new_state.value},
        )
