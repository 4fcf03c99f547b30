"""
Execution strategies -- how candidate recurrences are scanned and in which
transactional units they are expanded.

Contract:
    Both strategies call the same ``EventMaterializer.expand_recurrence()``
    and return a ``StrategyResult``; the driver never needs to know which one
    ran.  Neither touches the checkpoint.

    PagedExpansionStrategy
        Keyset pages ordered by id (``id > max_processed_id LIMIT n``), one
        transaction per page, one SAVEPOINT per candidate.  A retried page
        restarts from the last committed ``max_processed_id``, never from 0.

    ParallelExpansionStrategy
        Candidates partitioned into ``worker_count`` shards by
        ``id % worker_count``.  Each shard runs on a thread-pool worker with
        its own sessions, one transaction per candidate.  ``run()`` returns
        only after every worker has finished (explicit join), so the
        driver's Finalizing step runs exactly once.

Failure semantics (both):
    - Per-item errors are rolled back (SAVEPOINT or item transaction),
      counted by exception class, logged, and the scan continues.
    - ``OperationalError`` is transient: the enclosing unit is retried by
      ``run_in_transaction()``; exhausting the retries propagates.
    - A set stop event stops scheduling further pages / items.
"""

from __future__ import annotations

import contextvars
import threading
import time
from abc import ABC, abstractmethod
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from billing_batch.domain.types import (
    ExpansionStrategyKind,
    ExpansionWindow,
    RecurringDefinition,
    StrategyResult,
)
from billing_batch.selectors.recurrence_selector import RecurrenceSelector
from billing_batch.services.materializer import EventMaterializer
from billing_kernel.db.engine import run_in_transaction
from billing_kernel.exceptions import UnknownStrategyError
from billing_kernel.logging_config import LogContext, get_logger

logger = get_logger("batch.strategies")


@dataclass(frozen=True)
class ExpansionContext:
    """Everything a strategy needs for one run."""

    session_factory: Callable[[], Session]
    materializer: EventMaterializer
    window: ExpansionWindow
    dry_run: bool
    stop_event: threading.Event = field(default_factory=threading.Event)
    transaction_retries: int = 3
    retry_backoff_seconds: float = 0.5
    noop_log_interval_seconds: float = 180.0


@dataclass
class _Tally:
    """Mutable per-unit counters, merged only once their unit committed."""

    processed: int = 0
    saved: int = 0
    errors: Counter = field(default_factory=Counter)
    max_id: int = 0
    # Set when the unit stopped before its work ran out.
    stopped: bool = False

    def merge(self, other: _Tally) -> None:
        self.processed += other.processed
        self.saved += other.saved
        self.errors.update(other.errors)
        self.max_id = max(self.max_id, other.max_id)
        self.stopped = self.stopped or other.stopped

    def to_result(self, cancelled: bool) -> StrategyResult:
        return StrategyResult(
            recurrences_processed=self.processed,
            events_saved=self.saved,
            error_count=sum(self.errors.values()),
            error_counts=dict(self.errors),
            cancelled=cancelled,
            max_processed_id=self.max_id,
        )


def _log_item_failure(definition_id: int, target_id: str | None, exc: Exception) -> None:
    logger.error(
        "recurrence_expansion_failed",
        extra={
            "recurrence_id": definition_id,
            "target_id": target_id,
            "error_type": type(exc).__name__,
            "error_code": getattr(exc, "code", None),
        },
        exc_info=exc,
    )


class ExpansionStrategy(ABC):
    """Interchangeable orchestration over the shared expansion core."""

    kind: ExpansionStrategyKind

    @abstractmethod
    def run(self, context: ExpansionContext) -> StrategyResult:
        ...


# =============================================================================
# Paged
# =============================================================================


class _ThrottledLog:
    """Emits at most once per ``interval`` seconds (monotonic)."""

    def __init__(self, interval: float):
        self._interval = interval
        self._last: float | None = None

    def should_emit(self) -> bool:
        now = time.monotonic()
        if self._last is None or now - self._last >= self._interval:
            self._last = now
            return True
        return False


class PagedExpansionStrategy(ExpansionStrategy):
    """Resumable keyset-paged scan, one transaction per page."""

    kind = ExpansionStrategyKind.PAGED

    def __init__(self, batch_size: int = 500):
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.batch_size = batch_size

    def run(self, context: ExpansionContext) -> StrategyResult:
        total = _Tally()
        noop_log = _ThrottledLog(context.noop_log_interval_seconds)
        cancelled = False

        while True:
            if context.stop_event.is_set():
                cancelled = True
                logger.info(
                    "expansion_cancelled",
                    extra={"max_processed_id": total.max_id},
                )
                break

            after_id = total.max_id
            page, page_size = run_in_transaction(
                context.session_factory,
                lambda session: self._process_page(session, context, after_id),
                attempts=context.transaction_retries,
                backoff_seconds=context.retry_backoff_seconds,
                unit="expansion_page",
            )
            total.merge(page)

            if page.saved > 0:
                logger.info(
                    "expansion_batch_saved",
                    extra={
                        "batch_events_saved": page.saved,
                        "total_events_saved": total.saved,
                        "max_processed_id": total.max_id,
                        "dry_run": context.dry_run,
                    },
                )
            elif noop_log.should_emit():
                logger.info(
                    "expansion_progress_noop",
                    extra={"max_processed_id": total.max_id},
                )

            if total.max_id <= after_id or page_size < self.batch_size:
                break

        return total.to_result(cancelled)

    def _process_page(
        self,
        session: Session,
        context: ExpansionContext,
        after_id: int,
    ) -> tuple[_Tally, int]:
        page = RecurrenceSelector(session).candidate_page(
            context.window, after_id=after_id, limit=self.batch_size,
        )
        tally = _Tally(max_id=after_id)
        for definition in page:
            tally.processed += 1
            tally.max_id = max(tally.max_id, definition.recurrence_id)
            savepoint = session.begin_nested()
            try:
                with LogContext.bind(
                    recurrence_id=definition.recurrence_id,
                    target_id=definition.target_id,
                ):
                    tally.saved += context.materializer.expand_recurrence(
                        session, definition, context.window, dry_run=context.dry_run,
                    )
                savepoint.commit()
            except OperationalError:
                raise
            except Exception as exc:
                savepoint.rollback()
                tally.errors[type(exc).__name__] += 1
                _log_item_failure(definition.recurrence_id, definition.target_id, exc)
        return tally, len(page)


# =============================================================================
# Parallel
# =============================================================================


class ParallelExpansionStrategy(ExpansionStrategy):
    """Sharded fan-out over a thread pool, one transaction per candidate."""

    kind = ExpansionStrategyKind.PARALLEL

    def __init__(self, worker_count: int = 4):
        if worker_count <= 0:
            raise ValueError(f"worker_count must be positive, got {worker_count}")
        self.worker_count = worker_count

    def run(self, context: ExpansionContext) -> StrategyResult:
        abort = threading.Event()
        total = _Tally()

        with ThreadPoolExecutor(
            max_workers=self.worker_count,
            thread_name_prefix="billing-expand",
        ) as pool:
            futures = [
                # Each worker inherits the caller's log context (run id etc.).
                pool.submit(
                    contextvars.copy_context().run,
                    self._run_shard, context, (shard, self.worker_count), abort,
                )
                for shard in range(self.worker_count)
            ]
            try:
                # Join: wait for every shard before anything is finalized.
                for future in futures:
                    total.merge(future.result())
            except BaseException:
                abort.set()
                raise

        # A cancel that lands after every shard ran dry leaves the run complete.
        cancelled = total.stopped
        if cancelled:
            logger.info("expansion_cancelled", extra={"max_processed_id": total.max_id})
        return total.to_result(cancelled)

    def _run_shard(
        self,
        context: ExpansionContext,
        shard: tuple[int, int],
        abort: threading.Event,
    ) -> _Tally:
        try:
            ids = run_in_transaction(
                context.session_factory,
                lambda session: RecurrenceSelector(session).candidate_ids(
                    context.window, shard=shard,
                ),
                attempts=context.transaction_retries,
                backoff_seconds=context.retry_backoff_seconds,
                unit="expansion_shard_scan",
            )
            tally = _Tally()
            for recurrence_id in ids:
                if context.stop_event.is_set() or abort.is_set():
                    tally.stopped = True
                    break
                tally.processed += 1
                tally.max_id = max(tally.max_id, recurrence_id)
                try:
                    tally.saved += run_in_transaction(
                        context.session_factory,
                        lambda session: self._expand_one(session, context, recurrence_id),
                        attempts=context.transaction_retries,
                        backoff_seconds=context.retry_backoff_seconds,
                        unit="expansion_item",
                    )
                except OperationalError:
                    raise
                except Exception as exc:
                    tally.errors[type(exc).__name__] += 1
                    _log_item_failure(recurrence_id, None, exc)

            logger.info(
                "expansion_shard_completed",
                extra={
                    "shard_index": shard[0],
                    "shard_count": shard[1],
                    "recurrences_processed": tally.processed,
                    "events_saved": tally.saved,
                    "error_count": sum(tally.errors.values()),
                },
            )
            return tally
        except BaseException:
            abort.set()
            raise

    @staticmethod
    def _expand_one(session: Session, context: ExpansionContext, recurrence_id: int) -> int:
        # Reloaded per item: every candidate is expanded independently.
        definition: RecurringDefinition | None = RecurrenceSelector(session).get(recurrence_id)
        if definition is None:
            return 0
        with LogContext.bind(
            recurrence_id=definition.recurrence_id,
            target_id=definition.target_id,
        ):
            return context.materializer.expand_recurrence(
                session, definition, context.window, dry_run=context.dry_run,
            )


# =============================================================================
# Registry
# =============================================================================

STRATEGIES: dict[ExpansionStrategyKind, type[ExpansionStrategy]] = {
    ExpansionStrategyKind.PAGED: PagedExpansionStrategy,
    ExpansionStrategyKind.PARALLEL: ParallelExpansionStrategy,
}


def resolve_strategy_kind(value: ExpansionStrategyKind | str) -> ExpansionStrategyKind:
    """Map a strategy name onto its kind.

    Raises:
        UnknownStrategyError: If the name is not registered.
    """
    if isinstance(value, ExpansionStrategyKind):
        return value
    try:
        return ExpansionStrategyKind(str(value).strip().lower())
    except ValueError:
        raise UnknownStrategyError(
            str(value), tuple(k.value for k in STRATEGIES),
        ) from None


def create_strategy(
    kind: ExpansionStrategyKind | str,
    batch_size: int = 500,
    worker_count: int = 4,
) -> ExpansionStrategy:
    resolved = resolve_strategy_kind(kind)
    if resolved is ExpansionStrategyKind.PARALLEL:
        return ParallelExpansionStrategy(worker_count=worker_count)
    return PagedExpansionStrategy(batch_size=batch_size)
