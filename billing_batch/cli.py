"""
Run recurring billing expansion once and print the completion summary.

Expands every recurrence's anniversaries that came due since the stored
cursor into one-time billing events, then advances the cursor.  Safe to
interrupt (Ctrl-C requests cancellation) and to re-run.

Usage:
    expand-recurring-billing --database-url <url> [options]

Examples:
    # Preview what would be billed, writing nothing
    expand-recurring-billing --database-url sqlite:///billing.db --dry-run

    # Re-scan from a fixed point with the parallel strategy
    expand-recurring-billing --cursor-time 2024-01-01T00:00:00Z \\
        --strategy parallel --workers 8

Exit codes:
    0  run completed and the cursor advanced (or the dry run was clean)
    1  run completed with per-recurrence errors, or was cancelled
    2  invalid invocation, configuration error, or cursor conflict
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
from datetime import datetime
from pathlib import Path
from uuid import UUID

from billing_batch.domain.types import ExpansionParameters, ExpansionRunStatus
from billing_config.loader import parse_instant
from billing_config.schema import STRATEGY_NAMES
from billing_kernel.exceptions import (
    ConfigurationError,
    CursorConflictError,
    ExpansionError,
)

EXIT_OK = 0
EXIT_INCOMPLETE = 1
EXIT_ERROR = 2


def _instant(value: str) -> datetime:
    try:
        return parse_instant(value, "--cursor-time")
    except ConfigurationError as exc:
        raise argparse.ArgumentTypeError(exc.reason) from None


def _positive(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}") from None
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be positive, got {number}")
    return number


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="expand-recurring-billing",
        description="Expand recurring billing definitions into one-time billing events.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--database-url",
        default=os.environ.get("DATABASE_URL"),
        help="Database URL (default: DATABASE_URL env).",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Configuration YAML (default: packaged billing_config/sets/default.yaml).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Compute and price everything but write nothing.",
    )
    parser.add_argument(
        "--cursor-time",
        type=_instant,
        default=None,
        help="Scan from this instant instead of the stored cursor (ISO 8601, UTC if no offset).",
    )
    parser.add_argument(
        "--batch-size",
        type=_positive,
        default=None,
        help="Paged strategy page size (default: from config).",
    )
    parser.add_argument(
        "--strategy",
        choices=STRATEGY_NAMES,
        default=None,
        help="Execution strategy (default: from config).",
    )
    parser.add_argument(
        "--workers",
        type=_positive,
        default=None,
        help="Parallel strategy worker count (default: from config).",
    )
    parser.add_argument(
        "--actor-id",
        type=UUID,
        default=None,
        help="Actor UUID recorded on written rows (default: system actor).",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables before running.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log at DEBUG level.",
    )
    return parser.parse_args(argv)


def _print_json(payload: dict, stream=None) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True), file=stream or sys.stdout)


def _error_payload(exc: Exception) -> dict:
    return {
        "error": getattr(exc, "code", type(exc).__name__),
        "message": str(exc),
    }


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    # Lazy imports so we fail fast on args first
    from billing_batch.orchestrator import ExpansionOrchestrator
    from billing_kernel.db.engine import (
        create_tables,
        get_session_factory,
        init_engine_from_url,
    )
    from billing_kernel.db.immutability import register_immutability_listeners
    from billing_kernel.logging_config import configure_logging

    configure_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    if not args.database_url:
        _print_json(
            {"error": "MISSING_DATABASE_URL", "message": "Pass --database-url or set DATABASE_URL."},
            sys.stderr,
        )
        return EXIT_ERROR

    try:
        engine = init_engine_from_url(args.database_url)
        if args.create_tables:
            create_tables(engine)
        register_immutability_listeners()
        orchestrator = ExpansionOrchestrator.from_config(
            get_session_factory(), args.config, actor_id=args.actor_id,
        )
    except (ConfigurationError, FileNotFoundError) as exc:
        _print_json(_error_payload(exc), sys.stderr)
        return EXIT_ERROR

    expander = orchestrator.create_expander()
    params = ExpansionParameters(
        dry_run=args.dry_run,
        cursor_override=args.cursor_time,
        batch_size=args.batch_size,
        strategy=args.strategy,
        worker_count=args.workers,
        actor_id=orchestrator.actor_id,
    )

    def _request_cancel(signum, frame):
        expander.request_cancel()

    previous_handler = signal.signal(signal.SIGINT, _request_cancel)
    try:
        summary = expander.run(params)
    except CursorConflictError as exc:
        payload = exc.summary.to_dict() if exc.summary is not None else {}
        payload.update(_error_payload(exc))
        _print_json(payload)
        return EXIT_ERROR
    except ExpansionError as exc:
        _print_json(_error_payload(exc), sys.stderr)
        return EXIT_ERROR
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    _print_json(summary.to_dict())
    return EXIT_OK if summary.status is ExpansionRunStatus.COMPLETED else EXIT_INCOMPLETE


if __name__ == "__main__":
    sys.exit(main())
