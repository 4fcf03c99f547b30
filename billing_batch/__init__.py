"""
billing_batch -- Recurring billing expansion.

Turns each active recurring billing definition into the one-time billing
events (and their audit history entries) owed for every anniversary that
has come due, exactly once per (recurrence, billing time), and tracks
progress with a single global cursor.

Architecture:
    billing_batch/ is a top-level package.  Nothing in billing_kernel/ or
    billing_config/ imports from billing_batch (except table registration
    in billing_kernel.db.engine.create_tables).

    domain/     pure types, annual recurrence rule, billing time mapper
    models/     ORM models
    selectors/  read-only queries
    services/   collaborators, materializer, checkpoint, strategies, driver
    orchestrator.py / cli.py  wiring and command line entry point
"""
