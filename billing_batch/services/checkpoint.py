"""
CheckpointStore -- the single global progress cursor for an expansion job.

Contract:
    ``read()`` returns the cursor time (START_OF_TIME when never written).
    ``guarded_advance(expected_prior, new_value)`` writes ``new_value`` only
    if the stored value still equals ``expected_prior``; otherwise it writes
    nothing and reports CONFLICT.

The write is a compare-and-advance on the row's ``version`` column: the row
is read (``SELECT ... FOR UPDATE`` where supported), its time compared in
Python, and the UPDATE is conditioned on the version that was read.  A zero
row count means another writer got there first.  First-ever writes insert
the row inside a SAVEPOINT; a unique violation on ``cursor_type`` is a
conflict with a concurrent first writer.

Non-goals:
    - Does NOT commit -- the caller's transaction makes the advance durable
      together with the run log.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from billing_batch.domain.types import (
    START_OF_TIME,
    CheckpointAdvanceOutcome,
    CursorType,
)
from billing_batch.models.cursor import CursorModel
from billing_kernel.logging_config import get_logger

logger = get_logger("batch.checkpoint")


class CheckpointStore:
    """Read and compare-and-advance one global cursor row."""

    def __init__(
        self,
        session: Session,
        cursor_type: CursorType = CursorType.RECURRING_BILLING,
    ):
        self._session = session
        self._cursor_type = cursor_type

    @property
    def cursor_type(self) -> CursorType:
        return self._cursor_type

    def _load(self, for_update: bool = False) -> CursorModel | None:
        stmt = select(CursorModel).where(CursorModel.cursor_type == self._cursor_type.value)
        if for_update:
            stmt = stmt.with_for_update()
        return self._session.execute(stmt).scalar_one_or_none()

    def read(self) -> datetime:
        row = self._load()
        return row.cursor_time if row is not None else START_OF_TIME

    def guarded_advance(
        self,
        expected_prior: datetime,
        new_value: datetime,
        actor_id: UUID,
    ) -> CheckpointAdvanceOutcome:
        """Move the cursor from ``expected_prior`` to ``new_value``.

        Raises:
            ValueError: If ``new_value`` is earlier than ``expected_prior``
                (the cursor never moves backwards).
        """
        if new_value < expected_prior:
            raise ValueError(
                f"Cursor must not move backwards: {expected_prior} -> {new_value}"
            )

        row = self._load(for_update=True)

        if row is None:
            if expected_prior != START_OF_TIME:
                return self._conflict(expected_prior, START_OF_TIME)
            return self._insert_first(expected_prior, new_value, actor_id)

        if row.cursor_time != expected_prior:
            return self._conflict(expected_prior, row.cursor_time)

        result = self._session.execute(
            update(CursorModel)
            .where(
                CursorModel.id == row.id,
                CursorModel.version == row.version,
            )
            .values(
                cursor_time=new_value,
                version=row.version + 1,
                updated_by_id=actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        # The in-session row is now stale either way.
        self._session.expire(row)
        if result.rowcount != 1:
            return self._conflict(expected_prior, self.read())

        logger.info(
            "cursor_advanced",
            extra={
                "cursor_type": self._cursor_type.value,
                "from_time": expected_prior,
                "to_time": new_value,
            },
        )
        return CheckpointAdvanceOutcome.ADVANCED

    def _insert_first(
        self, expected_prior: datetime, new_value: datetime, actor_id: UUID,
    ) -> CheckpointAdvanceOutcome:
        savepoint = self._session.begin_nested()
        try:
            self._session.add(
                CursorModel(
                    cursor_type=self._cursor_type.value,
                    cursor_time=new_value,
                    version=1,
                    created_by_id=actor_id,
                )
            )
            self._session.flush()
        except IntegrityError:
            savepoint.rollback()
            return self._conflict(expected_prior, self.read())
        savepoint.commit()

        logger.info(
            "cursor_advanced",
            extra={
                "cursor_type": self._cursor_type.value,
                "from_time": expected_prior,
                "to_time": new_value,
            },
        )
        return CheckpointAdvanceOutcome.ADVANCED

    def _conflict(self, expected: datetime, current: datetime) -> CheckpointAdvanceOutcome:
        logger.warning(
            "cursor_conflict",
            extra={
                "cursor_type": self._cursor_type.value,
                "expected_time": expected,
                "current_time": current,
            },
        )
        return CheckpointAdvanceOutcome.CONFLICT
