"""
ORM model for the expansion run log.

Contract:
    One ExpansionRunModel per non-dry run that reached Finalizing, written
    in the same transaction as the checkpoint advance (or on its own when
    the checkpoint is left untouched).  Round-trips with ExpansionSummary.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import JSON, Boolean, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase

if TYPE_CHECKING:
    from billing_batch.domain.types import ExpansionSummary


class ExpansionRunModel(TrackedBase):
    """Persisted completion summary of an expansion run."""

    __tablename__ = "expansion_runs"

    __table_args__ = (
        Index("ix_expansion_runs_status", "status"),
        Index("ix_expansion_runs_started_at", "started_at"),
    )

    status: Mapped[str] = mapped_column(String(50), nullable=False)
    strategy: Mapped[str] = mapped_column(String(50), nullable=False)
    dry_run: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    window_start: Mapped[datetime] = mapped_column(nullable=False)
    window_end: Mapped[datetime] = mapped_column(nullable=False)
    recurrences_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    events_saved: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_counts: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    checkpoint_before: Mapped[datetime | None] = mapped_column(nullable=True)
    checkpoint_after: Mapped[datetime | None] = mapped_column(nullable=True)
    checkpoint_advanced: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    duration_ms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    correlation_id: Mapped[str | None] = mapped_column(String(200), nullable=True)

    def to_dto(self) -> ExpansionSummary:
        from billing_batch.domain.types import (
            ExpansionRunStatus,
            ExpansionStrategyKind,
            ExpansionSummary,
            ExpansionWindow,
        )

        return ExpansionSummary(
            run_id=self.id,
            status=ExpansionRunStatus(self.status),
            strategy=ExpansionStrategyKind(self.strategy),
            dry_run=self.dry_run,
            window=ExpansionWindow(self.window_start, self.window_end),
            recurrences_processed=self.recurrences_processed,
            events_saved=self.events_saved,
            error_count=self.error_count,
            error_counts=dict(self.error_counts or {}),
            checkpoint_before=self.checkpoint_before,
            checkpoint_after=self.checkpoint_after,
            checkpoint_advanced=self.checkpoint_advanced,
            started_at=self.started_at,
            completed_at=self.completed_at,
            duration_ms=self.duration_ms,
            correlation_id=self.correlation_id,
        )

    @classmethod
    def from_dto(cls, dto: ExpansionSummary, created_by_id: UUID) -> ExpansionRunModel:
        return cls(
            id=dto.run_id,
            status=dto.status.value,
            strategy=dto.strategy.value,
            dry_run=dto.dry_run,
            window_start=dto.window.lower,
            window_end=dto.window.upper,
            recurrences_processed=dto.recurrences_processed,
            events_saved=dto.events_saved,
            error_count=dto.error_count,
            error_counts=dict(dto.error_counts) or None,
            checkpoint_before=dto.checkpoint_before,
            checkpoint_after=dto.checkpoint_after,
            checkpoint_advanced=dto.checkpoint_advanced,
            started_at=dto.started_at,
            completed_at=dto.completed_at,
            duration_ms=dto.duration_ms,
            correlation_id=dto.correlation_id,
            created_by_id=created_by_id,
            updated_by_id=None,
        )
