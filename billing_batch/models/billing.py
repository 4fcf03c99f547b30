"""
ORM models for recurring billing and the records its expansion produces.

Contract:
    BillingRecurrenceModel is the open-ended recurring definition.  Each
    expansion of one of its anniversaries writes exactly one
    HistoryEntryModel (the audit record, with zero or one
    TransactionRecordModel children) and exactly one BillingEventModel that
    points back at both.

Architecture: billing_batch/models.  Imports from billing_kernel.db.base only.

Invariants enforced:
    - UNIQUE (cancellation_matching_recurrence_id, billing_time) on
      billing_events: at most one event per recurrence per billing instant,
      whatever the application layer does.
    - History entries, transaction records and billing events are
      append-only (see billing_kernel.db.immutability).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import SequentialKey, TrackedBase, UUIDString

if TYPE_CHECKING:
    from billing_batch.domain.types import MaterializedEvent, RecurringDefinition

# Reason text recorded on history entries written by the expansion job.
AUTORENEW_HISTORY_REASON = "Domain autorenewal by recurring billing expansion"


class BillingRecurrenceModel(TrackedBase):
    """Open-ended recurring billing definition (e.g. annual autorenew)."""

    __tablename__ = "billing_recurrences"

    __table_args__ = (
        Index("ix_billing_recurrences_event_time", "event_time"),
        Index("ix_billing_recurrences_end_time", "recurrence_end_time"),
        Index("ix_billing_recurrences_target_repo_id", "target_repo_id"),
    )

    # Monotonically assigned; the keyset for resumable paging.
    id: Mapped[int] = mapped_column(SequentialKey, primary_key=True, autoincrement=True)

    target_id: Mapped[str] = mapped_column(String(253), nullable=False)
    target_repo_id: Mapped[str] = mapped_column(String(100), nullable=False)
    registrar_id: Mapped[str] = mapped_column(String(100), nullable=False)
    reason: Mapped[str] = mapped_column(String(50), nullable=False)
    flags: Mapped[list | None] = mapped_column(JSON, nullable=True)
    event_time: Mapped[datetime] = mapped_column(nullable=False)
    recurrence_end_time: Mapped[datetime] = mapped_column(nullable=False)
    recurrence_time_of_year: Mapped[str] = mapped_column(String(32), nullable=False)

    def to_dto(self) -> RecurringDefinition:
        from billing_batch.domain.types import (
            BillingFlag,
            BillingReason,
            RecurringDefinition,
        )

        return RecurringDefinition(
            recurrence_id=self.id,
            target_id=self.target_id,
            target_repo_id=self.target_repo_id,
            registrar_id=self.registrar_id,
            reason=BillingReason(self.reason),
            event_time=self.event_time,
            recurrence_time_of_year=self.recurrence_time_of_year,
            recurrence_end_time=self.recurrence_end_time,
            flags=frozenset(BillingFlag(f) for f in self.flags or ()),
        )

    @classmethod
    def from_dto(cls, dto: RecurringDefinition, created_by_id: UUID) -> BillingRecurrenceModel:
        return cls(
            target_id=dto.target_id,
            target_repo_id=dto.target_repo_id,
            registrar_id=dto.registrar_id,
            reason=dto.reason.value,
            flags=sorted(f.value for f in dto.flags) or None,
            event_time=dto.event_time,
            recurrence_end_time=dto.recurrence_end_time,
            recurrence_time_of_year=dto.recurrence_time_of_year,
            created_by_id=created_by_id,
            updated_by_id=None,
        )


class HistoryEntryModel(TrackedBase):
    """Audit record written 1:1 with each materialized billing event."""

    __tablename__ = "billing_history_entries"

    __table_args__ = (
        Index("ix_billing_history_entries_target_repo_id", "target_repo_id"),
        Index("ix_billing_history_entries_modification_time", "modification_time"),
    )

    target_id: Mapped[str] = mapped_column(String(253), nullable=False)
    target_repo_id: Mapped[str] = mapped_column(String(100), nullable=False)
    registrar_id: Mapped[str] = mapped_column(String(100), nullable=False)
    history_type: Mapped[str] = mapped_column(String(50), nullable=False)
    modification_time: Mapped[datetime] = mapped_column(nullable=False)
    period_years: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    by_superuser: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    requested_by_registrar: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False,
    )

    transaction_records: Mapped[list["TransactionRecordModel"]] = relationship(
        "TransactionRecordModel",
        back_populates="history_entry",
        foreign_keys="TransactionRecordModel.history_entry_id",
    )


class TransactionRecordModel(TrackedBase):
    """Reporting payload: counts one renewal toward registry activity reports."""

    __tablename__ = "domain_transaction_records"

    __table_args__ = (
        Index("ix_domain_transaction_records_tld_report_time", "tld", "report_time"),
    )

    history_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("billing_history_entries.id"),
        nullable=False,
    )
    tld: Mapped[str] = mapped_column(String(100), nullable=False)
    report_time: Mapped[datetime] = mapped_column(nullable=False)
    report_field: Mapped[str] = mapped_column(String(50), nullable=False)
    report_amount: Mapped[int] = mapped_column(Integer, nullable=False)

    history_entry: Mapped["HistoryEntryModel"] = relationship(
        "HistoryEntryModel",
        back_populates="transaction_records",
        foreign_keys=[history_entry_id],
    )


class BillingEventModel(TrackedBase):
    """One-time billable event materialized from a recurrence."""

    __tablename__ = "billing_events"

    __table_args__ = (
        UniqueConstraint(
            "cancellation_matching_recurrence_id",
            "billing_time",
            name="uq_billing_events_recurrence_billing_time",
        ),
        Index("ix_billing_events_billing_time", "billing_time"),
        Index("ix_billing_events_registrar_id", "registrar_id"),
    )

    history_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("billing_history_entries.id"),
        nullable=False,
    )
    target_id: Mapped[str] = mapped_column(String(253), nullable=False)
    target_repo_id: Mapped[str] = mapped_column(String(100), nullable=False)
    registrar_id: Mapped[str] = mapped_column(String(100), nullable=False)
    reason: Mapped[str] = mapped_column(String(50), nullable=False)
    flags: Mapped[list | None] = mapped_column(JSON, nullable=True)
    event_time: Mapped[datetime] = mapped_column(nullable=False)
    billing_time: Mapped[datetime] = mapped_column(nullable=False)
    cost_amount: Mapped[Decimal] = mapped_column(nullable=False)
    cost_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    period_years: Mapped[int] = mapped_column(Integer, nullable=False)
    synthetic_creation_time: Mapped[datetime] = mapped_column(nullable=False)
    # The sourceRecurringRef: the sole key for "already materialized".
    cancellation_matching_recurrence_id: Mapped[int] = mapped_column(
        SequentialKey,
        ForeignKey("billing_recurrences.id"),
        nullable=False,
    )

    history_entry: Mapped["HistoryEntryModel"] = relationship(
        "HistoryEntryModel",
        foreign_keys=[history_entry_id],
    )

    def to_dto(self) -> MaterializedEvent:
        from billing_batch.domain.types import (
            BillingFlag,
            BillingReason,
            MaterializedEvent,
        )

        return MaterializedEvent(
            event_id=self.id,
            recurrence_id=self.cancellation_matching_recurrence_id,
            history_entry_id=self.history_entry_id,
            target_id=self.target_id,
            registrar_id=self.registrar_id,
            reason=BillingReason(self.reason),
            event_time=self.event_time,
            billing_time=self.billing_time,
            cost_amount=self.cost_amount,
            cost_currency=self.cost_currency,
            period_years=self.period_years,
            synthetic_creation_time=self.synthetic_creation_time,
            flags=frozenset(BillingFlag(f) for f in self.flags or ()),
        )
