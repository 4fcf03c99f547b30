"""
ORM model for global job checkpoints.

Contract:
    One row per ``CursorType``.  ``cursor_time`` means "every obligation
    billed before this instant has been materialized".  ``version`` is
    incremented on every write; writers compare-and-advance on it (see
    billing_batch.services.checkpoint) instead of read-modify-write.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase


class CursorModel(TrackedBase):
    """Single global progress cursor for one job class."""

    __tablename__ = "cursors"

    cursor_type: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    cursor_time: Mapped[datetime] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
