"""Queue of extracted scoreboards waiting for a manual session assignment."""

from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from scoreboard_ingest.models.base import Base, utcnow

UNMATCHED_PENDING = "pending"
UNMATCHED_ASSIGNED = "assigned"


class ScoreboardUnmatched(Base):
    """An ingest the session resolver could not bind automatically.

    The extraction payloads are cached here so that an operator assignment
    never needs to call the vision service again.  ``ingest_id`` is unique:
    re-processing the same ingest refreshes ``candidates`` in place.
    """

    __tablename__ = "scoreboard_unmatched"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    # Set to NULL when retention cleanup removes the ingest; the entry itself stays
    ingest_id: Mapped[int | None] = mapped_column(
        sa.ForeignKey("scoreboard_ingests.id", ondelete="SET NULL"), unique=True, nullable=True
    )
    status: Mapped[str] = mapped_column(sa.String, default=UNMATCHED_PENDING)
    mode: Mapped[str | None] = mapped_column(sa.String, nullable=True)
    team_size: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    blue_names: Mapped[list] = mapped_column(sa.JSON, default=list)
    orange_names: Mapped[list] = mapped_column(sa.JSON, default=list)
    candidates: Mapped[list] = mapped_column(sa.JSON, default=list)
    raw_extraction: Mapped[dict] = mapped_column(sa.JSON)
    derived_match: Mapped[dict | None] = mapped_column(sa.JSON, nullable=True)
    signature_key: Mapped[str | None] = mapped_column(sa.String(64), nullable=True)
    extraction_confidence: Mapped[float | None] = mapped_column(sa.Float, nullable=True)
    assigned_session_id: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(sa.DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(sa.DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        sa.CheckConstraint("status IN ('pending', 'assigned')", name="valid_unmatched_status"),
    )
