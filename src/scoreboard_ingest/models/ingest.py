from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from scoreboard_ingest.models.base import Base, utcnow

if TYPE_CHECKING:
    from scoreboard_ingest.models.device import ScoreboardDevice

# Lifecycle: received -> extracting -> extracted | pending_match | failed
STATUS_RECEIVED = "received"
STATUS_EXTRACTING = "extracting"
STATUS_EXTRACTED = "extracted"
STATUS_PENDING_MATCH = "pending_match"
STATUS_FAILED = "failed"

INGEST_STATUSES = (
    STATUS_RECEIVED,
    STATUS_EXTRACTING,
    STATUS_EXTRACTED,
    STATUS_PENDING_MATCH,
    STATUS_FAILED,
)


class ScoreboardIngest(Base):
    """One upload attempt of up to three scoreboard images."""

    __tablename__ = "scoreboard_ingests"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    device_id: Mapped[int] = mapped_column(sa.ForeignKey("scoreboard_devices.id"), index=True)
    received_at: Mapped[datetime] = mapped_column(sa.DateTime, default=utcnow, index=True)
    status: Mapped[str] = mapped_column(sa.String, default=STATUS_RECEIVED)
    error_message: Mapped[str | None] = mapped_column(sa.Text, nullable=True)

    # Resolution results (the upload-time values are only hints)
    session_id: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    team_id: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    focus_playlist_id: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)

    dedupe_key: Mapped[str] = mapped_column(sa.String(64), unique=True, index=True)
    match_id: Mapped[int | None] = mapped_column(sa.ForeignKey("matches.id"), nullable=True)

    images: Mapped[list[ScoreboardIngestImage]] = relationship(
        "ScoreboardIngestImage",
        back_populates="ingest",
        cascade="all, delete-orphan",
        order_by="ScoreboardIngestImage.position",
    )
    device: Mapped[ScoreboardDevice] = relationship("ScoreboardDevice")

    __table_args__ = (
        sa.CheckConstraint(
            "status IN ('received', 'extracting', 'extracted', 'pending_match', 'failed')",
            name="valid_ingest_status",
        ),
    )


class ScoreboardIngestImage(Base):
    __tablename__ = "scoreboard_ingest_images"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    ingest_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey("scoreboard_ingests.id", ondelete="CASCADE"), index=True
    )
    image_path: Mapped[str] = mapped_column(sa.String)
    position: Mapped[int] = mapped_column(sa.Integer, default=1)

    ingest: Mapped[ScoreboardIngest] = relationship("ScoreboardIngest", back_populates="images")
