"""Per-attempt audit of ingest processing, including vision token usage."""

from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from scoreboard_ingest.models.base import Base, utcnow


class ScoreboardAudit(Base):
    __tablename__ = "scoreboard_audit"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    device_id: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    ingest_id: Mapped[int | None] = mapped_column(sa.Integer, nullable=True, index=True)
    session_id: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    team_id: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    model: Mapped[str | None] = mapped_column(sa.String, nullable=True)
    input_tokens: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    cached_input_tokens: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    output_tokens: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    total_tokens: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    estimated_cost_usd: Mapped[float | None] = mapped_column(sa.Float, nullable=True)
    success: Mapped[bool] = mapped_column(sa.Boolean)
    outcome: Mapped[str | None] = mapped_column(sa.String, nullable=True)
    error: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(sa.DateTime, default=utcnow)
