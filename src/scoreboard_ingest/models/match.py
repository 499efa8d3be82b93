"""Resolved scoreboard events and their per-player rows (append-only)."""

from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from scoreboard_ingest.models.base import Base, utcnow


class Match(Base):
    """One physically distinct scoreboard event.

    ``(session_id, signature_key)`` is unique so that two photographs of the
    same board can never produce two matches in the same session.
    """

    __tablename__ = "matches"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[int | None] = mapped_column(sa.Integer, nullable=True, index=True)
    team_id: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    source: Mapped[str] = mapped_column(sa.String, default="vision")
    created_at: Mapped[datetime] = mapped_column(sa.DateTime, default=utcnow)
    raw_extraction: Mapped[dict] = mapped_column(sa.JSON)
    derived_match: Mapped[dict] = mapped_column(sa.JSON)
    extraction_confidence: Mapped[float | None] = mapped_column(sa.Float, nullable=True)
    dedupe_key: Mapped[str | None] = mapped_column(sa.String(64), nullable=True, index=True)
    signature_key: Mapped[str | None] = mapped_column(sa.String(64), nullable=True, index=True)

    players: Mapped[list[MatchPlayer]] = relationship(
        "MatchPlayer", back_populates="match", order_by="MatchPlayer.id"
    )

    __table_args__ = (
        sa.UniqueConstraint("session_id", "signature_key", name="uq_matches_session_signature"),
    )


class MatchPlayer(Base):
    __tablename__ = "match_players"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    match_id: Mapped[int] = mapped_column(sa.ForeignKey("matches.id"), index=True)
    player_id: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    extracted_name: Mapped[str | None] = mapped_column(sa.String, nullable=True)
    gamertag: Mapped[str] = mapped_column(sa.String)
    platform: Mapped[str] = mapped_column(sa.String)
    team: Mapped[str] = mapped_column(sa.String)
    goals: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    assists: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    saves: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    shots: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    score: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    is_winner: Mapped[bool | None] = mapped_column(sa.Boolean, nullable=True)
    name_match_confidence: Mapped[float | None] = mapped_column(sa.Float, nullable=True)

    match: Mapped[Match] = relationship("Match", back_populates="players")

    __table_args__ = (
        sa.CheckConstraint("team IN ('blue', 'orange')", name="valid_match_player_team"),
    )
