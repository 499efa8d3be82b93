"""Session, roster and snapshot tables owned by session management.

This service only reads sessions and rosters; the bundled match applier is
the single writer of ``PlayerSnapshot`` rows and of ``match_index``.
"""

from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from scoreboard_ingest.models.base import Base, utcnow


class Team(Base):
    __tablename__ = "teams"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(sa.String)
    mode: Mapped[str] = mapped_column(sa.String)
    created_at: Mapped[datetime] = mapped_column(sa.DateTime, default=utcnow)


class TrackedSession(Base):
    __tablename__ = "sessions"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(sa.String)
    mode: Mapped[str] = mapped_column(sa.String, default="2v2")
    team_id: Mapped[int | None] = mapped_column(sa.ForeignKey("teams.id"), nullable=True)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    is_ended: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    match_index: Mapped[int] = mapped_column(sa.Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(sa.DateTime, default=utcnow)
    ended_at: Mapped[datetime | None] = mapped_column(sa.DateTime, nullable=True)

    players: Mapped[list[RosterPlayer]] = relationship(
        "RosterPlayer", back_populates="session", order_by="RosterPlayer.id"
    )


class RosterPlayer(Base):
    __tablename__ = "players"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(sa.ForeignKey("sessions.id"), index=True)
    platform: Mapped[str] = mapped_column(sa.String, default="xbl")
    gamertag: Mapped[str] = mapped_column(sa.String)

    session: Mapped[TrackedSession] = relationship("TrackedSession", back_populates="players")


class PlayerSnapshot(Base):
    """Cumulative per-player totals after a given match index."""

    __tablename__ = "snapshots"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(sa.Integer, index=True)
    player_id: Mapped[int] = mapped_column(sa.Integer, index=True)
    captured_at: Mapped[datetime] = mapped_column(sa.DateTime, default=utcnow)
    match_index: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    raw: Mapped[dict] = mapped_column(sa.JSON)
    derived: Mapped[dict] = mapped_column(sa.JSON)
