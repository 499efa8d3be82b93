"""Match application: fold a recorded match into per-player running totals.

The applier is a collaborator of the ingest pipeline and is called at most
once per distinct Match, inside the transaction that inserts the Match.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from scoreboard_ingest.extraction.schemas import TeamSide
from scoreboard_ingest.models.tracked_session import PlayerSnapshot, TrackedSession

_COUNTED = ("goals", "assists", "saves", "shots")


@dataclass
class AppliedPlayer:
    player_id: int | None
    gamertag: str
    platform: str
    team: TeamSide
    goals: int | None = None
    assists: int | None = None
    saves: int | None = None
    shots: int | None = None
    score: int | None = None


@dataclass
class MatchApplication:
    session_id: int
    match_id: int
    match_index: int
    created_at: datetime
    winning_team: TeamSide | None
    players: list[AppliedPlayer] = field(default_factory=list)


class MatchApplier(Protocol):
    async def apply(self, db: AsyncSession, application: MatchApplication) -> None: ...


def _number(value) -> int | float:
    return value if isinstance(value, (int, float)) and not isinstance(value, bool) else 0


def apply_player_totals(
    previous: dict | None,
    player: AppliedPlayer,
    winning_team: TeamSide | None,
    created_at: datetime,
) -> dict:
    """Return the next cumulative totals for one player.

    An unknown winner counts neither a win nor a loss.  Keys of *previous*
    that are not totals (rank data and similar) are carried over untouched.
    """
    previous = previous or {}
    totals = dict(previous)

    wins = _number(previous.get("wins"))
    losses = _number(previous.get("losses"))
    if winning_team is not None:
        if player.team == winning_team:
            wins += 1
        else:
            losses += 1

    for stat in _COUNTED:
        totals[stat] = _number(previous.get(stat)) + _number(getattr(player, stat))

    games = wins + losses
    totals.update(
        last_updated=created_at.isoformat(),
        wins=wins,
        losses=losses,
        win_rate=wins / games if games > 0 else None,
        goal_shot_ratio=totals["goals"] / totals["shots"] if totals["shots"] > 0 else None,
    )
    return totals


class SnapshotMatchApplier:
    """Writes one :class:`PlayerSnapshot` per mapped player and bumps ``match_index``.

    Players without a roster id are skipped.  Never commits.
    """

    async def _latest_derived(self, db: AsyncSession, player_id: int) -> dict | None:
        result = await db.execute(
            sa.select(PlayerSnapshot.derived)
            .where(PlayerSnapshot.player_id == player_id)
            .order_by(PlayerSnapshot.captured_at.desc(), PlayerSnapshot.id.desc())
            .limit(1)
        )
        derived = result.scalar_one_or_none()
        return derived if isinstance(derived, dict) else None

    async def apply(self, db: AsyncSession, application: MatchApplication) -> None:
        for player in application.players:
            if not player.player_id:
                continue
            previous = await self._latest_derived(db, player.player_id)
            db.add(
                PlayerSnapshot(
                    session_id=application.session_id,
                    player_id=player.player_id,
                    captured_at=application.created_at,
                    match_index=application.match_index,
                    raw={
                        "source": "vision",
                        "match_id": application.match_id,
                        "match_index": application.match_index,
                        "gamertag": player.gamertag,
                    },
                    derived=apply_player_totals(
                        previous, player, application.winning_team, application.created_at
                    ),
                )
            )

        await db.execute(
            sa.update(TrackedSession)
            .where(TrackedSession.id == application.session_id)
            .values(match_index=application.match_index)
        )
