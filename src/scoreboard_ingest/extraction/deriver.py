"""Pure match deriver: per-team totals from an extraction."""

from __future__ import annotations

from pydantic import BaseModel

from scoreboard_ingest.extraction.schemas import MatchInfo, PlayerStats, ScoreboardExtraction

_STATS = ("goals", "assists", "saves", "shots", "score")


class TeamTotals(BaseModel):
    goals: int | None = None
    assists: int | None = None
    saves: int | None = None
    shots: int | None = None
    score: int | None = None


class DerivedTeams(BaseModel):
    blue: TeamTotals
    orange: TeamTotals


class DerivedMatch(BaseModel):
    match: MatchInfo
    teams: DerivedTeams


def _sum_team(players: list[PlayerStats]) -> TeamTotals:
    totals = {}
    for stat in _STATS:
        total = sum(getattr(p, stat) or 0 for p in players)
        # Zero totals are reported as unknown
        totals[stat] = total or None
    return TeamTotals(**totals)


def derive_match(extraction: ScoreboardExtraction) -> DerivedMatch:
    """Return the derived-match payload for *extraction*. No side effects."""
    return DerivedMatch(
        match=extraction.match,
        teams=DerivedTeams(
            blue=_sum_team(extraction.teams.blue),
            orange=_sum_team(extraction.teams.orange),
        ),
    )
