"""Pydantic schemas for the vision collaborator's structured output.

``ScoreboardExtraction`` doubles as the Gemini ``response_schema`` and as
the boundary validator: anything that does not parse into it is rejected
before it can reach the session resolver.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, Field

TeamSide = Literal["blue", "orange"]
TEAM_SIDES: tuple[TeamSide, TeamSide] = ("blue", "orange")


class PlayerStats(BaseModel):
    name: str | None = None
    score: int | None = None
    goals: int | None = None
    assists: int | None = None
    saves: int | None = None
    shots: int | None = None

    def stat_values(self) -> list[int | None]:
        return [self.score, self.goals, self.assists, self.saves, self.shots]


class MatchInfo(BaseModel):
    playlist_name: str | None = None
    is_ranked: bool | None = None
    winning_team: TeamSide | None = None


class Teams(BaseModel):
    blue: list[PlayerStats] = Field(default_factory=list)
    orange: list[PlayerStats] = Field(default_factory=list)

    def side(self, side: TeamSide) -> list[PlayerStats]:
        return self.blue if side == "blue" else self.orange


class ScoreboardExtraction(BaseModel):
    """One end-of-match scoreboard as read from the photo."""

    match: MatchInfo = Field(default_factory=MatchInfo)
    teams: Teams = Field(default_factory=Teams)

    def names(self, side: TeamSide) -> list[str]:
        """Trimmed, non-empty player names of one side, in board order."""
        return [p.name.strip() for p in self.teams.side(side) if p.name and p.name.strip()]


@dataclass
class TokenUsage:
    input_tokens: int = 0
    cached_input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def add(self, other: TokenUsage) -> None:
        self.input_tokens += other.input_tokens
        self.cached_input_tokens += other.cached_input_tokens
        self.output_tokens += other.output_tokens
        self.total_tokens += other.total_tokens


@dataclass
class ExtractionResult:
    """What the vision collaborator hands back for one ingest."""

    extraction: ScoreboardExtraction
    confidence: float | None
    dedupe_signature: str
    model: str | None = None
    usage: TokenUsage | None = None
    raw_text: str = ""
