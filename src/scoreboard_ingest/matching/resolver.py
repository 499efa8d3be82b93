"""Session resolution: which active session does a scoreboard belong to?

Every active session whose roster size fits the board is scored against
both sides of the extraction.  A session is bound automatically only when
it is the single high-confidence candidate; otherwise the decision is
``ambiguous`` or ``unmatched`` and goes to manual review.  The scoring
functions are pure; :func:`load_candidate_sessions` is the only database
access.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from scoreboard_ingest.extraction.schemas import ScoreboardExtraction, TeamSide
from scoreboard_ingest.matching.config import MatchingPolicy
from scoreboard_ingest.matching.names import match_roster
from scoreboard_ingest.models.tracked_session import TrackedSession

DECISION_MATCHED = "matched"
DECISION_AMBIGUOUS = "ambiguous"
DECISION_UNMATCHED = "unmatched"

REASON_AMBIGUOUS = "Multiple sessions match this roster."
REASON_UNMATCHED = "No high-confidence session match."


@dataclass(frozen=True)
class CandidateSession:
    """An active session as seen by the resolver."""

    session_id: int
    team_id: int | None
    mode: str
    roster: list[str]


@dataclass
class SessionCandidate:
    """Scoring outcome for one candidate session (stored for manual review)."""

    session_id: int
    team_id: int | None
    mode: str
    score: int
    matched_count: int
    exact_count: int
    fuzzy_count: int
    side: TeamSide

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SessionResolution:
    status: str
    session_id: int | None = None
    reason: str | None = None
    candidates: list[SessionCandidate] = field(default_factory=list)
    blue_names: list[str] = field(default_factory=list)
    orange_names: list[str] = field(default_factory=list)
    team_size: int | None = None
    mode: str | None = None
    focus_playlist_id: int | None = None

    @property
    def matched(self) -> bool:
        return self.status == DECISION_MATCHED


def score_candidate(
    candidate: CandidateSession,
    blue_names: list[str],
    orange_names: list[str],
    policy: MatchingPolicy,
) -> SessionCandidate:
    """Score a roster against each side independently and keep the better one."""
    blue = match_roster(candidate.roster, blue_names, policy)
    orange = match_roster(candidate.roster, orange_names, policy)
    side: TeamSide = "blue" if blue.score >= orange.score else "orange"
    pick = blue if side == "blue" else orange
    return SessionCandidate(
        session_id=candidate.session_id,
        team_id=candidate.team_id,
        mode=candidate.mode,
        score=pick.score,
        matched_count=pick.matched_count,
        exact_count=pick.exact_count,
        fuzzy_count=pick.fuzzy_count,
        side=side,
    )


def resolve_session(
    blue_names: list[str],
    orange_names: list[str],
    sessions: list[CandidateSession],
    policy: MatchingPolicy | None = None,
) -> SessionResolution:
    """Decide matched / ambiguous / unmatched for one extraction.

    Args:
        blue_names: Trimmed, non-empty names on the blue side.
        orange_names: Trimmed, non-empty names on the orange side.
        sessions: Active, not-ended sessions. Sessions whose mode differs
            from the derived mode are ignored.
        policy: Scoring policy; defaults to :class:`MatchingPolicy`.

    Returns:
        A :class:`SessionResolution` carrying at most
        ``policy.max_candidates`` candidates sorted by score.
    """
    if policy is None:
        policy = MatchingPolicy()

    blue_count = len(blue_names)
    orange_count = len(orange_names)
    team_size = blue_count if blue_count > 0 and blue_count == orange_count else None
    mode = policy.mode_for_team_size(team_size)

    candidates: list[SessionCandidate] = []
    for session in sessions:
        if mode is not None and session.mode != mode:
            continue
        if not session.roster:
            continue
        if team_size is not None and len(session.roster) != team_size:
            continue
        candidates.append(score_candidate(session, blue_names, orange_names, policy))

    # Stable sort keeps session order for equal scores
    candidates.sort(key=lambda c: c.score, reverse=True)

    high_confidence = []
    if team_size is not None:
        threshold = policy.auto_accept_threshold(team_size)
        high_confidence = [
            c for c in candidates if c.matched_count >= team_size and c.score >= threshold
        ]

    common = dict(
        candidates=candidates[: policy.max_candidates],
        blue_names=list(blue_names),
        orange_names=list(orange_names),
        team_size=team_size,
        mode=mode,
        focus_playlist_id=policy.focus_playlist_for_mode(mode) if mode else None,
    )

    if len(high_confidence) == 1:
        return SessionResolution(
            status=DECISION_MATCHED, session_id=high_confidence[0].session_id, **common
        )
    if len(high_confidence) > 1:
        return SessionResolution(status=DECISION_AMBIGUOUS, reason=REASON_AMBIGUOUS, **common)
    return SessionResolution(status=DECISION_UNMATCHED, reason=REASON_UNMATCHED, **common)


def resolve_extraction(
    extraction: ScoreboardExtraction,
    sessions: list[CandidateSession],
    policy: MatchingPolicy | None = None,
) -> SessionResolution:
    """Convenience wrapper taking a validated extraction."""
    return resolve_session(extraction.names("blue"), extraction.names("orange"), sessions, policy)


async def load_candidate_sessions(db: AsyncSession) -> list[CandidateSession]:
    """Load all active, not-ended sessions with their roster gamertags."""
    result = await db.execute(
        sa.select(TrackedSession)
        .where(TrackedSession.is_active.is_(True), TrackedSession.is_ended.is_(False))
        .options(selectinload(TrackedSession.players))
        .order_by(TrackedSession.created_at.desc(), TrackedSession.id.desc())
    )
    return [
        CandidateSession(
            session_id=s.id,
            team_id=s.team_id,
            mode=s.mode,
            roster=[p.gamertag for p in s.players],
        )
        for s in result.scalars().all()
    ]
