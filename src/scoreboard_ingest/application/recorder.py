"""Shared match-recording path for automatic and manual session binding.

Everything that makes a match visible (the Match row, its MatchPlayer rows,
the applier's snapshots and the ingest's terminal status) is written in a
single transaction.  A signature already recorded in the target session
binds the ingest to the existing Match instead; the applier is then not
called.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import sqlalchemy as sa
import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scoreboard_ingest.application.applier import AppliedPlayer, MatchApplication, MatchApplier
from scoreboard_ingest.errors import ValidationError
from scoreboard_ingest.extraction.schemas import TEAM_SIDES, ScoreboardExtraction
from scoreboard_ingest.ingestion.dedup import DUPLICATE_STATS_NOTE, find_match_by_signature
from scoreboard_ingest.matching.config import MatchingPolicy
from scoreboard_ingest.matching.names import RosterIdentity, map_players
from scoreboard_ingest.models.base import utcnow
from scoreboard_ingest.models.ingest import STATUS_EXTRACTED, ScoreboardIngest
from scoreboard_ingest.models.match import Match, MatchPlayer
from scoreboard_ingest.models.tracked_session import RosterPlayer, TrackedSession

logger = structlog.get_logger()


@dataclass
class MatchRecord:
    """What the pipeline needs to persist a resolved scoreboard."""

    ingest_id: int
    session_id: int
    extraction: ScoreboardExtraction
    derived_match: dict
    signature_key: str
    confidence: float | None = None
    focus_playlist_id: int | None = None


@dataclass
class RecordedMatch:
    match_id: int
    deduped: bool
    session_id: int
    team_id: int | None
    player_ids: list[int | None] = field(default_factory=list)


BeforeCommit = Callable[[AsyncSession, RecordedMatch], Awaitable[None]]


async def load_identities(db: AsyncSession, session_id: int) -> list[RosterIdentity]:
    result = await db.execute(
        sa.select(RosterPlayer).where(RosterPlayer.session_id == session_id).order_by(RosterPlayer.id)
    )
    return [
        RosterIdentity(player_id=p.id, gamertag=p.gamertag, platform=p.platform)
        for p in result.scalars().all()
    ]


async def _bind_existing(db: AsyncSession, record: MatchRecord, match: Match) -> RecordedMatch:
    await db.execute(
        sa.update(ScoreboardIngest)
        .where(ScoreboardIngest.id == record.ingest_id)
        .values(
            status=STATUS_EXTRACTED,
            error_message=DUPLICATE_STATS_NOTE,
            match_id=match.id,
            session_id=match.session_id,
            team_id=match.team_id,
            focus_playlist_id=record.focus_playlist_id,
        )
    )
    return RecordedMatch(
        match_id=match.id, deduped=True, session_id=record.session_id, team_id=match.team_id
    )


async def _insert_and_apply(
    db: AsyncSession,
    record: MatchRecord,
    session: TrackedSession,
    dedupe_key: str | None,
    applier: MatchApplier,
    policy: MatchingPolicy,
) -> RecordedMatch:
    extraction = record.extraction
    winning_team = extraction.match.winning_team
    identities = await load_identities(db, session.id)

    match = Match(
        session_id=session.id,
        team_id=session.team_id,
        source="vision",
        created_at=utcnow(),
        raw_extraction=extraction.model_dump(mode="json"),
        derived_match=record.derived_match,
        extraction_confidence=record.confidence,
        dedupe_key=dedupe_key,
        signature_key=record.signature_key,
    )
    db.add(match)
    await db.flush()

    applied: list[AppliedPlayer] = []
    for side in TEAM_SIDES:
        rows = extraction.teams.side(side)
        mapped = map_players([p.name for p in rows], identities, policy)
        for player, mapping in zip(rows, mapped):
            db.add(
                MatchPlayer(
                    match_id=match.id,
                    player_id=mapping.player_id,
                    extracted_name=player.name,
                    gamertag=mapping.gamertag,
                    platform=mapping.platform,
                    team=side,
                    goals=player.goals,
                    assists=player.assists,
                    saves=player.saves,
                    shots=player.shots,
                    score=player.score,
                    is_winner=(winning_team == side) if winning_team else None,
                    name_match_confidence=mapping.confidence,
                )
            )
            applied.append(
                AppliedPlayer(
                    player_id=mapping.player_id,
                    gamertag=mapping.gamertag,
                    platform=mapping.platform,
                    team=side,
                    goals=player.goals,
                    assists=player.assists,
                    saves=player.saves,
                    shots=player.shots,
                    score=player.score,
                )
            )
    await db.flush()

    await applier.apply(
        db,
        MatchApplication(
            session_id=session.id,
            match_id=match.id,
            match_index=max((session.match_index or 0) + 1, 1),
            created_at=match.created_at,
            winning_team=winning_team,
            players=applied,
        ),
    )

    await db.execute(
        sa.update(ScoreboardIngest)
        .where(ScoreboardIngest.id == record.ingest_id)
        .values(
            status=STATUS_EXTRACTED,
            error_message=None,
            match_id=match.id,
            session_id=session.id,
            team_id=session.team_id,
            focus_playlist_id=record.focus_playlist_id,
        )
    )
    return RecordedMatch(
        match_id=match.id,
        deduped=False,
        session_id=session.id,
        team_id=session.team_id,
        player_ids=[p.player_id for p in applied],
    )


async def record_match(
    session_factory: async_sessionmaker[AsyncSession],
    record: MatchRecord,
    applier: MatchApplier,
    policy: MatchingPolicy | None = None,
    before_commit: BeforeCommit | None = None,
) -> RecordedMatch:
    """Persist *record* exactly once for its session.

    *before_commit* runs inside the recording transaction, after the ingest
    has been stamped, so follow-up rows commit or roll back with the match.

    Raises:
        ValidationError: The target session does not exist or has ended.
    """
    if policy is None:
        policy = MatchingPolicy()
    log = logger.bind(ingest_id=record.ingest_id, session_id=record.session_id)

    async def finish(db: AsyncSession, recorded: RecordedMatch) -> RecordedMatch:
        if before_commit is not None:
            await before_commit(db, recorded)
        return recorded

    try:
        async with session_factory() as db, db.begin():
            existing = await find_match_by_signature(db, record.session_id, record.signature_key)
            if existing is not None:
                log.info("match_signature_duplicate", match_id=existing.id)
                return await finish(db, await _bind_existing(db, record, existing))

            session = await db.get(TrackedSession, record.session_id)
            if session is None or session.is_ended:
                raise ValidationError("Session not found or already ended.", session_id=record.session_id)
            ingest = await db.get(ScoreboardIngest, record.ingest_id)

            recorded = await _insert_and_apply(
                db, record, session, ingest.dedupe_key if ingest else None, applier, policy
            )
            await finish(db, recorded)
    except IntegrityError:
        # Lost the race on (session_id, signature_key): bind to the winner
        async with session_factory() as db, db.begin():
            existing = await find_match_by_signature(db, record.session_id, record.signature_key)
            if existing is None:
                raise
            log.info("match_signature_race_lost", match_id=existing.id)
            return await finish(db, await _bind_existing(db, record, existing))

    log.info("match_recorded", match_id=recorded.match_id, players=len(recorded.player_ids))
    return recorded
