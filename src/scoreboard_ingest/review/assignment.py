"""Unmatched queue and manual session assignment."""

from __future__ import annotations

from dataclasses import dataclass

import pydantic
import sqlalchemy as sa
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scoreboard_ingest.application.applier import MatchApplier
from scoreboard_ingest.application.recorder import MatchRecord, RecordedMatch, record_match
from scoreboard_ingest.errors import Conflict, NotFound, ValidationError
from scoreboard_ingest.extraction.deriver import derive_match
from scoreboard_ingest.extraction.schemas import ScoreboardExtraction
from scoreboard_ingest.extraction.signature import build_dedupe_signature
from scoreboard_ingest.matching.config import MatchingPolicy
from scoreboard_ingest.matching.resolver import SessionResolution
from scoreboard_ingest.models.ingest import STATUS_EXTRACTED, STATUS_EXTRACTING, ScoreboardIngest
from scoreboard_ingest.models.tracked_session import TrackedSession
from scoreboard_ingest.models.unmatched import (
    UNMATCHED_ASSIGNED,
    UNMATCHED_PENDING,
    ScoreboardUnmatched,
)

logger = structlog.get_logger()


async def get_unmatched_for_ingest(db: AsyncSession, ingest_id: int) -> ScoreboardUnmatched | None:
    result = await db.execute(
        sa.select(ScoreboardUnmatched).where(ScoreboardUnmatched.ingest_id == ingest_id)
    )
    return result.scalar_one_or_none()


async def enqueue_unmatched(
    db: AsyncSession,
    ingest_id: int,
    resolution: SessionResolution,
    extraction: ScoreboardExtraction,
    derived_match: dict,
    signature_key: str,
    confidence: float | None = None,
) -> ScoreboardUnmatched:
    """Create the queue entry for *ingest_id*, or refresh its candidates.

    One entry per ingest: re-processing the same ingest never adds a second
    row.  The caller owns the transaction.
    """
    candidates = [c.to_dict() for c in resolution.candidates]
    entry = await get_unmatched_for_ingest(db, ingest_id)
    if entry is not None:
        entry.candidates = candidates
        logger.info("unmatched_refreshed", ingest_id=ingest_id, unmatched_id=entry.id)
        return entry

    entry = ScoreboardUnmatched(
        ingest_id=ingest_id,
        status=UNMATCHED_PENDING,
        mode=resolution.mode,
        team_size=resolution.team_size,
        blue_names=resolution.blue_names,
        orange_names=resolution.orange_names,
        candidates=candidates,
        raw_extraction=extraction.model_dump(mode="json"),
        derived_match=derived_match,
        signature_key=signature_key,
        extraction_confidence=confidence,
    )
    db.add(entry)
    await db.flush()
    logger.info("unmatched_enqueued", ingest_id=ingest_id, unmatched_id=entry.id)
    return entry


async def close_unmatched_for_ingest(db: AsyncSession, ingest_id: int, session_id: int) -> None:
    """Mark the pending queue entry of *ingest_id* assigned, if there is one.

    Called when a re-processed ingest is matched automatically; the caller
    owns the transaction.
    """
    result = await db.execute(
        sa.update(ScoreboardUnmatched)
        .where(
            ScoreboardUnmatched.ingest_id == ingest_id,
            ScoreboardUnmatched.status == UNMATCHED_PENDING,
        )
        .values(status=UNMATCHED_ASSIGNED, assigned_session_id=session_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        logger.info("unmatched_closed", ingest_id=ingest_id, session_id=session_id)


async def list_unmatched(
    db: AsyncSession, status: str | None = UNMATCHED_PENDING, limit: int = 50
) -> list[ScoreboardUnmatched]:
    stmt = sa.select(ScoreboardUnmatched)
    if status is not None:
        stmt = stmt.where(ScoreboardUnmatched.status == status)
    stmt = stmt.order_by(ScoreboardUnmatched.created_at.desc(), ScoreboardUnmatched.id.desc())
    result = await db.execute(stmt.limit(limit))
    return list(result.scalars().all())


@dataclass
class AssignmentResult:
    unmatched_id: int
    ingest_id: int
    session_id: int
    match_id: int
    deduped: bool


async def assign_unmatched(
    session_factory: async_sessionmaker[AsyncSession],
    unmatched_id: int,
    session_id: int,
    applier: MatchApplier,
    policy: MatchingPolicy | None = None,
) -> AssignmentResult:
    """Bind a queued scoreboard to *session_id* chosen by an operator.

    Uses the cached extraction; the vision service is not called again.

    Raises:
        NotFound: Unknown queue entry, or its ingest is gone.
        ValidationError: Session missing or ended, or the cached extraction
            no longer validates.
        Conflict: The ingest is being processed right now.
    """
    if policy is None:
        policy = MatchingPolicy()
    log = logger.bind(unmatched_id=unmatched_id, session_id=session_id)

    async with session_factory() as db:
        entry = await db.get(ScoreboardUnmatched, unmatched_id)
        if entry is None:
            raise NotFound("Unmatched ingest not found.", unmatched_id=unmatched_id)
        ingest = await db.get(ScoreboardIngest, entry.ingest_id) if entry.ingest_id else None
        if ingest is None:
            raise NotFound("Ingest not found.", ingest_id=entry.ingest_id)

        if ingest.status == STATUS_EXTRACTED and ingest.match_id is not None:
            # Matched already, by an operator or by re-processing
            log.info("unmatched_already_assigned", match_id=ingest.match_id, entry_status=entry.status)
            return AssignmentResult(
                unmatched_id=entry.id,
                ingest_id=ingest.id,
                session_id=entry.assigned_session_id or ingest.session_id,
                match_id=ingest.match_id,
                deduped=False,
            )
        if ingest.status == STATUS_EXTRACTING:
            raise Conflict("Ingest is already processing.", ingest_id=ingest.id)

        session = await db.get(TrackedSession, session_id)
        if session is None or session.is_ended:
            raise ValidationError("Session not found or already ended.", session_id=session_id)

        try:
            extraction = ScoreboardExtraction.model_validate(entry.raw_extraction or {})
        except pydantic.ValidationError as exc:
            raise ValidationError("Stored extraction is invalid.", unmatched_id=unmatched_id) from exc

        record = MatchRecord(
            ingest_id=ingest.id,
            session_id=session.id,
            extraction=extraction,
            derived_match=entry.derived_match or derive_match(extraction).model_dump(mode="json"),
            signature_key=entry.signature_key or build_dedupe_signature(extraction),
            confidence=entry.extraction_confidence,
            focus_playlist_id=policy.focus_playlist_for_mode(session.mode),
        )

    async def mark_assigned(db: AsyncSession, recorded: RecordedMatch) -> None:
        await db.execute(
            sa.update(ScoreboardUnmatched)
            .where(ScoreboardUnmatched.id == unmatched_id)
            .values(status=UNMATCHED_ASSIGNED, assigned_session_id=session_id)
        )

    recorded = await record_match(session_factory, record, applier, policy, before_commit=mark_assigned)
    log.info(
        "unmatched_assigned",
        ingest_id=record.ingest_id,
        match_id=recorded.match_id,
        deduped=recorded.deduped,
        status=STATUS_EXTRACTED,
    )
    return AssignmentResult(
        unmatched_id=unmatched_id,
        ingest_id=record.ingest_id,
        session_id=session_id,
        match_id=recorded.match_id,
        deduped=recorded.deduped,
    )
