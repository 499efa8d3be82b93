"""Ingest intake and lifecycle bookkeeping.

Uploaded files live on disk under ``<image_dir>/<ingest_id>/``; rows in
``scoreboard_ingests`` and ``scoreboard_ingest_images`` track them.  The
``extracting`` status is the processing lock and is only ever taken with
an atomic conditional UPDATE (:func:`claim_for_processing`).
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path

import sqlalchemy as sa
import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from scoreboard_ingest.errors import Conflict, ValidationError
from scoreboard_ingest.ingestion.dedup import (
    DUPLICATE_IMAGE_NOTE,
    compute_content_key,
    find_ingest_by_dedupe,
    find_match_by_dedupe,
)
from scoreboard_ingest.matching.config import MatchingPolicy
from scoreboard_ingest.models.device import ScoreboardDevice
from scoreboard_ingest.models.ingest import (
    STATUS_EXTRACTED,
    STATUS_EXTRACTING,
    STATUS_RECEIVED,
    ScoreboardIngest,
    ScoreboardIngestImage,
)
from scoreboard_ingest.models.tracked_session import TrackedSession
from scoreboard_ingest.ratelimit.cooldown import Admitted, CooldownCache, CooldownDecision

logger = structlog.get_logger()


@dataclass
class UploadedImage:
    data: bytes
    content_type: str | None = None
    filename: str | None = None

    @property
    def extension(self) -> str:
        if self.content_type and "png" in self.content_type:
            return "png"
        if self.filename and self.filename.lower().endswith(".png"):
            return "png"
        return "jpg"


class ImageStore:
    """Filesystem storage for scoreboard photos, one directory per ingest."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def ingest_dir(self, ingest_id: int) -> Path:
        return self.root / str(ingest_id)

    def save(self, ingest_id: int, position: int, image: UploadedImage) -> Path:
        directory = self.ingest_dir(ingest_id)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"scoreboard-{position}.{image.extension}"
        path.write_bytes(image.data)
        return path

    def remove(self, ingest_id: int, image_paths: list[str] | None = None) -> None:
        for image_path in image_paths or []:
            Path(image_path).unlink(missing_ok=True)
        shutil.rmtree(self.ingest_dir(ingest_id), ignore_errors=True)


@dataclass
class UploadOutcome:
    """Result of an upload attempt.

    Exactly one of ``ingest`` and ``cooldown`` is meaningful: when the
    cooldown refused the upload no ingest was created.
    """

    ingest: ScoreboardIngest | None
    dedupe_key: str
    duplicate: bool = False
    cooldown: CooldownDecision = Admitted()


async def _session_hint(db: AsyncSession, session_id: int | None) -> TrackedSession | None:
    """The requested session, or the most recent active one when it is unknown or over."""
    if session_id is not None:
        session = await db.get(TrackedSession, session_id)
        if session is not None and session.is_active and not session.is_ended:
            return session
        logger.info("ingest_session_hint_ignored", session_id=session_id)
    return await latest_active_session(db)


async def latest_active_session(db: AsyncSession) -> TrackedSession | None:
    result = await db.execute(
        sa.select(TrackedSession)
        .where(TrackedSession.is_active.is_(True), TrackedSession.is_ended.is_(False))
        .order_by(TrackedSession.created_at.desc(), TrackedSession.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def receive_upload(
    db: AsyncSession,
    store: ImageStore,
    device: ScoreboardDevice,
    images: list[UploadedImage],
    session_id: int | None = None,
    cooldown: CooldownCache | None = None,
    max_images: int = 3,
    policy: MatchingPolicy | None = None,
) -> UploadOutcome:
    """Record an upload, short-circuiting exact repeats.

    Order matters: a byte-identical repeat is answered from the existing
    ingest before the cooldown is consulted, so device retries never get
    rate limited.

    Raises:
        ValidationError: No images, or more than *max_images*.
    """
    if not images:
        raise ValidationError("At least one image is required.")
    if len(images) > max_images:
        raise ValidationError(f"At most {max_images} images are allowed.", max_images=max_images)
    if policy is None:
        policy = MatchingPolicy()

    dedupe_key = compute_content_key(images[0].data)
    log = logger.bind(device_id=device.id, dedupe_key=dedupe_key[:12])

    existing = await find_ingest_by_dedupe(db, dedupe_key)
    if existing is not None:
        log.info("ingest_duplicate_upload", ingest_id=existing.id, status=existing.status)
        return UploadOutcome(ingest=existing, dedupe_key=dedupe_key, duplicate=True)

    if cooldown is not None:
        decision = cooldown.check(device.id)
        if not isinstance(decision, Admitted):
            log.info("ingest_rate_limited", decision=type(decision).__name__)
            return UploadOutcome(ingest=None, dedupe_key=dedupe_key, cooldown=decision)

    hint = await _session_hint(db, session_id)
    existing_match = await find_match_by_dedupe(db, dedupe_key)

    if existing_match is not None:
        ingest = ScoreboardIngest(
            device_id=device.id,
            status=STATUS_EXTRACTED,
            error_message=DUPLICATE_IMAGE_NOTE,
            session_id=existing_match.session_id or (hint.id if hint else None),
            team_id=existing_match.team_id,
            dedupe_key=dedupe_key,
            match_id=existing_match.id,
        )
    else:
        ingest = ScoreboardIngest(
            device_id=device.id,
            status=STATUS_RECEIVED,
            session_id=hint.id if hint else None,
            team_id=hint.team_id if hint else None,
            focus_playlist_id=policy.focus_playlist_for_mode(hint.mode) if hint else None,
            dedupe_key=dedupe_key,
        )

    db.add(ingest)
    try:
        await db.flush()
    except IntegrityError:
        # A concurrent upload of the same bytes won the unique dedupe_key
        await db.rollback()
        winner = await find_ingest_by_dedupe(db, dedupe_key)
        if winner is None:
            raise
        log.info("ingest_duplicate_upload", ingest_id=winner.id, status=winner.status, raced=True)
        return UploadOutcome(ingest=winner, dedupe_key=dedupe_key, duplicate=True)

    if existing_match is not None:
        await db.commit()
        log.info("ingest_duplicate_image", ingest_id=ingest.id, match_id=existing_match.id)
        return UploadOutcome(ingest=ingest, dedupe_key=dedupe_key, duplicate=True)

    for position, image in enumerate(images, start=1):
        path = store.save(ingest.id, position, image)
        db.add(ScoreboardIngestImage(ingest_id=ingest.id, image_path=str(path), position=position))
    await db.commit()

    log.info("ingest_received", ingest_id=ingest.id, images=len(images), session_hint=ingest.session_id)
    return UploadOutcome(ingest=ingest, dedupe_key=dedupe_key)


async def claim_for_processing(db: AsyncSession, ingest_id: int) -> None:
    """Move an ingest into ``extracting``.

    Raises:
        Conflict: Another request holds the ingest in ``extracting``, or it
            was matched since the caller last read it.
    """
    result = await db.execute(
        sa.update(ScoreboardIngest)
        .where(
            ScoreboardIngest.id == ingest_id,
            ScoreboardIngest.status != STATUS_EXTRACTING,
            # A matched ingest is never reopened
            sa.or_(ScoreboardIngest.status != STATUS_EXTRACTED, ScoreboardIngest.match_id.is_(None)),
        )
        .values(status=STATUS_EXTRACTING, error_message=None)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    if result.rowcount == 0:
        raise Conflict("Ingest is already processing.", ingest_id=ingest_id, status=STATUS_EXTRACTING)


async def get_ingest(db: AsyncSession, ingest_id: int, with_images: bool = False) -> ScoreboardIngest | None:
    stmt = sa.select(ScoreboardIngest).where(ScoreboardIngest.id == ingest_id)
    if with_images:
        stmt = stmt.options(selectinload(ScoreboardIngest.images))
    # Status is flipped by bulk UPDATEs; never trust a cached identity
    stmt = stmt.execution_options(populate_existing=True)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def latest_ingest_for_device(db: AsyncSession, device_id: int) -> ScoreboardIngest | None:
    result = await db.execute(
        sa.select(ScoreboardIngest)
        .where(ScoreboardIngest.device_id == device_id)
        .order_by(ScoreboardIngest.received_at.desc(), ScoreboardIngest.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_ingests(db: AsyncSession, limit: int = 50) -> list[ScoreboardIngest]:
    result = await db.execute(
        sa.select(ScoreboardIngest)
        .order_by(ScoreboardIngest.received_at.desc(), ScoreboardIngest.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
