"""Retention cleanup for old ingests and their stored photos.

Matches, match players and snapshots are kept: only the upload side (ingest
rows, their image rows and the files on disk) is removed once it is older
than ``retention_days``.  Unmatched-queue entries stay and lose their
ingest link.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass

import sqlalchemy as sa
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from scoreboard_ingest.ingestion.store import ImageStore
from scoreboard_ingest.models.base import utcnow
from scoreboard_ingest.models.ingest import STATUS_EXTRACTING, ScoreboardIngest, ScoreboardIngestImage
from scoreboard_ingest.models.settings_row import ScoreboardSettings
from scoreboard_ingest.models.unmatched import ScoreboardUnmatched

logger = structlog.get_logger()


@dataclass
class CleanupResult:
    retention_days: int | None
    deleted_ingests: int = 0
    deleted_images: int = 0


async def get_retention_days(db: AsyncSession) -> int | None:
    row = await db.get(ScoreboardSettings, 1)
    if row is None:
        return None
    value = (row.config_json or {}).get("retention_days")
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("retention_days_invalid", value=value)
        return None


async def cleanup_ingests(
    session_factory: async_sessionmaker[AsyncSession],
    store: ImageStore,
    retention_days: int | None = None,
    now: dt.datetime | None = None,
) -> CleanupResult:
    """Delete ingests received more than *retention_days* ago.

    *retention_days* defaults to the stored admin setting.  ``None`` or a
    negative value disables cleanup.  Ingests currently ``extracting`` are
    left alone.
    """
    async with session_factory() as db:
        if retention_days is None:
            retention_days = await get_retention_days(db)
    result = CleanupResult(retention_days=retention_days)
    if retention_days is None or retention_days < 0:
        logger.info("retention_cleanup_skipped", retention_days=retention_days)
        return result

    cutoff = (now or utcnow()) - dt.timedelta(days=retention_days)

    async with session_factory() as db, db.begin():
        rows = await db.execute(
            sa.select(ScoreboardIngest)
            .where(
                ScoreboardIngest.received_at < cutoff,
                ScoreboardIngest.status != STATUS_EXTRACTING,
            )
            .options(selectinload(ScoreboardIngest.images))
        )
        ingests = list(rows.scalars().all())
        if not ingests:
            logger.info("retention_cleanup_complete", retention_days=retention_days, deleted_ingests=0)
            return result

        ids = [ingest.id for ingest in ingests]
        image_paths = {ingest.id: [image.image_path for image in ingest.images] for ingest in ingests}

        # Queue entries outlive their ingest
        await db.execute(
            sa.update(ScoreboardUnmatched)
            .where(ScoreboardUnmatched.ingest_id.in_(ids))
            .values(ingest_id=None)
        )
        await db.execute(sa.delete(ScoreboardIngestImage).where(ScoreboardIngestImage.ingest_id.in_(ids)))
        await db.execute(
            sa.delete(ScoreboardIngest)
            .where(ScoreboardIngest.id.in_(ids))
            .execution_options(synchronize_session=False)
        )

    for ingest_id, paths in image_paths.items():
        store.remove(ingest_id, paths)
        result.deleted_images += len(paths)
    result.deleted_ingests = len(ids)

    logger.info(
        "retention_cleanup_complete",
        retention_days=retention_days,
        cutoff=cutoff.isoformat(),
        deleted_ingests=result.deleted_ingests,
        deleted_images=result.deleted_images,
    )
    return result
