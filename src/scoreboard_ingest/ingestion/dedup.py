"""Duplicate suppression lookups.

Two independent keys guard against applying the same match twice:

* the *content key*, the SHA-256 of the first uploaded image, catches a
  device re-sending byte-identical files;
* the *signature key*, built from the interpreted board (see
  :mod:`scoreboard_ingest.extraction.signature`), catches a different photo
  of a board that was already recorded in the same session.
"""

from __future__ import annotations

import hashlib

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from scoreboard_ingest.models.ingest import ScoreboardIngest
from scoreboard_ingest.models.match import Match

DUPLICATE_IMAGE_NOTE = "Duplicate scoreboard image."
DUPLICATE_STATS_NOTE = "Duplicate scoreboard stats."


def compute_content_key(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


async def find_ingest_by_dedupe(db: AsyncSession, dedupe_key: str) -> ScoreboardIngest | None:
    result = await db.execute(
        sa.select(ScoreboardIngest).where(ScoreboardIngest.dedupe_key == dedupe_key)
    )
    return result.scalar_one_or_none()


async def find_match_by_dedupe(db: AsyncSession, dedupe_key: str) -> Match | None:
    result = await db.execute(
        sa.select(Match).where(Match.dedupe_key == dedupe_key).order_by(Match.id).limit(1)
    )
    return result.scalar_one_or_none()


async def find_match_by_signature(
    db: AsyncSession, session_id: int, signature_key: str
) -> Match | None:
    """Return the match already recorded for this board in *session_id*, if any."""
    result = await db.execute(
        sa.select(Match).where(
            Match.session_id == session_id,
            Match.signature_key == signature_key,
        )
    )
    return result.scalar_one_or_none()
