"""Device-facing ingest endpoints: upload, process, status, detail."""

from __future__ import annotations

import math

import sqlalchemy as sa
from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from scoreboard_ingest.api.deps import (
    get_cooldown,
    get_db,
    get_image_store,
    get_processor,
    require_device,
)
from scoreboard_ingest.api.schemas import (
    IngestDetailResponse,
    IngestStatusResponse,
    IngestSummary,
    MatchPlayerSchema,
    MatchSummary,
    ProcessResponse,
    UploadResponse,
)
from scoreboard_ingest.config.settings import Settings, get_settings
from scoreboard_ingest.devices.registry import API_PREFIX
from scoreboard_ingest.errors import Forbidden, NotFound
from scoreboard_ingest.ingestion.processor import IngestProcessor
from scoreboard_ingest.ingestion.store import ImageStore, UploadedImage, get_ingest, receive_upload
from scoreboard_ingest.models.device import ScoreboardDevice
from scoreboard_ingest.models.match import Match, MatchPlayer
from scoreboard_ingest.ratelimit.cooldown import CooldownCache, RateLimited

router = APIRouter(prefix=f"{API_PREFIX}/ingest", tags=["ingest"])


@router.post("", response_model=UploadResponse, response_model_exclude_none=True)
async def upload(
    images: list[UploadFile] | None = File(default=None),
    session_id: int | None = Form(default=None),
    device: ScoreboardDevice = Depends(require_device),
    db: AsyncSession = Depends(get_db),
    store: ImageStore = Depends(get_image_store),
    cooldown: CooldownCache = Depends(get_cooldown),
    settings: Settings = Depends(get_settings),
):
    """Accept up to ``max_images`` scoreboard photos (multipart field ``images``)."""
    uploaded = [
        UploadedImage(data=await f.read(), content_type=f.content_type, filename=f.filename)
        for f in images or []
    ]
    outcome = await receive_upload(
        db,
        store,
        device,
        uploaded,
        session_id=session_id,
        cooldown=cooldown,
        max_images=settings.max_images,
    )

    if outcome.ingest is None:
        decision = outcome.cooldown
        if isinstance(decision, RateLimited):
            return JSONResponse(
                status_code=429,
                content={
                    "error": "Upload cooldown active.",
                    "code": "RATE_LIMITED",
                    "retry_after_ms": decision.retry_after_ms,
                },
                headers={"Retry-After": str(math.ceil(decision.retry_after_ms / 1000))},
            )
        return JSONResponse(
            status_code=429, content={"error": decision.reason, "code": "RATE_LIMITED"}
        )

    return UploadResponse(
        ingest_id=outcome.ingest.id,
        status=outcome.ingest.status,
        dedupe_key=outcome.dedupe_key if outcome.duplicate else None,
    )


@router.post("/{ingest_id}/process", response_model=ProcessResponse, response_model_exclude_none=True)
async def process(
    ingest_id: int,
    device: ScoreboardDevice = Depends(require_device),
    processor: IngestProcessor = Depends(get_processor),
):
    """Run extraction and session resolution for one of this device's ingests."""
    result = await processor.process(ingest_id, device_id=device.id)
    if result.http_status != 200:
        return JSONResponse(status_code=result.http_status, content=result.to_body())
    return ProcessResponse(**result.to_body())


@router.get("/{ingest_id}", response_model=IngestStatusResponse)
async def ingest_status(
    ingest_id: int,
    device: ScoreboardDevice = Depends(require_device),
    db: AsyncSession = Depends(get_db),
) -> IngestStatusResponse:
    ingest = await get_ingest(db, ingest_id)
    if ingest is None:
        raise NotFound("Ingest not found.", ingest_id=ingest_id)
    return IngestStatusResponse(
        ingest_id=ingest.id,
        status=ingest.status,
        error_message=ingest.error_message,
        match_id=ingest.match_id,
    )


@router.get("/{ingest_id}/detail", response_model=IngestDetailResponse)
async def ingest_detail(
    ingest_id: int,
    device: ScoreboardDevice = Depends(require_device),
    db: AsyncSession = Depends(get_db),
) -> IngestDetailResponse:
    """Ingest plus its match, match players and extraction payloads."""
    ingest = await get_ingest(db, ingest_id)
    if ingest is None:
        raise NotFound("Ingest not found.", ingest_id=ingest_id)
    if ingest.device_id != device.id:
        raise Forbidden("Device does not own ingest.", ingest_id=ingest_id)

    match = await db.get(Match, ingest.match_id) if ingest.match_id else None
    players = []
    if match is not None:
        rows = await db.execute(
            sa.select(MatchPlayer).where(MatchPlayer.match_id == match.id).order_by(MatchPlayer.id)
        )
        players = [MatchPlayerSchema.model_validate(p) for p in rows.scalars().all()]

    return IngestDetailResponse(
        ingest=IngestSummary.model_validate(ingest),
        match=MatchSummary.model_validate(match) if match else None,
        players=players,
        raw_extraction=match.raw_extraction if match else None,
        derived_match=match.derived_match if match else None,
    )
