"""Operator endpoints: devices, ingests, the unmatched queue, audit and settings."""

from __future__ import annotations

import math
from datetime import datetime, timezone

import pydantic
import sqlalchemy as sa
import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scoreboard_ingest.api.deps import (
    get_applier,
    get_db,
    get_db_session_factory,
    get_processor,
    require_admin,
)
from scoreboard_ingest.api.schemas import (
    AssignRequest,
    AssignResponse,
    AuditEntry,
    AuditSummary,
    DeviceSummary,
    EnableRequest,
    EnableResponse,
    IngestSummary,
    PaginatedResponse,
    ProcessResponse,
    SettingsResponse,
    SettingsUpdateRequest,
    UnmatchedSummary,
    settings_to_response,
)
from scoreboard_ingest.application.applier import MatchApplier
from scoreboard_ingest.config.encryption import encrypt_value
from scoreboard_ingest.config.settings import Settings, get_settings
from scoreboard_ingest.devices.registry import API_PREFIX, list_devices, set_device_enabled
from scoreboard_ingest.errors import ValidationError
from scoreboard_ingest.extraction.cost_tracker import get_period_summary
from scoreboard_ingest.ingestion.processor import IngestProcessor
from scoreboard_ingest.ingestion.store import list_ingests
from scoreboard_ingest.matching.config import ScoreboardConfig, _deep_merge, load_config_for_run
from scoreboard_ingest.models.audit import ScoreboardAudit
from scoreboard_ingest.models.settings_row import ScoreboardSettings
from scoreboard_ingest.review.assignment import assign_unmatched, list_unmatched

logger = structlog.get_logger()

router = APIRouter(
    prefix=f"{API_PREFIX}/admin", tags=["admin"], dependencies=[Depends(require_admin)]
)


@router.get("/devices", response_model=list[DeviceSummary])
async def admin_list_devices(db: AsyncSession = Depends(get_db)) -> list[DeviceSummary]:
    return [DeviceSummary.model_validate(d) for d in await list_devices(db)]


@router.post("/devices/{device_id}/enable", response_model=EnableResponse)
async def admin_enable_device(
    device_id: int,
    request: EnableRequest,
    db: AsyncSession = Depends(get_db),
) -> EnableResponse:
    """Enable or disable a device. Disabling keeps its completed ingests."""
    device = await set_device_enabled(db, device_id, request.enabled)
    return EnableResponse(device_id=device.id, enabled=device.is_enabled)


@router.get("/ingests", response_model=list[IngestSummary])
async def admin_list_ingests(
    db: AsyncSession = Depends(get_db),
    limit: int = Query(default=50, ge=1, le=500),
) -> list[IngestSummary]:
    return [IngestSummary.model_validate(i) for i in await list_ingests(db, limit)]


@router.post(
    "/ingests/{ingest_id}/process", response_model=ProcessResponse, response_model_exclude_none=True
)
async def admin_process_ingest(
    ingest_id: int,
    processor: IngestProcessor = Depends(get_processor),
):
    """Process (or re-process) any ingest regardless of the owning device."""
    result = await processor.process(ingest_id, device_id=None)
    if result.http_status != 200:
        return JSONResponse(status_code=result.http_status, content=result.to_body())
    return ProcessResponse(**result.to_body())


@router.get("/unmatched", response_model=list[UnmatchedSummary])
async def admin_list_unmatched(
    db: AsyncSession = Depends(get_db),
    status: str | None = Query(default="pending"),
    limit: int = Query(default=50, ge=1, le=500),
) -> list[UnmatchedSummary]:
    """Queue entries, newest first. Pass ``status=`` (empty) for all entries."""
    rows = await list_unmatched(db, status=status or None, limit=limit)
    return [UnmatchedSummary.model_validate(row) for row in rows]


@router.post("/unmatched/{unmatched_id}/assign", response_model=AssignResponse)
async def admin_assign_unmatched(
    unmatched_id: int,
    request: AssignRequest,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),
    applier: MatchApplier = Depends(get_applier),
    settings: Settings = Depends(get_settings),
) -> AssignResponse:
    """Bind a queued scoreboard to a session chosen by the operator."""
    config = await load_config_for_run(
        session_factory, settings.matching_config_path, settings.gemini_api_key, settings.vision_model
    )
    result = await assign_unmatched(
        session_factory, unmatched_id, request.session_id, applier, config.policy
    )
    return AssignResponse(
        unmatched_id=result.unmatched_id,
        ingest_id=result.ingest_id,
        session_id=result.session_id,
        match_id=result.match_id,
        deduped=result.deduped,
    )


@router.get("/audit", response_model=PaginatedResponse[AuditEntry])
async def admin_list_audit(
    db: AsyncSession = Depends(get_db),
    page: int = Query(default=1, ge=1),
    size: int = Query(default=20, ge=1, le=100),
    ingest_id: int | None = None,
    device_id: int | None = None,
    success: bool | None = None,
) -> PaginatedResponse[AuditEntry]:
    """Paginated processing audit, filterable by ingest, device and outcome."""
    stmt = sa.select(ScoreboardAudit)
    if ingest_id is not None:
        stmt = stmt.where(ScoreboardAudit.ingest_id == ingest_id)
    if device_id is not None:
        stmt = stmt.where(ScoreboardAudit.device_id == device_id)
    if success is not None:
        stmt = stmt.where(ScoreboardAudit.success.is_(success))
    stmt = stmt.order_by(ScoreboardAudit.created_at.desc(), ScoreboardAudit.id.desc())

    # Count total
    count_stmt = sa.select(sa.func.count()).select_from(stmt.subquery())
    total = (await db.execute(count_stmt)).scalar_one()

    # Paginate
    result = await db.execute(stmt.offset((page - 1) * size).limit(size))
    items = [AuditEntry.model_validate(entry) for entry in result.scalars().all()]
    pages = math.ceil(total / size) if total > 0 else 1

    return PaginatedResponse(items=items, total=total, page=page, size=size, pages=pages)


@router.get("/audit/summary", response_model=AuditSummary)
async def admin_audit_summary(
    db: AsyncSession = Depends(get_db),
    since: datetime | None = None,
) -> AuditSummary:
    """Attempts, failures, tokens and estimated cost, optionally since a timestamp."""
    if since is not None and since.tzinfo is not None:
        since = since.astimezone(timezone.utc).replace(tzinfo=None)
    return AuditSummary(**await get_period_summary(db, since))


async def _load_settings_row(db: AsyncSession) -> ScoreboardSettings | None:
    result = await db.execute(sa.select(ScoreboardSettings).where(ScoreboardSettings.id == 1))
    return result.scalar_one_or_none()


@router.get("/settings", response_model=SettingsResponse)
async def admin_get_settings(db: AsyncSession = Depends(get_db)) -> SettingsResponse:
    """Return the admin-editable settings. The vision API key is never included."""
    row = await _load_settings_row(db)
    if row is None:
        return settings_to_response(ScoreboardConfig())

    config = ScoreboardConfig(**(row.config_json or {}))
    return settings_to_response(
        config,
        has_api_key=row.encrypted_api_key is not None,
        updated_at=row.updated_at.isoformat() if row.updated_at else None,
    )


@router.patch("/settings", response_model=SettingsResponse)
async def admin_patch_settings(
    body: SettingsUpdateRequest,
    db: AsyncSession = Depends(get_db),
) -> SettingsResponse:
    """Apply a partial settings update.

    Only fields present in the body change.  ``retention_days`` must be
    non-negative and is floored; ``null`` disables retention cleanup.
    """
    row = await _load_settings_row(db)
    current = ScoreboardConfig(**(row.config_json or {})) if row is not None else ScoreboardConfig()

    update_data = body.model_dump(exclude_unset=True, exclude={"vision_api_key"})
    if "retention_days" in update_data and update_data["retention_days"] is not None:
        retention = update_data["retention_days"]
        if not math.isfinite(retention) or retention < 0:
            raise ValidationError("retention_days must be a positive number.")
        update_data["retention_days"] = math.floor(retention)

    merged = _deep_merge(current.model_dump(), update_data)
    try:
        new_config = ScoreboardConfig(**merged)
    except pydantic.ValidationError as exc:
        raise ValidationError("Invalid settings.", detail=[err["msg"] for err in exc.errors()]) from exc

    # The key never travels inside config_json
    config_dict = new_config.model_dump(mode="json")
    config_dict.get("vision", {}).pop("api_key", None)

    encrypted_api_key = row.encrypted_api_key if row else None
    if body.vision_api_key is not None:
        if body.vision_api_key == "":
            encrypted_api_key = None
            logger.info("api_key_cleared")
        else:
            encrypted_api_key = encrypt_value(body.vision_api_key)
            logger.info("api_key_updated")

    now = datetime.now(timezone.utc).replace(tzinfo=None)
    if row is None:
        row = ScoreboardSettings(
            id=1,
            config_json=config_dict,
            encrypted_api_key=encrypted_api_key,
            updated_at=now,
            updated_by="api",
        )
        db.add(row)
    else:
        row.config_json = config_dict
        row.encrypted_api_key = encrypted_api_key
        row.updated_at = now
        row.updated_by = "api"

    await db.commit()
    logger.info("settings_updated", retention_days=new_config.retention_days)

    return settings_to_response(
        new_config,
        has_api_key=encrypted_api_key is not None,
        updated_at=now.isoformat(),
    )
