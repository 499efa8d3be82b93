"""Device-facing endpoints: registration, polling context and status."""

from __future__ import annotations

import datetime as dt

import sqlalchemy as sa
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from scoreboard_ingest.api.deps import get_db, require_path_device
from scoreboard_ingest.api.schemas import (
    ActiveSessionInfo,
    DeviceContextResponse,
    DeviceStatusResponse,
    DeviceSummary,
    FocusInfo,
    IngestHints,
    IngestSummary,
    PlayerIdentity,
    RegisterRequest,
    RegisterResponse,
)
from scoreboard_ingest.config.settings import Settings, get_settings
from scoreboard_ingest.devices.registry import API_PREFIX, register_device
from scoreboard_ingest.ingestion.store import latest_active_session, latest_ingest_for_device
from scoreboard_ingest.matching.config import MatchingPolicy
from scoreboard_ingest.models.device import ScoreboardDevice
from scoreboard_ingest.models.tracked_session import RosterPlayer, Team

router = APIRouter(prefix=f"{API_PREFIX}/devices", tags=["devices"])


def _server_time() -> str:
    return dt.datetime.now(dt.UTC).isoformat()


@router.post("/register", response_model=RegisterResponse)
async def register(
    request: RegisterRequest | None = None,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> RegisterResponse:
    """Issue a new device key. The key is returned only in this response."""
    registered = await register_device(
        db, request.name if request else None, enabled=settings.auto_enable_devices
    )
    return RegisterResponse(
        device_id=registered.device_id,
        device_key=registered.device_key,
        poll_url=registered.poll_url,
        upload_url=registered.upload_url,
    )


@router.get("/{device_id}/context", response_model=DeviceContextResponse)
async def device_context(
    device: ScoreboardDevice = Depends(require_path_device),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> DeviceContextResponse:
    """What the capture device needs to know before its next upload."""
    hints = IngestHints(
        cooldown_seconds=settings.upload_cooldown_seconds, max_images=settings.max_images
    )
    session = await latest_active_session(db)
    if session is None:
        return DeviceContextResponse(server_time=_server_time(), ingest_hints=hints)

    team = await db.get(Team, session.team_id) if session.team_id else None
    roster = await db.execute(
        sa.select(RosterPlayer).where(RosterPlayer.session_id == session.id).order_by(RosterPlayer.id)
    )
    identities = {
        player.id: PlayerIdentity(gamertag=player.gamertag, platform=player.platform)
        for player in roster.scalars().all()
    }

    return DeviceContextResponse(
        server_time=_server_time(),
        active_session=ActiveSessionInfo(
            session_id=session.id,
            team_id=session.team_id,
            team_name=team.name if team else None,
            mode=session.mode,
            focus=FocusInfo(
                playlist_id=MatchingPolicy().focus_playlist_for_mode(session.mode),
                playlist_name=session.mode,
            ),
        ),
        player_identities=identities,
        ingest_hints=hints,
    )


@router.get("/{device_id}/status", response_model=DeviceStatusResponse)
async def device_status(
    device: ScoreboardDevice = Depends(require_path_device),
    db: AsyncSession = Depends(get_db),
) -> DeviceStatusResponse:
    last_ingest = await latest_ingest_for_device(db, device.id)
    return DeviceStatusResponse(
        server_time=_server_time(),
        device=DeviceSummary.model_validate(device),
        last_ingest=IngestSummary.model_validate(last_ingest) if last_ingest else None,
    )
