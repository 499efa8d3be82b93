"""Pydantic request/response schemas for the scoreboard API."""

from __future__ import annotations

import datetime as dt
from typing import Annotated, Any, Generic, TypeVar

from pydantic import BaseModel, BeforeValidator, ConfigDict

from scoreboard_ingest.matching.config import ScoreboardConfig


def _coerce_to_str(v: object) -> str | None:
    """Coerce date/time objects to ISO string for schema output."""
    if v is None:
        return None
    if isinstance(v, (dt.date, dt.time)):
        return v.isoformat()
    return str(v)


DateStr = Annotated[str, BeforeValidator(_coerce_to_str)]
OptDateStr = Annotated[str | None, BeforeValidator(_coerce_to_str)]

T = TypeVar("T")


class PaginatedResponse(BaseModel, Generic[T]):
    items: list[T]
    total: int
    page: int
    size: int
    pages: int


# --- Device-facing schemas ---


class RegisterRequest(BaseModel):
    name: str | None = None


class RegisterResponse(BaseModel):
    device_id: int
    device_key: str
    poll_url: str
    upload_url: str


class DeviceSummary(BaseModel):
    """Device record as shown to admins and to the device itself (never the hash)."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str | None = None
    is_enabled: bool
    created_at: OptDateStr = None
    last_seen_at: OptDateStr = None


class FocusInfo(BaseModel):
    playlist_id: int
    playlist_name: str


class ActiveSessionInfo(BaseModel):
    session_id: int
    team_id: int | None = None
    team_name: str | None = None
    mode: str
    focus: FocusInfo


class PlayerIdentity(BaseModel):
    gamertag: str
    platform: str


class IngestHints(BaseModel):
    cooldown_seconds: float
    max_images: int


class DeviceContextResponse(BaseModel):
    server_time: str
    active_session: ActiveSessionInfo | None = None
    player_identities: dict[int, PlayerIdentity] = {}
    ingest_hints: IngestHints


class IngestSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    device_id: int
    status: str
    received_at: OptDateStr = None
    error_message: str | None = None
    session_id: int | None = None
    team_id: int | None = None
    focus_playlist_id: int | None = None
    match_id: int | None = None
    dedupe_key: str | None = None


class DeviceStatusResponse(BaseModel):
    server_time: str
    device: DeviceSummary
    last_ingest: IngestSummary | None = None


class UploadResponse(BaseModel):
    ingest_id: int
    status: str
    dedupe_key: str | None = None


class ProcessResponse(BaseModel):
    ingest_id: int
    status: str
    match_id: int | None = None
    error: str | None = None


class IngestStatusResponse(BaseModel):
    ingest_id: int
    status: str
    error_message: str | None = None
    match_id: int | None = None


class MatchSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    session_id: int | None = None
    team_id: int | None = None
    source: str
    created_at: OptDateStr = None
    extraction_confidence: float | None = None
    dedupe_key: str | None = None
    signature_key: str | None = None


class MatchPlayerSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    player_id: int | None = None
    extracted_name: str | None = None
    gamertag: str
    platform: str
    team: str
    goals: int | None = None
    assists: int | None = None
    saves: int | None = None
    shots: int | None = None
    score: int | None = None
    is_winner: bool | None = None
    name_match_confidence: float | None = None


class IngestDetailResponse(BaseModel):
    ingest: IngestSummary
    match: MatchSummary | None = None
    players: list[MatchPlayerSchema] = []
    raw_extraction: dict | None = None
    derived_match: dict | None = None


# --- Admin schemas ---


class EnableRequest(BaseModel):
    enabled: bool


class EnableResponse(BaseModel):
    ok: bool = True
    device_id: int
    enabled: bool


class UnmatchedSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    ingest_id: int | None = None
    created_at: OptDateStr = None
    status: str
    mode: str | None = None
    team_size: int | None = None
    blue_names: list[str] = []
    orange_names: list[str] = []
    candidates: list[dict[str, Any]] = []
    assigned_session_id: int | None = None


class AssignRequest(BaseModel):
    session_id: int


class AssignResponse(BaseModel):
    unmatched_id: int
    ingest_id: int
    session_id: int
    match_id: int
    deduped: bool


class AuditEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    device_id: int | None = None
    ingest_id: int | None = None
    session_id: int | None = None
    team_id: int | None = None
    model: str | None = None
    input_tokens: int | None = None
    cached_input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None
    estimated_cost_usd: float | None = None
    success: bool
    outcome: str | None = None
    error: str | None = None
    created_at: OptDateStr = None


class AuditSummary(BaseModel):
    since: str | None = None
    attempts: int
    failures: int
    total_tokens: int
    estimated_cost_usd: float


class VisionSettingsResponse(BaseModel):
    """Vision settings returned to admins, without the api_key."""

    model: str
    temperature: float
    max_output_tokens: int
    retry_on_sparse_result: bool
    cost_per_1m_input_tokens: float
    cost_per_1m_cached_input_tokens: float
    cost_per_1m_output_tokens: float


class SettingsResponse(BaseModel):
    retention_days: int | None = None
    policy: dict[str, Any]
    vision: VisionSettingsResponse
    has_api_key: bool = False
    updated_at: str | None = None


class SettingsUpdateRequest(BaseModel):
    """Partial update payload for PATCH /admin/settings.

    ``retention_days`` is floored; ``null`` disables cleanup.  A non-empty
    ``vision_api_key`` is stored encrypted, an empty string clears it.
    """

    retention_days: float | None = None
    policy: dict[str, Any] | None = None
    vision: dict[str, Any] | None = None
    vision_api_key: str | None = None


def settings_to_response(
    config: ScoreboardConfig,
    has_api_key: bool = False,
    updated_at: str | None = None,
) -> SettingsResponse:
    """Build the admin settings view, dropping the secret ``api_key``."""
    vision = config.vision.model_dump()
    vision.pop("api_key", None)
    return SettingsResponse(
        retention_days=config.retention_days,
        policy=config.policy.model_dump(),
        vision=VisionSettingsResponse(**vision),
        has_api_key=has_api_key,
        updated_at=updated_at,
    )
