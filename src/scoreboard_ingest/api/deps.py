"""FastAPI dependency injection: DB sessions, collaborators and auth."""

import hmac
from collections.abc import AsyncGenerator

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scoreboard_ingest.application.applier import MatchApplier, SnapshotMatchApplier
from scoreboard_ingest.config.settings import Settings, get_settings
from scoreboard_ingest.db.session import get_session_factory
from scoreboard_ingest.devices.registry import authenticate_device
from scoreboard_ingest.errors import Unauthenticated
from scoreboard_ingest.extraction.client import GeminiVisionExtractor
from scoreboard_ingest.ingestion.processor import ExtractorFactory, IngestProcessor
from scoreboard_ingest.ingestion.store import ImageStore
from scoreboard_ingest.models.device import ScoreboardDevice
from scoreboard_ingest.ratelimit.cooldown import CooldownCache


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async DB session for request handling."""
    factory = get_session_factory()
    async with factory() as session:
        yield session


def get_db_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for services that manage their own transactions."""
    return get_session_factory()


def get_extractor_factory() -> ExtractorFactory:
    return GeminiVisionExtractor


def get_applier() -> MatchApplier:
    return SnapshotMatchApplier()


def get_image_store(settings: Settings = Depends(get_settings)) -> ImageStore:
    return ImageStore(settings.image_dir)


def get_cooldown(request: Request) -> CooldownCache:
    return request.app.state.cooldown


def get_processor(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),
    extractor_factory: ExtractorFactory = Depends(get_extractor_factory),
    applier: MatchApplier = Depends(get_applier),
    settings: Settings = Depends(get_settings),
) -> IngestProcessor:
    return IngestProcessor(
        session_factory,
        extractor_factory,
        applier,
        yaml_path=settings.matching_config_path,
        env_api_key=settings.gemini_api_key,
        env_model=settings.vision_model,
    )


def get_device_key(
    authorization: str | None = Header(default=None),
    x_device_key: str | None = Header(default=None),
) -> str | None:
    """Device key from ``Authorization: Bearer <key>`` or ``X-Device-Key``."""
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return x_device_key or None


async def require_device(
    device_key: str | None = Depends(get_device_key),
    db: AsyncSession = Depends(get_db),
) -> ScoreboardDevice:
    """Authenticate the calling device by its key alone."""
    return await authenticate_device(db, device_key)


async def require_path_device(
    device_id: int,
    device_key: str | None = Depends(get_device_key),
    db: AsyncSession = Depends(get_db),
) -> ScoreboardDevice:
    """Authenticate the device named in the URL path."""
    return await authenticate_device(db, device_key, device_id=device_id)


def require_admin(
    x_admin_token: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Guard admin routes with ``X-Admin-Token`` when a token is configured."""
    if settings.admin_token and not hmac.compare_digest(x_admin_token or "", settings.admin_token):
        raise Unauthenticated("Admin token required.")
