"""Capture-device credentials: issue, authenticate, enable/disable."""

from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass

import sqlalchemy as sa
import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from scoreboard_ingest.errors import Forbidden, NotFound, Unauthenticated
from scoreboard_ingest.models.base import utcnow
from scoreboard_ingest.models.device import ScoreboardDevice

logger = structlog.get_logger()

API_PREFIX = "/api/v1/scoreboard"

# Disabled, unknown and mismatched credentials are indistinguishable to the caller
_INVALID_CREDENTIAL = "Invalid device credentials."


def hash_device_key(device_key: str) -> str:
    return hashlib.sha256(device_key.encode()).hexdigest()


@dataclass
class RegisteredDevice:
    device_id: int
    device_key: str
    poll_url: str
    upload_url: str


def poll_url_for(device_id: int) -> str:
    return f"{API_PREFIX}/devices/{device_id}/context"


async def register_device(
    db: AsyncSession, name: str | None = None, enabled: bool = True
) -> RegisteredDevice:
    """Create a device and return its key.

    The key is shown exactly once; only its SHA-256 is persisted.
    """
    device_key = secrets.token_hex(32)
    device = ScoreboardDevice(
        name=(name or "").strip() or None,
        device_key_hash=hash_device_key(device_key),
        is_enabled=enabled,
    )
    db.add(device)
    await db.commit()

    logger.info("device_registered", device_id=device.id, enabled=enabled)
    return RegisteredDevice(
        device_id=device.id,
        device_key=device_key,
        poll_url=poll_url_for(device.id),
        upload_url=f"{API_PREFIX}/ingest",
    )


async def authenticate_device(
    db: AsyncSession, device_key: str | None, device_id: int | None = None
) -> ScoreboardDevice:
    """Resolve the device behind *device_key* and touch its ``last_seen_at``.

    When *device_id* is given the key must belong to that device.

    Raises:
        Unauthenticated: No key was supplied.
        Forbidden: Unknown device, disabled device, or key mismatch.
    """
    if not device_key:
        raise Unauthenticated("Device key required.")

    key_hash = hash_device_key(device_key)
    if device_id is not None:
        device = await db.get(ScoreboardDevice, device_id)
    else:
        result = await db.execute(
            sa.select(ScoreboardDevice).where(ScoreboardDevice.device_key_hash == key_hash)
        )
        device = result.scalar_one_or_none()

    if (
        device is None
        or not device.is_enabled
        or not hmac.compare_digest(device.device_key_hash, key_hash)
    ):
        logger.warning("device_auth_rejected", device_id=device_id)
        raise Forbidden(_INVALID_CREDENTIAL)

    device.last_seen_at = utcnow()
    await db.commit()
    return device


async def set_device_enabled(db: AsyncSession, device_id: int, enabled: bool) -> ScoreboardDevice:
    device = await db.get(ScoreboardDevice, device_id)
    if device is None:
        raise NotFound("Device not found.", device_id=device_id)
    device.is_enabled = enabled
    await db.commit()
    logger.info("device_enabled_changed", device_id=device_id, enabled=enabled)
    return device


async def list_devices(db: AsyncSession) -> list[ScoreboardDevice]:
    result = await db.execute(sa.select(ScoreboardDevice).order_by(ScoreboardDevice.id))
    return list(result.scalars().all())
