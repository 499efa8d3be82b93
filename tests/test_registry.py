"""Tests for device registration and authentication."""

import pytest

from scoreboard_ingest.devices.registry import (
    authenticate_device,
    hash_device_key,
    list_devices,
    register_device,
    set_device_enabled,
)
from scoreboard_ingest.errors import Forbidden, NotFound, Unauthenticated
from scoreboard_ingest.models.device import ScoreboardDevice


async def test_register_returns_key_once(test_session_factory):
    async with test_session_factory() as session:
        registered = await register_device(session, "  kitchen cam  ")

    assert len(registered.device_key) == 64
    assert registered.poll_url == f"/api/v1/scoreboard/devices/{registered.device_id}/context"
    assert registered.upload_url == "/api/v1/scoreboard/ingest"

    async with test_session_factory() as session:
        stored = await session.get(ScoreboardDevice, registered.device_id)
    assert stored.name == "kitchen cam"
    assert stored.device_key_hash == hash_device_key(registered.device_key)
    assert stored.device_key_hash != registered.device_key


async def test_authenticate_touches_last_seen(test_session_factory, device):
    async with test_session_factory() as session:
        found = await authenticate_device(session, device.device_key)
        assert found.id == device.device_id
        assert found.last_seen_at is not None


async def test_authenticate_with_path_device(test_session_factory, device):
    async with test_session_factory() as session:
        found = await authenticate_device(session, device.device_key, device_id=device.device_id)
    assert found.id == device.device_id


async def test_missing_key_is_unauthenticated(test_session_factory):
    async with test_session_factory() as session:
        with pytest.raises(Unauthenticated):
            await authenticate_device(session, None)


async def test_rejections_share_one_message(test_session_factory, device):
    async with test_session_factory() as session:
        other = await register_device(session, "other")

    async with test_session_factory() as session:
        with pytest.raises(Forbidden) as unknown:
            await authenticate_device(session, "not-a-key")
        with pytest.raises(Forbidden) as mismatch:
            await authenticate_device(session, other.device_key, device_id=device.device_id)
        with pytest.raises(Forbidden) as missing:
            await authenticate_device(session, device.device_key, device_id=9999)

        await set_device_enabled(session, device.device_id, False)
        with pytest.raises(Forbidden) as disabled:
            await authenticate_device(session, device.device_key)

    messages = {e.value.message for e in (unknown, mismatch, missing, disabled)}
    assert messages == {"Invalid device credentials."}


async def test_set_enabled_unknown_device(test_session_factory):
    async with test_session_factory() as session:
        with pytest.raises(NotFound):
            await set_device_enabled(session, 42, True)


async def test_register_disabled_and_list(test_session_factory, device):
    async with test_session_factory() as session:
        await register_device(session, "pending", enabled=False)
        devices = await list_devices(session)
    assert [d.name for d in devices] == ["capture-1", "pending"]
    assert [d.is_enabled for d in devices] == [True, False]
