"""Tests for upload intake, content dedup and the processing claim."""

from pathlib import Path

import pytest
import sqlalchemy as sa

from scoreboard_ingest.errors import Conflict, ValidationError
from scoreboard_ingest.ingestion.dedup import compute_content_key
from scoreboard_ingest.ingestion.store import (
    UploadedImage,
    claim_for_processing,
    get_ingest,
    receive_upload,
)
from scoreboard_ingest.models.device import ScoreboardDevice
from scoreboard_ingest.models.ingest import ScoreboardIngest, ScoreboardIngestImage
from scoreboard_ingest.models.tracked_session import TrackedSession
from scoreboard_ingest.ratelimit.cooldown import CooldownCache, RateLimited


async def _owner(session, device) -> ScoreboardDevice:
    return await session.get(ScoreboardDevice, device.device_id)


async def test_upload_stores_files_and_rows(test_session_factory, image_store, device, seeded_sessions):
    async with test_session_factory() as session:
        outcome = await receive_upload(
            session,
            image_store,
            await _owner(session, device),
            [
                UploadedImage(data=b"first", content_type="image/png"),
                UploadedImage(data=b"second", filename="b.JPG"),
            ],
            session_id=seeded_sessions["alpha"],
        )

    ingest = outcome.ingest
    assert outcome.duplicate is False
    assert ingest.status == "received"
    assert ingest.dedupe_key == compute_content_key(b"first")
    assert ingest.session_id == seeded_sessions["alpha"]
    assert ingest.team_id == seeded_sessions["team"]
    assert ingest.focus_playlist_id == 11

    async with test_session_factory() as session:
        stored = await get_ingest(session, ingest.id, with_images=True)
    paths = [Path(image.image_path) for image in stored.images]
    assert [p.name for p in paths] == ["scoreboard-1.png", "scoreboard-2.jpg"]
    assert paths[0].read_bytes() == b"first"
    assert paths[0].parent == image_store.ingest_dir(ingest.id)


async def test_image_count_is_validated(test_session_factory, image_store, device):
    async with test_session_factory() as session:
        owner = await _owner(session, device)
        with pytest.raises(ValidationError):
            await receive_upload(session, image_store, owner, [])
        with pytest.raises(ValidationError) as too_many:
            await receive_upload(
                session, image_store, owner, [UploadedImage(data=bytes([i])) for i in range(4)]
            )
    assert too_many.value.extra["max_images"] == 3


async def test_repeat_upload_returns_existing_ingest(test_session_factory, image_store, device):
    async with test_session_factory() as session:
        owner = await _owner(session, device)
        first = await receive_upload(session, image_store, owner, [UploadedImage(data=b"same")])
        # Second image differs but the first one decides the content key
        second = await receive_upload(
            session, image_store, owner, [UploadedImage(data=b"same"), UploadedImage(data=b"x")]
        )

    assert second.duplicate is True
    assert second.ingest.id == first.ingest.id
    assert second.dedupe_key == first.dedupe_key

    async with test_session_factory() as session:
        count = (await session.execute(sa.select(sa.func.count(ScoreboardIngest.id)))).scalar_one()
        images = (await session.execute(sa.select(sa.func.count(ScoreboardIngestImage.id)))).scalar_one()
    assert count == 1
    assert images == 1


async def test_repeat_upload_bypasses_cooldown(test_session_factory, image_store, device):
    cooldown = CooldownCache(60)
    async with test_session_factory() as session:
        owner = await _owner(session, device)
        first = await receive_upload(
            session, image_store, owner, [UploadedImage(data=b"a")], cooldown=cooldown
        )
        limited = await receive_upload(
            session, image_store, owner, [UploadedImage(data=b"b")], cooldown=cooldown
        )
        repeat = await receive_upload(
            session, image_store, owner, [UploadedImage(data=b"a")], cooldown=cooldown
        )

    assert first.ingest is not None
    assert limited.ingest is None
    assert isinstance(limited.cooldown, RateLimited)
    assert repeat.duplicate is True
    assert repeat.ingest.id == first.ingest.id


async def test_claim_is_exclusive(test_session_factory, make_ingest):
    ingest = await make_ingest(b"claim-me")

    async with test_session_factory() as session:
        await claim_for_processing(session, ingest.id)
        with pytest.raises(Conflict) as exc_info:
            await claim_for_processing(session, ingest.id)

    assert exc_info.value.extra == {"ingest_id": ingest.id, "status": "extracting"}
    async with test_session_factory() as session:
        assert (await get_ingest(session, ingest.id)).status == "extracting"


def test_image_store_remove(image_store, tmp_path):
    path = image_store.save(5, 1, UploadedImage(data=b"jpg-bytes"))
    assert path.exists()
    image_store.remove(5, [str(path)])
    assert not path.exists()
    assert not image_store.ingest_dir(5).exists()


async def test_claim_never_reopens_matched_ingest(
    processor, make_ingest, seeded_sessions, test_session_factory, device
):
    ingest = await make_ingest(b"done-deal")
    matched = await processor.process(ingest.id, device.device_id)

    async with test_session_factory() as session:
        with pytest.raises(Conflict):
            await claim_for_processing(session, ingest.id)

    async with test_session_factory() as session:
        stored = await get_ingest(session, ingest.id)
    assert stored.status == "extracted"
    assert stored.match_id == matched.match_id


@pytest.mark.parametrize("hint", ["unknown", "ended"])
async def test_unusable_session_hint_falls_back_to_active_session(
    test_session_factory, image_store, device, seeded_sessions, hint
):
    if hint == "ended":
        async with test_session_factory() as session:
            async with session.begin():
                (await session.get(TrackedSession, seeded_sessions["alpha"])).is_ended = True
        requested = seeded_sessions["alpha"]
    else:
        requested = 999

    async with test_session_factory() as session:
        outcome = await receive_upload(
            session,
            image_store,
            await _owner(session, device),
            [UploadedImage(data=f"hint-{hint}".encode())],
            session_id=requested,
        )

    assert outcome.ingest.session_id == seeded_sessions["bravo"]
    assert outcome.ingest.focus_playlist_id == 11
