"""Tests for the ingest processing pipeline."""

import asyncio
from unittest.mock import patch

import pytest
import sqlalchemy as sa

from scoreboard_ingest.errors import Conflict, ExtractionFailure, Forbidden, NotFound
from scoreboard_ingest.extraction.schemas import TokenUsage
from scoreboard_ingest.ingestion.dedup import DUPLICATE_STATS_NOTE
from scoreboard_ingest.ingestion.store import get_ingest
from scoreboard_ingest.models.audit import ScoreboardAudit
from scoreboard_ingest.models.match import Match, MatchPlayer
from scoreboard_ingest.models.tracked_session import PlayerSnapshot, TrackedSession
from scoreboard_ingest.models.unmatched import ScoreboardUnmatched

from conftest import build_board


async def _count(session_factory, column) -> int:
    async with session_factory() as session:
        return (await session.execute(sa.select(sa.func.count(column)))).scalar_one()


async def test_matched_ingest_records_match(
    processor, make_ingest, seeded_sessions, test_session_factory, counting_applier, device
):
    ingest = await make_ingest(b"photo-1")

    result = await processor.process(ingest.id, device.device_id)

    assert result.status == "extracted"
    assert result.http_status == 200
    assert result.match_id is not None

    async with test_session_factory() as session:
        stored = await get_ingest(session, ingest.id)
        match = await session.get(Match, result.match_id)
        players = (
            await session.execute(
                sa.select(MatchPlayer).where(MatchPlayer.match_id == match.id).order_by(MatchPlayer.id)
            )
        ).scalars().all()
        tracked = await session.get(TrackedSession, seeded_sessions["alpha"])

    assert stored.match_id == match.id
    assert stored.session_id == seeded_sessions["alpha"]
    assert stored.team_id == seeded_sessions["team"]
    assert stored.focus_playlist_id == 11
    assert stored.error_message is None

    assert match.session_id == seeded_sessions["alpha"]
    assert match.dedupe_key == ingest.dedupe_key
    assert match.derived_match["teams"]["blue"]["goals"] == 3
    assert match.extraction_confidence == 1.0

    assert [p.gamertag for p in players] == ["Alice", "Bob", "Xeno", "Yuri"]
    assert [p.team for p in players] == ["blue", "blue", "orange", "orange"]
    assert [p.is_winner for p in players] == [True, True, False, False]
    assert players[0].platform == "steam"
    assert players[2].player_id is None

    assert len(counting_applier.applications) == 1
    assert counting_applier.applications[0].match_index == 1
    assert tracked.match_index == 1


async def test_applier_writes_running_totals(
    processor, make_ingest, seeded_sessions, test_session_factory, fake_extractor, device
):
    await processor.process((await make_ingest(b"game-1")).id, device.device_id)
    fake_extractor.extraction = build_board(
        blue=[("Alice", 400, 1, 0, 2, 3), ("Bob", 200, 0, 1, 0, 1)],
        orange=[("Xeno", 600, 3, 0, 1, 6), ("Yuri", 300, 1, 2, 1, 2)],
        winner="orange",
    )
    await processor.process((await make_ingest(b"game-2")).id, device.device_id)

    async with test_session_factory() as session:
        snapshots = (
            await session.execute(
                sa.select(PlayerSnapshot)
                .where(PlayerSnapshot.session_id == seeded_sessions["alpha"])
                .order_by(PlayerSnapshot.id)
            )
        ).scalars().all()

    alice = [s for s in snapshots if s.raw["gamertag"] == "Alice"]
    assert [s.match_index for s in alice] == [1, 2]
    assert alice[-1].derived["wins"] == 1
    assert alice[-1].derived["losses"] == 1
    assert alice[-1].derived["goals"] == 3
    assert alice[-1].derived["shots"] == 8
    assert alice[-1].derived["win_rate"] == 0.5


async def test_reprocessing_extracted_ingest_is_a_no_op(
    processor, make_ingest, seeded_sessions, fake_extractor, counting_applier, device
):
    ingest = await make_ingest()
    first = await processor.process(ingest.id, device.device_id)
    second = await processor.process(ingest.id, device.device_id)

    assert second.status == "extracted"
    assert second.match_id == first.match_id
    assert fake_extractor.calls == 1
    assert len(counting_applier.applications) == 1


async def test_second_photo_of_same_board_is_deduplicated(
    processor, make_ingest, seeded_sessions, test_session_factory, counting_applier, device
):
    first = await processor.process((await make_ingest(b"angle-1")).id, device.device_id)
    other = await make_ingest(b"angle-2")
    second = await processor.process(other.id, device.device_id)

    assert second.status == "extracted"
    assert second.match_id == first.match_id
    assert len(counting_applier.applications) == 1
    assert await _count(test_session_factory, Match.id) == 1
    assert await _count(test_session_factory, MatchPlayer.id) == 4

    async with test_session_factory() as session:
        stored = await get_ingest(session, other.id)
        audits = (
            await session.execute(sa.select(ScoreboardAudit).order_by(ScoreboardAudit.id))
        ).scalars().all()
    assert stored.error_message == DUPLICATE_STATS_NOTE
    assert [a.outcome for a in audits] == ["matched", "duplicate"]


async def test_concurrent_process_gets_conflict(
    processor, make_ingest, seeded_sessions, fake_extractor, counting_applier, device
):
    ingest = await make_ingest()
    fake_extractor.gate = asyncio.Event()

    running = asyncio.create_task(processor.process(ingest.id, device.device_id))
    await fake_extractor.started.wait()

    with pytest.raises(Conflict) as exc_info:
        await processor.process(ingest.id, device.device_id)
    assert exc_info.value.extra["status"] == "extracting"

    fake_extractor.gate.set()
    result = await running

    assert result.status == "extracted"
    assert fake_extractor.calls == 1
    assert len(counting_applier.applications) == 1


async def test_extraction_failure_marks_failed_and_audits(
    processor, make_ingest, seeded_sessions, test_session_factory, fake_extractor, device
):
    ingest = await make_ingest()
    fake_extractor.error = ExtractionFailure(
        "Failed to parse extraction JSON.",
        usage=TokenUsage(input_tokens=1000, output_tokens=50, total_tokens=1050),
    )

    result = await processor.process(ingest.id, device.device_id)

    assert result.http_status == 500
    assert result.status == "failed"
    assert result.to_body() == {
        "ingest_id": ingest.id,
        "status": "failed",
        "error": "Failed to parse extraction JSON.",
    }

    async with test_session_factory() as session:
        stored = await get_ingest(session, ingest.id)
        audit = (await session.execute(sa.select(ScoreboardAudit))).scalar_one()
    assert stored.status == "failed"
    assert stored.error_message == "Failed to parse extraction JSON."
    assert audit.success is False
    assert audit.total_tokens == 1050
    assert audit.estimated_cost_usd > 0

    # A failed ingest can be retried
    fake_extractor.error = None
    retried = await processor.process(ingest.id, device.device_id)
    assert retried.status == "extracted"


async def test_unexpected_error_is_contained(
    processor, make_ingest, seeded_sessions, test_session_factory, fake_extractor, device
):
    ingest = await make_ingest()
    fake_extractor.error = RuntimeError("boom")

    result = await processor.process(ingest.id, device.device_id)

    assert result.http_status == 500
    assert result.error == "boom"
    async with test_session_factory() as session:
        assert (await get_ingest(session, ingest.id)).status == "failed"


async def test_unmatched_board_goes_to_queue_once(
    processor, make_ingest, seeded_sessions, test_session_factory, fake_extractor, counting_applier, device
):
    fake_extractor.extraction = build_board(
        blue=[("Stranger", 100, 1, 0, 0, 2), ("Nobody", 90, 0, 0, 1, 1)],
        orange=[("Xeno", 80, 0, 0, 0, 1), ("Yuri", 70, 0, 0, 0, 1)],
    )
    ingest = await make_ingest()

    result = await processor.process(ingest.id, device.device_id)
    assert result.status == "pending_match"
    assert result.error == "No high-confidence session match."

    # Re-processing a pending ingest refreshes the same queue entry
    again = await processor.process(ingest.id, device.device_id)
    assert again.status == "pending_match"

    async with test_session_factory() as session:
        entries = (await session.execute(sa.select(ScoreboardUnmatched))).scalars().all()
        stored = await get_ingest(session, ingest.id)
    assert len(entries) == 1
    assert entries[0].ingest_id == ingest.id
    assert entries[0].blue_names == ["Stranger", "Nobody"]
    assert entries[0].team_size == 2
    assert entries[0].mode == "2v2"
    assert entries[0].signature_key
    assert stored.status == "pending_match"
    assert stored.session_id is None
    assert stored.focus_playlist_id == 11
    assert counting_applier.applications == []
    assert await _count(test_session_factory, Match.id) == 0


async def test_ownership_and_missing_ingest(processor, make_ingest, device):
    ingest = await make_ingest()

    with pytest.raises(Forbidden):
        await processor.process(ingest.id, device.device_id + 1)
    with pytest.raises(NotFound) as exc_info:
        await processor.process(9999, device.device_id)
    assert exc_info.value.extra == {"ingest_id": 9999, "status": "failed"}


async def test_operator_may_process_any_ingest(processor, make_ingest, seeded_sessions):
    ingest = await make_ingest()
    result = await processor.process(ingest.id, device_id=None)
    assert result.status == "extracted"


async def test_failed_audit_write_still_releases_ingest(
    processor, make_ingest, seeded_sessions, test_session_factory, fake_extractor, device
):
    ingest = await make_ingest()
    fake_extractor.error = ExtractionFailure("Vision API request failed.")

    with patch(
        "scoreboard_ingest.ingestion.processor.record_audit",
        side_effect=RuntimeError("audit table unavailable"),
    ):
        result = await processor.process(ingest.id, device.device_id)

    assert result.http_status == 500
    assert result.error == "Vision API request failed."
    async with test_session_factory() as session:
        stored = await get_ingest(session, ingest.id)
        audits = (await session.execute(sa.select(sa.func.count(ScoreboardAudit.id)))).scalar_one()
    assert stored.status == "failed"
    assert stored.error_message == "Vision API request failed."
    assert audits == 0

    # The claim was released, so a retry goes through
    fake_extractor.error = None
    retried = await processor.process(ingest.id, device.device_id)
    assert retried.status == "extracted"
