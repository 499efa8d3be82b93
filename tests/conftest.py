"""Shared test fixtures."""

import asyncio
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from scoreboard_ingest.api.app import app
from scoreboard_ingest.api.deps import (
    get_applier,
    get_cooldown,
    get_db,
    get_db_session_factory,
    get_extractor_factory,
    get_image_store,
)
from scoreboard_ingest.application.applier import MatchApplication, SnapshotMatchApplier
from scoreboard_ingest.devices.registry import register_device
from scoreboard_ingest.extraction.client import compute_confidence
from scoreboard_ingest.extraction.schemas import ExtractionResult, ScoreboardExtraction, TokenUsage
from scoreboard_ingest.extraction.signature import build_dedupe_signature
from scoreboard_ingest.ingestion.processor import IngestProcessor
from scoreboard_ingest.ingestion.store import ImageStore, UploadedImage, receive_upload
from scoreboard_ingest.models.base import Base
from scoreboard_ingest.models.device import ScoreboardDevice
from scoreboard_ingest.models.tracked_session import RosterPlayer, Team, TrackedSession
from scoreboard_ingest.ratelimit.cooldown import CooldownCache


def build_board(blue, orange, winner="blue") -> ScoreboardExtraction:
    """Build an extraction from ``(name, score, goals, assists, saves, shots)`` rows."""

    def rows(side):
        return [
            dict(zip(("name", "score", "goals", "assists", "saves", "shots"), row)) for row in side
        ]

    return ScoreboardExtraction.model_validate(
        {
            "match": {"playlist_name": "Doubles", "is_ranked": True, "winning_team": winner},
            "teams": {"blue": rows(blue), "orange": rows(orange)},
        }
    )


DEFAULT_BOARD = build_board(
    blue=[("Alice", 520, 2, 1, 3, 5), ("Bob", 310, 1, 1, 1, 4)],
    orange=[("Xeno", 280, 1, 0, 2, 3), ("Yuri", 150, 0, 1, 1, 2)],
)


class FakeExtractor:
    """In-memory vision extractor.

    Set ``gate`` to an :class:`asyncio.Event` to hold the call open, or
    ``error`` to make it raise.
    """

    def __init__(self, extraction: ScoreboardExtraction = DEFAULT_BOARD) -> None:
        self.extraction = extraction
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.started = asyncio.Event()
        self.calls = 0

    async def extract(self, image_paths: list[str]) -> ExtractionResult:
        self.calls += 1
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return ExtractionResult(
            extraction=self.extraction,
            confidence=compute_confidence(self.extraction),
            dedupe_signature=build_dedupe_signature(self.extraction),
            model="fake-vision",
            usage=TokenUsage(input_tokens=1200, output_tokens=300, total_tokens=1500),
        )


class CountingApplier(SnapshotMatchApplier):
    """Snapshot applier that remembers every application it was handed."""

    def __init__(self) -> None:
        self.applications: list[MatchApplication] = []

    async def apply(self, db: AsyncSession, application: MatchApplication) -> None:
        self.applications.append(application)
        await super().apply(db, application)


@pytest.fixture
async def test_engine():
    """Create an async SQLite in-memory engine for tests."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to the test engine."""
    return async_sessionmaker(test_engine, expire_on_commit=False)


@pytest.fixture
def image_store(tmp_path: Path) -> ImageStore:
    return ImageStore(tmp_path / "scoreboards")


@pytest.fixture
def fake_extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def counting_applier() -> CountingApplier:
    return CountingApplier()


@pytest.fixture
def processor(test_session_factory, fake_extractor, counting_applier) -> IngestProcessor:
    return IngestProcessor(test_session_factory, lambda config: fake_extractor, counting_applier)


@pytest.fixture
async def seeded_sessions(test_session_factory) -> dict[str, int]:
    """Two active 2v2 sessions with disjoint rosters.

    - alpha: Alice, Bob (team "Night Owls")
    - bravo: Charlie, Dave
    """
    async with test_session_factory() as session:
        async with session.begin():
            team = Team(name="Night Owls", mode="2v2")
            session.add(team)
            await session.flush()

            alpha = TrackedSession(name="alpha", mode="2v2", team_id=team.id)
            bravo = TrackedSession(name="bravo", mode="2v2")
            session.add_all([alpha, bravo])
            await session.flush()

            session.add_all(
                [
                    RosterPlayer(session_id=alpha.id, gamertag="Alice", platform="steam"),
                    RosterPlayer(session_id=alpha.id, gamertag="Bob", platform="xbl"),
                    RosterPlayer(session_id=bravo.id, gamertag="Charlie", platform="xbl"),
                    RosterPlayer(session_id=bravo.id, gamertag="Dave", platform="psn"),
                ]
            )
    return {"alpha": alpha.id, "bravo": bravo.id, "team": team.id}


@pytest.fixture
async def device(test_session_factory):
    """A registered, enabled device (``RegisteredDevice`` with the clear key)."""
    async with test_session_factory() as session:
        return await register_device(session, "capture-1")


@pytest.fixture
def make_ingest(test_session_factory, image_store, device):
    """Factory: store an upload for ``device`` and return the ingest."""

    async def _make(*images: bytes, session_id: int | None = None):
        async with test_session_factory() as session:
            owner = await session.get(ScoreboardDevice, device.device_id)
            outcome = await receive_upload(
                session,
                image_store,
                owner,
                [UploadedImage(data=data, content_type="image/jpeg") for data in images or (b"photo-1",)],
                session_id=session_id,
            )
            return outcome.ingest

    return _make


@pytest.fixture
async def api_client(test_engine, test_session_factory, fake_extractor, counting_applier, image_store):
    """Async HTTP client hitting the FastAPI app with test DB and fakes."""

    async def override_get_db():
        async with test_session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_db_session_factory] = lambda: test_session_factory
    app.dependency_overrides[get_extractor_factory] = lambda: (lambda config: fake_extractor)
    app.dependency_overrides[get_applier] = lambda: counting_applier
    app.dependency_overrides[get_image_store] = lambda: image_store
    app.dependency_overrides[get_cooldown] = lambda: CooldownCache(0)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
