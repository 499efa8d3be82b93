"""Ingest processing: extraction, session resolution and match recording.

One call drives one ingest through its lifecycle::

    received | failed | pending_match
        -> extracting                       (atomic claim)
        -> extracted | pending_match | failed

No database transaction is open while the vision call is awaited; the
``extracting`` status alone keeps a second request out.  Every attempt that
gets past the claim leaves exactly one ``scoreboard_audit`` row.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import sqlalchemy as sa
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scoreboard_ingest.application.applier import MatchApplier
from scoreboard_ingest.application.recorder import MatchRecord, RecordedMatch, record_match
from scoreboard_ingest.errors import Conflict, ExtractionFailure, Forbidden, NotFound, ScoreboardError
from scoreboard_ingest.extraction.client import VisionExtractor
from scoreboard_ingest.extraction.cost_tracker import record_audit
from scoreboard_ingest.extraction.deriver import derive_match
from scoreboard_ingest.extraction.schemas import ExtractionResult, TokenUsage
from scoreboard_ingest.ingestion.store import claim_for_processing, get_ingest
from scoreboard_ingest.matching.config import ScoreboardConfig, VisionConfig, load_config_for_run
from scoreboard_ingest.matching.resolver import load_candidate_sessions, resolve_extraction
from scoreboard_ingest.models.ingest import (
    STATUS_EXTRACTED,
    STATUS_EXTRACTING,
    STATUS_FAILED,
    STATUS_PENDING_MATCH,
    ScoreboardIngest,
)
from scoreboard_ingest.review.assignment import close_unmatched_for_ingest, enqueue_unmatched

logger = structlog.get_logger()

ExtractorFactory = Callable[[VisionConfig], VisionExtractor]


@dataclass
class ProcessResult:
    ingest_id: int
    status: str
    match_id: int | None = None
    error: str | None = None
    http_status: int = 200

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"ingest_id": self.ingest_id, "status": self.status}
        if self.match_id is not None:
            body["match_id"] = self.match_id
        if self.error is not None:
            body["error"] = self.error
        return body


@dataclass
class _Claimed:
    ingest_id: int
    device_id: int
    image_paths: list[str]


class IngestProcessor:
    """Runs the processing pipeline for single ingests.

    Args:
        session_factory: Async session factory; each step opens its own session.
        extractor_factory: Builds the vision extractor from the run's
            :class:`VisionConfig` (the API key may change between runs).
        applier: Match applier, called once per newly recorded Match.
        yaml_path: Optional matching-policy YAML overrides.
        env_api_key: Vision API key from the environment.
        env_model: Vision model from the environment.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        extractor_factory: ExtractorFactory,
        applier: MatchApplier,
        yaml_path: Path | None = None,
        env_api_key: str = "",
        env_model: str | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.extractor_factory = extractor_factory
        self.applier = applier
        self.yaml_path = yaml_path
        self.env_api_key = env_api_key
        self.env_model = env_model

    async def _claim(self, ingest_id: int, device_id: int | None) -> _Claimed | ProcessResult:
        async with self.session_factory() as db:
            ingest = await get_ingest(db, ingest_id, with_images=True)
            if ingest is None:
                raise NotFound("Ingest not found.", ingest_id=ingest_id, status=STATUS_FAILED)
            if device_id is not None and ingest.device_id != device_id:
                raise Forbidden("Device does not own ingest.", ingest_id=ingest_id, status=STATUS_FAILED)
            if ingest.status == STATUS_EXTRACTED and ingest.match_id is not None:
                return ProcessResult(ingest_id=ingest_id, status=ingest.status, match_id=ingest.match_id)
            if ingest.status == STATUS_EXTRACTING:
                raise Conflict("Ingest is already processing.", ingest_id=ingest_id, status=STATUS_EXTRACTING)

            claimed = _Claimed(
                ingest_id=ingest.id,
                device_id=ingest.device_id,
                image_paths=[image.image_path for image in ingest.images],
            )
            await claim_for_processing(db, ingest_id)
        return claimed

    async def process(self, ingest_id: int, device_id: int | None = None) -> ProcessResult:
        """Process one ingest.

        *device_id* restricts processing to the owning device; ``None`` is
        the operator path.

        Raises:
            NotFound: Unknown ingest.
            Forbidden: The ingest belongs to another device.
            Conflict: The ingest is already ``extracting``.
        """
        claimed = await self._claim(ingest_id, device_id)
        if isinstance(claimed, ProcessResult):
            logger.info("ingest_already_extracted", ingest_id=ingest_id, match_id=claimed.match_id)
            return claimed

        log = logger.bind(ingest_id=ingest_id, device_id=claimed.device_id)
        log.info("ingest_extracting", images=len(claimed.image_paths))

        config = ScoreboardConfig()
        result: ExtractionResult | None = None
        try:
            config = await load_config_for_run(
                self.session_factory, self.yaml_path, self.env_api_key, self.env_model
            )
            if not claimed.image_paths:
                raise ExtractionFailure("No images stored for ingest.")
            result = await self.extractor_factory(config.vision).extract(claimed.image_paths)
            return await self._resolve_and_record(claimed, result, config, log)
        except Exception as exc:
            usage = result.usage if result else None
            if isinstance(exc, ScoreboardError):
                message = exc.message
                usage = exc.extra.get("usage", usage)
            else:
                message = str(exc) or type(exc).__name__
            log.error("ingest_failed", error=message, exc_info=not isinstance(exc, ScoreboardError))
            await self._release_failed(claimed, message, config, result, usage, log)
            return ProcessResult(
                ingest_id=ingest_id, status=STATUS_FAILED, error=message, http_status=500
            )

    async def _resolve_and_record(
        self,
        claimed: _Claimed,
        result: ExtractionResult,
        config: ScoreboardConfig,
        log,
    ) -> ProcessResult:
        extraction = result.extraction
        derived = derive_match(extraction).model_dump(mode="json")

        async with self.session_factory() as db:
            candidates = await load_candidate_sessions(db)
        resolution = resolve_extraction(extraction, candidates, config.policy)

        if not resolution.matched:
            async with self.session_factory() as db, db.begin():
                await enqueue_unmatched(
                    db,
                    claimed.ingest_id,
                    resolution,
                    extraction,
                    derived,
                    result.dedupe_signature,
                    result.confidence,
                )
                await db.execute(
                    sa.update(ScoreboardIngest)
                    .where(ScoreboardIngest.id == claimed.ingest_id)
                    .values(
                        status=STATUS_PENDING_MATCH,
                        error_message=resolution.reason,
                        session_id=None,
                        team_id=None,
                        focus_playlist_id=resolution.focus_playlist_id,
                        match_id=None,
                    )
                )
                record_audit(
                    db,
                    device_id=claimed.device_id,
                    ingest_id=claimed.ingest_id,
                    success=True,
                    config=config.vision,
                    model=result.model,
                    usage=result.usage,
                    outcome=resolution.status,
                )
            log.info(
                "ingest_pending_match",
                decision=resolution.status,
                reason=resolution.reason,
                candidates=len(resolution.candidates),
            )
            return ProcessResult(
                ingest_id=claimed.ingest_id, status=STATUS_PENDING_MATCH, error=resolution.reason
            )

        async def audit(db: AsyncSession, recorded: RecordedMatch) -> None:
            await close_unmatched_for_ingest(db, claimed.ingest_id, recorded.session_id)
            record_audit(
                db,
                device_id=claimed.device_id,
                ingest_id=claimed.ingest_id,
                success=True,
                config=config.vision,
                model=result.model,
                usage=result.usage,
                session_id=recorded.session_id,
                team_id=recorded.team_id,
                outcome="duplicate" if recorded.deduped else "matched",
            )

        recorded = await record_match(
            self.session_factory,
            MatchRecord(
                ingest_id=claimed.ingest_id,
                session_id=resolution.session_id,
                extraction=extraction,
                derived_match=derived,
                signature_key=result.dedupe_signature,
                confidence=result.confidence,
                focus_playlist_id=resolution.focus_playlist_id,
            ),
            self.applier,
            config.policy,
            before_commit=audit,
        )
        log.info(
            "ingest_extracted",
            session_id=recorded.session_id,
            match_id=recorded.match_id,
            deduped=recorded.deduped,
            confidence=result.confidence,
        )
        return ProcessResult(
            ingest_id=claimed.ingest_id, status=STATUS_EXTRACTED, match_id=recorded.match_id
        )

    async def _release_failed(
        self,
        claimed: _Claimed,
        message: str,
        config: ScoreboardConfig,
        result: ExtractionResult | None,
        usage: TokenUsage | None,
        log,
    ) -> None:
        """Record the failure; the ingest leaves ``extracting`` even if the audit write fails."""
        try:
            await self._mark_failed(claimed, message, config, result, usage)
        except Exception:
            log.exception("ingest_mark_failed_error")
            async with self.session_factory() as db, db.begin():
                await db.execute(
                    sa.update(ScoreboardIngest)
                    .where(
                        ScoreboardIngest.id == claimed.ingest_id,
                        ScoreboardIngest.status == STATUS_EXTRACTING,
                    )
                    .values(status=STATUS_FAILED, error_message=message)
                )

    async def _mark_failed(
        self,
        claimed: _Claimed,
        message: str,
        config: ScoreboardConfig,
        result: ExtractionResult | None,
        usage: TokenUsage | None,
    ) -> None:
        async with self.session_factory() as db, db.begin():
            await db.execute(
                sa.update(ScoreboardIngest)
                .where(ScoreboardIngest.id == claimed.ingest_id)
                .values(status=STATUS_FAILED, error_message=message)
            )
            record_audit(
                db,
                device_id=claimed.device_id,
                ingest_id=claimed.ingest_id,
                success=False,
                config=config.vision,
                model=result.model if result else config.vision.model,
                usage=usage,
                outcome=STATUS_FAILED,
                error=message,
            )
