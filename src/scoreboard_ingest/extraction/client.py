"""Gemini vision client for reading scoreboard photos.

Each image is sent inline with a JSON response schema.  Images are tried
in upload order until one parses; a parsed but null-heavy result gets a
second, high-resolution pass.  Token usage of every call is summed for the
processing audit.
"""
from __future__ import annotations

import math
from pathlib import Path
from typing import Protocol

import pydantic
import structlog
from google import genai
from google.genai import errors, types

from scoreboard_ingest.errors import ExtractionFailure
from scoreboard_ingest.extraction.schemas import (
    ExtractionResult,
    ScoreboardExtraction,
    TokenUsage,
)
from scoreboard_ingest.extraction.signature import build_dedupe_signature
from scoreboard_ingest.matching.config import VisionConfig

logger = structlog.get_logger()

SYSTEM_PROMPT = " ".join(
    [
        "You are a vision parser for Rocket League scoreboard images.",
        "Extract stats into strict JSON.",
        "Use null only if a value is genuinely unreadable or off-screen.",
        "If a stat cell is clearly blank or shows 0, return 0.",
        "Do not guess or invent missing fields.",
    ]
)

USER_PROMPT = """Read the end-of-match scoreboard in this image.
Rules:
- Each player row should include all five stats (score, goals, assists, saves, shots) if visible.
- Use 0 for clearly visible zeros/blank cells, null only if unreadable or missing from the image.
- Preserve brackets and clan tags in names exactly as shown.
- Column order is: SCORE, GOALS, ASSISTS, SAVES, SHOTS, then PING. Do not read PING values as SHOTS.
- winning_team is "blue" or "orange" when the board shows it, otherwise null."""


class VisionExtractor(Protocol):
    async def extract(self, image_paths: list[str]) -> ExtractionResult: ...


def create_client(api_key: str) -> genai.Client:
    return genai.Client(api_key=api_key)


def _named_rows(extraction: ScoreboardExtraction):
    rows = extraction.teams.blue + extraction.teams.orange
    return [p for p in rows if p.name and p.name.strip()]


def needs_retry(extraction: ScoreboardExtraction) -> bool:
    """True when a result looks too sparse to trust.

    That is: no named rows, a named row that is all zeros, a named row with
    three or more unreadable stats, or shots missing on at least half of
    the named rows.
    """
    rows = _named_rows(extraction)
    if not rows:
        return True

    missing_shots = 0
    for player in rows:
        values = player.stat_values()
        if all(v == 0 for v in values):
            return True
        if sum(v is None for v in values) >= 3:
            return True
        if player.shots is None:
            missing_shots += 1
    return missing_shots >= max(1, math.ceil(len(rows) / 2))


def compute_confidence(extraction: ScoreboardExtraction) -> float | None:
    """Share of readable stat cells over all named rows, or ``None`` without rows."""
    rows = _named_rows(extraction)
    if not rows:
        return None
    cells = [v for p in rows for v in p.stat_values()]
    return round(sum(v is not None for v in cells) / len(cells), 3)


def usage_from_response(response) -> TokenUsage:
    usage = getattr(response, "usage_metadata", None)
    if usage is None:
        return TokenUsage()
    input_tokens = getattr(usage, "prompt_token_count", 0) or 0
    output_tokens = getattr(usage, "candidates_token_count", 0) or 0
    return TokenUsage(
        input_tokens=input_tokens,
        cached_input_tokens=getattr(usage, "cached_content_token_count", 0) or 0,
        output_tokens=output_tokens,
        total_tokens=getattr(usage, "total_token_count", 0) or (input_tokens + output_tokens),
    )


def _mime_type(path: Path) -> str:
    return "image/png" if path.suffix.lower() == ".png" else "image/jpeg"


class GeminiVisionExtractor:
    """:class:`VisionExtractor` backed by the google-genai SDK.

    The SDK retries transient API errors itself; anything still failing
    surfaces as :class:`ExtractionFailure`.
    """

    def __init__(self, config: VisionConfig, client: genai.Client | None = None) -> None:
        self.config = config
        self._client = client

    async def _call(
        self, client: genai.Client, image: types.Part, usage: TokenUsage, high_detail: bool
    ) -> tuple[ScoreboardExtraction, str]:
        config = types.GenerateContentConfig(
            system_instruction=SYSTEM_PROMPT,
            response_mime_type="application/json",
            response_schema=ScoreboardExtraction,
            temperature=self.config.temperature,
            max_output_tokens=self.config.max_output_tokens,
        )
        if high_detail:
            config.media_resolution = types.MediaResolution.MEDIA_RESOLUTION_HIGH

        response = await client.aio.models.generate_content(
            model=self.config.model,
            contents=[USER_PROMPT, image],
            config=config,
        )
        usage.add(usage_from_response(response))

        text = response.text or ""
        try:
            return ScoreboardExtraction.model_validate_json(text), text
        except pydantic.ValidationError as exc:
            raise ExtractionFailure("Failed to parse extraction JSON.", detail=str(exc)) from exc

    async def extract(self, image_paths: list[str]) -> ExtractionResult:
        if not self.config.api_key:
            raise ExtractionFailure("Vision API key is not configured.")
        if not image_paths:
            raise ExtractionFailure("No images to extract.")

        client = self._client or create_client(self.config.api_key)
        usage = TokenUsage()
        last_error: Exception | None = None

        for image_path in image_paths:
            path = Path(image_path)
            log = logger.bind(image=path.name, model=self.config.model)
            try:
                image = types.Part.from_bytes(data=path.read_bytes(), mime_type=_mime_type(path))
                extraction, text = await self._call(client, image, usage, high_detail=False)

                if self.config.retry_on_sparse_result and needs_retry(extraction):
                    log.info("vision_sparse_result_retry")
                    try:
                        extraction, text = await self._call(client, image, usage, high_detail=True)
                    except ExtractionFailure as exc:
                        log.warning("vision_retry_unparseable", error=exc.message)

                result = ExtractionResult(
                    extraction=extraction,
                    confidence=compute_confidence(extraction),
                    dedupe_signature=build_dedupe_signature(extraction),
                    model=self.config.model,
                    usage=usage,
                    raw_text=text,
                )
                log.debug(
                    "vision_extraction_complete",
                    confidence=result.confidence,
                    total_tokens=usage.total_tokens,
                )
                return result
            except (ExtractionFailure, errors.APIError, OSError) as exc:
                log.warning("vision_extraction_failed", error=str(exc))
                last_error = exc

        if isinstance(last_error, ExtractionFailure):
            last_error.extra.setdefault("usage", usage)
            raise last_error
        raise ExtractionFailure(
            f"Scoreboard extraction failed: {last_error}", usage=usage
        ) from last_error
