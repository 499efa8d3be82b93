"""Runtime configuration for session resolution and vision extraction.

Defaults live here; ``config/matching.yaml`` may override them, and the
admin settings row in the database overrides both for each processing
run (see :func:`load_config_for_run`).
"""

from __future__ import annotations

from pathlib import Path

import sqlalchemy as sa
import structlog
import yaml
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.ext.asyncio import async_sessionmaker

from scoreboard_ingest.config.encryption import decrypt_value
from scoreboard_ingest.models.settings_row import ScoreboardSettings

logger = structlog.get_logger()


class MatchingPolicy(BaseModel):
    """Name-matching and auto-accept heuristics.

    The score values and edit-distance cutoffs are tunable: their
    calibration against real OCR error rates is an operational concern.
    """

    exact_score: int = 2
    fuzzy_score: int = 1
    containment_min_length: int = 4
    max_edit_distance: int = 1
    short_name_length: int = 6
    short_name_max_edit_distance: int = 2
    containment_confidence: float = 0.85
    max_candidates: int = 5
    default_platform: str = "xbl"
    modes_by_team_size: dict[int, str] = Field(
        default_factory=lambda: {1: "solo", 2: "2v2", 3: "3v3", 4: "4v4"}
    )
    focus_playlists: dict[str, int] = Field(
        default_factory=lambda: {"solo": 10, "2v2": 11, "3v3": 13}
    )
    default_focus_playlist: int = 11

    @model_validator(mode="after")
    def check_scores(self) -> "MatchingPolicy":
        if self.fuzzy_score <= 0 or self.exact_score <= self.fuzzy_score:
            raise ValueError("exact_score must be greater than fuzzy_score, and both positive")
        return self

    def auto_accept_threshold(self, roster_size: int) -> int:
        """Minimum roster score for an automatic bind.

        With the default scores this is ``roster_size * 2 - 1``: every name
        has to match and at most one of them only fuzzily.
        """
        return roster_size * self.exact_score - self.fuzzy_score

    def mode_for_team_size(self, team_size: int | None) -> str | None:
        if team_size is None:
            return None
        return self.modes_by_team_size.get(team_size)

    def focus_playlist_for_mode(self, mode: str | None) -> int:
        return self.focus_playlists.get(mode or "", self.default_focus_playlist)


class VisionConfig(BaseModel):
    """Gemini vision extraction settings and pricing for cost estimates."""

    api_key: str = ""
    model: str = "gemini-2.5-flash"
    temperature: float = 0.0
    max_output_tokens: int = 2048
    retry_on_sparse_result: bool = True

    cost_per_1m_input_tokens: float = 0.30
    cost_per_1m_cached_input_tokens: float = 0.075
    cost_per_1m_output_tokens: float = 2.50


class ScoreboardConfig(BaseModel):
    """Top-level runtime configuration."""

    policy: MatchingPolicy = Field(default_factory=MatchingPolicy)
    vision: VisionConfig = Field(default_factory=VisionConfig)
    retention_days: int | None = None


def load_scoreboard_config(path: Path) -> ScoreboardConfig:
    """Load configuration from a YAML file, or defaults if it is missing.

    Partial overrides are supported; only keys present in the file change.
    """
    if not path.exists():
        return ScoreboardConfig()

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    return ScoreboardConfig(**data)


def _deep_merge(base: dict, updates: dict) -> dict:
    """Recursively merge *updates* into *base*, only overwriting leaves."""
    merged = dict(base)
    for key, value in updates.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


async def load_config_for_run(
    session_factory: async_sessionmaker,
    yaml_path: Path | None = None,
    env_api_key: str = "",
    env_model: str | None = None,
) -> ScoreboardConfig:
    """Resolve the effective configuration for one processing run.

    Precedence (lowest to highest): built-in defaults, the YAML file,
    environment values for the vision key/model, the database settings row.
    """
    base = load_scoreboard_config(yaml_path) if yaml_path else ScoreboardConfig()
    if env_api_key:
        base.vision.api_key = env_api_key
    if env_model:
        base.vision.model = env_model

    async with session_factory() as session:
        result = await session.execute(
            sa.select(ScoreboardSettings).where(ScoreboardSettings.id == 1)
        )
        row = result.scalar_one_or_none()

    if row is None:
        return base

    merged = _deep_merge(base.model_dump(), row.config_json or {})
    config = ScoreboardConfig(**merged)
    # The JSON blob never carries the key; keep whichever key we already had
    config.vision.api_key = base.vision.api_key
    if row.encrypted_api_key:
        try:
            config.vision.api_key = decrypt_value(row.encrypted_api_key)
        except RuntimeError as exc:
            logger.error("stored_api_key_unreadable", error=str(exc))
    return config
