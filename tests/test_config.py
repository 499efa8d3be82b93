"""Tests for runtime configuration loading and precedence."""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from scoreboard_ingest.config.encryption import decrypt_value, encrypt_value
from scoreboard_ingest.config.settings import Settings
from scoreboard_ingest.matching.config import (
    MatchingPolicy,
    ScoreboardConfig,
    load_config_for_run,
    load_scoreboard_config,
)
from scoreboard_ingest.models.settings_row import ScoreboardSettings


class TestLoadFromYaml:
    def test_load_partial_override(self, tmp_path: Path) -> None:
        config_path = tmp_path / "matching.yaml"
        config_path.write_text(yaml.dump({"policy": {"max_candidates": 3}, "retention_days": 30}))
        cfg = load_scoreboard_config(config_path)
        assert cfg.policy.max_candidates == 3
        assert cfg.policy.exact_score == 2
        assert cfg.retention_days == 30

    def test_load_shipped_config(self) -> None:
        """The packaged matching.yaml loads and matches the defaults."""
        cfg = load_scoreboard_config(Settings().matching_config_path)
        assert cfg.policy == MatchingPolicy()

    def test_load_empty_yaml(self, tmp_path: Path) -> None:
        config_path = tmp_path / "empty.yaml"
        config_path.write_text("")
        assert load_scoreboard_config(config_path) == ScoreboardConfig()

    def test_missing_file_returns_defaults(self, tmp_path: Path) -> None:
        assert load_scoreboard_config(tmp_path / "nonexistent.yaml") == ScoreboardConfig()


class TestMatchingPolicy:
    def test_auto_accept_threshold(self) -> None:
        policy = MatchingPolicy()
        assert policy.auto_accept_threshold(1) == 1
        assert policy.auto_accept_threshold(2) == 3
        assert policy.auto_accept_threshold(3) == 5

    def test_modes_and_focus_playlists(self) -> None:
        policy = MatchingPolicy()
        assert policy.mode_for_team_size(3) == "3v3"
        assert policy.mode_for_team_size(None) is None
        assert policy.mode_for_team_size(7) is None
        assert policy.focus_playlist_for_mode("solo") == 10
        assert policy.focus_playlist_for_mode("4v4") == 11
        assert policy.focus_playlist_for_mode(None) == 11

    def test_exact_must_beat_fuzzy(self) -> None:
        with pytest.raises(ValidationError):
            MatchingPolicy(exact_score=1, fuzzy_score=1)
        with pytest.raises(ValidationError):
            MatchingPolicy(fuzzy_score=0)


class TestEncryption:
    def test_plain_fallback(self, monkeypatch) -> None:
        monkeypatch.delenv("SCOREBOARD_ENCRYPTION_KEY", raising=False)
        token = encrypt_value("secret")
        assert token == "plain:secret"
        assert decrypt_value(token) == "secret"

    def test_fernet_round_trip(self, monkeypatch) -> None:
        from cryptography.fernet import Fernet

        monkeypatch.setenv("SCOREBOARD_ENCRYPTION_KEY", Fernet.generate_key().decode())
        token = encrypt_value("secret")
        assert token != "secret"
        assert not token.startswith("plain:")
        assert decrypt_value(token) == "secret"


async def test_load_config_for_run_defaults(test_session_factory):
    loaded = await load_config_for_run(test_session_factory, env_api_key="env-key", env_model="env-model")
    assert loaded.vision.api_key == "env-key"
    assert loaded.vision.model == "env-model"
    assert loaded.retention_days is None


async def test_load_config_for_run_db_overrides(test_session_factory, tmp_path, monkeypatch):
    monkeypatch.delenv("SCOREBOARD_ENCRYPTION_KEY", raising=False)
    yaml_path = tmp_path / "matching.yaml"
    yaml_path.write_text(yaml.dump({"policy": {"max_candidates": 3, "max_edit_distance": 2}}))

    async with test_session_factory() as session:
        session.add(
            ScoreboardSettings(
                id=1,
                config_json={"policy": {"max_candidates": 7}, "retention_days": 14},
                encrypted_api_key=encrypt_value("db-key"),
            )
        )
        await session.commit()

    loaded = await load_config_for_run(test_session_factory, yaml_path, env_api_key="env-key")

    # DB beats YAML, YAML beats defaults
    assert loaded.policy.max_candidates == 7
    assert loaded.policy.max_edit_distance == 2
    assert loaded.retention_days == 14
    assert loaded.vision.api_key == "db-key"


async def test_load_config_for_run_keeps_env_key_without_stored_key(test_session_factory):
    async with test_session_factory() as session:
        session.add(ScoreboardSettings(id=1, config_json={"vision": {"model": "gemini-x"}}))
        await session.commit()

    loaded = await load_config_for_run(test_session_factory, env_api_key="env-key")
    assert loaded.vision.model == "gemini-x"
    assert loaded.vision.api_key == "env-key"
