"""Initial scoreboard ingest schema.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-16
"""
from alembic import op
import sqlalchemy as sa

revision = "001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Session management tables (read by this service)
    op.create_table(
        "teams",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("mode", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_table(
        "sessions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("mode", sa.String(), nullable=False, server_default="2v2"),
        sa.Column("team_id", sa.Integer(), sa.ForeignKey("teams.id"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_ended", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("match_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("ended_at", sa.DateTime(), nullable=True),
    )
    op.create_table(
        "players",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("sessions.id"), nullable=False),
        sa.Column("platform", sa.String(), nullable=False, server_default="xbl"),
        sa.Column("gamertag", sa.String(), nullable=False),
    )
    op.create_index("ix_players_session_id", "players", ["session_id"])
    op.create_table(
        "snapshots",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("session_id", sa.Integer(), nullable=False),
        sa.Column("player_id", sa.Integer(), nullable=False),
        sa.Column("captured_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("match_index", sa.Integer(), nullable=True),
        sa.Column("raw", sa.JSON(), nullable=False),
        sa.Column("derived", sa.JSON(), nullable=False),
    )
    op.create_index("ix_snapshots_session_id", "snapshots", ["session_id"])
    op.create_index("ix_snapshots_player_id", "snapshots", ["player_id"])

    # Devices
    op.create_table(
        "scoreboard_devices",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("device_key_hash", sa.String(64), nullable=False),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("last_seen_at", sa.DateTime(), nullable=True),
    )
    op.create_index(
        "ix_scoreboard_devices_device_key_hash", "scoreboard_devices", ["device_key_hash"], unique=True
    )

    # Matches
    op.create_table(
        "matches",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("session_id", sa.Integer(), nullable=True),
        sa.Column("team_id", sa.Integer(), nullable=True),
        sa.Column("source", sa.String(), nullable=False, server_default="vision"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("raw_extraction", sa.JSON(), nullable=False),
        sa.Column("derived_match", sa.JSON(), nullable=False),
        sa.Column("extraction_confidence", sa.Float(), nullable=True),
        sa.Column("dedupe_key", sa.String(64), nullable=True),
        sa.Column("signature_key", sa.String(64), nullable=True),
        sa.UniqueConstraint("session_id", "signature_key", name="uq_matches_session_signature"),
    )
    op.create_index("ix_matches_session_id", "matches", ["session_id"])
    op.create_index("ix_matches_dedupe_key", "matches", ["dedupe_key"])
    op.create_index("ix_matches_signature_key", "matches", ["signature_key"])

    op.create_table(
        "match_players",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("match_id", sa.Integer(), sa.ForeignKey("matches.id"), nullable=False),
        sa.Column("player_id", sa.Integer(), nullable=True),
        sa.Column("extracted_name", sa.String(), nullable=True),
        sa.Column("gamertag", sa.String(), nullable=False),
        sa.Column("platform", sa.String(), nullable=False),
        sa.Column("team", sa.String(), nullable=False),
        sa.Column("goals", sa.Integer(), nullable=True),
        sa.Column("assists", sa.Integer(), nullable=True),
        sa.Column("saves", sa.Integer(), nullable=True),
        sa.Column("shots", sa.Integer(), nullable=True),
        sa.Column("score", sa.Integer(), nullable=True),
        sa.Column("is_winner", sa.Boolean(), nullable=True),
        sa.Column("name_match_confidence", sa.Float(), nullable=True),
        sa.CheckConstraint("team IN ('blue', 'orange')", name="ck_match_players_valid_match_player_team"),
    )
    op.create_index("ix_match_players_match_id", "match_players", ["match_id"])

    # Ingests
    op.create_table(
        "scoreboard_ingests",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("device_id", sa.Integer(), sa.ForeignKey("scoreboard_devices.id"), nullable=False),
        sa.Column("received_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("status", sa.String(), nullable=False, server_default="received"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("session_id", sa.Integer(), nullable=True),
        sa.Column("team_id", sa.Integer(), nullable=True),
        sa.Column("focus_playlist_id", sa.Integer(), nullable=True),
        sa.Column("dedupe_key", sa.String(64), nullable=False),
        sa.Column("match_id", sa.Integer(), sa.ForeignKey("matches.id"), nullable=True),
        sa.CheckConstraint(
            "status IN ('received', 'extracting', 'extracted', 'pending_match', 'failed')",
            name="ck_scoreboard_ingests_valid_ingest_status",
        ),
    )
    op.create_index("ix_scoreboard_ingests_device_id", "scoreboard_ingests", ["device_id"])
    op.create_index("ix_scoreboard_ingests_received_at", "scoreboard_ingests", ["received_at"])
    op.create_index(
        "ix_scoreboard_ingests_dedupe_key", "scoreboard_ingests", ["dedupe_key"], unique=True
    )

    op.create_table(
        "scoreboard_ingest_images",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "ingest_id",
            sa.Integer(),
            sa.ForeignKey("scoreboard_ingests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("image_path", sa.String(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index("ix_scoreboard_ingest_images_ingest_id", "scoreboard_ingest_images", ["ingest_id"])

    # Unmatched queue
    op.create_table(
        "scoreboard_unmatched",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "ingest_id",
            sa.Integer(),
            sa.ForeignKey("scoreboard_ingests.id", ondelete="SET NULL"),
            nullable=True,
            unique=True,
        ),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("mode", sa.String(), nullable=True),
        sa.Column("team_size", sa.Integer(), nullable=True),
        sa.Column("blue_names", sa.JSON(), nullable=False),
        sa.Column("orange_names", sa.JSON(), nullable=False),
        sa.Column("candidates", sa.JSON(), nullable=False),
        sa.Column("raw_extraction", sa.JSON(), nullable=False),
        sa.Column("derived_match", sa.JSON(), nullable=True),
        sa.Column("signature_key", sa.String(64), nullable=True),
        sa.Column("extraction_confidence", sa.Float(), nullable=True),
        sa.Column("assigned_session_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.CheckConstraint(
            "status IN ('pending', 'assigned')", name="ck_scoreboard_unmatched_valid_unmatched_status"
        ),
    )

    # Audit and settings
    op.create_table(
        "scoreboard_audit",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("device_id", sa.Integer(), nullable=True),
        sa.Column("ingest_id", sa.Integer(), nullable=True),
        sa.Column("session_id", sa.Integer(), nullable=True),
        sa.Column("team_id", sa.Integer(), nullable=True),
        sa.Column("model", sa.String(), nullable=True),
        sa.Column("input_tokens", sa.Integer(), nullable=True),
        sa.Column("cached_input_tokens", sa.Integer(), nullable=True),
        sa.Column("output_tokens", sa.Integer(), nullable=True),
        sa.Column("total_tokens", sa.Integer(), nullable=True),
        sa.Column("estimated_cost_usd", sa.Float(), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("outcome", sa.String(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index("ix_scoreboard_audit_ingest_id", "scoreboard_audit", ["ingest_id"])

    op.create_table(
        "scoreboard_settings",
        sa.Column("id", sa.Integer(), primary_key=True, server_default="1"),
        sa.Column("config_json", sa.JSON(), nullable=False, server_default="{}"),
        sa.Column("encrypted_api_key", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_by", sa.String(100), server_default="system"),
    )


def downgrade() -> None:
    op.drop_table("scoreboard_settings")
    op.drop_index("ix_scoreboard_audit_ingest_id")
    op.drop_table("scoreboard_audit")
    op.drop_table("scoreboard_unmatched")
    op.drop_index("ix_scoreboard_ingest_images_ingest_id")
    op.drop_table("scoreboard_ingest_images")
    op.drop_index("ix_scoreboard_ingests_dedupe_key")
    op.drop_index("ix_scoreboard_ingests_received_at")
    op.drop_index("ix_scoreboard_ingests_device_id")
    op.drop_table("scoreboard_ingests")
    op.drop_index("ix_match_players_match_id")
    op.drop_table("match_players")
    op.drop_index("ix_matches_signature_key")
    op.drop_index("ix_matches_dedupe_key")
    op.drop_index("ix_matches_session_id")
    op.drop_table("matches")
    op.drop_index("ix_scoreboard_devices_device_key_hash")
    op.drop_table("scoreboard_devices")
    op.drop_index("ix_snapshots_player_id")
    op.drop_index("ix_snapshots_session_id")
    op.drop_table("snapshots")
    op.drop_index("ix_players_session_id")
    op.drop_table("players")
    op.drop_table("sessions")
    op.drop_table("teams")
