"""SQLAlchemy model for admin-editable runtime settings."""

from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from scoreboard_ingest.models.base import Base


class ScoreboardSettings(Base):
    """Singleton row (``id=1``) holding admin settings as JSON.

    ``config_json`` carries ``retention_days`` and matching-policy
    overrides.  The vision API key is Fernet-encrypted into its own column
    so it never travels with the JSON blob.
    """

    __tablename__ = "scoreboard_settings"

    id: Mapped[int] = mapped_column(primary_key=True, default=1)
    config_json: Mapped[dict] = mapped_column(sa.JSON, server_default="{}", default=dict)
    encrypted_api_key: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(sa.DateTime, server_default=sa.text("CURRENT_TIMESTAMP"))
    updated_by: Mapped[str] = mapped_column(sa.String(100), server_default="system")
