from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from scoreboard_ingest.models.base import Base, utcnow


class ScoreboardDevice(Base):
    """A physical capture unit allowed to upload scoreboard photos.

    Only the SHA-256 of the device key is stored; the key itself is handed
    out once at registration.
    """

    __tablename__ = "scoreboard_devices"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    name: Mapped[str | None] = mapped_column(sa.String, nullable=True)
    device_key_hash: Mapped[str] = mapped_column(sa.String(64), unique=True, index=True)
    is_enabled: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(sa.DateTime, default=utcnow)
    last_seen_at: Mapped[datetime | None] = mapped_column(sa.DateTime, nullable=True)
