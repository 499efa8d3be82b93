"""Semantic dedupe signature computed from interpreted scoreboard content.

Two different photographs of the same board (other angle, crop or
compression) read to the same names and numbers, and therefore to the
same signature, while their raw bytes differ.
"""

from __future__ import annotations

import hashlib
import json
import re

from scoreboard_ingest.extraction.schemas import TEAM_SIDES, ScoreboardExtraction

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def _signature_name(value: str | None) -> str:
    return _NON_ALNUM.sub("", (value or "").lower())


def build_dedupe_signature(extraction: ScoreboardExtraction) -> str:
    """Return the 64-character SHA-256 signature of an extraction.

    Covers the winning side plus, per player row and in board order, the
    normalized name and the five stat columns.
    """

    def team_key(side) -> list[str]:
        rows = []
        for player in extraction.teams.side(side):
            stats = "|".join("" if v is None else str(v) for v in player.stat_values())
            rows.append(f"{_signature_name(player.name)}:{stats}")
        return rows

    payload = {
        "winning_team": extraction.match.winning_team or "",
        **{side: team_key(side) for side in TEAM_SIDES},
    }
    content = json.dumps(payload, sort_keys=True, ensure_ascii=False)
    return hashlib.sha256(content.encode()).hexdigest()
