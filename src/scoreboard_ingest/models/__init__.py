from scoreboard_ingest.models.audit import ScoreboardAudit
from scoreboard_ingest.models.base import Base
from scoreboard_ingest.models.device import ScoreboardDevice
from scoreboard_ingest.models.ingest import ScoreboardIngest, ScoreboardIngestImage
from scoreboard_ingest.models.match import Match, MatchPlayer
from scoreboard_ingest.models.settings_row import ScoreboardSettings
from scoreboard_ingest.models.tracked_session import PlayerSnapshot, RosterPlayer, Team, TrackedSession
from scoreboard_ingest.models.unmatched import ScoreboardUnmatched

__all__ = [
    "Base",
    "Match",
    "MatchPlayer",
    "PlayerSnapshot",
    "RosterPlayer",
    "ScoreboardAudit",
    "ScoreboardDevice",
    "ScoreboardIngest",
    "ScoreboardIngestImage",
    "ScoreboardSettings",
    "ScoreboardUnmatched",
    "Team",
    "TrackedSession",
]
