"""Roster name matching for OCR'd scoreboard names.

Names are compared after aggressive normalization (clan tags, suffixes
and punctuation dropped).  A pair scores ``exact``, ``fuzzy`` (containment
or a small Levenshtein distance) or nothing at all; there is no partial
credit below the fuzzy cutoff.  Roster members are assigned greedily and
each extracted name can be consumed only once.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from rapidfuzz.distance import Levenshtein

from scoreboard_ingest.matching.config import MatchingPolicy

_BRACKETED = re.compile(r"\[[^\]]*\]")
_PARENTHESIZED = re.compile(r"\([^)]*\)")
_NON_ALNUM = re.compile(r"[^a-z0-9]")

MATCH_EXACT = "exact"
MATCH_CONTAINS = "contains"
MATCH_FUZZY = "fuzzy"


def normalize_name(value: str | None) -> str:
    """Lowercase, drop ``[clan]`` tags and ``(suffixes)``, keep ``[a-z0-9]`` only."""
    if not value:
        return ""
    result = value.lower()
    result = _BRACKETED.sub("", result)
    result = _PARENTHESIZED.sub("", result)
    return _NON_ALNUM.sub("", result)


@dataclass(frozen=True)
class PairScore:
    score: int
    kind: str | None
    confidence: float

    @property
    def exact(self) -> bool:
        return self.kind == MATCH_EXACT

    @property
    def fuzzy(self) -> bool:
        return self.kind in (MATCH_CONTAINS, MATCH_FUZZY)


NO_MATCH = PairScore(score=0, kind=None, confidence=0.0)


def score_pair(roster_name: str, extracted_name: str, policy: MatchingPolicy | None = None) -> PairScore:
    """Score one roster gamertag against one extracted name."""
    if policy is None:
        policy = MatchingPolicy()

    a = normalize_name(roster_name)
    b = normalize_name(extracted_name)
    if not a or not b:
        return NO_MATCH
    if a == b:
        return PairScore(policy.exact_score, MATCH_EXACT, 1.0)

    shorter, longer = (a, b) if len(a) <= len(b) else (b, a)
    if len(shorter) >= policy.containment_min_length and shorter in longer:
        return PairScore(policy.fuzzy_score, MATCH_CONTAINS, policy.containment_confidence)

    distance = Levenshtein.distance(a, b)
    longest = max(len(a), len(b))
    if distance <= policy.max_edit_distance or (
        longest <= policy.short_name_length and distance <= policy.short_name_max_edit_distance
    ):
        return PairScore(policy.fuzzy_score, MATCH_FUZZY, round(1 - distance / longest, 2))

    return NO_MATCH


@dataclass
class RosterMatch:
    """Greedy one-to-one assignment of a roster onto one side's names.

    ``assignments`` maps roster index to ``(extracted index, PairScore)``.
    """

    score: int = 0
    matched_count: int = 0
    exact_count: int = 0
    fuzzy_count: int = 0
    assignments: dict[int, tuple[int, PairScore]] = field(default_factory=dict)


def match_roster(
    roster: list[str], names: list[str], policy: MatchingPolicy | None = None
) -> RosterMatch:
    """Assign each roster member the best-scoring still-unused extracted name.

    Roster members are visited in order; ties keep the earliest name.
    """
    result = RosterMatch()
    used: set[int] = set()

    for roster_index, gamertag in enumerate(roster):
        best_index = -1
        best = NO_MATCH
        for index, name in enumerate(names):
            if index in used:
                continue
            candidate = score_pair(gamertag, name, policy)
            if candidate.score > best.score:
                best = candidate
                best_index = index

        if best.score > 0 and best_index >= 0:
            used.add(best_index)
            result.assignments[roster_index] = (best_index, best)
            result.score += best.score
            result.matched_count += 1
            if best.exact:
                result.exact_count += 1
            if best.fuzzy:
                result.fuzzy_count += 1

    return result


@dataclass(frozen=True)
class RosterIdentity:
    player_id: int
    gamertag: str
    platform: str


@dataclass(frozen=True)
class MappedPlayer:
    extracted_name: str | None
    player_id: int | None
    gamertag: str
    platform: str
    confidence: float | None


def map_players(
    extracted_names: list[str | None],
    identities: list[RosterIdentity],
    policy: MatchingPolicy | None = None,
) -> list[MappedPlayer]:
    """Map one side's extracted names onto roster identities.

    Returns one entry per extracted name, in input order.  Unmapped rows
    keep the raw name (``"Unknown"`` when blank) and the default platform.
    """
    if policy is None:
        policy = MatchingPolicy()

    names = [name or "" for name in extracted_names]
    roster_match = match_roster([i.gamertag for i in identities], names, policy)
    by_extracted = {
        extracted_index: (identities[roster_index], pair)
        for roster_index, (extracted_index, pair) in roster_match.assignments.items()
    }

    mapped = []
    for index, raw in enumerate(extracted_names):
        hit = by_extracted.get(index)
        if hit is not None:
            identity, pair = hit
            mapped.append(
                MappedPlayer(
                    extracted_name=raw,
                    player_id=identity.player_id,
                    gamertag=identity.gamertag,
                    platform=identity.platform,
                    confidence=pair.confidence,
                )
            )
        else:
            mapped.append(
                MappedPlayer(
                    extracted_name=raw,
                    player_id=None,
                    gamertag=(raw or "").strip() or "Unknown",
                    platform=policy.default_platform,
                    confidence=None,
                )
            )
    return mapped
