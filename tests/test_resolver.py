"""Tests for session resolution (matched / ambiguous / unmatched)."""

from scoreboard_ingest.matching.config import MatchingPolicy
from scoreboard_ingest.matching.resolver import (
    DECISION_AMBIGUOUS,
    DECISION_MATCHED,
    DECISION_UNMATCHED,
    REASON_AMBIGUOUS,
    REASON_UNMATCHED,
    CandidateSession,
    load_candidate_sessions,
    resolve_extraction,
    resolve_session,
)
from scoreboard_ingest.models.tracked_session import TrackedSession

from conftest import DEFAULT_BOARD

ALPHA = CandidateSession(session_id=1, team_id=10, mode="2v2", roster=["Alice", "Bob"])
BRAVO = CandidateSession(session_id=2, team_id=None, mode="2v2", roster=["Charlie", "Dave"])


def test_single_high_confidence_session_is_matched():
    resolution = resolve_session(["Alice", "Bob"], ["Xeno", "Yuri"], [ALPHA, BRAVO])
    assert resolution.status == DECISION_MATCHED
    assert resolution.matched
    assert resolution.session_id == 1
    assert resolution.team_size == 2
    assert resolution.mode == "2v2"
    assert resolution.focus_playlist_id == 11
    assert resolution.candidates[0].session_id == 1
    assert resolution.candidates[0].score == 4
    assert resolution.candidates[0].side == "blue"


def test_roster_on_orange_side_is_found():
    resolution = resolve_session(["Xeno", "Yuri"], ["Charlie", "Dave"], [ALPHA, BRAVO])
    assert resolution.session_id == 2
    assert resolution.candidates[0].side == "orange"


def test_one_fuzzy_name_still_auto_accepts():
    resolution = resolve_session(["Alice", "bobb"], ["Xeno", "Yuri"], [ALPHA, BRAVO])
    assert resolution.status == DECISION_MATCHED
    assert resolution.candidates[0].score == 3


def test_two_fuzzy_names_go_to_review():
    resolution = resolve_session(["alyce", "bobb"], ["Xeno", "Yuri"], [ALPHA, BRAVO])
    assert resolution.status == DECISION_UNMATCHED
    assert resolution.reason == REASON_UNMATCHED
    assert resolution.candidates[0].session_id == 1


def test_duplicate_rosters_are_ambiguous():
    twin = CandidateSession(session_id=3, team_id=None, mode="2v2", roster=["Alice", "Bob"])
    resolution = resolve_session(["Alice", "Bob"], ["Xeno", "Yuri"], [ALPHA, twin])
    assert resolution.status == DECISION_AMBIGUOUS
    assert resolution.reason == REASON_AMBIGUOUS
    assert resolution.session_id is None
    assert {c.session_id for c in resolution.candidates} == {1, 3}


def test_unequal_sides_have_no_team_size():
    resolution = resolve_session(["Alice", "Bob"], ["Xeno"], [ALPHA])
    assert resolution.team_size is None
    assert resolution.mode is None
    assert resolution.status == DECISION_UNMATCHED
    # Still scored so the operator sees a suggestion
    assert resolution.candidates[0].session_id == 1


def test_sessions_of_other_mode_or_size_are_skipped():
    solo = CandidateSession(session_id=4, team_id=None, mode="solo", roster=["Alice"])
    empty = CandidateSession(session_id=5, team_id=None, mode="2v2", roster=[])
    resolution = resolve_session(["Alice", "Bob"], ["Xeno", "Yuri"], [solo, empty, ALPHA])
    assert [c.session_id for c in resolution.candidates] == [1]


def test_candidate_list_is_capped():
    sessions = [
        CandidateSession(session_id=i, team_id=None, mode="2v2", roster=["Alice", f"Other{i}"])
        for i in range(1, 9)
    ]
    resolution = resolve_session(
        ["Alice", "Bob"], ["Xeno", "Yuri"], sessions, MatchingPolicy(max_candidates=3)
    )
    assert len(resolution.candidates) == 3
    # Equal scores keep input order
    assert [c.session_id for c in resolution.candidates] == [1, 2, 3]


def test_resolve_extraction_uses_board_names():
    resolution = resolve_extraction(DEFAULT_BOARD, [ALPHA, BRAVO])
    assert resolution.blue_names == ["Alice", "Bob"]
    assert resolution.orange_names == ["Xeno", "Yuri"]
    assert resolution.session_id == 1


async def test_load_candidate_sessions_skips_ended(test_session_factory, seeded_sessions):
    async with test_session_factory() as session:
        async with session.begin():
            ended = await session.get(TrackedSession, seeded_sessions["bravo"])
            ended.is_ended = True

    async with test_session_factory() as session:
        candidates = await load_candidate_sessions(session)

    assert [c.session_id for c in candidates] == [seeded_sessions["alpha"]]
    assert candidates[0].roster == ["Alice", "Bob"]
    assert candidates[0].team_id == seeded_sessions["team"]
