"""Test helper functions for tournament sync tests.

This module provides fixed ids and builders for local records of every
entity kind.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

ORG_ID = "org-1"
TOURNAMENT_ID = "tournament-1"
OTHER_TOURNAMENT_ID = "tournament-2"


def tournament_record(tournament_id: str = TOURNAMENT_ID, **fields: Any) -> Dict[str, Any]:
    """Local tournament record ready for LocalTable.create()."""
    record: Dict[str, Any] = {
        "organization_id": ORG_ID,
        "tournament_id": tournament_id,
        "tournament_name": "Spring Open",
        "tournament_date": datetime(2026, 4, 1, tzinfo=timezone.utc),
        "tournament_type": "team",
        "location": "City Gym",
        "courts": [{"court_id": "court-1", "court_name": "A"}],
        "rounds": [{"round_id": "round-1", "round_name": "Quarterfinal"}],
        "is_archived": False,
    }
    record.update(fields)
    return record


def team_record(team_id: str, tournament_id: str = TOURNAMENT_ID, **fields: Any) -> Dict[str, Any]:
    record: Dict[str, Any] = {
        "organization_id": ORG_ID,
        "tournament_id": tournament_id,
        "team_id": team_id,
        "team_name": f"Team {team_id}",
        "players": [{"player_id": f"{team_id}-p1", "last_name": "Sato"}],
        "is_approved": True,
    }
    record.update(fields)
    return record


def match_record(match_id: str, tournament_id: str = TOURNAMENT_ID, **fields: Any) -> Dict[str, Any]:
    record: Dict[str, Any] = {
        "organization_id": ORG_ID,
        "tournament_id": tournament_id,
        "match_id": match_id,
        "court_id": "court-1",
        "round_id": "round-1",
        "players": {"red": {"player_id": "p-red", "score": 0}, "white": {"player_id": "p-white", "score": 0}},
        "sort_order": 1,
        "is_completed": False,
        "winner": None,
        "win_reason": None,
    }
    record.update(fields)
    return record


def match_group_record(group_id: str, tournament_id: str = TOURNAMENT_ID, **fields: Any) -> Dict[str, Any]:
    record: Dict[str, Any] = {
        "organization_id": ORG_ID,
        "tournament_id": tournament_id,
        "match_group_id": group_id,
        "court_id": "court-1",
        "round_id": "round-1",
        "sort_order": 1,
        "team_a_id": "team-a",
        "team_b_id": "team-b",
        "is_completed": False,
    }
    record.update(fields)
    return record


def team_match_record(
    match_id: str, group_id: str, tournament_id: str = TOURNAMENT_ID, **fields: Any
) -> Dict[str, Any]:
    record: Dict[str, Any] = {
        "organization_id": ORG_ID,
        "tournament_id": tournament_id,
        "match_group_id": group_id,
        "match_id": match_id,
        "round_id": "round-1",
        "players": {"red": {"player_id": "p-red"}, "white": {"player_id": "p-white"}},
        "sort_order": 1,
        "is_completed": False,
        "winner": None,
        "win_reason": None,
    }
    record.update(fields)
    return record


def tournament_doc_path(tournament_id: str = TOURNAMENT_ID) -> str:
    return f"organizations/{ORG_ID}/tournaments/{tournament_id}"


def doc_path(collection: str, doc_id: str, tournament_id: str = TOURNAMENT_ID) -> str:
    """Path of a document in one of a tournament's collections."""
    return f"{tournament_doc_path(tournament_id)}/{collection}/{doc_id}"
