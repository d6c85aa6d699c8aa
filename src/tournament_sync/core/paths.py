"""Remote path builders.

The remote hierarchy:

    organizations/{orgId}
      tournaments/{tournamentId}
        teams/{teamId}
        matches/{matchId}
        matchGroups/{matchGroupId}
          teamMatches/{matchId}

Every id is validated before it becomes a path segment, so a record with a
missing or malformed id raises ValidationError instead of producing a
wrong path.
"""

from __future__ import annotations

from .validation import validate_entity_id

ORGANIZATIONS = "organizations"
TOURNAMENTS = "tournaments"
TEAMS = "teams"
MATCHES = "matches"
MATCH_GROUPS = "matchGroups"
TEAM_MATCHES = "teamMatches"


def organization_path(org_id: str) -> str:
    return f"{ORGANIZATIONS}/{validate_entity_id(org_id, 'organization_id')}"


def tournaments_path(org_id: str) -> str:
    return f"{organization_path(org_id)}/{TOURNAMENTS}"


def tournament_path(org_id: str, tournament_id: str) -> str:
    return f"{tournaments_path(org_id)}/{validate_entity_id(tournament_id, 'tournament_id')}"


def teams_path(org_id: str, tournament_id: str) -> str:
    return f"{tournament_path(org_id, tournament_id)}/{TEAMS}"


def team_path(org_id: str, tournament_id: str, team_id: str) -> str:
    return f"{teams_path(org_id, tournament_id)}/{validate_entity_id(team_id, 'team_id')}"


def matches_path(org_id: str, tournament_id: str) -> str:
    return f"{tournament_path(org_id, tournament_id)}/{MATCHES}"


def match_path(org_id: str, tournament_id: str, match_id: str) -> str:
    return f"{matches_path(org_id, tournament_id)}/{validate_entity_id(match_id, 'match_id')}"


def match_groups_path(org_id: str, tournament_id: str) -> str:
    return f"{tournament_path(org_id, tournament_id)}/{MATCH_GROUPS}"


def match_group_path(org_id: str, tournament_id: str, match_group_id: str) -> str:
    group = validate_entity_id(match_group_id, "match_group_id")
    return f"{match_groups_path(org_id, tournament_id)}/{group}"


def team_matches_path(org_id: str, tournament_id: str, match_group_id: str) -> str:
    return f"{match_group_path(org_id, tournament_id, match_group_id)}/{TEAM_MATCHES}"


def team_match_path(
    org_id: str, tournament_id: str, match_group_id: str, match_id: str
) -> str:
    match = validate_entity_id(match_id, "match_id")
    return f"{team_matches_path(org_id, tournament_id, match_group_id)}/{match}"
