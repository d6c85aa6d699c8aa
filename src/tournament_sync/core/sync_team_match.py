"""Team match sync.

Team matches are the individual bouts inside a match group and are stored
under the group's document remotely.

CRITICAL: This module must have NO CLI or web dependencies.
"""

from __future__ import annotations

from typing import Any, Dict

from .entity_sync import EntitySync
from .models import MATCH_GROUP_ID_FIELD, EntityKind, SyncScope
from .paths import team_matches_path
from .validation import validate_entity_id


class TeamMatchSync(EntitySync):
    """Sync module for team matches."""

    kind = EntityKind.TEAM_MATCH
    name = "team match"
    payload_fields = (
        "round_id",
        "players",
        "sort_order",
        "is_completed",
        "winner",
        "win_reason",
    )
    order_by = "sort_order"

    def collection_path(self, scope: SyncScope) -> str:
        return team_matches_path(
            scope.organization_id, scope.tournament_id, scope.match_group_id
        )

    def record_scope(self, record: Dict[str, Any]) -> SyncScope:
        scope = super().record_scope(record)
        group = validate_entity_id(record.get(MATCH_GROUP_ID_FIELD), MATCH_GROUP_ID_FIELD)
        return scope.with_group(group)

    def to_remote(self, record: Dict[str, Any]) -> Dict[str, Any]:
        payload = super().to_remote(record)
        payload[MATCH_GROUP_ID_FIELD] = record.get(MATCH_GROUP_ID_FIELD)
        return payload

    def from_remote(
        self, doc_id: str, data: Dict[str, Any], scope: SyncScope
    ) -> Dict[str, Any]:
        record = super().from_remote(doc_id, data, scope)
        record[MATCH_GROUP_ID_FIELD] = scope.match_group_id
        return record
