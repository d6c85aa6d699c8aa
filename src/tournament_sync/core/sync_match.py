"""Individual match sync.

CRITICAL: This module must have NO CLI or web dependencies.
"""

from __future__ import annotations

from .entity_sync import EntitySync
from .models import EntityKind, SyncScope
from .paths import matches_path


class MatchSync(EntitySync):
    """Sync module for individual matches."""

    kind = EntityKind.MATCH
    name = "match"
    payload_fields = (
        "court_id",
        "round_id",
        "players",
        "sort_order",
        "is_completed",
        "winner",
        "win_reason",
    )
    order_by = "sort_order"

    def collection_path(self, scope: SyncScope) -> str:
        return matches_path(scope.organization_id, scope.tournament_id)
