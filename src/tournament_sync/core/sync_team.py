"""Team sync.

CRITICAL: This module must have NO CLI or web dependencies.
"""

from __future__ import annotations

from .entity_sync import EntitySync
from .models import EntityKind, SyncScope
from .paths import teams_path


class TeamSync(EntitySync):
    """Sync module for teams registered to a tournament."""

    kind = EntityKind.TEAM
    name = "team"
    payload_fields = (
        "team_name",
        "representative_name",
        "representative_phone",
        "representative_email",
        "players",
        "remarks",
        "is_approved",
    )

    def collection_path(self, scope: SyncScope) -> str:
        return teams_path(scope.organization_id, scope.tournament_id)
