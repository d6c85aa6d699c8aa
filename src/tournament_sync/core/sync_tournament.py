"""Tournament sync.

Tournaments are the aggregate root under an organization. Besides upload,
this module downloads every tournament of an organization into the local
store, leaving locally edited tournaments alone.

CRITICAL: This module must have NO CLI or web dependencies.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .conflicts import ConflictManager
from .entity_sync import EntitySync
from .models import ORGANIZATION_ID_FIELD, EntityKind, SyncScope
from .paths import tournaments_path
from .reconciler import ReconcileResult
from .validation import validate_entity_id

logger = logging.getLogger(__name__)


class TournamentSync(EntitySync):
    """Sync module for tournaments."""

    kind = EntityKind.TOURNAMENT
    name = "tournament"
    payload_fields = (
        "tournament_name",
        "tournament_date",
        "tournament_type",
        "tournament_detail",
        "location",
        "default_match_time",
        "courts",
        "rounds",
        "is_team_form_open",
        "is_archived",
    )
    date_fields = ("tournament_date",)
    order_by = "tournament_date"

    def collection_path(self, scope: SyncScope) -> str:
        return tournaments_path(scope.organization_id)

    def record_scope(self, record: Dict[str, Any]) -> SyncScope:
        # A tournament's own id is its tournament_id
        return SyncScope(
            validate_entity_id(record.get(ORGANIZATION_ID_FIELD), ORGANIZATION_ID_FIELD),
            self.entity_id(record),
        )

    def from_remote(
        self, doc_id: str, data: Dict[str, Any], scope: SyncScope
    ) -> Dict[str, Any]:
        return super().from_remote(doc_id, data, SyncScope(scope.organization_id, doc_id))

    async def download_tournaments(
        self, organization_id: str, conflicts: Optional[ConflictManager] = None
    ) -> ReconcileResult:
        """Download every tournament of an organization.

        Tournaments edited locally and not yet uploaded are kept as they are.
        Remote dates are converted to datetimes.
        """
        scope = SyncScope(validate_entity_id(organization_id, "organization_id"))
        result = await self.download(scope, conflicts)
        logger.info(
            f"Downloaded {result.written} tournaments for {organization_id} "
            f"({len(result.skipped)} kept local)"
        )
        return result
