"""Match group sync.

A match group pairs two teams on a court; its team matches live in a
subcollection under the group's document. Deleting a group deletes those
children remotely before the group itself, so no team match is left
without a parent.

CRITICAL: This module must have NO CLI or web dependencies.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

from .entity_sync import EntitySync
from .models import EntityKind, SyncScope
from .paths import match_groups_path, team_matches_path

logger = logging.getLogger(__name__)


class MatchGroupSync(EntitySync):
    """Sync module for match groups (team-vs-team pairings)."""

    kind = EntityKind.MATCH_GROUP
    name = "match group"
    payload_fields = (
        "court_id",
        "round_id",
        "sort_order",
        "team_a_id",
        "team_b_id",
        "is_completed",
    )
    order_by = "sort_order"

    def collection_path(self, scope: SyncScope) -> str:
        return match_groups_path(scope.organization_id, scope.tournament_id)

    def children_path(self, record: Dict[str, Any]) -> str:
        """Remote collection of the group's team matches."""
        scope = self.record_scope(record)
        return team_matches_path(scope.organization_id, scope.tournament_id, self.entity_id(record))

    async def delete_remote(self, record: Dict[str, Any]) -> None:
        """Delete the group's team matches, then the group."""
        children = await self.remote.list(self.children_path(record))
        if children:
            await asyncio.gather(*(self.remote.delete(child.path) for child in children))
            logger.debug(
                f"Deleted {len(children)} team matches of group {self.entity_id(record)}"
            )
        await self.remote.delete(self.document_path(record))
