"""Bringing remote changes into the local store.

DownloadReconciler pulls a whole remote collection; RemoteListener applies
changes pushed by a subscription. Both follow the same rule: a record
that is unsynced locally is never overwritten or purged. Instead its
remote version is checked for a conflict.

CRITICAL: This module must have NO CLI or web dependencies.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from .conflicts import Conflict, ConflictManager, detect_conflict
from .models import IS_SYNCED_FIELD, ChangeType, RemoteChange, SyncScope

if TYPE_CHECKING:
    from .entity_sync import EntitySync

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Outcome of one download.

    Attributes:
        written: Remote records written to the local store
        skipped: Ids left untouched because they are unsynced locally
        conflicts: Conflicts detected among the skipped records
    """

    written: int = 0
    skipped: List[str] = field(default_factory=list)
    conflicts: List[Conflict] = field(default_factory=list)


class DownloadReconciler:
    """Merge a remote collection into the local store."""

    def __init__(
        self, entity: "EntitySync", conflicts: Optional[ConflictManager] = None
    ) -> None:
        self.entity = entity
        self.conflicts = conflicts

    def check_conflict(self, cloud: Dict[str, Any]) -> Optional[Conflict]:
        """Detect (and report) a conflict between a local and a remote record."""
        entity_id = cloud[self.entity.id_field]
        local = self.entity.local.get_by_id(entity_id)
        conflict = detect_conflict(
            self.entity.kind, local, cloud, self.entity.local.get_base(entity_id)
        )
        if conflict is not None and self.conflicts is not None:
            self.conflicts.report(conflict)
        return conflict

    async def reconcile(self, scope: SyncScope) -> ReconcileResult:
        """Fetch the remote collection for scope and merge it.

        Every fetched record whose id is unsynced locally is left untouched;
        the rest are bulk-upserted as synced.

        Raises:
            ValidationError: If the scope cannot form a remote path
            SyncError: If the remote listing fails
        """
        entity = self.entity
        docs = await entity.remote.list(entity.collection_path(scope), order_by=entity.order_by)
        unsynced_ids = {
            r.get(entity.id_field) for r in entity.local.list_unsynced(scope)
        }

        result = ReconcileResult()
        to_write = []
        for doc in docs:
            record = entity.from_remote(doc.id, doc.data, scope)
            if doc.id in unsynced_ids:
                result.skipped.append(doc.id)
                conflict = self.check_conflict(record)
                if conflict is not None:
                    result.conflicts.append(conflict)
                continue
            to_write.append(record)

        result.written = entity.local.bulk_upsert(to_write)
        logger.debug(
            f"Reconciled {entity.name}s for {scope}: {result.written} written, "
            f"{len(result.skipped)} kept local, {len(result.conflicts)} conflicts"
        )
        return result


class RemoteListener:
    """Apply a remote subscription's changes to the local store.

    added/modified changes upsert the record; removed changes purge it
    (a match group's team matches go with it). Records unsynced locally
    are skipped, with a conflict check for non-removal changes.
    """

    def __init__(
        self,
        entity: "EntitySync",
        scope: SyncScope,
        conflicts: Optional[ConflictManager] = None,
        on_applied: Optional[Callable[[RemoteChange], None]] = None,
    ) -> None:
        self.entity = entity
        self.scope = scope
        self.reconciler = DownloadReconciler(entity, conflicts)
        self.on_applied = on_applied
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def active(self) -> bool:
        return self._unsubscribe is not None

    def start(self) -> None:
        """Subscribe to the scope's remote collection (needs a running loop)."""
        if self._unsubscribe is None:
            path = self.entity.collection_path(self.scope)
            self._unsubscribe = self.entity.remote.subscribe(path, self.handle_changes)
            logger.debug(f"Listening to {path}")

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def handle_changes(self, changes: List[RemoteChange]) -> None:
        if self._unsubscribe is None:
            return
        for change in changes:
            try:
                self._apply(change)
            except Exception as e:
                logger.error(
                    f"Failed to apply remote {change.type.value} of "
                    f"{self.entity.name} {change.doc_id}: {e}"
                )

    def _apply(self, change: RemoteChange) -> None:
        local = self.entity.local.get_by_id(change.doc_id)
        if local is not None and not local[IS_SYNCED_FIELD]:
            if change.type is not ChangeType.REMOVED and change.data is not None:
                cloud = self.entity.from_remote(change.doc_id, change.data, self.scope)
                self.reconciler.check_conflict(cloud)
            return

        if change.type is ChangeType.REMOVED:
            if local is not None:
                self.entity.local.hard_delete(change.doc_id)
        elif change.data is not None:
            record = self.entity.from_remote(change.doc_id, change.data, self.scope)
            self.entity.local.bulk_upsert([record])
        if self.on_applied is not None:
            self.on_applied(change)


__all__ = ["DownloadReconciler", "ReconcileResult", "RemoteListener"]
