"""Shared behavior of the per-kind entity sync modules.

Each subclass supplies the remote field list and the path builders for
one entity kind; upload, download and the record mapping live here.

CRITICAL: This module must have NO CLI or web dependencies.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from .conflicts import ConflictManager
from .database import LocalTable, split_record
from .models import (
    CREATED_AT_FIELD,
    DELETED_FIELD,
    ENTITY_ID_FIELDS,
    IS_SYNCED_FIELD,
    MATCH_GROUP_ID_FIELD,
    ORGANIZATION_ID_FIELD,
    ROW_ID_FIELD,
    TOURNAMENT_ID_FIELD,
    UPDATED_AT_FIELD,
    EntityKind,
    SyncableRecord,
    SyncScope,
)
from .reconciler import DownloadReconciler, ReconcileResult
from .remote import RemoteStore
from .sync import BatchResult, upload_batch
from .timestamp_utils import to_local_datetime
from .validation import validate_entity_id

logger = logging.getLogger(__name__)


class EntitySync:
    """Sync module for one entity kind.

    Attributes:
        kind: Entity kind handled
        name: Human-readable kind name used in log messages
        payload_fields: Domain fields sent to the remote store
        date_fields: Payload fields holding dates
        order_by: Remote field used to order downloads
    """

    kind: EntityKind
    name: str = "record"
    payload_fields: Tuple[str, ...] = ()
    date_fields: Tuple[str, ...] = ()
    order_by: Optional[str] = None

    def __init__(
        self,
        local: LocalTable,
        remote: RemoteStore,
        max_concurrency: Optional[int] = None,
    ) -> None:
        if local.kind is not self.kind:
            raise ValueError(f"{type(self).__name__} needs the {self.kind.value} table")
        self.local = local
        self.remote = remote
        self.max_concurrency = max_concurrency

    @property
    def id_field(self) -> str:
        return ENTITY_ID_FIELDS[self.kind]

    def entity_id(self, record: Dict[str, Any]) -> str:
        """The record's own id, validated for use as a path segment."""
        return validate_entity_id(record.get(self.id_field), self.id_field)

    # ===== Paths =====

    def collection_path(self, scope: SyncScope) -> str:
        """Remote collection holding records of this kind in scope."""
        raise NotImplementedError

    def document_path(self, record: Dict[str, Any]) -> str:
        """Remote document path of one record."""
        return f"{self.collection_path(self.record_scope(record))}/{self.entity_id(record)}"

    def record_scope(self, record: Dict[str, Any]) -> SyncScope:
        """Scope a record sits in, from its foreign keys."""
        return SyncScope(
            validate_entity_id(record.get(ORGANIZATION_ID_FIELD), ORGANIZATION_ID_FIELD),
            validate_entity_id(record.get(TOURNAMENT_ID_FIELD), TOURNAMENT_ID_FIELD),
        )

    # ===== Field mapping =====

    def to_remote(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Map a local record to the remote payload.

        Only the kind's id and payload fields are sent; local bookkeeping
        (row id, sync and tombstone flags) and foreign keys stay behind.
        """
        payload = {self.id_field: self.entity_id(record)}
        for field_name in self.payload_fields:
            payload[field_name] = record.get(field_name)
        return payload

    def from_remote(
        self, doc_id: str, data: Dict[str, Any], scope: SyncScope
    ) -> Dict[str, Any]:
        """Map a remote document to the local record shape.

        Foreign keys come from the scope the document was fetched under.
        Timestamps and date fields become datetimes.
        """
        record: Dict[str, Any] = {
            ORGANIZATION_ID_FIELD: scope.organization_id,
            TOURNAMENT_ID_FIELD: scope.tournament_id,
            self.id_field: doc_id,
        }
        for field_name in self.payload_fields:
            record[field_name] = data.get(field_name)
        for field_name in self.date_fields:
            record[field_name] = to_local_datetime(record.get(field_name))
        record[CREATED_AT_FIELD] = to_local_datetime(data.get(CREATED_AT_FIELD))
        record[UPDATED_AT_FIELD] = to_local_datetime(data.get(UPDATED_AT_FIELD))
        return record

    def base_of(self, record_or_payload: Dict[str, Any]) -> Dict[str, Any]:
        """Domain fields of a payload, as kept for conflict detection."""
        return split_record(self.kind, record_or_payload)

    def view(self, record: Dict[str, Any]) -> SyncableRecord:
        """Read-only view of a local record for display."""
        return SyncableRecord(
            kind=self.kind,
            entity_id=record.get(self.id_field),
            row_id=record.get(ROW_ID_FIELD),
            organization_id=record.get(ORGANIZATION_ID_FIELD),
            tournament_id=record.get(TOURNAMENT_ID_FIELD),
            match_group_id=record.get(MATCH_GROUP_ID_FIELD)
            if self.kind is EntityKind.TEAM_MATCH
            else None,
            is_synced=bool(record.get(IS_SYNCED_FIELD)),
            deleted=bool(record.get(DELETED_FIELD)),
            created_at=record.get(CREATED_AT_FIELD),
            updated_at=record.get(UPDATED_AT_FIELD),
            payload=self.base_of(record),
        )

    # ===== Remote operations =====

    async def delete_remote(self, record: Dict[str, Any]) -> None:
        """Delete a record's remote document."""
        await self.remote.delete(self.document_path(record))

    async def upload(self, scope: SyncScope) -> BatchResult:
        """Upload every unsynced record of this kind in scope."""
        return await upload_batch(self, scope, self.max_concurrency)

    async def download(
        self, scope: SyncScope, conflicts: Optional[ConflictManager] = None
    ) -> ReconcileResult:
        """Merge the remote collection into the local store.

        Locally unsynced records are never overwritten; conflicts found
        among them are reported to the conflict manager when one is given.
        """
        return await DownloadReconciler(self, conflicts).reconcile(scope)


__all__ = ["EntitySync"]
