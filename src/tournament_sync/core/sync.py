"""Upload of locally changed records to the remote store.

sync_record() reconciles one record: a tombstone becomes a remote delete
followed by a local purge, anything else becomes a remote upsert followed
by marking the local record synced. upload_batch() runs it over every
unsynced record of one entity kind and isolates per-record failures.

CRITICAL: This module must have NO CLI or web dependencies.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

from .models import DELETED_FIELD, IS_SYNCED_FIELD, UPDATED_AT_FIELD, SyncScope
from .remote import RemoteStore
from .validation import ValidationError

if TYPE_CHECKING:
    from .entity_sync import EntitySync

logger = logging.getLogger(__name__)


class SyncAction(Enum):
    """What sync_record() did with a record."""

    UPSERTED = "upserted"
    DELETED = "deleted"
    SKIPPED = "skipped"


@dataclass
class BatchResult:
    """Aggregate result of one batch upload.

    Attributes:
        success_count: Records upserted or deleted remotely
        fail_count: Records whose remote call failed (left for retry)
        skipped_count: Records with unusable ids, or already synced by
            another pass
    """

    success_count: int = 0
    fail_count: int = 0
    skipped_count: int = 0

    @property
    def attempted(self) -> int:
        return self.success_count + self.fail_count

    def __add__(self, other: "BatchResult") -> "BatchResult":
        return BatchResult(
            self.success_count + other.success_count,
            self.fail_count + other.fail_count,
            self.skipped_count + other.skipped_count,
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            "success_count": self.success_count,
            "fail_count": self.fail_count,
            "skipped_count": self.skipped_count,
        }


async def upsert_document(
    remote: RemoteStore,
    collection_path: str,
    doc_id: str,
    payload: Dict[str, Any],
) -> None:
    """Create the document under doc_id if absent, else update it in full."""
    path = f"{collection_path}/{doc_id}"
    existing = await remote.get(path)
    if existing is None:
        await remote.create(collection_path, payload, doc_id=doc_id)
    else:
        await remote.update(path, payload)


async def sync_record(entity: "EntitySync", record: Dict[str, Any]) -> SyncAction:
    """Upload one local record.

    The record's flags are re-read from the local store first, so a record
    already handled by another pass is skipped.

    Raises:
        ValidationError: If the record's ids cannot form a remote path
        SyncError: If the remote store call fails. The local record is
            left untouched.
    """
    entity_id = entity.entity_id(record)
    current = entity.local.get_by_id(entity_id)
    if current is None or current[IS_SYNCED_FIELD]:
        logger.debug(f"{entity.name} {entity_id} already reconciled, skipping")
        return SyncAction.SKIPPED

    if current[DELETED_FIELD]:
        await entity.delete_remote(current)
        entity.local.hard_delete(entity_id)
        logger.debug(f"Deleted {entity.name} {entity_id}")
        return SyncAction.DELETED

    payload = entity.to_remote(current)
    await upsert_document(
        entity.remote, entity.collection_path(entity.record_scope(current)), entity_id, payload
    )
    marked = entity.local.mark_synced(
        entity_id,
        base_payload=entity.base_of(payload),
        expected_updated_at=current[UPDATED_AT_FIELD],
    )
    if not marked:
        logger.info(f"{entity.name} {entity_id} changed during upload, left pending")
    logger.debug(f"Uploaded {entity.name} {entity_id}")
    return SyncAction.UPSERTED


async def upload_batch(
    entity: "EntitySync",
    scope: SyncScope,
    max_concurrency: Optional[int] = None,
) -> BatchResult:
    """Upload every unsynced record of one kind within a scope.

    Records are uploaded concurrently. A failing record is logged and
    counted; it never aborts the batch.

    Args:
        entity: Entity sync module for the kind
        scope: Organization/tournament (and group) to upload
        max_concurrency: Limit on simultaneous uploads (None: unlimited)

    Returns:
        BatchResult with success, failure and skip counts
    """
    records = entity.local.list_unsynced(scope)
    if not records:
        return BatchResult()

    semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency else None

    async def upload_one(record: Dict[str, Any]) -> Optional[SyncAction]:
        try:
            entity_id = entity.entity_id(record)
            entity.document_path(record)
        except ValidationError as e:
            logger.warning(f"{entity.name} has no usable id, skipping: {e}")
            return SyncAction.SKIPPED
        try:
            if semaphore is None:
                return await sync_record(entity, record)
            async with semaphore:
                return await sync_record(entity, record)
        except Exception as e:
            logger.error(f"Failed to sync {entity.name} {entity_id}: {e}")
            return None

    outcomes = await asyncio.gather(*(upload_one(r) for r in records))

    result = BatchResult()
    for outcome in outcomes:
        if outcome is None:
            result.fail_count += 1
        elif outcome is SyncAction.SKIPPED:
            result.skipped_count += 1
        else:
            result.success_count += 1
    logger.info(
        f"Uploaded {entity.name}s for {scope}: {result.success_count} ok, "
        f"{result.fail_count} failed, {result.skipped_count} skipped"
    )
    return result


__all__ = ["BatchResult", "SyncAction", "sync_record", "upload_batch", "upsert_document"]
