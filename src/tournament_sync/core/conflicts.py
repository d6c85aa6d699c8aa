"""Conflict detection and resolution for tournament sync.

This module handles:
- Detecting when a locally edited record has also moved on remotely
- Queueing detected conflicts and presenting one at a time
- Resolving the presented conflict (keep local or adopt remote)

A conflict exists only while the local record is unsynced. The fields
reported are those where the local and remote values differ AND the remote
value has moved away from the base version (the last remote version this
device agreed with). A field changed only on this device is not a conflict:
nothing remote contradicts it.

CRITICAL: This module must have NO CLI or web dependencies.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple

from .diff import DiffEntry, changed_paths, diff
from .models import (
    DELETED_FIELD,
    ENTITY_ID_FIELDS,
    IS_SYNCED_FIELD,
    UPDATED_AT_FIELD,
    EntityKind,
    key_fields,
)
from .timestamp_utils import to_wire, utc_now
from .validation import ValidationError

if TYPE_CHECKING:
    from .entity_sync import EntitySync

logger = logging.getLogger(__name__)

LOCAL_LABEL = "your device"
REMOTE_LABEL = "other device"


class ResolutionChoice(Enum):
    """How to resolve a conflict."""

    KEEP_LOCAL = "keep_local"
    ADOPT_REMOTE = "adopt_remote"


@dataclass
class Conflict:
    """A record edited on this device that also changed remotely.

    Attributes:
        kind: Entity kind of the record
        entity_id: The record's id
        local: Local record as it was when the conflict was detected
        cloud: Remote record, mapped to the local record shape
        fields: Conflicting fields
        remote_updated_at: Server timestamp of the remote version
        detected_at: When the conflict was detected
    """

    kind: EntityKind
    entity_id: str
    local: Dict[str, Any]
    cloud: Dict[str, Any]
    fields: List[DiffEntry]
    remote_updated_at: Optional[datetime] = None
    detected_at: datetime = field(default_factory=utc_now)

    @property
    def key(self) -> Tuple[EntityKind, str]:
        return (self.kind, self.entity_id)

    def rows(self) -> List[Dict[str, Any]]:
        """Per-field rows for display, labelled by device."""
        return [
            {"field": e.path, LOCAL_LABEL: e.local_value, REMOTE_LABEL: e.cloud_value}
            for e in self.fields
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "entity_id": self.entity_id,
            "remote_updated_at": self.remote_updated_at.isoformat()
            if self.remote_updated_at
            else None,
            "fields": self.rows(),
        }


def _related(path: str, other: str) -> bool:
    return path == other or path.startswith(other + ".") or other.startswith(path + ".")


def detect_conflict(
    kind: EntityKind,
    local: Optional[Mapping[str, Any]],
    cloud: Optional[Mapping[str, Any]],
    base: Optional[Mapping[str, Any]] = None,
) -> Optional[Conflict]:
    """Check a local record against a freshly fetched remote one.

    Args:
        kind: Entity kind of the record
        local: Local record (None if absent)
        cloud: Remote record in the local shape (None if absent)
        base: Last remote payload this device agreed with, if known

    Returns:
        A Conflict, or None when there is nothing for the user to decide
    """
    if local is None or cloud is None:
        return None
    if local.get(IS_SYNCED_FIELD) or local.get(DELETED_FIELD):
        return None

    entries = diff(local, cloud)
    if base is not None:
        moved = changed_paths(base, cloud)
        entries = [e for e in entries if any(_related(e.path, p) for p in moved)]
    if not entries:
        return None

    return Conflict(
        kind=kind,
        entity_id=local.get(ENTITY_ID_FIELDS[kind]),
        local=dict(local),
        cloud=dict(cloud),
        fields=entries,
        remote_updated_at=cloud.get(UPDATED_AT_FIELD),
    )


class ConflictManager:
    """Queue of detected conflicts, presented one at a time.

    Conflicts dismissed with "keep local" are remembered by the remote
    version they were shown for, so the same remote version does not reopen
    them; a newer remote version does. The answer is also stored with the
    local record, so a later process (each CLI call is one) honors it.
    """

    def __init__(self, entities: Mapping[EntityKind, "EntitySync"]) -> None:
        self.entities = entities
        self._queue: "OrderedDict[Tuple[EntityKind, str], Conflict]" = OrderedDict()
        self._dismissed: Dict[Tuple[EntityKind, str], str] = {}

    @staticmethod
    def _version(conflict: Conflict) -> str:
        # "" stands for a remote record without a timestamp
        return to_wire(conflict.remote_updated_at) or ""

    def is_dismissed(self, conflict: Conflict) -> bool:
        """Whether "keep local" was already chosen for this remote version."""
        version = self._version(conflict)
        if self._dismissed.get(conflict.key) == version:
            return True
        stored = self.entities[conflict.kind].local.get_kept_version(conflict.entity_id)
        return stored == version

    def report(self, conflict: Conflict) -> bool:
        """Queue a conflict. Returns False if it was already dismissed."""
        key = conflict.key
        if self.is_dismissed(conflict):
            logger.debug(f"Conflict on {key[0].value} {key[1]} already dismissed")
            return False
        self._dismissed.pop(key, None)
        if key not in self._queue:
            logger.info(
                f"Conflict on {conflict.kind.value} {conflict.entity_id}: "
                f"{', '.join(e.path for e in conflict.fields)}"
            )
        # A queued entry is replaced in place by newer information
        self._queue[key] = conflict
        return True

    @property
    def current(self) -> Optional[Conflict]:
        """The conflict presented to the user, if any."""
        return next(iter(self._queue.values()), None)

    @property
    def pending(self) -> List[Conflict]:
        return list(self._queue.values())

    def __len__(self) -> int:
        return len(self._queue)

    def _pop_current(self) -> Conflict:
        if not self._queue:
            raise ValidationError("conflict", "no conflict to resolve")
        _, conflict = self._queue.popitem(last=False)
        return conflict

    def keep_local(self) -> Conflict:
        """Resolve the presented conflict in favor of this device.

        The record's payload is not written: it stays unsynced and
        overwrites the remote version on the next upload. Only the answer
        is stored with it.
        """
        conflict = self._pop_current()
        version = self._version(conflict)
        self._dismissed[conflict.key] = version
        self.entities[conflict.kind].local.set_kept_version(conflict.entity_id, version)
        logger.info(f"Kept local {conflict.kind.value} {conflict.entity_id}")
        return conflict

    def adopt_remote(self) -> Conflict:
        """Resolve the presented conflict by taking the remote version.

        The local record gets every remote field except its identity and
        parent-link fields, and is marked synced so it is not re-uploaded.
        If the local record was deleted, uploaded or removed after the
        conflict was detected, nothing is written.
        """
        conflict = self._pop_current()
        entity = self.entities[conflict.kind]
        local = entity.local.get_by_id(conflict.entity_id)
        if local is None or local[IS_SYNCED_FIELD] or local[DELETED_FIELD]:
            self._dismissed.pop(conflict.key, None)
            logger.warning(
                f"Not adopting remote {conflict.kind.value} {conflict.entity_id}: "
                f"local record is no longer a pending edit"
            )
            return conflict
        merged = dict(conflict.cloud)
        for key in key_fields(conflict.kind):
            if key in local:
                merged[key] = local[key]
        entity.local.put(merged, is_synced=True, base_payload=entity.base_of(conflict.cloud))
        self._dismissed.pop(conflict.key, None)
        logger.info(f"Adopted remote {conflict.kind.value} {conflict.entity_id}")
        return conflict

    def resolve(self, choice: ResolutionChoice) -> Conflict:
        if choice is ResolutionChoice.KEEP_LOCAL:
            return self.keep_local()
        return self.adopt_remote()

    def prune(self) -> int:
        """Drop queued conflicts whose local record is synced, deleted or gone."""
        stale = []
        for key in self._queue:
            kind, entity_id = key
            record = self.entities[kind].local.get_by_id(entity_id)
            if record is None or record[IS_SYNCED_FIELD] or record[DELETED_FIELD]:
                stale.append(key)
        for key in stale:
            del self._queue[key]
        return len(stale)

    def clear(self) -> None:
        self._queue.clear()
        self._dismissed.clear()


def format_conflict(conflict: Conflict) -> str:
    """Render a conflict as text, one line per field."""
    lines = [f"{conflict.kind.value} {conflict.entity_id}:"]
    for row in conflict.rows():
        lines.append(
            f"  {row['field']}: {LOCAL_LABEL}={row[LOCAL_LABEL]!r} "
            f"{REMOTE_LABEL}={row[REMOTE_LABEL]!r}"
        )
    return "\n".join(lines)


__all__ = [
    "Conflict",
    "ConflictManager",
    "LOCAL_LABEL",
    "REMOTE_LABEL",
    "ResolutionChoice",
    "detect_conflict",
    "format_conflict",
]
