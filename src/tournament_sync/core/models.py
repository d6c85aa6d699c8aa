"""Data models for tournament sync.

This module defines the entity kinds that take part in synchronization,
the scope that locates records in the remote hierarchy, and the field
names shared by every syncable record.

Records themselves travel as plain dicts (JSON-serializable apart from
datetime values) so that the local store, the remote store and the diff
engine can all work on the same shape. SyncableRecord is a read-only view
over such a dict for display code.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class EntityKind(Enum):
    """Kinds of records kept in sync."""

    TOURNAMENT = "tournament"
    TEAM = "team"
    MATCH = "match"
    MATCH_GROUP = "match_group"
    TEAM_MATCH = "team_match"


# Upload order: parents before children
UPLOAD_ORDER = (
    EntityKind.TOURNAMENT,
    EntityKind.TEAM,
    EntityKind.MATCH,
    EntityKind.MATCH_GROUP,
    EntityKind.TEAM_MATCH,
)

# Field names shared by all local records
ROW_ID_FIELD = "id"  # local integer row id, never leaves the device
ORGANIZATION_ID_FIELD = "organization_id"
TOURNAMENT_ID_FIELD = "tournament_id"
MATCH_GROUP_ID_FIELD = "match_group_id"
IS_SYNCED_FIELD = "is_synced"
DELETED_FIELD = "_deleted"
CREATED_AT_FIELD = "created_at"
UPDATED_AT_FIELD = "updated_at"

# Bookkeeping that is stripped before anything is sent to the remote store
LOCAL_ONLY_FIELDS = frozenset({ROW_ID_FIELD, IS_SYNCED_FIELD, DELETED_FIELD})

# Field holding each kind's own id (team matches share "match_id" with
# matches, as in the remote documents)
ENTITY_ID_FIELDS = {
    EntityKind.TOURNAMENT: TOURNAMENT_ID_FIELD,
    EntityKind.TEAM: "team_id",
    EntityKind.MATCH: "match_id",
    EntityKind.MATCH_GROUP: MATCH_GROUP_ID_FIELD,
    EntityKind.TEAM_MATCH: "match_id",
}


def key_fields(kind: EntityKind) -> frozenset:
    """Identity and foreign-key fields of a record of this kind.

    These never change after creation.
    """
    fields = {ROW_ID_FIELD, ORGANIZATION_ID_FIELD, TOURNAMENT_ID_FIELD, ENTITY_ID_FIELDS[kind]}
    if kind is EntityKind.TEAM_MATCH:
        fields.add(MATCH_GROUP_ID_FIELD)
    return frozenset(fields)


def bookkeeping_fields(kind: EntityKind) -> frozenset:
    """Every field of a local record that is not a domain payload field."""
    return key_fields(kind) | {IS_SYNCED_FIELD, DELETED_FIELD, CREATED_AT_FIELD, UPDATED_AT_FIELD}


class ChangeType(Enum):
    """Kinds of change delivered by a remote subscription."""

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


@dataclass(frozen=True)
class SyncScope:
    """Locates a set of records in the remote hierarchy.

    Attributes:
        organization_id: Owning organization (always required)
        tournament_id: Tournament the records belong to (None for tournaments)
        match_group_id: Parent group, only for team matches
    """

    organization_id: str
    tournament_id: Optional[str] = None
    match_group_id: Optional[str] = None

    def contains(self, record: Mapping[str, Any]) -> bool:
        """Check whether a local record falls inside this scope."""
        if record.get(ORGANIZATION_ID_FIELD) != self.organization_id:
            return False
        if self.tournament_id is not None and record.get(TOURNAMENT_ID_FIELD) != self.tournament_id:
            return False
        if (
            self.match_group_id is not None
            and record.get(MATCH_GROUP_ID_FIELD) != self.match_group_id
        ):
            return False
        return True

    def with_group(self, match_group_id: str) -> "SyncScope":
        """Return a copy of this scope narrowed to one match group."""
        return SyncScope(self.organization_id, self.tournament_id, match_group_id)

    def __str__(self) -> str:
        parts = [self.organization_id]
        if self.tournament_id:
            parts.append(self.tournament_id)
        if self.match_group_id:
            parts.append(self.match_group_id)
        return "/".join(parts)


@dataclass(frozen=True)
class RemoteChange:
    """A single change observed on a remote collection."""

    type: ChangeType
    doc_id: str
    path: str
    data: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class SyncableRecord:
    """Read-only view of a local record.

    Attributes:
        kind: Entity kind of the record
        entity_id: The record's id in the remote hierarchy
        row_id: Local integer row id
        organization_id: Owning organization
        tournament_id: Tournament foreign key (the record's own id for tournaments)
        match_group_id: Parent group (team matches only)
        is_synced: False while the record has changes not yet uploaded
        deleted: Tombstone flag
        created_at: When the record was created
        updated_at: When the record was last modified
        payload: Domain fields
    """

    kind: EntityKind
    entity_id: str
    row_id: Optional[int]
    organization_id: str
    tournament_id: Optional[str]
    match_group_id: Optional[str]
    is_synced: bool
    deleted: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def pending_action(self) -> Optional[str]:
        """The remote action the next upload will perform, if any."""
        if self.is_synced:
            return None
        return "delete" if self.deleted else "upsert"
