"""Field-level diff between a local record and its remote counterpart.

Pure functions only; nothing here touches a store.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Mapping, Optional

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
)

# Identifiers, timestamps, sync/tombstone flags and foreign keys: never
# user-editable, so never a conflict
IGNORED_FIELDS = frozenset(
    {
        ROW_ID_FIELD,
        ORGANIZATION_ID_FIELD,
        TOURNAMENT_ID_FIELD,
        MATCH_GROUP_ID_FIELD,
        IS_SYNCED_FIELD,
        DELETED_FIELD,
        CREATED_AT_FIELD,
        UPDATED_AT_FIELD,
        *ENTITY_ID_FIELDS.values(),
    }
)


@dataclass(frozen=True)
class DiffEntry:
    """One differing field.

    Attributes:
        path: Dotted path of the field ("a.b" for nested objects)
        local_value: Value on this device
        cloud_value: Value in the remote store
    """

    path: str
    local_value: Any
    cloud_value: Any


def _plain(value: Any) -> Any:
    # Tuples and lists compare equal when their items do
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, Mapping):
        return {k: _plain(v) for k, v in value.items()}
    return value


def values_equal(a: Any, b: Any) -> bool:
    """Deep equality; arrays compare as whole values."""
    # Identity first: NaN is not equal to itself
    if a is b:
        return True
    return _plain(a) == _plain(b)


def _join(parent: str, key: str) -> str:
    return f"{parent}.{key}" if parent else str(key)


def diff(
    local: Optional[Mapping[str, Any]],
    cloud: Optional[Mapping[str, Any]],
    path: str = "",
) -> List[DiffEntry]:
    """Compute field-level differences between two records.

    Walks the union of both key sets. Nested objects are recursed into;
    everything else (arrays included) is compared whole. A key missing on
    one side compares as None. Keys in IGNORED_FIELDS are skipped at every
    level.

    Args:
        local: The local record
        cloud: The freshly fetched remote record
        path: Prefix for reported paths

    Returns:
        Differences in key order, local keys first
    """
    local = local or {}
    cloud = cloud or {}
    entries: List[DiffEntry] = []

    keys = list(local.keys())
    keys.extend(k for k in cloud.keys() if k not in local)

    for key in keys:
        if key in IGNORED_FIELDS:
            continue
        local_value = local.get(key)
        cloud_value = cloud.get(key)
        child_path = _join(path, key)
        if isinstance(local_value, Mapping) and isinstance(cloud_value, Mapping):
            entries.extend(diff(local_value, cloud_value, child_path))
        elif not values_equal(local_value, cloud_value):
            entries.append(DiffEntry(child_path, local_value, cloud_value))
    return entries


def changed_paths(
    before: Optional[Mapping[str, Any]], after: Optional[Mapping[str, Any]]
) -> frozenset:
    """Dotted paths that differ between two versions of a record."""
    return frozenset(entry.path for entry in diff(before, after))


__all__ = ["DiffEntry", "IGNORED_FIELDS", "changed_paths", "diff", "values_equal"]
