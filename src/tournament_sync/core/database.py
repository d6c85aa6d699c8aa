"""Local on-device store for tournament sync.

This module provides all local data access using SQLite. Every syncable
record, whatever its kind, lives in one `records` table keyed by
(kind, entity_id); domain fields are kept as a JSON payload. Methods return
plain dicts in the record shape the sync layer works with:

    {"id": <row id>, "<kind>_id": ..., "organization_id": ...,
     "tournament_id": ..., "is_synced": bool, "_deleted": bool,
     "created_at": datetime, "updated_at": datetime, **payload}

Each row also keeps the last remote version this device agreed with
(base_payload), which conflict detection compares against, and the remote
version whose conflict the user answered with "keep local" (kept_version).

CRITICAL: This module must have NO CLI or web dependencies.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from .events import ChangeNotifier, LocalChange
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
    SyncScope,
    bookkeeping_fields,
    key_fields,
)
from .timestamp_utils import to_local_datetime, to_wire, utc_now
from .validation import ValidationError, new_entity_id, validate_entity_id

logger = logging.getLogger(__name__)

__all__ = ["Database", "LocalTable", "split_record"]

SCHEMA = """
CREATE TABLE IF NOT EXISTS records (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    kind TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    organization_id TEXT NOT NULL,
    tournament_id TEXT,
    match_group_id TEXT,
    is_synced INTEGER NOT NULL DEFAULT 0,
    deleted INTEGER NOT NULL DEFAULT 0,
    created_at TEXT,
    updated_at TEXT,
    payload TEXT NOT NULL DEFAULT '{}',
    base_payload TEXT,
    kept_version TEXT,
    UNIQUE (kind, entity_id)
);
CREATE INDEX IF NOT EXISTS idx_records_scope
    ON records (kind, organization_id, tournament_id, match_group_id);
CREATE INDEX IF NOT EXISTS idx_records_unsynced
    ON records (kind, is_synced);
"""

# Columns added after the first release, for databases created before them
ADDED_COLUMNS = {"kept_version": "TEXT"}

DATETIME_TAG = "__datetime__"


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return {DATETIME_TAG: to_wire(value)}
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _json_object_hook(obj: Dict[str, Any]) -> Any:
    if len(obj) == 1 and DATETIME_TAG in obj:
        return to_local_datetime(obj[DATETIME_TAG])
    return obj


def _dump(payload: Optional[Dict[str, Any]]) -> Optional[str]:
    if payload is None:
        return None
    return json.dumps(payload, default=_json_default, ensure_ascii=False, sort_keys=True)


def _load(text: Optional[str]) -> Optional[Dict[str, Any]]:
    if text is None:
        return None
    return json.loads(text, object_hook=_json_object_hook)


def split_record(kind: EntityKind, record: Dict[str, Any]) -> Dict[str, Any]:
    """Return only the domain payload fields of a record."""
    skip = bookkeeping_fields(kind)
    return {k: v for k, v in record.items() if k not in skip}


class Database:
    """SQLite-backed local store.

    Constructed once at startup and closed on shutdown. Per-kind access goes
    through LocalTable objects from table().
    """

    def __init__(
        self,
        db_path: Union[Path, str],
        notifier: Optional[ChangeNotifier] = None,
    ) -> None:
        """Initialize database connection.

        Args:
            db_path: Path to the SQLite database file, or ':memory:' for in-memory
            notifier: Channel that receives a LocalChange after every write
        """
        path_str = str(db_path)
        if path_str != ":memory:":
            Path(path_str).parent.mkdir(parents=True, exist_ok=True)
        self.db_path = path_str
        self.notifier = notifier or ChangeNotifier()
        self._lock = threading.RLock()
        self.conn = sqlite3.connect(path_str, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        with self._lock:
            self.conn.executescript(SCHEMA)
            self._add_missing_columns()
            self.conn.commit()
        self._tables = {kind: LocalTable(self, kind) for kind in EntityKind}
        logger.info(f"Opened database at {path_str}")

    def _add_missing_columns(self) -> None:
        existing = {row["name"] for row in self.conn.execute("PRAGMA table_info(records)")}
        for name, column_type in ADDED_COLUMNS.items():
            if name not in existing:
                self.conn.execute(f"ALTER TABLE records ADD COLUMN {name} {column_type}")
                logger.info(f"Added column records.{name}")

    def table(self, kind: EntityKind) -> "LocalTable":
        """Get the local store for one entity kind."""
        return self._tables[kind]

    @property
    def tournaments(self) -> "LocalTable":
        return self._tables[EntityKind.TOURNAMENT]

    @property
    def teams(self) -> "LocalTable":
        return self._tables[EntityKind.TEAM]

    @property
    def matches(self) -> "LocalTable":
        return self._tables[EntityKind.MATCH]

    @property
    def match_groups(self) -> "LocalTable":
        return self._tables[EntityKind.MATCH_GROUP]

    @property
    def team_matches(self) -> "LocalTable":
        return self._tables[EntityKind.TEAM_MATCH]

    def execute(self, sql: str, params: Iterable[Any] = ()) -> sqlite3.Cursor:
        """Run one statement and commit."""
        with self._lock:
            cursor = self.conn.execute(sql, tuple(params))
            self.conn.commit()
            return cursor

    def query(self, sql: str, params: Iterable[Any] = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, tuple(params)).fetchall()

    def clear(self) -> int:
        """Delete every local record. Returns the number of rows removed."""
        cursor = self.execute("DELETE FROM records")
        logger.info(f"Cleared local store ({cursor.rowcount} records)")
        self.notifier.publish(LocalChange(None, None, None, "clear", from_sync=True))
        return cursor.rowcount

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self.conn.close()
        logger.info(f"Closed database at {self.db_path}")


class LocalTable:
    """Local store for one entity kind.

    The sync layer uses get_by_id, list_unsynced, mark_synced, hard_delete
    and bulk_upsert. The rest is the CRUD the UI uses to edit records.
    """

    def __init__(self, db: Database, kind: EntityKind) -> None:
        self.db = db
        self.kind = kind
        self.id_field = ENTITY_ID_FIELDS[kind]

    # ===== Row conversion =====

    def _row_to_record(self, row: sqlite3.Row) -> Dict[str, Any]:
        record: Dict[str, Any] = dict(_load(row["payload"]) or {})
        record[ROW_ID_FIELD] = row["id"]
        record[ORGANIZATION_ID_FIELD] = row["organization_id"]
        record[TOURNAMENT_ID_FIELD] = row["tournament_id"]
        if self.kind is EntityKind.TEAM_MATCH:
            record[MATCH_GROUP_ID_FIELD] = row["match_group_id"]
        record[self.id_field] = row["entity_id"]
        record[IS_SYNCED_FIELD] = bool(row["is_synced"])
        record[DELETED_FIELD] = bool(row["deleted"])
        record[CREATED_AT_FIELD] = to_local_datetime(row["created_at"])
        record[UPDATED_AT_FIELD] = to_local_datetime(row["updated_at"])
        return record

    def _keys_of(self, record: Dict[str, Any]) -> Dict[str, Optional[str]]:
        entity_id = validate_entity_id(record.get(self.id_field), self.id_field)
        organization_id = validate_entity_id(
            record.get(ORGANIZATION_ID_FIELD), ORGANIZATION_ID_FIELD
        )
        if self.kind is EntityKind.TOURNAMENT:
            tournament_id = entity_id
        else:
            tournament_id = validate_entity_id(
                record.get(TOURNAMENT_ID_FIELD), TOURNAMENT_ID_FIELD
            )
        if self.kind is EntityKind.TEAM_MATCH:
            match_group_id = validate_entity_id(
                record.get(MATCH_GROUP_ID_FIELD), MATCH_GROUP_ID_FIELD
            )
        elif self.kind is EntityKind.MATCH_GROUP:
            match_group_id = entity_id
        else:
            match_group_id = None
        return {
            "entity_id": entity_id,
            "organization_id": organization_id,
            "tournament_id": tournament_id,
            "match_group_id": match_group_id,
        }

    def _scope_of(self, row: Union[sqlite3.Row, Dict[str, Any]]) -> SyncScope:
        group = row["match_group_id"] if self.kind is EntityKind.TEAM_MATCH else None
        return SyncScope(row["organization_id"], row["tournament_id"], group)

    def _publish(
        self,
        scope: Optional[SyncScope],
        entity_id: Optional[str],
        action: str,
        from_sync: bool,
    ) -> None:
        self.db.notifier.publish(
            LocalChange(self.kind, scope, entity_id, action, from_sync=from_sync)
        )

    def _scope_clause(self, scope: Optional[SyncScope]) -> tuple:
        clauses = ["kind = ?"]
        params: List[Any] = [self.kind.value]
        if scope is not None:
            clauses.append("organization_id = ?")
            params.append(scope.organization_id)
            if scope.tournament_id is not None:
                clauses.append("tournament_id = ?")
                params.append(scope.tournament_id)
            if scope.match_group_id is not None and self.kind is EntityKind.TEAM_MATCH:
                clauses.append("match_group_id = ?")
                params.append(scope.match_group_id)
        return " AND ".join(clauses), params

    def _get_row(self, entity_id: str) -> Optional[sqlite3.Row]:
        rows = self.db.query(
            "SELECT * FROM records WHERE kind = ? AND entity_id = ?",
            (self.kind.value, entity_id),
        )
        return rows[0] if rows else None

    def _next_updated_at(self, previous: Optional[str]) -> str:
        # Strictly increasing per record so mark_synced(expected_updated_at)
        # can tell an in-flight edit apart
        now = utc_now()
        prev = to_local_datetime(previous)
        if prev is not None and now <= prev:
            now = prev + timedelta(microseconds=1)
        return to_wire(now)

    # ===== Sync layer contract =====

    def get_by_id(self, entity_id: str) -> Optional[Dict[str, Any]]:
        """Get a record by its entity id, tombstones included."""
        row = self._get_row(entity_id)
        return self._row_to_record(row) if row else None

    def get_base(self, entity_id: str) -> Optional[Dict[str, Any]]:
        """Get the last remote payload this device agreed with, if any."""
        row = self._get_row(entity_id)
        return _load(row["base_payload"]) if row else None

    def get_kept_version(self, entity_id: str) -> Optional[str]:
        """Remote version the user chose to keep the local record over, if any."""
        row = self._get_row(entity_id)
        return row["kept_version"] if row else None

    def set_kept_version(self, entity_id: str, version: str) -> bool:
        """Remember a "keep local" answer for one remote version.

        Payload, sync flag and updated_at are left as they are, and no
        change is published. The marker is cleared when the record next
        becomes synced.

        Returns:
            True if the record exists
        """
        cursor = self.db.execute(
            "UPDATE records SET kept_version = ? WHERE kind = ? AND entity_id = ?",
            (version, self.kind.value, entity_id),
        )
        return cursor.rowcount > 0

    def list_unsynced(self, scope: Optional[SyncScope] = None) -> List[Dict[str, Any]]:
        """Records with local changes not yet uploaded, tombstones included."""
        where, params = self._scope_clause(scope)
        rows = self.db.query(
            f"SELECT * FROM records WHERE {where} AND is_synced = 0 ORDER BY id", params
        )
        return [self._row_to_record(r) for r in rows]

    def count_unsynced(self, scope: Optional[SyncScope] = None) -> int:
        where, params = self._scope_clause(scope)
        rows = self.db.query(
            f"SELECT COUNT(*) FROM records WHERE {where} AND is_synced = 0", params
        )
        return rows[0][0]

    def mark_synced(
        self,
        entity_id: str,
        base_payload: Optional[Dict[str, Any]] = None,
        expected_updated_at: Optional[datetime] = None,
    ) -> bool:
        """Mark a record as reconciled with the remote store.

        Args:
            entity_id: Record to mark
            base_payload: Remote payload now agreed on (kept for conflict detection)
            expected_updated_at: Only mark the record if it was not edited
                after this time (the updated_at seen when the upload read it)

        Returns:
            True if the record was marked, False if missing or edited meanwhile
        """
        sql = "UPDATE records SET is_synced = 1, kept_version = NULL"
        params: List[Any] = []
        if base_payload is not None:
            sql += ", base_payload = ?"
            params.append(_dump(base_payload))
        sql += " WHERE kind = ? AND entity_id = ? AND deleted = 0"
        params.extend([self.kind.value, entity_id])
        if expected_updated_at is not None:
            sql += " AND updated_at = ?"
            params.append(to_wire(expected_updated_at))
        cursor = self.db.execute(sql, params)
        if cursor.rowcount == 0:
            logger.debug(f"{self.kind.value} {entity_id} not marked synced (missing or edited)")
            return False
        row = self._get_row(entity_id)
        self._publish(self._scope_of(row) if row else None, entity_id, "synced", True)
        return True

    def hard_delete(self, entity_id: str) -> bool:
        """Physically remove a record (and a match group's team matches)."""
        row = self._get_row(entity_id)
        if row is None:
            return False
        scope = self._scope_of(row)
        self.db.execute(
            "DELETE FROM records WHERE kind = ? AND entity_id = ?",
            (self.kind.value, entity_id),
        )
        if self.kind is EntityKind.MATCH_GROUP:
            cursor = self.db.execute(
                "DELETE FROM records WHERE kind = ? AND match_group_id = ? AND tournament_id = ?",
                (EntityKind.TEAM_MATCH.value, entity_id, row["tournament_id"]),
            )
            if cursor.rowcount:
                logger.debug(f"Purged {cursor.rowcount} team matches of group {entity_id}")
        self._publish(scope, entity_id, "purge", True)
        return True

    def bulk_upsert(self, records: Iterable[Dict[str, Any]]) -> int:
        """Write remote records into the local store as synced.

        Existing rows keep their local row id. Each record's payload becomes
        its base version.

        Returns:
            Number of records written
        """
        count = 0
        scopes = set()
        with self.db._lock:
            for record in records:
                keys = self._keys_of(record)
                payload = split_record(self.kind, record)
                created = to_wire(to_local_datetime(record.get(CREATED_AT_FIELD)))
                updated = to_wire(to_local_datetime(record.get(UPDATED_AT_FIELD)))
                self.db.conn.execute(
                    """
                    INSERT INTO records (kind, entity_id, organization_id, tournament_id,
                        match_group_id, is_synced, deleted, created_at, updated_at,
                        payload, base_payload)
                    VALUES (?, ?, ?, ?, ?, 1, 0, ?, ?, ?, ?)
                    ON CONFLICT (kind, entity_id) DO UPDATE SET
                        is_synced = 1,
                        deleted = 0,
                        created_at = COALESCE(excluded.created_at, records.created_at),
                        updated_at = COALESCE(excluded.updated_at, records.updated_at),
                        payload = excluded.payload,
                        base_payload = excluded.base_payload,
                        kept_version = NULL
                    """,
                    (
                        self.kind.value,
                        keys["entity_id"],
                        keys["organization_id"],
                        keys["tournament_id"],
                        keys["match_group_id"],
                        created,
                        updated,
                        _dump(payload),
                        _dump(payload),
                    ),
                )
                scopes.add(self._scope_of(keys))
                count += 1
            self.db.conn.commit()
        for scope in scopes:
            self._publish(scope, None, "bulk_upsert", True)
        return count

    # ===== UI CRUD =====

    def create(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Create a new local record, pending upload.

        A missing entity id is generated on this device so the first upload
        can create the remote document under the same id.
        """
        record = dict(record)
        if not record.get(self.id_field):
            record[self.id_field] = new_entity_id()
        keys = self._keys_of(record)
        if self._get_row(keys["entity_id"]) is not None:
            raise ValidationError(self.id_field, f"'{keys['entity_id']}' already exists")
        now = to_wire(utc_now())
        self.db.execute(
            """
            INSERT INTO records (kind, entity_id, organization_id, tournament_id,
                match_group_id, is_synced, deleted, created_at, updated_at, payload)
            VALUES (?, ?, ?, ?, ?, 0, 0, ?, ?, ?)
            """,
            (
                self.kind.value,
                keys["entity_id"],
                keys["organization_id"],
                keys["tournament_id"],
                keys["match_group_id"],
                now,
                now,
                _dump(split_record(self.kind, record)),
            ),
        )
        logger.debug(f"Created {self.kind.value} {keys['entity_id']}")
        self._publish(self._scope_of(keys), keys["entity_id"], "create", False)
        return self.get_by_id(keys["entity_id"])

    def update(self, entity_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Change payload fields of a record and mark it pending upload.

        Raises:
            ValidationError: If the record does not exist, is deleted, or the
                change touches an identity or foreign-key field
        """
        row = self._get_row(entity_id)
        if row is None or row["deleted"]:
            raise ValidationError(self.id_field, f"{self.kind.value} '{entity_id}' not found")
        immutable = key_fields(self.kind) & set(changes)
        if immutable:
            raise ValidationError(
                sorted(immutable)[0], "identity and foreign-key fields cannot change"
            )
        payload = _load(row["payload"]) or {}
        payload.update(split_record(self.kind, changes))
        self.db.execute(
            "UPDATE records SET payload = ?, is_synced = 0, updated_at = ? WHERE id = ?",
            (_dump(payload), self._next_updated_at(row["updated_at"]), row["id"]),
        )
        self._publish(self._scope_of(row), entity_id, "update", False)
        return self.get_by_id(entity_id)

    def delete(self, entity_id: str) -> bool:
        """Tombstone a record so the next upload deletes it remotely.

        Tombstoning a match group also tombstones its team matches.
        """
        row = self._get_row(entity_id)
        if row is None or row["deleted"]:
            return False
        self.db.execute(
            "UPDATE records SET deleted = 1, is_synced = 0, updated_at = ? WHERE id = ?",
            (self._next_updated_at(row["updated_at"]), row["id"]),
        )
        if self.kind is EntityKind.MATCH_GROUP:
            self.db.execute(
                """
                UPDATE records SET deleted = 1, is_synced = 0, updated_at = ?
                WHERE kind = ? AND match_group_id = ? AND tournament_id = ? AND deleted = 0
                """,
                (
                    to_wire(utc_now()),
                    EntityKind.TEAM_MATCH.value,
                    entity_id,
                    row["tournament_id"],
                ),
            )
        self._publish(self._scope_of(row), entity_id, "delete", False)
        return True

    def list_active(self, scope: Optional[SyncScope] = None) -> List[Dict[str, Any]]:
        """Records for display: everything except tombstones."""
        where, params = self._scope_clause(scope)
        rows = self.db.query(
            f"SELECT * FROM records WHERE {where} AND deleted = 0 ORDER BY id", params
        )
        return [self._row_to_record(r) for r in rows]

    def put(
        self,
        record: Dict[str, Any],
        is_synced: bool = False,
        base_payload: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Replace a record's payload wholesale, keeping its row and keys.

        Creates the record if it does not exist yet.
        """
        keys = self._keys_of(record)
        row = self._get_row(keys["entity_id"])
        payload = split_record(self.kind, record)
        if row is None:
            created = self.create(record)
            if is_synced:
                self.mark_synced(keys["entity_id"], base_payload=base_payload)
                return self.get_by_id(keys["entity_id"])
            return created
        sql = "UPDATE records SET payload = ?, is_synced = ?, deleted = 0, updated_at = ?"
        params: List[Any] = [
            _dump(payload),
            1 if is_synced else 0,
            self._next_updated_at(row["updated_at"]),
        ]
        if is_synced:
            sql += ", kept_version = NULL"
        if base_payload is not None:
            sql += ", base_payload = ?"
            params.append(_dump(base_payload))
        sql += " WHERE id = ?"
        params.append(row["id"])
        self.db.execute(sql, params)
        self._publish(self._scope_of(row), keys["entity_id"], "update", is_synced)
        return self.get_by_id(keys["entity_id"])
