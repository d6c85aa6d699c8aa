"""Unit tests for conflict detection and resolution.

Tests detect_conflict() against a base version, the one-at-a-time conflict
queue, and the keep-local / adopt-remote resolutions.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import pytest

from tournament_sync.core.conflicts import (
    LOCAL_LABEL,
    REMOTE_LABEL,
    Conflict,
    ConflictManager,
    ResolutionChoice,
    detect_conflict,
    format_conflict,
)
from tournament_sync.core.database import Database
from tournament_sync.core.diff import DiffEntry
from tournament_sync.core.models import EntityKind
from tournament_sync.core.service import SyncService
from tournament_sync.core.validation import ValidationError

from helpers import ORG_ID, TOURNAMENT_ID, match_record

REMOTE_TIME = datetime(2026, 6, 1, 9, 0, tzinfo=timezone.utc)


def cloud_match(match_id: str = "m1", **fields: Any) -> Dict[str, Any]:
    record = match_record(match_id, created_at=REMOTE_TIME, updated_at=REMOTE_TIME)
    record.update(fields)
    return record


class TestDetectConflict:
    """Test detect_conflict()."""

    def test_no_local_record(self) -> None:
        assert detect_conflict(EntityKind.MATCH, None, cloud_match()) is None

    def test_synced_local_record(self) -> None:
        local = dict(match_record("m1", court_id="court-2"), is_synced=True)
        assert detect_conflict(EntityKind.MATCH, local, cloud_match()) is None

    def test_tombstoned_local_record(self) -> None:
        local = dict(match_record("m1", court_id="court-2"), is_synced=False, _deleted=True)
        assert detect_conflict(EntityKind.MATCH, local, cloud_match()) is None

    def test_without_base_every_difference_counts(self) -> None:
        local = dict(match_record("m1", court_id="court-2"), is_synced=False)
        conflict = detect_conflict(EntityKind.MATCH, local, cloud_match(round_id="round-2"))
        assert [e.path for e in conflict.fields] == ["court_id", "round_id"]

    def test_local_only_edit_is_not_a_conflict(self) -> None:
        base = {k: v for k, v in match_record("m1").items() if k not in ("organization_id", "tournament_id", "match_id")}
        local = dict(match_record("m1", court_id="court-2"), is_synced=False)
        assert detect_conflict(EntityKind.MATCH, local, cloud_match(), base) is None

    def test_only_remote_moved_fields_reported(self) -> None:
        base = {"court_id": "court-1", "round_id": "round-1"}
        local = dict(match_record("m1", court_id="court-2"), is_synced=False)
        cloud = cloud_match(round_id="round-2")
        conflict = detect_conflict(EntityKind.MATCH, local, cloud, base)
        assert conflict.fields == [DiffEntry("round_id", "round-1", "round-2")]
        assert conflict.entity_id == "m1"
        assert conflict.remote_updated_at == REMOTE_TIME

    def test_nested_remote_change(self) -> None:
        base = {"players": {"red": {"player_id": "p-red", "score": 0}}}
        local = dict(match_record("m1"), is_synced=False)
        cloud = cloud_match(players={"red": {"player_id": "p-red", "score": 2},
                                     "white": {"player_id": "p-white", "score": 0}})
        conflict = detect_conflict(EntityKind.MATCH, local, cloud, base)
        assert [e.path for e in conflict.fields] == ["players.red.score"]

    def test_same_change_on_both_sides_is_not_a_conflict(self) -> None:
        base = {"court_id": "court-1"}
        local = dict(match_record("m1", court_id="court-2"), is_synced=False)
        assert detect_conflict(EntityKind.MATCH, local, cloud_match(court_id="court-2"), base) is None


def make_conflict(entity_id: str = "m1", remote_updated_at: datetime = REMOTE_TIME) -> Conflict:
    return Conflict(
        kind=EntityKind.MATCH,
        entity_id=entity_id,
        local=dict(match_record(entity_id, court_id="court-2"), is_synced=False),
        cloud=cloud_match(entity_id, round_id="round-2", updated_at=remote_updated_at),
        fields=[DiffEntry("round_id", "round-1", "round-2")],
        remote_updated_at=remote_updated_at,
    )


class TestConflictPresentation:
    """Test the display shape of a conflict."""

    def test_rows_use_device_labels(self) -> None:
        rows = make_conflict().rows()
        assert rows == [{"field": "round_id", LOCAL_LABEL: "round-1", REMOTE_LABEL: "round-2"}]
        assert LOCAL_LABEL == "your device"
        assert REMOTE_LABEL == "other device"

    def test_to_dict(self) -> None:
        data = make_conflict().to_dict()
        assert data["kind"] == "match"
        assert data["entity_id"] == "m1"
        assert data["remote_updated_at"] == REMOTE_TIME.isoformat()

    def test_format_conflict(self) -> None:
        text = format_conflict(make_conflict())
        assert text.splitlines()[0] == "match m1:"
        assert "your device='round-1'" in text
        assert "other device='round-2'" in text


class TestConflictQueue:
    """Test ConflictManager queueing."""

    def test_one_conflict_presented_at_a_time(self, service: SyncService) -> None:
        manager = service.conflicts
        manager.report(make_conflict("m1"))
        manager.report(make_conflict("m2"))
        assert manager.current.entity_id == "m1"
        assert len(manager) == 2
        manager.keep_local()
        assert manager.current.entity_id == "m2"

    def test_report_same_record_replaces(self, service: SyncService) -> None:
        manager = service.conflicts
        manager.report(make_conflict("m1"))
        newer = make_conflict("m1", REMOTE_TIME + timedelta(minutes=5))
        manager.report(newer)
        assert len(manager) == 1
        assert manager.current is newer

    def test_dismissed_conflict_not_reopened_by_same_version(self, service: SyncService) -> None:
        manager = service.conflicts
        manager.report(make_conflict("m1"))
        manager.keep_local()
        assert manager.report(make_conflict("m1")) is False
        assert manager.current is None

    def test_newer_remote_version_reopens(self, service: SyncService) -> None:
        manager = service.conflicts
        manager.report(make_conflict("m1"))
        manager.keep_local()
        assert manager.report(make_conflict("m1", REMOTE_TIME + timedelta(minutes=1))) is True
        assert manager.current is not None

    def test_resolve_with_empty_queue(self, service: SyncService) -> None:
        with pytest.raises(ValidationError):
            service.conflicts.resolve(ResolutionChoice.KEEP_LOCAL)

    def test_prune_drops_synced_records(self, db: Database, service: SyncService) -> None:
        db.matches.create(match_record("m1"))
        db.matches.create(match_record("m2"))
        service.conflicts.report(make_conflict("m1"))
        service.conflicts.report(make_conflict("m2"))
        service.conflicts.report(make_conflict("gone"))
        db.matches.mark_synced("m1")
        assert service.conflicts.prune() == 2
        assert [c.entity_id for c in service.conflicts.pending] == ["m2"]

    def test_prune_drops_deleted_records(self, db: Database, service: SyncService) -> None:
        db.matches.create(match_record("m1"))
        db.matches.create(match_record("m2"))
        service.conflicts.report(make_conflict("m1"))
        service.conflicts.report(make_conflict("m2"))
        db.matches.delete("m1")
        assert service.conflicts.prune() == 1
        assert [c.entity_id for c in service.conflicts.pending] == ["m2"]

    def test_clear(self, service: SyncService) -> None:
        service.conflicts.report(make_conflict("m1"))
        service.conflicts.keep_local()
        service.conflicts.clear()
        assert service.conflicts.report(make_conflict("m1")) is True


class TestResolution:
    """Test keep-local and adopt-remote against the local store."""

    def _local_conflict(self, db: Database, service: SyncService) -> Conflict:
        db.matches.create(match_record("m1"))
        db.matches.mark_synced("m1", base_payload={"court_id": "court-1", "round_id": "round-1"})
        local = db.matches.update("m1", {"court_id": "court-2"})
        cloud = cloud_match("m1", round_id="round-2", tournament_id="tampered", id=999)
        conflict = detect_conflict(EntityKind.MATCH, local, cloud, db.matches.get_base("m1"))
        service.conflicts.report(conflict)
        return conflict

    def test_keep_local_writes_nothing(self, db: Database, service: SyncService) -> None:
        self._local_conflict(db, service)
        before = db.query("SELECT payload, is_synced, updated_at FROM records WHERE entity_id = 'm1'")
        resolved = service.resolve_conflict(ResolutionChoice.KEEP_LOCAL)
        after = db.query("SELECT payload, is_synced, updated_at FROM records WHERE entity_id = 'm1'")
        assert resolved.entity_id == "m1"
        assert tuple(before[0]) == tuple(after[0])
        assert db.matches.get_by_id("m1")["is_synced"] is False
        assert service.conflicts.current is None

    def test_adopt_remote_preserves_identity(self, db: Database, service: SyncService) -> None:
        self._local_conflict(db, service)
        before = db.matches.get_by_id("m1")
        service.resolve_conflict(ResolutionChoice.ADOPT_REMOTE)
        after = db.matches.get_by_id("m1")
        assert after["id"] == before["id"]
        assert after["organization_id"] == ORG_ID
        assert after["tournament_id"] == TOURNAMENT_ID
        assert after["match_id"] == "m1"
        assert after["round_id"] == "round-2"
        assert after["court_id"] == "court-1"
        assert after["is_synced"] is True
        assert db.matches.list_unsynced() == []
        assert db.matches.get_base("m1")["round_id"] == "round-2"
        assert service.conflicts.current is None

    def test_adopt_remote_after_local_delete_keeps_tombstone(
        self, db: Database, service: SyncService
    ) -> None:
        self._local_conflict(db, service)
        db.matches.delete("m1")
        resolved = service.resolve_conflict(ResolutionChoice.ADOPT_REMOTE)
        after = db.matches.get_by_id("m1")
        assert resolved.entity_id == "m1"
        assert after["_deleted"] is True
        assert after["is_synced"] is False
        assert after["court_id"] == "court-2"
        assert service.conflicts.current is None

    def test_adopt_remote_after_upload_writes_nothing(
        self, db: Database, service: SyncService
    ) -> None:
        self._local_conflict(db, service)
        db.matches.mark_synced("m1")
        service.resolve_conflict(ResolutionChoice.ADOPT_REMOTE)
        assert db.matches.get_by_id("m1")["court_id"] == "court-2"

    def test_keep_local_stored_with_record(self, db: Database, service: SyncService) -> None:
        conflict = self._local_conflict(db, service)
        service.resolve_conflict(ResolutionChoice.KEEP_LOCAL)
        assert db.matches.get_kept_version("m1") == REMOTE_TIME.isoformat()

        # A fresh manager, as in the next process, honors the stored answer
        fresh = ConflictManager(service.entities)
        assert fresh.report(conflict) is False
        newer = detect_conflict(
            EntityKind.MATCH,
            db.matches.get_by_id("m1"),
            cloud_match("m1", round_id="round-3", updated_at=REMOTE_TIME + timedelta(minutes=1)),
            db.matches.get_base("m1"),
        )
        assert fresh.report(newer) is True

    def test_kept_version_cleared_when_synced(self, db: Database, service: SyncService) -> None:
        self._local_conflict(db, service)
        service.resolve_conflict(ResolutionChoice.KEEP_LOCAL)
        db.matches.mark_synced("m1")
        assert db.matches.get_kept_version("m1") is None
