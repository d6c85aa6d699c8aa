"""Sync scenarios with two devices sharing one remote store.

Each device has its own local database; both talk to the same document
tree. These tests walk through offline edits on one device racing edits
uploaded from the other.
"""

from __future__ import annotations

from typing import Tuple

import pytest

from tournament_sync.core.conflicts import ResolutionChoice
from tournament_sync.core.diff import DiffEntry
from tournament_sync.core.models import SyncScope
from tournament_sync.core.remote import DocumentTree
from tournament_sync.core.service import SyncService

from helpers import doc_path, match_record

pytestmark = pytest.mark.sync

Devices = Tuple[SyncService, SyncService]


async def share_match(devices: Devices, scope: SyncScope) -> None:
    """Device B creates match m1 and uploads it; device A downloads it."""
    device_a, device_b = devices
    device_b.db.matches.create(match_record("m1"))
    await device_b.upload_all(scope)
    await device_a.download(scope)


async def race_edits(devices: Devices, scope: SyncScope) -> None:
    """A edits the court offline while B changes the round and uploads."""
    device_a, device_b = devices
    device_a.db.matches.update("m1", {"court_id": "court-2"})
    device_b.db.matches.update("m1", {"round_id": "round-2"})
    await device_b.upload_all(scope)


class TestConcurrentEdits:
    """Test an offline edit racing a remote edit of the same record."""

    @pytest.mark.asyncio
    async def test_only_remote_change_is_reported(
        self, two_devices: Devices, scope: SyncScope
    ) -> None:
        device_a, _ = two_devices
        await share_match(two_devices, scope)
        await race_edits(two_devices, scope)

        summary = await device_a.download(scope)

        assert len(summary.conflicts) == 1
        conflict = device_a.conflicts.current
        assert conflict.entity_id == "m1"
        assert conflict.fields == [DiffEntry("round_id", "round-1", "round-2")]
        local = device_a.db.matches.get_by_id("m1")
        assert local["court_id"] == "court-2"
        assert local["round_id"] == "round-1"
        assert local["is_synced"] is False

    @pytest.mark.asyncio
    async def test_keep_local_then_upload_overwrites_remote(
        self, two_devices: Devices, tree: DocumentTree, scope: SyncScope
    ) -> None:
        device_a, device_b = two_devices
        await share_match(two_devices, scope)
        await race_edits(two_devices, scope)
        await device_a.download(scope)

        device_a.resolve_conflict(ResolutionChoice.KEEP_LOCAL)
        await device_a.upload_all(scope)

        remote_doc = tree.get(doc_path("matches", "m1"))
        assert remote_doc["court_id"] == "court-2"
        assert remote_doc["round_id"] == "round-1"
        assert device_a.get_unsynced_count(scope) == 0

        await device_b.download(scope)
        assert device_b.db.matches.get_by_id("m1")["court_id"] == "court-2"
        assert device_b.db.matches.get_by_id("m1")["round_id"] == "round-1"

    @pytest.mark.asyncio
    async def test_adopt_remote_takes_remote_version(
        self, two_devices: Devices, tree: DocumentTree, scope: SyncScope
    ) -> None:
        device_a, _ = two_devices
        await share_match(two_devices, scope)
        await race_edits(two_devices, scope)
        await device_a.download(scope)

        device_a.resolve_conflict(ResolutionChoice.ADOPT_REMOTE)

        local = device_a.db.matches.get_by_id("m1")
        assert local["court_id"] == "court-1"
        assert local["round_id"] == "round-2"
        assert local["is_synced"] is True
        assert device_a.get_unsynced_count(scope) == 0
        summary = await device_a.upload_all(scope)
        assert summary.success_count == 0
        assert tree.get(doc_path("matches", "m1"))["round_id"] == "round-2"

    @pytest.mark.asyncio
    async def test_kept_conflict_not_reopened_until_remote_moves(
        self, two_devices: Devices, scope: SyncScope
    ) -> None:
        device_a, device_b = two_devices
        await share_match(two_devices, scope)
        await race_edits(two_devices, scope)
        await device_a.download(scope)
        device_a.resolve_conflict(ResolutionChoice.KEEP_LOCAL)

        await device_a.download(scope)
        assert device_a.conflicts.current is None

        device_b.db.matches.update("m1", {"round_id": "round-3"})
        await device_b.upload_all(scope)
        await device_a.download(scope)
        assert device_a.conflicts.current.fields == [
            DiffEntry("round_id", "round-1", "round-3")
        ]

    @pytest.mark.asyncio
    async def test_edits_to_different_records_never_conflict(
        self, two_devices: Devices, scope: SyncScope
    ) -> None:
        device_a, device_b = two_devices
        device_a.db.matches.create(match_record("m-a"))
        device_b.db.matches.create(match_record("m-b"))
        await device_a.upload_all(scope)
        await device_b.upload_all(scope)

        await device_a.download(scope)
        await device_b.download(scope)

        for device in two_devices:
            assert device.conflicts.current is None
            assert {r["match_id"] for r in device.db.matches.list_active(scope)} == {"m-a", "m-b"}

    @pytest.mark.asyncio
    async def test_local_delete_wins_over_remote_edit(
        self, two_devices: Devices, tree: DocumentTree, scope: SyncScope
    ) -> None:
        device_a, device_b = two_devices
        await share_match(two_devices, scope)
        device_a.db.matches.delete("m1")
        device_b.db.matches.update("m1", {"winner": "white"})
        await device_b.upload_all(scope)

        await device_a.download(scope)
        assert device_a.conflicts.current is None
        assert device_a.db.matches.get_by_id("m1")["_deleted"] is True

        await device_a.upload_all(scope)
        assert tree.get(doc_path("matches", "m1")) is None
        assert device_a.db.matches.get_by_id("m1") is None
