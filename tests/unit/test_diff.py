"""Unit tests for the field-level diff engine.

The diff engine is pure, so these tests exercise it directly with plain
dicts.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from tournament_sync.core.diff import IGNORED_FIELDS, DiffEntry, changed_paths, diff, values_equal


class TestDiff:
    """Test diff() on flat and nested records."""

    @pytest.mark.parametrize(
        "record",
        [
            {},
            {"court_id": "court-1"},
            {"players": [{"id": 1}, {"id": 2}], "score": {"red": 1, "white": 0}},
            {"nested": {"deeper": {"value": None}}},
            {"score": float("nan")},
            {"stats": {"ratio": float("nan")}},
        ],
    )
    def test_identical_records_have_no_diff(self, record: dict) -> None:
        assert diff(record, record) == []

    def test_nan_compared_with_itself(self) -> None:
        nan = float("nan")
        assert values_equal(nan, nan)
        assert diff({"score": nan}, {"score": nan}) == []

    def test_flat_difference(self) -> None:
        assert diff({"court_id": "court-1"}, {"court_id": "court-2"}) == [
            DiffEntry("court_id", "court-1", "court-2")
        ]

    def test_nested_difference_uses_dotted_path(self) -> None:
        assert diff({"a": {"b": 1}}, {"a": {"b": 2}}) == [DiffEntry("a.b", 1, 2)]

    def test_arrays_compared_whole(self) -> None:
        local = {"players": [{"name": "A"}, {"name": "B"}]}
        cloud = {"players": [{"name": "A"}, {"name": "C"}]}
        entries = diff(local, cloud)
        assert len(entries) == 1
        assert entries[0].path == "players"
        assert entries[0].cloud_value == cloud["players"]

    def test_tuple_and_list_with_same_items_are_equal(self) -> None:
        assert diff({"rounds": (1, 2)}, {"rounds": [1, 2]}) == []

    def test_key_on_one_side_only(self) -> None:
        entries = diff({"remarks": "late"}, {"location": "Gym"})
        assert entries == [
            DiffEntry("remarks", "late", None),
            DiffEntry("location", None, "Gym"),
        ]

    def test_missing_key_equals_none(self) -> None:
        assert diff({"winner": None}, {}) == []

    def test_object_replaced_by_scalar(self) -> None:
        entries = diff({"players": {"red": 1}}, {"players": None})
        assert entries == [DiffEntry("players", {"red": 1}, None)]

    def test_path_prefix(self) -> None:
        assert diff({"x": 1}, {"x": 2}, path="payload")[0].path == "payload.x"


class TestIgnoredFields:
    """Test that bookkeeping fields never produce a diff."""

    @pytest.mark.parametrize("field_name", sorted(IGNORED_FIELDS))
    def test_ignored_field_never_reported(self, field_name: str) -> None:
        assert diff({field_name: "local"}, {field_name: "cloud"}) == []

    def test_ignored_at_every_level(self) -> None:
        local = {"score": {"updated_at": datetime(2026, 1, 1, tzinfo=timezone.utc), "red": 1}}
        cloud = {"score": {"updated_at": datetime(2026, 2, 1, tzinfo=timezone.utc), "red": 1}}
        assert diff(local, cloud) == []

    def test_ignore_list_covers_bookkeeping(self) -> None:
        for field_name in ("id", "is_synced", "_deleted", "created_at", "updated_at",
                           "organization_id", "tournament_id", "match_group_id",
                           "match_id", "team_id"):
            assert field_name in IGNORED_FIELDS


class TestHelpers:
    """Test values_equal() and changed_paths()."""

    def test_values_equal_deep(self) -> None:
        assert values_equal({"a": [1, {"b": 2}]}, {"a": [1, {"b": 2}]})
        assert not values_equal({"a": [1, 2]}, {"a": [2, 1]})

    def test_changed_paths(self) -> None:
        base = {"round_id": "r1", "court_id": "c1", "score": {"red": 0}}
        cloud = {"round_id": "r2", "court_id": "c1", "score": {"red": 1}}
        assert changed_paths(base, cloud) == frozenset({"round_id", "score.red"})

    def test_none_records(self) -> None:
        assert diff(None, None) == []
        assert diff(None, {"x": 1}) == [DiffEntry("x", None, 1)]
