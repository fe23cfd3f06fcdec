"""Unit tests for deploy_engine.diff."""

from __future__ import annotations

from deploy_engine.diff import diff_manifests


class TestDiffManifests:
    def test_no_baseline(self):
        diff = diff_manifests(None, {"b.mqsc": "2", "a.mqsc": "1"})
        assert diff.added == ["a.mqsc", "b.mqsc"]
        assert diff.modified == []
        assert diff.removed == []

    def test_changes(self):
        previous = {"a.mqsc": "1", "b.mqsc": "2", "c.mqsc": "3"}
        current = {"a.mqsc": "1", "b.mqsc": "X", "d.mqsc": "4"}
        diff = diff_manifests(previous, current)
        assert diff.added == ["d.mqsc"]
        assert diff.modified == ["b.mqsc"]
        assert diff.removed == ["c.mqsc"]
        assert not diff.is_empty

    def test_identical(self):
        assert diff_manifests({"a.mqsc": "1"}, {"a.mqsc": "1"}).is_empty
