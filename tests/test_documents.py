"""Tests for project document stores and snapshot validation."""

from __future__ import annotations

import pytest

from narration_sync.core.errors import SnapshotError
from narration_sync.storage.documents import (
    InMemoryDocumentStore,
    JsonFileDocumentStore,
    check_project_id,
    validate_snapshot,
)


def _document():
    return {
        "project_id": "tour",
        "segments": [
            {"id": "a", "order": 0, "text": "Hello.", "duration_s": 3.0, "start_ms": 0},
        ],
    }


class TestInMemoryDocumentStore:

    def test_put_and_get(self):
        store = InMemoryDocumentStore()
        store.put("tour", _document())
        assert store.get("tour") == _document()

    def test_get_unknown_is_none(self):
        assert InMemoryDocumentStore().get("nope") is None

    def test_put_stores_a_copy(self):
        store = InMemoryDocumentStore()
        document = _document()
        store.put("tour", document)
        document["segments"].clear()
        assert len(store.get("tour")["segments"]) == 1

    def test_get_returns_a_copy(self):
        store = InMemoryDocumentStore()
        store.put("tour", _document())
        store.get("tour")["segments"].clear()
        assert len(store.get("tour")["segments"]) == 1

    def test_delete_and_list(self):
        store = InMemoryDocumentStore()
        store.put("b", _document())
        store.put("a", _document())
        assert store.list_keys() == ["a", "b"]
        assert store.delete("a") is True
        assert store.delete("a") is False
        assert store.list_keys() == ["b"]

    def test_rejects_unsafe_id(self):
        with pytest.raises(ValueError):
            InMemoryDocumentStore().put("../etc", _document())


class TestJsonFileDocumentStore:

    def test_round_trip(self, tmp_path):
        store = JsonFileDocumentStore(tmp_path)
        store.put("tour", _document())
        assert (tmp_path / "tour.json").exists()
        assert JsonFileDocumentStore(tmp_path).get("tour") == _document()

    def test_missing_is_none(self, tmp_path):
        assert JsonFileDocumentStore(tmp_path).get("tour") is None

    def test_creates_root(self, tmp_path):
        root = tmp_path / "nested" / "projects"
        JsonFileDocumentStore(root).put("tour", _document())
        assert (root / "tour.json").exists()

    def test_list_keys_ignores_temp_files(self, tmp_path):
        store = JsonFileDocumentStore(tmp_path)
        store.put("one", _document())
        store.put("two", _document())
        (tmp_path / ".tmp_abc.json").write_text("{}")
        assert store.list_keys() == ["one", "two"]

    def test_delete(self, tmp_path):
        store = JsonFileDocumentStore(tmp_path)
        store.put("tour", _document())
        assert store.delete("tour") is True
        assert store.delete("tour") is False
        assert store.get("tour") is None

    def test_corrupt_file(self, tmp_path):
        (tmp_path / "tour.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(SnapshotError, match="corrupt"):
            JsonFileDocumentStore(tmp_path).get("tour")

    def test_invalid_id(self, tmp_path):
        with pytest.raises(ValueError):
            JsonFileDocumentStore(tmp_path).get("a/b")


class TestValidateSnapshot:

    def test_valid(self):
        validate_snapshot(_document())

    def test_missing_segments(self):
        with pytest.raises(SnapshotError):
            validate_snapshot({"project_id": "tour"})

    def test_reports_path(self):
        document = _document()
        del document["segments"][0]["text"]
        with pytest.raises(SnapshotError) as exc_info:
            validate_snapshot(document)
        assert exc_info.value.path == "segments/0"

    def test_non_positive_duration(self):
        document = _document()
        document["segments"][0]["duration_s"] = 0
        with pytest.raises(SnapshotError) as exc_info:
            validate_snapshot(document)
        assert exc_info.value.path == "segments/0/duration_s"

    def test_legacy_error_status_accepted(self):
        document = _document()
        document["segments"][0]["voice"] = {"status": "error", "error": "boom"}
        validate_snapshot(document)


@pytest.mark.parametrize("project_id", ["tour", "Tour_2", "a-b"])
def test_check_project_id_accepts(project_id):
    assert check_project_id(project_id) == project_id


@pytest.mark.parametrize("project_id", ["", "a b", "a/b", "x" * 129, None])
def test_check_project_id_rejects(project_id):
    with pytest.raises(ValueError):
        check_project_id(project_id)
