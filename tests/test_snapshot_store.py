import json

from timetable_sync.services.core.snapshot_store import SnapshotStore, companion_key


def test_values_persist_between_instances(tmp_path):
    path = str(tmp_path / "nested" / "snapshot.json")
    SnapshotStore(path).update({"timetableEntries": {"monday": []}, "lastSyncTimestamp:timetable": "x"})

    store = SnapshotStore(path)

    assert store.get("timetableEntries") == {"monday": []}
    assert "lastSyncTimestamp:timetable" in store


def test_write_replaces_file_atomically(tmp_path):
    path = tmp_path / "snapshot.json"
    store = SnapshotStore(str(path))

    store.set("a", 1)
    store.set("b", 2)

    assert json.loads(path.read_text(encoding="utf-8")) == {"a": 1, "b": 2}
    assert not (tmp_path / "snapshot.json.tmp").exists()


def test_corrupt_snapshot_is_treated_as_empty(tmp_path, caplog):
    path = tmp_path / "snapshot.json"
    path.write_text("{not json", encoding="utf-8")

    store = SnapshotStore(str(path))

    assert store.get("timetableEntries") is None
    assert "поврежден" in caplog.text

    store.set("timetableEntries", [])
    assert json.loads(path.read_text(encoding="utf-8")) == {"timetableEntries": []}


def test_non_object_snapshot_is_treated_as_empty(tmp_path):
    path = tmp_path / "snapshot.json"
    path.write_text("[1, 2, 3]", encoding="utf-8")

    assert SnapshotStore(str(path)).get("anything", "default") == "default"


def test_delete(snapshot_store):
    snapshot_store.update({"a": 1, "b": 2})
    snapshot_store.delete("a", "missing")

    assert "a" not in snapshot_store
    assert snapshot_store.get("b") == 2


def test_reload_rereads_file(tmp_path):
    path = str(tmp_path / "snapshot.json")
    reader = SnapshotStore(path)
    assert reader.get("k") is None

    SnapshotStore(path).set("k", "v")
    reader.reload()

    assert reader.get("k") == "v"


def test_companion_key():
    assert companion_key("lastCloudFetchTime", "timetable") == "lastCloudFetchTime:timetable"
