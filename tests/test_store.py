"""Tests for the key-value store and the alert log."""

import orjson
import pytest

from lora_dashboard.store import AlertLogStore, JsonFileStore, StoreCorruptError


class TestJsonFileStore:
    """Tests for :class:`JsonFileStore`."""

    def test_missing_file_reads_as_empty(self, kv_store: JsonFileStore) -> None:
        assert kv_store.get("anything") is None

    def test_set_get_delete(self, kv_store: JsonFileStore) -> None:
        kv_store.set("a", [1, 2])
        kv_store.set("b", "two")
        assert kv_store.get("a") == [1, 2]
        kv_store.delete("a")
        assert kv_store.get("a") is None
        assert kv_store.get("b") == "two"

    def test_write_leaves_no_temp_file(self, kv_store: JsonFileStore) -> None:
        kv_store.set("a", 1)
        files = sorted(p.name for p in kv_store.path.parent.iterdir())
        assert files == ["store.json"]

    def test_corrupt_document_raises(self, kv_store: JsonFileStore) -> None:
        kv_store.path.parent.mkdir(parents=True)
        kv_store.path.write_text("{broken")
        with pytest.raises(StoreCorruptError):
            kv_store.get("a")

    def test_corrupt_document_replaced_on_write(self, kv_store: JsonFileStore) -> None:
        kv_store.path.parent.mkdir(parents=True)
        kv_store.path.write_text("[1, 2]")
        kv_store.set("a", "ok")
        assert orjson.loads(kv_store.path.read_bytes()) == {"a": "ok"}

    def test_write_failure_propagates(self, tmp_path) -> None:
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        store = JsonFileStore(blocker / "store.json")
        with pytest.raises(OSError):
            store.set("a", 1)


class TestAlertLogStore:
    """Tests for :class:`AlertLogStore`."""

    def test_entry_format(self, log_store: AlertLogStore) -> None:
        assert log_store.append("p1", "P1 Alert CLEARED") is True
        assert log_store.load() == ["2025-03-01 09:30:00: P1 Alert CLEARED"]

    def test_immediate_repeat_is_suppressed(self, log_store: AlertLogStore) -> None:
        assert log_store.append("p1", "same") is True
        assert log_store.append("p1", "same") is False
        assert len(log_store.load()) == 1

    def test_repeat_after_other_entry_is_kept(self, log_store: AlertLogStore) -> None:
        log_store.append("p1", "same")
        log_store.append("p1", "same")
        log_store.append("p2", "other")
        assert log_store.append("p1", "same") is True
        entries = log_store.load()
        assert len(entries) == 3
        assert entries[0] == entries[2]

    def test_repeat_with_new_timestamp_is_kept(self, log_store, clock) -> None:
        log_store.append("p1", "same")
        clock.advance(1)
        assert log_store.append("p1", "same") is True
        assert len(log_store.load()) == 2

    def test_cap_evicts_oldest_first(self, log_store: AlertLogStore) -> None:
        for i in range(75):
            log_store.append("p1", f"message {i}")
        entries = log_store.load()
        assert len(entries) == 50
        assert entries[0].endswith("message 25")
        assert entries[-1].endswith("message 74")

    def test_custom_cap(self, kv_store, clock) -> None:
        store = AlertLogStore(kv_store, max_entries=3, clock=clock)
        for i in range(5):
            store.append("p1", str(i))
        assert [e[-1] for e in store.load()] == ["2", "3", "4"]

    def test_save_replaces_and_caps(self, log_store: AlertLogStore) -> None:
        log_store.append("p1", "old")
        log_store.save([f"e{i}" for i in range(60)])
        entries = log_store.load()
        assert entries[0] == "e10"
        assert len(entries) == 50

    def test_corrupt_storage_loads_empty(self, log_store, kv_store) -> None:
        kv_store.path.parent.mkdir(parents=True)
        kv_store.path.write_text("not json at all")
        assert log_store.load() == []
        assert log_store.append("p1", "fresh") is True
        assert len(log_store.load()) == 1

    def test_wrong_shape_loads_empty(self, log_store, kv_store) -> None:
        kv_store.set("lora_alert_log", {"not": "a list"})
        assert log_store.load() == []
        kv_store.set("lora_alert_log", ["fine", 3])
        assert log_store.load() == []

    def test_clear(self, log_store: AlertLogStore, kv_store) -> None:
        kv_store.set("other", "kept")
        log_store.append("p1", "x")
        log_store.clear()
        assert log_store.load() == []
        assert kv_store.get("other") == "kept"

    def test_append_write_failure_propagates(self, tmp_path, clock) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("")
        store = AlertLogStore(JsonFileStore(blocker / "store.json"), clock=clock)
        with pytest.raises(OSError):
            store.append("p1", "lost?")
