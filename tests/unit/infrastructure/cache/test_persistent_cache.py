import logging

import pytest

from rescoord.domain.models.cache import CacheConfig
from rescoord.infrastructure.cache.persistent_cache import PersistentCacheStore
from rescoord.infrastructure.cache.storage_adapters import (
    DiskCacheStorageAdapter, MemoryStorageAdapter
)


@pytest.fixture
def storage():
    return MemoryStorageAdapter(prefix="test:")

@pytest.fixture
def store(storage, fake_clock):
    return PersistentCacheStore(
        storage,
        config=CacheConfig(max_size=2, default_ttl=10),
        clock=fake_clock,
        auto_cleanup=False,
    )


# --- Write-through ---

def test_set_writes_record_to_storage(store, storage, fake_clock):
    store.set("a", {"v": 1}, ttl=5, tags=["t2", "t1"])
    record = storage.get("a")
    assert record == {
        "data": {"v": 1},
        "timestamp": fake_clock.now,
        "expiry": fake_clock.now + 5,
        "tags": ["t1", "t2"],
    }
    assert store.stored_record("a") == record

def test_delete_removes_from_storage(store, storage):
    store.set("a", 1)
    assert store.delete("a") is True
    assert storage.get("a") is None

def test_clear_by_tags_removes_from_storage(store, storage):
    store.set("a", 1, tags=["x"])
    store.set("b", 2, tags=["y"])
    assert store.clear_by_tags(["x"]) == 1
    assert storage.get("a") is None
    assert storage.get("b") is not None

def test_clear_by_tags_removes_evicted_records(store, storage, fake_clock):
    store.set("a", "stale", tags=["x"])
    fake_clock.advance(1)
    store.set("b", 2)
    fake_clock.advance(1)
    store.set("c", 3)
    assert "a" not in store.keys()

    assert store.clear_by_tags(["x"]) == 1
    assert storage.get("a") is None
    assert store.get("a") is None
    assert store.get("b") == 2

def test_clear_by_tags_removes_records_of_previous_store(storage, fake_clock):
    first = PersistentCacheStore(storage, clock=fake_clock, auto_cleanup=False)
    first.set("a", "stale", tags=["x"])
    first.set("b", "kept", tags=["y"])
    first.destroy()

    second = PersistentCacheStore(storage, clock=fake_clock, auto_cleanup=False)
    assert second.clear_by_tags(["x"]) == 1
    assert second.get("a") is None
    assert second.get("b") == "kept"

def test_delete_of_stored_only_key(storage, fake_clock):
    storage.set("a", {"data": 1, "timestamp": 0, "expiry": 10 ** 9, "tags": []})
    store = PersistentCacheStore(storage, clock=fake_clock, auto_cleanup=False)
    assert store.delete("a") is True
    assert storage.get("a") is None
    assert store.delete("a") is False

def test_refresh_writes_new_expiry(store, storage, fake_clock):
    store.set("a", 1, ttl=1)
    fake_clock.advance(0.5)
    store.refresh("a", ttl=20)
    assert storage.get("a")["expiry"] == fake_clock.now + 20

def test_clear_empties_storage_prefix_only(storage, fake_clock):
    other = MemoryStorageAdapter(prefix="other:")
    other._records = storage._records
    other.set("keep", 1)
    store = PersistentCacheStore(storage, clock=fake_clock, auto_cleanup=False)
    store.set("a", 1)

    store.clear()

    assert storage.get("a") is None
    assert other.get("keep") == 1


# --- Read-through ---

def test_evicted_entry_is_restored_from_storage(store, storage, fake_clock):
    store.set("a", 1)
    fake_clock.advance(1)
    store.set("b", 2)
    fake_clock.advance(1)
    store.set("c", 3)

    assert "a" not in store.keys()
    assert storage.get("a") is not None
    assert store.get("a") == 1
    assert "a" in store.keys()
    assert store.get_stats()["hit_count"] == 1

def test_new_store_reads_records_of_previous_store(storage, fake_clock):
    first = PersistentCacheStore(storage, clock=fake_clock, auto_cleanup=False)
    first.set("a", "persisted", tags=["t"])
    first.destroy()

    second = PersistentCacheStore(storage, clock=fake_clock, auto_cleanup=False)
    assert second.get("a") == "persisted"
    assert second.keys("t") == ["a"]

def test_expired_record_is_a_miss_and_removed(store, storage, fake_clock):
    store.set("a", 1, ttl=1)
    store.destroy()
    fake_clock.advance(2)
    assert store.get("a") is None
    assert storage.get("a") is None
    assert store.get_stats()["miss_count"] == 1

def test_has_does_not_promote_stored_entry(store, storage):
    storage.set("a", {"data": 1, "timestamp": 0, "expiry": 10 ** 9, "tags": []})
    assert store.has("a") is True
    assert store.keys() == []
    assert store.get_stats()["hit_count"] == 0

def test_malformed_record_is_discarded(store, storage, caplog):
    storage.set("a", "not a record")
    with caplog.at_level(logging.WARNING):
        assert store.get("a") is None
    assert "malformed" in caplog.text
    assert storage.get("a") is None


# --- Storage failures ---

def test_storage_errors_are_logged_not_raised(fake_clock, mocker, caplog):
    broken = mocker.Mock()
    broken.set.side_effect = OSError("disk full")
    broken.get.side_effect = OSError("disk gone")
    broken.delete.side_effect = OSError("disk gone")
    store = PersistentCacheStore(broken, clock=fake_clock, auto_cleanup=False)

    with caplog.at_level(logging.WARNING):
        store.set("a", 1)
        assert store.get("a") == 1
        assert store.get("missing") is None
        assert store.delete("a") is True

    assert "Failed to save key a" in caplog.text
    assert "Failed to read key missing" in caplog.text


# --- Disk adapter ---

def test_disk_storage_round_trip(tmp_path, fake_clock):
    adapter = DiskCacheStorageAdapter(directory=tmp_path / "store", prefix="api:")
    try:
        store = PersistentCacheStore(adapter, clock=fake_clock, auto_cleanup=False)
        store.set("a", {"v": [1, 2]}, tags=["x"])
        store.destroy()
        assert store.get("a") == {"v": [1, 2]}

        adapter.set("b", {"data": 2, "timestamp": 0, "expiry": 10 ** 9, "tags": []})
        adapter.disk_cache.set("unrelated", 3)
        assert sorted(adapter.keys()) == ["a", "b"]
        adapter.clear()
        assert adapter.get("a") is None
        assert adapter.get("b") is None
        assert adapter.disk_cache.get("unrelated") == 3
    finally:
        adapter.close()
