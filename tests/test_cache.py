"""Cache key, store and CacheManager tests"""

from __future__ import annotations

import hashlib
import os

import pytest

from railci.cache import (
    CacheManager,
    CacheSaveFailed,
    FileCacheStore,
    MemoryCacheStore,
    compute_cache_key,
    hash_files,
    pack_path,
)


class TestCacheKey:

    def test_key_shape(self, tmp_path):
        (tmp_path / "Cargo.lock").write_text("lock v1")
        key = CacheManager(MemoryCacheStore(), repo_root=tmp_path).compute_key(
            "Cargo.lock", platform_id="Linux"
        )
        digest = hashlib.sha256(b"lock v1").hexdigest()
        assert key.key == f"Linux-target-{digest}"
        assert key.restore_keys == ["Linux-target-"]

    def test_deterministic(self, tmp_path):
        (tmp_path / "Cargo.lock").write_text("same")
        manager = CacheManager(MemoryCacheStore(), repo_root=tmp_path)
        first = manager.compute_key("Cargo.lock", platform_id="Linux")
        second = manager.compute_key("Cargo.lock", platform_id="Linux")
        assert first == second

    def test_lock_change_changes_key(self, tmp_path):
        lock = tmp_path / "Cargo.lock"
        manager = CacheManager(MemoryCacheStore(), repo_root=tmp_path)
        lock.write_text("a")
        before = manager.compute_key("Cargo.lock", platform_id="Linux")
        lock.write_text("b")
        after = manager.compute_key("Cargo.lock", platform_id="Linux")
        assert before.key != after.key
        assert before.restore_keys == after.restore_keys

    def test_platform_changes_key(self):
        assert compute_cache_key("Linux", "abc").key != compute_cache_key("macOS", "abc").key

    def test_missing_lock_file_hashes_empty(self, tmp_path):
        assert hash_files(tmp_path, "Cargo.lock") == ""
        key = CacheManager(MemoryCacheStore(), repo_root=tmp_path).compute_key(
            "Cargo.lock", platform_id="Linux"
        )
        assert key.key == "Linux-target-"

    def test_unreadable_lock_file_degrades_to_prefix(self, tmp_path, monkeypatch, capsys):
        def unreadable(root, *patterns):
            raise PermissionError(f"cannot read {patterns[0]}")

        monkeypatch.setattr("railci.cache.hash_files", unreadable)
        key = CacheManager(MemoryCacheStore(), repo_root=tmp_path).compute_key(
            "Cargo.lock", platform_id="Linux"
        )
        assert key.key == "Linux-target-"
        assert "could not hash Cargo.lock" in capsys.readouterr().err


class TestRestore:

    @pytest.fixture()
    def store(self):
        return MemoryCacheStore()

    def test_exact_hit(self, store):
        store.put("Linux-target-abc", b"data")
        result = CacheManager(store).restore("Linux-target-abc", ["Linux-target-"])
        assert result.hit is True
        assert result.data == b"data"
        assert result.matched_key == "Linux-target-abc"

    def test_prefix_match_is_partial(self, store):
        store.put("Linux-target-old", b"old data")
        result = CacheManager(store).restore("Linux-target-new", ["Linux-target-"])
        assert result.hit is False
        assert result.partial is True
        assert result.data == b"old data"
        assert result.matched_key == "Linux-target-old"

    def test_newest_prefix_match_wins(self, store):
        store.put("Linux-target-one", b"1")
        store.put("Linux-target-two", b"2")
        result = CacheManager(store).restore("Linux-target-three", ["Linux-target-"])
        assert result.matched_key == "Linux-target-two"

    def test_restore_keys_in_order(self, store):
        store.put("Linux-", b"generic")
        store.put("Linux-target-x", b"specific")
        store.put("Linux-other", b"newest")
        result = CacheManager(store).restore("Linux-target-y", ["Linux-target-", "Linux-"])
        assert result.data == b"specific"

    def test_miss_is_not_an_error(self, store):
        store.put("macOS-target-abc", b"data")
        result = CacheManager(store).restore("Linux-target-abc", ["Linux-target-"])
        assert result.hit is False
        assert result.data is None
        assert result.partial is False

    def test_no_restore_keys_means_exact_only(self, store):
        store.put("Linux-target-old", b"old")
        result = CacheManager(store).restore("Linux-target-new")
        assert result.data is None

    def test_unreadable_entry_is_a_miss(self, capsys):
        class UnreadableStore(MemoryCacheStore):
            def get(self, key):
                raise PermissionError("cache dir not readable")

        store = UnreadableStore()
        store.put("Linux-target-abc", b"data")
        result = CacheManager(store).restore("Linux-target-abc", ["Linux-target-"])
        assert result.hit is False
        assert result.data is None
        assert "cache restore failed" in capsys.readouterr().err

    def test_failing_key_listing_is_a_miss(self, tmp_path):
        class UnlistableStore(MemoryCacheStore):
            def keys(self):
                raise OSError("stale handle")

        store = UnlistableStore()
        store.put("Linux-target-old", b"old")
        result = CacheManager(store, repo_root=tmp_path).restore_into(
            "Linux-target-new", ["Linux-target-"]
        )
        assert result.hit is False
        assert result.partial is False


class TestSave:

    def test_save_and_restore_into(self, tmp_path):
        src = tmp_path / "src_repo"
        (src / "target" / "debug").mkdir(parents=True)
        (src / "target" / "debug" / "app").write_bytes(b"\x7fELF")
        store = MemoryCacheStore()

        assert CacheManager(store, repo_root=src).save("Linux-target-k", "target") is True

        dest = tmp_path / "dest_repo"
        dest.mkdir()
        result = CacheManager(store, repo_root=dest).restore_into("Linux-target-k")
        assert result.hit is True
        assert (dest / "target" / "debug" / "app").read_bytes() == b"\x7fELF"

    def test_missing_path_is_absorbed(self, tmp_path, capsys):
        store = MemoryCacheStore()
        assert CacheManager(store, repo_root=tmp_path).save("k", "target") is False
        assert store.keys() == []
        assert "cache save failed" in capsys.readouterr().err

    def test_store_failure_is_absorbed(self, tmp_path):
        class BrokenStore(MemoryCacheStore):
            def put(self, key, data):
                raise CacheSaveFailed("disk full")

        (tmp_path / "target").mkdir()
        assert CacheManager(BrokenStore(), repo_root=tmp_path).save("k", "target") is False

    def test_last_writer_wins(self, tmp_path):
        target = tmp_path / "target"
        target.mkdir()
        store = MemoryCacheStore()
        manager = CacheManager(store, repo_root=tmp_path)

        (target / "out").write_text("first")
        manager.save("k", "target")
        (target / "out").write_text("second")
        manager.save("k", "target")

        (target / "out").unlink()
        manager.restore_into("k")
        assert (target / "out").read_text() == "second"

    def test_pack_missing_raises(self, tmp_path):
        with pytest.raises(CacheSaveFailed, match="does not exist"):
            pack_path(tmp_path, "nope")


class TestFileCacheStore:

    @pytest.fixture()
    def store(self, tmp_path):
        return FileCacheStore(tmp_path / "cache")

    def test_get_put(self, store):
        assert store.get("Linux-target-a") == (False, b"")
        store.put("Linux-target-a", b"payload")
        assert store.get("Linux-target-a") == (True, b"payload")

    def test_keys_are_unquoted(self, store):
        store.put("weird/key name", b"x")
        assert store.keys() == ["weird/key name"]
        assert store.get("weird/key name") == (True, b"x")

    def test_keys_newest_first(self, store):
        store.put("Linux-target-a", b"a")
        store.put("Linux-target-b", b"b")
        os.utime(store.artifact_path("Linux-target-a"), (1000, 1000))
        os.utime(store.artifact_path("Linux-target-b"), (2000, 2000))
        assert store.keys() == ["Linux-target-b", "Linux-target-a"]

    def test_prune_keeps_newest(self, store):
        for i, name in enumerate(["a", "b", "c"]):
            store.put(f"Linux-target-{name}", name.encode())
            os.utime(store.artifact_path(f"Linux-target-{name}"), (1000 + i, 1000 + i))
        store.put("macOS-target-a", b"other")

        store.prune("Linux-target-", keep=2)
        assert sorted(store.keys()) == ["Linux-target-b", "Linux-target-c", "macOS-target-a"]

    def test_partial_restore_from_disk(self, store):
        store.put("Linux-target-old", b"old")
        result = CacheManager(store).restore("Linux-target-new", ["Linux-target-"])
        assert result.partial and result.data == b"old"
