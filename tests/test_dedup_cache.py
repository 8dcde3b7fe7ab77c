"""Tests for chatfanin.chat.dedup_cache."""

import threading

import pytest

from chatfanin.chat.dedup_cache import DEFAULT_CAPACITY, DedupCache


class TestDedupCache:
    """Tests for DedupCache."""

    def test_default_capacity(self):
        assert DedupCache().capacity == DEFAULT_CAPACITY == 10_000

    def test_first_add_accepted(self):
        cache = DedupCache(4)
        assert cache.try_add("twitch:1") is True
        assert "twitch:1" in cache
        assert len(cache) == 1

    def test_duplicate_rejected(self):
        cache = DedupCache(4)
        cache.try_add("twitch:1")
        assert cache.try_add("twitch:1") is False
        assert len(cache) == 1

    def test_same_id_different_platform_is_distinct(self):
        cache = DedupCache(4)
        assert cache.try_add("twitch:1") is True
        assert cache.try_add("chzzk:1") is True

    def test_full_cache_evicts_exactly_one_oldest(self):
        cache = DedupCache(3)
        for key in ("a", "b", "c"):
            cache.try_add(key)

        assert cache.try_add("d") is True
        assert len(cache) == 3
        assert "a" not in cache
        assert all(k in cache for k in ("b", "c", "d"))

    def test_duplicate_hit_refreshes_recency(self):
        """A rejected duplicate counts as a touch, so it survives the next eviction."""
        cache = DedupCache(3)
        for key in ("a", "b", "c"):
            cache.try_add(key)

        assert cache.try_add("a") is False
        cache.try_add("d")

        assert "a" in cache
        assert "b" not in cache

    def test_size_never_exceeds_capacity(self):
        cache = DedupCache(5)
        for i in range(100):
            cache.try_add(str(i))
            assert len(cache) <= 5

    def test_evicted_key_can_be_added_again(self):
        cache = DedupCache(1)
        cache.try_add("a")
        cache.try_add("b")
        assert cache.try_add("a") is True

    def test_clear(self):
        cache = DedupCache(3)
        cache.try_add("a")
        cache.clear()
        assert len(cache) == 0
        assert cache.try_add("a") is True

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            DedupCache(0)

    def test_concurrent_adds_accept_each_key_once(self):
        cache = DedupCache(1000)
        accepted = []
        lock = threading.Lock()

        def worker():
            for i in range(200):
                if cache.try_add(f"k{i}"):
                    with lock:
                        accepted.append(i)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(accepted) == list(range(200))
