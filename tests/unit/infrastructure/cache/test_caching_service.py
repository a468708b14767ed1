import sqlite3

import pytest

from artifex.domain.models.ai import CodeReviewResult
from artifex.infrastructure.cache.caching_service import (
    MAX_KEY_PART_LENGTH,
    DiskCacheStore,
    InMemoryCacheStore,
    create_cache_key,
)


def test_set_then_get_returns_value(cache_store):
    cache_store.set("codeReview:a", {"summary": "ok"})
    assert cache_store.get("codeReview:a") == {"summary": "ok"}


def test_get_missing_key_returns_none(cache_store):
    assert cache_store.get("nope") is None


def test_entry_expires_after_ttl_and_is_removed_on_lookup(cache_store, clock):
    cache_store.set("k", "v", ttl=10)
    clock.advance(10)
    assert cache_store.get("k") == "v"  # exactly at expiry is still fresh
    clock.advance(0.001)
    assert len(cache_store) == 1  # nothing is swept in the background
    assert cache_store.get("k") is None
    assert len(cache_store) == 0


def test_set_overwrites_and_resets_expiry(cache_store, clock):
    cache_store.set("k", "old", ttl=5)
    clock.advance(4)
    cache_store.set("k", "new", ttl=5)
    clock.advance(4)
    assert cache_store.get("k") == "new"


def test_default_ttl_is_used_when_none_given(clock):
    store = InMemoryCacheStore(default_ttl=60, clock=clock)
    store.set("k", "v")
    clock.advance(61)
    assert store.get("k") is None


def test_delete_and_clear(cache_store):
    cache_store.set("a", 1)
    cache_store.set("b", 2)
    cache_store.delete("a")
    cache_store.delete("missing")
    assert "a" not in cache_store
    assert "b" in cache_store
    cache_store.clear()
    assert len(cache_store) == 0


def test_max_items_evicts_oldest_insert(clock):
    store = InMemoryCacheStore(max_items=2, clock=clock)
    store.set("a", 1)
    store.set("b", 2)
    store.set("a", 10)  # re-insert makes "a" the newest
    store.set("c", 3)
    assert store.get("b") is None
    assert store.get("a") == 10
    assert store.get("c") == 3


def test_contains_ignores_expired_entries(cache_store, clock):
    cache_store.set("k", "v", ttl=1)
    clock.advance(2)
    assert "k" not in cache_store


@pytest.mark.parametrize(
    "parts, expected",
    [
        (("octocat", "hello"), "repo-tree:octocat:hello"),
        (("x", None, 3), "repo-tree:x::3"),
        ((), "repo-tree"),
    ],
)
def test_create_cache_key_joins_parts(parts, expected):
    assert create_cache_key("repo-tree", *parts) == expected


def test_create_cache_key_hashes_long_parts():
    long_content = "x" * (MAX_KEY_PART_LENGTH + 1)
    key = create_cache_key("codeReview", "file.py", long_content)
    prefix, label, digest = key.split(":")
    assert (prefix, label) == ("codeReview", "file.py")
    assert len(digest) == 64
    assert key != create_cache_key("codeReview", "file.py", long_content + "y")


# --- Disk-backed store ---

@pytest.fixture
def disk_store(tmp_path):
    store = DiskCacheStore(tmp_path / "responses", default_ttl=300)
    yield store
    store.close()


def test_disk_store_serves_entries_to_a_later_run(disk_store, tmp_path):
    review = CodeReviewResult(summary="Fine.", overall_score=80)
    disk_store.set("codeReview:app.py", review)

    later_run = DiskCacheStore(tmp_path / "responses")
    try:
        assert later_run.get("codeReview:app.py") == review
        assert "codeReview:app.py" in later_run
    finally:
        later_run.close()


def test_disk_store_overwrite_delete_and_clear(disk_store):
    disk_store.set("k", "old")
    disk_store.set("k", "new", ttl=60)
    assert disk_store.get("k") == "new"

    disk_store.delete("k")
    disk_store.delete("never-stored")
    assert disk_store.get("k") is None

    disk_store.set("a", 1)
    disk_store.set("b", 2)
    disk_store.clear()
    assert len(disk_store) == 0


def test_disk_store_failures_read_as_misses(disk_store, mocker):
    mocker.patch.object(disk_store._cache, "get", side_effect=sqlite3.OperationalError("database is locked"))
    mocker.patch.object(disk_store._cache, "set", side_effect=sqlite3.OperationalError("database is locked"))

    disk_store.set("k", "v")
    assert disk_store.get("k") is None
