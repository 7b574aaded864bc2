"""Unit tests for the in-memory storage layer.

Covers:
- :class:`~kgrelay.storage.credentials.CredentialStore` save/delete/clear and
  the "list reflects the last operation per user" property.
- :class:`~kgrelay.storage.cache.ResponseCache` TTL semantics.
- :class:`~kgrelay.storage.cache.CacheCoordinator` invalidation, including
  invalidation triggered by credential mutations.
"""

from __future__ import annotations

import random

import pytest

from kgrelay.core.exceptions import CredentialNotFoundError, InvalidInputError
from kgrelay.storage.cache import CacheCoordinator, CachedResponse, ResponseCache
from kgrelay.storage.credentials import CredentialStore

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _entry(body: bytes = b"{}") -> CachedResponse:
    return CachedResponse(status=200, body=body, headers=[("content-type", "application/json")])


@pytest.fixture()
def coordinator() -> CacheCoordinator:
    return CacheCoordinator(ResponseCache(ttl=60))


@pytest.fixture()
def store(coordinator: CacheCoordinator) -> CredentialStore:
    return CredentialStore(coordinator)


# ---------------------------------------------------------------------------
# CredentialStore
# ---------------------------------------------------------------------------


class TestCredentialStore:
    def test_save_then_get(self, store: CredentialStore) -> None:
        store.save("u1", "t1")
        assert store.get("u1").token == "t1"
        assert "u1" in store
        assert len(store) == 1

    def test_save_strips_whitespace(self, store: CredentialStore) -> None:
        store.save("  u1 ", " t1\n")
        assert store.get("u1").token == "t1"

    def test_resave_overwrites(self, store: CredentialStore) -> None:
        store.save("u1", "old")
        store.save("u1", "new")
        assert len(store) == 1
        assert store.get("u1").token == "new"

    @pytest.mark.parametrize(("user_id", "token"), [("", "t"), ("u", ""), (None, "t"), ("u", "  ")])
    def test_save_rejects_missing_fields(
        self, store: CredentialStore, user_id: str | None, token: str | None
    ) -> None:
        store.save("keep", "me")
        with pytest.raises(InvalidInputError, match="缺少userid或token"):
            store.save(user_id, token)
        assert [r["userId"] for r in store.list()] == ["keep"]

    def test_get_missing_raises(self, store: CredentialStore) -> None:
        with pytest.raises(CredentialNotFoundError) as exc_info:
            store.get("ghost")
        assert exc_info.value.user_id == "ghost"

    def test_delete_is_idempotent(self, store: CredentialStore) -> None:
        store.save("u1", "t1")
        store.delete("u1")
        store.delete("u1")
        assert "u1" not in store

    def test_clear_all(self, store: CredentialStore) -> None:
        store.save("u1", "t1")
        store.save("u2", "t2")
        store.clear_all()
        assert store.list() == []

    def test_list_projection(self, store: CredentialStore) -> None:
        store.save("u1", "t1")
        (entry,) = store.list()
        assert entry["userId"] == "u1"
        assert entry["token"] == "t1"
        assert "savedAt" in entry

    def test_list_matches_last_operation_per_user(self) -> None:
        """Random save/delete/clear sequences leave exactly the saved-last users."""
        rng = random.Random(1234)
        users = ["a", "b", "c", "d"]
        for _ in range(50):
            store = CredentialStore()
            expected: set[str] = set()
            for _ in range(30):
                op = rng.choice(["save", "save", "delete", "clear"])
                user = rng.choice(users)
                if op == "save":
                    store.save(user, f"tok-{user}")
                    expected.add(user)
                elif op == "delete":
                    store.delete(user)
                    expected.discard(user)
                else:
                    store.clear_all()
                    expected.clear()
            assert {r["userId"] for r in store.list()} == expected

    @pytest.mark.parametrize("mutation", ["save", "delete", "clear_all"])
    def test_mutations_invalidate_cache(
        self, store: CredentialStore, coordinator: CacheCoordinator, mutation: str
    ) -> None:
        store.save("u1", "t1")
        coordinator.cache.set("/api/getLogins", _entry())

        if mutation == "save":
            store.save("u2", "t2")
        elif mutation == "delete":
            store.delete("u1")
        else:
            store.clear_all()

        assert coordinator.cache.get("/api/getLogins") is None

    def test_rejected_save_still_leaves_cache(
        self, store: CredentialStore, coordinator: CacheCoordinator
    ) -> None:
        coordinator.cache.set("/api/getLogins", _entry())
        with pytest.raises(InvalidInputError):
            store.save("", "")
        assert coordinator.cache.get("/api/getLogins") is not None


# ---------------------------------------------------------------------------
# ResponseCache
# ---------------------------------------------------------------------------


class TestResponseCache:
    def test_get_within_ttl(self) -> None:
        clock = _Clock()
        cache = ResponseCache(ttl=10, clock=clock)
        cache.set("/k", _entry(b"x"))
        clock.now += 9.9
        cached = cache.get("/k")
        assert cached is not None
        assert cached.body == b"x"

    def test_expired_entry_evicted(self) -> None:
        clock = _Clock()
        cache = ResponseCache(ttl=10, clock=clock)
        cache.set("/k", _entry())
        clock.now += 10
        assert cache.get("/k") is None
        assert cache.keys() == []

    def test_zero_ttl_disables(self) -> None:
        cache = ResponseCache(ttl=0)
        assert not cache.enabled
        cache.set("/k", _entry())
        assert cache.get("/k") is None

    def test_clear_single_key(self) -> None:
        cache = ResponseCache(ttl=10)
        cache.set("/a", _entry())
        cache.set("/b", _entry())
        cache.clear("/a")
        assert cache.keys() == ["/b"]


# ---------------------------------------------------------------------------
# CacheCoordinator
# ---------------------------------------------------------------------------


class TestCacheCoordinator:
    def test_invalidate_all(self, coordinator: CacheCoordinator) -> None:
        coordinator.cache.set("/a", _entry())
        assert coordinator.invalidate() == "all"
        assert coordinator.cache.keys() == []

    def test_invalidate_target_substring(self, coordinator: CacheCoordinator) -> None:
        coordinator.cache.set("/user/detail?x=1", _entry())
        coordinator.cache.set("/user/vip/detail", _entry())
        coordinator.cache.set("/youth/vip", _entry())

        removed = coordinator.invalidate("/user")

        assert sorted(removed) == ["/user/detail?x=1", "/user/vip/detail"]
        assert coordinator.cache.keys() == ["/youth/vip"]

    def test_invalidate_target_no_match(self, coordinator: CacheCoordinator) -> None:
        coordinator.cache.set("/a", _entry())
        assert coordinator.invalidate("/zzz") == []
        assert coordinator.cache.keys() == ["/a"]
