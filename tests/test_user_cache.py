import pytest

from core.exceptions import DependencyUnavailableError
from schemas.user import UserInfo
from utils.user_cache import UserCache


def _user(user_id: int = 1, name: str = "Ada Lovelace") -> UserInfo:
    return UserInfo(
        id=user_id,
        username="ada",
        name=name,
        email="ada@example.com",
        department_id=1,
        department_name="Engineering",
        roles=["ROLE_USER"],
    )


def test_set_get_delete(cache):
    cache.set("k", "v", 10)
    assert cache.get("k") == "v"
    cache.delete("k")
    assert cache.get("k") is None


def test_entries_expire_after_their_ttl(cache, clock):
    cache.set("short", "a", 5)
    cache.set("long", "b", 50)
    clock.advance(6)
    assert cache.get("short") is None
    assert cache.get("long") == "b"


def test_user_snapshot_uses_fixed_ttl(cache, clock):
    cache.cache_user(_user())
    clock.advance(59)
    assert cache.get_cached_user(1) == _user()
    clock.advance(2)
    assert cache.get_cached_user(1) is None


def test_delete_by_prefix_only_touches_matching_keys(cache):
    cache.cache_user(_user(1))
    cache.cache_user(_user(2))
    cache.set("other:1", "x", 60)

    assert cache.delete_by_prefix("user:") == 2
    assert cache.get_cached_user(1) is None
    assert cache.get("other:1") == "x"


def test_hit_and_miss_counters(cache):
    cache.get_cached_user(7)
    cache.cache_user(_user(7))
    cache.get_cached_user(7)

    stats = cache.get_stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["size"] == 1
    assert stats["open"] is True


def test_closed_cache_raises_dependency_unavailable():
    closed = UserCache()
    with pytest.raises(DependencyUnavailableError):
        closed.get("user:1")
    with pytest.raises(DependencyUnavailableError):
        closed.cache_user(_user())
    assert closed.get_stats()["open"] is False
