"""
Permission cache unit tests.

Uses a fake clock; no database or app needed.
"""

import pytest

from cost_compass.services.permission_cache import PermissionCache


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return PermissionCache(ttls={"user_permissions": 60, "property_access": 30}, clock=clock)


class TestTTL:
    """Entries lapse at their TTL."""

    def test_entry_expires(self, cache, clock):
        cache.set_user_permissions(7, ["dashboard.view"])
        assert cache.get_user_permissions(7) == frozenset({"dashboard.view"})

        clock.advance(59)
        assert cache.get_user_permissions(7) is not None
        clock.advance(1)
        assert cache.get_user_permissions(7) is None

    def test_max_ttl_shortens_lifetime(self, cache, clock):
        cache.set_property_access(7, 3, {"access_level": "management"}, max_ttl=5)
        clock.advance(5)
        assert cache.get_property_access(7, 3) is None

    def test_max_ttl_never_extends(self, cache, clock):
        cache.set_property_access(7, 3, {"access_level": "management"}, max_ttl=500)
        clock.advance(30)
        assert cache.get_property_access(7, 3) is None

    def test_already_expired_grant_is_not_stored(self, cache):
        cache.set_user_permissions(7, ["dashboard.view"], max_ttl=-1)
        assert cache.keys() == []

    def test_negative_lookup_is_cached(self, cache):
        cache.set_property_access(7, 3, {"access_level": None})
        assert cache.get_property_access(7, 3) == {"access_level": None}


class TestInvalidation:
    """Prefix-family invalidation."""

    def test_invalidate_user_matches_exact_id(self, cache):
        cache.set_user_permissions(5, ["a.b"])
        cache.set_user_permissions(5, ["a.b"], property_id=2)
        cache.set_user_permissions(51, ["a.b"])
        cache.set_property_access(5, 2, {"access_level": "read_only"})
        cache.set_user_hierarchy(5, {"role": "user", "is_active": True})
        cache.set_user_properties(55, [])

        assert cache.invalidate_user(5) == 4
        assert sorted(cache.keys()) == ["perm:user:51", "props:user:55"]

    def test_invalidate_property(self, cache):
        cache.set_property_access(1, 2, {"access_level": "owner"})
        cache.set_property_access(1, 20, {"access_level": "owner"})
        cache.set_user_permissions(1, ["a.b"], property_id=2)
        cache.set_user_permissions(1, ["a.b"])
        cache.set_user_properties(1, [{"property_id": 20, "access_level": "owner"}])
        cache.set_accessible_property_ids(1, "read_only", [20])

        assert cache.invalidate_property(2) == 4
        assert sorted(cache.keys()) == ["access:prop:1:20", "perm:user:1"]

    def test_invalidate_role(self, cache):
        cache.set_role_permissions("supervisor", ["a.b"])
        cache.set_role_permissions("user", ["a.b"])
        assert cache.invalidate_role("supervisor") == 1
        assert cache.invalidate_role("supervisor") == 0
        assert cache.invalidate_role() == 1
        assert cache.keys() == []

    def test_clear_all(self, cache):
        cache.set_role_permissions("user", ["a.b"])
        cache.set_user_hierarchy(1, {"role": "user", "is_active": True})
        assert cache.clear_all() == 2
        assert cache.get_stats()["total_keys"] == 0


class TestStats:
    def test_counts_families_and_hits(self, cache):
        cache.set_user_permissions(1, ["a.b"])
        cache.set_role_permissions("user", ["a.b"])
        cache.set_user_properties(1, [])
        cache.get_user_permissions(1)
        cache.get_user_permissions(2)

        stats = cache.get_stats()
        assert stats["total_keys"] == 3
        assert stats["user_permission_keys"] == 1
        assert stats["role_permission_keys"] == 1
        assert stats["user_property_keys"] == 1
        assert (stats["hits"], stats["misses"]) == (1, 1)

    def test_expired_keys_are_not_counted(self, cache, clock):
        cache.set_user_permissions(1, ["a.b"])
        clock.advance(61)
        assert cache.get_stats()["total_keys"] == 0

    def test_batch_helpers(self, cache):
        cache.batch_set_user_permissions({1: ["a.b"], 2: []})
        assert cache.batch_get_user_permissions([1, 2, 3]) == {
            1: frozenset({"a.b"}),
            2: frozenset(),
            3: None,
        }
