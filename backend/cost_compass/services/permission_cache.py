# Overview: Process-local permission cache with explicit invalidation entry points.

"""
Permission Cache

WHY: Permission sets are recomputed from several tables (role matrix,
explicit grants, property access, delegations). Caching the computed
snapshots avoids repeating that work on every request.

DESIGN:
- Explicit service object bound to the app via init_app (see extensions.py)
- Clock is injected so TTL behaviour is testable without sleeping
- Keys are namespaced by family prefix; invalidation works on prefixes
- TTLs bound staleness for entries nobody invalidated

CONSISTENCY:
- Invalidation is driven by the mutation helper in cache_invalidation.py
- The cache is per process. Other processes/instances keep their own copy
  and may serve stale permissions until their entries expire or are
  invalidated there. No cross-instance channel is provided.
- A reader racing an invalidation may see the old or the new value.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable


logger = logging.getLogger(__name__)


USER_PERMISSIONS_PREFIX = "perm:user:"
PROPERTY_ACCESS_PREFIX = "access:prop:"
ROLE_PERMISSIONS_PREFIX = "perm:role:"
USER_PROPERTIES_PREFIX = "props:user:"
HIERARCHY_PREFIX = "hierarchy:"

DEFAULT_TTLS = {
    "user_permissions": 15 * 60,
    "property_access": 10 * 60,
    "role_permissions": 60 * 60,
    "user_properties": 10 * 60,
    "hierarchy": 30 * 60,
    "accessible_properties": 5 * 60,
}


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class PermissionCache:
    """
    Keyed TTL store for permission snapshots.

    Key layout:
        perm:user:{user_id}                   global permission set
        perm:user:{user_id}:{property_id}     property-scoped permission set
        access:prop:{user_id}:{property_id}   {"access_level"} (None = no access)
        perm:role:{role}                      role permission set
        props:user:{user_id}                  [{"property_id", "access_level"}]
        props:user:{user_id}:{level}          accessible property ids at level
        hierarchy:{user_id}                   {"role", "is_active"}
    """

    def __init__(
        self,
        ttls: dict[str, int] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._ttls = dict(DEFAULT_TTLS)
        if ttls:
            self._ttls.update(ttls)
        self._hits = 0
        self._misses = 0

    def init_app(self, app) -> None:
        self._ttls.update(app.config.get("PERMISSION_CACHE_TTLS", {}))
        app.extensions["permission_cache"] = self

    def shutdown(self) -> None:
        """Drop every entry; the cache stays usable afterwards."""
        self.clear_all()

    def ttl(self, family: str) -> int:
        return self._ttls[family]

    # ------------------------------------------------------------------
    # Raw key access
    # ------------------------------------------------------------------

    def get(self, key: str) -> Any | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.expires_at <= now:
                del self._entries[key]
                self._misses += 1
                return None
            self._hits += 1
            return entry.value

    def set(self, key: str, value: Any, ttl: int) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def delete_where(self, predicate: Callable[[str], bool]) -> int:
        with self._lock:
            doomed = [key for key in self._entries if predicate(key)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def delete_prefix(self, prefix: str) -> int:
        return self.delete_where(lambda key: key.startswith(prefix))

    def _set_bounded(self, key: str, value: Any, family: str, max_ttl: float | None) -> None:
        """
        Store with the family TTL, shortened to max_ttl when given so the
        entry lapses no later than the earliest grant it was computed from.
        """
        ttl = self._ttls[family]
        if max_ttl is not None:
            ttl = min(ttl, max_ttl)
        if ttl <= 0:
            return
        self.set(key, value, ttl)

    def keys(self) -> list[str]:
        """Live (unexpired) keys. Expired entries are purged as a side effect."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
            for key in expired:
                del self._entries[key]
            return list(self._entries)

    # ------------------------------------------------------------------
    # User permission sets
    # ------------------------------------------------------------------

    @staticmethod
    def user_permissions_key(user_id: int, property_id: int | None = None) -> str:
        if property_id is None:
            return f"{USER_PERMISSIONS_PREFIX}{user_id}"
        return f"{USER_PERMISSIONS_PREFIX}{user_id}:{property_id}"

    def get_user_permissions(self, user_id: int, property_id: int | None = None) -> frozenset[str] | None:
        return self.get(self.user_permissions_key(user_id, property_id))

    def set_user_permissions(
        self,
        user_id: int,
        permissions: Iterable[str],
        property_id: int | None = None,
        max_ttl: float | None = None,
    ) -> None:
        self._set_bounded(
            self.user_permissions_key(user_id, property_id),
            frozenset(permissions),
            "user_permissions",
            max_ttl,
        )

    def batch_get_user_permissions(self, user_ids: Iterable[int]) -> dict[int, frozenset[str] | None]:
        return {user_id: self.get_user_permissions(user_id) for user_id in user_ids}

    def batch_set_user_permissions(self, permissions_by_user: dict[int, Iterable[str]]) -> None:
        for user_id, permissions in permissions_by_user.items():
            self.set_user_permissions(user_id, permissions)

    # ------------------------------------------------------------------
    # Property access snapshots
    # ------------------------------------------------------------------

    @staticmethod
    def property_access_key(user_id: int, property_id: int) -> str:
        return f"{PROPERTY_ACCESS_PREFIX}{user_id}:{property_id}"

    def get_property_access(self, user_id: int, property_id: int) -> dict | None:
        return self.get(self.property_access_key(user_id, property_id))

    def set_property_access(self, user_id: int, property_id: int, snapshot: dict, max_ttl: float | None = None) -> None:
        self._set_bounded(self.property_access_key(user_id, property_id), dict(snapshot), "property_access", max_ttl)

    # ------------------------------------------------------------------
    # Role permission sets
    # ------------------------------------------------------------------

    @staticmethod
    def role_permissions_key(role: str) -> str:
        return f"{ROLE_PERMISSIONS_PREFIX}{role}"

    def get_role_permissions(self, role: str) -> frozenset[str] | None:
        return self.get(self.role_permissions_key(role))

    def set_role_permissions(self, role: str, permissions: Iterable[str]) -> None:
        self.set(self.role_permissions_key(role), frozenset(permissions), self._ttls["role_permissions"])

    # ------------------------------------------------------------------
    # User property lists
    # ------------------------------------------------------------------

    @staticmethod
    def user_properties_key(user_id: int, level: str | None = None) -> str:
        if level is None:
            return f"{USER_PROPERTIES_PREFIX}{user_id}"
        return f"{USER_PROPERTIES_PREFIX}{user_id}:{level}"

    def get_user_properties(self, user_id: int) -> list[dict] | None:
        return self.get(self.user_properties_key(user_id))

    def set_user_properties(self, user_id: int, properties: list[dict], max_ttl: float | None = None) -> None:
        self._set_bounded(self.user_properties_key(user_id), list(properties), "user_properties", max_ttl)

    def get_accessible_property_ids(self, user_id: int, level: str) -> list[int] | None:
        return self.get(self.user_properties_key(user_id, level))

    def set_accessible_property_ids(
        self,
        user_id: int,
        level: str,
        property_ids: Iterable[int],
        max_ttl: float | None = None,
    ) -> None:
        self._set_bounded(
            self.user_properties_key(user_id, level),
            sorted(property_ids),
            "accessible_properties",
            max_ttl,
        )

    # ------------------------------------------------------------------
    # User role snapshot
    # ------------------------------------------------------------------

    @staticmethod
    def hierarchy_key(user_id: int) -> str:
        return f"{HIERARCHY_PREFIX}{user_id}"

    def get_user_hierarchy(self, user_id: int) -> dict | None:
        return self.get(self.hierarchy_key(user_id))

    def set_user_hierarchy(self, user_id: int, snapshot: dict) -> None:
        self.set(self.hierarchy_key(user_id), dict(snapshot), self._ttls["hierarchy"])

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def invalidate_user(self, user_id: int) -> int:
        """Drop every entry derived from one user's state."""
        uid = str(user_id)

        def _belongs_to_user(key: str) -> bool:
            for prefix in (USER_PERMISSIONS_PREFIX, PROPERTY_ACCESS_PREFIX, USER_PROPERTIES_PREFIX, HIERARCHY_PREFIX):
                if key.startswith(prefix):
                    return key[len(prefix):].split(":", 1)[0] == uid
            return False

        removed = self.delete_where(_belongs_to_user)
        logger.debug("Invalidated user cache", extra={"user_id": user_id, "removed": removed})
        return removed

    def invalidate_property(self, property_id: int) -> int:
        """
        Drop entries scoped to one property, plus every user property list
        (a list may include or omit the property after the change).
        """
        pid = str(property_id)

        def _touches_property(key: str) -> bool:
            if key.startswith(PROPERTY_ACCESS_PREFIX) or key.startswith(USER_PERMISSIONS_PREFIX):
                parts = key.split(":")
                return len(parts) == 4 and parts[3] == pid
            return key.startswith(USER_PROPERTIES_PREFIX)

        removed = self.delete_where(_touches_property)
        logger.debug("Invalidated property cache", extra={"property_id": property_id, "removed": removed})
        return removed

    def invalidate_role(self, role: str | None = None) -> int:
        """Drop one role's set, or every role set when role is None."""
        if role is None:
            return self.delete_prefix(ROLE_PERMISSIONS_PREFIX)
        return int(self.delete(self.role_permissions_key(role)))

    def clear_all(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info("Permission cache cleared", extra={"removed": count})
        return count

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_stats(self) -> dict:
        keys = self.keys()
        return {
            "total_keys": len(keys),
            "user_permission_keys": sum(1 for k in keys if k.startswith(USER_PERMISSIONS_PREFIX)),
            "property_access_keys": sum(1 for k in keys if k.startswith(PROPERTY_ACCESS_PREFIX)),
            "role_permission_keys": sum(1 for k in keys if k.startswith(ROLE_PERMISSIONS_PREFIX)),
            "user_property_keys": sum(1 for k in keys if k.startswith(USER_PROPERTIES_PREFIX)),
            "hierarchy_keys": sum(1 for k in keys if k.startswith(HIERARCHY_PREFIX)),
            "hits": self._hits,
            "misses": self._misses,
        }
