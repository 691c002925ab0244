# Overview: Transactional mutation helper plus event-driven cache invalidation, warming and health.

"""
Cache Invalidation

WHY: A permission write is only complete once cached snapshots derived
from the old state are gone. Doing that by hand at every call site is
easy to forget, so every RolePermission / PropertyAccess / UserPermission /
role mutation runs inside permission_mutation().

ORDER (per mutation):
1. Body runs; the write is staged in db.session
2. Commit (rollback and re-raise on any exception)
3. Collected cache invalidations run
4. Collected notifications are published

Steps 3 and 4 are best effort: failures are logged and swallowed, never
rolled back into the committed write. Cache TTLs bound any staleness left
behind by a failed invalidation.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Iterable, Iterator

from ..extensions import db, permission_cache
from ..models import User
from ..permissions import AccessLevel, Role
from . import permission_notifier


logger = logging.getLogger(__name__)


USER_ROLE_CHANGED = "user_role_changed"
USER_PERMISSIONS_CHANGED = "user_permissions_changed"
PROPERTY_ACCESS_GRANTED = "property_access_granted"
PROPERTY_ACCESS_REVOKED = "property_access_revoked"
PROPERTY_CREATED = "property_created"
PROPERTY_DELETED = "property_deleted"
USER_CREATED = "user_created"
USER_DELETED = "user_deleted"
ROLE_PERMISSIONS_UPDATED = "role_permissions_updated"
SYSTEM_PERMISSIONS_UPDATED = "system_permissions_updated"

INVALIDATION_EVENTS = (
    USER_ROLE_CHANGED,
    USER_PERMISSIONS_CHANGED,
    PROPERTY_ACCESS_GRANTED,
    PROPERTY_ACCESS_REVOKED,
    PROPERTY_CREATED,
    PROPERTY_DELETED,
    USER_CREATED,
    USER_DELETED,
    ROLE_PERMISSIONS_UPDATED,
    SYSTEM_PERMISSIONS_UPDATED,
)


def user_ids_with_role(role: str) -> list[int]:
    return [user_id for (user_id,) in db.session.query(User.id).filter(User.role == role).all()]


class PermissionMutation:
    """Collects the side effects of one permission write until it commits."""

    def __init__(self):
        self._invalidations: list[tuple[str, Callable[[], object]]] = []
        self._notifications: list[tuple[str, Callable[[], object]]] = []

    # Invalidation -------------------------------------------------------

    def invalidate_user(self, user_id: int) -> None:
        self._invalidations.append(
            (f"user:{user_id}", lambda: handle_invalidation_event(USER_PERMISSIONS_CHANGED, user_id=user_id))
        )

    def invalidate_property(
        self,
        property_id: int,
        user_id: int | None = None,
        event: str = PROPERTY_ACCESS_GRANTED,
    ) -> None:
        self._invalidations.append((
            f"property:{property_id}",
            lambda: handle_invalidation_event(event, property_id=property_id, user_id=user_id),
        ))

    def invalidate_role(self, role: str) -> None:
        """Drop the role set and every cached set of a user holding the role."""
        self._invalidations.append(
            (f"role:{role}", lambda: handle_invalidation_event(ROLE_PERMISSIONS_UPDATED, role=role))
        )

    def invalidate_user_role(self, user_id: int, old_role: str | None, new_role: str | None) -> None:
        self._invalidations.append((
            f"user_role:{user_id}",
            lambda: handle_invalidation_event(USER_ROLE_CHANGED, user_id=user_id, role=old_role),
        ))
        if new_role and new_role != old_role:
            self._invalidations.append((f"role:{new_role}", lambda: permission_cache.invalidate_role(new_role)))

    def invalidate_all(self) -> None:
        self._invalidations.append(("all", lambda: handle_invalidation_event(SYSTEM_PERMISSIONS_UPDATED)))

    # Notification -------------------------------------------------------

    def notify_user(
        self,
        user_id: int,
        permission_name: str | None,
        action: str,
        admin_user_id: int | None = None,
        message: str | None = None,
    ) -> None:
        self._notifications.append((
            f"notify_user:{user_id}",
            lambda: permission_notifier.notify_user_permission_update(
                user_id, permission_name, action, admin_user_id=admin_user_id, message=message
            ),
        ))

    def notify_user_role(
        self, user_id: int, old_role: str | None, new_role: str, admin_user_id: int | None = None
    ) -> None:
        self._notifications.append((
            f"notify_user_role:{user_id}",
            lambda: permission_notifier.notify_user_role_change(user_id, old_role, new_role, admin_user_id),
        ))

    def notify_role(self, role: str, permission_name: str | None, action: str, admin_user_id: int | None = None) -> None:
        self._notifications.append((
            f"notify_role:{role}",
            lambda: permission_notifier.notify_role_permission_update(role, permission_name, action, admin_user_id),
        ))

    def notify_global(self, message: str, admin_user_id: int | None = None) -> None:
        self._notifications.append((
            "notify_global",
            lambda: permission_notifier.notify_global_permission_update(message, admin_user_id),
        ))

    # Execution ----------------------------------------------------------

    def run(self) -> None:
        for label, step in [*self._invalidations, *self._notifications]:
            try:
                step()
            except Exception:
                logger.exception("Post-commit permission side effect failed", extra={"step": label})


@contextmanager
def permission_mutation() -> Iterator[PermissionMutation]:
    """
    Wrap a permission write.

    Usage:
        with permission_mutation() as mutation:
            db.session.add(RolePermission(...))
            mutation.invalidate_role(role)
            mutation.notify_role(role, name, "granted", admin_id)
    """
    mutation = PermissionMutation()
    try:
        yield mutation
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    mutation.run()


# =============================================================================
# EVENT HANDLING
# =============================================================================

def handle_invalidation_event(
    event: str,
    *,
    user_id: int | None = None,
    property_id: int | None = None,
    role: str | None = None,
    affected_users: Iterable[int] | None = None,
    reason: str | None = None,
) -> None:
    """
    Invalidate cache families according to the event type.

    Never raises: errors are logged and the cache is left to expire.
    """
    try:
        if event in (USER_ROLE_CHANGED, USER_PERMISSIONS_CHANGED, USER_CREATED, USER_DELETED):
            if user_id is not None:
                permission_cache.invalidate_user(user_id)
            if event == USER_ROLE_CHANGED and role:
                permission_cache.invalidate_role(role)

        elif event in (PROPERTY_ACCESS_GRANTED, PROPERTY_ACCESS_REVOKED, PROPERTY_CREATED, PROPERTY_DELETED):
            if property_id is not None:
                permission_cache.invalidate_property(property_id)
            if user_id is not None:
                permission_cache.invalidate_user(user_id)
            for affected in affected_users or ():
                permission_cache.invalidate_user(affected)

        elif event == ROLE_PERMISSIONS_UPDATED:
            if role:
                permission_cache.invalidate_role(role)
                for holder in user_ids_with_role(role):
                    permission_cache.invalidate_user(holder)

        elif event == SYSTEM_PERMISSIONS_UPDATED:
            permission_cache.clear_all()

        else:
            logger.warning("Unknown cache invalidation event", extra={"event": event})
            return

        logger.info(
            "Cache invalidation applied",
            extra={"event": event, "user_id": user_id, "property_id": property_id, "role": role, "reason": reason},
        )
    except Exception:
        logger.exception("Cache invalidation failed", extra={"event": event})


def smart_invalidate(
    resource_type: str,
    resource_id: int | str | None,
    change_type: str,
    changes: dict | None = None,
) -> None:
    """
    Map a data change onto invalidation events.

    resource_type: user | property | property_access | permission
    change_type:   create | update | delete
    """
    changes = changes or {}
    try:
        if resource_type == "user":
            user_id = int(resource_id)
            if change_type == "create":
                handle_invalidation_event(USER_CREATED, user_id=user_id, reason="User created")
            elif change_type == "delete":
                handle_invalidation_event(USER_DELETED, user_id=user_id, reason="User deleted")
            if "role" in changes:
                handle_invalidation_event(USER_ROLE_CHANGED, user_id=user_id, role=changes["role"], reason="Role updated")
            if "permissions" in changes or "is_active" in changes:
                handle_invalidation_event(USER_PERMISSIONS_CHANGED, user_id=user_id, reason="Permissions updated")

        elif resource_type == "property":
            property_id = int(resource_id)
            if change_type == "create":
                # Super admins see every property, so their property lists change
                handle_invalidation_event(
                    PROPERTY_CREATED,
                    property_id=property_id,
                    affected_users=user_ids_with_role(Role.SUPER_ADMIN),
                    reason="Property created",
                )
            elif change_type == "delete":
                handle_invalidation_event(PROPERTY_DELETED, property_id=property_id, reason="Property deleted")

        elif resource_type == "property_access":
            event = PROPERTY_ACCESS_REVOKED if change_type == "delete" else PROPERTY_ACCESS_GRANTED
            handle_invalidation_event(
                event,
                user_id=changes.get("user_id"),
                property_id=changes.get("property_id"),
                reason=f"Property access {change_type}d",
            )

        elif resource_type == "permission":
            handle_invalidation_event(SYSTEM_PERMISSIONS_UPDATED, reason="System permissions updated")

        else:
            logger.warning("Unknown resource type for smart invalidation", extra={"resource_type": resource_type})
    except Exception:
        logger.exception("Smart invalidation failed", extra={"resource_type": resource_type})


# =============================================================================
# WARMING AND HEALTH
# =============================================================================

def warm_cache(user_ids: Iterable[int], property_ids: Iterable[int] | None = None) -> dict:
    """
    Pre-compute permission snapshots for the given users.

    Without property_ids each user's accessible properties are warmed.
    Returns {"users_warmed", "properties_warmed"}.
    """
    from . import permission_service, property_access_service

    users_warmed = 0
    properties_warmed = 0
    explicit_properties = list(property_ids) if property_ids is not None else None

    for user_id in user_ids:
        try:
            permission_service.get_user_permissions(user_id)
            targets = explicit_properties
            if targets is None:
                targets = property_access_service.get_accessible_property_ids(user_id, AccessLevel.READ_ONLY)
            for property_id in targets:
                property_access_service.get_user_property_permissions(user_id, property_id)
                property_access_service.can_access_property(user_id, property_id, AccessLevel.READ_ONLY)
                properties_warmed += 1
            users_warmed += 1
        except Exception:
            logger.exception("Cache warming failed", extra={"user_id": user_id})

    logger.info("Cache warmed", extra={"users_warmed": users_warmed, "properties_warmed": properties_warmed})
    return {"users_warmed": users_warmed, "properties_warmed": properties_warmed}


def get_cache_health() -> dict:
    """{"stats", "health": healthy|degraded|critical, "recommendations"}"""
    try:
        stats = permission_cache.get_stats()
    except Exception:
        logger.exception("Cache stats unavailable")
        return {"stats": {}, "health": "critical", "recommendations": ["Cache system error - check logs"]}

    recommendations = []
    health = "healthy"

    if stats["total_keys"] == 0:
        health = "critical"
        recommendations.append("Cache is empty - consider warming critical paths")
    elif stats["total_keys"] < 100:
        health = "degraded"
        recommendations.append("Cache hit ratio may be low - consider longer TTL values")

    if stats["user_permission_keys"] > 10_000:
        recommendations.append("Consider implementing LRU eviction or reducing TTL")

    return {"stats": stats, "health": health, "recommendations": recommendations}
