# Overview: Service-layer property access checks and administration (grant, update, revoke, cleanup).

"""
Property Access Service

WHY: Users see and change data per property. A global role says what a
user may do; a PropertyAccess row says where, and at which level.

ACCESS RESOLUTION (per user, property):
- super_admin: owner level on every property
- Property.owner_id == user: owner level
- Otherwise the user's unexpired PropertyAccess row, if any
- No row (or an expired one) means no access; never an exception

EXPIRY: active_access_filter is the single place that decides whether a
PropertyAccess row is live. Cached snapshots lapse no later than the
expiry of the row they were computed from.

ADMINISTRATION: The actor must be super_admin or hold management,
full_control or owner on the property. Every write runs inside
permission_mutation so the cache is invalidated and the target user is
notified after commit.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from ..extensions import db, permission_cache
from ..models import Property, PropertyAccess, User
from ..permissions import (
    MANAGING_ACCESS_LEVELS,
    AccessLevel,
    Role,
    access_level_rank,
    access_level_satisfies,
    get_access_level_permissions,
    get_role_permissions,
    is_valid_permission,
)
from ..time_utils import earliest_expiry, is_expired, seconds_until, utcnow
from ..validation import NotFoundError, ValidationError, validate_access_level
from . import cache_invalidation, permission_service
from .cache_invalidation import permission_mutation
from .permission_service import PermissionDeniedError, PropertyAccessDeniedError, log_audit_event


logger = logging.getLogger(__name__)

_UNSET = object()


def active_access_filter(now: datetime | None = None):
    """SQL criterion selecting PropertyAccess rows that are not past expiry."""
    now = now or utcnow()
    return db.or_(PropertyAccess.expires_at.is_(None), PropertyAccess.expires_at > now)


def _is_super_admin(user_id: int) -> bool:
    return permission_service.is_super_admin(user_id)


# =============================================================================
# ACCESS CHECKS
# =============================================================================

def get_user_property_access_level(user_id: int, property_id: int) -> str | None:
    """
    Effective access level on one property, or None.

    Cached under access:prop:{user_id}:{property_id}.
    """
    snapshot = permission_service.get_user_role_snapshot(user_id)
    if not snapshot or not snapshot["is_active"]:
        return None
    if snapshot["role"] == Role.SUPER_ADMIN:
        return AccessLevel.OWNER

    cached = permission_cache.get_property_access(user_id, property_id)
    if cached is not None:
        return cached["access_level"]

    now = utcnow()
    level = None
    expires_at = None

    owned = db.session.query(Property.id).filter(
        Property.id == property_id,
        Property.owner_id == user_id,
    ).first()
    if owned:
        level = AccessLevel.OWNER
    else:
        access = db.session.query(PropertyAccess).filter(
            PropertyAccess.user_id == user_id,
            PropertyAccess.property_id == property_id,
            active_access_filter(now),
        ).first()
        if access:
            level = access.access_level
            expires_at = access.expires_at

    permission_cache.set_property_access(
        user_id,
        property_id,
        {"access_level": level},
        max_ttl=seconds_until(expires_at, now),
    )
    return level


def can_access_property(user_id: int | None, property_id: int, required_level: str = AccessLevel.READ_ONLY) -> bool:
    """
    True when the user's level on the property meets required_level.

    super_admin short-circuits. Unknown levels never satisfy.
    """
    if user_id is None:
        return False
    if _is_super_admin(user_id):
        return True
    return access_level_satisfies(get_user_property_access_level(user_id, property_id), required_level)


def require_property_access(user_id: int, property_id: int, required_level: str = AccessLevel.READ_ONLY) -> None:
    """Raise PropertyAccessDeniedError unless can_access_property holds."""
    if not can_access_property(user_id, property_id, required_level):
        raise PropertyAccessDeniedError(property_id, required_level)


def get_user_property_permissions(user_id: int, property_id: int) -> frozenset[str]:
    """
    Permission names a user holds on one property.

    role set | access-level set | explicit grants | global and property
    delegations. Cached under perm:user:{user_id}:{property_id}.
    """
    from . import delegation_service

    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        return frozenset()
    if user.role == Role.SUPER_ADMIN:
        return frozenset(get_role_permissions(Role.SUPER_ADMIN))

    cached = permission_cache.get_user_permissions(user_id, property_id)
    if cached is not None:
        return cached

    now = utcnow()
    permissions = set(permission_service.get_role_permission_set(user.role))

    level = get_user_property_access_level(user_id, property_id)
    if level:
        permissions.update(get_access_level_permissions(level))

    grants = permission_service.get_explicit_grants(user_id, now)
    permissions.update(grant.permission.name for grant in grants if grant.permission)

    delegations = [
        *delegation_service.get_active_delegations(user_id, property_id=None, now=now),
        *delegation_service.get_active_delegations(user_id, property_id=property_id, now=now),
    ]
    for delegation in delegations:
        permissions.update(delegation.permissions or [])

    access = db.session.query(PropertyAccess).filter_by(user_id=user_id, property_id=property_id).first()
    contributing = [*grants, *delegations, *([access] if access else [])]
    expiry = earliest_expiry(contributing)

    result = frozenset(permissions)
    permission_cache.set_user_permissions(user_id, result, property_id=property_id, max_ttl=seconds_until(expiry, now))
    return result


def has_property_permission(user_id: int, property_id: int, permission_name: str) -> bool:
    """
    Permission check within one property.

    Requires some access to the property (read_only or above) unless the
    permission was delegated specifically for this property.
    """
    from . import delegation_service

    if not is_valid_permission(permission_name):
        return False
    if _is_super_admin(user_id):
        return True
    if permission_name not in get_user_property_permissions(user_id, property_id):
        return False
    if can_access_property(user_id, property_id, AccessLevel.READ_ONLY):
        return True
    return any(
        permission_name in (delegation.permissions or [])
        for delegation in delegation_service.get_active_delegations(user_id, property_id=property_id)
    )


def has_any_property_permission(user_id: int, property_id: int, permission_names: Iterable[str]) -> bool:
    return any(has_property_permission(user_id, property_id, name) for name in permission_names)


def has_all_property_permissions(user_id: int, property_id: int, permission_names: Iterable[str]) -> bool:
    names = list(permission_names)
    return bool(names) and all(has_property_permission(user_id, property_id, name) for name in names)


# =============================================================================
# PROPERTY LISTS
# =============================================================================

def get_user_properties(user_id: int) -> list[dict]:
    """
    [{"property_id", "access_level"}] for every property the user can see.

    Cached under props:user:{user_id}.
    """
    cached = permission_cache.get_user_properties(user_id)
    if cached is not None:
        return cached

    now = utcnow()
    snapshot = permission_service.get_user_role_snapshot(user_id)
    if not snapshot or not snapshot["is_active"]:
        return []

    if snapshot["role"] == Role.SUPER_ADMIN:
        rows = db.session.query(Property.id).filter(Property.is_active.is_(True)).order_by(Property.id).all()
        result = [{"property_id": pid, "access_level": AccessLevel.OWNER} for (pid,) in rows]
        permission_cache.set_user_properties(user_id, result)
        return result

    levels: dict[int, str] = {}
    owned = db.session.query(Property.id).filter(
        Property.owner_id == user_id,
        Property.is_active.is_(True),
    ).all()
    for (pid,) in owned:
        levels[pid] = AccessLevel.OWNER

    grants = (
        db.session.query(PropertyAccess)
        .join(Property, Property.id == PropertyAccess.property_id)
        .filter(
            PropertyAccess.user_id == user_id,
            Property.is_active.is_(True),
            active_access_filter(now),
        )
        .all()
    )
    for grant in grants:
        current = levels.get(grant.property_id)
        if access_level_rank(grant.access_level) > access_level_rank(current):
            levels[grant.property_id] = grant.access_level

    result = [{"property_id": pid, "access_level": level} for pid, level in sorted(levels.items())]
    expiry = earliest_expiry(grants)
    permission_cache.set_user_properties(user_id, result, max_ttl=seconds_until(expiry, now))
    return result


def get_accessible_property_ids(user_id: int, required_level: str = AccessLevel.READ_ONLY) -> list[int]:
    """
    Ids of properties where the user holds at least required_level.

    Cached under props:user:{user_id}:{level}.
    """
    cached = permission_cache.get_accessible_property_ids(user_id, required_level)
    if cached is not None:
        return cached

    now = utcnow()
    entries = get_user_properties(user_id)
    property_ids = [
        entry["property_id"]
        for entry in entries
        if access_level_satisfies(entry["access_level"], required_level)
    ]

    expiring = (
        db.session.query(PropertyAccess)
        .filter(PropertyAccess.user_id == user_id, PropertyAccess.expires_at.isnot(None), active_access_filter(now))
        .all()
    )
    expiry = earliest_expiry(expiring)
    permission_cache.set_accessible_property_ids(
        user_id, required_level, property_ids, max_ttl=seconds_until(expiry, now)
    )
    return sorted(property_ids)


def filter_accessible_properties(user_id: int, properties: Iterable, required_level: str = AccessLevel.READ_ONLY) -> list:
    """Keep the items (objects with .id or dicts with "id") the user may access."""
    properties = list(properties)
    if _is_super_admin(user_id):
        return properties

    allowed = set(get_accessible_property_ids(user_id, required_level))

    def _id(item):
        return item["id"] if isinstance(item, dict) else item.id

    return [item for item in properties if _id(item) in allowed]


def get_user_manageable_properties(user_id: int) -> list[Property]:
    """Properties where the user holds management level or higher."""
    property_ids = get_accessible_property_ids(user_id, AccessLevel.MANAGEMENT)
    if not property_ids:
        return []
    return db.session.query(Property).filter(Property.id.in_(property_ids)).order_by(Property.name).all()


def can_manage_property_users(user_id: int, property_id: int) -> bool:
    """User-management permission plus management level on the property."""
    if _is_super_admin(user_id):
        return True
    return permission_service.can_manage_users(user_id) and can_access_property(
        user_id, property_id, AccessLevel.MANAGEMENT
    )


def can_administer_property_access(actor_id: int, property_id: int) -> bool:
    """super_admin, or management / full_control / owner on the property."""
    if _is_super_admin(actor_id):
        return True
    return get_user_property_access_level(actor_id, property_id) in MANAGING_ACCESS_LEVELS


def _require_administer(actor_id: int, property_id: int) -> None:
    if not can_administer_property_access(actor_id, property_id):
        raise PropertyAccessDeniedError(
            property_id,
            AccessLevel.MANAGEMENT,
            "Insufficient privileges to manage access for this property",
        )


def _require_grantable_level(actor_id: int, property_id: int, access_level: str) -> None:
    """Non super admins cannot hand out a level above their own."""
    if _is_super_admin(actor_id):
        return
    actor_level = get_user_property_access_level(actor_id, property_id)
    if access_level_rank(access_level) > access_level_rank(actor_level):
        raise PermissionDeniedError("Cannot grant an access level above your own")


# =============================================================================
# ADMINISTRATION
# =============================================================================

def grant_property_access(
    *,
    actor_id: int,
    user_id: int,
    property_id: int,
    access_level: str,
    expires_at: datetime | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> PropertyAccess:
    """
    Grant (or replace) a user's access level on a property.

    Upserts the single (user, property) row; re-granting replaces level,
    grantor and expiry.
    """
    validate_access_level(access_level)
    if is_expired(expires_at):
        raise ValidationError("expires_at must be in the future")

    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    prop = db.session.get(Property, property_id)
    if prop is None:
        raise NotFoundError("Property not found")

    _require_administer(actor_id, property_id)
    _require_grantable_level(actor_id, property_id, access_level)

    with permission_mutation() as mutation:
        access = db.session.query(PropertyAccess).filter_by(user_id=user_id, property_id=property_id).first()
        if access:
            access.access_level = access_level
            access.granted_by_user_id = actor_id
            access.granted_at = utcnow()
            access.expires_at = expires_at
        else:
            access = PropertyAccess(
                user_id=user_id,
                property_id=property_id,
                access_level=access_level,
                granted_by_user_id=actor_id,
                granted_at=utcnow(),
                expires_at=expires_at,
            )
            db.session.add(access)

        log_audit_event(
            user_id=actor_id,
            action="GRANT_PROPERTY_ACCESS",
            resource="property_access",
            resource_id=f"{user_id}-{property_id}",
            property_id=property_id,
            details={
                "target_user_id": user_id,
                "access_level": access_level,
                "expires_at": expires_at.isoformat() if expires_at else None,
            },
            ip_address=ip_address,
            user_agent=user_agent,
            commit=False,
        )
        mutation.invalidate_property(property_id, user_id=user_id)
        mutation.notify_user(
            user_id,
            None,
            "granted",
            admin_user_id=actor_id,
            message=f"Your access to {prop.name} has been set to {access_level}",
        )

    logger.info(
        "Property access granted",
        extra={"actor_id": actor_id, "target_user_id": user_id, "property_id": property_id, "access_level": access_level},
    )
    return access


def update_property_access(
    *,
    actor_id: int,
    user_id: int,
    property_id: int,
    access_level: str | None = None,
    expires_at=_UNSET,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> PropertyAccess:
    """
    Change level and/or expiry of an existing grant.

    expires_at left unset keeps the current expiry; None clears it.
    """
    access = db.session.query(PropertyAccess).filter_by(user_id=user_id, property_id=property_id).first()
    if access is None:
        raise NotFoundError("Property access not found")

    _require_administer(actor_id, property_id)
    if access_level is not None:
        validate_access_level(access_level)
        _require_grantable_level(actor_id, property_id, access_level)
    if expires_at is not _UNSET and is_expired(expires_at):
        raise ValidationError("expires_at must be in the future")

    previous_level = access.access_level

    with permission_mutation() as mutation:
        if access_level is not None:
            access.access_level = access_level
        if expires_at is not _UNSET:
            access.expires_at = expires_at

        log_audit_event(
            user_id=actor_id,
            action="UPDATE_PROPERTY_ACCESS",
            resource="property_access",
            resource_id=f"{user_id}-{property_id}",
            property_id=property_id,
            details={
                "target_user_id": user_id,
                "previous_level": previous_level,
                "new_level": access.access_level,
                "expires_at": access.expires_at.isoformat() if access.expires_at else None,
            },
            ip_address=ip_address,
            user_agent=user_agent,
            commit=False,
        )
        mutation.invalidate_property(property_id, user_id=user_id)
        mutation.notify_user(
            user_id,
            None,
            "updated",
            admin_user_id=actor_id,
            message=f"Your property access changed from {previous_level} to {access.access_level}",
        )

    return access


def revoke_property_access(
    *,
    actor_id: int,
    user_id: int,
    property_id: int,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> None:
    access = db.session.query(PropertyAccess).filter_by(user_id=user_id, property_id=property_id).first()
    if access is None:
        raise NotFoundError("Property access not found")

    _require_administer(actor_id, property_id)
    previous_level = access.access_level

    with permission_mutation() as mutation:
        db.session.delete(access)
        log_audit_event(
            user_id=actor_id,
            action="REVOKE_PROPERTY_ACCESS",
            resource="property_access",
            resource_id=f"{user_id}-{property_id}",
            property_id=property_id,
            details={"target_user_id": user_id, "previous_level": previous_level},
            ip_address=ip_address,
            user_agent=user_agent,
            commit=False,
        )
        mutation.invalidate_property(
            property_id, user_id=user_id, event=cache_invalidation.PROPERTY_ACCESS_REVOKED
        )
        mutation.notify_user(
            user_id,
            None,
            "revoked",
            admin_user_id=actor_id,
            message="Your access to a property has been revoked",
        )

    logger.info(
        "Property access revoked",
        extra={"actor_id": actor_id, "target_user_id": user_id, "property_id": property_id},
    )


def bulk_grant_property_access(
    *,
    actor_id: int,
    user_ids: Iterable[int],
    property_id: int,
    access_level: str,
    expires_at: datetime | None = None,
) -> dict:
    """
    Grant the same level to many users. One user's failure does not stop the rest.

    Returns {"granted": [user_id...], "failed": [{"user_id", "error"}...]}.
    """
    granted = []
    failed = []
    for user_id in user_ids:
        try:
            grant_property_access(
                actor_id=actor_id,
                user_id=user_id,
                property_id=property_id,
                access_level=access_level,
                expires_at=expires_at,
            )
            granted.append(user_id)
        except (ValueError, PermissionDeniedError) as e:
            failed.append({"user_id": user_id, "error": str(e)})
    return {"granted": granted, "failed": failed}


def list_property_access_for_property(property_id: int) -> list[PropertyAccess]:
    return (
        db.session.query(PropertyAccess)
        .filter(PropertyAccess.property_id == property_id, active_access_filter())
        .order_by(PropertyAccess.user_id)
        .all()
    )


def list_property_access_for_user(user_id: int) -> list[PropertyAccess]:
    return (
        db.session.query(PropertyAccess)
        .filter(PropertyAccess.user_id == user_id, active_access_filter())
        .order_by(PropertyAccess.property_id)
        .all()
    )


def cleanup_expired_property_access(now: datetime | None = None) -> int:
    """
    Delete rows past expiry. Returns count deleted.

    Reads already ignore these rows; this only reclaims storage and keeps
    admin listings tidy. Run periodically (see `flask access cleanup-expired`).
    """
    now = now or utcnow()
    expired = (
        db.session.query(PropertyAccess)
        .filter(PropertyAccess.expires_at.isnot(None), PropertyAccess.expires_at <= now)
        .all()
    )
    if not expired:
        return 0

    with permission_mutation() as mutation:
        for access in expired:
            mutation.invalidate_property(
                access.property_id, user_id=access.user_id, event=cache_invalidation.PROPERTY_ACCESS_REVOKED
            )
            db.session.delete(access)
        log_audit_event(
            user_id=None,
            action="CLEANUP_EXPIRED_PROPERTY_ACCESS",
            resource="property_access",
            details={"deleted": len(expired)},
            commit=False,
        )

    logger.info("Expired property access cleaned up", extra={"deleted": len(expired)})
    return len(expired)
