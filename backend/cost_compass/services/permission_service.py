# Overview: Service-layer permission evaluation; resolves role sets, explicit grants and delegations.

"""
Permission Evaluation and Audit Logging

WHY: One place answers "may this user do X". Route decorators, property
checks, templates and compliance scans all go through these functions.

DESIGN PRINCIPLES:
- Fail closed: no user, inactive user, unknown role or unknown permission
  name means False (never an exception)
- Effective role set: RolePermission rows once the role is customized
  (see materialize_role_defaults), otherwise the static matrix in
  permissions.roles. super_admin always resolves to the full catalog.
- User set = role set | active explicit grants | active global delegations
- Expiry of explicit grants is enforced only by active_user_permission_filter
- Computed sets are cached (see permission_cache.py); the cache entry never
  outlives the earliest expiry that contributed to it
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db, permission_cache
from ..models import AuditLog, Permission, RoleCustomization, RolePermission, User, UserPermission
from ..permissions import (
    ADMIN_ROLES,
    ALL_PERMISSION_CODES,
    DEFAULT_ROLE_PERMISSIONS,
    PERMISSION_DEFINITIONS,
    ROUTE_PERMISSIONS,
    AccessLevel,
    Role,
    get_role_permissions,
    is_valid_permission,
    role_rank,
)
from ..time_utils import earliest_expiry, seconds_until, utcnow
from ..validation import NotFoundError
from .cache_invalidation import permission_mutation


logger = logging.getLogger(__name__)


class AuthenticationRequiredError(Exception):
    """Raised when an operation needs an identity and none was supplied."""


class PermissionDeniedError(Exception):
    """Raised when user lacks required permission."""


class PropertyAccessDeniedError(PermissionDeniedError):
    """Raised when a user lacks the required access level on a property."""

    def __init__(self, property_id: int, required_level: str, message: str | None = None):
        self.property_id = property_id
        self.required_level = required_level
        super().__init__(message or f"Access level '{required_level}' required on property {property_id}")


def log_audit_event(
    user_id: int | None,
    action: str,
    resource: str | None = None,
    resource_id: str | None = None,
    property_id: int | None = None,
    details: dict | None = None,
    success: bool = True,
    ip_address: str | None = None,
    user_agent: str | None = None,
    commit: bool = True,
) -> AuditLog:
    """
    Append an audit entry.

    WHY: Immutable audit log for compliance review. Every grant, revoke,
    role change and permission denial is recorded with its actor.

    commit=False adds the entry to the current transaction so it commits
    (or rolls back) together with the mutation it describes.

    action examples:
    - PERMISSION_DENIED
    - GRANT_PROPERTY_ACCESS / UPDATE_PROPERTY_ACCESS / REVOKE_PROPERTY_ACCESS
    - PERMISSION_ASSIGNED_TO_ROLE / PERMISSION_REMOVED_FROM_ROLE
    - PERMISSION_TEMPLATE_APPLIED
    - AUTOMATED_COMPLIANCE_SCAN
    """
    entry = AuditLog(
        user_id=user_id,
        action=action,
        resource=resource,
        resource_id=str(resource_id) if resource_id is not None else None,
        property_id=property_id,
        details=details,
        success=success,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    )
    db.session.add(entry)
    if commit:
        db.session.commit()
    return entry


# =============================================================================
# EXPIRY FILTER AND LOOKUPS
# =============================================================================

def active_user_permission_filter(now: datetime | None = None):
    """SQL criterion selecting UserPermission rows that are not past expiry."""
    now = now or utcnow()
    return db.or_(UserPermission.expires_at.is_(None), UserPermission.expires_at > now)


def _load_user(user: User | int | None) -> User | None:
    if user is None:
        return None
    if isinstance(user, User):
        return user
    return db.session.get(User, user)


def get_role_permission_set(role: str | None) -> frozenset[str]:
    """
    Effective permission set for a role.

    Persisted RolePermission rows win once a role has any or is marked
    customized (an emptied role stays empty); otherwise the static
    defaults apply. A database failure falls back to the defaults.
    """
    if role == Role.SUPER_ADMIN:
        return frozenset(ALL_PERMISSION_CODES)
    if not role:
        return frozenset()

    cached = permission_cache.get_role_permissions(role)
    if cached is not None:
        return cached

    try:
        names = [
            name
            for (name,) in db.session.query(Permission.name)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .filter(RolePermission.role == role)
            .all()
        ]
        customized = bool(names) or is_role_customized(role)
    except SQLAlchemyError:
        logger.exception("Role permission lookup failed; using static defaults", extra={"role": role})
        db.session.rollback()
        return get_role_permissions(role)

    permissions = frozenset(names) if customized else get_role_permissions(role)
    permission_cache.set_role_permissions(role, permissions)
    return permissions


def is_role_customized(role: str) -> bool:
    return db.session.get(RoleCustomization, role) is not None


def materialize_role_defaults(role: str, actor_id: int | None = None) -> int:
    """
    Make a role's persisted rows authoritative before they are edited.

    The first time a role is touched, its static default set is written as
    RolePermission rows and the role is marked customized, so an assign adds
    to the defaults and removing the last row leaves the role empty instead
    of reverting to them. Does not commit; callers run it inside their
    permission_mutation(). Returns the number of rows written.
    """
    if role == Role.SUPER_ADMIN or is_role_customized(role):
        return 0

    existing = {
        pid for (pid,) in db.session.query(RolePermission.permission_id).filter_by(role=role).all()
    }
    created = 0
    # A role that already has rows keeps them as-is
    if not existing:
        defaults = sorted(get_role_permissions(role))
        for permission in db.session.query(Permission).filter(Permission.name.in_(defaults)).all():
            db.session.add(RolePermission(role=role, permission_id=permission.id, granted_by_user_id=actor_id))
            created += 1

    db.session.add(RoleCustomization(role=role, customized_by_user_id=actor_id))
    db.session.flush()
    logger.info("Role defaults materialized", extra={"role": role, "rows": created})
    return created


def get_explicit_grants(user_id: int, now: datetime | None = None) -> list[UserPermission]:
    """Active (unexpired) explicit grants for a user."""
    return (
        db.session.query(UserPermission)
        .filter(UserPermission.user_id == user_id, active_user_permission_filter(now))
        .all()
    )


def get_user_permissions(user: User | int | None) -> frozenset[str]:
    """
    All permission names held globally by a user.

    Inactive or missing users hold nothing.
    """
    from . import delegation_service

    user = _load_user(user)
    if user is None or not user.is_active:
        return frozenset()

    cached = permission_cache.get_user_permissions(user.id)
    if cached is not None:
        return cached

    now = utcnow()
    permissions = set(get_role_permission_set(user.role))

    grants = get_explicit_grants(user.id, now)
    permissions.update(grant.permission.name for grant in grants if grant.permission)

    delegations = delegation_service.get_active_delegations(user.id, property_id=None, now=now)
    for delegation in delegations:
        permissions.update(delegation.permissions or [])

    expiry = earliest_expiry([*grants, *delegations])
    result = frozenset(permissions)
    permission_cache.set_user_permissions(user.id, result, max_ttl=seconds_until(expiry, now))
    return result


# =============================================================================
# MEMBERSHIP QUERIES
# =============================================================================

def has_permission(user: User | int | None, permission_name: str) -> bool:
    """Unknown permission names are never satisfiable."""
    if not is_valid_permission(permission_name):
        return False
    return permission_name in get_user_permissions(user)


def has_any_permission(user: User | int | None, permission_names: Iterable[str]) -> bool:
    names = [name for name in permission_names if is_valid_permission(name)]
    if not names:
        return False
    held = get_user_permissions(user)
    return any(name in held for name in names)


def has_all_permissions(user: User | int | None, permission_names: Iterable[str]) -> bool:
    """An empty requirement list is not satisfied (fail closed)."""
    names = list(permission_names)
    if not names or not all(is_valid_permission(name) for name in names):
        return False
    held = get_user_permissions(user)
    return all(name in held for name in names)


def get_user_role_snapshot(user: User | int | None) -> dict | None:
    """{"role", "is_active"} for a user, cached under hierarchy:{id}."""
    user_id = user.id if isinstance(user, User) else user
    if user_id is None:
        return None

    cached = permission_cache.get_user_hierarchy(user_id)
    if cached is not None:
        return cached

    user = _load_user(user)
    if user is None:
        return None
    snapshot = {"role": user.role, "is_active": bool(user.is_active)}
    permission_cache.set_user_hierarchy(user.id, snapshot)
    return snapshot


def has_role(user: User | int | None, role: str) -> bool:
    snapshot = get_user_role_snapshot(user)
    return bool(snapshot and snapshot["is_active"] and snapshot["role"] == role)


def has_any_role(user: User | int | None, roles: Iterable[str]) -> bool:
    snapshot = get_user_role_snapshot(user)
    if not snapshot or not snapshot["is_active"]:
        return False
    return snapshot["role"] in set(roles)


def is_super_admin(user: User | int | None) -> bool:
    return has_role(user, Role.SUPER_ADMIN)


def is_admin(user: User | int | None) -> bool:
    return has_any_role(user, ADMIN_ROLES)


def is_property_owner(user: User | int | None) -> bool:
    return has_role(user, Role.PROPERTY_OWNER)


def get_user_access_hierarchy(user: User | int | None) -> int:
    """Role rank 0..7; missing or inactive users rank -1."""
    snapshot = get_user_role_snapshot(user)
    if not snapshot or not snapshot["is_active"]:
        return -1
    return role_rank(snapshot["role"])


def has_higher_access(user_a: User | int | None, user_b: User | int | None) -> bool:
    return get_user_access_hierarchy(user_a) > get_user_access_hierarchy(user_b)


# =============================================================================
# CONVENIENCE CHECKS
# =============================================================================

def can_manage_users(user) -> bool:
    return has_any_permission(user, ["users.create", "users.update", "users.delete", "users.roles.manage"])


def can_manage_properties(user) -> bool:
    return has_any_permission(
        user, ["properties.create", "properties.update", "properties.delete", "properties.access.manage"]
    )


def can_view_financial_data(user) -> bool:
    return has_any_permission(
        user, ["financial.food_costs.read", "financial.beverage_costs.read", "financial.daily_summary.read"]
    )


def can_edit_financial_data(user) -> bool:
    return has_any_permission(user, [
        "financial.food_costs.create",
        "financial.food_costs.update",
        "financial.beverage_costs.create",
        "financial.beverage_costs.update",
        "financial.daily_summary.create",
        "financial.daily_summary.update",
    ])


def can_view_reports(user) -> bool:
    return has_any_permission(user, ["reports.basic.read", "reports.detailed.read", "reports.financial.read"])


def can_export_reports(user) -> bool:
    return has_permission(user, "reports.export")


def can_view_cross_property_reports(user) -> bool:
    return has_any_permission(user, ["reports.cross_property.read", "dashboard.cross_property.view"])


def can_access_route(user: User | int | None, path: str, property_id: int | None = None) -> bool:
    """
    Check a front-end route against ROUTE_PERMISSIONS.

    Unmapped routes are allowed. Property-required routes additionally need
    the mapped access level when a property is selected.
    """
    from . import property_access_service

    user = _load_user(user)
    if user is None or not user.is_active:
        return False

    config = ROUTE_PERMISSIONS.get(path)
    if config is None:
        return True

    if config.get("roles") and not has_any_role(user, config["roles"]):
        return False
    if config.get("permissions") and not has_any_permission(user, config["permissions"]):
        return False

    if config.get("property_required") and property_id is not None:
        level = config.get("access_level", AccessLevel.READ_ONLY)
        return property_access_service.can_access_property(user.id, property_id, level)
    return True


def require_permission(
    user: User | int | None,
    permission_name: str,
    resource: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> None:
    """
    Require user to have permission, raise PermissionDeniedError if not.

    Logs denials only (grants are not logged).
    """
    user = _load_user(user)
    if user is None:
        raise AuthenticationRequiredError("Authentication required")

    if not has_permission(user, permission_name):
        log_audit_event(
            user_id=user.id,
            action="PERMISSION_DENIED",
            resource=resource,
            details={"permission": permission_name},
            success=False,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        raise PermissionDeniedError(f"Permission denied: {permission_name}")


# =============================================================================
# CATALOG SEEDING
# =============================================================================

def initialize_permissions() -> int:
    """
    Create Permission rows for every catalog entry.

    Idempotent: Safe to run multiple times.

    WHY: Permissions must exist in DB before they can be assigned to roles
    or users.
    """
    existing = {name for (name,) in db.session.query(Permission.name).all()}
    created_count = 0

    for code, name, description, category, action in PERMISSION_DEFINITIONS:
        if code in existing:
            continue
        db.session.add(Permission(
            name=code,
            display_name=name,
            description=description,
            category=category,
            action=action,
        ))
        created_count += 1

    db.session.commit()
    return created_count


def assign_default_role_permissions() -> int:
    """
    Persist DEFAULT_ROLE_PERMISSIONS as RolePermission rows.

    Idempotent: skips existing pairs. Customized roles are left alone so a
    re-run never restores a permission an admin removed. Seeded roles are
    marked customized. super_admin is skipped because it always resolves
    to the full catalog.
    """
    permissions_by_name = {p.name: p for p in db.session.query(Permission).all()}
    customized = {role for (role,) in db.session.query(RoleCustomization.role).all()}
    existing = {
        (rp.role, rp.permission_id)
        for rp in db.session.query(RolePermission).all()
    }
    created_count = 0

    for role, codes in DEFAULT_ROLE_PERMISSIONS.items():
        if role == Role.SUPER_ADMIN or role in customized:
            continue
        db.session.add(RoleCustomization(role=role))
        for code in codes:
            permission = permissions_by_name.get(code)
            if permission is None:
                continue  # Catalog not seeded for this code
            if (role, permission.id) in existing:
                continue
            db.session.add(RolePermission(role=role, permission_id=permission.id))
            existing.add((role, permission.id))
            created_count += 1

    db.session.commit()
    permission_cache.invalidate_role()
    return created_count


# =============================================================================
# EXPLICIT USER GRANTS
# =============================================================================

def grant_user_permission(
    *,
    user_id: int,
    permission_name: str,
    granted_by_user_id: int | None,
    expires_at: datetime | None = None,
) -> UserPermission:
    """
    Grant (or refresh) an explicit permission for one user.

    Re-granting an existing pair updates grantor, grant time and expiry.
    Commit, cache invalidation and notification happen in permission_mutation.
    """

    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")

    permission = db.session.query(Permission).filter_by(name=permission_name).first()
    if permission is None:
        raise NotFoundError("Permission not found.")

    with permission_mutation() as mutation:
        grant = db.session.query(UserPermission).filter_by(
            user_id=user_id,
            permission_id=permission.id,
        ).first()

        if grant:
            grant.granted_by_user_id = granted_by_user_id
            grant.granted_at = utcnow()
            grant.expires_at = expires_at
        else:
            grant = UserPermission(
                user_id=user_id,
                permission_id=permission.id,
                granted_by_user_id=granted_by_user_id,
                granted_at=utcnow(),
                expires_at=expires_at,
            )
            db.session.add(grant)

        log_audit_event(
            user_id=granted_by_user_id,
            action="USER_PERMISSION_GRANTED",
            resource="user_permissions",
            resource_id=f"{user_id}-{permission_name}",
            details={"target_user_id": user_id, "permission": permission_name,
                     "expires_at": expires_at.isoformat() if expires_at else None},
            commit=False,
        )
        mutation.invalidate_user(user_id)
        mutation.notify_user(user_id, permission_name, "granted")

    return grant


def revoke_user_permission(*, user_id: int, permission_name: str, revoked_by_user_id: int | None) -> bool:
    """Delete an explicit grant. Returns False when the user never held it."""

    grant = (
        db.session.query(UserPermission)
        .join(Permission, UserPermission.permission_id == Permission.id)
        .filter(UserPermission.user_id == user_id, Permission.name == permission_name)
        .first()
    )
    if grant is None:
        return False

    with permission_mutation() as mutation:
        db.session.delete(grant)
        log_audit_event(
            user_id=revoked_by_user_id,
            action="USER_PERMISSION_REVOKED",
            resource="user_permissions",
            resource_id=f"{user_id}-{permission_name}",
            details={"target_user_id": user_id, "permission": permission_name},
            commit=False,
        )
        mutation.invalidate_user(user_id)
        mutation.notify_user(user_id, permission_name, "revoked")

    return True
