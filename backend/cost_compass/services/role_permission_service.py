# Overview: Super-admin administration of the persisted role/permission matrix.

"""
Role Permission Administration

WHY: The default role matrix ships with the code, but operators need to
tune it at runtime. RolePermission rows are the mutable copy; once a role
is customized they define its set (see permission_service.get_role_permission_set).

RULES:
- Every operation requires a super_admin actor
- super_admin itself is never edited: it always resolves to the full catalog
- The first edit of a role writes its defaults as rows before changing
  anything, so edits start from what the role actually holds
- Every write runs in permission_mutation(): the role's cached set and the
  cached sets of every holder are dropped after commit, then role_updated
  (to holders) and permission_updated (to admins) are published
"""

from __future__ import annotations

import logging
from typing import Iterable

from ..extensions import db
from ..models import Permission, RolePermission
from ..permissions import PERMISSION_CATEGORIES, ROLE_HIERARCHY, Role
from ..validation import ConflictError, NotFoundError, ValidationError, validate_role
from . import permission_service
from .cache_invalidation import permission_mutation


logger = logging.getLogger(__name__)

SUPER_ADMIN_REQUIRED = "Access denied. Super admin privileges required."


def _require_super_admin(actor_id: int | None) -> None:
    if actor_id is None:
        raise permission_service.AuthenticationRequiredError("Authentication required")
    if not permission_service.is_super_admin(actor_id):
        raise permission_service.PermissionDeniedError(SUPER_ADMIN_REQUIRED)


def _require_editable_role(role: str) -> str:
    validate_role(role)
    if role == Role.SUPER_ADMIN:
        raise ValidationError("super_admin always holds every permission and cannot be edited")
    return role


def resolve_permission(permission: int | str) -> Permission:
    """Look up a catalog row by id or by name."""
    if isinstance(permission, int):
        row = db.session.get(Permission, permission)
    else:
        row = db.session.query(Permission).filter_by(name=permission).first()
    if row is None:
        raise NotFoundError("Permission not found.")
    return row


def _role_permission_ids(role: str) -> set[int]:
    return {
        permission_id
        for (permission_id,) in db.session.query(RolePermission.permission_id).filter_by(role=role).all()
    }


def _effective_permission_ids(role: str) -> list[int]:
    names = permission_service.get_role_permission_set(role)
    if not names:
        return []
    rows = db.session.query(Permission.id).filter(Permission.name.in_(sorted(names))).all()
    return sorted(pid for (pid,) in rows)


def assign_permission_to_role(*, actor_id: int, role: str, permission: int | str) -> RolePermission:
    _require_super_admin(actor_id)
    _require_editable_role(role)
    perm = resolve_permission(permission)

    with permission_mutation() as mutation:
        permission_service.materialize_role_defaults(role, actor_id)
        if perm.id in _role_permission_ids(role):
            raise ConflictError("Permission already assigned to this role.")

        row = RolePermission(role=role, permission_id=perm.id, granted_by_user_id=actor_id)
        db.session.add(row)
        permission_service.log_audit_event(
            user_id=actor_id,
            action="PERMISSION_ASSIGNED_TO_ROLE",
            resource="role_permission",
            resource_id=f"{role}:{perm.id}",
            details={"role": role, "permission_id": perm.id, "permission_name": perm.name},
            commit=False,
        )
        mutation.invalidate_role(role)
        mutation.notify_role(role, perm.name, "granted", admin_user_id=actor_id)

    logger.info("Permission assigned to role", extra={"role": role, "permission": perm.name, "actor_id": actor_id})
    return row


def remove_permission_from_role(*, actor_id: int, role: str, permission: int | str) -> None:
    _require_super_admin(actor_id)
    _require_editable_role(role)
    perm = resolve_permission(permission)

    with permission_mutation() as mutation:
        permission_service.materialize_role_defaults(role, actor_id)
        row = db.session.query(RolePermission).filter_by(role=role, permission_id=perm.id).first()
        if row is None:
            raise NotFoundError("Permission is not assigned to this role.")

        db.session.delete(row)
        permission_service.log_audit_event(
            user_id=actor_id,
            action="PERMISSION_REMOVED_FROM_ROLE",
            resource="role_permission",
            resource_id=f"{role}:{perm.id}",
            details={"role": role, "permission_id": perm.id, "permission_name": perm.name},
            commit=False,
        )
        mutation.invalidate_role(role)
        mutation.notify_role(role, perm.name, "revoked", admin_user_id=actor_id)

    logger.info("Permission removed from role", extra={"role": role, "permission": perm.name, "actor_id": actor_id})


def bulk_assign_permissions_to_role(*, actor_id: int, role: str, permission_ids: Iterable[int]) -> dict:
    """Assign many permissions; already-assigned ids are skipped. Returns {assigned, skipped}."""
    _require_super_admin(actor_id)
    _require_editable_role(role)

    requested = list(dict.fromkeys(permission_ids))
    known = {pid for (pid,) in db.session.query(Permission.id).filter(Permission.id.in_(requested)).all()}
    unknown = [pid for pid in requested if pid not in known]
    if unknown:
        raise NotFoundError(f"Permission not found: {', '.join(map(str, unknown))}")

    with permission_mutation() as mutation:
        permission_service.materialize_role_defaults(role, actor_id)
        existing = _role_permission_ids(role)
        new_ids = [pid for pid in requested if pid not in existing]
        skipped = len(requested) - len(new_ids)

        for pid in new_ids:
            db.session.add(RolePermission(role=role, permission_id=pid, granted_by_user_id=actor_id))
        if new_ids:
            permission_service.log_audit_event(
                user_id=actor_id,
                action="BULK_PERMISSIONS_ASSIGNED",
                resource="role_permission",
                resource_id=role,
                details={"role": role, "permission_ids": new_ids, "assigned_count": len(new_ids),
                         "skipped_count": skipped},
                commit=False,
            )
            mutation.invalidate_role(role)
            mutation.notify_role(role, None, "granted", admin_user_id=actor_id)

    return {"assigned": len(new_ids), "skipped": skipped}


def bulk_remove_permissions_from_role(*, actor_id: int, role: str, permission_ids: Iterable[int]) -> dict:
    """Remove many permissions. Returns {removed, not_found}."""
    _require_super_admin(actor_id)
    _require_editable_role(role)

    requested = list(dict.fromkeys(permission_ids))

    with permission_mutation() as mutation:
        permission_service.materialize_role_defaults(role, actor_id)
        rows = (
            db.session.query(RolePermission)
            .filter(RolePermission.role == role, RolePermission.permission_id.in_(requested))
            .all()
        )
        removed_ids = [row.permission_id for row in rows]
        not_found = len(requested) - len(rows)

        for row in rows:
            db.session.delete(row)
        if rows:
            permission_service.log_audit_event(
                user_id=actor_id,
                action="BULK_PERMISSIONS_REMOVED",
                resource="role_permission",
                resource_id=role,
                details={"role": role, "permission_ids": removed_ids, "removed_count": len(removed_ids),
                         "not_found_count": not_found},
                commit=False,
            )
            mutation.invalidate_role(role)
            mutation.notify_role(role, None, "revoked", admin_user_id=actor_id)

    return {"removed": len(removed_ids), "not_found": not_found}


def copy_role_permissions(*, actor_id: int, source_role: str, target_role: str, overwrite: bool = False) -> dict:
    """
    Copy the source role's effective set onto the target role.

    overwrite=True replaces the target's rows; otherwise existing ones are
    skipped. Returns {copied, skipped}.
    """
    _require_super_admin(actor_id)
    validate_role(source_role)
    _require_editable_role(target_role)
    if source_role == target_role:
        raise ValidationError("Source and target roles cannot be the same.")

    source_ids = _effective_permission_ids(source_role)
    if not source_ids:
        raise ValidationError("Source role has no permissions to copy.")

    with permission_mutation() as mutation:
        permission_service.materialize_role_defaults(target_role, actor_id)
        if overwrite:
            db.session.query(RolePermission).filter_by(role=target_role).delete(synchronize_session=False)
            new_ids = source_ids
            skipped = 0
        else:
            existing = _role_permission_ids(target_role)
            new_ids = [pid for pid in source_ids if pid not in existing]
            skipped = len(source_ids) - len(new_ids)

        for pid in new_ids:
            db.session.add(RolePermission(role=target_role, permission_id=pid, granted_by_user_id=actor_id))

        permission_service.log_audit_event(
            user_id=actor_id,
            action="ROLE_PERMISSIONS_COPIED_WITH_OVERWRITE" if overwrite else "ROLE_PERMISSIONS_COPIED",
            resource="role_permission",
            resource_id=f"{source_role}->{target_role}",
            details={
                "source_role": source_role,
                "target_role": target_role,
                "permission_ids": new_ids,
                "copied_count": len(new_ids),
                "skipped_count": skipped,
                "overwrite": overwrite,
            },
            commit=False,
        )
        mutation.invalidate_role(target_role)
        mutation.notify_role(target_role, None, "updated", admin_user_id=actor_id)

    return {"copied": len(new_ids), "skipped": skipped}


def get_roles_with_permissions(*, actor_id: int) -> list[dict]:
    """Every role with the full catalog, each entry flagged assigned or not."""
    _require_super_admin(actor_id)

    permissions = (
        db.session.query(Permission)
        .order_by(Permission.category.asc(), Permission.name.asc())
        .all()
    )
    result = []
    for role in reversed(ROLE_HIERARCHY):
        held = permission_service.get_role_permission_set(role)
        result.append({
            "role": role,
            "permissions": [{**perm.to_dict(), "assigned": perm.name in held} for perm in permissions],
        })
    return result


def get_role_permission_stats(*, actor_id: int) -> dict:
    _require_super_admin(actor_id)

    total_permissions = db.session.query(Permission).count()
    total_assignments = db.session.query(RolePermission).count()

    per_role = dict(
        db.session.query(RolePermission.role, db.func.count(RolePermission.id))
        .group_by(RolePermission.role)
        .all()
    )
    role_stats = [
        {
            "role": role,
            "permission_count": per_role.get(role, 0),
            "percentage": round(per_role.get(role, 0) * 100 / total_permissions) if total_permissions else 0,
        }
        for role in reversed(ROLE_HIERARCHY)
    ]

    totals_by_category = dict(
        db.session.query(Permission.category, db.func.count(Permission.id))
        .group_by(Permission.category)
        .all()
    )
    assigned_by_category = dict(
        db.session.query(Permission.category, db.func.count(db.distinct(RolePermission.permission_id)))
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .group_by(Permission.category)
        .all()
    )
    category_stats = []
    for category in PERMISSION_CATEGORIES:
        total = totals_by_category.get(category, 0)
        if not total:
            continue
        assigned = assigned_by_category.get(category, 0)
        category_stats.append({
            "category": category,
            "total_permissions": total,
            "assigned_permissions": assigned,
            "coverage": round(assigned * 100 / total),
        })

    return {
        "total_roles": len(ROLE_HIERARCHY),
        "total_permissions": total_permissions,
        "total_assignments": total_assignments,
        "role_stats": role_stats,
        "category_stats": category_stats,
    }
