# Overview: Reusable permission bundles (templates) and their application to roles, users and properties.

"""
Permission Templates

WHY: Onboarding a new supervisor or a new property means granting the same
handful of permissions again and again. A template stores that bundle once.

APPLICATION (apply_template):
- role      -> RolePermission rows for each target role (super_admin actor)
- user      -> explicit UserPermission grants (actor needs users.roles.manage)
- property  -> PropertyAccess at the template's conditions["access_level"]
               for options["user_ids"] on each target property (actor must
               administer access on that property)

Every target is applied in its own transaction, so one failing target
does not undo the others. Results are reported per target.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable

from ..extensions import db
from ..models import AuditLog, Permission, PermissionTemplate, RolePermission, User, UserPermission
from ..permissions import ACCESS_LEVEL_ORDER, ROLE_HIERARCHY, Role, get_access_level_permissions, get_role_permissions
from ..time_utils import is_expired, to_utc_z, utcnow
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    validate_access_level,
    validate_permission_names,
    validate_role,
)
from . import permission_service, property_access_service
from .cache_invalidation import permission_mutation


logger = logging.getLogger(__name__)

TARGET_ROLE = "role"
TARGET_USER = "user"
TARGET_PROPERTY = "property"
TARGET_TYPES = (TARGET_ROLE, TARGET_USER, TARGET_PROPERTY)

TEMPLATE_CATEGORIES = (
    (PermissionTemplate.TYPE_ROLE, "Role Templates",
     "Pre-configured permission sets for different user roles"),
    (PermissionTemplate.TYPE_PROPERTY, "Property Templates",
     "Permission templates for different property access levels"),
    (PermissionTemplate.TYPE_DEPARTMENT, "Department Templates",
     "Department-specific permission configurations"),
)


# =============================================================================
# CRUD
# =============================================================================

def _validate_template_fields(template_type: str | None, permissions: Iterable[str] | None,
                              conditions: dict | None) -> None:
    if template_type is not None and template_type not in PermissionTemplate.TYPES:
        raise ValidationError(f"Invalid template type: {template_type}")
    if permissions is not None:
        validate_permission_names(permissions)
    if conditions is not None:
        if not isinstance(conditions, dict):
            raise ValidationError("conditions must be an object")
        if "access_level" in conditions:
            validate_access_level(conditions["access_level"])


def _ensure_unique_name(name: str, exclude_id: int | None = None) -> None:
    query = db.session.query(PermissionTemplate).filter(PermissionTemplate.name == name)
    if exclude_id is not None:
        query = query.filter(PermissionTemplate.id != exclude_id)
    if query.first() is not None:
        raise ConflictError("A template with this name already exists")


def get_template(template_id: int) -> PermissionTemplate:
    template = db.session.get(PermissionTemplate, template_id)
    if template is None:
        raise NotFoundError("Template not found")
    return template


def list_templates(template_type: str | None = None, include_inactive: bool = False) -> list[PermissionTemplate]:
    query = db.session.query(PermissionTemplate)
    if template_type:
        query = query.filter(PermissionTemplate.template_type == template_type)
    if not include_inactive:
        query = query.filter(PermissionTemplate.is_active.is_(True))
    return query.order_by(PermissionTemplate.name.asc()).all()


def get_template_categories() -> list[dict]:
    """Active templates grouped by type."""
    templates = list_templates()
    return [
        {
            "type": template_type,
            "name": name,
            "description": description,
            "templates": [t.to_dict() for t in templates if t.template_type == template_type],
        }
        for template_type, name, description in TEMPLATE_CATEGORIES
    ]


def create_template(
    *,
    actor_id: int | None,
    name: str,
    permissions: Iterable[str],
    template_type: str = PermissionTemplate.TYPE_ROLE,
    description: str | None = None,
    conditions: dict | None = None,
    is_active: bool = True,
) -> PermissionTemplate:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Template name is required")
    permissions = sorted(set(permissions or []))
    _validate_template_fields(template_type, permissions, conditions)
    _ensure_unique_name(name)

    template = PermissionTemplate(
        name=name,
        description=description,
        template_type=template_type,
        permissions=permissions,
        conditions=conditions,
        is_active=is_active,
        created_by_user_id=actor_id,
    )
    db.session.add(template)
    db.session.flush()
    permission_service.log_audit_event(
        user_id=actor_id,
        action="PERMISSION_TEMPLATE_CREATED",
        resource="permission_template",
        resource_id=template.id,
        details={"template_name": name, "type": template_type, "permission_count": len(permissions)},
    )
    return template


def update_template(*, actor_id: int | None, template_id: int, updates: dict) -> PermissionTemplate:
    """Apply a partial update (name, description, template_type, permissions, conditions, is_active)."""
    template = get_template(template_id)

    allowed = {"name", "description", "template_type", "permissions", "conditions", "is_active"}
    unknown = set(updates) - allowed
    if unknown:
        raise ValidationError(f"Unknown template fields: {', '.join(sorted(unknown))}")

    _validate_template_fields(updates.get("template_type"), updates.get("permissions"), updates.get("conditions"))
    if "name" in updates:
        name = (updates["name"] or "").strip()
        if not name:
            raise ValidationError("Template name is required")
        _ensure_unique_name(name, exclude_id=template.id)
        template.name = name
    if "description" in updates:
        template.description = updates["description"]
    if "template_type" in updates:
        template.template_type = updates["template_type"]
    if "permissions" in updates:
        template.permissions = sorted(set(updates["permissions"]))
    if "conditions" in updates:
        template.conditions = updates["conditions"]
    if "is_active" in updates:
        template.is_active = bool(updates["is_active"])

    permission_service.log_audit_event(
        user_id=actor_id,
        action="PERMISSION_TEMPLATE_UPDATED",
        resource="permission_template",
        resource_id=template.id,
        details={"template_name": template.name, "updated_fields": sorted(updates)},
    )
    return template


def delete_template(*, actor_id: int | None, template_id: int) -> PermissionTemplate:
    """Soft delete: templates are deactivated so audit history keeps resolving."""
    template = get_template(template_id)
    template.is_active = False
    permission_service.log_audit_event(
        user_id=actor_id,
        action="PERMISSION_TEMPLATE_DELETED",
        resource="permission_template",
        resource_id=template.id,
        details={"template_name": template.name},
    )
    return template


def clone_template(*, actor_id: int | None, template_id: int, new_name: str) -> PermissionTemplate:
    source = get_template(template_id)
    return create_template(
        actor_id=actor_id,
        name=new_name,
        permissions=list(source.permissions or []),
        template_type=source.template_type,
        description=f"Cloned from: {source.name}",
        conditions=dict(source.conditions) if source.conditions else None,
    )


# =============================================================================
# APPLICATION
# =============================================================================

def resolve_template_permissions(template: PermissionTemplate, options: dict | None = None) -> list[str]:
    """Template permissions plus additional_permissions, minus exclude_permissions."""
    options = options or {}
    additional = validate_permission_names(options.get("additional_permissions") or [])
    excluded = set(options.get("exclude_permissions") or [])
    final = [*(template.permissions or []), *additional]
    return sorted({name for name in final if name not in excluded})


def _apply_to_role(actor_id: int, role: str, names: list[str], override: bool) -> str:
    validate_role(role)
    if role == Role.SUPER_ADMIN:
        raise ValidationError("super_admin always holds every permission and cannot be edited")
    if not permission_service.is_super_admin(actor_id):
        raise permission_service.PermissionDeniedError("Access denied. Super admin privileges required.")

    permission_ids = {
        perm.name: perm.id
        for perm in db.session.query(Permission).filter(Permission.name.in_(names)).all()
    }
    with permission_mutation() as mutation:
        permission_service.materialize_role_defaults(role, actor_id)
        existing = {
            pid for (pid,) in db.session.query(RolePermission.permission_id).filter_by(role=role).all()
        }
        if override:
            db.session.query(RolePermission).filter_by(role=role).delete(synchronize_session=False)
            existing = set()
        added = 0
        for name in names:
            pid = permission_ids.get(name)
            if pid is None or pid in existing:
                continue
            db.session.add(RolePermission(role=role, permission_id=pid, granted_by_user_id=actor_id))
            added += 1
        mutation.invalidate_role(role)
        mutation.notify_role(role, None, "updated", admin_user_id=actor_id)

    return f"Template applied to role {role} ({added} permission(s) added)"


def _apply_to_user(actor_id: int, user_id: int, names: list[str], override: bool,
                   expires_at: datetime | None) -> str:
    if not permission_service.has_permission(actor_id, "users.roles.manage"):
        raise permission_service.PermissionDeniedError("Permission denied: users.roles.manage")
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")

    permissions = {
        perm.name: perm
        for perm in db.session.query(Permission).filter(Permission.name.in_(names)).all()
    }
    existing = {
        grant.permission_id: grant
        for grant in db.session.query(UserPermission).filter_by(user_id=user_id).all()
    }

    applied = 0
    with permission_mutation() as mutation:
        for name in names:
            perm = permissions.get(name)
            if perm is None:
                logger.warning("Template permission missing from catalog", extra={"permission": name})
                continue
            grant = existing.get(perm.id)
            # An expired grant is refreshed like a missing one
            if grant is not None and not override and not is_expired(grant.expires_at):
                continue
            if grant is None:
                grant = UserPermission(user_id=user_id, permission_id=perm.id)
                db.session.add(grant)
            grant.granted_by_user_id = actor_id
            grant.granted_at = utcnow()
            grant.expires_at = expires_at
            applied += 1
        mutation.invalidate_user(user_id)
        mutation.notify_user(user_id, None, "granted", admin_user_id=actor_id,
                             message="A permission template has been applied to your account")

    return f"Template applied successfully ({applied} permission(s) granted)"


def _apply_to_property(actor_id: int, property_id: int, template: PermissionTemplate, options: dict,
                       expires_at: datetime | None) -> str:
    access_level = (template.conditions or {}).get("access_level")
    if not access_level:
        raise ValidationError("Template has no access_level condition")
    user_ids = options.get("user_ids") or []
    if not user_ids:
        raise ValidationError("user_ids are required when applying a template to a property")

    result = property_access_service.bulk_grant_property_access(
        actor_id=actor_id,
        user_ids=user_ids,
        property_id=property_id,
        access_level=access_level,
        expires_at=expires_at,
    )
    if result["failed"]:
        errors = "; ".join(f"user {f['user_id']}: {f['error']}" for f in result["failed"])
        raise ValidationError(f"Template partially applied ({result['granted']} granted): {errors}")
    return "Template applied to property successfully"


def apply_template(
    *,
    actor_id: int,
    template_id: int,
    target_type: str,
    target_ids: Iterable,
    options: dict | None = None,
) -> dict:
    """
    Apply a template to each target.

    options:
        override_existing       replace existing grants instead of skipping them
        expires_at              expiry for user grants and property access
        additional_permissions  names added on top of the template
        exclude_permissions     names dropped from the template
        user_ids                users to receive access (property targets)

    Returns {"success", "results": [{"target_id", "status", "message"}]}.
    """
    if target_type not in TARGET_TYPES:
        raise ValidationError(f"Invalid target type: {target_type}")
    template = get_template(template_id)
    if not template.is_active:
        raise NotFoundError("Template not found or inactive")

    options = options or {}
    override = bool(options.get("override_existing"))
    expires_at = options.get("expires_at")
    names = resolve_template_permissions(template, options)
    target_ids = list(target_ids)

    results = []
    for target_id in target_ids:
        try:
            if target_type == TARGET_ROLE:
                message = _apply_to_role(actor_id, target_id, names, override)
            elif target_type == TARGET_USER:
                message = _apply_to_user(actor_id, int(target_id), names, override, expires_at)
            else:
                message = _apply_to_property(actor_id, int(target_id), template, options, expires_at)
            results.append({"target_id": target_id, "status": "success", "message": message})
        except (ValueError, permission_service.PermissionDeniedError) as e:
            db.session.rollback()
            results.append({"target_id": target_id, "status": "error", "message": str(e)})

    success_count = sum(1 for r in results if r["status"] == "success")
    permission_service.log_audit_event(
        user_id=actor_id,
        action="PERMISSION_TEMPLATE_APPLIED",
        resource="permission_template",
        resource_id=template.id,
        details={
            "template_name": template.name,
            "target_type": target_type,
            "target_ids": target_ids,
            "target_count": len(target_ids),
            "success_count": success_count,
            "error_count": len(results) - success_count,
        },
    )
    return {"success": success_count == len(results), "results": results}


# =============================================================================
# GENERATION AND STATS
# =============================================================================

def _create_if_missing(actor_id: int | None, **fields) -> PermissionTemplate | None:
    if db.session.query(PermissionTemplate).filter_by(name=fields["name"]).first() is not None:
        return None
    return create_template(actor_id=actor_id, **fields)


def generate_role_templates(*, actor_id: int | None) -> list[PermissionTemplate]:
    """One role_template per role from the static matrix. Existing names are skipped."""
    created = []
    for role in ROLE_HIERARCHY:
        template = _create_if_missing(
            actor_id,
            name=f"{role.replace('_', ' ').title()} Role Template",
            description=f"Auto-generated template for {role} role with all standard permissions",
            template_type=PermissionTemplate.TYPE_ROLE,
            permissions=sorted(get_role_permissions(role)),
            conditions={"role": role},
        )
        if template is not None:
            created.append(template)
    return created


def generate_property_templates(*, actor_id: int | None) -> list[PermissionTemplate]:
    """One property_template per access level. Existing names are skipped."""
    created = []
    for level in ACCESS_LEVEL_ORDER:
        template = _create_if_missing(
            actor_id,
            name=f"{level.replace('_', ' ').title()} Property Access Template",
            description=f"Property access template for {level} level with appropriate permissions",
            template_type=PermissionTemplate.TYPE_PROPERTY,
            permissions=sorted(get_access_level_permissions(level)),
            conditions={"access_level": level},
        )
        if template is not None:
            created.append(template)
    return created


def get_template_usage_stats(template_id: int, now: datetime | None = None) -> dict:
    """Application counts from the audit log."""
    get_template(template_id)
    now = now or utcnow()

    applications = (
        db.session.query(AuditLog)
        .filter(AuditLog.action == "PERMISSION_TEMPLATE_APPLIED", AuditLog.resource_id == str(template_id))
        .order_by(AuditLog.occurred_at.desc())
        .all()
    )
    recent_cutoff = now - timedelta(days=30)
    recent = [a for a in applications if a.occurred_at and a.occurred_at.replace(tzinfo=None) > recent_cutoff]

    affected_targets = set()
    for application in applications:
        details = application.details or {}
        for target_id in details.get("target_ids") or []:
            affected_targets.add((details.get("target_type"), str(target_id)))

    return {
        "total_applications": len(applications),
        "recent_applications": len(recent),
        "affected_targets": len(affected_targets),
        "last_used": to_utc_z(applications[0].occurred_at) if applications else None,
    }
