# Overview: Flask API routes for role/permission administration; super admin only.

"""
Role permission administration routes.

Provides endpoints for:
- Listing every role with its assigned permissions
- Assignment statistics per role and per category
- Assign / remove one permission, bulk assign / remove, copy between roles

Super admin enforcement lives in role_permission_service so the CLI and
these routes share it. Every mutation invalidates the role and its holders
and pushes a role_updated event.
"""

from flask import Blueprint, g, jsonify

from ..decorators import require_auth
from ..services import role_permission_service
from ..validation import parse_int_list, require_fields
from . import json_error, request_json


role_permissions_bp = Blueprint("role_permissions", __name__, url_prefix="/api/roles-permissions")


def _permission_ref(data: dict):
    """permission_id wins over permission (a catalog name)."""
    if data.get("permission_id") is not None:
        return data["permission_id"]
    return data.get("permission")


@role_permissions_bp.get("")
@require_auth
def list_roles_with_permissions():
    try:
        roles = role_permission_service.get_roles_with_permissions(actor_id=g.current_user.id)
        return jsonify({"roles": roles, "count": len(roles)})
    except Exception as e:
        return json_error(e, "Failed to list role permissions")


@role_permissions_bp.get("/stats")
@require_auth
def role_permission_stats():
    try:
        return jsonify(role_permission_service.get_role_permission_stats(actor_id=g.current_user.id))
    except Exception as e:
        return json_error(e, "Failed to compute role permission stats")


@role_permissions_bp.post("/assign")
@require_auth
def assign_permission():
    """
    Assign one permission to a role.

    Request body:
    - role: str (required)
    - permission_id: int or permission: str (one required)
    """
    try:
        data = require_fields(request_json(), "role")
        if _permission_ref(data) is None:
            return jsonify({"error": "permission_id or permission required"}), 400

        assignment = role_permission_service.assign_permission_to_role(
            actor_id=g.current_user.id,
            role=data["role"],
            permission=_permission_ref(data),
        )
        return jsonify({"assignment": assignment.to_dict(), "message": "Permission assigned successfully"}), 201
    except Exception as e:
        return json_error(e, "Failed to assign permission")


@role_permissions_bp.post("/remove")
@require_auth
def remove_permission():
    try:
        data = require_fields(request_json(), "role")
        if _permission_ref(data) is None:
            return jsonify({"error": "permission_id or permission required"}), 400

        role_permission_service.remove_permission_from_role(
            actor_id=g.current_user.id,
            role=data["role"],
            permission=_permission_ref(data),
        )
        return jsonify({"message": "Permission removed successfully"})
    except Exception as e:
        return json_error(e, "Failed to remove permission")


@role_permissions_bp.post("/bulk-assign")
@require_auth
def bulk_assign():
    """Request body: role, permission_ids (non-empty list of ints)."""
    try:
        data = require_fields(request_json(), "role", "permission_ids")
        result = role_permission_service.bulk_assign_permissions_to_role(
            actor_id=g.current_user.id,
            role=data["role"],
            permission_ids=parse_int_list(data["permission_ids"], "permission_ids"),
        )
        return jsonify(result)
    except Exception as e:
        return json_error(e, "Failed to bulk assign permissions")


@role_permissions_bp.post("/bulk-remove")
@require_auth
def bulk_remove():
    try:
        data = require_fields(request_json(), "role", "permission_ids")
        result = role_permission_service.bulk_remove_permissions_from_role(
            actor_id=g.current_user.id,
            role=data["role"],
            permission_ids=parse_int_list(data["permission_ids"], "permission_ids"),
        )
        return jsonify(result)
    except Exception as e:
        return json_error(e, "Failed to bulk remove permissions")


@role_permissions_bp.post("/copy")
@require_auth
def copy_permissions():
    """
    Copy every permission of source_role onto target_role.

    Request body:
    - source_role, target_role: str (required)
    - overwrite: bool (default false) - clear target_role first
    """
    try:
        data = require_fields(request_json(), "source_role", "target_role")
        result = role_permission_service.copy_role_permissions(
            actor_id=g.current_user.id,
            source_role=data["source_role"],
            target_role=data["target_role"],
            overwrite=bool(data.get("overwrite", False)),
        )
        return jsonify(result)
    except Exception as e:
        return json_error(e, "Failed to copy role permissions")
