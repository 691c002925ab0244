# Overview: Flask API routes for permission templates; CRUD, cloning, generation, application and usage stats.

"""
Permission template routes.

Read endpoints are open to super_admin and property_admin. Template
definitions are changed by super_admin only. Application is open to both
admin roles; template_service decides per target whether the actor may
apply it (role targets need super_admin).
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_role
from ..models import PermissionTemplate
from ..permissions import Role
from ..services import template_service
from ..validation import parse_optional_datetime, require_fields
from . import json_error, request_json


templates_bp = Blueprint("templates", __name__, url_prefix="/api/permission-templates")

TEMPLATE_FIELDS = ("name", "description", "permissions", "template_type", "conditions", "is_active")


@templates_bp.get("")
@require_auth
@require_role(Role.SUPER_ADMIN, Role.PROPERTY_ADMIN)
def list_templates():
    """
    Query params:
    - type: template_type filter (optional)
    - include_inactive: bool (default false)
    """
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    try:
        templates = template_service.list_templates(request.args.get("type"), include_inactive)
        return jsonify({
            "templates": [t.to_dict() for t in templates],
            "count": len(templates),
            "categories": template_service.get_template_categories(),
        })
    except Exception as e:
        return json_error(e, "Failed to list templates")


@templates_bp.get("/<int:template_id>")
@require_auth
@require_role(Role.SUPER_ADMIN, Role.PROPERTY_ADMIN)
def get_template(template_id: int):
    try:
        template = template_service.get_template(template_id)
        return jsonify({
            "template": template.to_dict(),
            "usage": template_service.get_template_usage_stats(template_id),
        })
    except Exception as e:
        return json_error(e, "Failed to load template")


@templates_bp.post("")
@require_auth
@require_role(Role.SUPER_ADMIN)
def create_template():
    """
    Request body:
    - name: str (required)
    - permissions: [str] (required)
    - template_type: role_template | property_template | department_template
    - description, conditions, is_active (optional)
    """
    try:
        data = require_fields(request_json(), "name", "permissions")
        template = template_service.create_template(
            actor_id=g.current_user.id,
            name=data["name"],
            permissions=data["permissions"],
            template_type=data.get("template_type") or PermissionTemplate.TYPE_ROLE,
            description=data.get("description"),
            conditions=data.get("conditions"),
            is_active=bool(data.get("is_active", True)),
        )
        return jsonify({"template": template.to_dict(), "message": "Template created successfully"}), 201
    except Exception as e:
        return json_error(e, "Failed to create template")


@templates_bp.put("/<int:template_id>")
@require_auth
@require_role(Role.SUPER_ADMIN)
def update_template(template_id: int):
    try:
        data = request_json()
        updates = {key: data[key] for key in TEMPLATE_FIELDS if key in data}
        template = template_service.update_template(
            actor_id=g.current_user.id,
            template_id=template_id,
            updates=updates,
        )
        return jsonify({"template": template.to_dict(), "message": "Template updated successfully"})
    except Exception as e:
        return json_error(e, "Failed to update template")


@templates_bp.delete("/<int:template_id>")
@require_auth
@require_role(Role.SUPER_ADMIN)
def delete_template(template_id: int):
    try:
        template_service.delete_template(actor_id=g.current_user.id, template_id=template_id)
        return jsonify({"message": "Template deleted successfully"})
    except Exception as e:
        return json_error(e, "Failed to delete template")


@templates_bp.post("/<int:template_id>/clone")
@require_auth
@require_role(Role.SUPER_ADMIN)
def clone_template(template_id: int):
    """Request body: new_name (required)."""
    try:
        data = require_fields(request_json(), "new_name")
        template = template_service.clone_template(
            actor_id=g.current_user.id,
            template_id=template_id,
            new_name=data["new_name"],
        )
        return jsonify({"template": template.to_dict(), "message": "Template cloned successfully"}), 201
    except Exception as e:
        return json_error(e, "Failed to clone template")


@templates_bp.post("/<int:template_id>/apply")
@require_auth
@require_role(Role.SUPER_ADMIN, Role.PROPERTY_ADMIN)
def apply_template(template_id: int):
    """
    Request body:
    - target_type: role | user | property (required)
    - target_ids: [role name or id] (required)
    - options: {override_existing, expires_at, additional_permissions,
      exclude_permissions, user_ids} (optional)
    """
    try:
        data = require_fields(request_json(), "target_type", "target_ids")
        options = dict(data.get("options") or {})
        if "expires_at" in options:
            options["expires_at"] = parse_optional_datetime(options["expires_at"], "expires_at")

        result = template_service.apply_template(
            actor_id=g.current_user.id,
            template_id=template_id,
            target_type=data["target_type"],
            target_ids=data["target_ids"],
            options=options,
        )
        return jsonify(result)
    except Exception as e:
        return json_error(e, "Failed to apply template")


@templates_bp.post("/generate")
@require_auth
@require_role(Role.SUPER_ADMIN)
def generate_templates():
    """Request body: kind = role | property (default role)."""
    try:
        kind = request_json().get("kind", "role")
        if kind == "property":
            created = template_service.generate_property_templates(actor_id=g.current_user.id)
        else:
            created = template_service.generate_role_templates(actor_id=g.current_user.id)
        return jsonify({
            "templates": [t.to_dict() for t in created],
            "count": len(created),
            "message": f"Generated {len(created)} {kind} templates",
        })
    except Exception as e:
        return json_error(e, "Failed to generate templates")
