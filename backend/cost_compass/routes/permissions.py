# Overview: Flask API routes for the permission catalog and permission checks.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth
from ..permissions import PERMISSION_CATEGORIES, get_permission_definition, get_permissions_by_category
from ..services import permission_service, property_access_service
from ..validation import ValidationError, parse_int
from . import json_error, request_json


permissions_bp = Blueprint("permissions", __name__, url_prefix="/api/permissions")


@permissions_bp.get("")
@require_auth
def list_catalog():
    """The static catalog grouped by category."""
    categories = []
    for category in PERMISSION_CATEGORIES:
        codes = [perm[0] for perm in get_permissions_by_category(category)]
        categories.append({
            "category": category,
            "permissions": [get_permission_definition(code) for code in codes],
        })
    return jsonify({"categories": categories, "count": sum(len(c["permissions"]) for c in categories)})


@permissions_bp.post("/check")
@require_auth
def check_permissions():
    """
    Evaluate permissions for the caller.

    Request body:
    - permissions: [str] (required)
    - property_id: int (optional) - evaluate in that property's scope

    Returns {"results": {name: bool}, "any", "all"}. Unknown names are False.
    """
    try:
        data = request_json()
        names = data.get("permissions")
        if not isinstance(names, list) or not names:
            raise ValidationError("permissions must be a non-empty list")

        user = g.current_user
        if data.get("property_id") is not None:
            property_id = parse_int(data["property_id"], "property_id")
            results = {
                name: property_access_service.has_property_permission(user.id, property_id, name)
                for name in names
            }
        else:
            results = {name: permission_service.has_permission(user, name) for name in names}

        return jsonify({
            "results": results,
            "any": any(results.values()),
            "all": all(results.values()),
        })
    except Exception as e:
        return json_error(e, "Failed to check permissions")


@permissions_bp.get("/route-access")
@require_auth
def route_access():
    """Query params: path (required), property_id (optional)."""
    path = request.args.get("path")
    if not path:
        return jsonify({"error": "path is required"}), 400
    property_id = request.args.get("property_id", type=int)
    allowed = permission_service.can_access_route(g.current_user, path, property_id)
    return jsonify({"path": path, "property_id": property_id, "allowed": allowed})
