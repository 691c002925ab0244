# Overview: Flask API routes for per-property access grants; grant, update, revoke, bulk and listings.

"""
Property access administration routes.

Who may administer a property's grants (and up to which level) is decided
in property_access_service; these handlers only parse input.
"""

from flask import Blueprint, g, jsonify

from ..decorators import require_auth
from ..models import PropertyAccess
from ..services import permission_service, property_access_service
from ..validation import parse_int, parse_int_list, parse_optional_datetime, require_fields
from . import client_info, json_error, request_json


property_access_bp = Blueprint("property_access", __name__, url_prefix="/api")


def _serialize(rows: list[PropertyAccess]) -> list[dict]:
    result = []
    for row in rows:
        item = row.to_dict()
        item["user_email"] = row.user.email if row.user else None
        item["property_name"] = row.property.name if row.property else None
        result.append(item)
    return result


@property_access_bp.get("/properties/<int:property_id>/access")
@require_auth
def list_property_access(property_id: int):
    """Active grants on a property. Requires management level or better there."""
    if not property_access_service.can_manage_property_users(g.current_user.id, property_id):
        return jsonify({"error": "Property access denied", "property_id": property_id}), 403

    rows = property_access_service.list_property_access_for_property(property_id)
    return jsonify({"access": _serialize(rows), "count": len(rows)})


@property_access_bp.post("/properties/<int:property_id>/access")
@require_auth
def grant_access(property_id: int):
    """
    Grant (or replace) a user's access level.

    Request body:
    - user_id: int (required)
    - access_level: str (required)
    - expires_at: ISO-8601 (optional)
    """
    try:
        data = require_fields(request_json(), "user_id", "access_level")
        access = property_access_service.grant_property_access(
            actor_id=g.current_user.id,
            user_id=parse_int(data["user_id"], "user_id"),
            property_id=property_id,
            access_level=data["access_level"],
            expires_at=parse_optional_datetime(data.get("expires_at"), "expires_at"),
            **client_info(),
        )
        return jsonify({"access": access.to_dict(), "message": "Property access granted"}), 201
    except Exception as e:
        return json_error(e, "Failed to grant property access")


@property_access_bp.patch("/properties/<int:property_id>/access/<int:user_id>")
@require_auth
def update_access(property_id: int, user_id: int):
    """Body: access_level and/or expires_at (null clears the expiry)."""
    try:
        data = request_json()
        kwargs = {}
        if "access_level" in data:
            kwargs["access_level"] = data["access_level"]
        if "expires_at" in data:
            kwargs["expires_at"] = parse_optional_datetime(data["expires_at"], "expires_at")
        if not kwargs:
            return jsonify({"error": "access_level or expires_at required"}), 400

        access = property_access_service.update_property_access(
            actor_id=g.current_user.id,
            user_id=user_id,
            property_id=property_id,
            **kwargs,
            **client_info(),
        )
        return jsonify({"access": access.to_dict(), "message": "Property access updated"})
    except Exception as e:
        return json_error(e, "Failed to update property access")


@property_access_bp.delete("/properties/<int:property_id>/access/<int:user_id>")
@require_auth
def revoke_access(property_id: int, user_id: int):
    try:
        property_access_service.revoke_property_access(
            actor_id=g.current_user.id,
            user_id=user_id,
            property_id=property_id,
            **client_info(),
        )
        return jsonify({"message": "Property access revoked"})
    except Exception as e:
        return json_error(e, "Failed to revoke property access")


@property_access_bp.post("/properties/<int:property_id>/access/bulk")
@require_auth
def bulk_grant_access(property_id: int):
    """Body: user_ids, access_level, expires_at?. Returns {granted, failed}."""
    try:
        data = require_fields(request_json(), "user_ids", "access_level")
        result = property_access_service.bulk_grant_property_access(
            actor_id=g.current_user.id,
            user_ids=parse_int_list(data["user_ids"], "user_ids"),
            property_id=property_id,
            access_level=data["access_level"],
            expires_at=parse_optional_datetime(data.get("expires_at"), "expires_at"),
        )
        return jsonify(result)
    except Exception as e:
        return json_error(e, "Failed to bulk grant property access")


@property_access_bp.get("/users/<int:user_id>/property-access")
@require_auth
def list_user_access(user_id: int):
    """A user's own grants; anyone else's needs users.read."""
    if user_id != g.current_user.id and not permission_service.has_permission(g.current_user, "users.read"):
        return jsonify({"error": "Permission denied", "required_permission": "users.read"}), 403

    rows = property_access_service.list_property_access_for_user(user_id)
    return jsonify({"access": _serialize(rows), "count": len(rows)})
