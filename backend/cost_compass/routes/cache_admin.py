# Overview: Flask API routes for permission cache administration; stats, health, scoped clearing and warming.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_role
from ..extensions import db, permission_cache
from ..models import User
from ..permissions import Role
from ..services import permission_service
from ..services.cache_invalidation import get_cache_health, warm_cache
from ..time_utils import to_utc_z, utcnow
from ..validation import ValidationError, parse_int, parse_int_list, validate_role
from . import client_info, json_error, request_json


cache_bp = Blueprint("cache", __name__, url_prefix="/api/cache")

CACHE_SCOPES = ("user", "property", "role", "all")


@cache_bp.get("")
@require_auth
@require_role(Role.SUPER_ADMIN)
def cache_info():
    """Statistics plus the health verdict and recommendations."""
    health = get_cache_health()
    permission_service.log_audit_event(
        user_id=g.current_user.id,
        action="VIEW_CACHE_STATS",
        resource="cache",
        details={"total_keys": health["stats"].get("total_keys")},
        **client_info(),
    )
    return jsonify({
        "stats": health["stats"],
        "health": health["health"],
        "recommendations": health["recommendations"],
        "timestamp": to_utc_z(utcnow()),
    })


@cache_bp.delete("")
@require_auth
@require_role(Role.SUPER_ADMIN)
def clear_cache():
    """
    Clear one scope of the cache.

    Query params:
    - scope: user | property | role | all (required)
    - id: user id, property id or role name (required unless scope=all)
    """
    scope = request.args.get("scope")
    target = request.args.get("id")

    try:
        if scope not in CACHE_SCOPES:
            raise ValidationError("Invalid scope. Use 'user', 'property', 'role', or 'all'")
        if scope != "all" and not target:
            raise ValidationError(f"id required for {scope} cache clear")

        if scope == "user":
            removed = permission_cache.invalidate_user(parse_int(target, "id"))
            message = f"User cache cleared for user {target}"
        elif scope == "property":
            removed = permission_cache.invalidate_property(parse_int(target, "id"))
            message = f"Property cache cleared for property {target}"
        elif scope == "role":
            removed = permission_cache.invalidate_role(validate_role(target))
            message = f"Role cache cleared for role {target}"
        else:
            removed = permission_cache.clear_all()
            message = "All caches cleared"
    except Exception as e:
        return json_error(e, "Failed to clear cache")

    permission_service.log_audit_event(
        user_id=g.current_user.id,
        action="CACHE_CLEARED",
        resource="cache",
        details={"scope": scope, "target": target, "removed": removed},
        **client_info(),
    )
    return jsonify({
        "success": True,
        "cleared": True,
        "type": scope,
        "removed": removed,
        "message": message,
        "timestamp": to_utc_z(utcnow()),
    })


@cache_bp.post("/warm")
@require_auth
@require_role(Role.SUPER_ADMIN)
def warm():
    """
    Pre-compute permission snapshots.

    Request body:
    - user_ids: [int] or warm_all: true (one required)
    - property_ids: [int] (optional) - default each user's accessible properties
    """
    try:
        data = request_json()
        if data.get("warm_all"):
            user_ids = [uid for (uid,) in db.session.query(User.id).filter(User.is_active.is_(True)).all()]
        elif data.get("user_ids"):
            user_ids = parse_int_list(data["user_ids"], "user_ids")
        else:
            raise ValidationError("user_ids array or warm_all flag required")

        property_ids = None
        if data.get("property_ids"):
            property_ids = parse_int_list(data["property_ids"], "property_ids")

        result = warm_cache(user_ids, property_ids)
    except Exception as e:
        return json_error(e, "Failed to warm cache")

    permission_service.log_audit_event(
        user_id=g.current_user.id,
        action="CACHE_WARMED",
        resource="cache",
        details=result,
        **client_info(),
    )
    return jsonify({"success": True, **result})
