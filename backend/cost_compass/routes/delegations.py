# Overview: Flask API routes for permission delegation; delegate, revoke and list.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth
from ..services import delegation_service, permission_service
from ..validation import parse_int, parse_optional_datetime, require_fields
from . import json_error, request_json


delegations_bp = Blueprint("delegations", __name__, url_prefix="/api/delegations")


@delegations_bp.get("")
@require_auth
def list_delegations():
    """
    Delegations given or received by the caller.

    Query params:
    - direction: given | received (default both)
    - include_inactive: bool (default false)
    - all: bool - every delegation (super_admin only)
    """
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    direction = request.args.get("direction")
    user_id = g.current_user.id

    if request.args.get("all", "false").lower() == "true":
        if not permission_service.is_super_admin(g.current_user):
            return jsonify({"error": "Access denied. Super admin privileges required."}), 403
        rows = delegation_service.list_delegations(include_inactive=include_inactive)
    elif direction == "given":
        rows = delegation_service.list_delegations(delegated_by_user_id=user_id, include_inactive=include_inactive)
    elif direction == "received":
        rows = delegation_service.list_delegations(delegated_to_user_id=user_id, include_inactive=include_inactive)
    else:
        given = delegation_service.list_delegations(delegated_by_user_id=user_id, include_inactive=include_inactive)
        received = delegation_service.list_delegations(delegated_to_user_id=user_id, include_inactive=include_inactive)
        rows = given + [d for d in received if d not in given]

    return jsonify({"delegations": [d.to_dict() for d in rows], "count": len(rows)})


@delegations_bp.post("")
@require_auth
def create_delegation():
    """
    Delegate some of the caller's permissions.

    Request body:
    - delegated_to_user_id: int (required)
    - permissions: [str] (required) - each must be held by the caller
    - property_id: int (optional) - scope to one property
    - expires_at: ISO-8601 (optional)
    - reason: str (optional)
    """
    try:
        data = require_fields(request_json(), "delegated_to_user_id", "permissions")
        property_id = data.get("property_id")
        delegation = delegation_service.delegate_permissions(
            delegator_id=g.current_user.id,
            delegatee_id=parse_int(data["delegated_to_user_id"], "delegated_to_user_id"),
            permissions=data["permissions"],
            property_id=parse_int(property_id, "property_id") if property_id is not None else None,
            expires_at=parse_optional_datetime(data.get("expires_at"), "expires_at"),
            reason=data.get("reason"),
        )
        return jsonify({"delegation": delegation.to_dict(), "message": "Permissions delegated"}), 201
    except Exception as e:
        return json_error(e, "Failed to delegate permissions")


@delegations_bp.post("/<int:delegation_id>/revoke")
@require_auth
def revoke(delegation_id: int):
    try:
        delegation = delegation_service.revoke_delegation(
            delegation_id=delegation_id,
            revoked_by_user_id=g.current_user.id,
        )
        return jsonify({"delegation": delegation.to_dict(), "message": "Delegation revoked"})
    except Exception as e:
        return json_error(e, "Failed to revoke delegation")
