# Overview: Flask API routes for compliance; dashboard, policies, violations, scans and action evaluation.

"""
Compliance routes.

Reads are open to super_admin and property_admin; policy changes, scans
and violation resolution are super_admin only.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_role
from ..permissions import Role
from ..services import compliance_service
from ..validation import parse_int, require_fields
from . import json_error, request_json


compliance_bp = Blueprint("compliance", __name__, url_prefix="/api/compliance")


@compliance_bp.get("/dashboard")
@require_auth
@require_role(Role.SUPER_ADMIN, Role.PROPERTY_ADMIN)
def dashboard():
    try:
        return jsonify(compliance_service.get_compliance_dashboard())
    except Exception as e:
        return json_error(e, "Failed to build compliance dashboard")


@compliance_bp.get("/policies")
@require_auth
@require_role(Role.SUPER_ADMIN, Role.PROPERTY_ADMIN)
def list_policies():
    compliance_service.ensure_default_policies()
    policies = compliance_service.list_policies(request.args.get("status"))
    return jsonify({"policies": [p.to_dict() for p in policies], "count": len(policies)})


@compliance_bp.post("/policies")
@require_auth
@require_role(Role.SUPER_ADMIN)
def create_policy():
    """
    Request body:
    - name, policy_type, rules (required)
    - description, enforcement_level, priority, compliance_framework, status (optional)
    """
    try:
        data = require_fields(request_json(), "name", "policy_type", "rules")
        optional = {
            key: data[key]
            for key in ("description", "enforcement_level", "priority", "compliance_framework", "status")
            if data.get(key) is not None
        }
        policy = compliance_service.create_policy(
            actor_id=g.current_user.id,
            name=data["name"],
            policy_type=data["policy_type"],
            rules=data["rules"],
            **optional,
        )
        return jsonify({"policy": policy.to_dict(), "message": "Policy created successfully"}), 201
    except Exception as e:
        return json_error(e, "Failed to create policy")


@compliance_bp.patch("/policies/<int:policy_id>")
@require_auth
@require_role(Role.SUPER_ADMIN)
def update_policy_status(policy_id: int):
    """Request body: status = active | inactive | draft."""
    try:
        data = require_fields(request_json(), "status")
        policy = compliance_service.set_policy_status(
            actor_id=g.current_user.id,
            policy_id=policy_id,
            status=data["status"],
        )
        return jsonify({"policy": policy.to_dict(), "message": "Policy updated"})
    except Exception as e:
        return json_error(e, "Failed to update policy")


@compliance_bp.get("/violations")
@require_auth
@require_role(Role.SUPER_ADMIN, Role.PROPERTY_ADMIN)
def list_violations():
    """Query params: status, user_id, limit (default 100, max 500)."""
    limit = min(request.args.get("limit", 100, type=int), 500)
    violations = compliance_service.list_violations(
        status=request.args.get("status"),
        user_id=request.args.get("user_id", type=int),
        limit=limit,
    )
    return jsonify({"violations": [v.to_dict() for v in violations], "count": len(violations)})


@compliance_bp.post("/violations/<int:violation_id>/resolve")
@require_auth
@require_role(Role.SUPER_ADMIN)
def resolve_violation(violation_id: int):
    """Request body: status = resolved | dismissed (default resolved), notes (optional)."""
    try:
        data = request_json()
        violation = compliance_service.resolve_violation(
            actor_id=g.current_user.id,
            violation_id=violation_id,
            status=data.get("status") or "resolved",
            notes=data.get("notes"),
        )
        return jsonify({"violation": violation.to_dict(), "message": "Violation updated"})
    except Exception as e:
        return json_error(e, "Failed to resolve violation")


@compliance_bp.post("/scan")
@require_auth
@require_role(Role.SUPER_ADMIN)
def scan():
    try:
        return jsonify(compliance_service.perform_compliance_scan())
    except Exception as e:
        return json_error(e, "Failed to run compliance scan")


@compliance_bp.post("/evaluate")
@require_auth
@require_role(Role.SUPER_ADMIN)
def evaluate_action():
    """
    Evaluate active policies for one user and action.

    Request body:
    - user_id: int (required)
    - action, resource: str (required)
    - context: object (optional)
    """
    try:
        data = require_fields(request_json(), "user_id", "action", "resource")
        result = compliance_service.evaluate_action(
            parse_int(data["user_id"], "user_id"),
            data["action"],
            data["resource"],
            data.get("context"),
        )
        return jsonify(result)
    except Exception as e:
        return json_error(e, "Failed to evaluate action")
