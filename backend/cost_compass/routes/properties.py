# Overview: Flask API routes for property-scoped data; every listing goes through the data isolation filter.

"""
Property-scoped read routes.

Listings apply PropertyDataFilter criteria so a caller only sees rows on
properties they hold access to (super_admin sees everything). Single
property endpoints use @require_property_access.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_any_permission, require_permission, require_property_access
from ..extensions import db, permission_cache
from ..models import AuditLog, Category, DailyFinancialSummary, FinancialEntry, Outlet, Property
from ..permissions import AccessLevel
from ..services import permission_service
from ..services.cache_invalidation import smart_invalidate
from ..services.data_isolation_service import PropertyDataFilter
from ..validation import ConflictError, require_fields
from . import client_info, json_error, request_json


properties_bp = Blueprint("properties", __name__, url_prefix="/api")


def _optional_property_id():
    return request.args.get("property_id", type=int)


@properties_bp.get("/properties")
@require_auth
def list_properties():
    """
    Properties the caller can see.

    Query params:
    - include_inactive: bool (default false)
    """
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"

    query = db.session.query(Property).filter(PropertyDataFilter.properties(g.current_user.id))
    if not include_inactive:
        query = query.filter(Property.is_active.is_(True))

    properties = [p.to_dict() for p in query.order_by(Property.name).all()]
    return jsonify({"properties": properties, "count": len(properties)})


@properties_bp.post("/properties")
@require_auth
@require_permission("properties.create")
def create_property():
    """
    Create a property owned by the caller.

    Request body:
    - name: str (required)
    - property_code: str (optional, unique)
    - property_type: str (optional, default "hotel")
    """
    try:
        data = require_fields(request_json(), "name")
        code = data.get("property_code")
        if code and db.session.query(Property).filter_by(property_code=code).first():
            raise ConflictError("Property code already exists")

        prop = Property(
            name=data["name"],
            property_code=code,
            property_type=data.get("property_type") or "hotel",
            owner_id=g.current_user.id,
            is_active=True,
        )
        db.session.add(prop)
        db.session.flush()
        permission_service.log_audit_event(
            user_id=g.current_user.id,
            action="PROPERTY_CREATED",
            resource="properties",
            resource_id=prop.id,
            property_id=prop.id,
            details={"name": prop.name},
            commit=False,
            **client_info(),
        )
        db.session.commit()
        smart_invalidate("property", prop.id, "create")
        # The owner now reaches a new property
        permission_cache.invalidate_user(g.current_user.id)

        return jsonify({"property": prop.to_dict(), "message": "Property created successfully"}), 201
    except Exception as e:
        db.session.rollback()
        return json_error(e, "Failed to create property")


@properties_bp.get("/properties/<int:property_id>")
@require_auth
@require_property_access(AccessLevel.READ_ONLY)
def get_property(property_id: int):
    prop = db.session.get(Property, property_id)
    if prop is None:
        return jsonify({"error": "Property not found"}), 404
    return jsonify({"property": prop.to_dict()})


@properties_bp.delete("/properties/<int:property_id>")
@require_auth
@require_permission("properties.delete")
@require_property_access(AccessLevel.OWNER)
def deactivate_property(property_id: int):
    """Soft delete: properties are deactivated, never removed."""
    prop = db.session.get(Property, property_id)
    if prop is None:
        return jsonify({"error": "Property not found"}), 404

    prop.is_active = False
    permission_service.log_audit_event(
        user_id=g.current_user.id,
        action="PROPERTY_DEACTIVATED",
        resource="properties",
        resource_id=property_id,
        property_id=property_id,
        commit=False,
        **client_info(),
    )
    db.session.commit()
    smart_invalidate("property", property_id, "delete")
    return jsonify({"message": "Property deactivated"})


@properties_bp.get("/properties/<int:property_id>/outlets")
@require_auth
@require_permission("outlets.read")
@require_property_access(AccessLevel.READ_ONLY)
def list_outlets(property_id: int):
    outlets = (
        db.session.query(Outlet)
        .filter(Outlet.property_id == property_id, PropertyDataFilter.outlets(g.current_user.id, property_id))
        .order_by(Outlet.name)
        .all()
    )
    return jsonify({"outlets": [o.to_dict() for o in outlets], "count": len(outlets)})


@properties_bp.get("/financial-entries")
@require_auth
@require_any_permission("financial.food_costs.read", "financial.beverage_costs.read")
def list_financial_entries():
    """
    Cost entries across accessible properties.

    Query params:
    - property_id: int (optional) - restrict to one property
    - limit: int (default 100, max 500)
    """
    limit = min(request.args.get("limit", 100, type=int), 500)
    entries = (
        db.session.query(FinancialEntry)
        .filter(PropertyDataFilter.financial_entries(g.current_user.id, _optional_property_id()))
        .order_by(FinancialEntry.entry_date.desc(), FinancialEntry.id.desc())
        .limit(limit)
        .all()
    )
    return jsonify({"entries": [e.to_dict() for e in entries], "count": len(entries)})


@properties_bp.get("/daily-summaries")
@require_auth
@require_permission("financial.daily_summary.read")
def list_daily_summaries():
    summaries = (
        db.session.query(DailyFinancialSummary)
        .filter(PropertyDataFilter.daily_summaries(g.current_user.id, _optional_property_id()))
        .order_by(DailyFinancialSummary.summary_date.desc())
        .all()
    )
    return jsonify({"summaries": [s.to_dict() for s in summaries], "count": len(summaries)})


@properties_bp.get("/categories")
@require_auth
def list_categories():
    categories = (
        db.session.query(Category)
        .filter(PropertyDataFilter.categories(g.current_user.id, _optional_property_id()))
        .order_by(Category.name)
        .all()
    )
    return jsonify({"categories": [c.to_dict() for c in categories], "count": len(categories)})


@properties_bp.get("/audit-logs")
@require_auth
def list_audit_logs():
    """
    Audit entries visible to the caller: their own actions plus actions on
    properties they can read. super_admin sees all.

    Query params:
    - property_id: int (optional)
    - action: str (optional)
    - limit: int (default 100, max 500)
    """
    limit = min(request.args.get("limit", 100, type=int), 500)
    query = db.session.query(AuditLog).filter(
        PropertyDataFilter.audit_logs(g.current_user.id, _optional_property_id())
    )
    action = request.args.get("action")
    if action:
        query = query.filter(AuditLog.action == action)

    logs = query.order_by(AuditLog.occurred_at.desc(), AuditLog.id.desc()).limit(limit).all()
    return jsonify({"logs": [log.to_dict() for log in logs], "count": len(logs)})
