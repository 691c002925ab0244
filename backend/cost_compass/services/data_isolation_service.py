# Overview: Property data isolation; builds filter fragments and SQLAlchemy criteria scoping data to accessible properties.

"""
Property Data Isolation

WHY: Every financial row belongs to a property (directly or through an
outlet). Queries must only return rows from properties the caller holds
access to. This module turns a user's PropertyAccess rows into filters.

FRAGMENTS (create_property_filter):
    {}                                unrestricted (super_admin)
    {"property_id": {"in": [ids]}}    restricted to ids
    {"property_id": id}               one requested, accessible property
    {"property_id": -1}               nothing accessible; matches no row

The filter is advisory: callers must apply it (apply_property_filter or
PropertyDataFilter criteria). Read-only over PropertyAccess.
"""

from __future__ import annotations

import logging

from sqlalchemy import false, select, true
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db, permission_cache
from ..models import (
    AuditLog,
    Category,
    DailyFinancialSummary,
    FinancialEntry,
    Outlet,
    Property,
    PropertyAccess,
    User,
)
from ..permissions import AccessLevel
from . import permission_service, property_access_service
from .permission_cache import USER_PROPERTIES_PREFIX
from .property_access_service import active_access_filter, get_accessible_property_ids


logger = logging.getLogger(__name__)

NO_ACCESS = -1


def create_property_filter(
    user_id: int,
    required_level: str = AccessLevel.READ_ONLY,
    property_id: int | None = None,
) -> dict:
    """Filter fragment restricting property_id to what the user may see."""
    if permission_service.is_super_admin(user_id):
        return {"property_id": property_id} if property_id is not None else {}

    if property_id is not None:
        if property_access_service.can_access_property(user_id, property_id, required_level):
            return {"property_id": property_id}
        return {"property_id": NO_ACCESS}

    accessible = get_accessible_property_ids(user_id, required_level)
    if not accessible:
        return {"property_id": NO_ACCESS}
    return {"property_id": {"in": accessible}}


def fragment_to_criterion(fragment: dict, column):
    """Translate a create_property_filter fragment into a SQL criterion on column."""
    if "property_id" not in fragment:
        return true()
    value = fragment["property_id"]
    if isinstance(value, dict):
        return column.in_(value["in"])
    if value == NO_ACCESS:
        return false()
    return column == value


def apply_property_filter(query, column, user_id: int, required_level: str = AccessLevel.READ_ONLY,
                          property_id: int | None = None):
    """query.filter(...) with the user's property restriction on column."""
    fragment = create_property_filter(user_id, required_level, property_id)
    return query.filter(fragment_to_criterion(fragment, column))


class PropertyDataFilter:
    """
    SQLAlchemy criteria per resource type.

    Each method returns a criterion usable in query.filter(); unrestricted
    callers get true(), denied callers get false().
    """

    @staticmethod
    def properties(user_id: int, required_level: str = AccessLevel.READ_ONLY):
        fragment = create_property_filter(user_id, required_level)
        return fragment_to_criterion(fragment, Property.id)

    @staticmethod
    def outlets(user_id: int, property_id: int | None = None, required_level: str = AccessLevel.READ_ONLY):
        fragment = create_property_filter(user_id, required_level, property_id)
        return fragment_to_criterion(fragment, Outlet.property_id)

    @staticmethod
    def financial_entries(user_id: int, property_id: int | None = None, required_level: str = AccessLevel.READ_ONLY):
        """Entries are scoped through their outlet's property."""
        fragment = create_property_filter(user_id, required_level, property_id)
        if not fragment:
            return true()
        outlet_ids = select(Outlet.id).where(fragment_to_criterion(fragment, Outlet.property_id))
        return FinancialEntry.outlet_id.in_(outlet_ids)

    @staticmethod
    def daily_summaries(user_id: int, property_id: int | None = None, required_level: str = AccessLevel.READ_ONLY):
        fragment = create_property_filter(user_id, required_level, property_id)
        return fragment_to_criterion(fragment, DailyFinancialSummary.property_id)

    @staticmethod
    def audit_logs(user_id: int, property_id: int | None = None, required_level: str = AccessLevel.READ_ONLY):
        """Own actions plus actions on accessible properties."""
        if permission_service.is_super_admin(user_id):
            return AuditLog.property_id == property_id if property_id is not None else true()

        accessible = get_accessible_property_ids(user_id, required_level)
        if property_id is not None:
            if property_id not in accessible:
                return false()
            return AuditLog.property_id == property_id
        if not accessible:
            return AuditLog.user_id == user_id
        return db.or_(AuditLog.user_id == user_id, AuditLog.property_id.in_(accessible))

    @staticmethod
    def users(user_id: int):
        """Self, plus users holding access on (or owning) a property the caller manages."""
        if permission_service.is_super_admin(user_id):
            return true()

        manageable = get_accessible_property_ids(user_id, AccessLevel.MANAGEMENT)
        if not manageable:
            return User.id == user_id

        with_access = select(PropertyAccess.user_id).where(
            PropertyAccess.property_id.in_(manageable),
            active_access_filter(),
        )
        owners = select(Property.owner_id).where(Property.id.in_(manageable), Property.owner_id.isnot(None))
        return db.or_(User.id == user_id, User.id.in_(with_access), User.id.in_(owners))

    @staticmethod
    def categories(user_id: int, property_id: int | None = None):
        """Global categories plus those of accessible properties."""
        if permission_service.is_super_admin(user_id):
            if property_id is None:
                return true()
            return db.or_(Category.property_id.is_(None), Category.property_id == property_id)

        accessible = get_accessible_property_ids(user_id, AccessLevel.READ_ONLY)
        if property_id is not None:
            if property_id not in accessible:
                return Category.property_id.is_(None)
            return db.or_(Category.property_id.is_(None), Category.property_id == property_id)
        if not accessible:
            return Category.property_id.is_(None)
        return db.or_(Category.property_id.is_(None), Category.property_id.in_(accessible))


def _resolve_property_id(resource_type: str, resource_id: int) -> int | None:
    if resource_type == "property":
        prop = db.session.get(Property, resource_id)
        return prop.id if prop else None
    if resource_type == "outlet":
        outlet = db.session.get(Outlet, resource_id)
        return outlet.property_id if outlet else None
    if resource_type == "financial_entry":
        entry = db.session.get(FinancialEntry, resource_id)
        return entry.outlet.property_id if entry and entry.outlet else None
    if resource_type == "daily_financial_summary":
        summary = db.session.get(DailyFinancialSummary, resource_id)
        return summary.property_id if summary else None
    raise ValueError(f"Unknown resource type: {resource_type}")


def validate_property_ownership(
    user_id: int,
    resource_type: str,
    resource_id: int,
    required_level: str = AccessLevel.DATA_ENTRY,
) -> tuple[bool, int | None, str | None]:
    """
    Resolve the property a resource belongs to and check the user's level there.

    Returns (allowed, property_id, error).
    """
    try:
        property_id = _resolve_property_id(resource_type, resource_id)
    except ValueError as e:
        return False, None, str(e)
    except SQLAlchemyError:
        logger.exception(
            "Property ownership lookup failed",
            extra={"resource_type": resource_type, "resource_id": resource_id},
        )
        db.session.rollback()
        return False, None, "Database error during validation"

    if property_id is None:
        return False, None, "Could not determine property for resource"

    allowed = property_access_service.can_access_property(user_id, property_id, required_level)
    return allowed, property_id, None if allowed else "Insufficient property access level"


def clear_property_access_cache(user_id: int | None = None) -> int:
    """Drop cached property lists for one user, or for everyone."""
    if user_id is not None:
        return permission_cache.invalidate_user(user_id)
    return permission_cache.delete_prefix(USER_PROPERTIES_PREFIX)
