# Overview: System health endpoint covering the database, permission catalog, cache and notification bus.

"""
System health endpoint.

Each check returns {"status": healthy|degraded|unhealthy, "latency_ms", ...}.
The overall status is the worst individual status; unhealthy maps to 503.
"""

import time

from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db, notification_bus
from ..models import Permission, Property, RolePermission, SessionToken, User
from ..permissions import ALL_PERMISSION_CODES
from ..services.cache_invalidation import get_cache_health
from ..time_utils import to_utc_z, utcnow


system_bp = Blueprint("system", __name__)


def _elapsed_ms(start_time: float) -> float:
    return round((time.time() - start_time) * 1000, 2)


def check_database_health() -> dict:
    """Database connectivity and basic counts."""
    start_time = time.time()
    try:
        details = {
            "users": db.session.query(User).count(),
            "properties": db.session.query(Property).count(),
            "active_sessions": db.session.query(SessionToken).filter_by(is_revoked=False).count(),
        }
        return {"status": "healthy", "latency_ms": _elapsed_ms(start_time), "details": details}
    except SQLAlchemyError:
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {"status": "unhealthy", "latency_ms": _elapsed_ms(start_time), "error": "Database error"}


def check_permission_catalog_health() -> dict:
    """
    Catalog rows should match the static catalog.

    Missing rows are degraded, not unhealthy: evaluation falls back to the
    static role matrix, but role administration cannot see them.
    """
    start_time = time.time()
    try:
        permission_count = db.session.query(Permission).count()
        role_rows = db.session.query(RolePermission).count()
    except SQLAlchemyError:
        current_app.logger.exception("Permission catalog health check failed")
        db.session.rollback()
        return {"status": "unhealthy", "latency_ms": _elapsed_ms(start_time), "error": "Catalog error"}

    details = {
        "permission_count": permission_count,
        "catalog_size": len(ALL_PERMISSION_CODES),
        "role_permission_rows": role_rows,
    }
    if permission_count < len(ALL_PERMISSION_CODES):
        return {
            "status": "degraded",
            "latency_ms": _elapsed_ms(start_time),
            "warning": "Permission catalog not fully initialized; run `flask system init`",
            "details": details,
        }
    return {"status": "healthy", "latency_ms": _elapsed_ms(start_time), "details": details}


def check_cache_health() -> dict:
    """
    Report cache health without failing the probe: an empty cache after a
    restart is expected, so only cache errors count as degraded.
    """
    start_time = time.time()
    health = get_cache_health()
    status = "degraded" if not health["stats"] else "healthy"
    return {
        "status": status,
        "latency_ms": _elapsed_ms(start_time),
        "cache_health": health["health"],
        "details": health["stats"],
    }


def check_notification_bus_health() -> dict:
    start_time = time.time()
    stats = notification_bus.get_stats()
    return {
        "status": "healthy",
        "latency_ms": _elapsed_ms(start_time),
        "details": {
            "total_connections": stats["total_connections"],
            "connections_by_role": stats["connections_by_role"],
        },
    }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    checks = {
        "database": check_database_health(),
        "permission_catalog": check_permission_catalog_health(),
        "permission_cache": check_cache_health(),
        "notification_bus": check_notification_bus_health(),
    }

    statuses = [check["status"] for check in checks.values()]
    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": _elapsed_ms(start_time),
        "checks": checks,
    }, http_status
