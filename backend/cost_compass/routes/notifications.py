# Overview: Flask API routes for the permission-update stream; SSE subscription, manual refresh trigger and stream stats.

"""
Permission update stream routes.

GET /api/permissions/stream holds a text/event-stream response open for
the caller. Frames are `data: {json}\\n\\n`; the first is `connected`, then
permission events and heartbeats. The connection is unregistered when
the client goes away (the WSGI server closes the generator).
"""

from flask import Blueprint, Response, g, jsonify

from ..decorators import require_auth, require_role
from ..extensions import notification_bus
from ..permissions import Role
from ..services import permission_notifier, permission_service
from ..time_utils import to_utc_z, utcnow
from ..validation import validate_role
from . import client_info, json_error, request_json


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/permissions")


@notifications_bp.get("/stream")
@require_auth
def permission_stream():
    user = g.current_user
    connection = notification_bus.connect(user.id, user.role)

    return Response(
        notification_bus.stream(connection),
        mimetype="text/event-stream",
        headers={
            "Cache-Control": "no-cache, no-transform",
            "X-Accel-Buffering": "no",
        },
    )


@notifications_bp.post("/trigger-refresh")
@require_auth
@require_role(Role.SUPER_ADMIN)
def trigger_refresh():
    """
    Ask clients to refetch their permissions.

    Request body:
    - role: str (optional) - only connections of this role; otherwise everyone
    """
    try:
        data = request_json()
        role = data.get("role")
        if role:
            validate_role(role)
            delivered = permission_notifier.notify_role_permission_update(
                role, None, "updated", admin_user_id=g.current_user.id
            )
            message = f"Refresh notification sent for role: {role}"
        else:
            delivered = permission_notifier.notify_global_permission_update(
                "Permissions have been updated", admin_user_id=g.current_user.id
            )
            message = "Refresh notification sent to all connected clients"
    except Exception as e:
        return json_error(e, "Failed to trigger permission refresh")

    permission_service.log_audit_event(
        user_id=g.current_user.id,
        action="PERMISSION_REFRESH_TRIGGERED",
        resource="permission_stream",
        details={"role": role, "delivered": delivered},
        **client_info(),
    )
    return jsonify({
        "success": True,
        "message": message,
        "delivered": delivered,
        "timestamp": to_utc_z(utcnow()),
    })


@notifications_bp.get("/stream/stats")
@require_auth
@require_role(Role.SUPER_ADMIN)
def stream_stats():
    stats = notification_bus.get_stats()
    # JSON object keys must be strings
    stats["connections_by_user"] = {str(k): v for k, v in stats["connections_by_user"].items()}
    stats["connections"] = notification_bus.list_connections()
    return jsonify(stats)
