# Overview: Builds permission-change events and targets them on the notification bus.

"""
Permission Notifier

WHY: Admin mutations translate into a small set of stream events. Keeping
the message wording and targeting rules here means every mutation path
announces changes the same way.

TARGETING:
- role change    -> role_updated to connections of that role (refresh)
                    + permission_updated to admin connections (no refresh),
                    skipping the acting admin
- user change    -> user_updated to that user's connections (refresh)
- role reassignment -> the user's connections are retagged with the new
                    role, then user_updated as above
- global change  -> permission_updated to everyone except the acting admin

Delivery failures never reach the caller; see notification_bus.publish_where.
"""

from __future__ import annotations

import logging

from ..extensions import notification_bus
from ..permissions import ADMIN_ROLES
from .notification_bus import (
    EVENT_PERMISSION_UPDATED,
    EVENT_ROLE_UPDATED,
    EVENT_USER_UPDATED,
    build_event,
)


logger = logging.getLogger(__name__)


def notify_role_permission_update(
    affected_role: str,
    permission_name: str | None,
    action: str,
    admin_user_id: int | None = None,
) -> int:
    """Announce a role matrix change. Returns the number of role connections reached."""
    event = build_event(
        EVENT_ROLE_UPDATED,
        f"Permission {action} for role {affected_role}",
        requires_refresh=True,
        affected_role=affected_role,
        permission_name=permission_name,
        action=action,
    )
    delivered = notification_bus.broadcast_role_update(affected_role, event)

    affected_users = sorted({
        conn["user_id"]
        for conn in _connections_for_role(affected_role)
    })
    admin_event = build_event(
        EVENT_PERMISSION_UPDATED,
        f"Admin updated permissions for role {affected_role}"
        + (f": {permission_name} {action}" if permission_name else ""),
        requires_refresh=False,
        affected_role=affected_role,
        affected_users=affected_users,
        permission_name=permission_name,
        action=action,
    )
    notification_bus.publish_where(
        lambda conn: conn.user_role in ADMIN_ROLES and conn.user_id != admin_user_id,
        admin_event,
    )

    logger.info(
        "Role permission update announced",
        extra={"role": affected_role, "permission": permission_name, "action": action, "delivered": delivered},
    )
    return delivered


def notify_user_permission_update(
    user_id: int,
    permission_name: str | None,
    action: str,
    admin_user_id: int | None = None,
    message: str | None = None,
) -> int:
    """Announce a change to one user's own permissions or property access."""
    event = build_event(
        EVENT_USER_UPDATED,
        message or (f"Your permission has been {action}: {permission_name}" if permission_name
                    else f"Your permissions have been {action}"),
        requires_refresh=True,
        user_id=user_id,
        permission_name=permission_name,
        action=action,
    )
    delivered = notification_bus.broadcast_user_update(user_id, event)
    logger.info(
        "User permission update announced",
        extra={"target_user_id": user_id, "action": action, "admin_user_id": admin_user_id, "delivered": delivered},
    )
    return delivered


def notify_user_role_change(
    user_id: int,
    old_role: str | None,
    new_role: str,
    admin_user_id: int | None = None,
) -> int:
    """Move the user's open streams to the new role, then ask them to refetch."""
    notification_bus.update_user_role(user_id, new_role)
    return notify_user_permission_update(
        user_id,
        None,
        "updated",
        admin_user_id=admin_user_id,
        message=f"Your role has been changed from {old_role} to {new_role}",
    )


def notify_global_permission_update(message: str, admin_user_id: int | None = None) -> int:
    """Ask every connected client (except the acting admin) to refetch."""
    event = build_event(EVENT_PERMISSION_UPDATED, message, requires_refresh=True)
    delivered = notification_bus.broadcast_permission_update(event, exclude_user_id=admin_user_id)
    logger.info("Global permission update announced", extra={"delivered": delivered})
    return delivered


def _connections_for_role(role: str) -> list[dict]:
    return [
        conn
        for conn in notification_bus.list_connections()
        if conn["user_role"] == role
    ]
