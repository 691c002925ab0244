# Overview: Service-layer permission delegation (time-boxed, revocable re-grants between users).

"""
Permission Delegation

WHY: Managers going on leave hand part of their authority to a deputy for
a fixed period without an admin editing roles.

RULES:
- A delegator may only delegate permissions they currently hold in the
  same scope (globally, or on the given property)
- A delegation with property_id NULL adds to the delegatee's global set;
  otherwise it applies only on that property
- Only active, unexpired delegations count (active_delegation_filter)
- Revocation is immediate: the row is deactivated, the delegatee's cache
  invalidated and a user_updated event published
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from ..extensions import db
from ..models import PermissionDelegation, Property, User
from ..time_utils import is_expired, utcnow
from ..validation import NotFoundError, ValidationError, validate_permission_names
from . import permission_service, property_access_service
from .cache_invalidation import permission_mutation


logger = logging.getLogger(__name__)


def active_delegation_filter(now: datetime | None = None):
    """SQL criterion selecting delegations that are active and not past expiry."""
    now = now or utcnow()
    return db.and_(
        PermissionDelegation.is_active.is_(True),
        db.or_(PermissionDelegation.expires_at.is_(None), PermissionDelegation.expires_at > now),
    )


def get_active_delegations(
    user_id: int,
    property_id: int | None = None,
    now: datetime | None = None,
) -> list[PermissionDelegation]:
    """
    Live delegations to a user in one scope.

    property_id None selects global delegations only.
    """
    scope = (
        PermissionDelegation.property_id.is_(None)
        if property_id is None
        else PermissionDelegation.property_id == property_id
    )
    return (
        db.session.query(PermissionDelegation)
        .filter(
            PermissionDelegation.delegated_to_user_id == user_id,
            scope,
            active_delegation_filter(now),
        )
        .all()
    )


def delegate_permissions(
    *,
    delegator_id: int,
    delegatee_id: int,
    permissions: Iterable[str],
    property_id: int | None = None,
    expires_at: datetime | None = None,
    reason: str | None = None,
) -> PermissionDelegation:
    """Create a delegation. Raises ValidationError / NotFoundError / PermissionDeniedError."""
    permissions = sorted(set(validate_permission_names(permissions)))
    if not permissions:
        raise ValidationError("At least one permission is required")
    if delegator_id == delegatee_id:
        raise ValidationError("Cannot delegate permissions to yourself")
    if is_expired(expires_at):
        raise ValidationError("expires_at must be in the future")

    delegator = db.session.get(User, delegator_id)
    delegatee = db.session.get(User, delegatee_id)
    if delegator is None or not delegator.is_active:
        raise NotFoundError("Delegator not found")
    if delegatee is None or not delegatee.is_active:
        raise NotFoundError("Delegatee not found")
    if property_id is not None and db.session.get(Property, property_id) is None:
        raise NotFoundError("Property not found")

    if property_id is None:
        held = permission_service.get_user_permissions(delegator)
    else:
        held = property_access_service.get_user_property_permissions(delegator_id, property_id)
        if not property_access_service.can_access_property(delegator_id, property_id):
            held = frozenset()

    missing = [name for name in permissions if name not in held]
    if missing:
        raise permission_service.PermissionDeniedError(
            f"Cannot delegate permissions you do not hold: {', '.join(missing)}"
        )

    with permission_mutation() as mutation:
        delegation = PermissionDelegation(
            delegated_by_user_id=delegator_id,
            delegated_to_user_id=delegatee_id,
            property_id=property_id,
            permissions=permissions,
            reason=reason,
            is_active=True,
            delegated_at=utcnow(),
            expires_at=expires_at,
        )
        db.session.add(delegation)
        permission_service.log_audit_event(
            user_id=delegator_id,
            action="PERMISSIONS_DELEGATED",
            resource="permission_delegations",
            property_id=property_id,
            details={
                "delegated_to": delegatee_id,
                "permissions": permissions,
                "expires_at": expires_at.isoformat() if expires_at else None,
                "reason": reason,
            },
            commit=False,
        )
        mutation.invalidate_user(delegatee_id)
        mutation.notify_user(
            delegatee_id,
            None,
            "granted",
            admin_user_id=delegator_id,
            message=f"{len(permissions)} permission(s) have been delegated to you",
        )

    return delegation


def revoke_delegation(*, delegation_id: int, revoked_by_user_id: int) -> PermissionDelegation:
    """
    Deactivate a delegation. Only the delegator or a super admin may revoke.
    """
    delegation = db.session.get(PermissionDelegation, delegation_id)
    if delegation is None:
        raise NotFoundError("Delegation not found")
    if not delegation.is_active:
        raise ValidationError("Delegation is already revoked")
    if (
        delegation.delegated_by_user_id != revoked_by_user_id
        and not permission_service.is_super_admin(revoked_by_user_id)
    ):
        raise permission_service.PermissionDeniedError("Only the delegator or a super admin may revoke")

    with permission_mutation() as mutation:
        delegation.is_active = False
        delegation.revoked_at = utcnow()
        delegation.revoked_by_user_id = revoked_by_user_id
        permission_service.log_audit_event(
            user_id=revoked_by_user_id,
            action="DELEGATION_REVOKED",
            resource="permission_delegations",
            resource_id=delegation.id,
            property_id=delegation.property_id,
            details={"delegated_to": delegation.delegated_to_user_id},
            commit=False,
        )
        mutation.invalidate_user(delegation.delegated_to_user_id)
        mutation.notify_user(
            delegation.delegated_to_user_id,
            None,
            "revoked",
            admin_user_id=revoked_by_user_id,
            message="A permission delegation to you has been revoked",
        )

    return delegation


def list_delegations(
    *,
    delegated_by_user_id: int | None = None,
    delegated_to_user_id: int | None = None,
    include_inactive: bool = False,
) -> list[PermissionDelegation]:
    query = db.session.query(PermissionDelegation)
    if delegated_by_user_id is not None:
        query = query.filter(PermissionDelegation.delegated_by_user_id == delegated_by_user_id)
    if delegated_to_user_id is not None:
        query = query.filter(PermissionDelegation.delegated_to_user_id == delegated_to_user_id)
    if not include_inactive:
        query = query.filter(active_delegation_filter())
    return query.order_by(PermissionDelegation.delegated_at.desc(), PermissionDelegation.id.desc()).all()


def cleanup_expired_delegations(now: datetime | None = None) -> int:
    """Deactivate active delegations past expiry. Returns count deactivated."""
    now = now or utcnow()
    expired = (
        db.session.query(PermissionDelegation)
        .filter(
            PermissionDelegation.is_active.is_(True),
            PermissionDelegation.expires_at.isnot(None),
            PermissionDelegation.expires_at <= now,
        )
        .all()
    )
    if not expired:
        return 0

    with permission_mutation() as mutation:
        for delegation in expired:
            delegation.is_active = False
            delegation.revoked_at = now
            mutation.invalidate_user(delegation.delegated_to_user_id)

    logger.info("Expired delegations deactivated", extra={"count": len(expired)})
    return len(expired)
