# Overview: Service-layer user accounts; password hashing, authentication, role changes and deactivation.

"""
Authentication Service

WHY: Every action must be attributable. Uses bcrypt for secure password
hashing and validates password strength.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters required
- Must contain uppercase, lowercase, digit, and special char
- Session tokens managed separately (see session_service.py)
- Role changes and deactivation run through permission_mutation so cached
  permission sets are dropped and the user's clients are told to refetch
"""

import logging
import re

import bcrypt

from ..extensions import db
from ..models import User
from ..permissions import Role, role_outranks
from ..time_utils import utcnow
from ..validation import ConflictError, NotFoundError, validate_role
from . import permission_service, session_service
from .cache_invalidation import permission_mutation


logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 12


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character (!@#$%^&*(),.'":{}|<>)
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r"[A-Z]", password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r"[a-z]", password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    """Validate strength, then bcrypt-hash. Stored as a string."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt check. Malformed hashes never verify."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_user(
    email: str,
    password: str,
    name: str | None = None,
    role: str = Role.USER,
    bcrypt_rounds: int = BCRYPT_ROUNDS,
) -> User:
    """
    Create a user with a bcrypt password hash.

    Raises ValidationError for an unknown role, ConflictError for a taken
    email, PasswordValidationError for a weak password.
    """
    validate_role(role)
    validate_password_strength(password)
    email = (email or "").strip().lower()
    if db.session.query(User).filter(User.email == email).first():
        raise ConflictError("Email already exists")

    user = User(
        email=email,
        name=name,
        role=role,
        password_hash=hash_password(password, rounds=bcrypt_rounds),
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(email: str, password: str) -> User | None:
    """
    Return the active user for these credentials, or None.

    Updates last_login_at on success.
    """
    user = db.session.query(User).filter(
        User.email == (email or "").strip().lower(),
        User.is_active.is_(True),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None


def _require_user_admin(actor_id: int, target: User) -> None:
    """Actor needs users.roles.manage and must outrank the target (super_admin excepted)."""
    if not permission_service.has_permission(actor_id, "users.roles.manage"):
        raise permission_service.PermissionDeniedError("Permission denied: users.roles.manage")
    if permission_service.is_super_admin(actor_id):
        return
    actor = db.session.get(User, actor_id)
    if not role_outranks(actor.role, target.role):
        raise permission_service.PermissionDeniedError("Cannot manage a user with an equal or higher role")


def set_user_role(*, actor_id: int, user_id: int, role: str) -> User:
    """
    Change a user's global role.

    Drops the user's cached sets and both roles' cached sets, moves the
    user's open streams to the new role, then tells them to refetch.
    """
    validate_role(role)
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    _require_user_admin(actor_id, user)
    if role == Role.SUPER_ADMIN and not permission_service.is_super_admin(actor_id):
        raise permission_service.PermissionDeniedError("Only a super admin can grant the super_admin role")

    old_role = user.role
    if old_role == role:
        return user

    with permission_mutation() as mutation:
        user.role = role
        permission_service.log_audit_event(
            user_id=actor_id,
            action="USER_ROLE_CHANGED",
            resource="users",
            resource_id=user_id,
            details={"previous_role": old_role, "new_role": role},
            commit=False,
        )
        mutation.invalidate_user_role(user_id, old_role, role)
        mutation.notify_user_role(user_id, old_role, role, admin_user_id=actor_id)

    logger.info("User role changed", extra={"actor_id": actor_id, "target_user_id": user_id, "new_role": role})
    return user


def deactivate_user(*, actor_id: int, user_id: int) -> User:
    """Deactivate a user and revoke every session. Users are never deleted."""
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    if actor_id == user_id:
        raise permission_service.PermissionDeniedError("Cannot deactivate your own account")
    _require_user_admin(actor_id, user)

    with permission_mutation() as mutation:
        user.is_active = False
        revoked = session_service.revoke_all_user_sessions(user_id, reason="User account deactivated", commit=False)
        permission_service.log_audit_event(
            user_id=actor_id,
            action="USER_DEACTIVATED",
            resource="users",
            resource_id=user_id,
            details={"sessions_revoked": revoked},
            commit=False,
        )
        mutation.invalidate_user(user_id)
        mutation.notify_user(
            user_id,
            None,
            "revoked",
            admin_user_id=actor_id,
            message="Your account has been deactivated",
        )

    return user
