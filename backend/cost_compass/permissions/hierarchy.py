# Overview: Ordered role and property access-level definitions.
# Every rank comparison in the codebase goes through this module.

"""
Role hierarchy and access-level ordering.

WHY: Roles (global, user-wide) and access levels (per property) are both
totally ordered. Keeping one definition of each order prevents the role
checks and the property checks from drifting apart.

ROLES (high to low):
    super_admin > property_owner > property_admin > regional_manager >
    property_manager > supervisor > user > readonly

ACCESS LEVELS (high to low):
    owner > full_control > management > data_entry > read_only
"""

from __future__ import annotations


class Role:
    """Global role values stored on User.role."""
    SUPER_ADMIN = "super_admin"
    PROPERTY_OWNER = "property_owner"
    PROPERTY_ADMIN = "property_admin"
    REGIONAL_MANAGER = "regional_manager"
    PROPERTY_MANAGER = "property_manager"
    SUPERVISOR = "supervisor"
    USER = "user"
    READONLY = "readonly"


class AccessLevel:
    """Per-property access levels stored on PropertyAccess.access_level."""
    READ_ONLY = "read_only"
    DATA_ENTRY = "data_entry"
    MANAGEMENT = "management"
    FULL_CONTROL = "full_control"
    OWNER = "owner"


# Lowest first; rank == index
ROLE_HIERARCHY = (
    Role.READONLY,
    Role.USER,
    Role.SUPERVISOR,
    Role.PROPERTY_MANAGER,
    Role.REGIONAL_MANAGER,
    Role.PROPERTY_ADMIN,
    Role.PROPERTY_OWNER,
    Role.SUPER_ADMIN,
)

ACCESS_LEVEL_ORDER = (
    AccessLevel.READ_ONLY,
    AccessLevel.DATA_ENTRY,
    AccessLevel.MANAGEMENT,
    AccessLevel.FULL_CONTROL,
    AccessLevel.OWNER,
)

# Levels that may administer other users' access on a property
MANAGING_ACCESS_LEVELS = (
    AccessLevel.MANAGEMENT,
    AccessLevel.FULL_CONTROL,
    AccessLevel.OWNER,
)

ADMIN_ROLES = (Role.SUPER_ADMIN, Role.PROPERTY_ADMIN)


def is_valid_role(role: str | None) -> bool:
    return role in ROLE_HIERARCHY


def is_valid_access_level(level: str | None) -> bool:
    return level in ACCESS_LEVEL_ORDER


def role_rank(role: str | None) -> int:
    """Rank of a role; unknown roles rank below readonly (-1)."""
    try:
        return ROLE_HIERARCHY.index(role)
    except ValueError:
        return -1


def access_level_rank(level: str | None) -> int:
    """Rank of an access level; unknown levels rank -1 and never satisfy a check."""
    try:
        return ACCESS_LEVEL_ORDER.index(level)
    except ValueError:
        return -1


def access_level_satisfies(held_level: str | None, required_level: str) -> bool:
    """
    True when a held access level meets or exceeds the required one.

    Unknown held levels never satisfy. An unknown required level is
    treated as unsatisfiable as well (fail closed).
    """
    required = access_level_rank(required_level)
    if required < 0:
        return False
    held = access_level_rank(held_level)
    return held >= 0 and held >= required


def role_outranks(role_a: str | None, role_b: str | None) -> bool:
    """Strictly higher rank; equal roles do not outrank each other."""
    return role_rank(role_a) > role_rank(role_b)
