# Overview: Utility functions for permission lookups, validation and set translation.

from __future__ import annotations

from .definitions import PERMISSION_DEFINITIONS
from .hierarchy import Role
from .roles import ACCESS_LEVEL_ROLE, ALL_PERMISSION_CODES, DEFAULT_ROLE_PERMISSIONS


_ALL_CODES = frozenset(ALL_PERMISSION_CODES)
_ROLE_SETS = {role: frozenset(codes) for role, codes in DEFAULT_ROLE_PERMISSIONS.items()}


def get_all_permission_codes():
    """Get list of all permission codes."""
    return list(ALL_PERMISSION_CODES)


def get_permissions_by_category(category):
    """Get all permissions in a category."""
    return [perm for perm in PERMISSION_DEFINITIONS if perm[3] == category]


def get_permission_definition(code):
    """Get full definition for a permission code."""
    for perm in PERMISSION_DEFINITIONS:
        if perm[0] == code:
            return {
                "code": perm[0],
                "name": perm[1],
                "description": perm[2],
                "category": perm[3],
                "action": perm[4],
            }
    return None


def validate_permission_code(code) -> bool:
    """Check if a permission code is valid."""
    return code in _ALL_CODES


is_valid_permission = validate_permission_code


def get_permission_category(code) -> str | None:
    definition = get_permission_definition(code)
    return definition["category"] if definition else None


def get_role_permissions(role: str | None) -> frozenset[str]:
    """
    Static permission set for a role.

    super_admin always resolves to the full catalog. Unknown roles
    resolve to the empty set.
    """
    if role == Role.SUPER_ADMIN:
        return _ALL_CODES
    return _ROLE_SETS.get(role, frozenset())


def get_access_level_permissions(level: str | None) -> frozenset[str]:
    """Permission set equivalent to a property access level (via its alias role)."""
    role = ACCESS_LEVEL_ROLE.get(level)
    if role is None:
        return frozenset()
    return get_role_permissions(role)
