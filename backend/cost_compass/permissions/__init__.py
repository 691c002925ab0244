# Overview: Permission catalog package.
# Re-exports all public APIs so callers import from `cost_compass.permissions`.

from .categories import PERMISSION_CATEGORIES, PermissionAction, PermissionCategory
from .definitions import (
    PERMISSION_DEFINITIONS,
    SYSTEM_PERMISSIONS,
    USER_PERMISSIONS,
    PROPERTY_PERMISSIONS,
    FINANCIAL_PERMISSIONS,
    REPORTING_PERMISSIONS,
    OUTLET_PERMISSIONS,
    DASHBOARD_PERMISSIONS,
)
from .hierarchy import (
    ACCESS_LEVEL_ORDER,
    ADMIN_ROLES,
    MANAGING_ACCESS_LEVELS,
    ROLE_HIERARCHY,
    AccessLevel,
    Role,
    access_level_rank,
    access_level_satisfies,
    is_valid_access_level,
    is_valid_role,
    role_outranks,
    role_rank,
)
from .roles import ACCESS_LEVEL_ROLE, ALL_PERMISSION_CODES, DEFAULT_ROLE_PERMISSIONS
from .routes import ROUTE_PERMISSIONS
from .helpers import (
    get_access_level_permissions,
    get_all_permission_codes,
    get_permission_category,
    get_permission_definition,
    get_permissions_by_category,
    get_role_permissions,
    is_valid_permission,
    validate_permission_code,
)

__all__ = [
    "PermissionAction",
    "PermissionCategory",
    "PERMISSION_CATEGORIES",
    "PERMISSION_DEFINITIONS",
    "SYSTEM_PERMISSIONS",
    "USER_PERMISSIONS",
    "PROPERTY_PERMISSIONS",
    "FINANCIAL_PERMISSIONS",
    "REPORTING_PERMISSIONS",
    "OUTLET_PERMISSIONS",
    "DASHBOARD_PERMISSIONS",
    "ACCESS_LEVEL_ORDER",
    "ADMIN_ROLES",
    "MANAGING_ACCESS_LEVELS",
    "ROLE_HIERARCHY",
    "AccessLevel",
    "Role",
    "access_level_rank",
    "access_level_satisfies",
    "is_valid_access_level",
    "is_valid_role",
    "role_outranks",
    "role_rank",
    "ACCESS_LEVEL_ROLE",
    "ALL_PERMISSION_CODES",
    "DEFAULT_ROLE_PERMISSIONS",
    "ROUTE_PERMISSIONS",
    "get_access_level_permissions",
    "get_all_permission_codes",
    "get_permission_category",
    "get_permission_definition",
    "get_permissions_by_category",
    "get_role_permissions",
    "is_valid_permission",
    "validate_permission_code",
]
