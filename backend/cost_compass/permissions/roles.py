# Overview: Default role-permission matrix and the access-level translator.

"""
Default permission sets per role.

DESIGN:
- super_admin holds the full catalog (no partial grants)
- Each lower role is a strict policy choice, not derived from rank
- Access levels are aliases onto role sets so the same permission-set
  logic serves both role checks and property-scoped checks

These are the static defaults. RolePermission rows in the database
override the set for a role once any row exists for it.
"""

from .definitions import (
    DASHBOARD_PERMISSIONS,
    FINANCIAL_PERMISSIONS,
    OUTLET_PERMISSIONS,
    PERMISSION_DEFINITIONS,
    PROPERTY_PERMISSIONS,
    REPORTING_PERMISSIONS,
)
from .hierarchy import AccessLevel, Role


def _codes(definitions):
    return [perm[0] for perm in definitions]


ALL_PERMISSION_CODES = _codes(PERMISSION_DEFINITIONS)

# Financial entry without delete or approve
_FINANCIAL_ENTRY = [
    "financial.food_costs.create",
    "financial.food_costs.read",
    "financial.food_costs.update",
    "financial.beverage_costs.create",
    "financial.beverage_costs.read",
    "financial.beverage_costs.update",
    "financial.daily_summary.create",
    "financial.daily_summary.read",
    "financial.daily_summary.update",
]

_FINANCIAL_READ = [
    "financial.food_costs.read",
    "financial.beverage_costs.read",
    "financial.daily_summary.read",
]


DEFAULT_ROLE_PERMISSIONS = {
    Role.SUPER_ADMIN: list(ALL_PERMISSION_CODES),

    Role.PROPERTY_OWNER: [
        "system.audit.read",
        "users.create",
        "users.read",
        "users.update",
        "users.delete",
        "users.password.reset",
        "users.view_property",
        *_codes(PROPERTY_PERMISSIONS),
        *_codes(FINANCIAL_PERMISSIONS),
        *_codes(REPORTING_PERMISSIONS),
        *_codes(OUTLET_PERMISSIONS),
        *_codes(DASHBOARD_PERMISSIONS),
    ],

    Role.PROPERTY_ADMIN: [
        "users.read",
        "users.update",
        "users.view_property",
        "properties.read",
        "properties.update",
        "properties.access.manage",
        "properties.view_own",
        "properties.settings.manage",
        *_codes(FINANCIAL_PERMISSIONS),
        "reports.basic.read",
        "reports.detailed.read",
        "reports.financial.read",
        "reports.export",
        *_codes(OUTLET_PERMISSIONS),
        "dashboard.view",
        "dashboard.property.view",
        "dashboard.settings.manage",
    ],

    Role.REGIONAL_MANAGER: [
        "users.read",
        "users.view_property",
        "properties.read",
        "properties.update",
        "properties.view_own",
        *_FINANCIAL_ENTRY,
        "reports.basic.read",
        "reports.detailed.read",
        "reports.financial.read",
        "reports.cross_property.read",
        "reports.export",
        "outlets.read",
        "outlets.update",
        "dashboard.view",
        "dashboard.property.view",
        "dashboard.cross_property.view",
    ],

    Role.PROPERTY_MANAGER: [
        "users.read",
        "users.view_property",
        "properties.read",
        "properties.view_own",
        *_FINANCIAL_ENTRY,
        "reports.basic.read",
        "reports.detailed.read",
        "reports.financial.read",
        "reports.export",
        "outlets.read",
        "outlets.update",
        "dashboard.view",
        "dashboard.property.view",
    ],

    Role.SUPERVISOR: [
        "financial.food_costs.create",
        "financial.food_costs.read",
        "financial.beverage_costs.create",
        "financial.beverage_costs.read",
        "financial.daily_summary.create",
        "financial.daily_summary.read",
        "reports.basic.read",
        "dashboard.view",
        "dashboard.property.view",
    ],

    Role.USER: [
        *_FINANCIAL_READ,
        "reports.basic.read",
        "dashboard.view",
    ],

    Role.READONLY: [
        *_FINANCIAL_READ,
        "reports.basic.read",
        "dashboard.view",
    ],
}


# Access level -> role whose permission set it borrows
ACCESS_LEVEL_ROLE = {
    AccessLevel.OWNER: Role.PROPERTY_OWNER,
    AccessLevel.FULL_CONTROL: Role.PROPERTY_ADMIN,
    AccessLevel.MANAGEMENT: Role.PROPERTY_MANAGER,
    AccessLevel.DATA_ENTRY: Role.SUPERVISOR,
    AccessLevel.READ_ONLY: Role.READONLY,
}
