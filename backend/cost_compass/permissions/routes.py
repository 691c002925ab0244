# Overview: Front-end route permission map consumed by can_access_route.
# Each entry may require any of `permissions`, any of `roles`, and, when
# `property_required` is set, the given access level on the selected property.

from .hierarchy import AccessLevel, Role


ROUTE_PERMISSIONS = {
    "/dashboard/users": {
        "permissions": ["users.read"],
        "property_required": False,
    },
    "/dashboard/users/create": {
        "permissions": ["users.create"],
        "property_required": False,
    },
    "/dashboard/users/edit": {
        "permissions": ["users.update"],
        "property_required": False,
    },
    "/dashboard/properties": {
        "permissions": ["properties.read"],
        "property_required": False,
    },
    "/dashboard/properties/create": {
        "permissions": ["properties.create"],
        "property_required": False,
    },
    "/dashboard/food-cost-input": {
        "permissions": ["financial.food_costs.create", "financial.food_costs.read"],
        "property_required": True,
        "access_level": AccessLevel.DATA_ENTRY,
    },
    "/dashboard/beverage-cost-input": {
        "permissions": ["financial.beverage_costs.create", "financial.beverage_costs.read"],
        "property_required": True,
        "access_level": AccessLevel.DATA_ENTRY,
    },
    "/dashboard/financial-summary": {
        "permissions": ["financial.daily_summary.create", "financial.daily_summary.read"],
        "property_required": True,
        "access_level": AccessLevel.DATA_ENTRY,
    },
    "/dashboard/reports": {
        "permissions": ["reports.basic.read"],
        "property_required": True,
        "access_level": AccessLevel.READ_ONLY,
    },
    "/dashboard/reports/detailed": {
        "permissions": ["reports.detailed.read"],
        "property_required": True,
        "access_level": AccessLevel.READ_ONLY,
    },
    "/dashboard/settings": {
        "roles": [Role.SUPER_ADMIN, Role.PROPERTY_ADMIN],
        "property_required": False,
    },
    "/dashboard/outlets": {
        "permissions": ["outlets.read"],
        "property_required": True,
        "access_level": AccessLevel.READ_ONLY,
    },
}
