# Overview: All permission definitions organized by category.
# Each permission is defined as: (code, name, description, category, action)
# Codes follow the `category.resource.action` shape and are stable once referenced.

from .categories import PermissionAction, PermissionCategory


# -- SYSTEM ADMINISTRATION --

SYSTEM_PERMISSIONS = [
    (
        "system.manage",
        "Manage System",
        "Full platform administration",
        PermissionCategory.SYSTEM_ADMIN,
        PermissionAction.MANAGE,
    ),
    (
        "system.audit.read",
        "View Audit Logs",
        "Read the audit trail",
        PermissionCategory.SYSTEM_ADMIN,
        PermissionAction.READ,
    ),
    (
        "system.backup.manage",
        "Manage Backups",
        "Create and restore database backups",
        PermissionCategory.SYSTEM_ADMIN,
        PermissionAction.MANAGE,
    ),
    (
        "system.settings.manage",
        "Platform Settings",
        "Change platform-wide settings",
        PermissionCategory.SYSTEM_ADMIN,
        PermissionAction.MANAGE,
    ),
]


# -- USER MANAGEMENT --

USER_PERMISSIONS = [
    ("users.create", "Create Users", "Create user accounts", PermissionCategory.USER_MANAGEMENT, PermissionAction.CREATE),
    ("users.read", "View Users", "View user accounts", PermissionCategory.USER_MANAGEMENT, PermissionAction.READ),
    ("users.update", "Edit Users", "Edit user accounts", PermissionCategory.USER_MANAGEMENT, PermissionAction.UPDATE),
    ("users.delete", "Deactivate Users", "Deactivate user accounts", PermissionCategory.USER_MANAGEMENT, PermissionAction.DELETE),
    ("users.roles.manage", "Manage Roles", "Change user roles", PermissionCategory.USER_MANAGEMENT, PermissionAction.MANAGE),
    ("users.password.reset", "Reset Passwords", "Reset other users' passwords", PermissionCategory.USER_MANAGEMENT, PermissionAction.UPDATE),
    (
        "users.permissions.manage",
        "Manage Permissions",
        "Grant and revoke explicit user permissions",
        PermissionCategory.USER_MANAGEMENT,
        PermissionAction.MANAGE,
    ),
    ("users.view_all", "View All Users", "View users across every property", PermissionCategory.USER_MANAGEMENT, PermissionAction.VIEW_ALL),
    (
        "users.view_property",
        "View Property Users",
        "View users of properties the caller can access",
        PermissionCategory.USER_MANAGEMENT,
        PermissionAction.VIEW_OWN,
    ),
]


# -- PROPERTY MANAGEMENT --

PROPERTY_PERMISSIONS = [
    ("properties.create", "Create Properties", "Create properties", PermissionCategory.PROPERTY_MANAGEMENT, PermissionAction.CREATE),
    ("properties.read", "View Properties", "View property details", PermissionCategory.PROPERTY_MANAGEMENT, PermissionAction.READ),
    ("properties.update", "Edit Properties", "Edit property details", PermissionCategory.PROPERTY_MANAGEMENT, PermissionAction.UPDATE),
    ("properties.delete", "Delete Properties", "Delete properties", PermissionCategory.PROPERTY_MANAGEMENT, PermissionAction.DELETE),
    (
        "properties.access.manage",
        "Manage Property Access",
        "Grant, update and revoke property access levels",
        PermissionCategory.PROPERTY_MANAGEMENT,
        PermissionAction.MANAGE,
    ),
    (
        "properties.ownership.transfer",
        "Transfer Ownership",
        "Transfer property ownership to another user",
        PermissionCategory.PROPERTY_MANAGEMENT,
        PermissionAction.MANAGE,
    ),
    ("properties.view_all", "View All Properties", "View every property", PermissionCategory.PROPERTY_MANAGEMENT, PermissionAction.VIEW_ALL),
    ("properties.view_own", "View Own Properties", "View properties the caller can access", PermissionCategory.PROPERTY_MANAGEMENT, PermissionAction.VIEW_OWN),
    (
        "properties.settings.manage",
        "Property Settings",
        "Change property-level settings",
        PermissionCategory.PROPERTY_MANAGEMENT,
        PermissionAction.MANAGE,
    ),
]


# -- FINANCIAL DATA --

FINANCIAL_PERMISSIONS = [
    ("financial.food_costs.create", "Enter Food Costs", "Create food cost entries", PermissionCategory.FINANCIAL_DATA, PermissionAction.CREATE),
    ("financial.food_costs.read", "View Food Costs", "View food cost entries", PermissionCategory.FINANCIAL_DATA, PermissionAction.READ),
    ("financial.food_costs.update", "Edit Food Costs", "Edit food cost entries", PermissionCategory.FINANCIAL_DATA, PermissionAction.UPDATE),
    ("financial.food_costs.delete", "Delete Food Costs", "Delete food cost entries", PermissionCategory.FINANCIAL_DATA, PermissionAction.DELETE),
    ("financial.beverage_costs.create", "Enter Beverage Costs", "Create beverage cost entries", PermissionCategory.FINANCIAL_DATA, PermissionAction.CREATE),
    ("financial.beverage_costs.read", "View Beverage Costs", "View beverage cost entries", PermissionCategory.FINANCIAL_DATA, PermissionAction.READ),
    ("financial.beverage_costs.update", "Edit Beverage Costs", "Edit beverage cost entries", PermissionCategory.FINANCIAL_DATA, PermissionAction.UPDATE),
    ("financial.beverage_costs.delete", "Delete Beverage Costs", "Delete beverage cost entries", PermissionCategory.FINANCIAL_DATA, PermissionAction.DELETE),
    ("financial.costs.approve", "Approve Costs", "Approve submitted cost entries", PermissionCategory.FINANCIAL_DATA, PermissionAction.APPROVE),
    ("financial.daily_summary.create", "Create Daily Summary", "Create daily financial summaries", PermissionCategory.FINANCIAL_DATA, PermissionAction.CREATE),
    ("financial.daily_summary.read", "View Daily Summary", "View daily financial summaries", PermissionCategory.FINANCIAL_DATA, PermissionAction.READ),
    ("financial.daily_summary.update", "Edit Daily Summary", "Edit daily financial summaries", PermissionCategory.FINANCIAL_DATA, PermissionAction.UPDATE),
    ("financial.daily_summary.delete", "Delete Daily Summary", "Delete daily financial summaries", PermissionCategory.FINANCIAL_DATA, PermissionAction.DELETE),
]


# -- REPORTING --

REPORTING_PERMISSIONS = [
    ("reports.basic.read", "Basic Reports", "View basic reports", PermissionCategory.REPORTING, PermissionAction.READ),
    ("reports.detailed.read", "Detailed Reports", "View detailed reports", PermissionCategory.REPORTING, PermissionAction.READ),
    ("reports.financial.read", "Financial Reports", "View financial reports", PermissionCategory.REPORTING, PermissionAction.READ),
    (
        "reports.cross_property.read",
        "Cross-Property Reports",
        "View reports spanning several properties",
        PermissionCategory.REPORTING,
        PermissionAction.VIEW_ALL,
    ),
    ("reports.export", "Export Reports", "Export reports to files", PermissionCategory.REPORTING, PermissionAction.EXPORT),
    ("reports.custom.create", "Custom Reports", "Build custom reports", PermissionCategory.REPORTING, PermissionAction.CREATE),
    ("reports.schedule.manage", "Schedule Reports", "Manage scheduled report delivery", PermissionCategory.REPORTING, PermissionAction.MANAGE),
]


# -- OUTLET MANAGEMENT --

OUTLET_PERMISSIONS = [
    ("outlets.create", "Create Outlets", "Create outlets", PermissionCategory.OUTLET_MANAGEMENT, PermissionAction.CREATE),
    ("outlets.read", "View Outlets", "View outlets", PermissionCategory.OUTLET_MANAGEMENT, PermissionAction.READ),
    ("outlets.update", "Edit Outlets", "Edit outlets", PermissionCategory.OUTLET_MANAGEMENT, PermissionAction.UPDATE),
    ("outlets.delete", "Delete Outlets", "Delete outlets", PermissionCategory.OUTLET_MANAGEMENT, PermissionAction.DELETE),
    ("outlets.users.manage", "Manage Outlet Users", "Assign users to outlets", PermissionCategory.OUTLET_MANAGEMENT, PermissionAction.MANAGE),
]


# -- DASHBOARD ACCESS --

DASHBOARD_PERMISSIONS = [
    ("dashboard.view", "View Dashboard", "Open the main dashboard", PermissionCategory.DASHBOARD_ACCESS, PermissionAction.READ),
    ("dashboard.property.view", "Property Dashboard", "Open property dashboards", PermissionCategory.DASHBOARD_ACCESS, PermissionAction.READ),
    (
        "dashboard.cross_property.view",
        "Cross-Property Dashboard",
        "Open dashboards spanning several properties",
        PermissionCategory.DASHBOARD_ACCESS,
        PermissionAction.VIEW_ALL,
    ),
    ("dashboard.settings.manage", "Dashboard Settings", "Configure dashboards", PermissionCategory.DASHBOARD_ACCESS, PermissionAction.MANAGE),
]


# Master list of all permissions
PERMISSION_DEFINITIONS = (
    SYSTEM_PERMISSIONS
    + USER_PERMISSIONS
    + PROPERTY_PERMISSIONS
    + FINANCIAL_PERMISSIONS
    + REPORTING_PERMISSIONS
    + OUTLET_PERMISSIONS
    + DASHBOARD_PERMISSIONS
)
