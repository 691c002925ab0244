# Overview: Permission category and action constants for grouping related permissions.


class PermissionCategory:
    """Permission categories for organization and UI display."""
    SYSTEM_ADMIN = "system_admin"
    USER_MANAGEMENT = "user_management"
    PROPERTY_MANAGEMENT = "property_management"
    FINANCIAL_DATA = "financial_data"
    REPORTING = "reporting"
    OUTLET_MANAGEMENT = "outlet_management"
    COST_INPUT = "cost_input"
    DASHBOARD_ACCESS = "dashboard_access"


class PermissionAction:
    """Verb half of a permission key (e.g. the `read` in `users.read`)."""
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    APPROVE = "approve"
    EXPORT = "export"
    IMPORT = "import"
    MANAGE = "manage"
    VIEW_ALL = "view_all"  # across all properties
    VIEW_OWN = "view_own"  # only properties the user holds access to


PERMISSION_CATEGORIES = (
    PermissionCategory.SYSTEM_ADMIN,
    PermissionCategory.USER_MANAGEMENT,
    PermissionCategory.PROPERTY_MANAGEMENT,
    PermissionCategory.FINANCIAL_DATA,
    PermissionCategory.REPORTING,
    PermissionCategory.OUTLET_MANAGEMENT,
    PermissionCategory.COST_INPUT,
    PermissionCategory.DASHBOARD_ACCESS,
)
