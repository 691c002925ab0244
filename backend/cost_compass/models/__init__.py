from .tenancy import Property, Outlet, PropertyAccess
from .auth import User, Permission, RolePermission, RoleCustomization, UserPermission, SessionToken
from .financial import Category, FinancialEntry, DailyFinancialSummary
from .security import AuditLog
from .policy import PermissionTemplate, PermissionDelegation, CompliancePolicy, ComplianceViolation

__all__ = [
    'Property', 'Outlet', 'PropertyAccess',
    'User', 'Permission', 'RolePermission', 'RoleCustomization', 'UserPermission', 'SessionToken',
    'Category', 'FinancialEntry', 'DailyFinancialSummary',
    'AuditLog',
    'PermissionTemplate', 'PermissionDelegation', 'CompliancePolicy', 'ComplianceViolation',
]
