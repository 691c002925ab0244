"""
Permission evaluator tests.

Verifies:
- Role sets, explicit grants and their expiry
- Fail-closed behaviour for unknown names, missing and inactive users
- Persisted role rows take over from the static matrix on first edit
- Route access checks
"""

from datetime import timedelta

import pytest

from cost_compass.extensions import permission_cache
from cost_compass.models import AuditLog, Permission, RolePermission, UserPermission
from cost_compass.permissions import ALL_PERMISSION_CODES, AccessLevel, Role, get_role_permissions
from cost_compass.services import permission_service, role_permission_service
from cost_compass.services.permission_service import AuthenticationRequiredError, PermissionDeniedError
from cost_compass.time_utils import utcnow
from cost_compass.validation import ConflictError

from conftest import give_access


def _explicit_grant(session, user, name, expires_at=None):
    permission = session.query(Permission).filter_by(name=name).first()
    session.add(UserPermission(
        user_id=user.id,
        permission_id=permission.id,
        granted_at=utcnow(),
        expires_at=expires_at,
    ))
    session.commit()
    permission_cache.invalidate_user(user.id)


class TestMembership:
    """has_permission / has_any_permission / has_all_permissions."""

    def test_role_set_applies(self, catalog, supervisor):
        assert permission_service.has_permission(supervisor, "financial.food_costs.create")
        assert not permission_service.has_permission(supervisor, "reports.export")

    def test_user_id_is_accepted(self, catalog, supervisor):
        assert permission_service.has_permission(supervisor.id, "dashboard.view")

    def test_unknown_permission_is_never_held(self, catalog, super_admin):
        assert not permission_service.has_permission(super_admin, "reports.teleport")

    def test_super_admin_holds_everything(self, catalog, super_admin):
        assert permission_service.get_user_permissions(super_admin) == frozenset(ALL_PERMISSION_CODES)

    def test_any_and_all(self, catalog, supervisor):
        assert permission_service.has_any_permission(supervisor, ["reports.export", "dashboard.view"])
        assert not permission_service.has_all_permissions(supervisor, ["reports.export", "dashboard.view"])
        assert permission_service.has_all_permissions(supervisor, ["dashboard.view", "reports.basic.read"])

    def test_empty_requirements_fail_closed(self, catalog, super_admin):
        assert not permission_service.has_any_permission(super_admin, [])
        assert not permission_service.has_all_permissions(super_admin, [])

    def test_missing_user_holds_nothing(self, catalog):
        assert permission_service.get_user_permissions(None) == frozenset()
        assert permission_service.get_user_permissions(987654) == frozenset()

    def test_inactive_user_holds_nothing(self, catalog, make_user):
        user = make_user(Role.PROPERTY_MANAGER, is_active=False)
        assert permission_service.get_user_permissions(user) == frozenset()
        assert not permission_service.is_admin(user)


class TestExplicitGrants:
    """UserPermission rows add to the role set until they expire."""

    def test_grant_adds_permission(self, catalog, supervisor):
        _explicit_grant(catalog, supervisor, "reports.export")
        assert permission_service.has_permission(supervisor, "reports.export")

    def test_expired_grant_is_ignored(self, catalog, supervisor):
        _explicit_grant(catalog, supervisor, "reports.export", expires_at=utcnow() - timedelta(minutes=1))
        assert not permission_service.has_permission(supervisor, "reports.export")
        assert permission_service.get_explicit_grants(supervisor.id) == []

    def test_service_grant_and_revoke(self, catalog, super_admin, supervisor):
        permission_service.grant_user_permission(
            user_id=supervisor.id,
            permission_name="reports.export",
            granted_by_user_id=super_admin.id,
        )
        assert permission_service.has_permission(supervisor, "reports.export")

        assert permission_service.revoke_user_permission(
            user_id=supervisor.id,
            permission_name="reports.export",
            revoked_by_user_id=super_admin.id,
        ) is True
        assert not permission_service.has_permission(supervisor, "reports.export")

    def test_revoking_missing_grant_returns_false(self, catalog, super_admin, supervisor):
        assert permission_service.revoke_user_permission(
            user_id=supervisor.id,
            permission_name="reports.export",
            revoked_by_user_id=super_admin.id,
        ) is False

    def test_regrant_updates_single_row(self, catalog, super_admin, supervisor):
        later = utcnow() + timedelta(days=7)
        for expires_at in (None, later):
            permission_service.grant_user_permission(
                user_id=supervisor.id,
                permission_name="reports.export",
                granted_by_user_id=super_admin.id,
                expires_at=expires_at,
            )
        grants = catalog.query(UserPermission).filter_by(user_id=supervisor.id).all()
        assert len(grants) == 1
        assert grants[0].expires_at is not None


class TestPersistedRoleMatrix:
    """Editing a role starts from its defaults; an emptied role stays empty."""

    def test_removed_row_is_no_longer_held(self, seeded, super_admin, supervisor):
        assert permission_service.has_permission(supervisor, "reports.basic.read")
        role_permission_service.remove_permission_from_role(
            actor_id=super_admin.id, role=Role.SUPERVISOR, permission="reports.basic.read"
        )
        assert not permission_service.has_permission(supervisor, "reports.basic.read")

    def test_first_assign_adds_to_defaults(self, catalog, super_admin, supervisor):
        defaults = get_role_permissions(Role.SUPERVISOR)
        role_permission_service.assign_permission_to_role(
            actor_id=super_admin.id, role=Role.SUPERVISOR, permission="reports.export"
        )
        held = permission_service.get_user_permissions(supervisor)
        assert held == defaults | {"reports.export"}
        assert permission_service.is_role_customized(Role.SUPERVISOR)

    def test_assign_then_remove_never_widens(self, catalog, super_admin, supervisor):
        defaults = get_role_permissions(Role.SUPERVISOR)
        role_permission_service.assign_permission_to_role(
            actor_id=super_admin.id, role=Role.SUPERVISOR, permission="reports.export"
        )
        role_permission_service.remove_permission_from_role(
            actor_id=super_admin.id, role=Role.SUPERVISOR, permission="reports.export"
        )
        assert permission_service.get_role_permission_set(Role.SUPERVISOR) == defaults

    def test_first_remove_keeps_other_defaults(self, catalog, super_admin, supervisor):
        defaults = get_role_permissions(Role.SUPERVISOR)
        role_permission_service.remove_permission_from_role(
            actor_id=super_admin.id, role=Role.SUPERVISOR, permission="reports.basic.read"
        )
        held = permission_service.get_user_permissions(supervisor)
        assert held == defaults - {"reports.basic.read"}

    def test_emptied_role_stays_empty(self, catalog, super_admin, supervisor):
        ids = [
            pid for (pid,) in catalog.query(Permission.id)
            .filter(Permission.name.in_(sorted(get_role_permissions(Role.SUPERVISOR))))
            .all()
        ]
        result = role_permission_service.bulk_remove_permissions_from_role(
            actor_id=super_admin.id, role=Role.SUPERVISOR, permission_ids=ids
        )
        assert result == {"removed": len(ids), "not_found": 0}

        permission_cache.clear_all()
        assert permission_service.get_user_permissions(supervisor) == frozenset()
        assert not permission_service.has_permission(supervisor, "dashboard.view")

    def test_rejected_edit_leaves_role_untouched(self, catalog, super_admin):
        with pytest.raises(ConflictError):
            role_permission_service.assign_permission_to_role(
                actor_id=super_admin.id, role=Role.SUPERVISOR, permission="dashboard.view"
            )
        assert not permission_service.is_role_customized(Role.SUPERVISOR)
        assert catalog.query(RolePermission).filter_by(role=Role.SUPERVISOR).count() == 0

    def test_reseeding_does_not_restore_removed_rows(self, seeded, super_admin, supervisor):
        role_permission_service.remove_permission_from_role(
            actor_id=super_admin.id, role=Role.SUPERVISOR, permission="reports.basic.read"
        )
        assert permission_service.assign_default_role_permissions() == 0
        assert not permission_service.has_permission(supervisor, "reports.basic.read")


class TestRoleQueries:
    """Role comparisons."""

    def test_role_helpers(self, catalog, super_admin, manager, supervisor):
        assert permission_service.is_super_admin(super_admin)
        assert permission_service.is_admin(super_admin)
        assert not permission_service.is_admin(manager)
        assert permission_service.has_higher_access(manager, supervisor)
        assert not permission_service.has_higher_access(supervisor, manager)
        assert permission_service.get_user_access_hierarchy(None) == -1


class TestRouteAccess:
    """can_access_route against the route map."""

    def test_unmapped_route_is_allowed(self, catalog, supervisor):
        assert permission_service.can_access_route(supervisor, "/dashboard/help")

    def test_permission_gated_route(self, catalog, supervisor, manager):
        assert not permission_service.can_access_route(supervisor, "/dashboard/users")
        assert permission_service.can_access_route(manager, "/dashboard/users")

    def test_property_required_route_checks_level(self, catalog, supervisor, property_a):
        path = "/dashboard/food-cost-input"
        assert not permission_service.can_access_route(supervisor, path, property_a.id)
        give_access(supervisor, property_a, AccessLevel.DATA_ENTRY)
        assert permission_service.can_access_route(supervisor, path, property_a.id)

    def test_missing_user_is_denied(self, catalog):
        assert not permission_service.can_access_route(None, "/dashboard/help")


class TestRequirePermission:
    """require_permission raises and audits denials."""

    def test_denial_is_audited(self, catalog, supervisor):
        with pytest.raises(PermissionDeniedError):
            permission_service.require_permission(supervisor, "reports.export", resource="/api/reports")

        entry = catalog.query(AuditLog).filter_by(action="PERMISSION_DENIED").one()
        assert entry.user_id == supervisor.id
        assert entry.success is False
        assert entry.details == {"permission": "reports.export"}

    def test_missing_user_needs_authentication(self, catalog):
        with pytest.raises(AuthenticationRequiredError):
            permission_service.require_permission(None, "dashboard.view")

    def test_granted_check_is_silent(self, catalog, supervisor):
        permission_service.require_permission(supervisor, "dashboard.view")
        assert catalog.query(AuditLog).count() == 0
