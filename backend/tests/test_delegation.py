"""
Permission delegation tests.

Verifies:
- Delegators can only hand over what they hold, in the same scope
- Global vs property-scoped delegations
- Revocation rules and expiry cleanup
"""

from datetime import timedelta

import pytest

from cost_compass.models import PermissionDelegation
from cost_compass.permissions import AccessLevel, Role
from cost_compass.services import delegation_service as ds
from cost_compass.services import permission_service, property_access_service
from cost_compass.services.permission_service import PermissionDeniedError
from cost_compass.time_utils import utcnow
from cost_compass.validation import NotFoundError, ValidationError

from conftest import auth_headers_for, give_access


class TestDelegate:
    def test_global_delegation_adds_permission(self, catalog, manager, supervisor):
        assert not permission_service.has_permission(supervisor, "reports.export")

        delegation = ds.delegate_permissions(
            delegator_id=manager.id,
            delegatee_id=supervisor.id,
            permissions=["reports.export"],
            reason="Annual leave",
        )

        assert delegation.is_active
        assert permission_service.has_permission(supervisor, "reports.export")

    def test_cannot_delegate_unheld_permission(self, catalog, manager, supervisor):
        with pytest.raises(PermissionDeniedError):
            ds.delegate_permissions(delegator_id=supervisor.id, delegatee_id=manager.id, permissions=["reports.export"])

    def test_cannot_delegate_to_self(self, catalog, manager):
        with pytest.raises(ValidationError):
            ds.delegate_permissions(delegator_id=manager.id, delegatee_id=manager.id, permissions=["reports.export"])

    def test_rejects_empty_past_and_unknown(self, catalog, manager, supervisor):
        with pytest.raises(ValidationError):
            ds.delegate_permissions(delegator_id=manager.id, delegatee_id=supervisor.id, permissions=[])
        with pytest.raises(ValidationError):
            ds.delegate_permissions(
                delegator_id=manager.id,
                delegatee_id=supervisor.id,
                permissions=["reports.export"],
                expires_at=utcnow() - timedelta(minutes=1),
            )
        with pytest.raises(NotFoundError):
            ds.delegate_permissions(delegator_id=manager.id, delegatee_id=777777, permissions=["reports.export"])

    def test_property_scope_requires_delegator_access(self, catalog, manager, supervisor, property_a):
        with pytest.raises(PermissionDeniedError):
            ds.delegate_permissions(
                delegator_id=manager.id,
                delegatee_id=supervisor.id,
                permissions=["reports.export"],
                property_id=property_a.id,
            )

    def test_property_scoped_delegation(self, catalog, manager, supervisor, property_a, property_b):
        give_access(manager, property_a, AccessLevel.MANAGEMENT)
        ds.delegate_permissions(
            delegator_id=manager.id,
            delegatee_id=supervisor.id,
            permissions=["reports.export"],
            property_id=property_a.id,
        )

        assert property_access_service.has_property_permission(supervisor.id, property_a.id, "reports.export")
        assert not property_access_service.has_property_permission(supervisor.id, property_b.id, "reports.export")
        assert not permission_service.has_permission(supervisor, "reports.export")


class TestRevoke:
    @pytest.fixture
    def delegation(self, catalog, manager, supervisor):
        return ds.delegate_permissions(
            delegator_id=manager.id, delegatee_id=supervisor.id, permissions=["reports.export"]
        )

    def test_delegator_revokes(self, delegation, manager, supervisor):
        ds.revoke_delegation(delegation_id=delegation.id, revoked_by_user_id=manager.id)
        assert not permission_service.has_permission(supervisor, "reports.export")

        with pytest.raises(ValidationError):
            ds.revoke_delegation(delegation_id=delegation.id, revoked_by_user_id=manager.id)

    def test_delegatee_cannot_revoke(self, delegation, supervisor):
        with pytest.raises(PermissionDeniedError):
            ds.revoke_delegation(delegation_id=delegation.id, revoked_by_user_id=supervisor.id)

    def test_super_admin_revokes(self, delegation, super_admin):
        revoked = ds.revoke_delegation(delegation_id=delegation.id, revoked_by_user_id=super_admin.id)
        assert revoked.revoked_by_user_id == super_admin.id

    def test_listing(self, delegation, manager, supervisor):
        assert [d.id for d in ds.list_delegations(delegated_by_user_id=manager.id)] == [delegation.id]
        ds.revoke_delegation(delegation_id=delegation.id, revoked_by_user_id=manager.id)
        assert ds.list_delegations(delegated_to_user_id=supervisor.id) == []
        assert len(ds.list_delegations(delegated_to_user_id=supervisor.id, include_inactive=True)) == 1


class TestExpiry:
    def test_cleanup_deactivates_expired(self, catalog, manager, supervisor):
        ds.delegate_permissions(
            delegator_id=manager.id,
            delegatee_id=supervisor.id,
            permissions=["reports.export"],
            expires_at=utcnow() + timedelta(hours=1),
        )
        assert ds.cleanup_expired_delegations() == 0
        assert ds.cleanup_expired_delegations(now=utcnow() + timedelta(hours=2)) == 1
        assert catalog.query(PermissionDelegation).filter_by(is_active=True).count() == 0


class TestDelegationRoutes:
    def test_create_and_revoke(self, client, catalog, manager, supervisor):
        response = client.post(
            "/api/delegations",
            json={"delegated_to_user_id": supervisor.id, "permissions": ["reports.export"]},
            headers=auth_headers_for(manager),
        )
        assert response.status_code == 201
        delegation_id = response.get_json()["delegation"]["id"]

        response = client.post(f"/api/delegations/{delegation_id}/revoke", headers=auth_headers_for(supervisor))
        assert response.status_code == 403

        response = client.get("/api/delegations?direction=received", headers=auth_headers_for(supervisor))
        assert response.get_json()["count"] == 1

    def test_listing_all_requires_super_admin(self, client, catalog, make_user):
        user = make_user(Role.USER)
        response = client.get("/api/delegations?all=true", headers=auth_headers_for(user))
        assert response.status_code == 403
