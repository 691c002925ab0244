"""
Permission template tests.

Verifies:
- CRUD with unique names and soft delete
- Application to roles, users and properties, reported per target
- Generation from the static matrix and usage stats
"""

from datetime import timedelta

import pytest

from cost_compass.extensions import db
from cost_compass.models import Permission, PermissionTemplate, RolePermission, UserPermission
from cost_compass.permissions import ACCESS_LEVEL_ORDER, ROLE_HIERARCHY, AccessLevel, Role, get_role_permissions
from cost_compass.services import permission_service, property_access_service
from cost_compass.services import template_service as ts
from cost_compass.time_utils import utcnow
from cost_compass.validation import ConflictError, NotFoundError, ValidationError

from conftest import auth_headers_for, give_access


def role_permission_names(role):
    return {row.permission.name for row in RolePermission.query.filter_by(role=role).all()}


@pytest.fixture
def export_template(catalog, super_admin):
    return ts.create_template(
        actor_id=super_admin.id,
        name="Reporting Pack",
        permissions=["reports.export", "reports.detailed.read"],
        description="Export and detailed reports",
    )


class TestTemplateCrud:
    def test_create_sorts_and_dedupes(self, catalog, super_admin):
        template = ts.create_template(
            actor_id=super_admin.id,
            name="  Night Audit  ",
            permissions=["reports.export", "dashboard.view", "reports.export"],
        )
        assert template.name == "Night Audit"
        assert template.permissions == ["dashboard.view", "reports.export"]
        assert template.template_type == PermissionTemplate.TYPE_ROLE

    def test_duplicate_name(self, export_template, super_admin):
        with pytest.raises(ConflictError):
            ts.create_template(actor_id=super_admin.id, name="Reporting Pack", permissions=["dashboard.view"])

    def test_invalid_fields(self, catalog, super_admin):
        with pytest.raises(ValidationError):
            ts.create_template(actor_id=super_admin.id, name="Bad", permissions=["reports.teleport"])
        with pytest.raises(ValidationError):
            ts.create_template(actor_id=super_admin.id, name="Bad", permissions=[], template_type="team_template")
        with pytest.raises(ValidationError):
            ts.create_template(
                actor_id=super_admin.id, name="Bad", permissions=[], conditions={"access_level": "god"}
            )

    def test_update(self, export_template, super_admin):
        template = ts.update_template(
            actor_id=super_admin.id,
            template_id=export_template.id,
            updates={"description": "changed", "permissions": ["dashboard.view"]},
        )
        assert template.description == "changed"
        assert template.permissions == ["dashboard.view"]

        with pytest.raises(ValidationError):
            ts.update_template(actor_id=super_admin.id, template_id=export_template.id, updates={"owner": 1})

    def test_soft_delete_hides_from_listing(self, export_template, super_admin):
        ts.delete_template(actor_id=super_admin.id, template_id=export_template.id)
        assert ts.list_templates() == []
        assert [t.id for t in ts.list_templates(include_inactive=True)] == [export_template.id]

    def test_clone(self, export_template, super_admin):
        clone = ts.clone_template(actor_id=super_admin.id, template_id=export_template.id, new_name="Reporting Copy")
        assert clone.permissions == export_template.permissions
        assert clone.description == "Cloned from: Reporting Pack"

    def test_missing_template(self, catalog):
        with pytest.raises(NotFoundError):
            ts.get_template(31337)

    def test_categories(self, export_template):
        categories = ts.get_template_categories()
        assert [c["type"] for c in categories] == list(PermissionTemplate.TYPES)
        assert [t["name"] for t in categories[0]["templates"]] == ["Reporting Pack"]


class TestApplyTemplate:
    def test_apply_to_role(self, export_template, super_admin, supervisor):
        result = ts.apply_template(
            actor_id=super_admin.id,
            template_id=export_template.id,
            target_type="role",
            target_ids=[Role.SUPERVISOR],
        )
        assert result["success"] is True
        assert role_permission_names(Role.SUPERVISOR) == (
            get_role_permissions(Role.SUPERVISOR) | {"reports.export", "reports.detailed.read"}
        )
        assert permission_service.has_permission(supervisor, "reports.export")
        assert permission_service.has_permission(supervisor, "dashboard.view")

    def test_override_to_nothing_empties_role(self, export_template, super_admin, supervisor):
        result = ts.apply_template(
            actor_id=super_admin.id,
            template_id=export_template.id,
            target_type="role",
            target_ids=[Role.SUPERVISOR],
            options={"override_existing": True, "exclude_permissions": ["reports.export", "reports.detailed.read"]},
        )
        assert result["success"] is True
        assert role_permission_names(Role.SUPERVISOR) == set()
        assert permission_service.get_user_permissions(supervisor) == frozenset()

    def test_role_target_needs_super_admin(self, export_template, make_user):
        property_admin = make_user(Role.PROPERTY_ADMIN)
        result = ts.apply_template(
            actor_id=property_admin.id,
            template_id=export_template.id,
            target_type="role",
            target_ids=[Role.SUPERVISOR],
        )
        assert result["success"] is False
        assert result["results"][0]["status"] == "error"

    def test_apply_to_user_with_options(self, export_template, super_admin, supervisor):
        result = ts.apply_template(
            actor_id=super_admin.id,
            template_id=export_template.id,
            target_type="user",
            target_ids=[supervisor.id, 424242],
            options={"exclude_permissions": ["reports.detailed.read"], "additional_permissions": ["outlets.read"]},
        )
        statuses = [r["status"] for r in result["results"]]
        assert statuses == ["success", "error"]
        assert result["success"] is False

        granted = {
            grant.permission.name
            for grant in UserPermission.query.filter_by(user_id=supervisor.id).all()
        }
        assert granted == {"reports.export", "outlets.read"}

    def test_reapply_restores_expired_grant(self, export_template, super_admin, supervisor):
        permission = Permission.query.filter_by(name="reports.export").one()
        stale = UserPermission(
            user_id=supervisor.id,
            permission_id=permission.id,
            granted_at=utcnow() - timedelta(days=10),
            expires_at=utcnow() - timedelta(days=1),
        )
        db.session.add(stale)
        db.session.commit()
        assert not permission_service.has_permission(supervisor, "reports.export")

        result = ts.apply_template(
            actor_id=super_admin.id,
            template_id=export_template.id,
            target_type="user",
            target_ids=[supervisor.id],
            options={"exclude_permissions": ["reports.detailed.read"]},
        )
        assert result["results"][0]["message"] == "Template applied successfully (1 permission(s) granted)"
        assert permission_service.has_permission(supervisor, "reports.export")

        grant = UserPermission.query.filter_by(user_id=supervisor.id, permission_id=permission.id).one()
        assert grant.expires_at is None
        assert grant.granted_by_user_id == super_admin.id

    def test_reapply_skips_live_grant(self, export_template, super_admin, supervisor):
        permission_service.grant_user_permission(
            user_id=supervisor.id, permission_name="reports.export", granted_by_user_id=super_admin.id
        )
        result = ts.apply_template(
            actor_id=super_admin.id,
            template_id=export_template.id,
            target_type="user",
            target_ids=[supervisor.id],
            options={"exclude_permissions": ["reports.detailed.read"]},
        )
        assert result["results"][0]["message"] == "Template applied successfully (0 permission(s) granted)"

    def test_apply_to_property(self, catalog, super_admin, supervisor, manager, property_a):
        template = ts.create_template(
            actor_id=super_admin.id,
            name="Entry Clerks",
            permissions=["financial.food_costs.create"],
            template_type=PermissionTemplate.TYPE_PROPERTY,
            conditions={"access_level": AccessLevel.DATA_ENTRY},
        )
        result = ts.apply_template(
            actor_id=super_admin.id,
            template_id=template.id,
            target_type="property",
            target_ids=[property_a.id],
            options={"user_ids": [supervisor.id, manager.id]},
        )
        assert result["success"] is True
        assert property_access_service.can_access_property(manager.id, property_a.id, AccessLevel.DATA_ENTRY)

    def test_property_target_needs_user_ids(self, catalog, super_admin, property_a):
        template = ts.create_template(
            actor_id=super_admin.id,
            name="Readers",
            permissions=[],
            template_type=PermissionTemplate.TYPE_PROPERTY,
            conditions={"access_level": AccessLevel.READ_ONLY},
        )
        result = ts.apply_template(
            actor_id=super_admin.id, template_id=template.id, target_type="property", target_ids=[property_a.id]
        )
        assert "user_ids" in result["results"][0]["message"]

    def test_inactive_template_cannot_be_applied(self, export_template, super_admin):
        ts.delete_template(actor_id=super_admin.id, template_id=export_template.id)
        with pytest.raises(NotFoundError):
            ts.apply_template(
                actor_id=super_admin.id, template_id=export_template.id, target_type="role", target_ids=["user"]
            )

    def test_invalid_target_type(self, export_template, super_admin):
        with pytest.raises(ValidationError):
            ts.apply_template(
                actor_id=super_admin.id, template_id=export_template.id, target_type="team", target_ids=[1]
            )

    def test_usage_stats(self, export_template, super_admin, supervisor):
        for _ in range(2):
            ts.apply_template(
                actor_id=super_admin.id,
                template_id=export_template.id,
                target_type="user",
                target_ids=[supervisor.id],
            )
        stats = ts.get_template_usage_stats(export_template.id)
        assert stats["total_applications"] == 2
        assert stats["recent_applications"] == 2
        assert stats["affected_targets"] == 1
        assert stats["last_used"] is not None


class TestGeneration:
    def test_role_templates(self, catalog, super_admin):
        created = ts.generate_role_templates(actor_id=super_admin.id)
        assert len(created) == len(ROLE_HIERARCHY)
        assert ts.generate_role_templates(actor_id=super_admin.id) == []

    def test_property_templates(self, catalog, super_admin):
        created = ts.generate_property_templates(actor_id=super_admin.id)
        assert len(created) == len(ACCESS_LEVEL_ORDER)
        levels = {t.conditions["access_level"] for t in created}
        assert levels == set(ACCESS_LEVEL_ORDER)


class TestTemplateRoutes:
    def test_supervisor_cannot_list(self, client, catalog, supervisor):
        assert client.get("/api/permission-templates", headers=auth_headers_for(supervisor)).status_code == 403

    def test_create_and_duplicate(self, client, catalog, super_admin):
        headers = auth_headers_for(super_admin)
        body = {"name": "Bar Team", "permissions": ["financial.beverage_costs.create"]}
        assert client.post("/api/permission-templates", json=body, headers=headers).status_code == 201
        assert client.post("/api/permission-templates", json=body, headers=headers).status_code == 409

    def test_apply_route(self, client, export_template, super_admin, supervisor, property_a):
        give_access(supervisor, property_a, AccessLevel.READ_ONLY)
        response = client.post(
            f"/api/permission-templates/{export_template.id}/apply",
            json={"target_type": "user", "target_ids": [supervisor.id]},
            headers=auth_headers_for(super_admin),
        )
        assert response.status_code == 200
        assert response.get_json()["success"] is True

    def test_generate_route(self, client, catalog, super_admin):
        response = client.post(
            "/api/permission-templates/generate", json={"kind": "property"}, headers=auth_headers_for(super_admin)
        )
        assert response.get_json()["count"] == len(ACCESS_LEVEL_ORDER)
