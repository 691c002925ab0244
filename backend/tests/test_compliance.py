"""
Compliance policy tests.

Verifies:
- Built-in policies and the automated scan
- Blocking vs advisory enforcement in evaluate_action
- Violation de-duplication and resolution
"""

from datetime import datetime

import pytest

from cost_compass.models import AuditLog, CompliancePolicy, ComplianceViolation
from cost_compass.permissions import AccessLevel, Role
from cost_compass.services import compliance_service as cs
from cost_compass.services import permission_service
from cost_compass.validation import ConflictError, ValidationError

from conftest import auth_headers_for, give_access


@pytest.fixture
def manager_with_admin_grant(catalog, super_admin, manager):
    permission_service.grant_user_permission(
        user_id=manager.id,
        permission_name="users.roles.manage",
        granted_by_user_id=super_admin.id,
    )
    return manager


class TestConditions:
    @pytest.mark.parametrize(
        "actual,operator,expected,result",
        [
            ("supervisor", "equals", "supervisor", True),
            ("supervisor", "not_equals", "super_admin", True),
            (51, "greater_than", 50, True),
            (3, "less_than", 2, False),
            ("users.roles.manage", "contains", "roles", True),
            ("users.read", "not_contains", "roles", True),
            (None, "greater_than", 5, False),
            (1, "approximately", 1, False),
        ],
    )
    def test_evaluate_condition(self, actual, operator, expected, result):
        assert cs.evaluate_condition(actual, operator, expected) is result

    def test_validate_rules(self):
        with pytest.raises(ValidationError):
            cs.validate_rules([])
        with pytest.raises(ValidationError):
            cs.validate_rules([{"condition": {"type": "mood", "operator": "equals", "value": 1}}])
        with pytest.raises(ValidationError):
            cs.validate_rules([{"condition": {"type": "user_role", "operator": "equals"}}])


class TestPolicies:
    def test_defaults_are_idempotent(self, db_session):
        assert cs.ensure_default_policies() == len(cs.DEFAULT_POLICIES)
        assert cs.ensure_default_policies() == 0

    def test_active_policies_seed_defaults_and_sort(self, db_session):
        names = [p.name for p in cs.get_active_policies()]
        assert names == ["Administrative Duty Segregation", "Excessive Permissions"]

    def test_create_policy_conflict(self, catalog, super_admin):
        rules = [{"condition": {"type": "user_role", "operator": "equals", "value": Role.USER}}]
        cs.create_policy(actor_id=super_admin.id, name="No plain users", policy_type="access_control", rules=rules)
        with pytest.raises(ConflictError):
            cs.create_policy(actor_id=super_admin.id, name="No plain users", policy_type="access_control", rules=rules)

    def test_invalid_policy_fields(self, catalog, super_admin):
        rules = [{"condition": {"type": "user_role", "operator": "equals", "value": Role.USER}}]
        with pytest.raises(ValidationError):
            cs.create_policy(actor_id=super_admin.id, name="X", policy_type="vibes", rules=rules)
        with pytest.raises(ValidationError):
            cs.create_policy(
                actor_id=super_admin.id, name="X", policy_type="access_control", rules=rules, priority="urgent"
            )

    def test_inactive_policy_is_skipped(self, manager_with_admin_grant, super_admin):
        cs.ensure_default_policies()
        policy = CompliancePolicy.query.filter_by(name="Administrative Duty Segregation").one()
        cs.set_policy_status(actor_id=super_admin.id, policy_id=policy.id, status="inactive")
        assert cs.perform_compliance_scan()["critical_issues"] == 0


class TestScan:
    def test_admin_permission_outside_super_admin(self, manager_with_admin_grant, super_admin, supervisor):
        result = cs.perform_compliance_scan()

        assert result["scanned_users"] == 3
        assert result["violations_found"] == 1
        assert result["critical_issues"] == 1
        assert result["recommendations"][0] == "Address 1 critical compliance issues immediately"

        [violation] = ComplianceViolation.query.all()
        assert violation.user_id == manager_with_admin_grant.id
        assert violation.violation_type == "privilege_escalation"
        assert AuditLog.query.filter_by(action="AUTOMATED_COMPLIANCE_SCAN").count() == 1

    def test_rescan_reuses_open_violation(self, manager_with_admin_grant):
        cs.perform_compliance_scan()
        cs.perform_compliance_scan()
        assert ComplianceViolation.query.count() == 1

    def test_clean_system(self, catalog, super_admin, supervisor):
        result = cs.perform_compliance_scan()
        assert result["violations_found"] == 0
        assert result["recommendations"] == [
            "Schedule regular compliance reviews",
            "Implement automated remediation for common violations",
        ]


class TestEvaluateAction:
    def test_blocking_policy_denies(self, manager_with_admin_grant):
        result = cs.evaluate_action(manager_with_admin_grant.id, "update", "users")
        assert result["allowed"] is False
        assert result["blocked_policies"] == ["Administrative Duty Segregation"]

    def test_clean_user_is_allowed(self, catalog, supervisor):
        result = cs.evaluate_action(supervisor.id, "read", "reports")
        assert result == {"allowed": True, "violations": [], "warnings": [], "blocked_policies": []}

    def test_advisory_time_policy_warns(self, catalog, super_admin, supervisor):
        cs.create_policy(
            actor_id=super_admin.id,
            name="Night Edits",
            policy_type="security_standards",
            rules=[{
                "condition": {"type": "time_based", "operator": "greater_than", "value": 20},
                "message": "Edits after 20:00 need review",
            }],
        )
        result = cs.evaluate_action(
            supervisor.id, "update", "financial_entries", clock=lambda: datetime(2024, 5, 1, 22, 30)
        )
        assert result["allowed"] is True
        assert result["warnings"] == ["Edits after 20:00 need review"]

    def test_access_level_condition(self, catalog, super_admin, supervisor, property_a):
        cs.create_policy(
            actor_id=super_admin.id,
            name="No full control",
            policy_type="access_control",
            enforcement_level="blocking",
            rules=[{"condition": {"type": "access_level", "operator": "greater_than", "value": AccessLevel.MANAGEMENT}}],
        )
        assert cs.evaluate_action(supervisor.id, "read", "x")["allowed"] is True
        give_access(supervisor, property_a, AccessLevel.FULL_CONTROL)
        assert cs.evaluate_action(supervisor.id, "read", "x")["allowed"] is False


class TestResolution:
    def test_resolve_then_conflict(self, manager_with_admin_grant, super_admin):
        cs.perform_compliance_scan()
        violation = ComplianceViolation.query.one()

        resolved = cs.resolve_violation(
            actor_id=super_admin.id, violation_id=violation.id, status="dismissed", notes="Approved exception"
        )
        assert resolved.status == "dismissed"
        assert resolved.details["resolution_notes"] == "Approved exception"

        with pytest.raises(ConflictError):
            cs.resolve_violation(actor_id=super_admin.id, violation_id=violation.id)

    def test_dashboard(self, manager_with_admin_grant):
        cs.perform_compliance_scan()
        dashboard = cs.get_compliance_dashboard()
        assert dashboard["active_violations"] == 1
        assert dashboard["critical_violations"] == 1
        assert dashboard["last_scan_at"] is not None


class TestComplianceRoutes:
    def test_scan_route_requires_super_admin(self, client, catalog, manager):
        response = client.post("/api/compliance/scan", headers=auth_headers_for(manager))
        assert response.status_code == 403

    def test_scan_route(self, client, manager_with_admin_grant, super_admin):
        response = client.post("/api/compliance/scan", headers=auth_headers_for(super_admin))
        assert response.status_code == 200
        assert response.get_json()["critical_issues"] == 1
