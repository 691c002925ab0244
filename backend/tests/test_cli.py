"""
Flask CLI command tests.

Verifies:
- system init is idempotent
- Role grants and checks from the command line
- Property access administration and the compliance scan
"""

import pytest

from cost_compass.models import Permission, User
from cost_compass.permissions import AccessLevel, Role

from conftest import give_access


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


class TestSystemCommands:
    def test_init_is_idempotent(self, runner, db_session):
        result = runner.invoke(args=["system", "init"])
        assert result.exit_code == 0
        assert "PASS Created super admin: admin@costcompass.local" in result.output
        assert db_session.query(Permission).count() > 0

        again = runner.invoke(args=["system", "init"])
        assert "PASS Created 0 permissions, 0 role assignments" in again.output
        assert "WARN  Super admin 'admin@costcompass.local' already exists" in again.output
        assert db_session.query(User).filter_by(role=Role.SUPER_ADMIN).count() == 1

    def test_init_rejects_weak_password(self, runner, db_session):
        result = runner.invoke(args=["system", "init", "--password", "weak"])
        assert "FAIL Password validation failed" in result.output

    def test_cleanup_sessions(self, runner, catalog):
        result = runner.invoke(args=["system", "cleanup-sessions"])
        assert "Deleted 0 old sessions." in result.output


class TestPermsCommands:
    def test_grant_then_check(self, runner, seeded, super_admin, supervisor):
        result = runner.invoke(args=["perms", "check", supervisor.email, "reports.export"])
        assert "DOES NOT HAVE" in result.output

        result = runner.invoke(args=["perms", "grant", Role.SUPERVISOR, "reports.export"])
        assert "PASS Granted 'reports.export' to role 'supervisor'" in result.output

        result = runner.invoke(args=["perms", "check", supervisor.email, "reports.export"])
        assert f"PASS User '{supervisor.email}' HAS permission 'reports.export'" in result.output

    def test_grant_without_super_admin(self, runner, seeded):
        result = runner.invoke(args=["perms", "grant", Role.SUPERVISOR, "reports.export"])
        assert "FAIL No super admin found" in result.output

    def test_grant_by_non_admin_actor(self, runner, seeded, manager):
        result = runner.invoke(args=["perms", "grant", Role.SUPERVISOR, "reports.export", "--actor", manager.email])
        assert "FAIL Error" in result.output

    def test_list_by_role(self, runner, catalog):
        result = runner.invoke(args=["perms", "list", "--role", Role.SUPERVISOR])
        assert result.exit_code == 0
        assert "dashboard.view" in result.output


class TestAccessCommands:
    def test_grant_and_list(self, runner, catalog, super_admin, supervisor, property_a):
        result = runner.invoke(
            args=["access", "grant", supervisor.email, str(property_a.id), AccessLevel.DATA_ENTRY]
        )
        assert "PASS Granted 'data_entry'" in result.output

        result = runner.invoke(args=["access", "list", "--user", supervisor.email])
        assert supervisor.email in result.output
        assert "Total: 1 grants" in result.output

    def test_invalid_level(self, runner, catalog, super_admin, supervisor, property_a):
        result = runner.invoke(args=["access", "grant", supervisor.email, str(property_a.id), "emperor"])
        assert "FAIL Error" in result.output

    def test_revoke(self, runner, catalog, super_admin, supervisor, property_a):
        give_access(supervisor, property_a, AccessLevel.READ_ONLY)
        result = runner.invoke(args=["access", "revoke", supervisor.email, str(property_a.id)])
        assert "PASS Revoked access" in result.output

        result = runner.invoke(args=["access", "list", "--property", str(property_a.id)])
        assert "Total: 0 grants" in result.output


class TestMaintenanceCommands:
    def test_compliance_scan(self, runner, catalog, super_admin, supervisor):
        result = runner.invoke(args=["compliance", "scan"])
        assert "Scanned users:    2" in result.output
        assert "Violations found: 0" in result.output

    def test_cache_stats(self, runner, catalog):
        result = runner.invoke(args=["cache", "stats"])
        assert result.exit_code == 0
        assert "Health:" in result.output
