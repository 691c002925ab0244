"""
Authentication and user administration tests.

Verifies:
- Login issues a bearer token and returns the permission snapshot
- Failed logins are audited
- Logout and deactivation revoke sessions
- Role changes require users.roles.manage and a higher role
"""

from datetime import timedelta

import pytest

from cost_compass.extensions import db
from cost_compass.models import AuditLog, SessionToken, User
from cost_compass.permissions import AccessLevel, Role
from cost_compass.services import auth_service, permission_service, session_service
from cost_compass.services.auth_service import PasswordValidationError
from cost_compass.services.permission_service import PermissionDeniedError
from cost_compass.time_utils import utcnow
from cost_compass.validation import ConflictError

from conftest import TEST_PASSWORD, auth_headers_for, give_access


class TestPasswords:
    @pytest.mark.parametrize("password", ["short1!", "alllowercase1!", "ALLUPPERCASE1!", "NoDigits!!", "NoSpecial123"])
    def test_weak_passwords_rejected(self, password):
        with pytest.raises(PasswordValidationError):
            auth_service.validate_password_strength(password)

    def test_hash_roundtrip(self):
        hashed = auth_service.hash_password(TEST_PASSWORD, rounds=4)
        assert auth_service.verify_password(TEST_PASSWORD, hashed)
        assert not auth_service.verify_password("Wrong123!", hashed)

    def test_duplicate_email(self, db_session):
        auth_service.create_user("Chef@CostCompass.test", TEST_PASSWORD, bcrypt_rounds=4)
        with pytest.raises(ConflictError):
            auth_service.create_user("chef@costcompass.test", TEST_PASSWORD, bcrypt_rounds=4)


class TestLogin:
    def test_login_returns_token_and_permissions(self, client, catalog, supervisor, property_a):
        give_access(supervisor, property_a, AccessLevel.DATA_ENTRY)
        response = client.post("/api/auth/login", json={"email": supervisor.email, "password": TEST_PASSWORD})

        assert response.status_code == 200
        body = response.get_json()
        assert body["token"]
        assert "financial.food_costs.create" in body["permissions"]
        assert body["properties"] == [{"property_id": property_a.id, "access_level": AccessLevel.DATA_ENTRY}]

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['token']}"})
        assert me.get_json()["user"]["email"] == supervisor.email

    def test_failed_login_is_audited(self, client, catalog, supervisor):
        response = client.post("/api/auth/login", json={"email": supervisor.email, "password": "Nope1234!"})
        assert response.status_code == 401
        entry = AuditLog.query.filter_by(action="LOGIN_FAILED").one()
        assert entry.success is False
        assert entry.details == {"email": supervisor.email}

    def test_missing_fields(self, client, catalog):
        assert client.post("/api/auth/login", json={"email": "x@y.z"}).status_code == 400

    def test_logout_revokes_token(self, client, catalog, supervisor):
        headers = auth_headers_for(supervisor)
        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401

    def test_bad_token(self, client, catalog):
        assert client.get("/api/auth/me", headers={"Authorization": "Bearer nope"}).status_code == 401
        assert client.get("/api/auth/me").status_code == 401

    def test_refresh_permissions(self, client, catalog, super_admin, supervisor):
        headers = auth_headers_for(supervisor)
        before = client.post("/api/auth/refresh-permissions", headers=headers).get_json()["data"]["permissions"]
        assert "reports.export" not in before

        permission_service.grant_user_permission(
            user_id=supervisor.id, permission_name="reports.export", granted_by_user_id=super_admin.id
        )
        after = client.post("/api/auth/refresh-permissions", headers=headers).get_json()
        assert after["success"] is True
        assert "reports.export" in after["data"]["permissions"]
        assert after["data"]["role"] == Role.SUPERVISOR


class TestUserAdministration:
    def test_role_change_by_super_admin(self, catalog, super_admin, supervisor):
        auth_service.set_user_role(actor_id=super_admin.id, user_id=supervisor.id, role=Role.PROPERTY_MANAGER)
        assert permission_service.has_permission(supervisor.id, "reports.export")

    def test_role_change_needs_permission(self, catalog, manager, supervisor):
        with pytest.raises(PermissionDeniedError):
            auth_service.set_user_role(actor_id=manager.id, user_id=supervisor.id, role=Role.USER)

    def test_deactivation_revokes_sessions(self, client, catalog, super_admin, supervisor):
        headers = auth_headers_for(supervisor)
        auth_service.deactivate_user(actor_id=super_admin.id, user_id=supervisor.id)

        assert client.get("/api/auth/me", headers=headers).status_code == 401
        assert permission_service.get_user_permissions(supervisor.id) == frozenset()
        with pytest.raises(ValueError):
            session_service.create_session(supervisor.id)

    def test_cannot_deactivate_self(self, catalog, super_admin):
        with pytest.raises(PermissionDeniedError):
            auth_service.deactivate_user(actor_id=super_admin.id, user_id=super_admin.id)

    def test_create_user_route_requires_permission(self, client, catalog, manager):
        response = client.post(
            "/api/users",
            json={"email": "new@costcompass.test", "password": TEST_PASSWORD},
            headers=auth_headers_for(manager),
        )
        assert response.status_code == 403

    def test_create_user_route(self, client, catalog, super_admin):
        response = client.post(
            "/api/users",
            json={"email": "new@costcompass.test", "password": TEST_PASSWORD, "role": Role.SUPERVISOR},
            headers=auth_headers_for(super_admin),
        )
        assert response.status_code == 201
        assert User.query.filter_by(email="new@costcompass.test").one().role == Role.SUPERVISOR

        weak = client.post(
            "/api/users",
            json={"email": "weak@costcompass.test", "password": "weak"},
            headers=auth_headers_for(super_admin),
        )
        assert weak.status_code == 400


class TestSessions:
    def test_idle_session_is_revoked(self, catalog, supervisor):
        session, token = session_service.create_session(supervisor.id)
        session.last_used_at = utcnow() - timedelta(hours=3)
        db.session.commit()

        assert session_service.validate_session(token) is None
        assert session.is_revoked is True
        assert session.revoked_reason == "Idle timeout"

    def test_validate_bumps_last_used(self, catalog, supervisor):
        session, token = session_service.create_session(supervisor.id)
        session.last_used_at = utcnow() - timedelta(minutes=30)
        db.session.commit()

        context = session_service.validate_session(token)
        assert context.user.id == supervisor.id
        assert utcnow() - context.session.last_used_at < timedelta(minutes=1)

    def test_revoke_unknown_token(self, catalog):
        assert session_service.revoke_session("not-a-token") is False

    def test_cleanup_only_purges_old_rows(self, catalog, supervisor):
        _, old_token = session_service.create_session(supervisor.id)
        session_service.create_session(supervisor.id)
        session_service.revoke_session(old_token)

        assert session_service.cleanup_expired_sessions() == 0
        assert session_service.cleanup_expired_sessions(now=utcnow() + timedelta(days=31)) == 2
        assert SessionToken.query.count() == 0
