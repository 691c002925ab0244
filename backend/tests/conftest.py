"""
Pytest fixtures for Cost Compass backend tests.

Provides test database setup, users per role, properties and auth headers.
"""

import pytest

from cost_compass import create_app
from cost_compass.extensions import db, notification_bus, permission_cache
from cost_compass.models import Outlet, Property, PropertyAccess, User
from cost_compass.permissions import Role
from cost_compass.services import permission_service, session_service
from cost_compass.services.auth_service import hash_password
from cost_compass.time_utils import utcnow


TEST_PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'SSE_HEARTBEAT_INTERVAL': 1,
        'SSE_SWEEPER_ENABLED': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database, cache and stream registry for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        permission_cache.clear_all()
        notification_bus.shutdown()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        notification_bus.shutdown()


@pytest.fixture(scope='function')
def catalog(db_session):
    """Permission rows only; roles resolve to the static matrix until edited."""
    permission_service.initialize_permissions()
    return db_session


@pytest.fixture(scope='function')
def seeded(catalog):
    """Permission rows plus the default role matrix persisted."""
    permission_service.assign_default_role_permissions()
    return catalog


@pytest.fixture(scope='function')
def make_user(db_session):
    """Factory: make_user(role, email=None) -> persisted active User."""
    counter = {"n": 0}

    def _make(role=Role.USER, email=None, is_active=True):
        counter["n"] += 1
        user = User(
            email=email or f"{role}{counter['n']}@costcompass.test",
            name=f"{role} {counter['n']}",
            role=role,
            password_hash=hash_password(TEST_PASSWORD, rounds=4),
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture(scope='function')
def super_admin(make_user):
    return make_user(Role.SUPER_ADMIN, email="admin@costcompass.test")


@pytest.fixture(scope='function')
def supervisor(make_user):
    return make_user(Role.SUPERVISOR, email="supervisor@costcompass.test")


@pytest.fixture(scope='function')
def manager(make_user):
    return make_user(Role.PROPERTY_MANAGER, email="manager@costcompass.test")


@pytest.fixture(scope='function')
def property_a(db_session):
    """Create Property A with one outlet."""
    prop = Property(name="Harbour Hotel", property_code="HH", is_active=True)
    db_session.add(prop)
    db_session.commit()
    db_session.add(Outlet(property_id=prop.id, name="Harbour Grill"))
    db_session.commit()
    return prop


@pytest.fixture(scope='function')
def property_b(db_session):
    """Create Property B with one outlet."""
    prop = Property(name="Mountain Lodge", property_code="ML", is_active=True)
    db_session.add(prop)
    db_session.commit()
    db_session.add(Outlet(property_id=prop.id, name="Lodge Bar"))
    db_session.commit()
    return prop


def give_access(user, prop, level, expires_at=None):
    """Insert a PropertyAccess row directly (bypasses the admin checks)."""
    access = PropertyAccess(
        user_id=user.id,
        property_id=prop.id,
        access_level=level,
        granted_at=utcnow(),
        expires_at=expires_at,
    )
    db.session.add(access)
    db.session.commit()
    permission_cache.invalidate_user(user.id)
    return access


def auth_headers_for(user) -> dict:
    """Helper to create Authorization headers for a user."""
    _, token = session_service.create_session(user.id)
    return {'Authorization': f'Bearer {token}'}
