"""
Change notification bus tests.

Verifies:
- Event payload shape (camelCase wire fields)
- Role / user / global targeting
- Pruning of connections that cannot take an event
- Stale sweeping and stream framing
"""

import json
import queue

import pytest

from cost_compass.extensions import notification_bus
from cost_compass.permissions import Role
from cost_compass.services import auth_service, permission_notifier, permission_service, role_permission_service
from cost_compass.services.notification_bus import NotificationBus, build_event, format_sse


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now


def drain(connection):
    events = []
    while True:
        try:
            event = connection.queue.get_nowait()
        except queue.Empty:
            return events
        if event is not None:
            events.append(event)


# =============================================================================
# PAYLOADS
# =============================================================================


class TestBuildEvent:
    def test_camel_case_fields(self):
        event = build_event(
            "role_updated",
            "changed",
            requires_refresh=True,
            affected_role="supervisor",
            permission_name="reports.export",
            action="granted",
            user_id=None,
        )
        assert event["type"] == "role_updated"
        assert event["requiresRefresh"] is True
        assert event["affectedRole"] == "supervisor"
        assert event["permissionName"] == "reports.export"
        assert "userId" not in event
        assert event["timestamp"].endswith("Z")

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            build_event("party", "hello")

    def test_unknown_field(self):
        with pytest.raises(TypeError):
            build_event("heartbeat", "hb", colour="blue")

    def test_sse_frame(self):
        frame = format_sse({"type": "heartbeat"})
        assert frame.startswith("data: ")
        assert frame.endswith("\n\n")
        assert json.loads(frame[len("data: "):]) == {"type": "heartbeat"}


# =============================================================================
# REGISTRY AND FAN-OUT
# =============================================================================


class TestConnections:
    def test_connect_queues_connected_event(self):
        bus = NotificationBus()
        conn = bus.connect(7, Role.SUPERVISOR)

        [event] = drain(conn)
        assert event["type"] == "connected"
        assert event["userId"] == 7
        assert event["userRole"] == Role.SUPERVISOR
        assert bus.count == 1

    def test_disconnect(self):
        bus = NotificationBus()
        conn = bus.connect(7, Role.SUPERVISOR)
        assert bus.disconnect(conn.connection_id) is True
        assert bus.disconnect(conn.connection_id) is False
        assert conn.closed
        assert bus.get_connection(conn.connection_id) is None

    def test_targeting(self):
        bus = NotificationBus()
        a = bus.connect(1, Role.SUPERVISOR)
        b = bus.connect(2, Role.PROPERTY_MANAGER)
        c = bus.connect(2, Role.PROPERTY_MANAGER)
        for conn in (a, b, c):
            drain(conn)

        event = build_event("user_updated", "x", requires_refresh=True, user_id=2)
        assert bus.broadcast_user_update(2, event) == 2
        assert drain(a) == []
        assert drain(b) == [event]

        assert bus.broadcast_role_update(Role.SUPERVISOR, event) == 1
        assert bus.broadcast_permission_update(event, exclude_user_id=1) == 2
        assert drain(a) == [event]

    def test_update_user_role_retags_only_that_user(self):
        bus = NotificationBus()
        a = bus.connect(1, Role.SUPERVISOR)
        b = bus.connect(1, Role.SUPERVISOR)
        other = bus.connect(2, Role.SUPERVISOR)
        for conn in (a, b, other):
            drain(conn)

        assert bus.update_user_role(1, Role.PROPERTY_MANAGER) == 2
        assert (a.user_role, b.user_role, other.user_role) == (
            Role.PROPERTY_MANAGER, Role.PROPERTY_MANAGER, Role.SUPERVISOR,
        )

        event = build_event("role_updated", "x", requires_refresh=True, affected_role=Role.SUPERVISOR)
        assert bus.broadcast_role_update(Role.SUPERVISOR, event) == 1
        assert drain(a) == []
        assert drain(other) == [event]

    def test_full_queue_prunes_connection(self):
        bus = NotificationBus(queue_size=1)
        conn = bus.connect(1, Role.USER)

        delivered = bus.broadcast_user_update(1, build_event("user_updated", "x"))

        assert delivered == 0
        assert bus.count == 0
        assert conn.closed

    def test_stats(self):
        bus = NotificationBus()
        bus.connect(1, Role.USER)
        bus.connect(1, Role.USER)
        bus.connect(2, Role.SUPER_ADMIN)
        stats = bus.get_stats()
        assert stats["total_connections"] == 3
        assert stats["connections_by_role"] == {Role.USER: 2, Role.SUPER_ADMIN: 1}
        assert stats["connections_by_user"] == {1: 2, 2: 1}


class TestMaintenance:
    def test_sweep_stale(self):
        clock = FakeClock()
        bus = NotificationBus(clock=clock, stale_after=10)
        old = bus.connect(1, Role.USER)
        clock.now += 8
        fresh = bus.connect(2, Role.USER)
        clock.now += 5

        assert bus.sweep_stale() == 1
        assert bus.get_connection(old.connection_id) is None
        assert bus.get_connection(fresh.connection_id) is not None

    def test_stream_emits_heartbeat_and_unregisters(self):
        bus = NotificationBus(heartbeat_interval=0.01)
        conn = bus.connect(1, Role.USER)

        frames = list(bus.stream(conn, max_events=2))

        types = [json.loads(frame[len("data: "):])["type"] for frame in frames]
        assert types == ["connected", "heartbeat"]
        assert bus.count == 0

    def test_stream_ends_on_disconnect(self):
        bus = NotificationBus(heartbeat_interval=5)
        conn = bus.connect(1, Role.USER)
        stream = bus.stream(conn)
        assert "connected" in next(stream)

        bus.disconnect(conn.connection_id)
        assert list(stream) == []

    def test_shutdown_closes_everything(self):
        bus = NotificationBus()
        bus.connect(1, Role.USER)
        bus.connect(2, Role.USER)
        bus.shutdown()
        assert bus.count == 0


# =============================================================================
# NOTIFIER
# =============================================================================


class TestPermissionNotifier:
    """Targeting rules through the app-wide bus."""

    def test_role_assignment_reaches_only_that_role(self, catalog, super_admin, supervisor, manager):
        manager_conn = notification_bus.connect(manager.id, Role.PROPERTY_MANAGER)
        supervisor_conn = notification_bus.connect(supervisor.id, Role.SUPERVISOR)
        drain(manager_conn)
        drain(supervisor_conn)

        role_permission_service.assign_permission_to_role(
            actor_id=super_admin.id, role=Role.PROPERTY_MANAGER, permission="reports.cross_property.read"
        )

        [event] = drain(manager_conn)
        assert event["type"] == "role_updated"
        assert event["affectedRole"] == Role.PROPERTY_MANAGER
        assert event["permissionName"] == "reports.cross_property.read"
        assert event["action"] == "granted"
        assert event["requiresRefresh"] is True
        assert drain(supervisor_conn) == []
        assert permission_service.has_permission(manager, "reports.export")

    def test_admins_see_role_change_except_actor(self, catalog, super_admin, make_user):
        other_admin = make_user(Role.SUPER_ADMIN)
        actor_conn = notification_bus.connect(super_admin.id, Role.SUPER_ADMIN)
        other_conn = notification_bus.connect(other_admin.id, Role.SUPER_ADMIN)
        drain(actor_conn)
        drain(other_conn)

        permission_notifier.notify_role_permission_update(Role.SUPERVISOR, "reports.export", "granted", super_admin.id)

        assert drain(actor_conn) == []
        [event] = drain(other_conn)
        assert event["type"] == "permission_updated"
        assert event["requiresRefresh"] is False
        assert event["affectedUsers"] == []

    def test_role_change_moves_open_stream(self, catalog, super_admin, supervisor):
        conn = notification_bus.connect(supervisor.id, Role.SUPERVISOR)
        drain(conn)

        auth_service.set_user_role(actor_id=super_admin.id, user_id=supervisor.id, role=Role.PROPERTY_MANAGER)
        [event] = drain(conn)
        assert event["type"] == "user_updated"
        assert event["message"] == "Your role has been changed from supervisor to property_manager"
        assert conn.user_role == Role.PROPERTY_MANAGER

        role_permission_service.assign_permission_to_role(
            actor_id=super_admin.id, role=Role.SUPERVISOR, permission="reports.export"
        )
        assert drain(conn) == []

        role_permission_service.assign_permission_to_role(
            actor_id=super_admin.id, role=Role.PROPERTY_MANAGER, permission="reports.cross_property.read"
        )
        [event] = drain(conn)
        assert event["affectedRole"] == Role.PROPERTY_MANAGER

    def test_user_update(self, db_session):
        conn = notification_bus.connect(42, Role.USER)
        drain(conn)

        assert permission_notifier.notify_user_permission_update(42, "reports.export", "revoked") == 1
        [event] = drain(conn)
        assert event["type"] == "user_updated"
        assert event["userId"] == 42
        assert event["message"] == "Your permission has been revoked: reports.export"

    def test_global_update_skips_actor(self, db_session):
        admin_conn = notification_bus.connect(1, Role.SUPER_ADMIN)
        user_conn = notification_bus.connect(2, Role.USER)
        drain(admin_conn)
        drain(user_conn)

        assert permission_notifier.notify_global_permission_update("Catalog reseeded", admin_user_id=1) == 1
        assert drain(admin_conn) == []
        assert drain(user_conn)[0]["message"] == "Catalog reseeded"
