# Overview: Server-sent event fan-out of permission changes to connected clients.

"""
Change Notification Bus

WHY: When an admin changes roles or access, clients with an open session
should refetch their permissions without waiting for a page reload.

MODEL:
- One SSEConnection per subscribed client, registered in this bus
- Each connection owns a bounded queue; the HTTP stream generator drains it
- A heartbeat is emitted whenever the queue stays idle for one interval
- A sweeper thread reaps connections idle past the stale threshold

DELIVERY CONTRACT (best effort):
- No acknowledgement, no replay, no ordering across connections
- A connection that cannot accept an event (closed, queue full) is pruned
  and the event counts as undelivered for it
- Publishing never raises into the caller

Connection lifecycle: CONNECTING -> OPEN -> (message | heartbeat)* -> CLOSED
"""

from __future__ import annotations

import json
import logging
import queue
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Iterator

from ..time_utils import to_utc_z, utcnow


logger = logging.getLogger(__name__)


EVENT_CONNECTED = "connected"
EVENT_HEARTBEAT = "heartbeat"
EVENT_PERMISSION_UPDATED = "permission_updated"
EVENT_ROLE_UPDATED = "role_updated"
EVENT_USER_UPDATED = "user_updated"

EVENT_TYPES = (
    EVENT_CONNECTED,
    EVENT_HEARTBEAT,
    EVENT_PERMISSION_UPDATED,
    EVENT_ROLE_UPDATED,
    EVENT_USER_UPDATED,
)

# Wire names for optional event fields (the stream payload is camelCase)
_FIELD_NAMES = {
    "user_id": "userId",
    "user_role": "userRole",
    "affected_role": "affectedRole",
    "affected_users": "affectedUsers",
    "permission_name": "permissionName",
    "action": "action",
}


def build_event(
    event_type: str,
    message: str,
    *,
    requires_refresh: bool = False,
    timestamp: str | None = None,
    **fields,
) -> dict:
    """
    Build a stream event payload.

    Optional fields (user_id, user_role, affected_role, affected_users,
    permission_name, action) are included only when not None.
    """
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown event type: {event_type}")

    event = {
        "type": event_type,
        "message": message,
        "timestamp": timestamp or to_utc_z(utcnow()),
        "requiresRefresh": requires_refresh,
    }
    for name, value in fields.items():
        if name not in _FIELD_NAMES:
            raise TypeError(f"Unexpected event field: {name}")
        if value is not None:
            event[_FIELD_NAMES[name]] = value
    return event


def format_sse(event: dict) -> str:
    """Encode one event as an SSE `data:` frame."""
    return f"data: {json.dumps(event)}\n\n"


@dataclass
class SSEConnection:
    """An open permission-update stream for one client."""

    user_id: int
    user_role: str
    connection_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    connected_at: float = 0.0
    last_activity: float = 0.0
    queue: "queue.Queue[dict | None]" = field(default_factory=lambda: queue.Queue(maxsize=100))
    closed: bool = False

    def to_dict(self) -> dict:
        return {
            "connection_id": self.connection_id,
            "user_id": self.user_id,
            "user_role": self.user_role,
            "connected_at": self.connected_at,
            "last_activity": self.last_activity,
        }


class NotificationBus:
    """
    In-memory connection registry plus targeted fan-out.

    Per process only: a multi-instance deployment needs a shared
    pub/sub layered on top for cross-instance delivery.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        heartbeat_interval: float = 30,
        stale_after: float = 10 * 60,
        sweep_interval: float = 5 * 60,
        queue_size: int = 100,
    ):
        self._connections: dict[str, SSEConnection] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self.heartbeat_interval = heartbeat_interval
        self.stale_after = stale_after
        self.sweep_interval = sweep_interval
        self.queue_size = queue_size
        self._stopping = threading.Event()
        self._sweeper: threading.Thread | None = None

    def init_app(self, app) -> None:
        self.heartbeat_interval = app.config.get("SSE_HEARTBEAT_INTERVAL", self.heartbeat_interval)
        self.stale_after = app.config.get("SSE_STALE_CONNECTION_SECONDS", self.stale_after)
        self.sweep_interval = app.config.get("SSE_SWEEP_INTERVAL", self.sweep_interval)
        self.queue_size = app.config.get("SSE_QUEUE_SIZE", self.queue_size)
        app.extensions["notification_bus"] = self

        if app.config.get("SSE_SWEEPER_ENABLED", True) and not app.testing:
            self.start_sweeper()

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def connect(self, user_id: int, user_role: str) -> SSEConnection:
        """Register a stream and queue its `connected` event."""
        now = self._clock()
        connection = SSEConnection(
            user_id=user_id,
            user_role=user_role,
            connected_at=now,
            last_activity=now,
            queue=queue.Queue(maxsize=self.queue_size),
        )
        with self._lock:
            self._connections[connection.connection_id] = connection
            total = len(self._connections)

        connection.queue.put_nowait(build_event(
            EVENT_CONNECTED,
            "Permission update stream connected",
            user_id=user_id,
            user_role=user_role,
        ))

        logger.info(
            "SSE connection opened",
            extra={"connection_id": connection.connection_id, "user_id": user_id, "total_connections": total},
        )
        return connection

    def disconnect(self, connection_id: str) -> bool:
        with self._lock:
            connection = self._connections.pop(connection_id, None)
        if connection is None:
            return False

        connection.closed = True
        try:
            # Wake a stream blocked on get()
            connection.queue.put_nowait(None)
        except queue.Full:
            pass

        logger.info("SSE connection closed", extra={"connection_id": connection_id, "user_id": connection.user_id})
        return True

    def get_connection(self, connection_id: str) -> SSEConnection | None:
        with self._lock:
            return self._connections.get(connection_id)

    def list_connections(self) -> list[dict]:
        with self._lock:
            return [conn.to_dict() for conn in self._connections.values()]

    def update_user_role(self, user_id: int, user_role: str) -> int:
        """Retag every open stream of a user so role fan-out follows a role change."""
        with self._lock:
            connections = [conn for conn in self._connections.values() if conn.user_id == user_id]
            for connection in connections:
                connection.user_role = user_role
        return len(connections)

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._connections)

    def stream(self, connection: SSEConnection, max_events: int | None = None) -> Iterator[str]:
        """
        Yield SSE frames for one connection until it closes.

        Emits a heartbeat whenever no event arrives within
        heartbeat_interval. The connection is removed from the registry
        when the generator finishes for any reason, including the WSGI
        server closing it after a failed socket write.
        """
        sent = 0
        try:
            while not self._stopping.is_set():
                try:
                    event = connection.queue.get(timeout=self.heartbeat_interval)
                except queue.Empty:
                    event = build_event(EVENT_HEARTBEAT, "heartbeat")

                if event is None:
                    break

                yield format_sse(event)
                connection.last_activity = self._clock()

                sent += 1
                if max_events is not None and sent >= max_events:
                    break
        finally:
            self.disconnect(connection.connection_id)

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    def broadcast_role_update(self, role: str, event: dict) -> int:
        """Deliver to connections whose user_role equals role."""
        return self.publish_where(lambda conn: conn.user_role == role, event)

    def broadcast_user_update(self, user_id: int, event: dict) -> int:
        """Deliver to every connection of one user."""
        return self.publish_where(lambda conn: conn.user_id == user_id, event)

    def broadcast_permission_update(self, event: dict, exclude_user_id: int | None = None) -> int:
        """Deliver to all connections, optionally skipping one user."""
        return self.publish_where(lambda conn: conn.user_id != exclude_user_id, event)

    def publish_where(self, predicate: Callable[[SSEConnection], bool], event: dict) -> int:
        """
        Queue event on every matching connection. Returns the delivered count.

        Connections that cannot take the event are pruned.
        """
        with self._lock:
            targets = [conn for conn in self._connections.values() if predicate(conn)]

        delivered = 0
        for connection in targets:
            if connection.closed:
                self.disconnect(connection.connection_id)
                continue
            try:
                connection.queue.put_nowait(event)
                delivered += 1
            except queue.Full:
                logger.warning(
                    "SSE delivery failed; pruning connection",
                    extra={"connection_id": connection.connection_id, "user_id": connection.user_id},
                )
                self.disconnect(connection.connection_id)

        logger.debug(
            "SSE event published",
            extra={"event_type": event.get("type"), "targets": len(targets), "delivered": delivered},
        )
        return delivered

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def sweep_stale(self) -> int:
        """Remove connections idle longer than stale_after. Returns count removed."""
        cutoff = self._clock() - self.stale_after
        with self._lock:
            stale = [cid for cid, conn in self._connections.items() if conn.last_activity < cutoff]

        for connection_id in stale:
            self.disconnect(connection_id)

        if stale:
            logger.info("Swept stale SSE connections", extra={"removed": len(stale)})
        return len(stale)

    def start_sweeper(self) -> None:
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stopping.clear()
        self._sweeper = threading.Thread(target=self._sweep_loop, name="sse-stale-sweeper", daemon=True)
        self._sweeper.start()

    def _sweep_loop(self) -> None:
        while not self._stopping.wait(self.sweep_interval):
            try:
                self.sweep_stale()
            except Exception:
                logger.exception("SSE stale sweep failed")

    def shutdown(self) -> None:
        """Stop the sweeper and close every open stream."""
        self._stopping.set()
        with self._lock:
            connection_ids = list(self._connections)
        for connection_id in connection_ids:
            self.disconnect(connection_id)
        if self._sweeper is not None:
            self._sweeper.join(timeout=1)
            self._sweeper = None
        self._stopping.clear()

    def get_stats(self) -> dict:
        with self._lock:
            connections = list(self._connections.values())

        by_role: dict[str, int] = {}
        by_user: dict[int, int] = {}
        for conn in connections:
            by_role[conn.user_role] = by_role.get(conn.user_role, 0) + 1
            by_user[conn.user_id] = by_user.get(conn.user_id, 0) + 1

        return {
            "total_connections": len(connections),
            "connections_by_role": by_role,
            "connections_by_user": by_user,
        }
