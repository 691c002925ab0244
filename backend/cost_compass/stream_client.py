# Overview: Client side of the permission-update stream; reconnecting SSE reader plus the cross-tab refresh signal.

"""
Permission Stream Client

WHY: Long-running Python consumers (workers, kiosks, admin scripts) need the
same live refetch behaviour as the browser: hold the stream open, refetch
permissions when the server says so, and tell sibling processes sharing the
same profile to refetch too.

STATUS: connecting -> open -> (reconnecting -> open)* -> closed

RECONNECT: exponential backoff min(base * 2 ** (attempt - 1), max_delay),
base 3 s, capped at 30 s. The attempt counter resets once a stream opens.
401/403 are terminal; the token will not get better by retrying.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Callable

import httpx

from .time_utils import utc_timestamp_ms


logger = logging.getLogger(__name__)


STATUS_CONNECTING = "connecting"
STATUS_OPEN = "open"
STATUS_RECONNECTING = "reconnecting"
STATUS_CLOSED = "closed"

STREAM_PATH = "/api/permissions/stream"
SIGNAL_KEY = "permissions-updated"


class StreamError(Exception):
    """Stream could not be opened or was refused."""


class StreamAuthError(StreamError):
    """Server rejected the token (401/403)."""


class CrossTabSignal:
    """
    File-backed key/value store shared by every client of one profile.

    signal() writes SIGNAL_KEY with the current epoch milliseconds. Other
    clients poll changed_since() with the last value they saw.
    """

    def __init__(self, path: str | os.PathLike, clock: Callable[[], int] = utc_timestamp_ms):
        self.path = Path(path)
        self._clock = clock

    def _load(self) -> dict:
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError):
            logger.warning("Unreadable cross-tab signal file", extra={"path": str(self.path)})
            return {}

    def signal(self) -> int:
        """Write the refresh timestamp. Returns the value written."""
        value = self._clock()
        data = self._load()
        data[SIGNAL_KEY] = str(value)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".signal-")
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(data, handle)
        # Readers never see a half-written file
        os.replace(tmp_path, self.path)
        return value

    def read(self) -> int | None:
        raw = self._load().get(SIGNAL_KEY)
        try:
            return int(raw) if raw is not None else None
        except (TypeError, ValueError):
            return None

    def changed_since(self, last_seen: int | None) -> bool:
        current = self.read()
        if current is None:
            return False
        return last_seen is None or current > last_seen


def parse_sse_line(line: str) -> dict | None:
    """Decode one `data:` line. Comments, other fields and bad JSON yield None."""
    if not line.startswith("data:"):
        return None
    payload = line[len("data:"):].strip()
    if not payload:
        return None
    try:
        event = json.loads(payload)
    except ValueError:
        logger.warning("Malformed SSE payload", extra={"payload": payload[:200]})
        return None
    return event if isinstance(event, dict) else None


class PermissionStreamClient:
    """
    Reconnecting reader for /api/permissions/stream.

    Callbacks:
    - on_event(event): every decoded event, heartbeats included
    - on_status(status): each status transition
    - on_refresh(event): events carrying requiresRefresh; the cross-tab
      signal (if given) is written first
    """

    BASE_DELAY = 3.0
    MAX_DELAY = 30.0

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        on_event: Callable[[dict], None] | None = None,
        on_status: Callable[[str], None] | None = None,
        on_refresh: Callable[[dict], None] | None = None,
        signal: CrossTabSignal | None = None,
        max_attempts: int | None = None,
        base_delay: float = BASE_DELAY,
        max_delay: float = MAX_DELAY,
        sleep: Callable[[float], None] = time.sleep,
        transport: httpx.BaseTransport | None = None,
        timeout: httpx.Timeout | None = None,
    ):
        self.base_url = base_url
        self.token = token
        self.on_event = on_event
        self.on_status = on_status
        self.on_refresh = on_refresh
        self.signal = signal
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep
        self._transport = transport
        # Read timeout sits above two heartbeat intervals
        self._timeout = timeout or httpx.Timeout(10.0, read=65.0)
        self._client: httpx.Client | None = None
        self._closed = False

        self.status = STATUS_CLOSED
        self.attempts = 0
        self.last_event: dict | None = None

    @property
    def client(self) -> httpx.Client:
        """Get or create the HTTP client with the bearer header."""
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.base_url,
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "Accept": "text/event-stream",
                },
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    def backoff_delay(self, attempt: int) -> float:
        return min(self.base_delay * 2 ** (attempt - 1), self.max_delay)

    def _set_status(self, status: str) -> None:
        if status == self.status:
            return
        self.status = status
        logger.debug("Permission stream status", extra={"status": status, "attempts": self.attempts})
        if self.on_status:
            self.on_status(status)

    def handle_event(self, event: dict) -> None:
        self.last_event = event
        if self.on_event:
            self.on_event(event)

        if event.get("requiresRefresh"):
            if self.signal is not None:
                self.signal.signal()
            if self.on_refresh:
                self.on_refresh(event)

    def _consume(self, max_events: int | None) -> int:
        """Open one stream and dispatch events until it ends. Returns events handled."""
        handled = 0
        with self.client.stream("GET", STREAM_PATH) as response:
            if response.status_code in (401, 403):
                raise StreamAuthError(f"Permission stream refused: HTTP {response.status_code}")
            if response.status_code != 200:
                raise StreamError(f"Permission stream failed: HTTP {response.status_code}")

            self.attempts = 0
            self._set_status(STATUS_OPEN)

            for line in response.iter_lines():
                if self._closed:
                    break
                event = parse_sse_line(line)
                if event is None:
                    continue
                self.handle_event(event)
                handled += 1
                if max_events is not None and handled >= max_events:
                    break
        return handled

    def run(self, max_events: int | None = None) -> int:
        """
        Hold the stream open, reconnecting with backoff, until close(),
        max_events events, max_attempts consecutive failures, or an auth
        rejection. Returns the number of events handled.

        Raises StreamAuthError on 401/403 and StreamError once
        max_attempts is exhausted.
        """
        self._closed = False
        self._set_status(STATUS_CONNECTING)
        handled = 0

        try:
            while not self._closed:
                remaining = None if max_events is None else max_events - handled
                try:
                    handled += self._consume(remaining)
                except StreamAuthError:
                    logger.warning("Permission stream rejected credentials")
                    raise
                except (httpx.HTTPError, StreamError) as e:
                    if self._closed:
                        break
                    self.attempts += 1
                    logger.warning(
                        "Permission stream lost",
                        extra={"attempt": self.attempts, "error": str(e)},
                    )
                    if self.max_attempts is not None and self.attempts >= self.max_attempts:
                        raise StreamError(f"Permission stream gave up after {self.attempts} attempts") from e
                else:
                    if max_events is not None and handled >= max_events:
                        break
                    if self._closed:
                        break
                    # Server ended the stream cleanly; reconnect like a browser
                    self.attempts += 1

                self._set_status(STATUS_RECONNECTING)
                self._sleep(self.backoff_delay(self.attempts))
        finally:
            self._set_status(STATUS_CLOSED)

        return handled

    def close(self) -> None:
        """Stop reconnecting and release the HTTP client."""
        self._closed = True
        if self._client is not None:
            self._client.close()
            self._client = None
        self._set_status(STATUS_CLOSED)
