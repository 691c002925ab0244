"""
Permission stream client tests.

Drives PermissionStreamClient against httpx.MockTransport; sleeps are
recorded instead of taken.
"""

import json

import httpx
import pytest

from cost_compass.stream_client import (
    SIGNAL_KEY,
    CrossTabSignal,
    PermissionStreamClient,
    StreamAuthError,
    StreamError,
    parse_sse_line,
)


def sse_body(*events):
    return "".join(f"data: {json.dumps(event)}\n\n" for event in events).encode()


CONNECTED = {"type": "connected", "message": "hi", "requiresRefresh": False}
ROLE_UPDATED = {"type": "role_updated", "message": "changed", "requiresRefresh": True, "affectedRole": "supervisor"}


def make_client(handler, **kwargs):
    sleeps = []
    statuses = []
    client = PermissionStreamClient(
        "http://testserver",
        "token-123",
        transport=httpx.MockTransport(handler),
        sleep=sleeps.append,
        on_status=statuses.append,
        **kwargs,
    )
    return client, sleeps, statuses


class TestParsing:
    def test_data_line(self):
        assert parse_sse_line('data: {"type": "heartbeat"}') == {"type": "heartbeat"}

    @pytest.mark.parametrize("line", ["", ": comment", "event: ping", "data:", "data: not-json", "data: [1, 2]"])
    def test_ignored_lines(self, line):
        assert parse_sse_line(line) is None


class TestCrossTabSignal:
    def test_signal_and_read(self, tmp_path):
        signal = CrossTabSignal(tmp_path / "profile" / "signal.json", clock=lambda: 1700000000000)
        assert signal.read() is None
        assert not signal.changed_since(None)

        assert signal.signal() == 1700000000000
        data = json.loads((tmp_path / "profile" / "signal.json").read_text())
        assert data == {SIGNAL_KEY: "1700000000000"}
        assert signal.changed_since(None)
        assert not signal.changed_since(1700000000000)

    def test_corrupt_file_reads_as_empty(self, tmp_path):
        path = tmp_path / "signal.json"
        path.write_text("{not json")
        signal = CrossTabSignal(path, clock=lambda: 5)
        assert signal.read() is None
        signal.signal()
        assert signal.read() == 5


class TestStreaming:
    def test_events_and_refresh(self, tmp_path):
        seen_headers = {}

        def handler(request):
            seen_headers.update(request.headers)
            return httpx.Response(200, content=sse_body(CONNECTED, ROLE_UPDATED))

        events, refreshes = [], []
        signal = CrossTabSignal(tmp_path / "signal.json", clock=lambda: 42)
        client, sleeps, statuses = make_client(
            handler, on_event=events.append, on_refresh=refreshes.append, signal=signal
        )

        assert client.run(max_events=2) == 2

        assert [e["type"] for e in events] == ["connected", "role_updated"]
        assert refreshes == [ROLE_UPDATED]
        assert signal.read() == 42
        assert seen_headers["authorization"] == "Bearer token-123"
        assert statuses == ["connecting", "open", "closed"]
        assert sleeps == []
        assert client.last_event == ROLE_UPDATED

    def test_auth_rejection_is_terminal(self):
        client, sleeps, statuses = make_client(lambda request: httpx.Response(401))
        with pytest.raises(StreamAuthError):
            client.run()
        assert sleeps == []
        assert statuses == ["connecting", "closed"]

    def test_gives_up_after_max_attempts(self):
        client, sleeps, statuses = make_client(lambda request: httpx.Response(500), max_attempts=3)
        with pytest.raises(StreamError):
            client.run()
        assert sleeps == [3.0, 6.0]
        assert statuses == ["connecting", "reconnecting", "closed"]

    def test_reconnects_after_clean_end(self):
        bodies = [sse_body(CONNECTED), sse_body(ROLE_UPDATED)]

        def handler(request):
            return httpx.Response(200, content=bodies.pop(0))

        client, sleeps, statuses = make_client(handler)
        assert client.run(max_events=2) == 2
        assert sleeps == [3.0]
        assert statuses == ["connecting", "open", "reconnecting", "open", "closed"]

    def test_transport_error_then_success(self):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            if calls["n"] == 1:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, content=sse_body(CONNECTED))

        client, sleeps, _ = make_client(handler)
        assert client.run(max_events=1) == 1
        assert sleeps == [3.0]
        assert client.attempts == 0


class TestBackoff:
    @pytest.mark.parametrize("attempt,expected", [(1, 3.0), (2, 6.0), (3, 12.0), (4, 24.0), (5, 30.0), (9, 30.0)])
    def test_delay_is_capped(self, attempt, expected):
        client = PermissionStreamClient("http://testserver", "t")
        assert client.backoff_delay(attempt) == expected

    def test_close_is_idempotent(self):
        client = PermissionStreamClient("http://testserver", "t", transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        client.client
        client.close()
        client.close()
        assert client.status == "closed"
