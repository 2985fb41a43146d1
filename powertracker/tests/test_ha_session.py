# powertracker/tests/test_ha_session.py

import http.server
import json
import logging
import socket
import ssl
import threading

import pytest
from websockets.exceptions import ConnectionClosed, InvalidHandshake
from websockets.sync.server import serve

from powertracker.config import HomeAssistantConfig
from powertracker.errors import (
    AuthenticationError,
    ConfigurationError,
    ProtocolError,
    SessionConnectError,
)
from powertracker.services.ha_session import HASession, build_websocket_url
from powertracker.tests.fake_connection import AUTH_OK, HELLO, FakeConnection, FakeConnector


LOG = logging.getLogger("ha-session-test")


def _cfg(**overrides):
    cfg = HomeAssistantConfig(
        url="http://ha.local:8123",
        api_key="test_token",
        sensor_id="sensor.energy_import",
    )
    for key, value in overrides.items():
        setattr(cfg, key, value)
    return cfg


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("http://ha.local:8123", "ws://ha.local:8123/api/websocket"),
        ("https://ha.example.com", "wss://ha.example.com/api/websocket"),
        ("HTTPS://ha.example.com/lovelace/0?kiosk#top", "wss://ha.example.com/api/websocket"),
        ("http://user:pw@10.0.0.5:8123/", "ws://user:pw@10.0.0.5:8123/api/websocket"),
        ("ws://ha.local:8123/ignored", "ws://ha.local:8123/api/websocket"),
    ],
)
def test_build_websocket_url_rewrites_scheme_and_path(raw, expected):
    assert build_websocket_url(raw) == expected


def test_empty_url_fails_before_dialing():
    connector = FakeConnector(FakeConnection([HELLO, AUTH_OK]))

    with pytest.raises(ConfigurationError, match="url is required"):
        HASession.connect(_cfg(url=""), LOG, connector=connector)
    assert connector.calls == []


def test_invalid_percent_escape_is_parse_error():
    connector = FakeConnector(FakeConnection([HELLO, AUTH_OK]))

    with pytest.raises(ConfigurationError) as excinfo:
        HASession.connect(_cfg(url="http://192.168.0.%31/"), LOG, connector=connector)

    assert str(excinfo.value) == 'parse "http://192.168.0.%31/": invalid URL escape "%31"'
    assert connector.calls == []


def test_truncated_percent_escape_is_parse_error():
    with pytest.raises(ConfigurationError, match='invalid URL escape "%4"'):
        build_websocket_url("http://ha.local/%4")


def test_query_escapes_are_not_validated():
    assert build_websocket_url("http://ha:8123/?pct=50%") == "ws://ha:8123/api/websocket"


def test_bad_escape_in_fragment_is_parse_error():
    with pytest.raises(ConfigurationError, match='invalid URL escape "%zz"'):
        build_websocket_url("http://ha.local/#%zz")


def test_out_of_range_port_is_parse_error():
    with pytest.raises(ConfigurationError, match='^parse "http://ha.local:99999"'):
        build_websocket_url("http://ha.local:99999")


def test_unknown_scheme_is_rejected():
    connector = FakeConnector(FakeConnection([HELLO, AUTH_OK]))

    with pytest.raises(ConfigurationError, match="unsupported URL scheme"):
        HASession.connect(_cfg(url="htp:\\example.com"), LOG, connector=connector)
    assert connector.calls == []


def test_connect_performs_auth_handshake():
    conn = FakeConnection([HELLO, AUTH_OK])
    connector = FakeConnector(conn)

    session = HASession.connect(_cfg(), LOG, connector=connector)

    assert session.message_id == 1
    assert session.ha_version == "2024.3.0"
    assert session.url == "ws://ha.local:8123/api/websocket"
    assert conn.sent == [{"type": "auth", "access_token": "test_token"}]
    assert connector.calls[0]["url"] == "ws://ha.local:8123/api/websocket"
    assert connector.calls[0]["open_timeout"] == 10.0
    assert "ssl" not in connector.calls[0]
    assert conn.recv_timeouts == [10.0, 10.0]


def test_insecure_flag_relaxes_tls_for_wss_only():
    connector = FakeConnector(FakeConnection([HELLO, AUTH_OK]))
    HASession.connect(_cfg(url="https://ha.example.com", insecure=True), LOG, connector=connector)

    ctx = connector.calls[0]["ssl"]
    assert ctx.verify_mode == ssl.CERT_NONE
    assert ctx.check_hostname is False

    strict = FakeConnector(FakeConnection([HELLO, AUTH_OK]))
    HASession.connect(_cfg(url="https://ha.example.com"), LOG, connector=strict)
    assert "ssl" not in strict.calls[0]

    plain = FakeConnector(FakeConnection([HELLO, AUTH_OK]))
    HASession.connect(_cfg(insecure=True), LOG, connector=plain)
    assert "ssl" not in plain.calls[0]


def test_rejected_token_raises_authentication_error():
    conn = FakeConnection([HELLO, {"type": "auth_invalid", "message": "Invalid access token or password"}])

    with pytest.raises(AuthenticationError) as excinfo:
        HASession.connect(_cfg(), LOG, connector=FakeConnector(conn))

    assert str(excinfo.value) == "authentication failed: Invalid access token or password"
    assert isinstance(excinfo.value, SessionConnectError)
    assert conn.closed is True


def test_rejection_without_message_names_the_result_type():
    conn = FakeConnection([HELLO, {"type": "auth_invalid"}])

    with pytest.raises(AuthenticationError) as excinfo:
        HASession.connect(_cfg(), LOG, connector=FakeConnector(conn))

    assert str(excinfo.value) == "authentication failed: auth_invalid"


@pytest.mark.parametrize(
    "error",
    [
        ConnectionRefusedError(111, "Connection refused"),
        InvalidHandshake("bad handshake"),
        TimeoutError("timed out during opening handshake"),
    ],
)
def test_dial_failures_are_wrapped(error):
    with pytest.raises(SessionConnectError, match="^dial: "):
        HASession.connect(_cfg(), LOG, connector=FakeConnector(error=error))


def test_undecodable_hello_is_protocol_error():
    conn = FakeConnection(["<html>not json</html>"])

    with pytest.raises(ProtocolError, match="^initial message: frame is not valid JSON"):
        HASession.connect(_cfg(), LOG, connector=FakeConnector(conn))
    assert conn.closed is True
    assert conn.sent == []


def test_hello_without_type_is_protocol_error():
    conn = FakeConnection([{"ha_version": "2024.3.0"}])

    with pytest.raises(ProtocolError, match="^initial message: message has no string 'type'"):
        HASession.connect(_cfg(), LOG, connector=FakeConnector(conn))


def test_auth_result_that_is_not_an_object_is_protocol_error():
    conn = FakeConnection([HELLO, "[1, 2, 3]"])

    with pytest.raises(ProtocolError, match="^auth response: expected a JSON object"):
        HASession.connect(_cfg(), LOG, connector=FakeConnector(conn))


def test_receive_times_out_with_configured_timeout():
    conn = FakeConnection([HELLO, AUTH_OK])
    session = HASession.connect(_cfg(timeout=2.5), LOG, connector=FakeConnector(conn))

    with pytest.raises(SessionConnectError, match="read timed out after 2.5s"):
        session.receive()
    assert conn.recv_timeouts[-1] == 2.5


def test_next_message_id_increments_before_use():
    session = HASession(FakeConnection([]), "ws://ha.local/api/websocket", LOG)

    assert session.next_message_id() == 2
    assert session.next_message_id() == 3
    assert session.message_id == 3


def test_context_manager_closes_connection_once():
    conn = FakeConnection([HELLO, AUTH_OK])

    with HASession.connect(_cfg(), LOG, connector=FakeConnector(conn)) as session:
        assert conn.closed is False
    assert conn.closed is True
    session.close()


def _free_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_connection_refused_against_closed_port():
    cfg = _cfg(url=f"http://127.0.0.1:{_free_port()}", handshake_timeout=2.0)

    with pytest.raises(SessionConnectError, match="^dial: "):
        HASession.connect(cfg, LOG)


class _PlainHTTPHandler(http.server.BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"

    def do_GET(self):
        body = b"not a websocket endpoint"
        self.send_response(200)
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Connection", "close")
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, *args):
        pass


def test_bad_handshake_against_plain_http_server():
    httpd = http.server.HTTPServer(("127.0.0.1", 0), _PlainHTTPHandler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    try:
        port = httpd.server_address[1]
        cfg = _cfg(url=f"http://127.0.0.1:{port}", handshake_timeout=5.0)
        with pytest.raises(SessionConnectError, match="^dial: "):
            HASession.connect(cfg, LOG)
    finally:
        httpd.shutdown()
        httpd.server_close()
        thread.join(timeout=5)


def test_handshake_against_live_websocket_server():
    received = []

    def handler(ws):
        ws.send(json.dumps(HELLO))
        received.append(json.loads(ws.recv()))
        ws.send(json.dumps(AUTH_OK))
        try:
            ws.recv()
        except ConnectionClosed:
            pass

    with serve(handler, "127.0.0.1", 0) as server:
        port = server.socket.getsockname()[1]
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()

        cfg = _cfg(url=f"http://127.0.0.1:{port}/some/dashboard", handshake_timeout=5.0)
        with HASession.connect(cfg, LOG) as session:
            assert session.message_id == 1
            assert session.url == f"ws://127.0.0.1:{port}/api/websocket"

    thread.join(timeout=5)
    assert received == [{"type": "auth", "access_token": "test_token"}]
