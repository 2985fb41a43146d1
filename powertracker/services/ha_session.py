# powertracker/services/ha_session.py

from __future__ import annotations

import json
import re
import ssl
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlsplit, urlunsplit

from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.sync.client import connect as ws_connect

from powertracker.config import HomeAssistantConfig
from powertracker.errors import (
    AuthenticationError,
    ConfigurationError,
    ProtocolError,
    SessionConnectError,
)
from powertracker.models.messages import AuthRequest, AuthRequired, AuthResult, decode_frame

API_PATH = "/api/websocket"
SCHEME_MAP = {"http": "ws", "https": "wss", "ws": "ws", "wss": "wss"}
MAX_FRAME_BYTES = 16 * 1024 * 1024

_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")
_ANY_ESCAPE = re.compile(r"%[0-9A-Fa-f]{0,2}")

Connector = Callable[..., Any]


def _parse_error(raw: str, reason: str) -> ConfigurationError:
    return ConfigurationError(f'parse "{raw}": {reason}')


def build_websocket_url(raw: str | None) -> str:
    """Map an http(s) base URL onto the WebSocket API endpoint."""
    if not raw:
        raise ConfigurationError("url is required")

    try:
        parts = urlsplit(raw)
        parts.port
    except ValueError as exc:
        raise _parse_error(raw, str(exc)) from None

    # The query is dropped from the dial URL, so its escapes are not checked.
    for piece in (parts.netloc, parts.path, parts.fragment):
        bad = _BAD_ESCAPE.search(piece)
        if bad:
            raise _parse_error(raw, f'invalid URL escape "{piece[bad.start():bad.start() + 3]}"')

    host = parts.netloc.rpartition("@")[2]
    escaped = _ANY_ESCAPE.search(host)
    if escaped:
        raise _parse_error(raw, f'invalid URL escape "{escaped.group(0)}"')

    scheme = SCHEME_MAP.get(parts.scheme.lower())
    if scheme is None:
        raise ConfigurationError(
            f'unsupported URL scheme "{parts.scheme}" in "{raw}" (expected http or https)'
        )
    if not parts.hostname:
        raise _parse_error(raw, "missing host")

    return urlunsplit((scheme, parts.netloc, API_PATH, "", ""))


def _insecure_ssl_context() -> ssl.SSLContext:
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


class HASession:
    """Authenticated connection to the Home Assistant WebSocket API.

    ``message_id`` is 1 once the handshake has completed. Callers bump it
    with ``next_message_id()`` before every command they send.
    """

    def __init__(self, conn, url: str, log, timeout: float | None = 30.0):
        self.conn = conn
        self.url = url
        self.log = log
        self.timeout = timeout
        self.message_id = 1
        self.ha_version: Optional[str] = None
        self._closed = False

    # ------------------------------------------------------------------
    @classmethod
    def connect(
        cls,
        cfg: HomeAssistantConfig,
        log,
        connector: Optional[Connector] = None,
    ) -> "HASession":
        url = build_websocket_url(cfg.url)
        dial = connector or ws_connect

        dial_kwargs: Dict[str, Any] = {
            "open_timeout": cfg.handshake_timeout,
            "max_size": MAX_FRAME_BYTES,
        }
        if url.startswith("wss://") and cfg.insecure:
            dial_kwargs["ssl"] = _insecure_ssl_context()

        log.info("connecting to %s", url)
        try:
            conn = dial(url, **dial_kwargs)
        except (WebSocketException, OSError) as exc:
            raise SessionConnectError(f"dial: {exc}") from exc
        log.info("connected")

        session = cls(conn, url, log, timeout=cfg.timeout)
        try:
            session._authenticate(cfg.api_key, cfg.handshake_timeout)
        except Exception:
            session.close()
            raise
        log.info("authenticated")
        return session

    def _authenticate(self, access_token: str, timeout: float | None) -> None:
        hello = self.read_message(AuthRequired.from_payload, timeout=timeout, context="initial message")
        self.ha_version = hello.ha_version
        if hello.ha_version:
            self.log.debug("server version %s", hello.ha_version)

        self.send(AuthRequest(access_token=access_token).to_payload(), context="auth message")

        result = self.read_message(AuthResult.from_payload, timeout=timeout, context="auth response")
        if not result.ok:
            raise AuthenticationError(f"authentication failed: {result.message or result.type}")
        self.message_id = 1

    # ------------------------------------------------------------------
    def next_message_id(self) -> int:
        self.message_id += 1
        return self.message_id

    def send(self, payload: Dict[str, Any], context: str = "writing to websocket") -> None:
        try:
            self.conn.send(json.dumps(payload))
        except ConnectionClosed as exc:
            raise SessionConnectError(f"{context}: {exc}") from exc

    def receive(
        self,
        timeout: float | None = None,
        context: str = "reading from websocket",
    ) -> Dict[str, Any]:
        wait = self.timeout if timeout is None else timeout
        try:
            raw = self.conn.recv(timeout=wait)
        except TimeoutError as exc:
            raise SessionConnectError(f"{context}: read timed out after {wait}s") from exc
        except ConnectionClosed as exc:
            raise SessionConnectError(f"{context}: {exc}") from exc

        try:
            return decode_frame(raw)
        except ProtocolError as exc:
            raise ProtocolError(f"{context}: {exc}") from exc

    def read_message(
        self,
        parse: Callable[[Dict[str, Any]], Any],
        timeout: float | None = None,
        context: str = "reading from websocket",
    ):
        """Receive one frame and decode it into a typed message."""
        payload = self.receive(timeout=timeout, context=context)
        try:
            return parse(payload)
        except ProtocolError as exc:
            raise ProtocolError(f"{context}: {exc}") from exc

    # ------------------------------------------------------------------
    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.conn.close()
        self.log.debug("connection to %s closed", self.url)

    def __enter__(self) -> "HASession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
