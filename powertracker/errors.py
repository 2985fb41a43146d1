# powertracker/errors.py

from __future__ import annotations


class PowerTrackerError(Exception):
    """Base class for every fatal error surfaced to the command line."""


class ConfigurationError(PowerTrackerError):
    pass


class SessionConnectError(PowerTrackerError):
    """Dialing, handshaking or reading from the WebSocket failed."""


class AuthenticationError(SessionConnectError):
    pass


class ProtocolError(PowerTrackerError):
    """A message could not be decoded or had an unexpected shape."""


class UpstreamError(PowerTrackerError):
    def __init__(self, message: str, code: str | None = None, detail: str | None = None):
        super().__init__(message)
        self.code = code
        self.detail = detail


class OutputError(PowerTrackerError):
    pass
