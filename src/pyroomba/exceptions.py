"""Custom exception hierarchy for pyroomba."""

from __future__ import annotations

from typing import Any


class RoombaError(Exception):
    """Base exception for all pyroomba errors."""


class RoombaConfigError(RoombaError):
    """Invalid or missing configuration."""


class RoombaConnectTimeoutError(RoombaError):
    """The robot did not accept or refuse the connection in time."""

    def __init__(self, message: str, *, cipher: str | None = None) -> None:
        self.cipher = cipher
        super().__init__(message)


class RoombaTransportError(RoombaError):
    """Connection-level failure (TLS, MQTT CONNACK, socket)."""

    def __init__(self, message: str, *, cipher: str | None = None) -> None:
        self.cipher = cipher
        super().__init__(message)


class RoombaTransportRejectedError(RoombaTransportError):
    """The robot rejected the TLS handshake or the client identifier.

    Normally handled by falling back to the next cipher suite; only raised
    to the caller once every suite has been tried.
    """


class RoombaTransportFatalError(RoombaTransportError):
    """Connection failure that a different cipher suite will not fix."""


class RoombaRefreshTimeoutError(RoombaError):
    """The robot did not report a complete status before the deadline.

    Never escapes :meth:`pyroomba.refresh.StateRefresher.refresh`, which
    reports it as ``False``.
    """

    def __init__(self, message: str, *, partial: Any = None) -> None:
        self.partial = partial
        super().__init__(message)


class RoombaCommandError(RoombaError):
    """An imperative command was rejected or never acknowledged."""

    def __init__(self, message: str, *, command: str = "") -> None:
        self.command = command
        super().__init__(message)
