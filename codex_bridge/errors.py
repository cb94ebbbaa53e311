"""Exception taxonomy for the bridge.

Every caller-facing failure ends up as ``str(exc)`` in an ``ok: false``
response, so messages are written for the GUI user.
"""

from __future__ import annotations


class BridgeError(RuntimeError):
    """Base class for all bridge failures."""


class FramingError(BridgeError):
    """A line on a channel was not a single JSON document."""


class RequestValidationError(BridgeError):
    """Caller input was rejected before contacting the app-server."""


class RuntimeStartupError(BridgeError):
    """The app-server could not be spawned or did not finish the handshake."""


class RuntimeClosedError(BridgeError):
    """The app-server is gone (exited, stream closed, or shut down)."""


class RequestTimeoutError(BridgeError):
    """An app-server request received no response in time."""


class TurnTimeoutError(BridgeError):
    """A turn did not complete in time."""


class RemoteError(BridgeError):
    """The app-server answered a request with an error payload."""

    def __init__(self, message: str, *, method: str | None = None, code: int | None = None) -> None:
        super().__init__(message)
        self.method = method
        self.code = code
