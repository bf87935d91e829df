"""
Relay error taxonomy.

Every RelayError is recoverable: the gateway turns it into a
`{success: false, error: <kind>, message: <text>}` reply on the
originating connection. CodeSpaceExhausted is the one fatal condition.
"""


class RelayError(Exception):
    """Base class for errors reported back to a peer."""

    kind = "RelayError"
    default_message = "Request failed"

    def __init__(self, message: str = ""):
        self.message = message or self.default_message
        super().__init__(self.message)


class SessionNotFound(RelayError):
    kind = "SessionNotFound"
    default_message = "Session not found"


class SessionOccupied(RelayError):
    kind = "SessionOccupied"
    default_message = "Session already has a connected device"


class InvalidRequest(RelayError):
    """Malformed frame, unknown event, or missing/empty fields."""

    kind = "InvalidRequest"
    default_message = "Malformed request"


class AlreadyBound(RelayError):
    """The connection already holds a role that forbids this request."""

    kind = "AlreadyBound"
    default_message = "Connection is already bound to a session"


class CodeSpaceExhausted(RuntimeError):
    """No free pairing code found within the retry budget."""


__all__ = [
    "RelayError",
    "SessionNotFound",
    "SessionOccupied",
    "InvalidRequest",
    "AlreadyBound",
    "CodeSpaceExhausted",
]
