"""Exception types shared by every service client.

I/O failures are not wrapped: they surface as the built-in ``OSError``
family (``ConnectionResetError`` when the daemon hangs up mid-frame).
Everything the daemon or the wire format can get wrong is a subclass of
:class:`GnunetError`.
"""


class GnunetError(Exception):
    """Base class for all library errors."""


class ResultError(GnunetError):
    """
    Non-zero result code returned by the daemon in a RESULT_CODE frame.

    Attributes:
        code: Numeric result code chosen by the daemon
        message: Human-readable message sent along with the code
    """

    def __init__(self, code: int, message: str = ""):
        self.code = code
        self.message = message
        super().__init__(f"daemon returned code {code}: {message}" if message else f"daemon returned code {code}")


class ProtocolError(GnunetError):
    """The daemon sent an unexpected message type or a malformed body."""


class DeserializationError(GnunetError, ValueError):
    """Canonical bytes or an encoded string could not be parsed."""


class ConfigurationError(GnunetError):
    """A required configuration value is missing or invalid."""


class HandleClosedError(GnunetError):
    """The client handle was closed or invalidated by an earlier failure."""
