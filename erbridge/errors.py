"""
Exception taxonomy for the bridge.

Every failure is local to the operation that raised it; none of these
terminate the bridge process.
"""


class BridgeError(Exception):
    """Base class for all bridge errors."""


# ----- Transport -----


class TransportError(BridgeError):
    """Controller unreachable, refused, or the stream failed."""


# ----- Protocol -----


class ProtocolError(BridgeError):
    """Malformed or undecodable controller data."""


class FrameError(ProtocolError):
    """A frame could not be parsed."""


class DataArityError(ProtocolError):
    """A payload had fewer values than its record type requires."""

    def __init__(self, record: str, expected: int, got: int):
        super().__init__(f"{record} requires {expected} values, got {got}")
        self.record = record
        self.expected = expected
        self.got = got


class EncodingError(ProtocolError):
    """Controller bytes could not be decoded by any supported encoding."""

    def __init__(self, hex_dump: str):
        super().__init__(f"Undecodable controller data: {hex_dump}")
        self.hex_dump = hex_dump


# ----- Command -----


class CommandError(BridgeError):
    """A submitted command did not complete successfully."""

    def __init__(
        self, message: str, command_id: int | None = None, raw: str | None = None
    ):
        super().__init__(message)
        self.command_id = command_id
        # Controller frame that produced the error, when there was one
        self.raw = raw


class CommandBusyError(CommandError):
    """Another command is already awaiting its response."""


class CommandTimeoutError(CommandError, TimeoutError):
    """No matching frame arrived before the deadline."""


class CommandFailedError(CommandError):
    """The controller answered ``FAIL``."""


class RobotStoppedError(CommandError):
    """The controller reported ``RobotStop`` for the command."""


class SafeDoorOpenError(CommandError):
    """The controller reported ``SafeDoorIsOpen`` for the command."""


class ConnectionClosedError(CommandError, ConnectionError):
    """The controller connection closed while the command was pending."""


# ----- Register -----


class RegisterError(BridgeError):
    """A holding-register operation failed."""


class RegisterReadError(RegisterError):
    pass


class RegisterWriteError(RegisterError):
    """Write rejected (for example a read-only register) or not delivered."""
