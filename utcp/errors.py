"""
Exceptions raised by the sender.

Recoverable conditions (a timeout, a duplicate ACK, an undecodable datagram)
never leave the engine as exceptions; they are bookkeeping. Only fatal
conditions surface here, each with a readable cause.
"""


class UTCPError(Exception):
    """Base class for all errors raised by utcp."""


class DecodeError(UTCPError, ValueError):
    """A datagram could not be decoded into a segment."""


class InvalidStateError(UTCPError):
    """An operation was attempted in a state that does not allow it."""


class RetryLimitExceeded(UTCPError):
    """
    The retry ceiling for one operation was exceeded.

    The operation (handshake, data transfer or teardown) is abandoned; the
    process itself keeps running.
    """

    def __init__(self, operation: str, retries: int):
        self.operation = operation
        self.retries = retries
        super().__init__(
            f"{operation}: reached maximum number of retransmissions ({retries})"
        )


class SourceError(UTCPError):
    """The byte source could not be opened or read."""
