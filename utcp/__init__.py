"""
utcp - TCP-like reliable file transfer over UDP.

This package implements the sending side of a reliable transport in user
space, on top of an unreliable datagram socket: connection establishment,
sliding-window transmission with cumulative acknowledgments, loss recovery
by timeout and fast retransmit, and connection teardown.
"""

from .segment import TCPSegment, TCPFlags
from .states import TCPState, Phase
from .window import SendWindow
from .timer import RetransmissionTimer
from .source import ByteSource
from .stats import TransferStats
from .transport import DatagramTransport, UdpTransport, ReceiveOutcome, ReceiveResult
from .engine import SendEngine
from .connection import TCPSender, SenderConfig
from .errors import (
    UTCPError, DecodeError, InvalidStateError, RetryLimitExceeded, SourceError
)

__version__ = "1.0.0"

__all__ = [
    "TCPSegment",
    "TCPFlags",
    "TCPState",
    "Phase",
    "SendWindow",
    "RetransmissionTimer",
    "ByteSource",
    "TransferStats",
    "DatagramTransport",
    "UdpTransport",
    "ReceiveOutcome",
    "ReceiveResult",
    "SendEngine",
    "TCPSender",
    "SenderConfig",
    "UTCPError",
    "DecodeError",
    "InvalidStateError",
    "RetryLimitExceeded",
    "SourceError",
]
