"""
Transport - the unreliable datagram layer underneath the sender.

The sender needs two primitives: send a datagram to the peer, and wait a
bounded time for one datagram from it. DatagramTransport captures exactly
that, so the protocol logic can run over:
- a real UDP socket (UdpTransport)
- the in-process simulator (for testing)

receive_segment() turns the raw wait into an explicit result instead of an
exception: a segment, a timeout, or a datagram that failed to decode.
"""

import socket
import time
import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional, Tuple

from .errors import DecodeError
from .segment import TCPSegment


logger = logging.getLogger(__name__)


class ReceiveOutcome(Enum):
    RECEIVED = auto()
    TIMED_OUT = auto()
    DECODE_FAILED = auto()


@dataclass
class ReceiveResult:
    """What a single bounded wait for a response produced."""
    outcome: ReceiveOutcome
    segment: Optional[TCPSegment] = None
    error: Optional[str] = None

    @property
    def received(self) -> bool:
        return self.outcome is ReceiveOutcome.RECEIVED

    @property
    def timed_out(self) -> bool:
        return self.outcome is ReceiveOutcome.TIMED_OUT


class DatagramTransport:
    """
    Abstract datagram transport bound to a single peer.

    Implementations need not be reliable: datagrams may be lost,
    duplicated or reordered.
    """

    def send(self, data: bytes):
        """Send one datagram to the peer."""
        raise NotImplementedError

    def receive(self, timeout: float, bufsize: int = 65535) -> Optional[bytes]:
        """Wait up to `timeout` seconds for one datagram; None on timeout."""
        raise NotImplementedError

    def close(self):
        """Release the underlying resources."""


class UdpTransport(DatagramTransport):
    """
    DatagramTransport over a UDP socket.

    The socket is bound to `local_port` and exchanges datagrams with
    (remote_ip, remote_port).
    """

    def __init__(self, local_port: int, remote_ip: str, remote_port: int,
                 local_ip: str = "0.0.0.0"):
        self.remote: Tuple[str, int] = (socket.gethostbyname(remote_ip), remote_port)
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._sock.bind((local_ip, local_port))
        logger.debug(f"UDP transport bound to {self._sock.getsockname()} -> {self.remote}")

    @property
    def local_address(self) -> Tuple[str, int]:
        return self._sock.getsockname()

    def send(self, data: bytes):
        self._sock.sendto(data, self.remote)

    def receive(self, timeout: float, bufsize: int = 65535) -> Optional[bytes]:
        """
        Wait for a datagram from the peer.

        Datagrams from any other address are discarded without ending the
        wait; the deadline still counts from the call.
        """
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            self._sock.settimeout(remaining)
            try:
                data, addr = self._sock.recvfrom(bufsize)
            except socket.timeout:
                return None
            if addr == self.remote:
                return data
            logger.debug(f"Discarding datagram from {addr}, peer is {self.remote}")

    def close(self):
        self._sock.close()


def receive_segment(transport: DatagramTransport, timeout: float,
                    bufsize: int = 65535) -> ReceiveResult:
    """Wait for one datagram and decode it."""
    raw = transport.receive(timeout, bufsize)
    if raw is None:
        return ReceiveResult(ReceiveOutcome.TIMED_OUT)

    try:
        segment = TCPSegment.decode(raw)
    except DecodeError as e:
        logger.debug(f"Discarding undecodable datagram: {e}")
        return ReceiveResult(ReceiveOutcome.DECODE_FAILED, error=str(e))

    logger.debug(f"Received {segment}")
    return ReceiveResult(ReceiveOutcome.RECEIVED, segment=segment)
