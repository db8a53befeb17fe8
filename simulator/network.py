#!/usr/bin/env python3
"""
Network Simulator for utcp Testing

This module provides in-process peers for exercising the sender without
real network access. It allows you to:

1. Run whole transfers against a receiver that acks cumulatively
2. Drop chosen segments (or a random fraction) in either direction
3. Script exact response sequences to pin down edge cases
4. Capture every segment that crossed the wire

Everything is deterministic and single threaded: a "timeout" is simply a
receive() with nothing queued, returned immediately rather than after
waiting out the deadline.
"""

import random
import socket
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Iterable, List, Optional, Tuple, Union

from utcp.errors import DecodeError
from utcp.segment import (
    TCPSegment, MAX_SEQ,
    create_ack_segment, create_syn_ack_segment, create_fin_ack_segment
)
from utcp.transport import DatagramTransport

logger = logging.getLogger(__name__)


DropRule = Callable[[TCPSegment], bool]


@dataclass
class NetworkStats:
    """Statistics about simulated network behavior."""
    packets_sent: int = 0
    packets_delivered: int = 0
    packets_dropped: int = 0
    bytes_sent: int = 0
    bytes_delivered: int = 0

    def __str__(self) -> str:
        loss_rate = self.packets_dropped / max(1, self.packets_sent) * 100
        return (
            f"Network Stats:\n"
            f"  Packets sent: {self.packets_sent}\n"
            f"  Packets delivered: {self.packets_delivered}\n"
            f"  Packets dropped: {self.packets_dropped} ({loss_rate:.1f}%)\n"
            f"  Bytes sent: {self.bytes_sent}\n"
            f"  Bytes delivered: {self.bytes_delivered}"
        )


class PacketCapture:
    """
    Record segments crossing the simulated link.

    Direction is "->" for sender to peer and "<-" for peer to sender.
    """

    def __init__(self):
        self._packets: List[Tuple[str, TCPSegment]] = []

    def capture(self, segment: TCPSegment, direction: str = "->"):
        self._packets.append((direction, segment))

    def outbound(self) -> List[TCPSegment]:
        """Segments sent by the sender, in order."""
        return [seg for direction, seg in self._packets if direction == "->"]

    def inbound(self) -> List[TCPSegment]:
        """Segments sent back to the sender, in order."""
        return [seg for direction, seg in self._packets if direction == "<-"]

    def data_segments(self) -> List[TCPSegment]:
        """Outbound segments carrying payload."""
        return [seg for seg in self.outbound() if seg.data]

    def clear(self):
        self._packets.clear()

    def summary(self) -> str:
        """Generate a summary of captured segments."""
        if not self._packets:
            return "No packets captured"

        lines = [f"Captured {len(self._packets)} packets:"]
        for i, (direction, seg) in enumerate(self._packets[:50]):  # Limit to 50
            lines.append(f"  {i:4d} {direction} {seg}")

        if len(self._packets) > 50:
            lines.append(f"  ... and {len(self._packets) - 50} more")

        return '\n'.join(lines)


class ReceiverLogic:
    """
    The receiving end of the protocol, without any I/O.

    handle() takes one segment from the sender and returns the segments to
    send back:
    - SYN           -> SYN-ACK
    - in-order data -> ACK of everything received so far
    - other data    -> duplicate ACK (out-of-order data is discarded)
    - FIN           -> ACK, then FIN-ACK
    - final ACK     -> nothing; the connection is closed
    """

    def __init__(self, initial_seq: int = 0, ack_before_fin: bool = True):
        self.isn = initial_seq
        self.ack_before_fin = ack_before_fin
        self.data = bytearray()
        self.expected: Optional[int] = None
        self.established = False
        self.fin_received = False
        self.closed = False

    @property
    def _seq(self) -> int:
        return (self.isn + 1) & MAX_SEQ

    def handle(self, segment: TCPSegment) -> List[TCPSegment]:
        if segment.is_syn:
            self.expected = (segment.seq_num + 1) & MAX_SEQ
            return [create_syn_ack_segment(self.isn, self.expected)]

        if self.expected is None:
            logger.debug(f"Peer: segment before SYN ignored: {segment}")
            return []

        if segment.is_fin:
            self.fin_received = True
            self.expected = (segment.seq_num + 1) & MAX_SEQ
            responses = []
            if self.ack_before_fin:
                responses.append(create_ack_segment(self._seq, self.expected))
            responses.append(create_fin_ack_segment(self._seq, self.expected))
            return responses

        if segment.data:
            if segment.seq_num == self.expected:
                self.data.extend(segment.data)
                self.expected = (self.expected + len(segment.data)) & MAX_SEQ
            else:
                logger.debug(f"Peer: out-of-order {segment}, expected seq={self.expected}")
            return [create_ack_segment(self._seq, self.expected)]

        if segment.is_ack:
            if self.fin_received:
                self.closed = True
            else:
                self.established = True
        return []


class SimulatedPeer(DatagramTransport):
    """
    A DatagramTransport whose far end is a ReceiverLogic.

    Segments the sender sends are handed to the receiver immediately; its
    responses queue up for the sender's next receive() calls.

    Loss can be injected with drop rules (called per segment, True drops it)
    or with a seeded random loss rate applied to both directions.
    """

    def __init__(self,
                 receiver: Optional[ReceiverLogic] = None,
                 drop_outbound: Optional[DropRule] = None,
                 drop_inbound: Optional[DropRule] = None,
                 loss_rate: float = 0.0,
                 seed: Optional[int] = None):
        self.receiver = receiver or ReceiverLogic()
        self.drop_outbound = drop_outbound
        self.drop_inbound = drop_inbound
        self.loss_rate = loss_rate
        self._random = random.Random(seed)
        self._queue: Deque[bytes] = deque()
        self.capture = PacketCapture()
        self.stats = NetworkStats()
        self.closed = False

    def send(self, data: bytes):
        self.stats.packets_sent += 1
        self.stats.bytes_sent += len(data)
        segment = TCPSegment.decode(data)
        self.capture.capture(segment, "->")

        if self._should_drop(segment, self.drop_outbound):
            self.stats.packets_dropped += 1
            logger.debug(f"Dropped outbound: {segment}")
            return

        self.stats.packets_delivered += 1
        self.stats.bytes_delivered += len(data)
        for response in self.receiver.handle(segment):
            if self._should_drop(response, self.drop_inbound):
                self.stats.packets_dropped += 1
                logger.debug(f"Dropped inbound: {response}")
                continue
            self._queue.append(response.encode())

    def receive(self, timeout: float, bufsize: int = 65535) -> Optional[bytes]:
        if not self._queue:
            return None
        raw = self._queue.popleft()
        try:
            self.capture.capture(TCPSegment.decode(raw), "<-")
        except DecodeError:
            pass
        return raw[:bufsize]

    def inject(self, raw: bytes):
        """Queue an arbitrary datagram for the sender."""
        self._queue.append(raw)

    def close(self):
        self.closed = True

    def _should_drop(self, segment: TCPSegment, rule: Optional[DropRule]) -> bool:
        if rule is not None and rule(segment):
            return True
        return self.loss_rate > 0 and self._random.random() < self.loss_rate


class DropOnce:
    """Drop rule: lose the first transmission of each listed sequence number."""

    def __init__(self, seq_nums: Iterable[int], data_only: bool = True):
        self._pending = set(seq_nums)
        self.data_only = data_only

    def __call__(self, segment: TCPSegment) -> bool:
        if self.data_only and not segment.data:
            return False
        if segment.seq_num in self._pending:
            self._pending.discard(segment.seq_num)
            return True
        return False


ScriptItem = Union[TCPSegment, bytes, None]


class ScriptedPeer(DatagramTransport):
    """
    A DatagramTransport that answers from a fixed script.

    Each receive() consumes the next script item: a segment or raw bytes is
    delivered, None is a timeout. Once the script is exhausted every
    receive() times out.
    """

    def __init__(self, script: Iterable[ScriptItem] = ()):
        self._script: Deque[ScriptItem] = deque(script)
        self.capture = PacketCapture()
        self.receive_calls = 0

    def send(self, data: bytes):
        self.capture.capture(TCPSegment.decode(data), "->")

    def receive(self, timeout: float, bufsize: int = 65535) -> Optional[bytes]:
        self.receive_calls += 1
        if not self._script:
            return None
        item = self._script.popleft()
        if item is None:
            return None
        if isinstance(item, TCPSegment):
            self.capture.capture(item, "<-")
            return item.encode()
        return item

    def extend(self, items: Iterable[ScriptItem]):
        self._script.extend(items)

    @property
    def remaining(self) -> int:
        return len(self._script)


class UdpReceiver:
    """
    Run ReceiverLogic on a real UDP socket.

    Serves one connection: returns the received bytes once the sender's
    final ACK arrives, or raises TimeoutError if the sender goes quiet.
    """

    def __init__(self, port: int = 0, host: str = "127.0.0.1",
                 receiver: Optional[ReceiverLogic] = None,
                 idle_timeout: float = 10.0):
        self.receiver = receiver or ReceiverLogic()
        self.idle_timeout = idle_timeout
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self._sock.bind((host, port))
        self._sock.settimeout(idle_timeout)

    @property
    def address(self) -> Tuple[str, int]:
        return self._sock.getsockname()

    def serve(self) -> bytes:
        while not self.receiver.closed:
            try:
                raw, addr = self._sock.recvfrom(65535)
            except socket.timeout:
                raise TimeoutError(f"No segment for {self.idle_timeout}s") from None
            try:
                segment = TCPSegment.decode(raw)
            except DecodeError as e:
                logger.debug(f"Receiver: discarding datagram from {addr}: {e}")
                continue
            for response in self.receiver.handle(segment):
                self._sock.sendto(response.encode(), addr)
        return bytes(self.receiver.data)

    def close(self):
        self._sock.close()
