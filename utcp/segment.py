"""
Segment - Encoding and decoding of utcp segments.

A segment is the unit carried by one UDP datagram. It holds the stream
position (sequence number), the acknowledgment of what the peer expects
next, control flags and optionally a payload.

Header Format (12 bytes, network byte order):

     0                   1                   2                   3
     0 1 2 3 4 5 6 7 8 9 0 1 2 3 4 5 6 7 8 9 0 1 2 3 4 5 6 7 8 9 0 1
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    |                        Sequence Number                        |
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    |                    Acknowledgment Number                      |
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    |  Rsrvd  |S|F|A|   Reserved    |           Checksum            |
    |         |Y|I|C|               |                               |
    |         |N|N|K|               |                               |
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
    |                             data                              |
    +-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+

There is no length field: the payload is whatever follows the header in
the datagram.
"""

import struct
from dataclasses import dataclass, field
from enum import IntFlag

from .errors import DecodeError


HEADER_FORMAT = "!IIBBH"
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)
CHECKSUM_OFFSET = 10

MAX_SEQ = 0xFFFFFFFF


class TCPFlags(IntFlag):
    """
    Control flags.

    - SYN: "Let's synchronize sequence numbers" (connection establishment)
    - FIN: "I'm done sending data" (graceful close)
    - ACK: "The acknowledgment number field is valid"
    """
    ACK = 0x01
    FIN = 0x02
    SYN = 0x04

    def __str__(self) -> str:
        names = []
        if self & TCPFlags.SYN: names.append("SYN")
        if self & TCPFlags.FIN: names.append("FIN")
        if self & TCPFlags.ACK: names.append("ACK")
        return "|".join(names) if names else "NONE"


ALL_FLAGS = TCPFlags.SYN | TCPFlags.FIN | TCPFlags.ACK


def compute_checksum(raw: bytes) -> int:
    """
    One's complement of the one's complement sum of 16-bit words.

    The caller is responsible for zeroing the checksum field first.
    """
    if len(raw) % 2:
        raw += b'\x00'

    total = 0
    for i in range(0, len(raw), 2):
        total += (raw[i] << 8) + raw[i + 1]
        total = (total & 0xFFFF) + (total >> 16)

    return ~total & 0xFFFF


@dataclass
class TCPSegment:
    """
    A segment - the unit of transmission.

    The checksum attribute only reflects what was read off the wire; encode()
    always recomputes it.
    """

    seq_num: int
    ack_num: int
    flags: TCPFlags = TCPFlags(0)
    data: bytes = field(default_factory=bytes)
    checksum: int = 0

    def __post_init__(self):
        if not 0 <= self.seq_num <= MAX_SEQ:
            raise ValueError(f"Invalid sequence number: {self.seq_num}")
        if not 0 <= self.ack_num <= MAX_SEQ:
            raise ValueError(f"Invalid acknowledgment number: {self.ack_num}")
        self.flags = TCPFlags(self.flags)

    @property
    def is_syn(self) -> bool:
        return bool(self.flags & TCPFlags.SYN)

    @property
    def is_ack(self) -> bool:
        return bool(self.flags & TCPFlags.ACK)

    @property
    def is_fin(self) -> bool:
        return bool(self.flags & TCPFlags.FIN)

    @property
    def payload_length(self) -> int:
        return len(self.data)

    def encode(self) -> bytes:
        """
        Serialize the segment for transmission.

        The header is packed with a zero checksum, the checksum is computed
        over header and payload, then patched into place.
        """
        header = struct.pack(
            HEADER_FORMAT,
            self.seq_num,
            self.ack_num,
            int(self.flags),
            0,  # Reserved
            0,  # Checksum placeholder
        )
        raw = bytearray(header + self.data)
        checksum = compute_checksum(bytes(raw))
        struct.pack_into("!H", raw, CHECKSUM_OFFSET, checksum)
        return bytes(raw)

    @classmethod
    def decode(cls, raw: bytes, verify: bool = True) -> "TCPSegment":
        """
        Parse a segment from a datagram.

        Raises:
            DecodeError: If the datagram is shorter than the header, uses
                reserved flag bits, or fails checksum verification.
        """
        if len(raw) < HEADER_SIZE:
            raise DecodeError(f"Segment too short: {len(raw)} bytes")

        seq_num, ack_num, flags, _reserved, checksum = struct.unpack(
            HEADER_FORMAT, raw[:HEADER_SIZE]
        )

        if flags & ~int(ALL_FLAGS):
            raise DecodeError(f"Reserved flag bits set: {flags:#04x}")

        if verify:
            zeroed = bytearray(raw)
            struct.pack_into("!H", zeroed, CHECKSUM_OFFSET, 0)
            expected = compute_checksum(bytes(zeroed))
            if expected != checksum:
                raise DecodeError(
                    f"Checksum mismatch: got {checksum:#06x}, expected {expected:#06x}"
                )

        return cls(
            seq_num=seq_num,
            ack_num=ack_num,
            flags=TCPFlags(flags),
            data=bytes(raw[HEADER_SIZE:]),
            checksum=checksum,
        )

    def __str__(self) -> str:
        return (
            f"[{self.flags}] seq={self.seq_num} ack={self.ack_num} "
            f"len={len(self.data)}"
        )


# Convenience functions for creating common segment types

def create_syn_segment(seq_num: int, ack_num: int = 0) -> TCPSegment:
    """Create a SYN segment for connection initiation."""
    return TCPSegment(seq_num=seq_num, ack_num=ack_num, flags=TCPFlags.SYN)


def create_syn_ack_segment(seq_num: int, ack_num: int) -> TCPSegment:
    """Create a SYN-ACK segment for connection response."""
    return TCPSegment(seq_num=seq_num, ack_num=ack_num,
                      flags=TCPFlags.SYN | TCPFlags.ACK)


def create_ack_segment(seq_num: int, ack_num: int) -> TCPSegment:
    """Create a pure ACK segment."""
    return TCPSegment(seq_num=seq_num, ack_num=ack_num, flags=TCPFlags.ACK)


def create_data_segment(seq_num: int, ack_num: int, data: bytes) -> TCPSegment:
    """Create a data segment."""
    return TCPSegment(seq_num=seq_num, ack_num=ack_num, flags=TCPFlags.ACK,
                      data=data)


def create_fin_segment(seq_num: int, ack_num: int) -> TCPSegment:
    """Create a FIN segment for connection termination."""
    return TCPSegment(seq_num=seq_num, ack_num=ack_num, flags=TCPFlags.FIN)


def create_fin_ack_segment(seq_num: int, ack_num: int) -> TCPSegment:
    """Create a FIN-ACK segment (peer side of teardown)."""
    return TCPSegment(seq_num=seq_num, ack_num=ack_num,
                      flags=TCPFlags.FIN | TCPFlags.ACK)
