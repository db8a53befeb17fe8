"""
Send Window - bookkeeping over the byte stream being transferred.

The window never holds data itself; the byte source can be re-read at any
offset. It only tracks two offsets:

    [    ACKed    |  Sent, unACKed  |  Sendable  |  Beyond window  ]
                  ^                 ^            ^
                 base              next     base + capacity

base - oldest unacknowledged byte (everything before it is ACKed)
next - next byte to send

Invariant: base <= next <= base + capacity.
"""

from dataclasses import dataclass


@dataclass
class SendWindow:
    """Sliding window of `sws` segments of up to `mss` bytes each."""

    mss: int
    sws: int
    base: int = 0
    next: int = 0

    def __post_init__(self):
        if self.mss <= 0:
            raise ValueError(f"Invalid maximum segment size: {self.mss}")
        if self.sws <= 0:
            raise ValueError(f"Invalid window size: {self.sws}")
        self._check()

    @property
    def capacity(self) -> int:
        """Bytes allowed in flight."""
        return self.mss * self.sws

    @property
    def in_flight(self) -> int:
        """Bytes sent but not yet acknowledged."""
        return self.next - self.base

    @property
    def available(self) -> int:
        """Bytes that may still be sent before the window is full."""
        return self.base + self.capacity - self.next

    def mark_sent(self, length: int):
        """Advance `next` past a freshly transmitted chunk."""
        if length > self.available:
            raise ValueError(
                f"Chunk of {length} bytes exceeds window space ({self.available})"
            )
        self.next += length

    def acknowledge(self, offset: int) -> bool:
        """
        Slide the window to a cumulative acknowledgment.

        Returns True if the window advanced. Offsets at or below base, or
        beyond next, change nothing.
        """
        if offset <= self.base or offset > self.next:
            return False
        self.base = offset
        return True

    def advance_to(self, offset: int):
        """
        Move `next` forward to bytes sent before a rewind.

        Used when a cumulative ACK covers data that was transmitted earlier
        and has not been resent yet.
        """
        if not self.next <= offset <= self.base + self.capacity:
            raise ValueError(
                f"Advance offset {offset} outside [{self.next}, "
                f"{self.base + self.capacity}]"
            )
        self.next = offset

    def rewind(self, offset: int):
        """Go back: treat everything from `offset` onward as unsent."""
        if not self.base <= offset <= self.next:
            raise ValueError(
                f"Rewind offset {offset} outside [{self.base}, {self.next}]"
            )
        self.next = offset

    def _check(self):
        if not 0 <= self.base <= self.next <= self.base + self.capacity:
            raise ValueError(f"Inconsistent window: {self}")

    def __str__(self) -> str:
        return (
            f"Window(base={self.base}, next={self.next}, "
            f"capacity={self.capacity})"
        )
