"""
Transfer statistics.

One instance per connection, updated by the engine and the state machine
driver as side effects of their work. Callers read it when the transfer is
done, or pass in their own instance to aggregate several transfers.
"""

from dataclasses import dataclass, asdict


@dataclass
class TransferStats:
    """Counters surfaced to the surrounding program."""

    # Bytes of file data sent and not rolled back by a rewind
    bytes_sent: int = 0
    retransmissions: int = 0
    duplicate_acks: int = 0
    segments_sent: int = 0
    timeouts: int = 0

    def as_dict(self) -> dict:
        return asdict(self)

    def __str__(self) -> str:
        return (
            f"Transfer Stats:\n"
            f"  Data transferred: {self.bytes_sent} bytes\n"
            f"  Segments sent: {self.segments_sent}\n"
            f"  Retransmissions: {self.retransmissions}\n"
            f"  Duplicate acknowledgements: {self.duplicate_acks}\n"
            f"  Timeouts: {self.timeouts}"
        )
