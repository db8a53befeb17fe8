"""
Send Engine - reliable, in-order transfer of a byte stream.

This is where the sliding window and loss recovery live. The engine runs on
the caller's thread and alternates strictly between sending one segment and
waiting (bounded) for one response:

    read up to window.available bytes at window.next
    for each chunk of <= MSS bytes:
        send it, then wait for one ACK
    wait for ACKs until nothing is in flight
    on loss: go back to the first unacknowledged byte and resume

Loss is detected two ways:
1. Timeout - no response within the data timeout. Rewind to the window base.
2. Triple duplicate ACK - the peer keeps asking for the same byte. Resend the
   segment at the window base right away (fast retransmit) and resume after
   it, without waiting for a timeout.

Sequence numbers: the SYN consumes the initial sequence number, so the byte
at stream offset k travels with sequence number ISN + 1 + k, and an
acknowledgment number A confirms the first A - (ISN + 1) bytes.
"""

import logging
from enum import Enum, auto
from typing import Optional

from .errors import RetryLimitExceeded
from .segment import TCPSegment, MAX_SEQ, create_data_segment
from .source import ByteSource
from .stats import TransferStats
from .timer import RetransmissionTimer
from .transport import DatagramTransport, receive_segment
from .window import SendWindow


logger = logging.getLogger(__name__)


DEFAULT_MAX_RETRIES = 16
DUP_ACK_THRESHOLD = 3


class LossEvent(Enum):
    TIMEOUT = auto()
    TRIPLE_DUPLICATE = auto()


class SendEngine:
    """
    Transfers everything in a ByteSource over an established connection.

    Usage:
        engine = SendEngine(transport, source, SendWindow(mss=1000, sws=8),
                            RetransmissionTimer(), TransferStats(),
                            initial_seq=0, ack_num=1)
        engine.run()
    """

    def __init__(self,
                 transport: DatagramTransport,
                 source: ByteSource,
                 window: SendWindow,
                 timer: RetransmissionTimer,
                 stats: TransferStats,
                 initial_seq: int = 0,
                 ack_num: int = 0,
                 max_retries: int = DEFAULT_MAX_RETRIES,
                 recv_bufsize: int = 65535):
        self._transport = transport
        self._source = source
        self.window = window
        self._timer = timer
        self.stats = stats
        self._isn = initial_seq
        self.ack_num = ack_num
        self.max_retries = max_retries
        self._recv_bufsize = recv_bufsize

        self.dup_acks = 0
        self.retries = 0

        # Highest offset ever sent; anything below it is a retransmission
        self._high_water = window.next
        self._bytes_base = stats.bytes_sent

    @property
    def sequence_number(self) -> int:
        """Sequence number of the next byte to send."""
        return self.seq_for(self.window.next)

    def seq_for(self, offset: int) -> int:
        return (self._isn + 1 + offset) & MAX_SEQ

    def offset_for(self, ack_num: int) -> int:
        return (ack_num - self._isn - 1) & MAX_SEQ

    def run(self) -> TransferStats:
        """
        Send the whole source and wait until all of it is acknowledged.

        Raises:
            RetryLimitExceeded: If more than max_retries consecutive losses
                occur without the window advancing.
            SourceError: If the source cannot be read.
        """
        logger.info(f"Sending {self._source} ({self.window})")

        while True:
            data = self._source.read_at(self.window.next, self.window.available)
            if not data and self.window.in_flight == 0:
                break

            loss = self._transmit(data)
            if loss is None:
                loss = self._drain()
            if loss is not None:
                self._recover(loss)

        logger.info(f"Transfer complete: {self.window.base} bytes acknowledged")
        return self.stats

    def _transmit(self, data: bytes) -> Optional[LossEvent]:
        """Send `data` chunk by chunk, reading one response after each."""
        for start in range(0, len(data), self.window.mss):
            chunk = data[start:start + self.window.mss]
            self._send_chunk(self.window.next, chunk)
            self.window.mark_sent(len(chunk))
            self._high_water = max(self._high_water, self.window.next)
            self.stats.bytes_sent = self._bytes_base + self.window.next
            sent_up_to = self.window.next

            loss = self._await_ack()
            if loss is not None:
                return loss
            if self.window.next != sent_up_to:
                # An ACK covered earlier transmissions past this chunk, so
                # the rest of `data` no longer starts at `next`; re-read
                return None
        return None

    def _drain(self) -> Optional[LossEvent]:
        """Collect ACKs until nothing is in flight."""
        while self.window.in_flight > 0:
            loss = self._await_ack()
            if loss is not None:
                return loss
        return None

    def _send_chunk(self, offset: int, chunk: bytes):
        retransmitted = offset < self._high_water
        segment = create_data_segment(self.seq_for(offset), self.ack_num, chunk)
        self._transport.send(segment.encode())
        self.stats.segments_sent += 1
        self._timer.start(offset + len(chunk), retransmitted=retransmitted)
        logger.debug(f"Sent data: {segment}{' (retransmission)' if retransmitted else ''}")

    def _await_ack(self) -> Optional[LossEvent]:
        result = receive_segment(self._transport, self._timer.data_timeout,
                                 self._recv_bufsize)
        if result.timed_out:
            return LossEvent.TIMEOUT
        if not result.received:
            # Undecodable - as good as no answer, but not a loss signal
            return None
        return self.process_ack(result.segment)

    def process_ack(self, segment: TCPSegment) -> Optional[LossEvent]:
        """
        Apply one response to the window.

        An ACK equal to the window base is a duplicate; one above it (and not
        beyond what was ever sent) is progress; anything else is stale.

        After a rewind the peer may acknowledge bytes past `next` that it
        received before the rewind. Such an ACK moves `next` forward so
        those bytes are not sent again.
        """
        if not segment.is_ack:
            logger.debug(f"Ignoring non-ACK segment: {segment}")
            return None

        acked = self.offset_for(segment.ack_num)

        if acked == self.window.base:
            self.dup_acks += 1
            self.stats.duplicate_acks += 1
            logger.debug(f"Duplicate ACK #{self.dup_acks} for offset {acked}")
            if self.dup_acks == DUP_ACK_THRESHOLD:
                self.dup_acks = 0
                return LossEvent.TRIPLE_DUPLICATE
            return None

        if self.window.next < acked <= self._high_water:
            logger.debug(f"ACK {acked} covers data sent before rewind to {self.window.next}")
            self.window.advance_to(acked)
            self.stats.bytes_sent = self._bytes_base + self.window.next

        if self.window.acknowledge(acked):
            self.dup_acks = 0
            self.retries = 0
            self._timer.on_ack(acked)
            logger.debug(f"ACK advanced window to {acked}")
            return None

        logger.debug(f"Ignoring stale ACK {segment.ack_num} (window {self.window})")
        return None

    def _recover(self, loss: LossEvent):
        """
        React to a loss signal.

        Raises:
            RetryLimitExceeded: When this loss exceeds the retry ceiling.
        """
        self.retries += 1
        if loss is LossEvent.TIMEOUT:
            self.stats.timeouts += 1
            self._timer.on_timeout()

        if self.retries > self.max_retries:
            logger.error(
                f"Giving up after {self.max_retries} retransmissions "
                f"at offset {self.window.base}"
            )
            raise RetryLimitExceeded("data transfer", self.max_retries)

        self.stats.retransmissions += 1

        if loss is LossEvent.TIMEOUT:
            logger.warning(
                f"Timeout with {self.window.in_flight} bytes in flight, "
                f"going back to offset {self.window.base}"
            )
            self.dup_acks = 0
            self._rewind(self.window.base)
            return

        base = self.window.base
        chunk = self._source.read_at(base, min(self.window.mss, self.window.in_flight))
        logger.warning(f"Triple duplicate ACK for offset {base}, fast retransmit")
        self._send_chunk(base, chunk)
        self._rewind(base + len(chunk))

    def _rewind(self, offset: int):
        """Resume sending from `offset`; bytes beyond it count as unsent."""
        self.window.rewind(offset)
        self.stats.bytes_sent = self._bytes_base + self.window.next
