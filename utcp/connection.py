"""
Connection - the sending end of a utcp connection.

This module brings together the components:
- Segment encoding and decoding
- State machine for the connection lifecycle
- Send engine for windowed, reliable data transfer
- Retransmission timer for receive deadlines
- Transfer statistics

A TCPSender owns one connection to one receiver and moves one file across
it in three blocking steps:
1. connect() - three-way handshake (SYN, SYN-ACK, ACK)
2. send()    - the whole file, reliably and in order
3. close()   - teardown (FIN, [ACK], FIN-ACK, ACK)

Handshake and teardown are the same exchange with different flags: send a
control segment, wait for the segment that completes the phase, acknowledge
it. One driver, _run_phase(), runs both.
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional

from .errors import InvalidStateError, RetryLimitExceeded
from .engine import SendEngine, DEFAULT_MAX_RETRIES
from .segment import (
    TCPSegment, MAX_SEQ,
    create_syn_segment, create_ack_segment, create_fin_segment
)
from .source import ByteSource
from .states import TCPState, TCPStateMachine, Phase, determine_event_from_segment
from .stats import TransferStats
from .timer import RetransmissionTimer, DEFAULT_TIMEOUT
from .transport import DatagramTransport, UdpTransport, receive_segment
from .window import SendWindow


# Set up logging
logger = logging.getLogger(__name__)


@dataclass
class SenderConfig:
    """Configuration options for a sender."""

    # Maximum payload bytes per segment
    mss: int = 1000

    # Sliding window size in segments
    sws: int = 8

    # Consecutive retransmissions allowed per operation
    max_retries: int = DEFAULT_MAX_RETRIES

    # Receive timeouts (seconds)
    control_timeout: float = DEFAULT_TIMEOUT
    data_timeout: float = DEFAULT_TIMEOUT

    # Estimate the data timeout from RTT samples instead of using data_timeout
    adaptive_timeout: bool = False

    # Initial sequence number
    initial_seq: int = 0

    # Largest datagram accepted from the peer
    recv_bufsize: int = 65535

    def __post_init__(self):
        if self.mss <= 0:
            raise ValueError(f"Invalid maximum segment size: {self.mss}")
        if self.sws <= 0:
            raise ValueError(f"Invalid window size: {self.sws}")
        if self.max_retries < 0:
            raise ValueError(f"Invalid retry limit: {self.max_retries}")
        if not 0 <= self.initial_seq <= MAX_SEQ:
            raise ValueError(f"Invalid initial sequence number: {self.initial_seq}")


class TCPSender:
    """
    The sending side of a connection.

    Usage:
        sender = TCPSender(local_port=9001, remote_ip="127.0.0.1",
                           remote_port=9000, file_path="data.bin",
                           mss=1000, sws=8)
        with sender:
            stats = sender.transfer()   # connect(), send(), close()
        print(stats)

    A transport and source may be injected instead (the simulator does so);
    otherwise a UDP socket is opened at connect() and the file at send().
    """

    def __init__(self,
                 local_port: int,
                 remote_ip: str,
                 remote_port: int,
                 file_path: Optional[str] = None,
                 mss: Optional[int] = None,
                 sws: Optional[int] = None,
                 config: Optional[SenderConfig] = None,
                 transport: Optional[DatagramTransport] = None,
                 source: Optional[ByteSource] = None,
                 stats: Optional[TransferStats] = None):
        if file_path is None and source is None:
            raise ValueError("Either file_path or source is required")

        overrides = {}
        if mss is not None:
            overrides["mss"] = mss
        if sws is not None:
            overrides["sws"] = sws
        self.config = replace(config or SenderConfig(), **overrides)

        self.local_port = local_port
        self.remote_ip = remote_ip
        self.remote_port = remote_port
        self.file_path = file_path

        self._transport = transport
        self._owns_transport = transport is None
        self._source = source

        self.stats = stats if stats is not None else TransferStats()
        self.timer = RetransmissionTimer(
            control_timeout=self.config.control_timeout,
            data_timeout=self.config.data_timeout,
            adaptive=self.config.adaptive_timeout,
        )

        self._state_machine = TCPStateMachine()
        self._state_machine.on_transition(self._log_transition)

        self.seq_num = self.config.initial_seq
        self.ack_num = 0

    @property
    def state(self) -> TCPState:
        return self._state_machine.state

    @property
    def mss(self) -> int:
        return self.config.mss

    @property
    def sws(self) -> int:
        return self.config.sws

    def connect(self):
        """
        Perform the three-way handshake.

        Blocks until ESTABLISHED.

        Raises:
            InvalidStateError: If the connection is not CLOSED.
            RetryLimitExceeded: If no SYN-ACK arrives within the retry budget.
        """
        if self.state != TCPState.CLOSED:
            raise InvalidStateError(f"Cannot connect in state {self.state.name}")

        if self._transport is None:
            self._transport = UdpTransport(self.local_port, self.remote_ip,
                                           self.remote_port)
        self._run_phase(Phase.CONNECT)

    def send(self) -> TransferStats:
        """
        Transfer the entire file.

        Raises:
            InvalidStateError: If the connection is not ESTABLISHED.
            RetryLimitExceeded: If the transfer runs out of retries.
            SourceError: If the file cannot be opened or read.
        """
        if not self.state.can_send_data():
            raise InvalidStateError(f"Cannot send in state {self.state.name}")

        source = self._source or ByteSource.open(self.file_path)
        engine = SendEngine(
            self._transport,
            source,
            SendWindow(mss=self.config.mss, sws=self.config.sws),
            self.timer,
            self.stats,
            # The engine numbers bytes from one past the sequence number given
            initial_seq=(self.seq_num - 1) & MAX_SEQ,
            ack_num=self.ack_num,
            max_retries=self.config.max_retries,
            recv_bufsize=self.config.recv_bufsize,
        )
        try:
            engine.run()
        except RetryLimitExceeded:
            self._state_machine.transition("retry_limit")
            raise
        finally:
            if source is not self._source:
                source.close()

        self.seq_num = engine.sequence_number
        return self.stats

    def close(self):
        """
        Perform the teardown.

        Blocks until CLOSED.

        Raises:
            InvalidStateError: If the connection is not ESTABLISHED.
            RetryLimitExceeded: If no FIN-ACK arrives within the retry budget.
        """
        if self.state != TCPState.ESTABLISHED:
            raise InvalidStateError(f"Cannot close in state {self.state.name}")
        self._run_phase(Phase.CLOSE)

    def transfer(self) -> TransferStats:
        """connect(), send() and close() in one call."""
        self.connect()
        self.send()
        self.close()
        return self.stats

    def shutdown(self):
        """Release the transport if this sender opened it."""
        if self._owns_transport and self._transport is not None:
            self._transport.close()
            self._transport = None

    def __enter__(self) -> "TCPSender":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()
        return False

    def _run_phase(self, phase: Phase):
        """
        Drive one control exchange to completion.

        Each attempt sends SYN (CONNECT) or FIN (CLOSE), which consumes one
        sequence number. If the attempt fails, the increment is undone
        before resending so every retransmission carries the same number.
        """
        success, _ = self._state_machine.transition(
            "active_open" if phase is Phase.CONNECT else "close"
        )
        if not success:
            raise InvalidStateError(f"Cannot {phase.value} in state {self.state.name}")

        retries = 0
        while True:
            if phase is Phase.CONNECT:
                request = create_syn_segment(self.seq_num, self.ack_num)
            else:
                request = create_fin_segment(self.seq_num, self.ack_num)
            self._send_control(request)
            self.seq_num = (self.seq_num + 1) & MAX_SEQ

            if self._await_control(phase) is not None:
                self.ack_num = (self.ack_num + 1) & MAX_SEQ
                self._send_control(create_ack_segment(self.seq_num, self.ack_num))
                self._state_machine.transition(phase.awaited_event)
                return

            self.seq_num = (self.seq_num - 1) & MAX_SEQ
            retries += 1
            if retries > self.config.max_retries:
                logger.error(f"{phase.value}: reached maximum number of retransmissions")
                self._state_machine.transition("retry_limit")
                raise RetryLimitExceeded(phase.value, self.config.max_retries)
            self.stats.retransmissions += 1
            logger.debug(f"{phase.value}: retransmitting {request.flags} (attempt {retries + 1})")

    def _await_control(self, phase: Phase) -> Optional[TCPSegment]:
        """
        Wait for the segment that completes `phase`.

        Returns None when the attempt failed and must be retried. During
        CONNECT any unexpected response fails the attempt; during CLOSE
        responses other than FIN-ACK (typically the bare ACK of our FIN) are
        discarded and the wait continues.
        """
        while True:
            result = receive_segment(self._transport, self.timer.control_timeout,
                                     self.config.recv_bufsize)
            if result.timed_out:
                self.stats.timeouts += 1
                logger.warning(f"{phase.value}: timeout waiting for {phase.awaited_event}")
                return None

            if result.received:
                segment = result.segment
                if determine_event_from_segment(segment) == phase.awaited_event:
                    return segment
                description = str(segment)
            else:
                description = f"undecodable datagram ({result.error})"

            if phase is Phase.CONNECT:
                logger.debug(f"connect: expected SYN-ACK, got {description}")
                return None
            logger.debug(f"close: discarding {description}")

    def _send_control(self, segment: TCPSegment):
        self._transport.send(segment.encode())
        self.stats.segments_sent += 1
        logger.debug(f"Sent {segment}")

    def _log_transition(self, from_state: TCPState, to_state: TCPState, event: str):
        logger.info(f"{from_state.name} --[{event}]--> {to_state.name} "
                    f"({self.remote_ip}:{self.remote_port})")

    def __str__(self) -> str:
        return (
            f"TCPSender({self.local_port} -> {self.remote_ip}:{self.remote_port}, "
            f"state={self.state.name}, seq={self.seq_num}, ack={self.ack_num})"
        )
