"""
Retransmission Timer - timeout policy for the blocking receive.

There is no timer thread. The sender is single threaded: it sends, then
blocks in a receive call with a deadline. Expiry of that deadline *is* the
retransmission timeout, so this class only decides how long each receive
may block.

Two policies:
1. Fixed (default): handshake/teardown wait `control_timeout`, data transfer
   waits `data_timeout`.
2. Adaptive (opt-in): the data timeout follows RFC 6298
   - Jacobson's RTT estimator (SRTT / RTTVAR)
   - Karn's algorithm (don't sample RTT on retransmissions)
   - Exponential backoff on repeated timeouts
"""

import time
import logging
from dataclasses import dataclass
from typing import Optional, Callable, Dict


logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT = 5.0  # seconds


@dataclass
class RTTMeasurement:
    """A single RTT measurement."""
    offset: int
    send_time: float
    ack_time: float

    @property
    def rtt(self) -> float:
        return self.ack_time - self.send_time


class RetransmissionTimer:
    """
    Supplies receive timeouts and, when adaptive, estimates the RTO.

    RTO = SRTT + K*RTTVAR, clamped to [min_timeout, max_timeout].
    """

    # RFC 6298 constants
    ALPHA = 1/8
    BETA = 1/4
    K = 4

    def __init__(self,
                 control_timeout: float = DEFAULT_TIMEOUT,
                 data_timeout: float = DEFAULT_TIMEOUT,
                 adaptive: bool = False,
                 min_timeout: float = 0.2,
                 max_timeout: float = 60.0,
                 clock: Callable[[], float] = time.monotonic):
        if control_timeout <= 0 or data_timeout <= 0:
            raise ValueError("Timeouts must be positive")
        if min_timeout > max_timeout:
            raise ValueError("min_timeout must not exceed max_timeout")

        self._control_timeout = control_timeout
        self._fixed_data_timeout = data_timeout
        self.adaptive = adaptive
        self.min_timeout = min_timeout
        self.max_timeout = max_timeout
        self._clock = clock

        # RTT estimates (None until first measurement)
        self._srtt: Optional[float] = None
        self._rttvar: Optional[float] = None
        self._rto: float = data_timeout

        # Send times of in-flight segments, keyed by end offset
        self._pending: Dict[int, float] = {}

        self._sample_count = 0
        self.last_measurement: Optional[RTTMeasurement] = None
        self._timeout_count = 0

    @property
    def control_timeout(self) -> float:
        """Receive timeout for handshake and teardown, in seconds."""
        return self._control_timeout

    @property
    def data_timeout(self) -> float:
        """Receive timeout for data transfer, in seconds."""
        if self.adaptive:
            return self._rto
        return self._fixed_data_timeout

    @property
    def srtt(self) -> Optional[float]:
        return self._srtt

    @property
    def rttvar(self) -> Optional[float]:
        return self._rttvar

    @property
    def timeout_count(self) -> int:
        return self._timeout_count

    def start(self, end_offset: int, retransmitted: bool = False):
        """
        Arm the timer for a segment ending at `end_offset`.

        Retransmitted segments are not timed (Karn's algorithm); timing an
        earlier transmission of the same segment is cancelled as well.
        """
        if retransmitted:
            self._pending.pop(end_offset, None)
            return
        self._pending.setdefault(end_offset, self._clock())

    def on_ack(self, acked_offset: int):
        """
        Record a cumulative acknowledgment up to `acked_offset`.

        The newest timed segment covered by the ACK yields one RTT sample;
        all covered entries are discarded.
        """
        covered = [offset for offset in self._pending if offset <= acked_offset]
        if not covered:
            return

        newest = max(covered)
        send_time = self._pending[newest]
        for offset in covered:
            del self._pending[offset]

        measurement = RTTMeasurement(offset=newest, send_time=send_time,
                                     ack_time=self._clock())
        self._sample_count += 1
        self.last_measurement = measurement
        if self.adaptive:
            self.update_rtt(measurement.rtt)

    def update_rtt(self, measured_rtt: float):
        """
        Update RTT estimates with a new measurement (RFC 6298).

        - First measurement: SRTT = R, RTTVAR = R/2
        - Subsequent: RTTVAR = (1-β)*RTTVAR + β*|SRTT-R|
                      SRTT = (1-α)*SRTT + α*R
        """
        if self._srtt is None:
            self._srtt = measured_rtt
            self._rttvar = measured_rtt / 2
        else:
            self._rttvar = (1 - self.BETA) * self._rttvar + \
                          self.BETA * abs(self._srtt - measured_rtt)
            self._srtt = (1 - self.ALPHA) * self._srtt + \
                        self.ALPHA * measured_rtt

        self._rto = self._srtt + self.K * self._rttvar
        self._rto = max(self.min_timeout, min(self.max_timeout, self._rto))

    def on_timeout(self):
        """
        A receive deadline expired.

        Timed segments can no longer produce valid samples. In adaptive mode
        the RTO doubles (exponential backoff).
        """
        self._timeout_count += 1
        self._pending.clear()
        if self.adaptive:
            self._rto = min(self._rto * 2, self.max_timeout)
            logger.debug(f"RTO backed off to {self._rto:.3f}s")

    def get_statistics(self) -> dict:
        """Get timer statistics for debugging."""
        return {
            "srtt": self._srtt,
            "rttvar": self._rttvar,
            "data_timeout": self.data_timeout,
            "timeout_count": self._timeout_count,
            "samples": self._sample_count,
        }

    def __str__(self) -> str:
        srtt_str = f"{self._srtt*1000:.1f}ms" if self._srtt else "N/A"
        return f"Timer(SRTT={srtt_str}, RTO={self.data_timeout*1000:.1f}ms)"
