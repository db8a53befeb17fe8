"""
Connection State Machine - the lifecycle of a sending connection.

The sender only ever performs an active open and an active close, so of the
eleven RFC 793 states it needs four:

    CLOSED --active_open--> SYN_SENT --recv_syn_ack--> ESTABLISHED
    ESTABLISHED --close--> FIN_SENT --recv_fin_ack--> CLOSED

Any state can fall back to CLOSED when an operation runs out of retries.

Handshake and teardown share the same segment and timeout primitives; the
Phase enum tells the driver which of the two exchanges it is running.
"""

from enum import Enum, auto
from dataclasses import dataclass
from typing import Optional, Tuple, Callable

from .segment import TCPSegment


class TCPState(Enum):
    """States of a sending connection."""

    # The connection does not exist (before handshake, after teardown)
    CLOSED = auto()

    # Sent SYN, waiting for SYN-ACK
    SYN_SENT = auto()

    # Handshake complete - data can flow
    ESTABLISHED = auto()

    # Sent FIN, waiting for FIN-ACK
    FIN_SENT = auto()

    def is_established(self) -> bool:
        return self == TCPState.ESTABLISHED

    def can_send_data(self) -> bool:
        return self == TCPState.ESTABLISHED


class Phase(Enum):
    """Which control exchange the state machine driver is running."""
    CONNECT = "connect"
    CLOSE = "close"

    @property
    def awaited_event(self) -> str:
        """The segment event that completes this phase."""
        return "recv_syn_ack" if self is Phase.CONNECT else "recv_fin_ack"


@dataclass
class StateTransition:
    """A transition with the action to take while performing it."""
    from_state: TCPState
    event: str
    to_state: TCPState
    action: Optional[str] = None

    def __str__(self) -> str:
        action_str = f" / {self.action}" if self.action else ""
        return f"{self.from_state.name} --[{self.event}]--> {self.to_state.name}{action_str}"


TRANSITIONS = {
    (TCPState.CLOSED, "active_open"): StateTransition(
        TCPState.CLOSED, "active_open", TCPState.SYN_SENT, "send_syn"),
    (TCPState.SYN_SENT, "recv_syn_ack"): StateTransition(
        TCPState.SYN_SENT, "recv_syn_ack", TCPState.ESTABLISHED, "send_ack"),
    (TCPState.ESTABLISHED, "close"): StateTransition(
        TCPState.ESTABLISHED, "close", TCPState.FIN_SENT, "send_fin"),
    (TCPState.FIN_SENT, "recv_fin_ack"): StateTransition(
        TCPState.FIN_SENT, "recv_fin_ack", TCPState.CLOSED, "send_ack"),
}


class TCPStateMachine:
    """
    Validates and applies state transitions.

    Transitions not listed in TRANSITIONS are rejected, except for
    "retry_limit", which is legal from every state and tears the connection
    down.
    """

    def __init__(self, initial_state: TCPState = TCPState.CLOSED):
        self.state = initial_state
        self._transition_callbacks: list[Callable] = []

    def on_transition(self, callback: Callable[[TCPState, TCPState, str], None]):
        """Register a callback for state transitions."""
        self._transition_callbacks.append(callback)

    def _notify_transition(self, from_state: TCPState, to_state: TCPState, event: str):
        for callback in self._transition_callbacks:
            callback(from_state, to_state, event)

    def transition(self, event: str) -> Tuple[bool, Optional[str]]:
        """
        Attempt a state transition based on an event.

        Returns:
            Tuple of (success, action_to_take). If success is False the
            transition was invalid and the state is unchanged.
        """
        old_state = self.state

        if event == "retry_limit":
            self.state = TCPState.CLOSED
            action = "delete_tcb"
        else:
            rule = TRANSITIONS.get((self.state, event))
            if rule is None:
                return (False, None)
            self.state = rule.to_state
            action = rule.action

        if self.state != old_state:
            self._notify_transition(old_state, self.state, event)
        return (True, action)

    def is_established(self) -> bool:
        return self.state.is_established()

    def is_closed(self) -> bool:
        return self.state == TCPState.CLOSED

    def __str__(self) -> str:
        return f"TCPStateMachine(state={self.state.name})"


def determine_event_from_segment(segment: TCPSegment) -> str:
    """
    Map a received control segment to a state machine event.

    A bare ACK during teardown is the peer acknowledging our FIN before it
    sends its own; it maps to "recv_ack", which completes nothing.
    """
    if segment.is_syn and segment.is_ack:
        return "recv_syn_ack"
    if segment.is_syn:
        return "recv_syn"
    if segment.is_fin and segment.is_ack:
        return "recv_fin_ack"
    if segment.is_fin:
        return "recv_fin"
    if segment.is_ack:
        return "recv_ack"
    return "unknown"
