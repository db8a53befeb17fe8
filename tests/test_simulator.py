"""
Tests for the simulated receiver and the capture helpers.
"""

from utcp.segment import (
    TCPFlags, create_ack_segment, create_data_segment, create_fin_segment,
    create_syn_segment
)
from simulator.network import (
    DropOnce, PacketCapture, ReceiverLogic, ScriptedPeer, SimulatedPeer
)


def connected_receiver():
    receiver = ReceiverLogic(initial_seq=100)
    receiver.handle(create_syn_segment(0))
    receiver.handle(create_ack_segment(1, 101))
    return receiver


class TestReceiverLogic:
    """Test the receiving side's responses."""

    def test_syn_gets_syn_ack(self):
        receiver = ReceiverLogic(initial_seq=100)
        (response,) = receiver.handle(create_syn_segment(41))

        assert response.flags == TCPFlags.SYN | TCPFlags.ACK
        assert (response.seq_num, response.ack_num) == (100, 42)

    def test_segment_before_syn_ignored(self):
        assert ReceiverLogic().handle(create_data_segment(1, 0, b"x")) == []

    def test_in_order_data(self):
        receiver = connected_receiver()
        assert receiver.established

        (first,) = receiver.handle(create_data_segment(1, 101, b"abc"))
        (second,) = receiver.handle(create_data_segment(4, 101, b"de"))

        assert (first.ack_num, second.ack_num) == (4, 6)
        assert bytes(receiver.data) == b"abcde"

    def test_out_of_order_data_gets_duplicate_ack(self):
        receiver = connected_receiver()

        (response,) = receiver.handle(create_data_segment(10, 101, b"late"))

        assert response.ack_num == 1
        assert receiver.data == bytearray()

    def test_fin_and_final_ack(self):
        receiver = connected_receiver()
        receiver.handle(create_data_segment(1, 101, b"abc"))

        ack, fin_ack = receiver.handle(create_fin_segment(4, 101))

        assert ack.flags == TCPFlags.ACK and ack.ack_num == 5
        assert fin_ack.flags == TCPFlags.FIN | TCPFlags.ACK
        assert fin_ack.seq_num == 101
        assert receiver.fin_received and not receiver.closed

        assert receiver.handle(create_ack_segment(5, 102)) == []
        assert receiver.closed

    def test_fin_ack_only(self):
        receiver = ReceiverLogic(ack_before_fin=False)
        receiver.handle(create_syn_segment(0))

        (response,) = receiver.handle(create_fin_segment(1, 1))
        assert response.is_fin and response.is_ack


class TestSimulatedPeer:
    """Test delivery, loss and capture."""

    def test_responses_are_queued(self):
        peer = SimulatedPeer()
        peer.send(create_syn_segment(0).encode())

        assert peer.receive(1.0) is not None
        assert peer.receive(1.0) is None
        assert [s.flags for s in peer.capture.inbound()] == [TCPFlags.SYN | TCPFlags.ACK]

    def test_drop_once(self):
        rule = DropOnce([1])
        segment = create_data_segment(1, 0, b"x")

        assert rule(segment)
        assert not rule(segment)
        assert not rule(create_syn_segment(1))

    def test_dropped_outbound_counted(self):
        peer = SimulatedPeer(drop_outbound=DropOnce([0], data_only=False))
        peer.send(create_syn_segment(0).encode())

        assert peer.stats.packets_dropped == 1
        assert peer.stats.packets_delivered == 0
        assert peer.receive(1.0) is None
        assert peer.receiver.expected is None

    def test_inject(self):
        peer = SimulatedPeer()
        peer.inject(b"noise")
        assert peer.receive(1.0) == b"noise"
        assert peer.capture.inbound() == []


class TestPacketCapture:
    """Test capture helpers."""

    def test_empty_summary(self):
        assert PacketCapture().summary() == "No packets captured"

    def test_summary_lists_segments(self):
        capture = PacketCapture()
        capture.capture(create_syn_segment(0))
        capture.capture(create_ack_segment(1, 1), "<-")

        summary = capture.summary()
        assert summary.startswith("Captured 2 packets:")
        assert "->" in summary and "<-" in summary

    def test_summary_truncates(self):
        capture = PacketCapture()
        for i in range(60):
            capture.capture(create_data_segment(i, 0, b"x"))

        assert "... and 10 more" in capture.summary()
        assert len(capture.data_segments()) == 60

    def test_scripted_peer_exhausts(self):
        peer = ScriptedPeer([b"raw"])
        assert peer.receive(1.0) == b"raw"
        assert peer.receive(1.0) is None
        assert peer.receive_calls == 2
