"""
Tests for the sender: handshake, teardown and whole transfers.
"""

import math
import random

import pytest
from utcp.connection import TCPSender, SenderConfig
from utcp.errors import InvalidStateError, RetryLimitExceeded, SourceError
from utcp.segment import (
    TCPFlags, create_ack_segment, create_syn_ack_segment, create_fin_ack_segment
)
from utcp.source import ByteSource
from utcp.states import TCPState
from utcp.stats import TransferStats
from simulator.network import ScriptedPeer, SimulatedPeer, DropOnce


SYN_ACK = create_syn_ack_segment(0, 1)

SIZES = [0, 1, 999, 1000, 1001, 12345]

# (size, mss, sws); one-byte segments stop short of the largest size
LOSSLESS_CASES = [
    (size, mss, sws)
    for mss, sws, sizes in [(1, 3, SIZES[:-1]), (100, 1, SIZES), (1000, 8, SIZES)]
    for size in sizes
]


def make_sender(peer, data=b"", **config):
    return TCPSender(
        local_port=9001,
        remote_ip="127.0.0.1",
        remote_port=9000,
        source=ByteSource.from_bytes(data),
        config=SenderConfig(**config),
        transport=peer,
    )


def control_flags(peer):
    return [seg.flags for seg in peer.capture.outbound() if not seg.data]


class TestSenderConfig:
    """Test configuration validation."""

    def test_defaults(self):
        config = SenderConfig()
        assert config.max_retries == 16
        assert config.control_timeout == 5.0

    @pytest.mark.parametrize("kwargs", [
        {"mss": 0}, {"sws": -1}, {"max_retries": -1}, {"initial_seq": -1},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            SenderConfig(**kwargs)

    def test_mss_and_sws_override_config(self):
        config = SenderConfig(mss=500, sws=2)
        sender = TCPSender(1, "127.0.0.1", 2, file_path="x", mss=100, sws=4,
                           config=config, transport=ScriptedPeer())
        assert (sender.mss, sender.sws) == (100, 4)
        assert (config.mss, config.sws) == (500, 2)

    def test_requires_file_or_source(self):
        with pytest.raises(ValueError):
            TCPSender(1, "127.0.0.1", 2)


class TestHandshake:
    """Test connect()."""

    def test_connect_first_attempt(self):
        """One SYN, one ACK, established."""
        peer = ScriptedPeer([SYN_ACK])
        sender = make_sender(peer)

        sender.connect()

        syn, ack = peer.capture.outbound()
        assert syn.flags == TCPFlags.SYN and syn.seq_num == 0
        assert ack.flags == TCPFlags.ACK and (ack.seq_num, ack.ack_num) == (1, 1)
        assert sender.state == TCPState.ESTABLISHED
        assert (sender.seq_num, sender.ack_num) == (1, 1)
        assert sender.stats.retransmissions == 0

    def test_connect_retries_after_timeout(self):
        peer = ScriptedPeer([None, SYN_ACK])
        sender = make_sender(peer)

        sender.connect()

        # Retransmitted SYN reuses the same sequence number
        assert [s.seq_num for s in peer.capture.outbound()] == [0, 0, 1]
        assert control_flags(peer) == [TCPFlags.SYN, TCPFlags.SYN, TCPFlags.ACK]
        assert sender.stats.retransmissions == 1
        assert sender.stats.timeouts == 1

    def test_connect_retries_on_wrong_response(self):
        peer = ScriptedPeer([create_ack_segment(0, 1), b"garbage", SYN_ACK])
        sender = make_sender(peer)

        sender.connect()

        assert control_flags(peer) == [TCPFlags.SYN] * 3 + [TCPFlags.ACK]
        assert sender.state == TCPState.ESTABLISHED

    def test_connect_gives_up(self):
        peer = ScriptedPeer()
        sender = make_sender(peer)

        with pytest.raises(RetryLimitExceeded) as excinfo:
            sender.connect()

        assert excinfo.value.operation == "connect"
        assert control_flags(peer) == [TCPFlags.SYN] * 17
        assert sender.state == TCPState.CLOSED
        assert sender.seq_num == 0

    def test_connect_twice(self):
        sender = make_sender(ScriptedPeer([SYN_ACK]))
        sender.connect()
        with pytest.raises(InvalidStateError):
            sender.connect()


class TestTeardown:
    """Test close()."""

    def test_close_discards_spurious_ack(self):
        peer = ScriptedPeer([SYN_ACK, create_ack_segment(1, 2), create_fin_ack_segment(1, 2)])
        sender = make_sender(peer)
        sender.connect()
        peer.capture.clear()

        sender.close()

        fin, ack = peer.capture.outbound()
        assert fin.flags == TCPFlags.FIN and fin.seq_num == 1
        assert ack.flags == TCPFlags.ACK and (ack.seq_num, ack.ack_num) == (2, 2)
        assert sender.state == TCPState.CLOSED
        assert peer.remaining == 0

    def test_close_retries_after_timeout(self):
        peer = ScriptedPeer([SYN_ACK, None, create_fin_ack_segment(1, 2)])
        sender = make_sender(peer)
        sender.connect()
        peer.capture.clear()

        sender.close()

        assert [(s.flags, s.seq_num) for s in peer.capture.outbound()] == [
            (TCPFlags.FIN, 1), (TCPFlags.FIN, 1), (TCPFlags.ACK, 2)
        ]
        assert sender.state == TCPState.CLOSED

    def test_close_ignores_syn_fin_ack(self):
        bogus = create_fin_ack_segment(1, 2)
        bogus.flags |= TCPFlags.SYN
        peer = ScriptedPeer([SYN_ACK, bogus, b"\x00", create_fin_ack_segment(1, 2)])
        sender = make_sender(peer)
        sender.connect()

        sender.close()

        assert control_flags(peer).count(TCPFlags.FIN) == 1
        assert sender.state == TCPState.CLOSED

    def test_close_gives_up(self):
        peer = ScriptedPeer([SYN_ACK])
        sender = make_sender(peer)
        sender.connect()
        peer.capture.clear()

        with pytest.raises(RetryLimitExceeded) as excinfo:
            sender.close()

        assert excinfo.value.operation == "close"
        assert control_flags(peer) == [TCPFlags.FIN] * 17
        assert sender.state == TCPState.CLOSED

    def test_close_before_connect(self):
        with pytest.raises(InvalidStateError):
            make_sender(ScriptedPeer()).close()


class TestTransfer:
    """Whole transfers against the simulated receiver."""

    @pytest.mark.parametrize("size,mss,sws", LOSSLESS_CASES)
    def test_lossless_segment_count(self, size, mss, sws):
        data = bytes(i % 251 for i in range(size))
        peer = SimulatedPeer()
        sender = make_sender(peer, data, mss=mss, sws=sws)

        stats = sender.transfer()

        assert len(peer.capture.data_segments()) == math.ceil(size / mss)
        assert control_flags(peer) == [TCPFlags.SYN, TCPFlags.ACK, TCPFlags.FIN, TCPFlags.ACK]
        assert stats.bytes_sent == size
        assert stats.retransmissions == 0
        assert bytes(peer.receiver.data) == data
        assert peer.receiver.closed
        assert sender.state == TCPState.CLOSED

    def test_sequence_numbers_continue_after_data(self):
        peer = SimulatedPeer()
        sender = make_sender(peer, b"z" * 250, mss=100)

        sender.transfer()

        fin = [s for s in peer.capture.outbound() if s.is_fin][0]
        assert fin.seq_num == 251
        assert sender.ack_num == 2

    def test_send_before_connect(self):
        with pytest.raises(InvalidStateError):
            make_sender(ScriptedPeer(), b"abc").send()

    def test_lost_segment_recovered(self):
        data = bytes(range(256)) * 20
        peer = SimulatedPeer(drop_outbound=DropOnce([1001, 3001]))
        sender = make_sender(peer, data, mss=1000, sws=4)

        stats = sender.transfer()

        assert bytes(peer.receiver.data) == data
        assert stats.bytes_sent == len(data)
        assert stats.retransmissions >= 2

    @pytest.mark.parametrize("seed", [1, 2, 3])
    def test_random_loss(self, seed):
        rng = random.Random(seed)
        data = bytes(rng.getrandbits(8) for _ in range(20000))
        peer = SimulatedPeer(loss_rate=0.1, seed=seed)
        sender = make_sender(peer, data, mss=512, sws=6)

        stats = sender.transfer()

        assert bytes(peer.receiver.data) == data
        assert stats.bytes_sent == len(data)
        assert sender.state == TCPState.CLOSED

    def test_retry_limit_during_transfer_closes(self):
        peer = ScriptedPeer([SYN_ACK])
        sender = make_sender(peer, b"a" * 10)
        sender.connect()

        with pytest.raises(RetryLimitExceeded):
            sender.send()
        assert sender.state == TCPState.CLOSED

    def test_adaptive_timeout_collects_samples(self):
        peer = SimulatedPeer()
        sender = make_sender(peer, b"q" * 5000, mss=500, adaptive_timeout=True)

        sender.transfer()

        assert sender.timer.get_statistics()["samples"] > 0
        assert sender.timer.data_timeout >= sender.timer.min_timeout

    def test_injected_stats(self):
        stats = TransferStats()
        sender = TCPSender(1, "127.0.0.1", 2, source=ByteSource.from_bytes(b"x" * 10),
                           transport=SimulatedPeer(), stats=stats)

        assert sender.transfer() is stats
        assert stats.bytes_sent == 10
        assert stats.segments_sent == 5

    def test_stats_as_dict(self):
        sender = make_sender(SimulatedPeer(), b"y" * 2500, mss=1000)

        assert sender.transfer().as_dict() == {
            "bytes_sent": 2500,
            "retransmissions": 0,
            "duplicate_acks": 0,
            "segments_sent": 7,
            "timeouts": 0,
        }

    def test_missing_file(self, tmp_path):
        sender = TCPSender(1, "127.0.0.1", 2, file_path=str(tmp_path / "nope"),
                           transport=ScriptedPeer([SYN_ACK]))
        sender.connect()
        with pytest.raises(SourceError):
            sender.send()

    def test_file_path(self, tmp_path):
        path = tmp_path / "data.bin"
        path.write_bytes(b"file contents" * 100)
        peer = SimulatedPeer()
        sender = TCPSender(1, "127.0.0.1", 2, file_path=str(path), mss=64, sws=4,
                           transport=peer)

        sender.transfer()

        assert bytes(peer.receiver.data) == path.read_bytes()

    def test_injected_transport_not_closed(self):
        peer = SimulatedPeer()
        with make_sender(peer, b"abc") as sender:
            sender.transfer()
        assert not peer.closed
