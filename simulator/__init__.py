# utcp - Network Simulator
from .network import (
    SimulatedPeer, ScriptedPeer, ReceiverLogic, UdpReceiver,
    DropOnce, PacketCapture, NetworkStats
)

__all__ = [
    "SimulatedPeer", "ScriptedPeer", "ReceiverLogic", "UdpReceiver",
    "DropOnce", "PacketCapture", "NetworkStats",
]
