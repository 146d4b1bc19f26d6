"""WebRTC peer legs on top of aiortc.

- PeerLeg: one RTCPeerConnection, its callbacks turned into LegEvents
- sdp: SDP parsing, DTLS role rewrite and candidate extraction
"""

__all__ = [
    "LegEvent",
    "LegEventType",
    "PeerLeg",
]

from app.rtc.peer_leg import LegEvent, LegEventType, PeerLeg
