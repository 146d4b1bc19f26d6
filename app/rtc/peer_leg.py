"""Peer session adapter: one aiortc RTCPeerConnection per call leg.

Peer connection callbacks are turned into ``LegEvent`` messages and handed,
in the order they happen, to a single sink supplied by the owner:

- TRACK: an inbound media track arrived (fired while the remote offer is applied)
- ICE_CANDIDATE: a local candidate was gathered (one event per candidate)
- CONNECTION_STATE: the peer connection changed state
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Callable, Optional

import structlog
from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp

from app.core.exceptions import NegotiationFailure
from app.rtc.sdp import extract_candidates


class LegEventType(Enum):
    """Peer leg event types."""

    TRACK = auto()
    ICE_CANDIDATE = auto()
    CONNECTION_STATE = auto()


@dataclass
class LegEvent:
    """Peer leg event data."""

    type: LegEventType
    leg: str
    track: Optional[MediaStreamTrack] = None
    candidate: Optional[dict] = None
    state: Optional[str] = None


LegEventSink = Callable[[LegEvent], None]


class PeerLeg:
    """One peer media session terminated at the bridge.

    The owner drives negotiation (remote offer, outbound tracks, answer) and
    receives everything the peer connection reports through ``on_event``.
    ICE exchange is terminal: once the connection reports ``connected``,
    further remote candidates are ignored.
    """

    def __init__(
        self,
        name: str,
        on_event: LegEventSink,
        ice_servers: Optional[list[RTCIceServer]] = None,
        peer_connection_factory: Callable[..., Any] = RTCPeerConnection
    ) -> None:
        """Initialize peer leg.

        Args:
            name: Leg name used in events and logs ("browser" / "remote")
            on_event: Sink receiving every LegEvent, in order
            ice_servers: STUN/TURN servers for this connection
            peer_connection_factory: Media engine constructor (RTCPeerConnection)
        """
        self._name = name
        self._on_event = on_event
        self._pc = peer_connection_factory(
            configuration=RTCConfiguration(iceServers=ice_servers or [])
        )
        self._pc.on("track", self._on_track)
        self._pc.on("connectionstatechange", self._on_connection_state_change)

        self._ice_connected = False
        self._closed = False

        self._logger = structlog.get_logger(__name__).bind(leg=name)

    @property
    def name(self) -> str:
        """Leg name."""
        return self._name

    @property
    def connection_state(self) -> str:
        """Current peer connection state."""
        return self._pc.connectionState

    @property
    def ice_connected(self) -> bool:
        """Whether the connection has reached ``connected``."""
        return self._ice_connected

    @property
    def closed(self) -> bool:
        return self._closed

    async def set_remote_offer(self, sdp: str) -> None:
        """Apply the peer's SDP offer as remote description.

        Inbound TRACK events are emitted while the offer is applied.

        Raises:
            NegotiationFailure: If the media engine rejects the offer
        """
        try:
            await self._pc.setRemoteDescription(RTCSessionDescription(sdp=sdp, type="offer"))
        except Exception as e:
            raise NegotiationFailure(self._name, "set remote offer", e) from e

        self._logger.info("Remote offer applied", sdp_length=len(sdp))

    def add_outbound_track(self, track: MediaStreamTrack) -> None:
        """Attach a track to send to this leg's peer.

        Must be called before ``answer()``; there is no renegotiation.

        Raises:
            NegotiationFailure: If the media engine refuses the track
        """
        try:
            self._pc.addTrack(track)
        except Exception as e:
            raise NegotiationFailure(self._name, "add outbound track", e) from e

        self._logger.info("Outbound track attached", kind=track.kind, track_id=track.id)

    async def answer(self) -> str:
        """Create the local answer, set it as local description and return its SDP.

        Every gathered candidate is then emitted as an ICE_CANDIDATE event.

        Raises:
            NegotiationFailure: If answer creation or local description fails
        """
        try:
            answer = await self._pc.createAnswer()
            await self._pc.setLocalDescription(answer)
        except Exception as e:
            raise NegotiationFailure(self._name, "create answer", e) from e

        local_sdp = self._pc.localDescription.sdp
        candidates = extract_candidates(local_sdp)
        self._logger.info("Local answer set", candidates=len(candidates))

        for candidate in candidates:
            self._emit(LegEventType.ICE_CANDIDATE, candidate=candidate.to_dict())

        return local_sdp

    async def add_ice_candidate(self, candidate: Optional[dict]) -> bool:
        """Apply a remote ICE candidate (RTCIceCandidateInit shape).

        Args:
            candidate: {"candidate": "candidate:...", "sdpMid": ..., "sdpMLineIndex": ...}

        Returns:
            True if the candidate was handed to the media engine

        Raises:
            NegotiationFailure: If the candidate is malformed or rejected
        """
        if self._ice_connected or self._closed:
            self._logger.debug("ICE exchange finished, ignoring candidate")
            return False

        raw = (candidate or {}).get("candidate")
        if not raw:
            # End-of-candidates marker
            return False

        try:
            if raw.startswith("candidate:"):
                raw = raw.split(":", 1)[1]
            ice_candidate = candidate_from_sdp(raw)
            ice_candidate.sdpMid = candidate.get("sdpMid")
            ice_candidate.sdpMLineIndex = candidate.get("sdpMLineIndex")
            await self._pc.addIceCandidate(ice_candidate)
        except Exception as e:
            raise NegotiationFailure(self._name, "add ICE candidate", e) from e

        return True

    async def close(self) -> None:
        """Close the peer connection."""
        if self._closed:
            return

        self._closed = True
        await self._pc.close()
        self._logger.info("Peer connection closed")

    def _emit(self, event_type: LegEventType, **fields: Any) -> None:
        self._on_event(LegEvent(type=event_type, leg=self._name, **fields))

    def _on_track(self, track: MediaStreamTrack) -> None:
        self._logger.info("Inbound track received", kind=track.kind, track_id=track.id)
        self._emit(LegEventType.TRACK, track=track)

    def _on_connection_state_change(self) -> None:
        state = self._pc.connectionState
        if state == "connected":
            self._ice_connected = True
        self._logger.info("Connection state changed", state=state)
        self._emit(LegEventType.CONNECTION_STATE, state=state)
