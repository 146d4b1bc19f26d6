"""Media relay between the two peer legs of a call.

Pass-through only: an inbound track of one leg is attached as an outbound
track of the other through an aiortc relay proxy, so each source track can
feed its destination without being consumed twice.
"""

from typing import TYPE_CHECKING

import structlog
from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaRelay as TrackFanout

if TYPE_CHECKING:
    from app.rtc.peer_leg import PeerLeg

logger = structlog.get_logger(__name__)


class MediaRelay:
    """Stage and forward inbound audio tracks onto the opposite leg.

    Data flow:
    - Browser leg inbound track -> staged until the remote leg exists -> remote leg
    - Remote leg inbound track -> browser leg

    Forwarding is idempotent per (track, destination leg).
    """

    def __init__(self) -> None:
        self._fanout = TrackFanout()
        self._staged: dict[str, list[MediaStreamTrack]] = {}
        self._forwarded: dict[str, set[str]] = {}
        self._proxies: list[MediaStreamTrack] = []

    def stage(self, track: MediaStreamTrack, destination: str) -> bool:
        """Hold an inbound track until its destination leg is ready.

        Args:
            track: Inbound track
            destination: Name of the leg that will receive it

        Returns:
            True if the track was staged, False if skipped or already staged
        """
        if track.kind != "audio":
            logger.info("Skipping non-audio track", kind=track.kind, destination=destination)
            return False

        staged = self._staged.setdefault(destination, [])
        if any(existing is track for existing in staged):
            return False

        staged.append(track)
        logger.debug("Track staged", track_id=track.id, destination=destination)
        return True

    def forward(self, track: MediaStreamTrack, destination: "PeerLeg") -> bool:
        """Attach an inbound track as an outbound track of ``destination``.

        Args:
            track: Inbound track from the opposite leg
            destination: Leg that will send the track to its peer

        Returns:
            True if attached now, False if skipped or already attached
        """
        if track.kind != "audio":
            logger.info("Skipping non-audio track", kind=track.kind, destination=destination.name)
            return False

        forwarded = self._forwarded.setdefault(destination.name, set())
        if track.id in forwarded:
            logger.debug("Track already forwarded", track_id=track.id, destination=destination.name)
            return False

        proxy = self._fanout.subscribe(track, buffered=False)
        destination.add_outbound_track(proxy)
        self._proxies.append(proxy)
        forwarded.add(track.id)

        logger.info("Track forwarded", track_id=track.id, destination=destination.name)
        return True

    def forward_staged(self, destination: "PeerLeg") -> list[MediaStreamTrack]:
        """Forward every track staged for ``destination``.

        Returns:
            Tracks attached by this call
        """
        staged = self._staged.pop(destination.name, [])
        return [track for track in staged if self.forward(track, destination)]

    def close(self) -> None:
        """Stop every proxy and forget staged/forwarded tracks."""
        for proxy in self._proxies:
            proxy.stop()

        logger.debug("Media relay closed", proxies=len(self._proxies))
        self._proxies.clear()
        self._staged.clear()
        self._forwarded.clear()
