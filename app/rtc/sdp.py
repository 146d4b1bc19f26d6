"""SDP (Session Description Protocol) helpers for WebRTC offers and answers.

Only what the bridge needs: reading media sections, DTLS roles and ICE
candidates, and rewriting the DTLS role of an answer.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

import structlog

from app.core.constants import BridgeConstants

logger = structlog.get_logger(__name__)


@dataclass
class SDPMedia:
    """SDP media description (m= line)."""
    media_type: str  # "audio" or "video"
    port: int
    proto: str  # "UDP/TLS/RTP/SAVPF"
    formats: list[int] = field(default_factory=list)  # Payload types

    # Attributes
    mid: Optional[str] = None
    direction: Optional[str] = None  # sendrecv / sendonly / recvonly / inactive
    setup: Optional[str] = None  # DTLS role: actpass / active / passive
    rtpmap: dict[int, str] = field(default_factory=dict)  # {PT: "codec/rate"}
    candidates: list[str] = field(default_factory=list)  # "candidate:..." values


@dataclass
class SDPSession:
    """SDP session description."""

    version: int = 0
    origin: Optional[str] = None
    session_name: str = "-"
    setup: Optional[str] = None  # Session-level DTLS role (rare)

    media: list[SDPMedia] = field(default_factory=list)


@dataclass
class IceCandidateLine:
    """ICE candidate found in an SDP body, in browser RTCIceCandidateInit shape."""

    candidate: str
    sdp_mid: Optional[str] = None
    sdp_mline_index: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "candidate": self.candidate,
            "sdpMid": self.sdp_mid,
            "sdpMLineIndex": self.sdp_mline_index,
        }


_DIRECTIONS = {"sendrecv", "sendonly", "recvonly", "inactive"}

_ACTPASS_LINE = re.compile(
    rf"^a=setup:{BridgeConstants.DTLS_ROLE_ACTPASS}(?=\r?$)", re.MULTILINE
)


def parse_sdp(sdp_body: str) -> SDPSession:
    """Parse SDP from string.

    Args:
        sdp_body: SDP text content

    Returns:
        Parsed SDP session

    Example SDP:
        v=0
        o=- 4611731400430051336 2 IN IP4 127.0.0.1
        s=-
        t=0 0
        a=group:BUNDLE 0
        m=audio 9 UDP/TLS/RTP/SAVPF 111
        a=mid:0
        a=setup:actpass
        a=sendrecv
        a=rtpmap:111 opus/48000/2
        a=candidate:1 1 udp 2122260223 192.168.1.10 54321 typ host
    """
    session = SDPSession()
    current_media: Optional[SDPMedia] = None

    for line in sdp_body.strip().splitlines():
        line = line.strip()
        if not line or '=' not in line:
            continue

        field_type = line[0]
        field_value = line[2:].strip()

        try:
            if field_type == 'v':
                session.version = int(field_value)

            elif field_type == 'o':
                session.origin = field_value

            elif field_type == 's':
                session.session_name = field_value

            elif field_type == 'm':
                # Media: m=audio 9 UDP/TLS/RTP/SAVPF 111 0 8
                parts = field_value.split()
                if len(parts) >= 3:
                    media = SDPMedia(
                        media_type=parts[0],
                        port=int(parts[1]),
                        proto=parts[2],
                        formats=[int(x) for x in parts[3:] if x.isdigit()]
                    )
                    session.media.append(media)
                    current_media = media

            elif field_type == 'a':
                _apply_attribute(session, current_media, field_value)

        except (ValueError, IndexError) as e:
            logger.warning("SDP parse error", line=line, error=str(e))
            continue

    return session


def _apply_attribute(session: SDPSession, media: Optional[SDPMedia], value: str) -> None:
    if value.startswith('setup:'):
        role = value[6:]
        if media:
            media.setup = role
        else:
            session.setup = role
        return

    if media is None:
        return

    if value.startswith('mid:'):
        media.mid = value[4:]
    elif value in _DIRECTIONS:
        media.direction = value
    elif value.startswith('rtpmap:'):
        # a=rtpmap:111 opus/48000/2
        pt_str, codec_info = value[7:].split(' ', 1)
        media.rtpmap[int(pt_str)] = codec_info
    elif value.startswith('candidate:'):
        media.candidates.append(value)


def rewrite_dtls_role(sdp: str, role: str = BridgeConstants.DTLS_ROLE_ACTIVE) -> str:
    """Replace every ``a=setup:actpass`` line with ``a=setup:<role>``.

    Line endings and every other line are left untouched; ``passive`` and
    ``active`` lines are not rewritten.

    Args:
        sdp: SDP text (normally a locally generated answer)
        role: DTLS role to assert

    Returns:
        Rewritten SDP text
    """
    rewritten, count = _ACTPASS_LINE.subn(f"a=setup:{role}", sdp)
    if count:
        logger.debug("DTLS role rewritten", role=role, lines=count)
    return rewritten


def extract_candidates(sdp: str) -> list[IceCandidateLine]:
    """Extract ICE candidates from SDP, in the order they appear.

    Args:
        sdp: SDP text

    Returns:
        Candidates tagged with their media section's mid and index
    """
    session = parse_sdp(sdp)
    return [
        IceCandidateLine(candidate=candidate, sdp_mid=media.mid, sdp_mline_index=index)
        for index, media in enumerate(session.media)
        for candidate in media.candidates
    ]
