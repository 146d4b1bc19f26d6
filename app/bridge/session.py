"""Call session state for one browser <-> remote bridge."""

import asyncio
import weakref
from dataclasses import MISSING, dataclass, field, fields
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from app.core.exceptions import InvalidTransition

if TYPE_CHECKING:
    from app.bridge.media_relay import MediaRelay
    from app.rtc.peer_leg import PeerLeg
    from app.signaling.browser import BrowserTransport


class CallState(Enum):
    """Bridge session states, in forward order."""

    IDLE = "idle"
    AWAITING_OFFERS = "awaiting_offers"
    NEGOTIATING = "negotiating"
    PRE_ACCEPTED = "pre_accepted"
    ACCEPTED = "accepted"
    TERMINATED = "terminated"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Terminated and Failed are absorbing."""
        return self in (CallState.TERMINATED, CallState.FAILED)


_FORWARD_ORDER = (
    CallState.IDLE,
    CallState.AWAITING_OFFERS,
    CallState.NEGOTIATING,
    CallState.PRE_ACCEPTED,
    CallState.ACCEPTED,
)


@dataclass(eq=False)
class CallSession:
    """The unit of state for one active bridge.

    The orchestrator exclusively owns the session and both legs; tracks are
    only referenced weakly.
    """

    call_id: Optional[str] = None
    state: CallState = CallState.IDLE

    # Offers (each set at most once)
    browser_offer: Optional[str] = None
    remote_offer: Optional[str] = None

    # Caller metadata from the connect webhook
    caller_name: Optional[str] = None
    caller_number: Optional[str] = None

    # Owned resources
    browser_leg: Optional["PeerLeg"] = None
    remote_leg: Optional["PeerLeg"] = None
    relay: Optional["MediaRelay"] = None

    # Relation only
    relayed_remote_track: Optional[weakref.ref] = None
    relayed_browser_track: Optional[weakref.ref] = None
    signaling_peer: Optional["BrowserTransport"] = None

    # Resolved by the remote leg's first inbound audio track
    remote_track: Optional[asyncio.Future] = None

    # Browser candidates received before the browser leg exists
    browser_candidates: list[dict] = field(default_factory=list)

    # Browser leg candidates gathered before the answer went out
    local_candidates: list[dict] = field(default_factory=list)
    answer_sent: bool = False

    pre_accept_sent: bool = False

    @property
    def offers_ready(self) -> bool:
        """Both SDP offers are present."""
        return bool(self.browser_offer) and bool(self.remote_offer)

    def advance(self, new_state: CallState) -> None:
        """Move to a new state.

        Forward moves follow IDLE -> AWAITING_OFFERS -> NEGOTIATING ->
        PRE_ACCEPTED -> ACCEPTED; TERMINATED/FAILED are reachable from any
        non-terminal state.

        Raises:
            InvalidTransition: If the move goes backwards or leaves a terminal state
        """
        if self.state.is_terminal:
            raise InvalidTransition(f"Session already {self.state.value}")

        if not new_state.is_terminal:
            if _FORWARD_ORDER.index(new_state) <= _FORWARD_ORDER.index(self.state):
                raise InvalidTransition(f"Cannot move from {self.state.value} to {new_state.value}")

        self.state = new_state

    def clear(self) -> None:
        """Reset every field except ``state`` to its empty value."""
        for f in fields(self):
            if f.name == "state":
                continue
            if f.default_factory is not MISSING:
                setattr(self, f.name, f.default_factory())
            else:
                setattr(self, f.name, f.default)

    def snapshot(self) -> dict[str, Any]:
        """Loggable view of the session."""
        return {
            "call_id": self.call_id,
            "state": self.state.value,
            "has_browser_offer": self.browser_offer is not None,
            "has_remote_offer": self.remote_offer is not None,
            "has_browser_leg": self.browser_leg is not None,
            "has_remote_leg": self.remote_leg is not None,
        }
