"""Calling API webhook payloads.

Payload shape (only the fields the bridge reads):

    {"entry": [{"changes": [{"value": {
        "contacts": [{"profile": {"name": "Ada"}, "wa_id": "15551234567"}],
        "calls": [{"id": "wacid.X", "event": "connect",
                   "session": {"sdp_type": "offer", "sdp": "v=0..."}}]
    }}]}]}

A ``terminate`` event carries ``duration`` and ``status`` instead of a session.
"""

from dataclasses import dataclass
from typing import Any, Optional

from app.core.constants import BridgeConstants
from app.core.exceptions import InvalidWebhookEvent


class CallEventType:
    """Call lifecycle events the bridge acts on."""

    CONNECT = "connect"
    TERMINATE = "terminate"


@dataclass
class CallEvent:
    """One call lifecycle event from the webhook."""

    call_id: str
    event: str
    sdp: Optional[str] = None
    caller_name: str = BridgeConstants.UNKNOWN_CALLER
    caller_number: str = BridgeConstants.UNKNOWN_CALLER
    duration: Optional[int] = None
    status: Optional[str] = None


def _first(container: Any, key: str) -> Any:
    if not isinstance(container, dict):
        return None
    items = container.get(key)
    if isinstance(items, list) and items:
        return items[0]
    return None


def parse_call_event(payload: Any) -> CallEvent:
    """Extract the first call event from a webhook payload.

    Args:
        payload: Decoded JSON body

    Returns:
        Parsed call event

    Raises:
        InvalidWebhookEvent: If the payload has no call with an id and event,
            or a connect event has no SDP offer
    """
    value = _first(_first(payload, "entry"), "changes")
    value = value.get("value") if isinstance(value, dict) else None

    call = _first(value, "calls")
    if not isinstance(call, dict) or not call.get("id") or not call.get("event"):
        raise InvalidWebhookEvent("Webhook carries no call event")

    contact = _first(value, "contacts")
    if not isinstance(contact, dict):
        contact = {}
    profile = contact.get("profile")
    if not isinstance(profile, dict):
        profile = {}

    session = call.get("session") if isinstance(call.get("session"), dict) else {}
    event = CallEvent(
        call_id=str(call["id"]),
        event=str(call["event"]),
        sdp=session.get("sdp"),
        caller_name=profile.get("name") or BridgeConstants.UNKNOWN_CALLER,
        caller_number=contact.get("wa_id") or BridgeConstants.UNKNOWN_CALLER,
        duration=call.get("duration"),
        status=call.get("status"),
    )

    if event.event == CallEventType.CONNECT and not event.sdp:
        raise InvalidWebhookEvent(f"Connect event for {event.call_id} has no SDP offer")

    return event
