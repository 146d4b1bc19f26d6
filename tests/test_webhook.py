"""Tests for webhook payload parsing."""

from typing import Any

import pytest

from app.core.exceptions import InvalidWebhookEvent
from app.signaling.webhook import CallEventType, parse_call_event
from tests.fakes import REMOTE_OFFER


def webhook(call: dict[str, Any], contacts: Any = None) -> dict[str, Any]:
    value: dict[str, Any] = {"messaging_product": "whatsapp", "calls": [call]}
    if contacts is not None:
        value["contacts"] = contacts
    return {"object": "whatsapp_business_account", "entry": [{"changes": [{"field": "calls", "value": value}]}]}


class TestParseCallEvent:
    """Test extraction of call events."""

    def test_connect(self) -> None:
        payload = webhook(
            {"id": "wacid.1", "event": "connect", "session": {"sdp_type": "offer", "sdp": REMOTE_OFFER}},
            contacts=[{"profile": {"name": "Ada"}, "wa_id": "15551234567"}],
        )

        event = parse_call_event(payload)

        assert event.call_id == "wacid.1"
        assert event.event == CallEventType.CONNECT
        assert event.sdp == REMOTE_OFFER
        assert event.caller_name == "Ada"
        assert event.caller_number == "15551234567"

    def test_caller_defaults_to_unknown(self) -> None:
        payload = webhook({"id": "wacid.1", "event": "connect", "session": {"sdp": REMOTE_OFFER}})

        event = parse_call_event(payload)

        assert event.caller_name == "Unknown"
        assert event.caller_number == "Unknown"

    def test_terminate(self) -> None:
        payload = webhook({"id": "wacid.1", "event": "terminate", "duration": 42, "status": "COMPLETED"})

        event = parse_call_event(payload)

        assert event.event == CallEventType.TERMINATE
        assert event.duration == 42
        assert event.status == "COMPLETED"
        assert event.sdp is None

    @pytest.mark.parametrize("payload", [
        {},
        {"entry": []},
        {"entry": [{"changes": [{"value": {"statuses": [{"id": "x"}]}}]}]},
        webhook({"event": "connect"}),
        webhook({"id": "wacid.1"}),
        "not a dict",
    ])
    def test_no_call_event(self, payload: Any) -> None:
        with pytest.raises(InvalidWebhookEvent):
            parse_call_event(payload)

    def test_connect_without_sdp(self) -> None:
        with pytest.raises(InvalidWebhookEvent, match="no SDP offer"):
            parse_call_event(webhook({"id": "wacid.1", "event": "connect"}))
