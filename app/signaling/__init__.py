"""Signaling with the two sides of a call.

- WebSocketBrowserTransport: JSON events to and from the browser
- CallsClient: call actions against the calling API
- parse_call_event: calling API webhook payloads
"""

__all__ = [
    "BrowserTransport",
    "CallsClient",
    "CallEvent",
    "WebSocketBrowserTransport",
    "parse_call_event",
]

from app.signaling.browser import BrowserTransport, WebSocketBrowserTransport
from app.signaling.calls_client import CallsClient
from app.signaling.webhook import CallEvent, parse_call_event
