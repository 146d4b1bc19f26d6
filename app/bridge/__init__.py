"""Call bridge between a browser and the calling API.

This module provides the orchestration layer of a call:
- CallBridge: session state machine, negotiation and two-phase accept
- CallSession: state of the one active call
- MediaRelay: inbound audio tracks forwarded onto the opposite leg
"""

__all__ = [
    "CallBridge",
    "CallSession",
    "CallState",
    "MediaRelay",
]

from app.bridge.session import CallSession, CallState
from app.bridge.media_relay import MediaRelay
from app.bridge.orchestrator import CallBridge
