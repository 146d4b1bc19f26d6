"""Call bridge exceptions."""

from typing import Optional


class BridgeError(Exception):
    """Base exception for call bridge failures."""


class RemoteTrackTimeout(BridgeError):
    """Raised when the remote leg delivers no audio track in time."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"No remote audio track within {timeout:g}s")


class NegotiationFailure(BridgeError):
    """Raised when a description, answer or candidate step fails on a leg."""

    def __init__(self, leg: str, step: str, cause: Optional[BaseException] = None) -> None:
        self.leg = leg
        self.step = step
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"[{leg}] {step} failed{detail}")


class SignalingActionFailure(BridgeError):
    """Raised when the calling API reports failure for a call action."""

    def __init__(self, action: str, call_id: Optional[str]) -> None:
        self.action = action
        self.call_id = call_id
        super().__init__(f"Call action '{action}' failed for call {call_id}")


class InvalidWebhookEvent(BridgeError):
    """Raised when a webhook payload carries no usable call event."""


class InvalidTransition(BridgeError):
    """Raised on a state change that would move a session backwards."""


class SessionClosed(Exception):
    """Raised inside a negotiation that outlived its session."""
