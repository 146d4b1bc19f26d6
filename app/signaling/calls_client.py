"""Calling API client: call actions against the Graph API /calls endpoint.

Every action is a single POST; the outcome is read strictly from the
response's ``success`` flag. Failures are reported, never retried.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import httpx
import structlog

from app.core.constants import BridgeConstants


class CallAction(str, Enum):
    """Call actions understood by the calling API."""

    PRE_ACCEPT = "pre_accept"
    ACCEPT = "accept"
    REJECT = "reject"
    TERMINATE = "terminate"


@dataclass
class CallActionResult:
    """Outcome of one call action."""

    action: CallAction
    call_id: str
    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
    body: Optional[Any] = None


def build_action_body(
    call_id: str,
    action: CallAction,
    sdp: Optional[str] = None,
    messaging_product: str = BridgeConstants.MESSAGING_PRODUCT
) -> dict[str, Any]:
    """Build the JSON body for a call action.

    Args:
        call_id: Call identifier from the webhook
        action: Action to perform
        sdp: SDP answer (pre_accept / accept only)
        messaging_product: Product name expected by the API

    Returns:
        Request body
    """
    body: dict[str, Any] = {
        "messaging_product": messaging_product,
        "call_id": call_id,
        "action": action.value,
    }
    if sdp is not None:
        body["session"] = {"sdp_type": BridgeConstants.SDP_TYPE_ANSWER, "sdp": sdp}
    return body


class CallsClient:
    """Client for the calling API's call actions."""

    def __init__(
        self,
        calls_url: str,
        access_token: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None
    ) -> None:
        """Initialize calls client.

        Args:
            calls_url: Full URL of the /calls endpoint
            access_token: Bearer token for the API
            timeout: Request timeout in seconds
            client: Optional pre-built HTTP client (owned by the caller)
        """
        self._calls_url = calls_url
        self._headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

        self._logger = structlog.get_logger(__name__)

    async def pre_accept(self, call_id: str, sdp: str) -> bool:
        """Prepare the call's media path with our SDP answer."""
        return (await self.send_action(call_id, CallAction.PRE_ACCEPT, sdp)).success

    async def accept(self, call_id: str, sdp: str) -> bool:
        """Declare the call's media path live."""
        return (await self.send_action(call_id, CallAction.ACCEPT, sdp)).success

    async def reject(self, call_id: str) -> bool:
        return (await self.send_action(call_id, CallAction.REJECT)).success

    async def terminate(self, call_id: str) -> bool:
        return (await self.send_action(call_id, CallAction.TERMINATE)).success

    async def send_action(
        self,
        call_id: str,
        action: CallAction,
        sdp: Optional[str] = None
    ) -> CallActionResult:
        """POST one call action.

        Args:
            call_id: Call identifier
            action: Action to perform
            sdp: SDP answer for pre_accept / accept

        Returns:
            CallActionResult; success only on 2xx with ``"success": true``
        """
        log = self._logger.bind(call_id=call_id, action=action.value)
        body = build_action_body(call_id, action, sdp)

        try:
            response = await self._client.post(self._calls_url, json=body, headers=self._headers)
        except httpx.HTTPError as e:
            log.error("Call action request failed", error=str(e))
            return CallActionResult(action=action, call_id=call_id, success=False, error=str(e))

        try:
            data = response.json()
        except ValueError:
            data = None

        success = (
            response.is_success
            and isinstance(data, dict)
            and data.get("success") is True
        )

        if success:
            log.info("Call action succeeded")
        else:
            if response.status_code == 401:
                log.error("Calling API rejected the access token")
            log.warning(
                "Call action was not successful",
                status_code=response.status_code,
                body=data if data is not None else response.text[:200]
            )

        return CallActionResult(
            action=action,
            call_id=call_id,
            success=success,
            status_code=response.status_code,
            body=data,
        )

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()
