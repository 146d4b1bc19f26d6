"""HTTP / WebSocket surface of the call bridge.

Routes:
- GET  <webhook_path>: calling API subscription handshake
- POST <webhook_path>: call lifecycle events, acknowledged at once and
  processed in a background task
- WS   <socket_path>: the browser's signaling channel
- /    optional static files (the browser client)
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import structlog
from fastapi import BackgroundTasks, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles

from app.bridge.orchestrator import CallBridge
from app.core.constants import BrowserEvents
from app.core.exceptions import InvalidWebhookEvent
from app.signaling.browser import BrowserMessage, WebSocketBrowserTransport
from app.signaling.webhook import CallEvent, CallEventType, parse_call_event

logger = structlog.get_logger(__name__)


async def dispatch_call_event(bridge: CallBridge, event: CallEvent) -> None:
    """Hand a parsed webhook event to the bridge."""
    log = logger.bind(call_id=event.call_id, call_event=event.event)

    try:
        if event.event == CallEventType.CONNECT:
            await bridge.on_remote_connect(
                event.call_id,
                event.sdp,
                caller_name=event.caller_name,
                caller_number=event.caller_number
            )
        elif event.event == CallEventType.TERMINATE:
            await bridge.on_remote_terminate(event.call_id, duration=event.duration, status=event.status)
        else:
            log.info("Unhandled call event")
    except Exception as e:
        log.error("Error processing call event", error=str(e), exc_info=True)


async def dispatch_browser_message(
    bridge: CallBridge,
    transport: WebSocketBrowserTransport,
    message: BrowserMessage
) -> None:
    """Hand one browser message to the bridge.

    Raises:
        ValueError: If the payload does not fit the event
    """
    data = message.data

    if message.event == BrowserEvents.OFFER:
        sdp = data.get("sdp") if isinstance(data, dict) else data
        if not isinstance(sdp, str) or not sdp:
            raise ValueError("offer requires an SDP string")
        bridge.on_browser_offer(transport, sdp)

    elif message.event == BrowserEvents.ICE_CANDIDATE:
        if data is not None and not isinstance(data, dict):
            raise ValueError("ice-candidate requires an object")
        await bridge.on_browser_candidate(transport, data)

    elif message.event == BrowserEvents.REJECT_CALL:
        await bridge.on_browser_reject(transport, _call_id(data))

    elif message.event == BrowserEvents.TERMINATE_CALL:
        await bridge.on_browser_terminate(transport, _call_id(data))

    else:
        logger.warning("Unknown browser event", event_name=message.event, client_id=transport.client_id)


def _call_id(data: Any) -> Optional[str]:
    if isinstance(data, dict):
        data = data.get("callId")
    return data if isinstance(data, str) and data else None


def create_app(
    bridge: CallBridge,
    verify_token: Optional[str],
    static_dir: Optional[str] = None,
    webhook_path: str = "/webhook",
    socket_path: str = "/socket",
    on_shutdown: Optional[Callable[[], Awaitable[None]]] = None
) -> FastAPI:
    """Build the FastAPI application around a call bridge.

    Args:
        bridge: Call bridge receiving every event
        verify_token: Token expected in the webhook subscription handshake
        static_dir: Directory served at "/" when it exists
        webhook_path: Path of the calling API webhook
        socket_path: Path of the browser WebSocket
        on_shutdown: Extra cleanup run after the bridge shuts down

    Returns:
        Configured application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Call bridge server started", webhook_path=webhook_path, socket_path=socket_path)
        yield
        await bridge.shutdown()
        if on_shutdown is not None:
            await on_shutdown()
        logger.info("Call bridge server stopped")

    app = FastAPI(title="WebRTC Call Bridge", lifespan=lifespan)
    app.state.bridge = bridge

    @app.get(webhook_path)
    async def verify_webhook(request: Request) -> PlainTextResponse:
        params = request.query_params
        mode = params.get("hub.mode")
        token = params.get("hub.verify_token")
        challenge = params.get("hub.challenge", "")

        if mode == "subscribe" and verify_token and token == verify_token:
            logger.info("Webhook verified")
            return PlainTextResponse(challenge)

        logger.warning("Webhook verification failed", mode=mode)
        return PlainTextResponse("Forbidden", status_code=403)

    @app.post(webhook_path)
    async def receive_webhook(request: Request, background_tasks: BackgroundTasks) -> JSONResponse:
        try:
            payload = await request.json()
        except ValueError:
            logger.warning("Webhook body is not JSON")
            return JSONResponse({"status": "ignored"})

        try:
            event = parse_call_event(payload)
        except InvalidWebhookEvent as e:
            logger.info("Webhook without usable call event", reason=str(e))
            return JSONResponse({"status": "ignored"})

        logger.info("Call event received", call_id=event.call_id, call_event=event.event)
        background_tasks.add_task(dispatch_call_event, bridge, event)
        return JSONResponse({"status": "received"})

    @app.websocket(socket_path)
    async def browser_socket(websocket: WebSocket) -> None:
        transport = WebSocketBrowserTransport(websocket)
        await transport.start()
        bridge.attach_browser(transport)

        try:
            while True:
                try:
                    message = await transport.receive()
                    await dispatch_browser_message(bridge, transport, message)
                except ValueError as e:
                    logger.warning("Invalid browser message", client_id=transport.client_id, error=str(e))
        except WebSocketDisconnect:
            logger.info("Browser disconnected", client_id=transport.client_id)
        finally:
            bridge.detach_browser(transport)
            await transport.close()

    if static_dir and Path(static_dir).is_dir():
        app.mount("/", StaticFiles(directory=static_dir, html=True), name="static")
        logger.info("Serving static files", directory=static_dir)

    return app
