"""Browser signaling transport.

The browser talks to the bridge over a WebSocket carrying JSON text frames:

    {"event": "<name>", "data": <payload>}

Outbound events are queued and written in order by one writer task, so the
orchestrator can emit from synchronous callbacks without awaiting the socket.
"""

import asyncio
import uuid
from abc import abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Protocol, runtime_checkable

import structlog
from fastapi import WebSocket, WebSocketDisconnect


@dataclass
class BrowserMessage:
    """Inbound message from the browser."""

    event: str
    data: Any = None


def parse_browser_message(raw: Any) -> BrowserMessage:
    """Validate a decoded JSON frame from the browser.

    Raises:
        ValueError: If the frame is not an object with a string "event"
    """
    if not isinstance(raw, dict):
        raise ValueError("Browser message must be a JSON object")

    event = raw.get("event")
    if not isinstance(event, str) or not event:
        raise ValueError("Browser message is missing 'event'")

    return BrowserMessage(event=event, data=raw.get("data"))


@runtime_checkable
class BrowserTransport(Protocol):
    """Protocol for the channel to a connected browser."""

    @property
    def client_id(self) -> str:
        """Identifier of the connected browser, for logs."""
        ...

    @abstractmethod
    def emit(self, event: str, data: Any = None) -> None:
        """Queue an event for the browser without blocking.

        Events are delivered in the order they were emitted.
        """
        ...


class WebSocketBrowserTransport:
    """BrowserTransport over a FastAPI WebSocket."""

    def __init__(self, websocket: WebSocket) -> None:
        self._ws = websocket
        self._client_id = uuid.uuid4().hex[:8]
        self._outbox: asyncio.Queue[dict] = asyncio.Queue()
        self._writer_task: Optional[asyncio.Task[None]] = None
        self._closed = False

        # Stats
        self._events_sent = 0

        self._logger = structlog.get_logger(__name__).bind(client_id=self._client_id)

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> None:
        """Accept the socket and start the writer task."""
        await self._ws.accept()
        self._writer_task = asyncio.create_task(
            self._writer(),
            name=f"browser-writer-{self._client_id}"
        )
        self._logger.info("Browser connected")

    def emit(self, event: str, data: Any = None) -> None:
        if self._closed:
            self._logger.debug("Browser transport closed, dropping event", event_name=event)
            return

        self._outbox.put_nowait({"event": event, "data": data})

    async def receive(self) -> BrowserMessage:
        """Receive the next message from the browser.

        Raises:
            WebSocketDisconnect: If the browser disconnected
            ValueError: If the frame is not a valid message
        """
        raw = await self._ws.receive_json()
        return parse_browser_message(raw)

    async def close(self) -> None:
        """Stop the writer task; pending events are dropped."""
        if self._closed:
            return

        self._closed = True
        if self._writer_task:
            self._writer_task.cancel()
            try:
                await self._writer_task
            except asyncio.CancelledError:
                pass

        self._logger.info(
            "Browser transport closed",
            events_sent=self._events_sent,
            dropped=self._outbox.qsize()
        )

    async def _writer(self) -> None:
        """Write queued events to the socket, in order."""
        try:
            while True:
                message = await self._outbox.get()
                await self._ws.send_json(message)
                self._events_sent += 1
                self._logger.debug("Event sent to browser", event_name=message["event"])
        except asyncio.CancelledError:
            raise
        except (WebSocketDisconnect, RuntimeError) as e:
            # Socket went away underneath us; the receive loop handles teardown
            self._closed = True
            self._logger.warning("Browser writer stopped", error=str(e))
