"""Call bridge orchestrator.

Correlates the two offers of a call (remote offer from the calling API webhook,
browser offer from the signaling socket), negotiates both peer legs, splices
their audio and runs the two-phase pre_accept -> accept handshake.

State flow:
    IDLE -> AWAITING_OFFERS -> NEGOTIATING -> PRE_ACCEPTED -> ACCEPTED
    any non-terminal state -> TERMINATED | FAILED -> cleanup -> IDLE
"""

import asyncio
import weakref
from collections import deque
from functools import partial
from typing import Any, Callable, Optional

import structlog

from app.bridge.media_relay import MediaRelay
from app.bridge.session import CallSession, CallState
from app.core.constants import BridgeConstants, BrowserEvents
from app.core.exceptions import (
    BridgeError,
    NegotiationFailure,
    RemoteTrackTimeout,
    SessionClosed,
    SignalingActionFailure,
)
from app.rtc.peer_leg import LegEvent, LegEventSink, LegEventType, PeerLeg
from app.rtc.sdp import rewrite_dtls_role
from app.signaling.browser import BrowserTransport
from app.signaling.calls_client import CallAction, CallsClient

LegFactory = Callable[[str, LegEventSink], PeerLeg]


class CallBridge:
    """Single-session bridge between one browser and the calling API.

    Exactly one session is active at a time. The bridge exclusively owns the
    session, its legs and its relay; everything else only reports events.
    """

    def __init__(
        self,
        calls_client: CallsClient,
        leg_factory: LegFactory,
        remote_track_timeout: float = BridgeConstants.REMOTE_TRACK_TIMEOUT_S,
        settle_delay: float = BridgeConstants.ACCEPT_SETTLE_DELAY_S,
        relay_factory: Callable[[], MediaRelay] = MediaRelay
    ) -> None:
        """Initialize call bridge.

        Args:
            calls_client: Client for call actions against the calling API
            leg_factory: Builds a peer leg from (name, event sink)
            remote_track_timeout: Bound on the remote leg's first audio track (seconds)
            settle_delay: Delay between pre_accept and accept (seconds)
            relay_factory: Builds the per-session media relay
        """
        self._calls = calls_client
        self._leg_factory = leg_factory
        self._remote_track_timeout = remote_track_timeout
        self._settle_delay = settle_delay
        self._relay_factory = relay_factory

        self._session: Optional[CallSession] = None
        self._browser: Optional[BrowserTransport] = None
        self._bridge_task: Optional[asyncio.Task[None]] = None
        self._finished_calls: deque[str] = deque(maxlen=BridgeConstants.FINISHED_CALL_HISTORY)

        # Stats
        self._calls_accepted = 0
        self._calls_failed = 0

        self._logger = structlog.get_logger(__name__)

    @property
    def session(self) -> Optional[CallSession]:
        """The active session, if any."""
        return self._session

    @property
    def state(self) -> CallState:
        """State of the active session; IDLE when there is none."""
        return self._session.state if self._session else CallState.IDLE

    @property
    def browser(self) -> Optional[BrowserTransport]:
        """Most recently attached browser."""
        return self._browser

    @property
    def stats(self) -> dict[str, int]:
        """Accepted and failed call counters."""
        return {
            "calls_accepted": self._calls_accepted,
            "calls_failed": self._calls_failed,
        }

    # Browser transport

    def attach_browser(self, transport: BrowserTransport) -> None:
        """Bind the bridge to a newly connected browser.

        The new connection supersedes any previous one. A call that is still
        ringing is announced to it again.
        """
        previous = self._browser
        self._browser = transport
        self._logger.info(
            "Browser attached",
            client_id=transport.client_id,
            superseded=previous.client_id if previous else None
        )

        session = self._session
        if session is None:
            return

        session.signaling_peer = transport
        if session.state is CallState.AWAITING_OFFERS and session.remote_offer is not None:
            self._announce(session)

    def detach_browser(self, transport: BrowserTransport) -> None:
        """Forget a disconnected browser.

        An offer the browser made for a call that has not started negotiating
        is withdrawn with it; its peer connection is gone.
        """
        if self._browser is transport:
            self._browser = None

        session = self._session
        if session is None or session.signaling_peer is not transport:
            return

        session.signaling_peer = None
        if session.state is CallState.AWAITING_OFFERS and session.browser_offer is not None:
            session.browser_offer = None
            session.browser_candidates.clear()
            self._logger.info("Browser offer withdrawn", call_id=session.call_id)

            if session.remote_offer is None:
                self._session = None
                self._logger.debug("Session dropped before a call arrived")

    # Inbound events

    async def on_remote_connect(
        self,
        call_id: str,
        sdp: str,
        caller_name: str = BridgeConstants.UNKNOWN_CALLER,
        caller_number: str = BridgeConstants.UNKNOWN_CALLER
    ) -> None:
        """Handle a ``connect`` webhook carrying the remote SDP offer."""
        log = self._logger.bind(call_id=call_id)

        if call_id in self._finished_calls:
            log.info("Ignoring connect for finished call")
            return

        session = self._session
        if session is not None and session.call_id not in (None, call_id):
            # Single-session bridge: turn the second caller away explicitly
            log.warning("Rejecting concurrent call", active_call_id=session.call_id)
            if not await self._calls.reject(call_id):
                log.error("Reject of concurrent call failed")
            return

        if session is not None and session.remote_offer is not None:
            log.debug("Duplicate connect ignored", state=session.state.value)
            return

        session = self._ensure_session()
        session.call_id = call_id
        session.remote_offer = sdp
        session.caller_name = caller_name
        session.caller_number = caller_number
        if session.state is CallState.IDLE:
            session.advance(CallState.AWAITING_OFFERS)

        log.info("Incoming call", caller_name=caller_name, caller_number=caller_number)
        self._announce(session)
        self._maybe_start(session)

    def on_browser_offer(self, transport: BrowserTransport, sdp: str) -> None:
        """Handle the browser's SDP offer."""
        session = self._session
        if session is not None and session.browser_offer is not None:
            self._logger.debug(
                "Browser offer already set, ignoring",
                call_id=session.call_id,
                client_id=transport.client_id
            )
            return

        session = self._ensure_session()
        session.browser_offer = sdp
        session.signaling_peer = transport
        if session.state is CallState.IDLE:
            session.advance(CallState.AWAITING_OFFERS)

        self._logger.info(
            "Browser offer received",
            call_id=session.call_id,
            client_id=transport.client_id,
            sdp_length=len(sdp)
        )
        self._maybe_start(session)

    async def on_browser_candidate(self, transport: BrowserTransport, candidate: Optional[dict]) -> None:
        """Apply (or hold) an ICE candidate from the browser."""
        session = self._session
        if session is None or session.browser_offer is None:
            self._logger.warning("No browser offer for candidate, dropping", client_id=transport.client_id)
            return

        if session.browser_leg is None:
            session.browser_candidates.append(candidate or {})
            self._logger.debug("Browser candidate held", pending=len(session.browser_candidates))
            return

        await self._apply_browser_candidate(session, candidate)

    async def on_browser_reject(self, transport: BrowserTransport, call_id: Optional[str] = None) -> None:
        """Browser declined the call: relay ``reject`` and end the session."""
        await self._end_call(CallAction.REJECT, call_id)

    async def on_browser_terminate(self, transport: BrowserTransport, call_id: Optional[str] = None) -> None:
        """Browser hung up: relay ``terminate`` and end the session."""
        await self._end_call(CallAction.TERMINATE, call_id)

    async def on_remote_terminate(
        self,
        call_id: str,
        duration: Optional[int] = None,
        status: Optional[str] = None
    ) -> None:
        """Handle a ``terminate`` webhook."""
        session = self._session
        if session is None or session.call_id != call_id:
            self._logger.debug("Terminate for inactive call ignored", call_id=call_id)
            return

        self._logger.info("Call terminated by remote", call_id=call_id, duration=duration, status=status)
        await self._close_session(session, CallState.TERMINATED)

    # Lifecycle

    async def join(self) -> None:
        """Wait for the current negotiation task, if any, to finish."""
        task = self._bridge_task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise

    async def shutdown(self) -> None:
        """Terminate the active call, if any, and stop the negotiation task."""
        session = self._session
        if session is not None:
            self._logger.info("Shutting down with active session", **session.snapshot())
            if session.call_id and session.pre_accept_sent:
                await self._calls.terminate(session.call_id)
            elif session.call_id:
                # Still ringing: turn the caller away instead of leaving it hanging
                await self._calls.reject(session.call_id)
            await self._close_session(session, CallState.TERMINATED)

        task = self._bridge_task
        if task is not None and not task.done():
            task.cancel()
        await self.join()

        self._logger.info(
            "Call bridge stopped",
            calls_accepted=self._calls_accepted,
            calls_failed=self._calls_failed
        )

    # Negotiation

    def _maybe_start(self, session: CallSession) -> None:
        """Start negotiation once both offers and a browser are present.

        The state flips before any await, so repeated triggers are no-ops.
        """
        if session.state is not CallState.AWAITING_OFFERS:
            return

        if not session.offers_ready:
            self._logger.debug(
                "Waiting for offers",
                call_id=session.call_id,
                has_browser_offer=session.browser_offer is not None,
                has_remote_offer=session.remote_offer is not None
            )
            return

        if session.signaling_peer is None:
            self._logger.debug("Waiting for browser", call_id=session.call_id)
            return

        session.advance(CallState.NEGOTIATING)
        self._logger.info("Negotiation started", call_id=session.call_id)
        self._bridge_task = asyncio.create_task(
            self._run_bridge(session),
            name=f"call-bridge-{session.call_id}"
        )

    async def _run_bridge(self, session: CallSession) -> None:
        """Negotiate, then commit; any failure ends the session FAILED."""
        log = self._logger.bind(call_id=session.call_id)

        try:
            remote_answer = await self._negotiate(session)
            await self._commit(session, remote_answer)

        except SessionClosed:
            log.info("Negotiation outlived its session")

        except asyncio.CancelledError:
            if self._session is session:
                raise
            log.debug("Negotiation cancelled after session cleanup")

        except BridgeError as e:
            if self._session is not session:
                # Legs were closed under a pending step by a reject or terminate
                log.info("Negotiation outlived its session", error=str(e))
                return
            log.error("Call bridge failed", error=str(e), error_type=type(e).__name__, state=session.state.value)
            self._calls_failed += 1
            await self._close_session(session, CallState.FAILED)

        except Exception as e:
            log.error("Unexpected call bridge error", error=str(e), exc_info=True)
            self._calls_failed += 1
            await self._close_session(session, CallState.FAILED)

    async def _negotiate(self, session: CallSession) -> str:
        """Bring up both legs and splice their audio.

        Returns:
            Remote answer SDP, DTLS role rewritten to active

        Raises:
            RemoteTrackTimeout: No remote audio within the bound
            NegotiationFailure: A leg rejected a negotiation step
            SessionClosed: The session was cleaned up meanwhile
        """
        log = self._logger.bind(call_id=session.call_id)
        sink: LegEventSink = partial(self._on_leg_event, session)
        relay = session.relay = self._relay_factory()

        # Browser leg: inbound tracks are staged for the remote leg
        session.browser_leg = self._leg_factory(BridgeConstants.BROWSER_LEG, sink)
        await session.browser_leg.set_remote_offer(session.browser_offer)
        self._ensure_current(session)

        held, session.browser_candidates = session.browser_candidates, []
        for candidate in held:
            await self._apply_browser_candidate(session, candidate)
        self._ensure_current(session)

        # Remote leg: armed before the offer is applied, tracks fire during it
        remote_track = asyncio.get_running_loop().create_future()
        session.remote_track = remote_track
        session.remote_leg = self._leg_factory(BridgeConstants.REMOTE_LEG, sink)
        await session.remote_leg.set_remote_offer(session.remote_offer)
        self._ensure_current(session)

        for track in relay.forward_staged(session.remote_leg):
            session.relayed_browser_track = weakref.ref(track)

        try:
            async with asyncio.timeout(self._remote_track_timeout):
                track = await remote_track
        except TimeoutError:
            raise RemoteTrackTimeout(self._remote_track_timeout) from None
        self._ensure_current(session)

        if relay.forward(track, session.browser_leg):
            session.relayed_remote_track = weakref.ref(track)
        self._emit(session, BrowserEvents.INBOUND_AUDIO_READY, {"callId": session.call_id})

        browser_answer = await session.browser_leg.answer()
        self._ensure_current(session)
        self._emit(session, BrowserEvents.ANSWER, browser_answer)
        session.answer_sent = True

        held, session.local_candidates = session.local_candidates, []
        for candidate in held:
            self._emit(session, BrowserEvents.ICE_CANDIDATE, candidate)

        remote_answer = await session.remote_leg.answer()
        self._ensure_current(session)

        log.info("Both legs negotiated")
        return rewrite_dtls_role(remote_answer, BridgeConstants.DTLS_ROLE_ACTIVE)

    async def _commit(self, session: CallSession, answer: str) -> None:
        """Two-phase accept: pre_accept, settle, accept.

        Raises:
            SignalingActionFailure: The calling API refused an action
            SessionClosed: The session was cleaned up meanwhile
        """
        call_id = session.call_id
        log = self._logger.bind(call_id=call_id)

        if session.pre_accept_sent:
            raise SignalingActionFailure(CallAction.PRE_ACCEPT.value, call_id)

        session.pre_accept_sent = True
        accepted = await self._calls.pre_accept(call_id, answer)
        self._ensure_current(session)
        if not accepted:
            raise SignalingActionFailure(CallAction.PRE_ACCEPT.value, call_id)
        session.advance(CallState.PRE_ACCEPTED)
        log.info("Call pre-accepted", settle_delay=self._settle_delay)

        await asyncio.sleep(self._settle_delay)
        self._ensure_current(session)

        accepted = await self._calls.accept(call_id, answer)
        self._ensure_current(session)
        if not accepted:
            raise SignalingActionFailure(CallAction.ACCEPT.value, call_id)
        session.advance(CallState.ACCEPTED)
        self._calls_accepted += 1
        log.info("Call accepted")

        self._emit(session, BrowserEvents.START_TIMER)

    def _on_leg_event(self, session: CallSession, event: LegEvent) -> None:
        """Route a peer leg event; stale sessions are ignored."""
        if self._session is not session:
            self._logger.debug("Event for stale session dropped", leg=event.leg, type=event.type.name)
            return

        if event.type is LegEventType.TRACK:
            self._on_leg_track(session, event)

        elif event.type is LegEventType.ICE_CANDIDATE:
            if event.leg != BridgeConstants.BROWSER_LEG:
                # Remote candidates travel inside the answer SDP
                self._logger.debug("Remote leg candidate gathered", call_id=session.call_id)
            elif session.answer_sent:
                self._emit(session, BrowserEvents.ICE_CANDIDATE, event.candidate)
            else:
                # The browser applies candidates only after the answer
                session.local_candidates.append(event.candidate)

        elif event.type is LegEventType.CONNECTION_STATE:
            log = self._logger.bind(call_id=session.call_id, leg=event.leg, state=event.state)
            if event.state == "failed":
                log.warning("Leg connection failed")
            else:
                log.info("Leg connection state")

    def _on_leg_track(self, session: CallSession, event: LegEvent) -> None:
        track = event.track
        if track is None or session.relay is None:
            return

        if event.leg == BridgeConstants.BROWSER_LEG:
            if session.remote_leg is None:
                session.relay.stage(track, BridgeConstants.REMOTE_LEG)
            elif session.relay.forward(track, session.remote_leg):
                session.relayed_browser_track = weakref.ref(track)
            return

        if track.kind != "audio":
            self._logger.info("Ignoring non-audio remote track", kind=track.kind)
            return

        future = session.remote_track
        if future is not None and not future.done():
            future.set_result(track)

    async def _apply_browser_candidate(self, session: CallSession, candidate: Optional[dict]) -> None:
        try:
            await session.browser_leg.add_ice_candidate(candidate)
        except NegotiationFailure as e:
            self._logger.warning("Browser candidate rejected", call_id=session.call_id, error=str(e))

    # Teardown

    async def _end_call(self, action: CallAction, call_id: Optional[str]) -> None:
        """Relay a browser reject/terminate, then end the matching session.

        A failed action is terminal for the session: it ends FAILED.
        """
        session = self._session
        target = call_id or (session.call_id if session else None)
        log = self._logger.bind(call_id=target, action=action.value)

        succeeded = True
        if target is not None:
            send = self._calls.reject if action is CallAction.REJECT else self._calls.terminate
            succeeded = await send(target)
        else:
            log.warning("No call to relay action for")

        session = self._session
        if session is None or session.call_id not in (None, target):
            log.debug("No matching session to end")
            return

        await self._close_session(
            session,
            CallState.TERMINATED if succeeded else CallState.FAILED
        )

    async def _close_session(self, session: CallSession, final_state: CallState) -> None:
        """Enter a terminal state, notify the browser and release everything."""
        if self._session is session:
            self._session = None

        if session.state.is_terminal:
            return

        log = self._logger.bind(call_id=session.call_id)
        session.advance(final_state)
        log.info("Session ended", state=final_state.value)

        try:
            self._emit(session, BrowserEvents.CALL_ENDED, {"callId": session.call_id, "state": final_state.value})
        except Exception as e:
            log.warning("Could not notify browser of call end", error=str(e))

        try:
            if session.remote_track is not None and not session.remote_track.done():
                session.remote_track.cancel()

            for leg in (session.browser_leg, session.remote_leg):
                if leg is None:
                    continue
                try:
                    await leg.close()
                except Exception as e:
                    log.warning("Error closing leg", leg=leg.name, error=str(e))

            if session.relay is not None:
                session.relay.close()
        finally:
            if session.call_id:
                self._finished_calls.append(session.call_id)

            session.clear()
            log.debug("Session cleaned up")

    # Helpers

    def _ensure_session(self) -> CallSession:
        if self._session is None:
            self._session = CallSession(signaling_peer=self._browser)
            self._logger.debug("Session created")
        return self._session

    def _ensure_current(self, session: CallSession) -> None:
        if self._session is not session or session.state.is_terminal:
            raise SessionClosed()

    def _announce(self, session: CallSession) -> None:
        self._emit(session, BrowserEvents.INCOMING_CALL, {
            "callId": session.call_id,
            "callerName": session.caller_name,
            "callerNumber": session.caller_number,
        })

    def _emit(self, session: CallSession, event: str, data: Any = None) -> None:
        peer = session.signaling_peer or self._browser
        if peer is None:
            self._logger.debug("No browser attached, event dropped", event_name=event)
            return
        peer.emit(event, data)
