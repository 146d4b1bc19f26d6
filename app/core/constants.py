"""Call bridge constants."""


class BridgeConstants:
    """Timing and protocol constants for the call bridge."""

    # Leg names
    BROWSER_LEG = "browser"
    REMOTE_LEG = "remote"

    # Timing
    REMOTE_TRACK_TIMEOUT_S = 10.0  # Bound on the remote leg's first audio track
    ACCEPT_SETTLE_DELAY_S = 1.0    # ICE/DTLS settle time between pre_accept and accept

    # DTLS roles (a=setup:)
    DTLS_ROLE_ACTPASS = "actpass"
    DTLS_ROLE_ACTIVE = "active"

    # Calling API
    MESSAGING_PRODUCT = "whatsapp"
    SDP_TYPE_ANSWER = "answer"

    # Call ids remembered after cleanup so late webhooks cannot reopen them
    FINISHED_CALL_HISTORY = 64

    UNKNOWN_CALLER = "Unknown"


class BrowserEvents:
    """Event names exchanged with the browser over its socket."""

    # Outbound (bridge -> browser)
    INCOMING_CALL = "incoming-call"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"
    INBOUND_AUDIO_READY = "inbound-audio-ready"
    START_TIMER = "start-timer"
    CALL_ENDED = "call-ended"

    # Inbound (browser -> bridge)
    OFFER = "offer"
    REJECT_CALL = "reject-call"
    TERMINATE_CALL = "terminate-call"
