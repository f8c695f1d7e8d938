"""
app/flow/states.py

Purpose: Defines session lifecycle states and events

- Enum for each readiness stage of an instance
  (INITIALIZING, AWAITING_SCAN, READY, DISCONNECTED)
- Enum for lifecycle events emitted by session providers
- Single source of truth for allowed transitions
- Metadata for each state (log level, readiness)
"""

from enum import Enum
from typing import Dict, List
from dataclasses import dataclass
import logging


class SessionState(str, Enum):
    """
    Readiness states of one messaging session.
    """

    INITIALIZING = "INITIALIZING"
    AWAITING_SCAN = "AWAITING_SCAN"
    READY = "READY"
    DISCONNECTED = "DISCONNECTED"


class SessionEvent(str, Enum):
    """
    Lifecycle events emitted by a session provider.
    Values match the event names used on the wire.
    """

    QR = "qr"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    AUTH_FAILURE = "auth_failure"
    DISCONNECTED = "disconnected"


@dataclass
class EventMetadata:
    """
    How an event is handled: where it leads and how loudly it is logged.
    """
    event: SessionEvent
    log_level: int
    description: str = ""


EVENT_METADATA: Dict[SessionEvent, EventMetadata] = {
    SessionEvent.QR: EventMetadata(
        event=SessionEvent.QR,
        log_level=logging.INFO,
        description="QR code generated, waiting for scan"
    ),
    SessionEvent.AUTHENTICATED: EventMetadata(
        event=SessionEvent.AUTHENTICATED,
        log_level=logging.INFO,
        description="Credentials accepted"
    ),
    SessionEvent.READY: EventMetadata(
        event=SessionEvent.READY,
        log_level=logging.INFO,
        description="Session ready for operations"
    ),
    SessionEvent.AUTH_FAILURE: EventMetadata(
        event=SessionEvent.AUTH_FAILURE,
        log_level=logging.ERROR,
        description="Authentication failed"
    ),
    SessionEvent.DISCONNECTED: EventMetadata(
        event=SessionEvent.DISCONNECTED,
        log_level=logging.WARNING,
        description="Session disconnected"
    ),
}


# Valid state transitions. The provider is authoritative, so transitions
# outside this table are still applied but logged as unexpected.
STATE_TRANSITIONS: Dict[SessionState, List[SessionState]] = {
    SessionState.INITIALIZING: [
        SessionState.INITIALIZING,  # auth_failure / authenticated
        SessionState.AWAITING_SCAN,
        SessionState.READY,  # restored credentials skip the scan
        SessionState.DISCONNECTED,
    ],
    SessionState.AWAITING_SCAN: [
        SessionState.AWAITING_SCAN,  # QR refresh
        SessionState.INITIALIZING,
        SessionState.READY,
        SessionState.DISCONNECTED,
    ],
    SessionState.READY: [
        SessionState.READY,
        SessionState.DISCONNECTED,
    ],
    SessionState.DISCONNECTED: [
        SessionState.DISCONNECTED,
        SessionState.INITIALIZING,  # re-initialize
    ],
}


def is_valid_transition(from_state: SessionState, to_state: SessionState) -> bool:
    """
    Checks if a state transition is expected.

    Args:
        from_state: Current state
        to_state: Target state

    Returns:
        True if transition is allowed, False otherwise
    """
    allowed_transitions = STATE_TRANSITIONS.get(from_state, [])
    return to_state in allowed_transitions


def get_event_metadata(event: SessionEvent) -> EventMetadata:
    return EVENT_METADATA[event]
