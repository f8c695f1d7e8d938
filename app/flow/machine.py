"""
app/flow/machine.py

Purpose: Per-instance session lifecycle state machine

- Receives lifecycle events from the session provider
- Routes each event to a typed transition handler
- Owns readiness and the pending QR code
- Guards reads and writes with a lock so status can be read from any thread
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Union

from app.flow.states import (
    SessionEvent,
    SessionState,
    get_event_metadata,
    is_valid_transition,
)


@dataclass(frozen=True)
class SessionSnapshot:
    state: SessionState
    qr_code: Optional[str]

    @property
    def is_ready(self) -> bool:
        return self.state == SessionState.READY


class SessionStateMachine:
    """
    Readiness state of one instance, driven only by provider events.

    INITIALIZING -> AWAITING_SCAN (qr) -> READY (ready) -> DISCONNECTED (disconnected).
    auth_failure returns to INITIALIZING with the QR cleared.
    """

    def __init__(self, logger: Union[logging.Logger, logging.LoggerAdapter]):
        self._logger = logger
        self._lock = threading.Lock()
        self._state = SessionState.INITIALIZING
        self._qr_code: Optional[str] = None

        self._handlers: Dict[SessionEvent, Callable[[Optional[str]], None]] = {
            SessionEvent.QR: self.on_qr,
            SessionEvent.AUTHENTICATED: self.on_authenticated,
            SessionEvent.READY: self.on_ready,
            SessionEvent.AUTH_FAILURE: self.on_auth_failure,
            SessionEvent.DISCONNECTED: self.on_disconnected,
        }

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return SessionSnapshot(state=self._state, qr_code=self._qr_code)

    @property
    def state(self) -> SessionState:
        return self.snapshot().state

    @property
    def is_ready(self) -> bool:
        return self.snapshot().is_ready

    @property
    def qr_code(self) -> Optional[str]:
        return self.snapshot().qr_code

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def handle(self, event: Union[SessionEvent, str], payload: Optional[str] = None) -> SessionState:
        """
        Routes a provider event to its transition handler.

        Args:
            event: Lifecycle event (enum or wire name)
            payload: QR string, failure message or disconnect reason

        Returns:
            State after the transition
        """
        event = SessionEvent(event)
        self._handlers[event](payload)
        return self.state

    def reset(self) -> None:
        """Back to INITIALIZING before (re-)starting the provider."""
        self._transition(SessionState.INITIALIZING, qr_code=None)

    def on_qr(self, qr: Optional[str]) -> None:
        self._transition(SessionState.AWAITING_SCAN, qr_code=qr)
        self._log(SessionEvent.QR, "QR Code generated")

    def on_authenticated(self, _payload: Optional[str] = None) -> None:
        self._log(SessionEvent.AUTHENTICATED, "Client authenticated")

    def on_ready(self, _payload: Optional[str] = None) -> None:
        self._transition(SessionState.READY, qr_code=None)
        self._log(SessionEvent.READY, "Client is ready!")

    def on_auth_failure(self, message: Optional[str]) -> None:
        self._transition(SessionState.INITIALIZING, qr_code=None)
        self._log(SessionEvent.AUTH_FAILURE, f"Authentication failed: {message}")

    def on_disconnected(self, reason: Optional[str]) -> None:
        self._transition(SessionState.DISCONNECTED, qr_code=None)
        self._log(SessionEvent.DISCONNECTED, f"Client disconnected: {reason}")

    def _transition(self, to_state: SessionState, qr_code: Optional[str]) -> None:
        with self._lock:
            from_state = self._state
            self._state = to_state
            self._qr_code = qr_code

        if not is_valid_transition(from_state, to_state):
            self._logger.warning(f"Unexpected session transition: {from_state.value} -> {to_state.value}")

    def _log(self, event: SessionEvent, message: str) -> None:
        self._logger.log(get_event_metadata(event).log_level, message)
