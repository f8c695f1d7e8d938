import logging

import pytest

from app.flow.machine import SessionStateMachine
from app.flow.states import (
    SessionEvent,
    SessionState,
    get_event_metadata,
    is_valid_transition,
)

logger = logging.getLogger("gateway.tests.states")


@pytest.fixture
def machine() -> SessionStateMachine:
    return SessionStateMachine(logger)


def test_starts_initializing(machine):
    assert machine.state == SessionState.INITIALIZING
    assert machine.is_ready is False
    assert machine.qr_code is None


def test_qr_then_ready(machine):
    assert machine.handle(SessionEvent.QR, "qr-1") == SessionState.AWAITING_SCAN
    assert machine.qr_code == "qr-1"

    machine.handle(SessionEvent.AUTHENTICATED)
    assert machine.state == SessionState.AWAITING_SCAN

    assert machine.handle(SessionEvent.READY) == SessionState.READY
    assert machine.is_ready is True
    assert machine.qr_code is None


def test_qr_refresh_replaces_code(machine):
    machine.handle(SessionEvent.QR, "qr-1")
    machine.handle(SessionEvent.QR, "qr-2")
    assert machine.qr_code == "qr-2"


def test_wire_event_names_are_accepted(machine):
    machine.handle("qr", "qr-1")
    machine.handle("ready")
    assert machine.is_ready is True


def test_unknown_event_is_rejected(machine):
    with pytest.raises(ValueError):
        machine.handle("message_create")


def test_auth_failure_clears_qr(machine):
    machine.handle(SessionEvent.QR, "qr-1")
    machine.handle(SessionEvent.AUTH_FAILURE, "bad credentials")
    assert machine.state == SessionState.INITIALIZING
    assert machine.qr_code is None
    assert machine.is_ready is False


def test_disconnect_clears_readiness(machine):
    machine.handle(SessionEvent.READY)
    machine.handle(SessionEvent.DISCONNECTED, "LOGOUT")
    assert machine.state == SessionState.DISCONNECTED
    assert machine.is_ready is False
    assert machine.qr_code is None


def test_unexpected_transition_is_applied_and_logged(machine, caplog):
    machine.handle(SessionEvent.READY)
    with caplog.at_level(logging.WARNING, logger=logger.name):
        machine.handle(SessionEvent.QR, "late-qr")
    assert machine.state == SessionState.AWAITING_SCAN
    assert "Unexpected session transition: READY -> AWAITING_SCAN" in caplog.text


def test_reset_returns_to_initializing(machine):
    machine.handle(SessionEvent.DISCONNECTED, "NAVIGATION")
    machine.reset()
    assert machine.state == SessionState.INITIALIZING


def test_snapshot_is_consistent(machine):
    machine.handle(SessionEvent.QR, "qr-1")
    snapshot = machine.snapshot()
    machine.handle(SessionEvent.READY)
    assert snapshot.state == SessionState.AWAITING_SCAN
    assert snapshot.qr_code == "qr-1"
    assert snapshot.is_ready is False


def test_transition_table():
    assert is_valid_transition(SessionState.AWAITING_SCAN, SessionState.READY)
    assert is_valid_transition(SessionState.DISCONNECTED, SessionState.INITIALIZING)
    assert not is_valid_transition(SessionState.READY, SessionState.AWAITING_SCAN)


def test_event_log_levels():
    assert get_event_metadata(SessionEvent.READY).log_level == logging.INFO
    assert get_event_metadata(SessionEvent.AUTH_FAILURE).log_level == logging.ERROR
    assert get_event_metadata(SessionEvent.DISCONNECTED).log_level == logging.WARNING
