"""Structural and transition tests for the certificate lifecycle state machine.

These tests verify:
1. Every non-terminal state has a way out, terminal states have none
2. Every event is used
3. One test per transition table entry
4. Handler side effects on the CertificateRecord
"""

import pytest

from certvault.ca.schemas import Certificate
from certvault.domain.models import CertificateRecord
from certvault.domain.state_machine import InvalidTransitionError
from certvault.domain.state_machines import CertificateLifecycleStateMachine
from certvault.domain.states import CertificateStatus
from certvault.domain.states import LifecycleEvent as LEvent
from certvault.domain.states import LifecycleState as LState

TERMINAL_STATES = {LState.REVOKED, LState.FAILED}


def _certificate(certificate_id: str = "cert-1") -> Certificate:
    return Certificate(
        id=certificate_id,
        host_names=["example.com"],
        certificate_pem="-----BEGIN CERTIFICATE-----\n",
    )


@pytest.fixture
def record() -> CertificateRecord:
    return CertificateRecord(common_name="example.com", host_names=["example.com"])


def _in_state(record: CertificateRecord, state: LState) -> CertificateRecord:
    record.state = state
    if state != LState.REQUESTED:
        record.certificate = _certificate()
    return record


# =============================================================================
# Structural Tests
# =============================================================================


class TestLifecycleStateMachineStructure:
    """Structural tests for CertificateLifecycleStateMachine."""

    def test_all_non_terminal_states_have_transitions(self):
        covered_states = {state for state, _ in CertificateLifecycleStateMachine.TRANSITIONS}

        for state in set(LState) - TERMINAL_STATES:
            assert state in covered_states, f"Non-terminal state {state} has no transitions"

    def test_terminal_states_have_no_transitions(self):
        for terminal_state in TERMINAL_STATES:
            transitions_from_terminal = [
                (s, e) for s, e in CertificateLifecycleStateMachine.TRANSITIONS if s == terminal_state
            ]
            assert transitions_from_terminal == [], (
                f"Terminal state {terminal_state} should have no transitions, "
                f"found: {transitions_from_terminal}"
            )

    def test_all_events_are_used(self):
        used_events = {event for _, event in CertificateLifecycleStateMachine.TRANSITIONS}

        for event in LEvent:
            assert event in used_events, f"Event {event} is never used in transitions"

    def test_failed_is_only_reachable_from_requested(self):
        sources = {
            s for (s, _), target in CertificateLifecycleStateMachine.TRANSITIONS.items()
            if target == LState.FAILED
        }
        assert sources == {LState.REQUESTED}


# =============================================================================
# Transition Tests
# =============================================================================


class TestLifecycleTransitions:
    """One test per entry in the transition table."""

    @pytest.mark.parametrize(
        "start, event, expected",
        [
            (LState.REQUESTED, LEvent.ISSUED, LState.ISSUED),
            (LState.REQUESTED, LEvent.ISSUANCE_FAILED, LState.FAILED),
            (LState.ISSUED, LEvent.ROTATION_SCHEDULED, LState.ROTATION_SCHEDULED),
            (LState.ISSUED, LEvent.SUPERSEDED, LState.REVOKED),
            (LState.ISSUED, LEvent.REVOKED, LState.REVOKED),
            (LState.ROTATION_SCHEDULED, LEvent.ROTATION_SCHEDULED, LState.ROTATION_SCHEDULED),
            (LState.ROTATION_SCHEDULED, LEvent.ROTATION_CANCELLED, LState.ISSUED),
            (LState.ROTATION_SCHEDULED, LEvent.SUPERSEDED, LState.REVOKED),
            (LState.ROTATION_SCHEDULED, LEvent.REVOKED, LState.REVOKED),
        ],
    )
    def test_transition(self, record, start, event, expected):
        sm = CertificateLifecycleStateMachine(_in_state(record, start))

        new_state = sm.transition(event)

        assert new_state == expected
        assert record.state == expected

    def test_table_size_matches_tests(self):
        assert len(CertificateLifecycleStateMachine.TRANSITIONS) == 9


# =============================================================================
# Invariant Tests
# =============================================================================


class TestLifecycleInvariants:
    """Terminal states reject every event."""

    @pytest.mark.parametrize("terminal", sorted(TERMINAL_STATES))
    def test_terminal_states_reject_all_events(self, record, terminal):
        sm = CertificateLifecycleStateMachine(_in_state(record, terminal))

        for event in LEvent:
            with pytest.raises(InvalidTransitionError):
                sm.transition(event)
        assert record.state == terminal

    def test_requested_cannot_be_superseded(self, record):
        sm = CertificateLifecycleStateMachine(record)

        assert not sm.can_transition(LEvent.SUPERSEDED)
        with pytest.raises(InvalidTransitionError) as exc_info:
            sm.transition(LEvent.SUPERSEDED)

        assert exc_info.value.current_state == LState.REQUESTED.value
        assert exc_info.value.entity_id == record.request_id

    def test_require_returns_target_without_moving(self, record):
        sm = CertificateLifecycleStateMachine(_in_state(record, LState.ISSUED))

        assert sm.require(LEvent.SUPERSEDED) == LState.REVOKED
        assert record.state == LState.ISSUED

    def test_require_rejects_revoked(self, record):
        sm = CertificateLifecycleStateMachine(_in_state(record, LState.REVOKED))

        with pytest.raises(InvalidTransitionError):
            sm.require(LEvent.SUPERSEDED)
        assert record.state == LState.REVOKED


# =============================================================================
# Handler Tests
# =============================================================================


class TestLifecycleHandlers:
    """Tests for the record's handler methods."""

    def test_mark_issued_attaches_certificate(self, record):
        certificate = _certificate("cert-42")

        record.mark_issued(certificate)

        assert record.state == LState.ISSUED
        assert record.certificate_id == "cert-42"
        assert record.record_id == "cert-42"

    def test_mark_failed_records_error(self, record):
        record.mark_failed(ValueError("boom"))

        assert record.state == LState.FAILED
        assert record.error == "ValueError: boom"
        assert record.record_id == record.request_id

    def test_supersede_records_successor_and_revokes_certificate(self, record):
        record.mark_issued(_certificate("old"))
        record.schedule_rotation()

        record.supersede("new")

        assert record.state == LState.REVOKED
        assert record.successor_id == "new"
        assert record.certificate.status == CertificateStatus.REVOKED

    def test_cancel_rotation_returns_to_issued(self, record):
        record.mark_issued(_certificate())
        record.schedule_rotation()

        record.cancel_rotation()

        assert record.state == LState.ISSUED

    def test_revoke_marks_certificate_revoked(self, record):
        record.mark_issued(_certificate())

        record.revoke()

        assert record.state == LState.REVOKED
        assert record.certificate.status == CertificateStatus.REVOKED

    def test_mark_issued_fails_when_failed(self, record):
        record.mark_failed(RuntimeError("no"))

        with pytest.raises(InvalidTransitionError):
            record.mark_issued(_certificate())
        assert record.certificate is None

    def test_mark_issued_without_pem_is_issued(self, record):
        record.mark_issued(Certificate(id="cert-7", host_names=["example.com"]))

        assert record.state == LState.ISSUED
        assert record.certificate.status == CertificateStatus.ISSUED
        assert record.certificate.certificate_pem is None

    def test_mark_issued_keeps_revoked_status(self, record):
        revoked = Certificate(id="cert-8", revoked_at="2026-01-01T00:00:00+00:00")

        record.mark_issued(revoked)

        assert record.state == LState.ISSUED
        assert record.certificate.status == CertificateStatus.REVOKED
