"""Lifecycle state machine for managed certificates.

Invariants:
    REVOKED is terminal - a superseded or manually revoked certificate never comes back
    FAILED is terminal - an aborted issuance leaves no certificate to manage
    Only ISSUED or ROTATION_SCHEDULED certificates can be superseded
"""

from typing import TYPE_CHECKING

from certvault.domain.state_machine import StateMachine
from certvault.domain.states import CertificateStatus
from certvault.domain.states import LifecycleEvent as LEvent
from certvault.domain.states import LifecycleState as LState

if TYPE_CHECKING:
    from certvault.ca.schemas import Certificate
    from certvault.domain.models import CertificateRecord

LifecycleTransitions = dict[tuple[LState, LEvent], LState]


class CertificateLifecycleStateMachine(StateMachine):
    """Drives a CertificateRecord through issuance, rotation and revocation."""

    TRANSITIONS: LifecycleTransitions = {
        # From REQUESTED
        (LState.REQUESTED, LEvent.ISSUED): LState.ISSUED,
        (LState.REQUESTED, LEvent.ISSUANCE_FAILED): LState.FAILED,
        # From ISSUED
        (LState.ISSUED, LEvent.ROTATION_SCHEDULED): LState.ROTATION_SCHEDULED,
        (LState.ISSUED, LEvent.SUPERSEDED): LState.REVOKED,
        (LState.ISSUED, LEvent.REVOKED): LState.REVOKED,
        # From ROTATION_SCHEDULED
        (LState.ROTATION_SCHEDULED, LEvent.ROTATION_SCHEDULED): LState.ROTATION_SCHEDULED,
        (LState.ROTATION_SCHEDULED, LEvent.ROTATION_CANCELLED): LState.ISSUED,
        (LState.ROTATION_SCHEDULED, LEvent.SUPERSEDED): LState.REVOKED,
        (LState.ROTATION_SCHEDULED, LEvent.REVOKED): LState.REVOKED,
        # REVOKED and FAILED are terminal
    }

    entity: "CertificateRecord"

    def mark_issued(self, certificate: "Certificate") -> LState:
        """Attach the CA's certificate and move to ISSUED.

        A create response need not echo the PEM, so the status is set here
        rather than derived from the payload.
        """
        new_state = self.transition(LEvent.ISSUED)
        if certificate.status != CertificateStatus.REVOKED:
            certificate = certificate.model_copy(update={"status": CertificateStatus.ISSUED})
        self.entity.certificate = certificate
        return new_state

    def mark_failed(self, error: Exception) -> LState:
        new_state = self.transition(LEvent.ISSUANCE_FAILED)
        self.entity.error = f"{type(error).__name__}: {error}"
        return new_state

    def schedule_rotation(self) -> LState:
        return self.transition(LEvent.ROTATION_SCHEDULED)

    def cancel_rotation(self) -> LState:
        return self.transition(LEvent.ROTATION_CANCELLED)

    def supersede(self, successor_id: str) -> LState:
        """Retire the certificate after a successful rotation."""
        new_state = self.transition(LEvent.SUPERSEDED)
        self.entity.successor_id = successor_id
        self._mark_certificate_revoked()
        return new_state

    def revoke(self) -> LState:
        new_state = self.transition(LEvent.REVOKED)
        self._mark_certificate_revoked()
        return new_state

    def _mark_certificate_revoked(self) -> None:
        if self.entity.certificate is not None:
            self.entity.certificate = self.entity.certificate.model_copy(
                update={"status": CertificateStatus.REVOKED}
            )
