"""In-memory domain records owned by the lifecycle manager."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING
from uuid import uuid4

from certvault.domain.states import LifecycleState

if TYPE_CHECKING:
    from certvault.ca.schemas import Certificate
    from certvault.domain.state_machines import CertificateLifecycleStateMachine


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CertificateRecord:
    """One certificate under management plus the vault entry holding its key."""

    common_name: str
    host_names: list[str]
    vault_key_name: str | None = None
    certificate: "Certificate | None" = None
    state: LifecycleState = LifecycleState.REQUESTED
    request_id: str = field(default_factory=lambda: uuid4().hex)
    predecessor_id: str | None = None
    successor_id: str | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=utc_now)

    @property
    def certificate_id(self) -> str | None:
        return self.certificate.id if self.certificate is not None else None

    @property
    def record_id(self) -> str:
        """CA id once issued, the local request id before that."""
        return self.certificate_id or self.request_id

    @property
    def state_machine(self) -> "CertificateLifecycleStateMachine":
        from certvault.domain.state_machines import CertificateLifecycleStateMachine

        return CertificateLifecycleStateMachine(self)

    def mark_issued(self, certificate: "Certificate") -> LifecycleState:
        return self.state_machine.mark_issued(certificate)

    def mark_failed(self, error: Exception) -> LifecycleState:
        return self.state_machine.mark_failed(error)

    def schedule_rotation(self) -> LifecycleState:
        return self.state_machine.schedule_rotation()

    def cancel_rotation(self) -> LifecycleState:
        return self.state_machine.cancel_rotation()

    def supersede(self, successor_id: str) -> LifecycleState:
        return self.state_machine.supersede(successor_id)

    def revoke(self) -> LifecycleState:
        return self.state_machine.revoke()
