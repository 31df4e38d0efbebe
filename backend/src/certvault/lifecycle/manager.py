"""Certificate issuance, scheduled rotation and revocation.

Issuance: generate key + CSR -> validate -> store private key in the vault ->
submit CSR to the CA. Rotation runs the same path for the same host names and
revokes the predecessor only after the successor exists. A failed rotation
leaves the old certificate and its key as the system of record.
"""

import asyncio
import inspect
import logging
import re
import secrets
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from opentelemetry import trace

from certvault.ca.client import CertificateAuthorityClient
from certvault.ca.schemas import Certificate, RevocationRecord
from certvault.domain.models import CertificateRecord
from certvault.domain.states import (
    CertificateStatus,
    LifecycleEvent,
    LifecycleState,
    VaultEntryKind,
)
from certvault.errors import (
    RotationCancelled,
    RotationError,
    RotationStep,
    ValidationFailed,
)
from certvault.lifecycle.scheduler import RotationJob, RotationScheduler
from certvault.metrics import certvault_metrics
from certvault.toolchain.keypair import KeyPairGenerator
from certvault.vault.key_vault import KeyVault

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

_KEY_NAME_UNSAFE = re.compile(r"[^A-Za-z0-9.-]")


@dataclass
class RotationOutcome:
    """What a rotation timer reports to its callback."""

    certificate_id: str
    new_certificate: Certificate | None = None
    error: RotationError | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


RotationCallback = Callable[[RotationOutcome], Awaitable[None] | None]


class _Progress:
    """Tracks the current issuance step and polls the cancellation token."""

    def __init__(self, cancelled: Callable[[], bool] | None = None):
        self.step = RotationStep.FETCH
        self._cancelled = cancelled

    def enter(self, step: RotationStep, cancellable: bool = True) -> None:
        if cancellable and self._cancelled is not None and self._cancelled():
            raise RotationCancelled(f"Cancelled before step {step.value}")
        self.step = step


class CertificateLifecycleManager:
    """Orchestrates KeyVault, KeyPairGenerator and the CA client."""

    KEY_NAME_PREFIX = "ssl"
    MAX_COMMON_NAME_IN_KEY = 120

    def __init__(
        self,
        vault: KeyVault,
        generator: KeyPairGenerator,
        ca_client: CertificateAuthorityClient,
        scheduler: RotationScheduler | None = None,
        default_host_names: list[str] | None = None,
        zone_id: str | None = None,
        cleanup_orphaned_keys: bool = False,
    ) -> None:
        self.vault = vault
        self.generator = generator
        self.ca_client = ca_client
        self.scheduler = scheduler or RotationScheduler()
        self.default_host_names = list(default_host_names or [])
        self.zone_id = zone_id
        self.cleanup_orphaned_keys = cleanup_orphaned_keys
        self._records: dict[str, CertificateRecord] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._stopping = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        self._stopping = False
        await self.scheduler.start()

    async def stop(self) -> None:
        """Cancel every timer. In-flight rotations stop at their next step boundary."""
        self._stopping = True
        await self.scheduler.stop()
        logger.info("lifecycle_manager_stopped", extra={"records": len(self._records)})

    # =========================================================================
    # Issuance
    # =========================================================================

    async def issue(
        self,
        common_name: str,
        host_names: list[str] | None = None,
        request_type: str | None = "origin-rsa",
        validity_days: int | None = 90,
    ) -> Certificate:
        """Issue a new certificate for common_name.

        Falls back to default_host_names when host_names is empty.

        Raises:
            ToolchainFailure: Generation failed or no host names are available.
            ValidationFailed: The generated key failed its integrity check.
            VaultError: The private key could not be stored.
            CAError: The CA rejected the CSR or could not be reached.
        """
        with tracer.start_as_current_span("CertificateLifecycleManager.issue") as span:
            span.set_attribute("common_name", common_name)
            record = CertificateRecord(
                common_name=common_name,
                host_names=list(host_names or self.default_host_names),
            )
            certificate = await self._issue_record(record, request_type, validity_days)
            span.set_attribute("certificate_id", certificate.id)
            certvault_metrics.record_certificate_issued("issue")
            return certificate

    async def _issue_record(
        self,
        record: CertificateRecord,
        request_type: str | None,
        validity_days: int | None,
        progress: _Progress | None = None,
    ) -> Certificate:
        progress = progress or _Progress()
        key_stored = False
        try:
            progress.enter(RotationStep.GENERATE)
            key_pair = await self.generator.generate(record.common_name, record.host_names)

            progress.enter(RotationStep.VALIDATE)
            if not await self.generator.validate(key_pair):
                raise ValidationFailed(f"Generated key for {record.common_name} failed validation")

            progress.enter(RotationStep.STORE)
            key_name = self._key_name(record.common_name)
            await self.vault.store(
                key_name,
                key_pair.private_key_pem.encode(),
                kind=VaultEntryKind.PRIVATE_KEY,
            )
            record.vault_key_name = key_name
            key_stored = True

            progress.enter(RotationStep.CREATE)
            certificate = await self.ca_client.create_certificate(
                key_pair.csr_pem,
                record.host_names,
                request_type,
                validity_days,
            )
        except Exception as exc:
            record.mark_failed(exc)
            self._records[record.record_id] = record
            certvault_metrics.record_issuance_failure(type(exc).__name__)
            logger.warning(
                "issuance_failed",
                extra={
                    "request_id": record.request_id,
                    "common_name": record.common_name,
                    "step": progress.step.value,
                    "error": type(exc).__name__,
                    "error_message": str(exc),
                },
            )
            if key_stored:
                await self._handle_orphaned_key(record)
            raise

        record.mark_issued(certificate)
        self._records[certificate.id] = record
        logger.info(
            "certificate_issued",
            extra={
                "certificate_id": certificate.id,
                "common_name": record.common_name,
                "vault_key_name": record.vault_key_name,
            },
        )
        return certificate

    async def _handle_orphaned_key(self, record: CertificateRecord) -> None:
        key_name = record.vault_key_name
        if key_name is None:
            return
        if not self.cleanup_orphaned_keys:
            logger.warning(
                "issuance_orphaned_key",
                extra={"vault_key_name": key_name, "request_id": record.request_id},
            )
            return
        await self.vault.delete(key_name)
        record.vault_key_name = None
        logger.info("orphaned_key_deleted", extra={"vault_key_name": key_name})

    def _key_name(self, common_name: str) -> str:
        safe = _KEY_NAME_UNSAFE.sub("_", common_name)[: self.MAX_COMMON_NAME_IN_KEY]
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        return f"{self.KEY_NAME_PREFIX}_{safe}_{timestamp}_{secrets.token_hex(4)}"

    # =========================================================================
    # Rotation
    # =========================================================================

    async def schedule_rotation(
        self,
        certificate_id: str,
        interval_days: float,
        on_result: RotationCallback | None = None,
    ) -> RotationJob:
        """Register the single rotation job for certificate_id, replacing any existing one.

        Raises:
            InvalidTransitionError: If the certificate is revoked (locally or at the CA).
            CAError: If the certificate cannot be fetched from the CA.
        """
        record = await self._sync_from_ca(certificate_id)
        record.state_machine.require(LifecycleEvent.ROTATION_SCHEDULED)

        async def runner(job: RotationJob) -> None:
            await self._run_rotation_job(job, on_result)

        job = self.scheduler.schedule(certificate_id, interval_days, runner)
        record.schedule_rotation()
        return job

    async def cancel_rotation(self, certificate_id: str) -> bool:
        cancelled = self.scheduler.cancel(certificate_id)
        record = self._records.get(certificate_id)
        if record is not None and record.state == LifecycleState.ROTATION_SCHEDULED:
            record.cancel_rotation()
        return cancelled

    async def rotate(self, certificate_id: str) -> Certificate:
        """Rotate certificate_id now and return the successor.

        Waits for any rotation already running for the same id.

        Raises:
            RotationError: With the step that failed; the old certificate is
                untouched unless the failure is at the revoke step.
        """
        job = self.scheduler.get(certificate_id)
        token = job.cancel_token if job is not None else None
        async with self._lock_for(certificate_id):
            return await self._rotate_locked(certificate_id, token)

    async def _run_rotation_job(self, job: RotationJob, on_result: RotationCallback | None) -> None:
        certificate_id = job.certificate_id
        lock = self._lock_for(certificate_id)
        if lock.locked():
            certvault_metrics.record_rotation("skipped")
            logger.warning("rotation_skipped_in_flight", extra={"certificate_id": certificate_id})
            return

        async with lock:
            try:
                certificate = await self._rotate_locked(certificate_id, job.cancel_token)
            except RotationError as exc:
                successor = self._records.get(exc.successor_id) if exc.successor_id else None
                outcome = RotationOutcome(
                    certificate_id=certificate_id,
                    new_certificate=successor.certificate if successor else None,
                    error=exc,
                )
                self.scheduler.record_result(certificate_id, succeeded=False)
            else:
                outcome = RotationOutcome(certificate_id=certificate_id, new_certificate=certificate)
                self.scheduler.record_result(certificate_id, succeeded=True)

        await self._deliver(on_result, outcome)

    async def _rotate_locked(self, certificate_id: str, token: asyncio.Event | None) -> Certificate:
        def cancelled() -> bool:
            return self._stopping or (token is not None and token.is_set())

        progress = _Progress(cancelled)
        successor: CertificateRecord | None = None

        with tracer.start_as_current_span("CertificateLifecycleManager.rotate") as span:
            span.set_attribute("certificate_id", certificate_id)
            try:
                progress.enter(RotationStep.FETCH)
                current = await self._fetch_for_rotation(certificate_id)

                successor = CertificateRecord(
                    common_name=current.common_name,
                    host_names=list(current.host_names),
                    predecessor_id=certificate_id,
                )
                request_type = current.certificate.request_type if current.certificate else None
                validity = (
                    current.certificate.requested_validity_days if current.certificate else None
                )
                new_certificate = await self._issue_record(successor, request_type, validity, progress)
                certvault_metrics.record_certificate_issued("rotation")

                # Successor exists; finish the swap regardless of cancellation
                progress.enter(RotationStep.REVOKE, cancellable=False)
                await self.ca_client.revoke_certificate(certificate_id)
            except Exception as exc:
                step = RotationStep.CANCELLED if isinstance(exc, RotationCancelled) else progress.step
                successor_id = successor.certificate_id if successor is not None else None
                certvault_metrics.record_rotation(
                    "cancelled" if step is RotationStep.CANCELLED else "failure"
                )
                logger.warning(
                    "rotation_failed",
                    extra={
                        "certificate_id": certificate_id,
                        "step": step.value,
                        "error": type(exc).__name__,
                        "error_message": str(exc),
                        "successor_id": successor_id,
                    },
                )
                span.record_exception(exc)
                raise RotationError(certificate_id, step, exc, successor_id=successor_id) from exc

            current.supersede(new_certificate.id)
            certvault_metrics.record_certificate_revoked("superseded")
            certvault_metrics.record_rotation("success")

            if self.scheduler.transfer(certificate_id, new_certificate.id) is not None:
                successor.schedule_rotation()

            span.set_attribute("successor_id", new_certificate.id)
            logger.info(
                "certificate_rotated",
                extra={
                    "certificate_id": certificate_id,
                    "successor_id": new_certificate.id,
                    "vault_key_name": successor.vault_key_name,
                },
            )
            return new_certificate

    async def _fetch_for_rotation(self, certificate_id: str) -> CertificateRecord:
        record = await self._sync_from_ca(certificate_id)
        record.state_machine.require(LifecycleEvent.SUPERSEDED)
        return record

    async def _deliver(self, on_result: RotationCallback | None, outcome: RotationOutcome) -> None:
        if on_result is None:
            return
        try:
            result = on_result(outcome)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(
                "rotation_callback_failed", extra={"certificate_id": outcome.certificate_id}
            )

    # =========================================================================
    # Certificates
    # =========================================================================

    async def revoke(self, certificate_id: str) -> RevocationRecord:
        """Revoke a certificate by hand, cancelling its rotation job first."""
        with tracer.start_as_current_span("CertificateLifecycleManager.revoke") as span:
            span.set_attribute("certificate_id", certificate_id)
            self.scheduler.cancel(certificate_id)

            async with self._lock_for(certificate_id):
                revocation = await self.ca_client.revoke_certificate(certificate_id)

                record = self._records.get(certificate_id)
                if record is not None and record.state_machine.can_transition(
                    LifecycleEvent.REVOKED
                ):
                    record.revoke()

            certvault_metrics.record_certificate_revoked("manual")
            logger.info("certificate_revoked", extra={"certificate_id": certificate_id})
            return revocation

    async def list_certificates(self, zone_id: str | None = None) -> list[Certificate]:
        zone = zone_id or self.zone_id
        if not zone:
            raise ValueError("zone_id is required to list certificates")
        return await self.ca_client.list_certificates(zone)

    async def get_certificate(self, certificate_id: str) -> Certificate:
        return await self.ca_client.get_certificate(certificate_id)

    def get_record(self, certificate_id: str) -> CertificateRecord | None:
        return self._records.get(certificate_id)

    def records(self) -> list[CertificateRecord]:
        return sorted(self._records.values(), key=lambda record: record.created_at)

    async def _sync_from_ca(self, certificate_id: str) -> CertificateRecord:
        """Re-read a certificate from the CA and reconcile the local record.

        Unknown ids are adopted. A certificate the CA reports revoked moves its
        record to REVOKED and loses its rotation job.
        """
        certificate = await self.ca_client.get_certificate(certificate_id)
        if certificate.status == CertificateStatus.REQUESTED:
            # The CA only returns certificates it has issued
            certificate = certificate.model_copy(update={"status": CertificateStatus.ISSUED})

        record = self._records.get(certificate_id)
        if record is None:
            host_names = list(certificate.host_names)
            record = CertificateRecord(
                common_name=host_names[0] if host_names else certificate_id,
                host_names=host_names,
                certificate=certificate,
                state=(
                    LifecycleState.REVOKED
                    if certificate.status == CertificateStatus.REVOKED
                    else LifecycleState.ISSUED
                ),
            )
            self._records[certificate_id] = record
            logger.info("certificate_adopted", extra={"certificate_id": certificate_id})
            return record

        updates: dict[str, Any] = {}
        if not certificate.host_names:
            updates["host_names"] = list(record.host_names)
        if certificate.requested_validity_days is None and record.certificate is not None:
            updates["requested_validity_days"] = record.certificate.requested_validity_days
        if updates:
            certificate = certificate.model_copy(update=updates)
        record.certificate = certificate
        record.host_names = list(certificate.host_names)

        if certificate.status == CertificateStatus.REVOKED and record.state_machine.can_transition(
            LifecycleEvent.REVOKED
        ):
            record.revoke()
            self.scheduler.cancel(certificate_id)
            certvault_metrics.record_certificate_revoked("external")
            logger.warning("certificate_revoked_externally", extra={"certificate_id": certificate_id})
        return record

    def _lock_for(self, certificate_id: str) -> asyncio.Lock:
        lock = self._locks.get(certificate_id)
        if lock is None:
            lock = self._locks[certificate_id] = asyncio.Lock()
        return lock
