"""Certificate lifecycle API endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from certvault.api.errors import raise_for_error
from certvault.api.schemas import (
    CertificateListResponse,
    CertificateRecordResponse,
    IssueCertificateRequest,
    RevocationResponse,
    RotationJobResponse,
    ScheduleRotationRequest,
)
from certvault.ca.schemas import Certificate
from certvault.domain.state_machine import InvalidTransitionError
from certvault.errors import CAError, ToolchainError, VaultError
from certvault.lifecycle.manager import CertificateLifecycleManager

router = APIRouter(prefix="/api/certificates", tags=["certificates"])

# Global lifecycle manager instance
_manager: CertificateLifecycleManager | None = None


def set_lifecycle_manager(manager: CertificateLifecycleManager | None) -> None:
    """Set the global lifecycle manager instance."""
    global _manager
    _manager = manager


def get_lifecycle_manager() -> CertificateLifecycleManager:
    """Get the global lifecycle manager instance."""
    if _manager is None:
        raise RuntimeError("CertificateLifecycleManager not initialized")
    return _manager


@router.post("", status_code=status.HTTP_201_CREATED, response_model=Certificate)
async def issue_certificate(
    body: IssueCertificateRequest,
    manager: CertificateLifecycleManager = Depends(get_lifecycle_manager),
) -> Certificate:
    """
    Issue a certificate: generate key + CSR, store the key, submit to the CA.

    - Errors: 500 (toolchain or vault), 502 (CA rejected), 503 (CA unreachable)
    """
    try:
        return await manager.issue(
            body.common_name,
            host_names=body.host_names,
            request_type=body.request_type,
            validity_days=body.validity_days,
        )
    except (ToolchainError, VaultError, CAError) as e:
        raise_for_error(e)


@router.get("", response_model=CertificateListResponse)
async def list_certificates(
    zone_id: str | None = Query(None),
    manager: CertificateLifecycleManager = Depends(get_lifecycle_manager),
) -> CertificateListResponse:
    try:
        certificates = await manager.list_certificates(zone_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from None
    except CAError as e:
        raise_for_error(e)
    return CertificateListResponse(items=certificates, total=len(certificates))


@router.get("/records", response_model=list[CertificateRecordResponse])
async def list_records(
    manager: CertificateLifecycleManager = Depends(get_lifecycle_manager),
) -> list[CertificateRecordResponse]:
    """Lifecycle records held by this process (issued, superseded, failed)."""
    return [CertificateRecordResponse.model_validate(r) for r in manager.records()]


@router.get("/{certificate_id}", response_model=Certificate)
async def get_certificate(
    certificate_id: str,
    manager: CertificateLifecycleManager = Depends(get_lifecycle_manager),
) -> Certificate:
    try:
        return await manager.get_certificate(certificate_id)
    except CAError as e:
        raise_for_error(e)


@router.delete("/{certificate_id}", response_model=RevocationResponse)
async def revoke_certificate(
    certificate_id: str,
    manager: CertificateLifecycleManager = Depends(get_lifecycle_manager),
) -> RevocationResponse:
    """
    Revoke a certificate and cancel its rotation job.

    - Errors: 502 (CA rejected), 503 (CA unreachable)
    """
    try:
        revocation = await manager.revoke(certificate_id)
    except CAError as e:
        raise_for_error(e)
    return RevocationResponse(id=revocation.id, revoked_at=revocation.revoked_at)


@router.put("/{certificate_id}/rotation", response_model=RotationJobResponse)
async def schedule_rotation(
    certificate_id: str,
    body: ScheduleRotationRequest,
    manager: CertificateLifecycleManager = Depends(get_lifecycle_manager),
) -> RotationJobResponse:
    """
    Register (or replace) the rotation job for a certificate.

    Results of timer-driven rotations are only logged.
    - Errors: 409 (certificate revoked), 502/503 (CA lookup failed)
    """
    try:
        job = await manager.schedule_rotation(certificate_id, body.interval_days)
    except (CAError, InvalidTransitionError) as e:
        raise_for_error(e)
    return RotationJobResponse.model_validate(job)


@router.delete("/{certificate_id}/rotation", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_rotation(
    certificate_id: str,
    manager: CertificateLifecycleManager = Depends(get_lifecycle_manager),
) -> None:
    if not await manager.cancel_rotation(certificate_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No rotation job for certificate {certificate_id}",
        )
