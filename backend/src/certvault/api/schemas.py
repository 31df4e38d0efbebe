"""Pydantic schemas for the certificate and vault API."""

from datetime import datetime

from pydantic import BaseModel, Field

from certvault.ca.schemas import Certificate
from certvault.domain.states import LifecycleState, VaultEntryKind
from certvault.vault.index import VaultEntry


class IssueCertificateRequest(BaseModel):
    """Request body for issuing a certificate."""

    common_name: str = Field(..., min_length=1, max_length=253)
    host_names: list[str] | None = None
    request_type: str | None = "origin-rsa"
    validity_days: int | None = 90


class CertificateListResponse(BaseModel):
    items: list[Certificate]
    total: int


class ScheduleRotationRequest(BaseModel):
    interval_days: float = Field(..., gt=0)


class RotationJobResponse(BaseModel):
    """Response model for a registered rotation job."""

    certificate_id: str
    interval_days: float
    next_run_at: datetime | None
    active: bool

    model_config = {"from_attributes": True}


class CertificateRecordResponse(BaseModel):
    """Lifecycle view of a managed certificate."""

    certificate_id: str | None
    common_name: str
    host_names: list[str]
    state: LifecycleState
    vault_key_name: str | None
    predecessor_id: str | None
    successor_id: str | None
    error: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class RevocationResponse(BaseModel):
    id: str
    revoked_at: datetime | None


class StoreSecretRequest(BaseModel):
    """Request body for storing a secret; the secret travels base64-encoded."""

    name: str = Field(..., min_length=1, max_length=200)
    secret_base64: str
    kind: VaultEntryKind = VaultEntryKind.SECRET


class VaultEntryListResponse(BaseModel):
    items: list[VaultEntry]
    total: int


class SecretResponse(BaseModel):
    name: str
    secret_base64: str
