"""Pydantic models for Origin CA requests and responses."""

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from certvault.domain.states import CertificateStatus


class ResponseInfo(BaseModel):
    """One entry of an envelope's errors[] or messages[]."""

    code: int = 0
    message: str = ""


class Envelope(BaseModel):
    """Standard response wrapper: {success, result, errors[], messages[]}."""

    model_config = ConfigDict(extra="ignore")

    success: bool = False
    result: Any = None
    errors: list[ResponseInfo] = Field(default_factory=list)
    messages: list[ResponseInfo] = Field(default_factory=list)
    result_info: dict[str, Any] | None = None

    @field_validator("errors", "messages", mode="before")
    @classmethod
    def _flatten(cls, value: Any) -> Any:
        """Some responses nest each info object in a one-element list."""
        if not isinstance(value, list):
            return value
        flat: list[Any] = []
        for item in value:
            if isinstance(item, list):
                flat.extend(item)
            else:
                flat.append(item)
        return flat


class CreateCertificateRequest(BaseModel):
    """Body of POST /certificates."""

    csr: str
    hostnames: list[str]
    request_type: str
    requested_validity: int


class Certificate(BaseModel):
    """A certificate as known to the CA."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    host_names: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("host_names", "hostnames", "hostNames"),
    )
    request_type: str = "origin-rsa"
    requested_validity_days: int | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "requested_validity_days", "requested_validity", "requestedValidity"
        ),
    )
    csr_pem: str | None = Field(default=None, validation_alias=AliasChoices("csr_pem", "csr"))
    certificate_pem: str | None = Field(
        default=None, validation_alias=AliasChoices("certificate_pem", "certificate")
    )
    expires_on: str | None = None
    revoked_at: str | None = None
    status: CertificateStatus = CertificateStatus.REQUESTED

    @model_validator(mode="after")
    def _derive_status(self) -> "Certificate":
        if self.revoked_at:
            self.status = CertificateStatus.REVOKED
        elif self.certificate_pem and self.status == CertificateStatus.REQUESTED:
            self.status = CertificateStatus.ISSUED
        return self


class CertificatePage(BaseModel):
    """One page of a certificate listing."""

    items: list[Certificate]
    page: int = 1
    per_page: int = 0
    count: int = 0
    total_count: int = 0


class RevocationRecord(BaseModel):
    """Result of DELETE /certificates/<id>."""

    model_config = ConfigDict(extra="ignore")

    id: str
    revoked_at: datetime | None = None
