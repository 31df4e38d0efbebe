"""Typed async client for the Origin CA certificate endpoints.

Endpoints:
- POST   /certificates                 create
- GET    /certificates?zone_id=<id>    list
- GET    /certificates/<id>            get
- DELETE /certificates/<id>            revoke

Request parameters outside what the CA honors are replaced (and logged), not
rejected: the request type is forced to origin-rsa and the validity is snapped
to the nearest allowed value.
"""

import logging
from typing import Any
from urllib.parse import quote

import httpx
from opentelemetry import trace
from pydantic import ValidationError

from certvault.ca.auth import ApiKeyAuth, AuthMethod, ServiceKeyAuth
from certvault.ca.schemas import (
    Certificate,
    CertificatePage,
    CreateCertificateRequest,
    Envelope,
    RevocationRecord,
)
from certvault.domain.states import RequestType
from certvault.errors import RequestRejected, TransportError
from certvault.metrics import certvault_metrics

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class CertificateAuthorityClient:
    """Client for the CA's create/list/get/revoke operations."""

    DEFAULT_BASE_URL = "https://api.cloudflare.com/client/v4"
    DEFAULT_TIMEOUT_SECONDS = 30.0

    SUPPORTED_REQUEST_TYPE = RequestType.ORIGIN_RSA
    ALLOWED_VALIDITY_DAYS = (15, 30, 45, 60, 75, 90)
    DEFAULT_VALIDITY_DAYS = 90

    def __init__(
        self,
        auth: AuthMethod,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not isinstance(auth, (ApiKeyAuth, ServiceKeyAuth)):
            raise TypeError(f"Unsupported auth method: {type(auth).__name__}")

        self.auth = auth
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Content-Type": "application/json", **auth.headers()},
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "CertificateAuthorityClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # =========================================================================
    # Request policy
    # =========================================================================

    @classmethod
    def normalize_request_type(cls, request_type: str | None) -> tuple[RequestType, bool]:
        """Return the request type to send and whether it was substituted."""
        if request_type == cls.SUPPORTED_REQUEST_TYPE.value:
            return cls.SUPPORTED_REQUEST_TYPE, False
        return cls.SUPPORTED_REQUEST_TYPE, True

    @classmethod
    def normalize_validity(cls, days: int | None) -> tuple[int, bool]:
        """Return the validity to send and whether it was substituted.

        Missing or non-positive values fall back to the default; other values
        snap to the nearest allowed member (ties go to the longer validity).
        """
        if days in cls.ALLOWED_VALIDITY_DAYS:
            return days, False  # type: ignore[return-value]
        if days is None or days <= 0:
            return cls.DEFAULT_VALIDITY_DAYS, True
        nearest = min(cls.ALLOWED_VALIDITY_DAYS, key=lambda allowed: (abs(allowed - days), -allowed))
        return nearest, True

    # =========================================================================
    # Operations
    # =========================================================================

    async def create_certificate(
        self,
        csr: str,
        host_names: list[str],
        request_type: str | None = SUPPORTED_REQUEST_TYPE.value,
        requested_validity_days: int | None = DEFAULT_VALIDITY_DAYS,
    ) -> Certificate:
        """Submit a CSR and return the issued certificate.

        Raises:
            RequestRejected: If the CA answers with a non-success response.
            TransportError: On network failure.
        """
        with tracer.start_as_current_span("CertificateAuthorityClient.create_certificate") as span:
            effective_type, type_substituted = self.normalize_request_type(request_type)
            if type_substituted:
                certvault_metrics.record_parameter_substitution("request_type")
                logger.warning(
                    "request_type_substituted",
                    extra={"requested": request_type, "used": effective_type.value},
                )

            validity, validity_substituted = self.normalize_validity(requested_validity_days)
            if validity_substituted:
                certvault_metrics.record_parameter_substitution("requested_validity")
                logger.warning(
                    "validity_substituted",
                    extra={"requested": requested_validity_days, "used": validity},
                )

            span.set_attribute("host_names", host_names)
            span.set_attribute("request_type", effective_type.value)
            span.set_attribute("requested_validity", validity)

            body = CreateCertificateRequest(
                csr=csr,
                hostnames=host_names,
                request_type=effective_type.value,
                requested_validity=validity,
            )
            result = await self._request("create", "POST", "/certificates", json=body.model_dump())
            certificate = self._parse(Certificate, result, "create")

            # Fill in what the CA did not echo back
            updates: dict[str, Any] = {}
            if not certificate.host_names:
                updates["host_names"] = list(host_names)
            if certificate.csr_pem is None:
                updates["csr_pem"] = csr
            if certificate.requested_validity_days is None:
                updates["requested_validity_days"] = validity
            if updates:
                certificate = certificate.model_copy(update=updates)

            span.set_attribute("certificate_id", certificate.id)
            logger.info(
                "ca_certificate_created",
                extra={"certificate_id": certificate.id, "host_names": host_names},
            )
            return certificate

    async def list_certificates_page(
        self, zone_id: str, page: int = 1, per_page: int = 50
    ) -> CertificatePage:
        """List one page of certificates for a zone."""
        with tracer.start_as_current_span("CertificateAuthorityClient.list_certificates") as span:
            span.set_attribute("zone_id", zone_id)
            envelope = await self._request_envelope(
                "list",
                "GET",
                "/certificates",
                params={"zone_id": zone_id, "page": page, "per_page": per_page},
            )
            items = [self._parse(Certificate, item, "list") for item in envelope.result or []]
            info = envelope.result_info or {}
            return CertificatePage(
                items=items,
                page=info.get("page", page),
                per_page=info.get("per_page", per_page),
                count=info.get("count", len(items)),
                total_count=info.get("total_count", len(items)),
            )

    async def list_certificates(self, zone_id: str) -> list[Certificate]:
        """List every certificate for a zone, following pagination."""
        certificates: list[Certificate] = []
        page = 1
        while True:
            result = await self.list_certificates_page(zone_id, page=page)
            certificates.extend(result.items)
            if not result.items or len(certificates) >= result.total_count:
                return certificates
            page += 1

    async def get_certificate(self, certificate_id: str) -> Certificate:
        """Fetch a single certificate.

        Raises:
            RequestRejected: If the CA reports the certificate missing.
        """
        with tracer.start_as_current_span("CertificateAuthorityClient.get_certificate") as span:
            span.set_attribute("certificate_id", certificate_id)
            result = await self._request("get", "GET", self._certificate_path(certificate_id))
            return self._parse(Certificate, result, "get")

    async def revoke_certificate(self, certificate_id: str) -> RevocationRecord:
        """Revoke a certificate.

        Raises:
            RequestRejected: If the CA reports the certificate missing or the revocation disallowed.
        """
        with tracer.start_as_current_span("CertificateAuthorityClient.revoke_certificate") as span:
            span.set_attribute("certificate_id", certificate_id)
            result = await self._request("revoke", "DELETE", self._certificate_path(certificate_id))
            record = self._parse(RevocationRecord, result, "revoke")
            logger.info("ca_certificate_revoked", extra={"certificate_id": record.id})
            return record

    # =========================================================================
    # Transport
    # =========================================================================

    @staticmethod
    def _certificate_path(certificate_id: str) -> str:
        return f"/certificates/{quote(certificate_id, safe='')}"

    async def _request(self, operation: str, method: str, path: str, **kwargs: Any) -> Any:
        envelope = await self._request_envelope(operation, method, path, **kwargs)
        return envelope.result

    async def _request_envelope(
        self, operation: str, method: str, path: str, **kwargs: Any
    ) -> Envelope:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            certvault_metrics.record_ca_request(operation, "transport")
            logger.error("ca_transport_failed", extra={"operation": operation, "error": str(e)})
            raise TransportError(f"CA {operation} request failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = None

        envelope: Envelope | None = None
        if isinstance(body, dict):
            if "success" not in body and response.is_success:
                # Bare resource body without the standard wrapper
                envelope = Envelope(success=True, result=body)
            else:
                try:
                    envelope = Envelope.model_validate(body)
                except ValidationError:
                    envelope = None

        if response.is_success and envelope is not None and envelope.success:
            certvault_metrics.record_ca_request(operation, "ok")
            return envelope

        code, message = response.status_code, response.reason_phrase or "request failed"
        if envelope is not None and envelope.errors:
            code, message = envelope.errors[0].code, envelope.errors[0].message

        certvault_metrics.record_ca_request(operation, "rejected")
        logger.error(
            "ca_request_rejected",
            extra={
                "operation": operation,
                "status_code": response.status_code,
                "code": code,
                "error_message": message,
            },
        )
        raise RequestRejected(code, message)

    @staticmethod
    def _parse(model: type[Any], data: Any, operation: str) -> Any:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            certvault_metrics.record_ca_request(operation, "malformed")
            raise RequestRejected(0, f"Malformed CA response for {operation}: {e}") from e
