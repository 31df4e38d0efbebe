"""OpenTelemetry metrics for the vault and certificate lifecycle."""

from collections.abc import Iterator

from opentelemetry import metrics

meter = metrics.get_meter("certvault")

# ============================================================================
# Vault
# ============================================================================

vault_operations_total = meter.create_counter(
    name="certvault_vault_operations_total",
    description="Total vault operations by operation and result",
    unit="1",
)

# Master key gauge - reports how the key was obtained
_master_key_source: str | None = None


def _get_master_key_loaded(
    options: metrics.CallbackOptions,
) -> Iterator[metrics.Observation]:
    """Callback to report master key status."""
    if _master_key_source:
        yield metrics.Observation(1, {"source": _master_key_source})
    else:
        yield metrics.Observation(0, {"source": "none"})


master_key_loaded_gauge = meter.create_observable_gauge(
    name="certvault_master_key_loaded",
    description="Master key loaded (1=yes, 0=no)",
    unit="1",
    callbacks=[_get_master_key_loaded],
)

# ============================================================================
# Toolchain
# ============================================================================

toolchain_runs_total = meter.create_counter(
    name="certvault_toolchain_runs_total",
    description="Total external toolchain invocations",
    unit="1",
)

keypair_generation_duration = meter.create_histogram(
    name="certvault_keypair_generation_duration_seconds",
    description="Key pair and CSR generation duration in seconds",
    unit="s",
)

# ============================================================================
# Certificate Authority
# ============================================================================

ca_requests_total = meter.create_counter(
    name="certvault_ca_requests_total",
    description="Total CA API requests by operation and result",
    unit="1",
)

ca_parameter_substitutions_total = meter.create_counter(
    name="certvault_ca_parameter_substitutions_total",
    description="Request parameters replaced by the client policy",
    unit="1",
)

# ============================================================================
# Lifecycle
# ============================================================================

certificates_issued_total = meter.create_counter(
    name="certvault_certificates_issued_total",
    description="Total certificates issued",
    unit="1",
)

certificates_revoked_total = meter.create_counter(
    name="certvault_certificates_revoked_total",
    description="Total certificates revoked",
    unit="1",
)

issuance_failures_total = meter.create_counter(
    name="certvault_issuance_failures_total",
    description="Total failed issuance attempts",
    unit="1",
)

rotations_total = meter.create_counter(
    name="certvault_rotations_total",
    description="Total rotation executions by result",
    unit="1",
)

rotation_jobs_active = meter.create_up_down_counter(
    name="certvault_rotation_jobs_active",
    description="Currently registered rotation jobs",
    unit="1",
)


class CertVaultMetrics:
    """Facade for certvault metrics with proper labels."""

    def record_vault_operation(self, operation: str, result: str) -> None:
        """Labels: operation=store|get|delete|rotate, result=ok|not_found|..."""
        vault_operations_total.add(1, {"operation": operation, "result": result})

    def record_master_key_loaded(self, source: str) -> None:
        """Record master key source (generated|file)."""
        global _master_key_source
        _master_key_source = source

    def record_toolchain_run(self, command: str, result: str) -> None:
        toolchain_runs_total.add(1, {"command": command, "result": result})

    def record_keypair_generated(self, duration_seconds: float) -> None:
        keypair_generation_duration.record(duration_seconds)

    def record_ca_request(self, operation: str, result: str) -> None:
        """Labels: operation=create|list|get|revoke, result=ok|rejected|transport"""
        ca_requests_total.add(1, {"operation": operation, "result": result})

    def record_parameter_substitution(self, parameter: str) -> None:
        ca_parameter_substitutions_total.add(1, {"parameter": parameter})

    def record_certificate_issued(self, origin: str) -> None:
        """Labels: origin=issue|rotation"""
        certificates_issued_total.add(1, {"origin": origin})

    def record_certificate_revoked(self, reason: str) -> None:
        """Labels: reason=superseded|manual|external"""
        certificates_revoked_total.add(1, {"reason": reason})

    def record_issuance_failure(self, error_kind: str) -> None:
        issuance_failures_total.add(1, {"error": error_kind})

    def record_rotation(self, result: str) -> None:
        """Labels: result=success|failure|skipped|cancelled"""
        rotations_total.add(1, {"result": result})

    def record_rotation_job_added(self) -> None:
        rotation_jobs_active.add(1)

    def record_rotation_job_removed(self) -> None:
        rotation_jobs_active.add(-1)


# Singleton instance
certvault_metrics = CertVaultMetrics()
