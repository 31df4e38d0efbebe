from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from certvault.api import certificates as certificates_api
from certvault.api import vault as vault_api
from certvault.ca.client import CertificateAuthorityClient
from certvault.lifecycle.manager import CertificateLifecycleManager
from certvault.lifecycle.scheduler import RotationScheduler
from certvault.toolchain.keypair import KeyPairGenerator
from certvault.vault.key_vault import KeyVault
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from shared.config import settings
from shared.logging import setup_logging
from shared.metrics import setup_metrics


# Setup OpenTelemetry Tracing
def setup_tracing() -> None:
    resource = Resource.create({"service.name": settings.APP_NAME})
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)


def build_manager(vault: KeyVault) -> tuple[CertificateLifecycleManager, CertificateAuthorityClient]:
    """Wire the lifecycle manager from settings."""
    ca_client = CertificateAuthorityClient(
        settings.build_auth(),
        base_url=settings.CA_API_URL,
        timeout=settings.CA_TIMEOUT_SECONDS,
    )
    scheduler = RotationScheduler(
        time_unit_seconds=settings.ROTATION_TIME_UNIT_SECONDS,
        failure_policy=settings.ROTATION_FAILURE_POLICY,
        backoff_max_factor=settings.ROTATION_BACKOFF_MAX_FACTOR,
    )
    manager = CertificateLifecycleManager(
        vault=vault,
        generator=KeyPairGenerator(openssl_binary=settings.OPENSSL_BINARY),
        ca_client=ca_client,
        scheduler=scheduler,
        default_host_names=settings.DEFAULT_HOST_NAMES,
        zone_id=settings.CA_ZONE_ID,
        cleanup_orphaned_keys=settings.CLEANUP_ORPHANED_KEYS,
    )
    return manager, ca_client


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    setup_logging()
    setup_tracing()
    setup_metrics(settings.APP_NAME)

    LoggingInstrumentor().instrument(set_logging_format=True)
    HTTPXClientInstrumentor().instrument()

    vault = KeyVault(settings.VAULT_KEYS_DIR)
    await vault.init()

    manager, ca_client = build_manager(vault)
    await manager.start()

    # Inject core services into API modules
    vault_api.set_key_vault(vault)
    certificates_api.set_lifecycle_manager(manager)

    yield

    # Shutdown
    await manager.stop()
    await ca_client.aclose()
    certificates_api.set_lifecycle_manager(None)
    vault_api.set_key_vault(None)


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

# Instrument FastAPI
FastAPIInstrumentor.instrument_app(app)

# Include routers
app.include_router(certificates_api.router)
app.include_router(vault_api.router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok", "service": settings.APP_NAME}
