import logging
import sys

from opentelemetry._logs import set_logger_provider
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor, ConsoleLogRecordExporter
from opentelemetry.sdk.resources import Resource

from .config import settings


def setup_logging() -> None:
    """Route stdlib logging through OpenTelemetry and a stdout stream handler."""

    resource = Resource.create({"service.name": settings.APP_NAME})
    logger_provider = LoggerProvider(resource=resource)
    logger_provider.add_log_record_processor(BatchLogRecordProcessor(ConsoleLogRecordExporter()))

    set_logger_provider(logger_provider)

    handler = LoggingHandler(
        level=getattr(logging, settings.LOG_LEVEL), logger_provider=logger_provider
    )

    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(settings.LOG_LEVEL)

    # OTel batches records, so keep a direct stream for startup and crash output
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    root.addHandler(stream_handler)

    # Silence noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


logger = logging.getLogger("certvault")
