"""
Observability Setup - Initialize OpenTelemetry metrics and logging

Call setup_observability() once at application startup.
"""
import logging
from typing import Optional

from opentelemetry import metrics
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.resources import Resource, SERVICE_NAME, SERVICE_VERSION

from .logging_config import configure_logging

logger = logging.getLogger(__name__)

# Global state
_initialized = False
_meter_provider: Optional[MeterProvider] = None


def setup_observability(
    service_name: str = "ribbon",
    service_version: str = "1.0.0",
    log_level: str = "INFO",
    json_output: bool = True,
    enable_prometheus: bool = False,
    prometheus_port: int = 8888,
) -> None:
    """
    Initialize logging and the metrics pipeline.

    Args:
        service_name: Name reported on every log entry and metric
        service_version: Version string for the service
        log_level: Root logging level
        json_output: JSON logs (True) or console logs (False)
        enable_prometheus: Whether to expose a Prometheus scrape endpoint
        prometheus_port: Port for the Prometheus endpoint
    """
    global _initialized, _meter_provider

    if _initialized:
        logger.warning("Observability already initialized, skipping")
        return

    configure_logging(service_name, log_level=log_level, json_output=json_output)

    resource = Resource.create({
        SERVICE_NAME: service_name,
        SERVICE_VERSION: service_version,
    })

    readers = []
    if enable_prometheus:
        try:
            from opentelemetry.exporter.prometheus import PrometheusMetricReader
            from prometheus_client import start_http_server

            readers.append(PrometheusMetricReader())
            start_http_server(prometheus_port)
            logger.info(f"Prometheus metrics HTTP server started on port {prometheus_port}")
        except Exception as e:
            logger.warning(f"Failed to configure Prometheus exporter: {e}")

    _meter_provider = MeterProvider(resource=resource, metric_readers=readers)
    metrics.set_meter_provider(_meter_provider)

    _initialized = True
    logger.info(f"Observability initialized for {service_name}")


def shutdown_observability() -> None:
    """Flush and shut down the meter provider."""
    global _initialized, _meter_provider

    if not _initialized:
        return

    try:
        if _meter_provider:
            _meter_provider.shutdown()
        logger.info("Observability shutdown complete")
    except Exception as e:
        logger.error(f"Error during observability shutdown: {e}")
    finally:
        _initialized = False
