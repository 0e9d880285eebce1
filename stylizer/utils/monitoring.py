"""
Monitoring and Observability

Structured logging and Prometheus metrics for the transformation
pipeline.
"""

import structlog
import logging
import sys
import time
from typing import Optional
from prometheus_client import Counter, Histogram, Gauge, Info, start_http_server

from .config import AppSettings, get_settings


# Prometheus Metrics
TRANSFORM_COUNT = Counter(
    'stylizer_transformations_total',
    'Total number of transformations',
    ['outcome']
)

TRANSFORM_DURATION = Histogram(
    'stylizer_transformation_duration_seconds',
    'End-to-end transformation duration in seconds',
    ['optimized'],
    buckets=(1, 2.5, 5, 10, 20, 40, 60, 120, 240)
)

PREPROCESS_DURATION = Histogram(
    'stylizer_preprocess_duration_seconds',
    'Image optimization duration in seconds'
)

POLL_ATTEMPTS = Counter(
    'stylizer_poll_attempts_total',
    'Status polls issued against the remote service',
    ['result']
)

CACHE_LOOKUPS = Counter(
    'stylizer_cache_lookups_total',
    'Result cache lookups',
    ['result']
)

CACHE_SIZE = Gauge(
    'stylizer_cache_entries',
    'Entries currently held in the result cache'
)

ERROR_COUNT = Counter(
    'stylizer_errors_total',
    'Total number of errors',
    ['error_type', 'component']
)

APP_INFO = Info(
    'stylizer_app_info',
    'Application information'
)


def setup_logging(settings: Optional[AppSettings] = None):
    """Configure structured logging."""

    settings = settings or get_settings()

    if settings.monitoring.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Configure standard logging; logs go to stderr so stdout stays scriptable
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, settings.monitoring.log_level)
    )

    logger = structlog.get_logger()
    logger.debug("Logging configured", level=settings.monitoring.log_level)

    return logger


def setup_metrics(settings: Optional[AppSettings] = None) -> bool:
    """Expose Prometheus metrics over HTTP when enabled."""

    settings = settings or get_settings()

    APP_INFO.info({
        'app_name': settings.app_name,
        'version': settings.app_version,
        'environment': settings.environment
    })

    if not settings.monitoring.enable_metrics:
        return False

    logger = structlog.get_logger()
    try:
        start_http_server(settings.monitoring.prometheus_port)
    except OSError as e:
        logger.error("Failed to start metrics server", port=settings.monitoring.prometheus_port, error=str(e))
        return False

    logger.info("Metrics server started", port=settings.monitoring.prometheus_port)
    return True


def init_monitoring(settings: Optional[AppSettings] = None):
    """Initialize all monitoring components."""

    settings = settings or get_settings()
    logger = setup_logging(settings)
    setup_metrics(settings)

    return logger


class MetricsContext:
    """Context manager timing an operation and counting its failures."""

    def __init__(self, operation: str, component: str = 'general', histogram: Optional[Histogram] = None):
        self.operation = operation
        self.component = component
        self.histogram = histogram
        self.start_time = None
        self.duration = None
        self.logger = structlog.get_logger()

    def __enter__(self):
        self.start_time = time.perf_counter()
        self.logger.debug("Operation started", operation=self.operation)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.perf_counter() - self.start_time

        if exc_type is None:
            if self.histogram is not None:
                self.histogram.observe(self.duration)
            self.logger.debug("Operation completed",
                              operation=self.operation,
                              duration=self.duration)
        else:
            self.logger.warning("Operation failed",
                                operation=self.operation,
                                duration=self.duration,
                                error=str(exc_val))
            ERROR_COUNT.labels(error_type=exc_type.__name__, component=self.component).inc()

        return False
