"""Utils package initialization."""

from .config import get_settings, reload_settings, AppSettings
from .cancellation import CancellationToken
from .exceptions import (
    StylizerError,
    ConfigurationError,
    PreprocessError,
    SubmissionError,
    PollTransientError,
    TransformationFailedError,
    TimedOutError,
    TransformationCancelledError
)
from .monitoring import (
    init_monitoring,
    setup_logging,
    setup_metrics,
    MetricsContext
)

__all__ = [
    "get_settings",
    "reload_settings",
    "AppSettings",
    "CancellationToken",
    "StylizerError",
    "ConfigurationError",
    "PreprocessError",
    "SubmissionError",
    "PollTransientError",
    "TransformationFailedError",
    "TimedOutError",
    "TransformationCancelledError",
    "init_monitoring",
    "setup_logging",
    "setup_metrics",
    "MetricsContext"
]
