"""
Error taxonomy for the transformation pipeline.

Every failure surfaced by the core is a ``StylizerError`` carrying a stable
``kind`` string that the presentation layer can map to a message.
"""

from typing import Optional


class StylizerError(Exception):
    """Base class for all pipeline errors."""

    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(StylizerError):
    """Missing credential or invalid settings."""

    kind = "configuration"


class PreprocessError(StylizerError):
    """Decode, draw or encode failure while optimizing an image.

    Recoverable by retrying the transformation without optimization.
    """

    kind = "preprocess"


class SubmissionError(StylizerError):
    """The remote service rejected the create-job request."""

    kind = "submission"

    def __init__(self, status_code: Optional[int] = None, detail: Optional[str] = None):
        if status_code is None:
            message = f"API request failed: {detail or 'no response'}"
        else:
            message = f"API request failed: {status_code}"
            if detail:
                message += f" - {detail}"
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class PollTransientError(StylizerError):
    """A single status check failed. Absorbed by the poll loop."""

    kind = "poll_transient"

    def __init__(self, status_code: Optional[int] = None, detail: Optional[str] = None):
        if status_code is None:
            message = f"Failed to check prediction status: {detail or 'no response'}"
        else:
            message = f"Failed to check prediction status: {status_code}"
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class TransformationFailedError(StylizerError):
    """The remote service reported terminal failure for the job."""

    kind = "failed"

    def __init__(self, reason: Optional[str] = None):
        super().__init__(reason or "Transformation failed")
        self.reason = reason


class TimedOutError(StylizerError):
    """Attempt budget exhausted without a terminal status."""

    kind = "timed_out"

    def __init__(self, attempts: int):
        super().__init__(f"Prediction timed out after {attempts} attempts")
        self.attempts = attempts


class TransformationCancelledError(StylizerError):
    """The caller cancelled the transformation at a suspension point."""

    kind = "cancelled"

    def __init__(self, message: str = "Transformation cancelled"):
        super().__init__(message)
