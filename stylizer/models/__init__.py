"""Model package initialization."""

from .schemas import (
    ImageSource,
    ContentKey,
    CacheEntry,
    TransformationRequest,
    JobStatus,
    TransformationJob,
    PredictionResponse,
    TransformState,
    TransformOutcome
)

__all__ = [
    "ImageSource",
    "ContentKey",
    "CacheEntry",
    "TransformationRequest",
    "JobStatus",
    "TransformationJob",
    "PredictionResponse",
    "TransformState",
    "TransformOutcome"
]
