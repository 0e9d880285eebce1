"""
Data model for the transformation pipeline.

Value types passed between the hasher, cache, preprocessor and client,
plus the pydantic model of the remote prediction payload.
"""

import base64
import mimetypes
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

import aiofiles
from pydantic import BaseModel, ConfigDict


DEFAULT_MEDIA_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class ImageSource:
    """An image as submitted by the caller.

    ``data`` is ``None`` when the content could not be read; such a source
    can still be fingerprinted from its metadata but not transformed.
    """

    data: Optional[bytes]
    media_type: str = ""
    filename: str = "image"
    last_modified: float = 0.0
    size: Optional[int] = None

    def __post_init__(self):
        if not self.media_type:
            guessed, _ = mimetypes.guess_type(self.filename)
            object.__setattr__(self, "media_type", guessed or DEFAULT_MEDIA_TYPE)
        if self.size is None:
            object.__setattr__(self, "size", len(self.data) if self.data is not None else 0)

    @classmethod
    async def from_path(cls, path: Union[str, Path], media_type: str = "") -> "ImageSource":
        """Read an image file without blocking the event loop."""

        file_path = Path(path)
        async with aiofiles.open(file_path, "rb") as f:
            data = await f.read()

        return cls(
            data=data,
            media_type=media_type,
            filename=file_path.name,
            last_modified=os.path.getmtime(file_path),
        )

    def to_data_url(self) -> str:
        """Encode as a self-describing ``data:`` URL."""
        if self.data is None:
            raise ValueError(f"Image content unavailable: {self.filename}")
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.media_type};base64,{encoded}"

    def data_url_prefix(self, length: int) -> str:
        """
        First ``length`` characters of ``to_data_url()``.

        Only the bytes that feed those characters are encoded; base64 maps
        each 3-byte group to 4 characters, so the prefix is identical.
        """
        if self.data is None:
            raise ValueError(f"Image content unavailable: {self.filename}")

        header = f"data:{self.media_type};base64,"
        if length <= len(header):
            return header[:length]

        payload_chars = length - len(header)
        needed_bytes = -(-payload_chars // 4) * 3
        encoded = base64.b64encode(self.data[:needed_bytes]).decode("ascii")
        return header + encoded[:payload_chars]


@dataclass(frozen=True)
class ContentKey:
    """Cache fingerprint of an image; equal keys mean identical requests."""

    value: str
    metadata_only: bool = False

    def __str__(self) -> str:
        return self.value


@dataclass
class CacheEntry:
    key: ContentKey
    result_ref: str
    stored_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class TransformationRequest:
    """Immutable input to a session transformation."""

    image: ImageSource
    credential: str = field(repr=False)
    optimize: bool = True


class JobStatus(Enum):
    """Job status enumeration."""
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class TransformationJob:
    """A submitted prediction, tracked only while it is being polled."""

    id: str
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status is not JobStatus.PENDING


class PredictionResponse(BaseModel):
    """JSON body returned by the predictions endpoints."""

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    status: str = "starting"
    output: Optional[Any] = None
    error: Optional[Any] = None

    @property
    def job_status(self) -> JobStatus:
        if self.status == "succeeded":
            return JobStatus.SUCCEEDED
        if self.status == "failed":
            return JobStatus.FAILED
        return JobStatus.PENDING

    @property
    def artifact_ref(self) -> Optional[str]:
        """The produced artifact; the first entry when output is a list."""
        output = self.output
        if isinstance(output, list):
            output = output[0] if output else None
        return str(output) if output else None

    @property
    def error_reason(self) -> Optional[str]:
        return str(self.error) if self.error else None


class TransformState(Enum):
    """Progress states reported to the presentation layer."""
    IDLE = "idle"
    LOADING = "loading"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class TransformOutcome:
    """Discriminated result of a session transformation."""

    state: TransformState
    result_ref: Optional[str] = None
    error_kind: Optional[str] = None
    message: Optional[str] = None
    from_cache: bool = False

    @property
    def succeeded(self) -> bool:
        return self.state is TransformState.SUCCEEDED
