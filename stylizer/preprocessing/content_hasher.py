"""
Content fingerprinting for the result cache.

The default ``rolling`` strategy samples the start of the data-URL encoding
and folds it into a signed 32-bit hash. It is a cheap heuristic for
recognising repeated uploads, not an integrity check: collisions are
possible and accepted. The ``sha256`` strategy digests the full content
and produces keys of the same shape.
"""

import hashlib

import structlog

from ..models.schemas import ContentKey, ImageSource

logger = structlog.get_logger()

DEFAULT_SAMPLE_CHARS = 10 * 1024
STRATEGIES = ("rolling", "sha256")


def rolling_hash(text: str) -> int:
    """Fold each character code into ``h = (h << 5) - h + c`` as signed 32-bit."""

    h = 0
    for char in text:
        h = ((h << 5) - h + ord(char)) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 0x100000000
    return h


class ContentHasher:
    """Derives a ``ContentKey`` from image bytes and metadata."""

    def __init__(self, strategy: str = "rolling", sample_chars: int = DEFAULT_SAMPLE_CHARS):
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown hashing strategy '{strategy}', expected one of {STRATEGIES}")
        if sample_chars <= 0:
            raise ValueError("sample_chars must be positive")
        self.strategy = strategy
        self.sample_chars = sample_chars

    def hash(self, source: ImageSource) -> ContentKey:
        """
        Fingerprint an image.

        Falls back to a metadata-only key (filename, size, last-modified)
        when the content cannot be encoded.
        """

        try:
            if self.strategy == "sha256":
                digest = self._sha256(source)
            else:
                digest = str(rolling_hash(source.data_url_prefix(self.sample_chars)))
        except (TypeError, ValueError) as e:
            logger.debug("Content unreadable, using metadata key", filename=source.filename, error=str(e))
            return ContentKey(
                value=f"{source.filename}-{source.size}-{_format_timestamp(source.last_modified)}",
                metadata_only=True,
            )

        return ContentKey(value=f"{digest}-{source.size}-{source.media_type}")

    def _sha256(self, source: ImageSource) -> str:
        if source.data is None:
            raise ValueError(f"Image content unavailable: {source.filename}")
        return hashlib.sha256(source.data).hexdigest()


def _format_timestamp(value: float) -> str:
    # Millisecond epoch, matching how browsers report lastModified
    return str(int(value * 1000))
