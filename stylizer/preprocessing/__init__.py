"""Preprocessing package initialization."""

from .content_hasher import ContentHasher, rolling_hash
from .image_processor import ImagePreprocessor, scaled_dimensions

__all__ = ["ContentHasher", "rolling_hash", "ImagePreprocessor", "scaled_dimensions"]
