"""
Result Cache

Bounded, content-addressed map from an uploaded image to the artifact
reference it produced, so repeated uploads skip the remote service.
"""

import threading
from collections import OrderedDict
from typing import List, Optional

import structlog

from ..models.schemas import CacheEntry, ContentKey, ImageSource
from ..preprocessing.content_hasher import ContentHasher
from ..utils.monitoring import CACHE_LOOKUPS, CACHE_SIZE

logger = structlog.get_logger()

DEFAULT_CAPACITY = 100


class ResultCache:
    """
    In-memory result cache with first-in-first-out eviction.

    When the cache is full and a new key arrives, the entry inserted
    earliest is dropped. Lookups do not refresh an entry's position, and
    overwriting an existing key keeps both its position and the cache size.
    Each operation holds a lock, so concurrent transformations may share
    one instance.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY, hasher: Optional[ContentHasher] = None):
        if capacity < 1:
            raise ValueError("Cache capacity must be at least 1")

        self.capacity = capacity
        self.hasher = hasher or ContentHasher()
        self._entries: "OrderedDict[ContentKey, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def key_for(self, source: ImageSource) -> ContentKey:
        return self.hasher.hash(source)

    def get(self, source: ImageSource) -> Optional[str]:
        """Return the cached artifact reference for an image, if any."""
        return self.get_by_key(self.key_for(source))

    def get_by_key(self, key: ContentKey) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)

        CACHE_LOOKUPS.labels(result="hit" if entry else "miss").inc()
        if entry is None:
            logger.debug("Cache miss", key=str(key))
            return None

        logger.debug("Cache hit", key=str(key))
        return entry.result_ref

    def put(self, source: ImageSource, result_ref: str) -> ContentKey:
        """Store the artifact reference produced for an image."""

        key = self.key_for(source)
        self.put_by_key(key, result_ref)
        return key

    def put_by_key(self, key: ContentKey, result_ref: str):
        with self._lock:
            existing = self._entries.get(key)
            if existing is not None:
                existing.result_ref = result_ref
            else:
                if len(self._entries) >= self.capacity:
                    evicted, _ = self._entries.popitem(last=False)
                    logger.debug("Cache entry evicted", key=str(evicted))
                self._entries[key] = CacheEntry(key=key, result_ref=result_ref)
            size = len(self._entries)

        CACHE_SIZE.set(size)
        logger.debug("Cache entry stored", key=str(key), size=size)

    def clear(self):
        """Drop every entry."""
        with self._lock:
            self._entries.clear()
        CACHE_SIZE.set(0)

    def keys(self) -> List[ContentKey]:
        """Keys in eviction order, oldest first."""
        with self._lock:
            return list(self._entries.keys())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, source: ImageSource) -> bool:
        key = self.key_for(source)
        with self._lock:
            return key in self._entries
