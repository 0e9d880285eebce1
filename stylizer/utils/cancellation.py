"""Cooperative cancellation for in-flight transformations."""

import asyncio
from typing import Optional

from .exceptions import TransformationCancelledError


class CancellationToken:
    """
    Cancellation signal checked at every suspension point.

    The transformation client checks the token before each network call and
    before each backoff wait; a cancelled token turns the next check into a
    ``TransformationCancelledError``.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: Optional[str] = None):
        """Request cancellation."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise TransformationCancelledError(self.reason or "Transformation cancelled")

    async def wait(self):
        """Block until cancellation is requested."""
        await self._event.wait()
