"""
Stylizer Session

Long-lived owner of the result cache and the transformation client. One
session is created per page or CLI run and passed to whatever needs to
stylize images; it consults the cache, drives the client on a miss and
records successful results.
"""

import time
from typing import Callable, Optional, Tuple

import structlog

from ..models.schemas import (
    ImageSource,
    TransformationRequest,
    TransformOutcome,
    TransformState,
)
from ..preprocessing.content_hasher import ContentHasher
from ..utils.cancellation import CancellationToken
from ..utils.config import AppSettings, get_settings
from ..utils.exceptions import PreprocessError, StylizerError, TransformationCancelledError
from ..utils.monitoring import TRANSFORM_COUNT, TRANSFORM_DURATION
from .result_cache import ResultCache
from .transformation_client import TransformationClient

logger = structlog.get_logger()

StateListener = Callable[[TransformOutcome], None]


class StylizerSession:
    """
    Cache-aware front door to the transformation pipeline.

    Results are cached under the fingerprint of the original upload, so a
    repeated upload is answered without any network traffic regardless of
    whether the first run optimized it.
    """

    def __init__(
        self,
        client: Optional[TransformationClient] = None,
        cache: Optional[ResultCache] = None,
        settings: Optional[AppSettings] = None
    ):
        self.settings = settings or (client.settings if client is not None else get_settings())
        self.client = client or TransformationClient(self.settings)
        self.cache = cache or ResultCache(
            capacity=self.settings.cache.capacity,
            hasher=ContentHasher(
                strategy=self.settings.cache.key_strategy,
                sample_chars=self.settings.cache.sample_chars
            )
        )
        self.state = TransformOutcome(state=TransformState.IDLE)

    async def close(self):
        await self.client.close()

    async def __aenter__(self) -> "StylizerSession":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def cached_result(self, image: ImageSource) -> Optional[str]:
        """Look up a previous result without touching the network."""
        return self.cache.get(image)

    async def stylize(
        self,
        image: ImageSource,
        credential: str,
        optimize: Optional[bool] = None,
        cancel_token: Optional[CancellationToken] = None
    ) -> str:
        """
        Return the artifact reference for an image, transforming on a cache miss.

        Raises:
            StylizerError: Any classified pipeline failure
        """

        result_ref, _ = await self._resolve(image, credential, optimize, cancel_token)
        return result_ref

    async def _resolve(
        self,
        image: ImageSource,
        credential: str,
        optimize: Optional[bool],
        cancel_token: Optional[CancellationToken]
    ) -> Tuple[str, bool]:
        # Returns the artifact reference and whether it came from the cache
        if optimize is None:
            optimize = self.settings.processing.optimize_by_default

        key = self.cache.key_for(image)
        cached = self.cache.get_by_key(key)
        if cached is not None:
            logger.info("Serving cached transformation", key=str(key))
            TRANSFORM_COUNT.labels(outcome="cached").inc()
            return cached, True

        started = time.perf_counter()
        try:
            try:
                result_ref = await self.client.transform(image, credential, optimize, cancel_token)
            except PreprocessError as e:
                if not (optimize and self.settings.processing.retry_without_optimization):
                    raise
                logger.warning("Optimization failed, retrying unoptimized", error=e.message)
                optimize = False
                result_ref = await self.client.transform(image, credential, optimize, cancel_token)
        except StylizerError as e:
            TRANSFORM_COUNT.labels(outcome=e.kind).inc()
            raise

        TRANSFORM_COUNT.labels(outcome="succeeded").inc()
        TRANSFORM_DURATION.labels(optimized=str(optimize).lower()).observe(time.perf_counter() - started)

        self.cache.put_by_key(key, result_ref)
        return result_ref, False

    async def run(
        self,
        request: TransformationRequest,
        cancel_token: Optional[CancellationToken] = None,
        listener: Optional[StateListener] = None
    ) -> TransformOutcome:
        """
        Transform a request and report progress as ``TransformOutcome`` states.

        Emits ``loading`` followed by exactly one terminal state. Pipeline
        errors are returned as a failed or cancelled outcome, never raised.
        """

        self._publish(TransformOutcome(state=TransformState.LOADING), listener)

        try:
            result_ref, from_cache = await self._resolve(
                request.image,
                request.credential,
                request.optimize,
                cancel_token
            )
        except TransformationCancelledError as e:
            outcome = TransformOutcome(
                state=TransformState.CANCELLED,
                error_kind=e.kind,
                message=e.message
            )
        except StylizerError as e:
            logger.error("Transformation failed", error_kind=e.kind, error=e.message)
            outcome = TransformOutcome(
                state=TransformState.FAILED,
                error_kind=e.kind,
                message=e.message
            )
        else:
            outcome = TransformOutcome(
                state=TransformState.SUCCEEDED,
                result_ref=result_ref,
                from_cache=from_cache
            )

        self._publish(outcome, listener)
        return outcome

    def reset(self):
        """Return to the idle state; cached results are kept."""
        self.state = TransformOutcome(state=TransformState.IDLE)

    def _publish(self, outcome: TransformOutcome, listener: Optional[StateListener]):
        self.state = outcome
        if listener is not None:
            listener(outcome)
