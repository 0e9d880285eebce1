"""
Transformation Client

Turns the remote "create prediction, poll until done" API into a single
awaitable call that resolves to the artifact reference or raises a typed
error. Caching is left to the caller.
"""

import asyncio
from typing import Any, Dict, Optional

import aiohttp
import structlog
from pydantic import ValidationError

from ..models.schemas import ImageSource, PredictionResponse, TransformationJob, JobStatus
from ..preprocessing.image_processor import ImagePreprocessor
from ..utils.cancellation import CancellationToken
from ..utils.config import AppSettings, get_settings
from ..utils.exceptions import (
    PollTransientError,
    PreprocessError,
    SubmissionError,
    TransformationFailedError,
)
from ..utils.monitoring import MetricsContext
from .poll_loop import PollLoop, Sleep

logger = structlog.get_logger()


class TransformationClient:
    """
    Client for the remote predictions API.

    Owns an ``aiohttp.ClientSession`` unless one is supplied. Use as an
    async context manager, or call ``close()`` when done.
    """

    def __init__(
        self,
        settings: Optional[AppSettings] = None,
        session: Optional[aiohttp.ClientSession] = None,
        preprocessor: Optional[ImagePreprocessor] = None,
        sleep: Sleep = asyncio.sleep
    ):
        self.settings = settings or get_settings()
        self.preprocessor = preprocessor or ImagePreprocessor(
            quality=self.settings.processing.jpeg_quality,
            default_max_dimension=self.settings.processing.max_dimension
        )
        self._session = session
        self._owns_session = session is None
        self._sleep = sleep

    @property
    def predictions_url(self) -> str:
        return f"{self.settings.replicate.api_base_url}/predictions"

    @property
    def session(self) -> aiohttp.ClientSession:
        """Get HTTP session with lazy initialization."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.settings.replicate.request_timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def close(self):
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "TransformationClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def transform(
        self,
        image: ImageSource,
        credential: str,
        optimize: bool = True,
        cancel_token: Optional[CancellationToken] = None
    ) -> str:
        """
        Transform an image and wait for the result.

        Args:
            image: Source image
            credential: Opaque API token
            optimize: Shrink the upload and use fewer inference steps
            cancel_token: Checked before every network call and backoff wait

        Returns:
            Reference (URL) of the produced artifact

        Raises:
            PreprocessError: Optimization failed
            SubmissionError: The create request was rejected
            TransformationFailedError: The job failed remotely
            TimedOutError: No terminal status within the attempt budget
            TransformationCancelledError: ``cancel_token`` fired
        """

        if optimize:
            image = await self.preprocessor.optimize_async(
                image, self.settings.processing.optimized_max_dimension
            )

        payload = self.build_payload(image, optimize)

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        job = await self.submit(payload, credential)

        poll_loop = PollLoop(
            fetch_status=lambda prediction_id: self.fetch_status(prediction_id, credential),
            initial_backoff=self.settings.polling.initial_backoff_seconds,
            max_backoff=self.settings.polling.max_backoff_seconds,
            multiplier=self.settings.polling.backoff_multiplier,
            max_attempts=self.settings.polling.max_attempts,
            sleep=self._sleep
        )

        with MetricsContext("poll_prediction", component="client"):
            prediction = await poll_loop.run(job, cancel_token)

        if job.status is JobStatus.FAILED:
            raise TransformationFailedError(prediction.error_reason)

        result_ref = prediction.artifact_ref
        if result_ref is None:
            raise TransformationFailedError("Prediction succeeded without output")

        logger.info("Transformation complete", prediction_id=job.id, result=result_ref)
        return result_ref

    def build_payload(self, image: ImageSource, optimize: bool) -> Dict[str, Any]:
        """Build the create-prediction request body."""

        replicate = self.settings.replicate
        steps = replicate.optimized_inference_steps if optimize else replicate.full_inference_steps

        try:
            data_url = image.to_data_url()
        except ValueError as e:
            raise PreprocessError(str(e)) from e

        return {
            "version": replicate.model_version,
            "input": {
                "image": data_url,
                "prompt": replicate.prompt,
                "negative_prompt": replicate.negative_prompt,
                "num_inference_steps": steps
            }
        }

    async def submit(self, payload: Dict[str, Any], credential: str) -> TransformationJob:
        """Create a prediction; any non-2xx response fails immediately."""

        try:
            async with self.session.post(
                self.predictions_url,
                json=payload,
                headers=self._headers(credential, json_body=True)
            ) as response:
                body = await _read_json(response)
                if not _is_success(response.status):
                    detail = body.get("detail") if isinstance(body, dict) else None
                    logger.error("Prediction submission rejected", status=response.status, detail=detail)
                    raise SubmissionError(response.status, detail)
                status_code = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("Prediction submission failed", error=str(e) or type(e).__name__)
            raise SubmissionError(None, str(e) or type(e).__name__) from e

        prediction_id = body.get("id") if isinstance(body, dict) else None
        if not prediction_id:
            raise SubmissionError(status_code, "Response missing prediction id")

        logger.info(
            "Prediction submitted",
            prediction_id=prediction_id,
            steps=payload["input"]["num_inference_steps"]
        )
        return TransformationJob(id=str(prediction_id))

    async def fetch_status(self, prediction_id: str, credential: str) -> PredictionResponse:
        """Fetch a prediction's status; every failure is transient."""

        url = f"{self.predictions_url}/{prediction_id}"
        try:
            async with self.session.get(url, headers=self._headers(credential)) as response:
                if not _is_success(response.status):
                    raise PollTransientError(response.status)
                body = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise PollTransientError(None, str(e) or type(e).__name__) from e

        try:
            return PredictionResponse.model_validate(body)
        except ValidationError as e:
            raise PollTransientError(None, f"Malformed status payload: {e}") from e

    def _headers(self, credential: str, json_body: bool = False) -> Dict[str, str]:
        headers = {"Authorization": f"Token {credential}"}
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers


def _is_success(status: int) -> bool:
    return 200 <= status < 300


async def _read_json(response: aiohttp.ClientResponse) -> Any:
    try:
        return await response.json(content_type=None)
    except ValueError:
        return {}
