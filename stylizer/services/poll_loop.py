"""
Prediction polling with exponential backoff.

Drives a submitted job from ``Pending`` to ``Succeeded``, ``Failed`` or a
timeout by querying its status until a terminal state is reported or the
attempt budget runs out.
"""

import asyncio
from typing import Awaitable, Callable, Optional

import structlog

from ..models.schemas import PredictionResponse, TransformationJob
from ..utils.cancellation import CancellationToken
from ..utils.exceptions import PollTransientError, TimedOutError
from ..utils.monitoring import POLL_ATTEMPTS

logger = structlog.get_logger()

FetchStatus = Callable[[str], Awaitable[PredictionResponse]]
Sleep = Callable[[float], Awaitable[None]]


class PollLoop:
    """
    Sequential status poller.

    Each attempt fetches the job status once. A pending status, or a
    ``PollTransientError`` raised by ``fetch_status``, consumes one attempt
    and is followed by one backoff wait; the wait grows by ``multiplier`` up
    to ``max_backoff``. Exhausting ``max_attempts`` raises ``TimedOutError``.
    """

    def __init__(
        self,
        fetch_status: FetchStatus,
        initial_backoff: float = 2.0,
        max_backoff: float = 15.0,
        multiplier: float = 1.5,
        max_attempts: int = 30,
        sleep: Sleep = asyncio.sleep
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.fetch_status = fetch_status
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.multiplier = multiplier
        self.max_attempts = max_attempts
        self._sleep = sleep

    async def run(
        self,
        job: TransformationJob,
        cancel_token: Optional[CancellationToken] = None
    ) -> PredictionResponse:
        """
        Poll until the job reaches a terminal status.

        Returns:
            The terminal prediction payload (succeeded or failed)

        Raises:
            TimedOutError: If no terminal status arrives within the budget
            TransformationCancelledError: If ``cancel_token`` fires
        """

        backoff = self.initial_backoff

        while job.attempts < self.max_attempts:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            try:
                prediction = await self.fetch_status(job.id)
            except PollTransientError as e:
                POLL_ATTEMPTS.labels(result="error").inc()
                logger.warning(
                    "Polling error",
                    prediction_id=job.id,
                    attempt=job.attempts + 1,
                    status_code=e.status_code,
                    error=e.message
                )
            else:
                job.status = prediction.job_status
                if job.is_terminal:
                    POLL_ATTEMPTS.labels(result=job.status.value).inc()
                    logger.info(
                        "Prediction finished",
                        prediction_id=job.id,
                        status=prediction.status,
                        attempts=job.attempts + 1
                    )
                    return prediction

                POLL_ATTEMPTS.labels(result="pending").inc()
                logger.debug(
                    "Prediction pending",
                    prediction_id=job.id,
                    status=prediction.status,
                    attempt=job.attempts + 1,
                    backoff=backoff
                )

            await self._wait(backoff, cancel_token)
            backoff = min(backoff * self.multiplier, self.max_backoff)
            job.attempts += 1

        logger.warning("Prediction timed out", prediction_id=job.id, attempts=job.attempts)
        raise TimedOutError(job.attempts)

    async def _wait(self, delay: float, cancel_token: Optional[CancellationToken]):
        if cancel_token is None:
            await self._sleep(delay)
            return

        cancel_token.raise_if_cancelled()

        sleeper = asyncio.ensure_future(self._sleep(delay))
        canceller = asyncio.ensure_future(cancel_token.wait())
        try:
            await asyncio.wait({sleeper, canceller}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, canceller):
                if not task.done():
                    task.cancel()

        cancel_token.raise_if_cancelled()
        sleeper.result()
