"""End-to-end tests for the cache-aware session."""

import base64
import io

import pytest
from PIL import Image

from stylizer.models.schemas import ImageSource, TransformationRequest, TransformState
from stylizer.preprocessing.content_hasher import ContentHasher
from stylizer.services.result_cache import ResultCache
from stylizer.services.stylizer import StylizerSession
from stylizer.services.transformation_client import TransformationClient
from stylizer.utils.cancellation import CancellationToken
from stylizer.utils.exceptions import PreprocessError, SubmissionError

from .conftest import RESULT_URL, TOKEN, build_settings, make_image


def uploaded_size(request):
    encoded = request.body["input"]["image"].split(",", 1)[1]
    return Image.open(io.BytesIO(base64.b64decode(encoded))).size


def session_for(settings, sleeps, **kwargs) -> StylizerSession:
    return StylizerSession(client=TransformationClient(settings, sleep=sleeps), **kwargs)


@pytest.mark.asyncio
async def test_wide_upload_end_to_end_then_cached(replicate, sleeps, wide_image):
    settings = build_settings(replicate.base_url, processing={"optimized_max_dimension": 800})
    replicate.succeed_after(1)

    async with session_for(settings, sleeps) as session:
        result = await session.stylize(wide_image, TOKEN)

        assert result == RESULT_URL
        (submission,) = replicate.submissions
        assert uploaded_size(submission) == (800, 400)
        assert submission.body["input"]["num_inference_steps"] == 20
        assert sleeps.delays == [2.0]
        assert session.cached_result(wide_image) == RESULT_URL

        seen = len(replicate.requests)
        assert await session.stylize(wide_image, TOKEN) == RESULT_URL
        assert len(replicate.requests) == seen


@pytest.mark.asyncio
async def test_default_optimized_bound(replicate, settings, sleeps, wide_image):
    replicate.succeed_after(0)

    async with session_for(settings, sleeps) as session:
        await session.stylize(wide_image, TOKEN)

    assert uploaded_size(replicate.submissions[0]) == (600, 300)


@pytest.mark.asyncio
async def test_cache_key_is_original_upload(replicate, settings, sleeps, wide_image):
    replicate.succeed_after(0)

    async with session_for(settings, sleeps) as session:
        await session.stylize(wide_image, TOKEN)
        # Cached under the original bytes, so an unoptimized repeat is also a hit
        await session.stylize(wide_image, TOKEN, optimize=False)

    assert len(replicate.submissions) == 1
    assert session.cache.keys() == [session.cache.key_for(wide_image)]


@pytest.mark.asyncio
async def test_failures_are_not_cached(replicate, settings, sleeps, wide_image):
    replicate.submit_status = 401
    replicate.submit_body = {"detail": "Invalid token"}

    async with session_for(settings, sleeps) as session:
        with pytest.raises(SubmissionError):
            await session.stylize(wide_image, TOKEN)

        assert len(session.cache) == 0
        assert session.cached_result(wide_image) is None


@pytest.mark.asyncio
async def test_cache_evicts_oldest_result(replicate, sleeps):
    settings = build_settings(replicate.base_url, cache={"capacity": 2})
    images = [make_image(100, 80, seed=n) for n in range(3)]

    async with session_for(settings, sleeps) as session:
        for n, image in enumerate(images):
            replicate.succeed_after(0, output=f"https://x/{n}.png")
            await session.stylize(image, TOKEN)

        assert len(session.cache) == 2
        assert session.cached_result(images[0]) is None
        assert session.cached_result(images[2]) == "https://x/2.png"


@pytest.mark.asyncio
async def test_run_reports_loading_then_success(replicate, settings, sleeps, wide_image):
    replicate.succeed_after(0)
    states = []

    async with session_for(settings, sleeps) as session:
        request = TransformationRequest(image=wide_image, credential=TOKEN)
        first = await session.run(request, listener=states.append)
        second = await session.run(request, listener=states.append)

    assert [s.state for s in states] == [
        TransformState.LOADING,
        TransformState.SUCCEEDED,
        TransformState.LOADING,
        TransformState.SUCCEEDED,
    ]
    assert first.succeeded and not first.from_cache
    assert second.result_ref == RESULT_URL and second.from_cache
    assert session.state == second


@pytest.mark.asyncio
async def test_run_reports_classified_failure(replicate, settings, sleeps, wide_image):
    replicate.submit_status = 401
    replicate.submit_body = {"detail": "Invalid token"}

    async with session_for(settings, sleeps) as session:
        outcome = await session.run(TransformationRequest(image=wide_image, credential="bad"))

    assert outcome.state is TransformState.FAILED
    assert outcome.error_kind == "submission"
    assert outcome.message == "API request failed: 401 - Invalid token"
    assert outcome.result_ref is None


@pytest.mark.asyncio
async def test_run_reports_cancellation(replicate, settings, sleeps, wide_image):
    token = CancellationToken()
    token.cancel()

    async with session_for(settings, sleeps) as session:
        outcome = await session.run(
            TransformationRequest(image=wide_image, credential=TOKEN),
            cancel_token=token
        )

    assert outcome.state is TransformState.CANCELLED
    assert outcome.error_kind == "cancelled"
    assert replicate.requests == []


@pytest.mark.asyncio
async def test_reset_returns_to_idle(replicate, settings, sleeps, wide_image):
    replicate.succeed_after(0)

    async with session_for(settings, sleeps) as session:
        assert session.state.state is TransformState.IDLE
        await session.run(TransformationRequest(image=wide_image, credential=TOKEN))
        session.reset()

        assert session.state.state is TransformState.IDLE
        assert session.cached_result(wide_image) == RESULT_URL


@pytest.mark.asyncio
async def test_preprocess_failure_is_reported_by_default(replicate, settings, sleeps):
    garbage = ImageSource(data=b"not an image", media_type="image/png", filename="x.png")

    async with session_for(settings, sleeps) as session:
        with pytest.raises(PreprocessError):
            await session.stylize(garbage, TOKEN)

    assert replicate.requests == []


@pytest.mark.asyncio
async def test_preprocess_failure_can_retry_unoptimized(replicate, sleeps):
    settings = build_settings(replicate.base_url, processing={"retry_without_optimization": True})
    garbage = ImageSource(data=b"not an image", media_type="image/png", filename="x.png")
    replicate.succeed_after(0)

    async with session_for(settings, sleeps) as session:
        assert await session.stylize(garbage, TOKEN) == RESULT_URL

    (submission,) = replicate.submissions
    assert submission.body["input"]["num_inference_steps"] == 30
    assert submission.body["input"]["image"] == garbage.to_data_url()


@pytest.mark.asyncio
async def test_injected_cache_is_used(replicate, settings, sleeps, wide_image):
    cache = ResultCache(capacity=5)
    cache.put(wide_image, "https://x/precomputed.png")

    async with session_for(settings, sleeps, cache=cache) as session:
        assert await session.stylize(wide_image, TOKEN) == "https://x/precomputed.png"

    assert replicate.requests == []


@pytest.mark.asyncio
async def test_run_reports_oversized_image_as_preprocess_failure(replicate, settings, sleeps, monkeypatch):
    image = make_image(2000, 1000)
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 500_000)

    async with session_for(settings, sleeps) as session:
        outcome = await session.run(TransformationRequest(image=image, credential=TOKEN))

    assert outcome.state is TransformState.FAILED
    assert outcome.error_kind == "preprocess"
    assert replicate.requests == []


class CountingHasher(ContentHasher):
    def __init__(self):
        super().__init__()
        self.calls = 0

    def hash(self, source):
        self.calls += 1
        return super().hash(source)


@pytest.mark.asyncio
async def test_run_fingerprints_once_per_request(replicate, settings, sleeps, wide_image):
    hasher = CountingHasher()
    replicate.succeed_after(0)

    async with session_for(settings, sleeps, cache=ResultCache(hasher=hasher)) as session:
        request = TransformationRequest(image=wide_image, credential=TOKEN)
        first = await session.run(request)
        assert hasher.calls == 1

        second = await session.run(request)
        assert hasher.calls == 2

    assert not first.from_cache
    assert second.from_cache
