"""Shared fixtures: synthetic images and an in-process prediction service."""

import asyncio
import io
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer
from PIL import Image, ImageDraw

from stylizer.models.schemas import ImageSource
from stylizer.utils.config import (
    AppSettings,
    CacheSettings,
    PollingSettings,
    ProcessingSettings,
    ReplicateSettings,
)

TOKEN = "r8_test_token"
RESULT_URL = "https://x/result.png"


def make_image(
    width: int,
    height: int,
    fmt: str = "PNG",
    mode: str = "RGB",
    seed: int = 0,
    filename: Optional[str] = None,
    **save_kwargs
) -> ImageSource:
    """Draw a synthetic image with a few shapes so distinct seeds differ."""

    image = Image.new(mode, (width, height), "white")
    draw = ImageDraw.Draw(image)
    draw.rectangle([width // 10, height // 10, width // 3, height // 3], fill="black")
    draw.ellipse([width // 2, height // 4, width // 2 + width // 5, height // 2], fill=(seed * 37 % 256, 80, 160))
    draw.line([(0, height - 1), (width - 1, seed % height)], fill="red", width=3)

    buffer = io.BytesIO()
    image.save(buffer, format=fmt, **save_kwargs)
    media_type = "image/jpeg" if fmt == "JPEG" else f"image/{fmt.lower()}"
    extension = "jpg" if fmt == "JPEG" else fmt.lower()
    return ImageSource(
        data=buffer.getvalue(),
        media_type=media_type,
        filename=filename or f"photo-{seed}.{extension}",
        last_modified=1700000000.0,
    )


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float):
        self.delays.append(delay)
        await asyncio.sleep(0)


@dataclass
class RecordedRequest:
    method: str
    path: str
    headers: Dict[str, str]
    body: Any = None


class FakeReplicate:
    """Scriptable stand-in for the predictions API."""

    def __init__(self):
        self.base_url = ""
        self.prediction_id = "pred-123"
        self.submit_status = 201
        self.submit_body: Any = {"id": self.prediction_id, "status": "starting"}
        self.poll_responses: List[Tuple[int, Any]] = []
        self.requests: List[RecordedRequest] = []
        self.files: Dict[str, bytes] = {}

    def succeed_after(self, pending: int, output: Any = RESULT_URL):
        self.poll_responses = [
            (200, {"id": self.prediction_id, "status": "processing"}) for _ in range(pending)
        ]
        self.poll_responses.append(
            (200, {"id": self.prediction_id, "status": "succeeded", "output": output})
        )

    @property
    def submissions(self) -> List[RecordedRequest]:
        return [r for r in self.requests if r.method == "POST"]

    @property
    def polls(self) -> List[RecordedRequest]:
        return [r for r in self.requests if r.method == "GET" and r.path.startswith("/predictions/")]

    async def create_prediction(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.requests.append(RecordedRequest("POST", request.path, dict(request.headers), body))
        if isinstance(self.submit_body, (dict, list)):
            return web.json_response(self.submit_body, status=self.submit_status)
        return web.Response(text=self.submit_body or "", status=self.submit_status)

    async def get_prediction(self, request: web.Request) -> web.Response:
        self.requests.append(RecordedRequest("GET", request.path, dict(request.headers)))
        if self.poll_responses:
            status, body = self.poll_responses.pop(0)
        else:
            status, body = 200, {"id": request.match_info["prediction_id"], "status": "processing"}
        if isinstance(body, (dict, list)):
            return web.json_response(body, status=status)
        return web.Response(text=body or "", status=status)

    async def get_file(self, request: web.Request) -> web.Response:
        self.requests.append(RecordedRequest("GET", request.path, dict(request.headers)))
        data = self.files.get(request.match_info["name"])
        if data is None:
            raise web.HTTPNotFound()
        return web.Response(body=data, content_type="image/png")

    def build_app(self) -> web.Application:
        app = web.Application(client_max_size=32 * 1024 * 1024)
        app.router.add_post("/predictions", self.create_prediction)
        app.router.add_get("/predictions/{prediction_id}", self.get_prediction)
        app.router.add_get("/files/{name}", self.get_file)
        return app


def build_settings(base_url: str, **overrides) -> AppSettings:
    """Settings pointing at ``base_url`` with optional section overrides."""

    replicate = ReplicateSettings(api_base_url=base_url, **overrides.pop("replicate", {}))
    polling = PollingSettings(**overrides.pop("polling", {}))
    cache = CacheSettings(**overrides.pop("cache", {}))
    processing = ProcessingSettings(**overrides.pop("processing", {}))
    return AppSettings(replicate=replicate, polling=polling, cache=cache, processing=processing, **overrides)


@pytest_asyncio.fixture
async def replicate():
    fake = FakeReplicate()
    server = TestServer(fake.build_app())
    await server.start_server()
    fake.base_url = str(server.make_url("")).rstrip("/")
    yield fake
    await server.close()


@pytest.fixture
def sleeps() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def settings(replicate) -> AppSettings:
    return build_settings(replicate.base_url)


@pytest.fixture
def wide_image() -> ImageSource:
    return make_image(2000, 1000)
