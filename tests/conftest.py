"""Pytest configuration and shared fixtures.

The media tools, object store and video repository are replaced with
in-memory fakes so the pipeline can run without ffmpeg, S3 or Postgres.
"""
import asyncio
import shutil
import uuid
from pathlib import Path

import pytest

from app.core.config import Settings
from app.core.exceptions import VideoNotFoundError
from app.models.video import Video
from app.services.media_service import StreamDescriptor
from app.services.upload_pipeline import VideoUploadPipeline

CDN_BASE = "https://cdn.example.com"


class AsyncBytesReader:
    """Minimal stand-in for an UploadFile body."""

    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    async def read(self, size: int = -1) -> bytes:
        if size < 0:
            size = len(self.data) - self.pos
        chunk = self.data[self.pos:self.pos + size]
        self.pos += len(chunk)
        return chunk


class FakeRemuxer:
    def __init__(self):
        self.calls: list[Path] = []
        self.error: Exception | None = None

    async def remux(self, input_path: Path, timeout: float | None = None) -> Path:
        self.calls.append(input_path)
        if self.error:
            raise self.error
        output_path = input_path.with_name(input_path.name + ".processing")
        shutil.copyfile(input_path, output_path)
        return output_path


class FakeProber:
    def __init__(self, width: int = 1920, height: int = 1080):
        self.stream = StreamDescriptor(width=width, height=height)
        self.calls: list[Path] = []
        self.error: Exception | None = None

    async def probe(self, path: Path, timeout: float | None = None) -> StreamDescriptor:
        self.calls.append(path)
        if self.error:
            raise self.error
        return self.stream


class FakeObjectStore:
    def __init__(self, base_url: str = CDN_BASE):
        self.base_url = base_url
        self.objects: dict[str, bytes] = {}
        self.puts: list[tuple[str, str]] = []
        self.deletes: list[str] = []
        self.put_error: Exception | None = None
        self.delete_error: Exception | None = None
        self.put_delay: float = 0

    async def put(self, key: str, body_path: Path, content_type: str) -> None:
        if self.put_delay:
            await asyncio.sleep(self.put_delay)
        if self.put_error:
            raise self.put_error
        self.objects[key] = Path(body_path).read_bytes()
        self.puts.append((key, content_type))

    async def delete(self, key: str) -> None:
        self.deletes.append(key)
        if self.delete_error:
            raise self.delete_error
        self.objects.pop(key, None)

    def public_url(self, key: str) -> str:
        return f"{self.base_url}/{key}"

    def key_from_url(self, url: str) -> str | None:
        prefix = self.base_url + "/"
        return url[len(prefix):] if url.startswith(prefix) else None


class FakeVideoRepository:
    def __init__(self):
        self.videos: dict[uuid.UUID, Video] = {}
        self.updates: list[uuid.UUID] = []
        self.update_error: Exception | None = None
        self.delete_error: Exception | None = None

    def add(self, video: Video) -> Video:
        self.videos[video.id] = video
        return video

    async def get(self, video_id: uuid.UUID) -> Video:
        try:
            return self.videos[video_id]
        except KeyError:
            raise VideoNotFoundError("Video not found") from None

    async def update(self, video: Video) -> Video:
        if self.update_error:
            raise self.update_error
        self.updates.append(video.id)
        return video

    async def create(self, user_id: uuid.UUID, data) -> Video:
        return self.add(make_video(user_id, title=data.title, description=data.description))

    async def list_for_user(self, user_id: uuid.UUID) -> list[Video]:
        return [v for v in self.videos.values() if v.user_id == user_id]

    async def delete(self, video: Video) -> None:
        if self.delete_error:
            raise self.delete_error
        self.videos.pop(video.id, None)


def make_video(user_id: uuid.UUID, **kwargs) -> Video:
    kwargs.setdefault("title", "Boot.dev beats")
    return Video(id=uuid.uuid4(), user_id=user_id, **kwargs)


@pytest.fixture
def owner_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        ENV="test",
        JWT_SECRET_KEY="test-secret",
        S3_BUCKET="test-bucket",
        S3_REGION="us-east-2",
        S3_ACCESS_KEY="test",
        S3_SECRET_KEY="test",
        S3_CF_DISTRIBUTION=CDN_BASE,
        ASSETS_ROOT=str(tmp_path / "assets"),
        ASSETS_BASE_URL="http://localhost:8091",
        TEMP_DIR=str(tmp_path / "staging"),
        ORPHAN_CLEANUP_ENABLED=False,
    )


@pytest.fixture
def staging_dir(settings) -> Path:
    path = Path(settings.TEMP_DIR)
    path.mkdir(parents=True, exist_ok=True)
    return path


@pytest.fixture
def remuxer() -> FakeRemuxer:
    return FakeRemuxer()


@pytest.fixture
def prober() -> FakeProber:
    return FakeProber()


@pytest.fixture
def store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def repository() -> FakeVideoRepository:
    return FakeVideoRepository()


@pytest.fixture
def orphans() -> list[str]:
    return []


@pytest.fixture
def pipeline(settings, staging_dir, prober, remuxer, store, orphans) -> VideoUploadPipeline:
    return VideoUploadPipeline(
        prober=prober,
        remuxer=remuxer,
        store=store,
        max_upload_bytes=1024,
        tool_timeout=5,
        storage_timeout=5,
        deadline_seconds=30,
        temp_dir=str(staging_dir),
        on_orphan=orphans.append,
    )
