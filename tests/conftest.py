"""
Shared test fixtures for TubeRelay tests.

The key benefit of DI: tests use app.dependency_overrides to inject a
VideoDownloader built from fakes, never calling yt-dlp, opening HTTP
connections or spawning FFmpeg.
"""
import asyncio
import shutil
import tempfile
import time
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from api.dependencies import get_downloader
from tuberelay.downloader import VideoDownloader
from tuberelay.errors import MergeFailed, UpstreamUnavailable
from tuberelay.extractors.base import BaseExtractor
from tuberelay.extractors.youtube import normalize_youtube_input
from tuberelay.models import RawRendition, ResolvedVideo, VideoMetadata
from tuberelay.utils.config import AppConfig

VIDEO_ID = "dQw4w9WgXcQ"
CDN = "https://cdn.test/media"

PAYLOADS = {
    f"{CDN}/18": b"progressive-360p" * 64,
    f"{CDN}/137": b"V" * 10000,
    f"{CDN}/136": b"v" * 6000,
    f"{CDN}/248": b"W" * 8000,
    f"{CDN}/140": b"a" * 3000,
    f"{CDN}/251": b"A" * 5000,
}


def make_raw(format_id, **kwargs) -> RawRendition:
    """RawRendition with a fetch url derived from the format id."""
    kwargs.setdefault("url", f"{CDN}/{format_id}")
    return RawRendition(format_id=format_id, **kwargs)


def sample_renditions():
    return [
        make_raw("18", container="mp4", height=360, width=640, fps=30, bitrate=700_000,
                 content_length=len(PAYLOADS[f"{CDN}/18"]), has_video=True, has_audio=True,
                 quality_label="360p"),
        make_raw("136", container="mp4", height=720, width=1280, fps=30, bitrate=2_000_000,
                 has_video=True, quality_label="720p"),
        make_raw("137", container="mp4", height=1080, width=1920, fps=60, bitrate=4_000_000,
                 has_video=True, quality_label="1080p60"),
        make_raw("248", container="webm", height=1080, width=1920, fps=60, bitrate=3_000_000,
                 has_video=True, quality_label="1080p60"),
        make_raw("140", container="m4a", has_audio=True, audio_bitrate=129.5),
        make_raw("251", container="webm", has_audio=True, audio_bitrate=160.0),
    ]


def sample_resolved(renditions=None) -> ResolvedVideo:
    return ResolvedVideo(
        source_url=f"https://www.youtube.com/watch?v={VIDEO_ID}",
        metadata=VideoMetadata(
            title="Test Video: Part 1",
            duration=100,
            thumbnail="https://i.ytimg.com/vi/dQw4w9WgXcQ/hqdefault.jpg",
            uploader="Test Channel",
            view_count=42,
        ),
        renditions=sample_renditions() if renditions is None else renditions,
    )


class FakeExtractor(BaseExtractor):
    """Validates the URL like the real extractor, then returns a canned result."""

    def __init__(self, config, resolved=None, error=None, delay=0.0):
        super().__init__(config)
        self.resolved = resolved or sample_resolved()
        self.error = error
        self.delay = delay
        self.calls = []
        self.deadlines = []

    def can_handle(self, url):
        return True

    def extract(self, url, deadline=None):
        canonical_url, _ = normalize_youtube_input(url)
        self.calls.append(canonical_url)
        self.deadlines.append(deadline)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.resolved


class FakeStream:
    def __init__(self, url, payload, chunk_size=1024):
        self.url = url
        self.payload = payload
        self.chunk_size = chunk_size
        self.closed = False

    @property
    def content_length(self):
        return len(self.payload)

    async def iter_chunks(self):
        for i in range(0, len(self.payload), self.chunk_size):
            yield self.payload[i:i + self.chunk_size]

    async def aclose(self):
        self.closed = True


class FakeFetcher:
    """Serves PAYLOADS; urls in fail_urls raise UpstreamUnavailable."""

    def __init__(self, payloads=None, fail_urls=()):
        self.payloads = dict(PAYLOADS if payloads is None else payloads)
        self.fail_urls = set(fail_urls)
        self.streams = []
        self.downloads = []

    async def open(self, url, headers=None):
        if url in self.fail_urls or url not in self.payloads:
            raise UpstreamUnavailable("Media stream returned HTTP 403")
        stream = FakeStream(url, self.payloads[url])
        self.streams.append(stream)
        return stream

    async def download_to(self, url, path, headers=None):
        stream = await self.open(url, headers=headers)
        try:
            data = b"".join([chunk async for chunk in stream.iter_chunks()])
        finally:
            await stream.aclose()
        Path(path).write_bytes(data)
        self.downloads.append((url, Path(path)))
        return len(data)


class StallingFetcher(FakeFetcher):
    """download_to() writes a few bytes, then hangs until cancelled."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.started = 0
        self.all_started = asyncio.Event()
        self.cancelled = 0

    async def download_to(self, url, path, headers=None):
        Path(path).write_bytes(self.payloads[url][:100])
        self.started += 1
        if self.started == 2:
            self.all_started.set()
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        return 100


class FakeMuxer:
    """Concatenates video and audio bytes instead of running FFmpeg."""

    def __init__(self, fail=False, available=True):
        self.fail = fail
        self.available = available
        self.calls = []

    def is_available(self):
        return self.available

    async def merge(self, video_path, audio_path, output_path):
        self.calls.append((Path(video_path), Path(audio_path), Path(output_path)))
        if self.fail:
            raise MergeFailed("FFmpeg failed: Invalid data found when processing input")
        Path(output_path).write_bytes(Path(video_path).read_bytes() + Path(audio_path).read_bytes())
        return Path(output_path)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    d = tempfile.mkdtemp()
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def scratch_dir(tmp_path):
    return tmp_path / "scratch"


@pytest.fixture
def app_config(scratch_dir):
    return AppConfig(scratch_dir=str(scratch_dir), resolve_retries=1, retry_backoff_sec=0)


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def muxer():
    return FakeMuxer()


@pytest.fixture
def downloader(app_config, fetcher, muxer):
    return VideoDownloader(
        config=app_config,
        extractor=FakeExtractor(app_config),
        fetcher=fetcher,
        muxer=muxer,
    )


@pytest.fixture
def di_client(downloader):
    """Create a test client with the downloader replaced via DI overrides."""
    app = create_app()
    app.dependency_overrides[get_downloader] = lambda: downloader

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()
