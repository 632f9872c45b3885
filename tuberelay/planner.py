"""
Delivery planner: decides how a requested rendition reaches the caller
(direct stream, video+audio merge, or muted fallback) and drives it to
completion, including cleanup of every temporary file.
"""
from __future__ import annotations

import asyncio
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Iterable, Protocol

from tuberelay.errors import DeliveryError, FormatNotFound, MergeFailed
from tuberelay.models import RawRendition, ResolvedVideo
from tuberelay.utils.async_utils import run_io
from tuberelay.utils.filenames import media_type_for
from tuberelay.utils.logger import logger
from tuberelay.utils.muxer import MediaMuxer
from tuberelay.utils.network import NetworkHandler, UpstreamStream
from tuberelay.utils.scratch import ScopedStore, StoreScope

MERGE_CONTAINERS = ("mp4", "webm")


class DeliveryStrategy(str, Enum):
    DIRECT_STREAM = "direct_stream"
    ACQUIRE_AND_MERGE = "acquire_and_merge"
    VIDEO_ONLY_FALLBACK = "video_only_fallback"


@dataclass
class DeliveryPlan:
    strategy: DeliveryStrategy
    video: RawRendition
    audio: RawRendition | None = None
    stores: list[ScopedStore] = field(default_factory=list)

    @property
    def container(self) -> str:
        c = self.video.container or "mp4"
        if self.strategy is DeliveryStrategy.ACQUIRE_AND_MERGE and c not in MERGE_CONTAINERS:
            return "mp4"
        return c


def select_audio(renditions: Iterable[RawRendition]) -> RawRendition | None:
    """Audio-only rendition with the highest audio bitrate; first one wins ties."""
    best: RawRendition | None = None
    for r in renditions:
        if not r.has_audio or r.has_video:
            continue
        if best is None or (r.audio_bitrate or 0) > (best.audio_bitrate or 0):
            best = r
    return best


def plan_delivery(resolved: ResolvedVideo, format_id: str) -> DeliveryPlan:
    """Resolve + classify. Pure: no I/O, no temporary files.

    Raises:
        FormatNotFound: format_id is not in the current rendition list.
    """
    selected = resolved.find(format_id)
    if selected is None:
        raise FormatNotFound(f"Requested format {format_id} not found; reload the format list and retry")

    logger.info(
        f"Format found: {selected.height}p, hasAudio: {selected.has_audio}, hasVideo: {selected.has_video}"
    )

    if selected.has_video and selected.has_audio:
        return DeliveryPlan(DeliveryStrategy.DIRECT_STREAM, selected)

    if selected.has_video:
        audio = select_audio(resolved.renditions)
        if audio is None:
            logger.warning("No audio formats found, streaming video only")
            return DeliveryPlan(DeliveryStrategy.VIDEO_ONLY_FALLBACK, selected)
        logger.info(f"Best audio format found: {audio.audio_bitrate}kbps ({audio.format_id})")
        return DeliveryPlan(DeliveryStrategy.ACQUIRE_AND_MERGE, selected, audio=audio)

    # Audio-only or flagless renditions are passed through untouched.
    logger.warning(f"Format {format_id} has no video track, streaming as-is")
    return DeliveryPlan(DeliveryStrategy.VIDEO_ONLY_FALLBACK, selected)


class ByteSink(Protocol):
    async def write(self, data: bytes) -> None: ...

    async def close(self) -> None: ...


class FileSink:
    """Writes delivered bytes to a local file (used by the CLI)."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._file = None
        self.written = 0

    async def write(self, data: bytes) -> None:
        if self._file is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self.path, "wb")
        self._file.write(data)
        self.written += len(data)

    async def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None


class Delivery:
    """A prepared delivery: everything that can fail before the first byte
    has already happened. Iterate iter_bytes() to stream, aclose() to
    release the upstream connection and temporary files.
    """

    def __init__(
        self,
        plan: DeliveryPlan,
        stream: UpstreamStream | None = None,
        merged: ScopedStore | None = None,
        scope: StoreScope | None = None,
        chunk_size: int = 64 * 1024,
    ):
        if (stream is None) == (merged is None):
            raise ValueError("Delivery needs exactly one of stream or merged")
        self.plan = plan
        self._stream = stream
        self._merged = merged
        self._scope = scope
        self.chunk_size = chunk_size
        self.started = False
        self.bytes_sent = 0
        self._closed = False
        self._error_reported = False

    @property
    def container(self) -> str:
        return self.plan.container

    @property
    def media_type(self) -> str:
        return media_type_for(self.container)

    @property
    def content_length(self) -> int | None:
        if self._merged is not None:
            return self._merged.size()
        return self._stream.content_length

    @property
    def closed(self) -> bool:
        return self._closed

    async def _iter_file(self, path: Path) -> AsyncIterator[bytes]:
        with open(path, "rb") as f:
            while True:
                data = await run_io(f.read, self.chunk_size)
                if not data:
                    break
                yield data

    def _source(self) -> AsyncIterator[bytes]:
        if self._stream is not None:
            return self._stream.iter_chunks()
        return self._iter_file(self._merged.path)

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        if self._closed:
            raise RuntimeError("Delivery already closed")
        try:
            async with aclosing(self._source()) as source:
                async for chunk in source:
                    self.started = True
                    self.bytes_sent += len(chunk)
                    yield chunk
            logger.info(f"Delivery completed ({self.bytes_sent} bytes)")
        except (asyncio.CancelledError, GeneratorExit):
            logger.info(f"Delivery aborted after {self.bytes_sent} bytes")
            raise
        except Exception as e:
            if not self._error_reported:
                self._error_reported = True
                logger.error(f"Stream error after {self.bytes_sent} bytes: {e}")
            raise
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._scope is not None:
            self._scope.release_all()
        if self._stream is not None:
            try:
                await self._stream.aclose()
            except Exception as e:
                logger.error(f"Failed to close upstream stream: {e}")


class DeliveryPlanner:
    def __init__(
        self,
        fetcher: NetworkHandler,
        muxer: MediaMuxer,
        scratch_dir: str | Path,
        chunk_size: int = 64 * 1024,
    ):
        self.fetcher = fetcher
        self.muxer = muxer
        self.scratch_dir = Path(scratch_dir)
        self.chunk_size = chunk_size

    async def prepare(self, resolved: ResolvedVideo, format_id: str) -> Delivery:
        """Plan and run every step that precedes the first output byte.

        Raises:
            FormatNotFound, UpstreamUnavailable, MergeFailed
        """
        plan = plan_delivery(resolved, format_id)
        if plan.strategy is DeliveryStrategy.ACQUIRE_AND_MERGE:
            return await self._acquire_and_merge(plan)

        if plan.strategy is DeliveryStrategy.DIRECT_STREAM:
            logger.info("Format has both video and audio, streaming directly")
        stream = await self.fetcher.open(plan.video.url, headers=plan.video.http_headers)
        return Delivery(plan, stream=stream, chunk_size=self.chunk_size)

    async def plan_and_execute(self, resolved: ResolvedVideo, format_id: str, sink: ByteSink) -> DeliveryPlan:
        """Deliver the selected rendition into sink; the sink is closed on every path."""
        try:
            delivery = await self.prepare(resolved, format_id)
        except BaseException:
            await sink.close()
            raise

        try:
            async with aclosing(delivery.iter_bytes()) as chunks:
                async for chunk in chunks:
                    await sink.write(chunk)
        finally:
            await delivery.aclose()
            await sink.close()
        return delivery.plan

    async def _acquire(self, plan: DeliveryPlan, video_store: ScopedStore, audio_store: ScopedStore) -> None:
        tasks = [
            asyncio.create_task(
                self.fetcher.download_to(plan.video.url, video_store.path, headers=plan.video.http_headers)
            ),
            asyncio.create_task(
                self.fetcher.download_to(plan.audio.url, audio_store.path, headers=plan.audio.http_headers)
            ),
        ]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            # Either side failing (or the request going away) aborts both.
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _acquire_and_merge(self, plan: DeliveryPlan) -> Delivery:
        logger.info("Format is video-only, merging with best audio stream")
        scope = StoreScope(self.scratch_dir)
        try:
            video_store = scope.create("video", plan.container)
            audio_store = scope.create("audio", plan.audio.container or "m4a")
            merged_store = scope.create("output", plan.container)
            plan.stores = [video_store, audio_store, merged_store]

            await self._acquire(plan, video_store, audio_store)
            logger.info("Video and audio downloaded successfully, now merging...")
            await self.muxer.merge(video_store.path, audio_store.path, merged_store.path)
        except MergeFailed:
            scope.release_all()
            raise
        except Exception as e:
            scope.release_all()
            logger.error(f"Error in download and merge process: {e}")
            detail = e.detail if isinstance(e, DeliveryError) else str(e)
            raise MergeFailed(f"Failed to merge video and audio: {detail}") from e
        except BaseException:
            scope.release_all()
            raise

        return Delivery(plan, merged=merged_store, scope=scope, chunk_size=self.chunk_size)
