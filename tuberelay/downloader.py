"""
TubeRelay video downloader - format catalog and rendition delivery
"""
from __future__ import annotations

import asyncio
import os
import time
from typing import Optional

from tuberelay.errors import UpstreamTimeout
from tuberelay.extractors.base import BaseExtractor
from tuberelay.extractors.youtube import YouTubeExtractor
from tuberelay.models import Rendition, ResolvedVideo, VideoMetadata
from tuberelay.normalizer import normalize
from tuberelay.planner import Delivery, DeliveryPlan, DeliveryPlanner, FileSink, plan_delivery
from tuberelay.utils.async_utils import run_sync
from tuberelay.utils.config import AppConfig, load_config
from tuberelay.utils.filenames import safe_filename
from tuberelay.utils.logger import logger
from tuberelay.utils.muxer import MediaMuxer
from tuberelay.utils.network import NetworkHandler, build_proxies


class VideoDownloader:
    """Wires the extractor, normalizer and planner together.

    Nothing is cached between calls: every catalog and every delivery
    re-resolves the source URL.
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        extractor: Optional[BaseExtractor] = None,
        fetcher: Optional[NetworkHandler] = None,
        muxer: Optional[MediaMuxer] = None,
    ):
        self.config = config or load_config()
        cfg = self.config
        self.extractor = extractor or YouTubeExtractor(cfg)
        self.fetcher = fetcher or NetworkHandler(
            timeout=cfg.connect_timeout_sec,
            proxies=build_proxies(cfg.proxy_url) if cfg.use_proxy else None,
            user_agent=cfg.user_agents[0],
            chunk_size=cfg.chunk_size,
        )
        self.muxer = muxer or MediaMuxer(ffmpeg_path=cfg.ffmpeg_path, audio_bitrate=cfg.merge_audio_bitrate)
        self.planner = DeliveryPlanner(
            self.fetcher,
            self.muxer,
            scratch_dir=cfg.scratch_path,
            chunk_size=cfg.chunk_size,
        )

    async def resolve(self, url: str) -> ResolvedVideo:
        """Run the blocking extractor off-loop, bounded by resolve_timeout_sec."""
        timeout = self.config.resolve_timeout_sec
        # The worker thread cannot be cancelled; the deadline makes it stop retrying on its own.
        deadline = time.monotonic() + timeout
        try:
            return await asyncio.wait_for(run_sync(self.extractor.extract, url, deadline=deadline), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(f"Upstream lookup exceeded {timeout:.0f}s for {url}")
            raise UpstreamTimeout(f"Timed out after {timeout:.0f}s waiting for the video site") from None

    async def get_catalog(self, url: str) -> tuple[VideoMetadata, list[Rendition]]:
        resolved = await self.resolve(url)
        catalog = normalize(
            resolved.renditions,
            resolved.metadata.duration,
            container=self.config.target_container,
            min_height=self.config.min_height,
        )
        logger.info(f"Unique formats found: {len(catalog)}")
        return resolved.metadata, catalog

    async def prepare_delivery(self, url: str, format_id: str) -> tuple[VideoMetadata, Delivery]:
        resolved = await self.resolve(url)
        logger.info(f"Starting download for format: {format_id}")
        delivery = await self.planner.prepare(resolved, format_id)
        return resolved.metadata, delivery

    def filename_for(self, metadata: VideoMetadata, container: str) -> str:
        return f"{safe_filename(metadata.title, self.config.filename_max_length)}.{container}"

    async def download(self, url: str, format_id: str, output_dir: str) -> tuple[str, DeliveryPlan]:
        """Deliver a rendition into output_dir; returns (path, plan)."""
        resolved = await self.resolve(url)
        container = plan_delivery(resolved, format_id).container
        output_path = os.path.join(output_dir, self.filename_for(resolved.metadata, container))
        if os.path.exists(output_path):
            logger.warning(f"File already exists: {output_path}")
            raise FileExistsError(f"File already exists: {output_path}")

        part_path = output_path + ".part"
        sink = FileSink(part_path)
        try:
            plan = await self.planner.plan_and_execute(resolved, format_id, sink)
        except BaseException:
            if os.path.exists(part_path):
                os.unlink(part_path)
            raise
        os.replace(part_path, output_path)
        logger.info(f"Saved {sink.written} bytes to {output_path}")
        return output_path, plan
