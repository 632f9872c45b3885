"""
Centralized dependency injection for FastAPI routes.

The VideoDownloader is created lazily here and injected via Depends(),
enabling test overrides via
app.dependency_overrides[get_downloader] = lambda: fake_downloader.
"""
from __future__ import annotations

from functools import lru_cache
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tuberelay.downloader import VideoDownloader


@lru_cache(maxsize=1)
def get_downloader() -> VideoDownloader:
    from tuberelay.downloader import VideoDownloader
    return VideoDownloader()
