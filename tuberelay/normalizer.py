"""
Rendition normalizer: raw upstream renditions -> one catalog entry per height.
"""
from __future__ import annotations

from typing import Iterable, Sequence

from tuberelay.errors import NoCompatibleRenditions
from tuberelay.models import DEFAULT_FPS, RawRendition, Rendition
from tuberelay.utils.logger import logger

DEFAULT_CONTAINER = "mp4"
MIN_HEIGHT = 144


def _is_candidate(r: RawRendition, min_height: int, container: str | None) -> bool:
    if not r.has_video or not r.format_id:
        return False
    if r.height is None or r.height < min_height:
        return False
    if container is not None and r.container != container:
        return False
    return True


def estimate_size(r: RawRendition, duration_seconds: int) -> int | None:
    """Exact byte length if reported, else bitrate * duration / 8."""
    if r.content_length is not None:
        return r.content_length
    if r.bitrate and duration_seconds is not None:
        return (r.bitrate * int(duration_seconds)) // 8
    return None


def _fps_text(fps: float) -> str:
    return f"{fps:g}"


def quality_label(height: int, fps: float | None) -> str:
    if fps and fps > DEFAULT_FPS:
        return f"{height}p{_fps_text(fps)}"
    return f"{height}p"


def filter_renditions(
    raw_renditions: Iterable[RawRendition],
    container: str = DEFAULT_CONTAINER,
    min_height: int = MIN_HEIGHT,
) -> list[RawRendition]:
    """Strict pass on the target container, lenient pass without it."""
    raw = list(raw_renditions)
    picked = [r for r in raw if _is_candidate(r, min_height, container)]
    if picked:
        return picked
    picked = [r for r in raw if _is_candidate(r, min_height, None)]
    if picked:
        logger.info(f"No {container} video formats, lenient filter kept {len(picked)}")
    return picked


def normalize(
    raw_renditions: Sequence[RawRendition],
    duration_seconds: int,
    container: str = DEFAULT_CONTAINER,
    min_height: int = MIN_HEIGHT,
) -> list[Rendition]:
    """Build the catalog: sorted by height (desc), one entry per height.

    Raises:
        NoCompatibleRenditions: nothing survives both filter passes.
    """
    candidates = filter_renditions(raw_renditions, container=container, min_height=min_height)
    # sorted() is stable, so first-seen wins among equal heights
    candidates = sorted(candidates, key=lambda r: r.height or 0, reverse=True)

    catalog: list[Rendition] = []
    seen_heights: set[int] = set()
    for r in candidates:
        if r.height in seen_heights:
            continue
        seen_heights.add(r.height)
        catalog.append(
            Rendition(
                format_id=r.format_id,
                container=r.container or container,
                height=r.height,
                width=r.width,
                fps=r.fps or DEFAULT_FPS,
                filesize=estimate_size(r, duration_seconds),
                quality_label=quality_label(r.height, r.fps),
                display_label=r.quality_label or f"{r.height}p",
                bitrate=r.bitrate,
                has_audio=r.has_audio,
                has_video=r.has_video,
            )
        )

    logger.debug(f"Normalized {len(raw_renditions)} raw formats into {len(catalog)} catalog entries")
    if not catalog:
        raise NoCompatibleRenditions(f"No compatible {container} formats found for this video")
    return catalog
