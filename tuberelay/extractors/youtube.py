"""
YouTube 视频信息提取器 (yt-dlp)
"""
from __future__ import annotations

import random
import re
import time
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlparse

import yt_dlp

from tuberelay.errors import InvalidSourceUrl, UpstreamTimeout, UpstreamUnavailable
from tuberelay.extractors.base import BaseExtractor
from tuberelay.models import InvalidRendition, RawRendition, ResolvedVideo, VideoMetadata
from tuberelay.utils.logger import logger
from tuberelay.utils.network import build_proxies


_VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")

_YOUTUBE_HOSTS = {
    "youtube.com",
    "www.youtube.com",
    "m.youtube.com",
    "music.youtube.com",
    "gaming.youtube.com",
    "youtube-nocookie.com",
    "www.youtube-nocookie.com",
}
_SHORT_HOSTS = {"youtu.be", "www.youtu.be"}
_ID_PATH_PREFIXES = ("/shorts/", "/embed/", "/live/", "/v/", "/e/")

# (needle, readable detail, retry?) - checked in order
_UPSTREAM_ERRORS = [
    ("private video", "This video is unavailable or private", False),
    ("video unavailable", "This video is unavailable or private", False),
    ("not available in your country", "This video is region-restricted", False),
    ("blocked it in your country", "This video is region-restricted", False),
    ("confirm your age", "This video is age-restricted", False),
    ("403", "Access denied. This video may be region-restricted", True),
    ("429", "The video site is rate limiting requests, try again later", True),
]


def normalize_youtube_input(url_or_id: str) -> tuple[str, str]:
    """Normalize user input into a canonical watch URL.

    Accepts watch/shorts/embed/live URLs, youtu.be links (scheme optional)
    or a bare 11-character video id.

    Returns:
        (canonical_url, video_id)
    """
    raw = "" if url_or_id is None else str(url_or_id)
    s = raw.strip()
    if not s:
        raise InvalidSourceUrl("URL parameter is required")

    if _VIDEO_ID_RE.match(s):
        return f"https://www.youtube.com/watch?v={s}", s

    candidate = s if "://" in s else f"https://{s.lstrip('/')}"
    parsed = urlparse(candidate)
    if parsed.scheme not in ("http", "https"):
        raise InvalidSourceUrl(f"Invalid YouTube URL: {s}")

    host = (parsed.hostname or "").lower()
    video_id: str | None = None
    if host in _SHORT_HOSTS:
        video_id = parsed.path.strip("/").split("/")[0]
    elif host in _YOUTUBE_HOSTS:
        if parsed.path.rstrip("/") == "/watch":
            video_id = (parse_qs(parsed.query).get("v") or [None])[0]
        else:
            for prefix in _ID_PATH_PREFIXES:
                if parsed.path.startswith(prefix):
                    video_id = parsed.path[len(prefix):].split("/")[0]
                    break
    else:
        raise InvalidSourceUrl(f"Invalid YouTube URL: {s}")

    if not video_id or not _VIDEO_ID_RE.match(video_id):
        raise InvalidSourceUrl(f"Invalid YouTube URL: {s}")
    return f"https://www.youtube.com/watch?v={video_id}", video_id


def describe_upstream_error(message: str) -> tuple[str, bool]:
    """Map a raw yt-dlp error to (readable detail, retryable)."""
    lowered = (message or "").lower()
    for needle, detail, retryable in _UPSTREAM_ERRORS:
        if needle in lowered:
            return detail, retryable
    return f"Failed to extract video information: {message}", True


def rendition_from_format(f: Dict[str, Any]) -> Optional[RawRendition]:
    """Map one yt-dlp format dict; storyboards (no audio, no video) map to None."""
    vcodec = f.get("vcodec")
    acodec = f.get("acodec")
    has_video = vcodec != "none" and (vcodec is not None or bool(f.get("height")))
    has_audio = acodec not in (None, "none")
    if not has_video and not has_audio:
        return None

    tbr = f.get("tbr")
    return RawRendition.from_mapping({
        "url": f.get("url"),
        "format_id": f.get("format_id"),
        "container": f.get("ext"),
        "height": f.get("height") if has_video else None,
        "width": f.get("width") if has_video else None,
        "fps": f.get("fps") if has_video else None,
        "bitrate": int(float(tbr) * 1000) if isinstance(tbr, (int, float)) else None,
        "content_length": f.get("filesize"),
        "has_video": has_video,
        "has_audio": has_audio,
        "audio_bitrate": f.get("abr"),
        "quality_label": f.get("format_note") if has_video else None,
        "http_headers": f.get("http_headers"),
    })


def parse_info(source_url: str, info: Dict[str, Any]) -> ResolvedVideo:
    """Turn a yt-dlp info dict into a ResolvedVideo, failing fast on bad records."""
    if not isinstance(info, dict):
        raise UpstreamUnavailable("Video site returned no information")
    if info.get("_type") == "playlist" or "entries" in info:
        raise InvalidSourceUrl("Playlists are not supported, use a single video URL")

    renditions: list[RawRendition] = []
    for f in info.get("formats") or []:
        try:
            rendition = rendition_from_format(f)
        except InvalidRendition as e:
            raise UpstreamUnavailable(f"Video site returned a malformed format: {e}") from e
        if rendition is not None:
            renditions.append(rendition)

    try:
        duration = max(0, int(float(info.get("duration") or 0)))
    except (TypeError, ValueError):
        duration = 0

    view_count = info.get("view_count")
    metadata = VideoMetadata(
        title=str(info.get("title") or "video"),
        duration=duration,
        thumbnail=info.get("thumbnail") or None,
        uploader=str(info.get("uploader") or info.get("channel") or ""),
        view_count=int(view_count) if isinstance(view_count, (int, float)) else None,
    )
    return ResolvedVideo(source_url=source_url, metadata=metadata, renditions=renditions)


class YouTubeExtractor(BaseExtractor):
    """从 YouTube 提取视频信息与可用格式"""

    def can_handle(self, url: str) -> bool:
        try:
            normalize_youtube_input(url)
        except InvalidSourceUrl:
            return False
        return True

    def is_available(self) -> bool:
        return bool(getattr(yt_dlp.version, "__version__", ""))

    def _ydl_opts(self, socket_timeout: Optional[float] = None) -> Dict[str, Any]:
        cfg = self.config
        opts: Dict[str, Any] = {
            "quiet": True,
            "no_warnings": True,
            "skip_download": True,
            "noplaylist": True,
            "socket_timeout": socket_timeout or cfg.connect_timeout_sec,
            "http_headers": {
                "User-Agent": random.choice(cfg.user_agents),
                "Accept-Language": "en-US,en;q=0.9",
            },
        }
        proxies = build_proxies(cfg.proxy_url) if cfg.use_proxy else None
        if proxies:
            opts["proxy"] = proxies["https"]
        if cfg.cookies_file:
            opts["cookiefile"] = cfg.cookies_file
        return opts

    def _extract_info(self, url: str, socket_timeout: Optional[float] = None) -> Dict[str, Any]:
        with yt_dlp.YoutubeDL(self._ydl_opts(socket_timeout)) as ydl:
            return ydl.extract_info(url, download=False)

    def _socket_timeout(self, deadline: Optional[float]) -> float:
        timeout = self.config.connect_timeout_sec
        if deadline is None:
            return timeout
        return max(0.1, min(timeout, deadline - time.monotonic()))

    def extract(self, url: str, deadline: Optional[float] = None) -> ResolvedVideo:
        canonical_url, video_id = normalize_youtube_input(url)
        logger.info(f"Fetching video info for: {canonical_url}")

        retries = self.config.resolve_retries
        last_detail = "Failed to fetch video info after multiple attempts"
        for attempt in range(retries):
            if deadline is not None and time.monotonic() >= deadline:
                logger.warning(f"Lookup deadline passed for {video_id}, giving up after {attempt} attempt(s)")
                raise UpstreamTimeout(last_detail if attempt else None)
            try:
                info = self._extract_info(canonical_url, socket_timeout=self._socket_timeout(deadline))
            except Exception as e:
                detail, retryable = describe_upstream_error(str(e))
                logger.error(f"Attempt {attempt + 1}/{retries} failed for {video_id}: {e}")
                if not retryable:
                    raise UpstreamUnavailable(detail) from e
                last_detail = detail
                if attempt + 1 < retries:
                    delay = self.config.retry_backoff_sec * (2 ** attempt)
                    if deadline is not None and time.monotonic() + delay >= deadline:
                        logger.warning(f"No time left to retry {video_id}")
                        raise UpstreamTimeout(detail) from e
                    logger.info(f"Waiting {delay:.1f}s before retry...")
                    time.sleep(delay)
                continue

            resolved = parse_info(canonical_url, info)
            logger.info(f"Video title: {resolved.metadata.title}")
            logger.info(f"Available formats: {len(resolved.renditions)}")
            return resolved

        raise UpstreamUnavailable(last_detail)
