from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

DEFAULT_FPS = 30


class InvalidRendition(ValueError):
    """Raised when an upstream rendition record is structurally unusable."""


def _opt_int(record: Mapping[str, Any], key: str) -> int | None:
    value = record.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidRendition(f"{key} must be numeric, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidRendition(f"{key} must be numeric, got {value!r}") from None


def _opt_float(record: Mapping[str, Any], key: str) -> float | None:
    value = record.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidRendition(f"{key} must be numeric, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise InvalidRendition(f"{key} must be numeric, got {value!r}") from None


@dataclass(frozen=True)
class RawRendition:
    """One encoding as reported by the upstream extractor.

    ``bitrate`` is in bits/sec, ``audio_bitrate`` in kbps (only used for
    ranking audio-only renditions against each other).
    """

    url: str
    format_id: str | None = None
    container: str | None = None
    height: int | None = None
    width: int | None = None
    fps: float | None = None
    bitrate: int | None = None
    content_length: int | None = None
    has_video: bool = False
    has_audio: bool = False
    audio_bitrate: float | None = None
    quality_label: str | None = None
    http_headers: dict[str, str] | None = None

    @classmethod
    def from_mapping(cls, record: Mapping[str, Any]) -> RawRendition:
        """Validate a loosely typed record into a RawRendition."""
        if not isinstance(record, Mapping):
            raise InvalidRendition(f"rendition must be a mapping, got {type(record).__name__}")

        url = record.get("url")
        if not isinstance(url, str) or not url:
            raise InvalidRendition(f"rendition {record.get('format_id')!r} has no fetch url")

        format_id = record.get("format_id")
        if format_id is not None:
            format_id = str(format_id).strip() or None

        container = record.get("container")
        if container is not None:
            container = str(container).strip().lower() or None

        headers = record.get("http_headers")
        if headers is not None and not isinstance(headers, Mapping):
            raise InvalidRendition("http_headers must be a mapping")

        quality_label = record.get("quality_label")

        return cls(
            url=url,
            format_id=format_id,
            container=container,
            height=_opt_int(record, "height"),
            width=_opt_int(record, "width"),
            fps=_opt_float(record, "fps"),
            bitrate=_opt_int(record, "bitrate"),
            content_length=_opt_int(record, "content_length"),
            has_video=bool(record.get("has_video")),
            has_audio=bool(record.get("has_audio")),
            audio_bitrate=_opt_float(record, "audio_bitrate"),
            quality_label=str(quality_label) if quality_label else None,
            http_headers={str(k): str(v) for k, v in headers.items()} if headers else None,
        )


@dataclass(frozen=True)
class Rendition:
    """A catalog entry presented to callers."""

    format_id: str
    container: str
    height: int
    width: int | None
    fps: float
    filesize: int | None
    quality_label: str
    display_label: str
    bitrate: int | None
    has_audio: bool
    has_video: bool

    @property
    def is_adaptive(self) -> bool:
        # Video without audio needs a remux to be playable on its own.
        return not self.has_audio

    def to_dict(self) -> dict[str, Any]:
        return {
            "format_id": self.format_id,
            "ext": self.container,
            "height": self.height,
            "width": self.width,
            "fps": self.fps,
            "filesize": self.filesize,
            "quality_label": self.quality_label,
            "display_label": self.display_label,
            "bitrate": self.bitrate,
            "has_audio": self.has_audio,
            "has_video": self.has_video,
            "is_adaptive": self.is_adaptive,
        }


@dataclass
class VideoMetadata:
    title: str
    duration: int = 0
    thumbnail: str | None = None
    uploader: str = ""
    view_count: int | None = None


@dataclass
class ResolvedVideo:
    """Everything the upstream extractor returns for one source URL."""

    source_url: str
    metadata: VideoMetadata
    renditions: list[RawRendition] = field(default_factory=list)

    def find(self, format_id: str) -> RawRendition | None:
        wanted = str(format_id).strip()
        for rendition in self.renditions:
            if rendition.format_id is not None and rendition.format_id == wanted:
                return rendition
        return None
