from __future__ import annotations

import re

DEFAULT_FILENAME = "video"

MEDIA_TYPES = {
    "mp4": "video/mp4",
    "m4v": "video/mp4",
    "webm": "video/webm",
    "mkv": "video/x-matroska",
    "mov": "video/quicktime",
    "3gp": "video/3gpp",
    "m4a": "audio/mp4",
}


def safe_filename(title: str | None, max_length: int = 100) -> str:
    """Reduce a video title to a header-safe file stem.

    Keeps ASCII letters, digits, underscores, whitespace, '.' and '-';
    whitespace runs become a single '_'.
    """
    raw = "" if title is None else str(title)
    cleaned = re.sub(r"[^\w\s.-]", "", raw, flags=re.ASCII)
    cleaned = re.sub(r"\s+", "_", cleaned, flags=re.ASCII)
    cleaned = cleaned[:max_length]
    if not cleaned.strip("._-"):
        return DEFAULT_FILENAME
    return cleaned


def media_type_for(container: str | None) -> str:
    return MEDIA_TYPES.get((container or "").lower(), "application/octet-stream")


def content_disposition(title: str | None, container: str | None, max_length: int = 100) -> str:
    ext = (container or "mp4").lower()
    return f'attachment; filename="{safe_filename(title, max_length)}.{ext}"'
