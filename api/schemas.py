from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel


class FormatInfo(BaseModel):
    format_id: str
    ext: str
    height: int
    width: Optional[int] = None
    fps: float
    filesize: Optional[int] = None
    quality_label: str
    display_label: str
    bitrate: Optional[int] = None
    has_audio: bool
    has_video: bool
    is_adaptive: bool


class VideoInfoResponse(BaseModel):
    title: str
    duration: int
    thumbnail: Optional[str] = None
    uploader: str
    view_count: Optional[int] = None
    formats: List[FormatInfo]


class ErrorResponse(BaseModel):
    error: str
    details: str


class HealthResponse(BaseModel):
    status: str
    version: str
    extractor_available: bool
    ffmpeg_available: bool
    message: str
