from __future__ import annotations

from fastapi import APIRouter, Depends

from api.constants import APP_VERSION
from api.dependencies import get_downloader
from api.schemas import HealthResponse
from tuberelay.downloader import VideoDownloader

router = APIRouter()


@router.get("/api/health", response_model=HealthResponse)
async def health(downloader: VideoDownloader = Depends(get_downloader)):
    extractor_ok = downloader.extractor.is_available()
    ffmpeg_ok = downloader.muxer.is_available()
    if extractor_ok and ffmpeg_ok:
        message = "Ready to download videos"
    elif extractor_ok:
        message = "FFmpeg not found; video-only formats cannot be merged"
    else:
        message = "Extractor is not working properly"
    return {
        "status": "OK",
        "version": APP_VERSION,
        "extractor_available": extractor_ok,
        "ffmpeg_available": ffmpeg_ok,
        "message": message,
    }
