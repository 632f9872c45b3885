from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from api.constants import MAX_URL_LENGTH
from api.dependencies import get_downloader
from api.schemas import ErrorResponse, VideoInfoResponse
from tuberelay.downloader import VideoDownloader

router = APIRouter()


@router.get(
    "/api/formats",
    response_model=VideoInfoResponse,
    responses={
        400: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    },
)
async def get_formats(
    url: str = Query(..., min_length=1, max_length=MAX_URL_LENGTH),
    downloader: VideoDownloader = Depends(get_downloader),
):
    """Video metadata plus one downloadable format per resolution."""
    metadata, catalog = await downloader.get_catalog(url)
    return {
        "title": metadata.title,
        "duration": metadata.duration,
        "thumbnail": metadata.thumbnail,
        "uploader": metadata.uploader,
        "view_count": metadata.view_count,
        "formats": [r.to_dict() for r in catalog],
    }
