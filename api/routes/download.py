from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response, StreamingResponse

from api.async_utils import ClientDisconnected, run_until_disconnected
from api.constants import CLIENT_CLOSED_REQUEST, MAX_FORMAT_ID_LENGTH, MAX_URL_LENGTH
from api.dependencies import get_downloader
from api.schemas import ErrorResponse
from tuberelay.downloader import VideoDownloader
from tuberelay.models import VideoMetadata
from tuberelay.planner import Delivery
from tuberelay.utils.filenames import content_disposition
from tuberelay.utils.logger import logger

router = APIRouter()


class DeliveryResponse(StreamingResponse):
    """Streams a prepared Delivery and releases it however the response ends."""

    def __init__(self, delivery: Delivery, headers: dict[str, str] | None = None):
        super().__init__(delivery.iter_bytes(), media_type=delivery.media_type, headers=headers)
        self.delivery = delivery

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            if not self.delivery.started and not self.delivery.closed:
                # The body iterator never ran (client left right after the headers).
                logger.info("Response closed before any media bytes were sent")
            await self.delivery.aclose()


async def _close_orphan(prepared: tuple[VideoMetadata, Delivery]) -> None:
    _, delivery = prepared
    await delivery.aclose()


@router.get(
    "/api/download",
    response_class=StreamingResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    },
)
async def download(
    request: Request,
    url: str = Query(..., min_length=1, max_length=MAX_URL_LENGTH),
    format_id: str = Query(..., min_length=1, max_length=MAX_FORMAT_ID_LENGTH),
    downloader: VideoDownloader = Depends(get_downloader),
):
    """Stream one rendition; video-only formats are merged with the best audio first."""
    try:
        metadata, delivery = await run_until_disconnected(
            request,
            downloader.prepare_delivery(url, format_id),
            cleanup=_close_orphan,
        )
    except ClientDisconnected:
        logger.info("Client connection closed before the download started")
        return Response(status_code=CLIENT_CLOSED_REQUEST)

    filename_limit = downloader.config.filename_max_length
    headers = {"Content-Disposition": content_disposition(metadata.title, delivery.container, filename_limit)}
    if delivery.plan.stores:
        size = delivery.content_length
        if size:
            headers["Content-Length"] = str(size)

    logger.info(f"Downloading: {downloader.filename_for(metadata, delivery.container)} ({delivery.plan.strategy.value})")
    return DeliveryResponse(delivery, headers=headers)
