import os
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from api.routes.download import router as download_router
from api.routes.formats import router as formats_router
from api.routes.health import router as health_router
from api.constants import APP_VERSION
from tuberelay.errors import DeliveryError
from tuberelay.utils.config import load_config
from tuberelay.utils.logger import logger, reset_request_id, set_request_id
from tuberelay.utils.muxer import MediaMuxer


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    cfg = load_config()
    muxer = MediaMuxer(ffmpeg_path=cfg.ffmpeg_path)
    logger.info(f"Startup: scratch_dir={cfg.scratch_path} container={cfg.target_container}")
    if muxer.is_available():
        logger.info(f"Startup: FFmpeg available at {cfg.ffmpeg_path}")
    else:
        logger.warning("Startup: FFmpeg not found; video-only formats cannot be merged")
    yield
    logger.info("Shutting down server...")


async def delivery_error_handler(request: Request, exc: DeliveryError):
    logger.warning(f"{request.url.path} failed: {exc.kind}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app() -> FastAPI:
    app = FastAPI(title="TubeRelay API", version=APP_VERSION, lifespan=lifespan)

    # The API is read-only and unauthenticated, so any origin may call it
    # unless CORS_ORIGINS narrows it down.
    allowed_origins = os.environ.get("CORS_ORIGINS", "*").split(",")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition", "X-Request-ID"],
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        token = set_request_id(request_id)
        try:
            logger.info(f"{request.method} {request.url.path}")
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            reset_request_id(token)

    app.add_exception_handler(DeliveryError, delivery_error_handler)

    app.include_router(formats_router, tags=["formats"])
    app.include_router(download_router, tags=["download"])
    app.include_router(health_router, tags=["health"])

    @app.get("/")
    async def root():
        return {"message": "TubeRelay API is running", "version": APP_VERSION}

    return app


app = create_app()
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", "8000")))
