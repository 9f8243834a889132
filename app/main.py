"""Tubely API - FastAPI application."""
import logging
from contextlib import asynccontextmanager
from functools import partial
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text

from app.api.v1.api import api_router
from app.core.config import Settings, settings as default_settings
from app.core.exceptions import TubelyError
from app.core.logging import setup_logging
from app.services.media_service import FFmpegRemuxer, FFprobeProber
from app.services.storage_service import LocalAssetStore, S3ObjectStore
from app.services.upload_pipeline import VideoUploadPipeline
from app.workers.storage_cleanup import schedule_orphan_purge

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    from app.db.session import database_display_name, engine

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Database: OK", extra={"database": database_display_name()})
    except Exception as e:
        logger.warning("Database connection failed", extra={"database": database_display_name(), "error": str(e)})
    logger.info("API: /api/v1 | Docs: /docs | Health: /health")
    yield


async def tubely_error_handler(request: Request, exc: TubelyError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "Request failed",
            extra={"path": request.url.path, "error": exc.message, "error_type": type(exc).__name__},
        )
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message}, headers=headers)


async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": "Malformed request", "errors": jsonable_encoder(exc.errors())})


def orphan_sink(settings: Settings):
    if not settings.ORPHAN_CLEANUP_ENABLED:
        return None
    return partial(schedule_orphan_purge, countdown=settings.ORPHAN_PURGE_DELAY_SECONDS)


def build_pipeline(settings: Settings, store: S3ObjectStore) -> VideoUploadPipeline:
    return VideoUploadPipeline(
        prober=FFprobeProber(settings.FFPROBE_BIN),
        remuxer=FFmpegRemuxer(settings.FFMPEG_BIN),
        store=store,
        max_upload_bytes=settings.MAX_VIDEO_UPLOAD_BYTES,
        tool_timeout=settings.MEDIA_TOOL_TIMEOUT_SECONDS,
        storage_timeout=settings.STORAGE_TIMEOUT_SECONDS,
        deadline_seconds=settings.UPLOAD_DEADLINE_SECONDS,
        temp_dir=settings.TEMP_DIR,
        on_orphan=orphan_sink(settings),
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application and the services it shares across requests."""
    settings = settings or default_settings
    setup_logging(settings)

    app = FastAPI(
        title=settings.APP_NAME,
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(TubelyError, tubely_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)

    store = S3ObjectStore(settings)
    app.state.settings = settings
    app.state.object_store = store
    app.state.asset_store = LocalAssetStore(settings.ASSETS_ROOT, settings.assets_url_prefix)
    app.state.pipeline = build_pipeline(settings, store)

    app.include_router(api_router, prefix="/api")

    assets_dir = Path(settings.ASSETS_ROOT).resolve()
    assets_dir.mkdir(parents=True, exist_ok=True)
    app.mount("/assets", StaticFiles(directory=str(assets_dir)), name="assets")

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
