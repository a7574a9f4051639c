"""
ShotClip - Shot-to-Clip Publishing Service
Main FastAPI Application Entry Point
"""

from pathlib import Path
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from fastapi.responses import JSONResponse

from .config import get_settings
from .utils.logger import setup_logger
from .utils.exceptions import ShotClipError
from .routers import sources_router, clips_router, settings_router, websocket_router
from .routers.deps import presented_api_key
from .services.orchestrator import build_orchestrator
from .services.shot_detector import ShotDetector


# Set up logging
logger = setup_logger()


PUBLIC_PATHS = {
    "/",
    "/health",
    "/docs",
    "/redoc",
    "/openapi.json",
    "/favicon.ico",
}
PUBLIC_PREFIXES = ("/output",)

NOT_FOUND_CODES = {"SOURCE_NOT_FOUND", "JOB_NOT_FOUND", "CLIP_NOT_FOUND"}


def status_for_error(exc: ShotClipError) -> int:
    """HTTP status for a ShotClip error"""
    if exc.code in NOT_FOUND_CODES:
        return 404
    if exc.code == "QUEUE_FULL":
        return 429
    if exc.code == "DUPLICATE_ARTIFACT":
        return 409
    return 400 if exc.recoverable else 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler"""
    settings = get_settings()

    # Create required directories
    Path(settings.output_dir).mkdir(parents=True, exist_ok=True)
    Path(settings.temp_dir).mkdir(parents=True, exist_ok=True)
    Path(settings.data_dir).mkdir(parents=True, exist_ok=True)

    if getattr(app.state, "orchestrator", None) is None:
        app.state.orchestrator = build_orchestrator(settings)
    if getattr(app.state, "detector", None) is None:
        app.state.detector = ShotDetector(settings)
    if getattr(app.state, "sources", None) is None:
        app.state.sources = {}

    orchestrator = app.state.orchestrator
    await orchestrator.start(preload_engine=settings.engine_preload)

    logger.info("=" * 60)
    logger.info(f"{settings.app_name} - Shot-to-Clip Publishing Service")
    logger.info("=" * 60)
    logger.info(f"Storage backend: {settings.storage_backend}")
    logger.info(f"Temp directory: {settings.temp_dir}")
    logger.info(f"Data directory: {settings.data_dir}")
    logger.info(f"Engine: {settings.ffmpeg_binary} (preload: {settings.engine_preload})")
    logger.info(f"Max pending clip jobs: {settings.max_pending_jobs}")

    # Check service configurations
    if settings.gemini_api_key:
        logger.info("[OK] Gemini AI configured")
    else:
        logger.warning("[!] Gemini API key not set (sample shots will be returned)")

    if settings.storage_backend == "s3":
        logger.info(f"[OK] S3 storage: {settings.s3_bucket_name or '(bucket not set)'}")
    else:
        logger.info(f"[-] Local storage: {settings.output_dir}")

    if settings.api_key:
        logger.info("[OK] API key authentication enabled")
    else:
        logger.warning("[!] API key authentication disabled")

    logger.info("=" * 60)

    yield

    logger.info(f"Shutting down {settings.app_name}...")
    await orchestrator.stop()


def create_app() -> FastAPI:
    """Build the FastAPI application"""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Extract detected shots from source videos and publish them as clips",
        version=settings.app_version,
        lifespan=lifespan
    )

    cors_origins = settings.cors_allowed_origins or ["http://localhost:8000", "http://127.0.0.1:8000"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials="*" not in cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def api_key_auth_middleware(request: Request, call_next):
        settings = get_settings()
        if not settings.api_key:
            return await call_next(request)

        path = request.url.path
        if path in PUBLIC_PATHS or any(path.startswith(prefix) for prefix in PUBLIC_PREFIXES):
            return await call_next(request)

        if presented_api_key(request) != settings.api_key:
            return JSONResponse(
                status_code=401,
                content={"detail": "Unauthorized: invalid or missing API key"},
            )

        return await call_next(request)

    # ========================================================================
    # Global Exception Handlers
    # ========================================================================

    @app.exception_handler(ShotClipError)
    async def shotclip_exception_handler(request: Request, exc: ShotClipError):
        """Handle all ShotClip custom exceptions"""
        logger.error(f"ShotClipError [{exc.code}]: {exc.message}")
        return JSONResponse(status_code=status_for_error(exc), content=exc.to_dict())

    @app.exception_handler(ValueError)
    async def validation_exception_handler(request: Request, exc: ValueError):
        """Handle validation errors"""
        logger.warning(f"Validation error: {exc}")
        return JSONResponse(
            status_code=400,
            content={
                "error": "VALIDATION_ERROR",
                "message": str(exc),
                "recoverable": True,
                "recovery_hint": "Check your input parameters and try again."
            }
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle any unhandled exceptions"""
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "INTERNAL_ERROR",
                "message": "An unexpected error occurred. Please try again.",
                "recoverable": True,
                "recovery_hint": "If this persists, check the server logs for details."
            }
        )

    app.include_router(sources_router)
    app.include_router(clips_router)
    app.include_router(settings_router)
    app.include_router(websocket_router)

    # Local storage backend serves published files from here
    output_path = Path(settings.output_dir)
    output_path.mkdir(parents=True, exist_ok=True)
    app.mount("/output", StaticFiles(directory=str(output_path)), name="output")

    @app.get("/")
    async def root():
        return {"message": f"{settings.app_name} API", "docs": "/docs"}

    @app.get("/health")
    async def health(request: Request):
        """Health check endpoint"""
        orchestrator = getattr(request.app.state, "orchestrator", None)
        payload = {"status": "healthy", "app": settings.app_name, "version": settings.app_version}
        if orchestrator is not None:
            payload["engine"] = orchestrator.transcoder.describe()
            payload["active_jobs"] = orchestrator.active_count
            payload["clips"] = len(orchestrator.catalog)
        return payload

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "shotclip.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
