"""APK Forge - Main FastAPI Application."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from apk_forge.api.v1.router import api_router
from apk_forge.core.config import settings
from apk_forge.core.jobs import BuildScheduler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    logger.info(f"Starting APK Forge v{settings.VERSION}")

    scheduler = BuildScheduler.get_instance()

    from apk_forge.api.v1.endpoints.websockets import build_update_listener
    scheduler.add_listener(build_update_listener)

    await scheduler.start()

    if not settings.TEMPLATE_PATH.is_dir():
        logger.warning(f"Template not found at {settings.TEMPLATE_PATH}! Builds will fail.")

    yield

    # Cleanup
    logger.info("Shutting down APK Forge...")
    await scheduler.stop()
    logger.info("Shutdown complete")


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "Validation failed", "details": jsonable_errors(exc)},
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="APK Forge",
        description="Builds Android APKs from deployed web apps",
        version=settings.VERSION,
        lifespan=lifespan,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.DEBUG else settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        scheduler = BuildScheduler.get_instance()
        return {
            "status": "healthy",
            "version": settings.VERSION,
            "services": {
                "template": settings.TEMPLATE_PATH.is_dir(),
                "activeBuilds": scheduler.active_count,
                "maxConcurrentBuilds": scheduler.capacity,
            },
        }

    # Include API router
    app.include_router(api_router, prefix="/v1")

    # Serve locally published artifacts
    if settings.PUBLISHER == "local" and settings.ARTIFACTS_PATH.exists():
        app.mount("/artifacts", StaticFiles(directory=str(settings.ARTIFACTS_PATH)), name="artifacts")
        logger.info(f"Artifacts mounted at /artifacts: {settings.ARTIFACTS_PATH}")

    return app


# Create app instance
app = create_app()


def main():
    """Run the application."""
    import uvicorn

    uvicorn.run(
        "apk_forge.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info",
    )


if __name__ == "__main__":
    main()
