# Application entry point: builds the engine services once per process and
# mounts the discovery and bookmark routes.

from contextlib import asynccontextmanager
import logging
import uuid

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from localerank.api.deps import build_services
from localerank.api.routes import router as api_router
from localerank.core.config import settings
from localerank.logging import configure_logging
from localerank.middleware.logging import LoggingMiddleware

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    logger.info(f"Application startup: v{settings.VERSION} ({settings.ENV})")
    app.state.services = build_services()

    yield

    logger.info("Application shutdown: closing the key-value store.")
    close = getattr(app.state.services.store, "close", None)
    if close is not None:
        await close()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description=settings.BRIEF_DESCRIPTION,
    lifespan=lifespan,
)

app.add_middleware(LoggingMiddleware)
app.include_router(api_router, prefix="/api")


@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    return {
        "status": "ok",
        "version": settings.VERSION,
        "kv_store": "redis" if settings.ENABLE_REDIS and settings.REDIS_URL else "memory",
        "maps_configured": bool(settings.GOOGLE_MAPS_API_KEY),
    }


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    error_id = str(uuid.uuid4())
    logger.error(f"Unhandled exception (ID: {error_id}): {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": {
                "error": "INTERNAL_SERVER_ERROR",
                "detail": "An unexpected error occurred. Please report this error ID.",
                "error_id": error_id,
            }
        },
    )
