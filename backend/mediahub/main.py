"""FastAPI application entry point."""

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from mediahub.core.config import settings
from mediahub.core.logging import setup_logging
from mediahub.core.metrics import get_metrics, get_metrics_content_type, set_app_info
from mediahub.core.middleware import (
    CorrelationIdMiddleware,
    MetricsMiddleware,
    RequestLoggingMiddleware,
)
from mediahub.modules.transcoding.router import router as transcoding_router
from mediahub.modules.video.router import router as video_router

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="""
## MediaHub API

Video library backend: uploads straight to object storage, background
transcoding of MPEG transport streams to MP4, and thumbnail generation.

Transcode progress is exposed on each video record and polled by clients.
    """,
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    openapi_tags=[
        {
            "name": "health",
            "description": "Health check and metrics endpoints",
        },
        {
            "name": "videos",
            "description": "Video registration and direct-to-storage uploads",
        },
        {
            "name": "transcoding",
            "description": "MP4 transcode triggers, progress and thumbnails",
        },
    ],
)

setup_logging(
    level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
    json_format=settings.LOG_JSON,
    include_stack_trace=True,
)

set_app_info(
    version=settings.VERSION,
    environment="development" if settings.DEBUG else "production",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(MetricsMiddleware)


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint.

    Returns:
        dict: Health status with "healthy" value.
    """
    return {"status": "healthy"}


@app.get("/metrics", tags=["health"], include_in_schema=False)
async def metrics() -> Response:
    """Prometheus metrics endpoint."""
    return Response(content=get_metrics(), media_type=get_metrics_content_type())


app.include_router(video_router, prefix=settings.API_V1_PREFIX)
app.include_router(transcoding_router, prefix=settings.API_V1_PREFIX)
