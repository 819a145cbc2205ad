# src/living_map/main.py
"""Main entry point for the Living Map core API."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from living_map.api.v1 import (
    connections_router,
    notifications_router,
    prayers_router,
    queue_router,
)
from living_map.core.errors import (
    DeadLetteredError,
    DiscoveryError,
    LivingMapError,
    NotFoundError,
    ProtectedRecordError,
    TransientStoreError,
    ValidationError,
)
from living_map.core.settings import settings

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Memorial connections, viewport queries and nearby-prayer notifications",
    version=settings.app_version,
    debug=settings.debug,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

_STATUS_BY_ERROR: tuple[tuple[type[LivingMapError], int], ...] = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ProtectedRecordError, status.HTTP_403_FORBIDDEN),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (DeadLetteredError, status.HTTP_409_CONFLICT),
    (TransientStoreError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (DiscoveryError, status.HTTP_502_BAD_GATEWAY),
)


@app.exception_handler(LivingMapError)
async def living_map_error_handler(request: Request, exc: LivingMapError) -> JSONResponse:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            break
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    headers = {"Retry-After": "1"} if isinstance(exc, TransientStoreError) else None
    if status_code >= 500:
        logger.warning("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)}, headers=headers)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    detail = str(exc) if settings.debug else "Internal server error"
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": detail})


# Include API routers
app.include_router(connections_router, prefix="/api/v1")
app.include_router(notifications_router, prefix="/api/v1")
app.include_router(prayers_router, prefix="/api/v1")
app.include_router(queue_router, prefix="/api/v1")


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("living_map.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
