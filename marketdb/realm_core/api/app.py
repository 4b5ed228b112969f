"""
FastAPI application factory for the MarketDB HTTP API.

This module creates the FastAPI app with:
- CORS configuration for the storefront frontend
- The RealmService instance in app.state
- RealmDbError -> HTTP status mapping
- API routes under /api/v1
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .._version import __version__
from ..config import CoreConfig
from ..errors import (
    AlreadyVendorError,
    DuplicateRealmError,
    NotFoundError,
    PermissionDeniedError,
    RealmDbError,
    ValidationError,
)
from ..service import RealmService
from .routes import router
from .settings import ApiSettings

logger = logging.getLogger(__name__)

# Most specific first; anything else (onboarding, storage) is a 500
STATUS_BY_ERROR: tuple[tuple[type[RealmDbError], int], ...] = (
    (NotFoundError, 404),
    (PermissionDeniedError, 403),
    (DuplicateRealmError, 409),
    (AlreadyVendorError, 409),
    (ValidationError, 422),
)


def status_for(error: RealmDbError) -> int:
    for cls, status in STATUS_BY_ERROR:
        if isinstance(error, cls):
            return status
    return 500


async def realm_error_handler(request: Request, exc: RealmDbError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error(f"Request failed: {exc}", extra={"path": request.url.path, "code": exc.code})
    return JSONResponse(
        status_code=status,
        content={"error": exc.message, "error_code": exc.code, "details": exc.details},
    )


def create_app(
    service: RealmService | None = None,
    settings: ApiSettings | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        service: Realm service to serve; built from the environment if None
        settings: API settings; loaded from the environment if None
    """
    settings = settings or ApiSettings()
    service = service or RealmService.from_config(CoreConfig.from_env())

    app = FastAPI(
        title="MarketDB",
        description="Realm-partitioned marketplace data with per-realm access control.",
        version=__version__,
    )
    app.state.service = service
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RealmDbError, realm_error_handler)
    app.include_router(router, prefix="/api/v1")

    @app.get("/health")
    def health():
        return {"status": "healthy", "service": "marketdb", "version": __version__}

    return app
