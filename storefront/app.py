"""
FastAPI application entry point for the storefront service.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from storefront.config import get_settings
from storefront.dependencies import StorageSelector
from storefront.errors import (
    NotFoundError,
    StorageError,
    UniquenessViolation,
    ValidationFailure,
)
from storefront.routes import router

logger = logging.getLogger(__name__)


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"message": "Invalid request", "errors": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(ValidationFailure)
    async def validation_failure(request: Request, exc: ValidationFailure):
        return JSONResponse(
            status_code=400, content={"message": str(exc), "errors": exc.errors}
        )

    @app.exception_handler(UniquenessViolation)
    async def uniqueness_violation(request: Request, exc: UniquenessViolation):
        return JSONResponse(status_code=400, content={"message": str(exc)})

    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"message": str(exc)})

    @app.exception_handler(StorageError)
    async def storage_error(request: Request, exc: StorageError):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=500, content={"message": str(exc)})


def create_app(selector: Optional[StorageSelector] = None) -> FastAPI:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(), format="%(levelname)s:%(name)s:%(message)s"
    )
    app = FastAPI(title="Storefront Backend (FastAPI)", version="0.1.0")
    app.state.storage = selector or StorageSelector.from_settings(settings)
    app.include_router(router, prefix=settings.api_prefix)
    _install_error_handlers(app)

    @app.middleware("http")
    async def log_api_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        if request.url.path.startswith(settings.api_prefix):
            logger.info(
                "%s %s %s in %dms",
                request.method,
                request.url.path,
                response.status_code,
                (time.perf_counter() - start) * 1000,
            )
        return response

    return app


app = create_app()
