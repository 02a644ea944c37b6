"""
FastAPI application entry point for the nudgebox service.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from nudgebox.config import get_settings
from nudgebox.dependencies import get_map_cache
from nudgebox.errors import NudgeboxError
from nudgebox.routes import router
from nudgebox.wellbeing import PeriodicRefresher

logger = logging.getLogger(__name__)


async def handle_nudgebox_error(request: Request, exc: NudgeboxError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.reason)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "reason": exc.reason},
    )


async def handle_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    logger.info("%s %s rejected: %s", request.method, request.url.path, exc.errors())
    return JSONResponse(
        status_code=400,
        content={"success": False, "reason": "Malformed request."},
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error("%s %s crashed", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"success": False, "reason": "Internal error."},
    )


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        refresher = PeriodicRefresher(
            get_map_cache(), interval_seconds=settings.map_refresh_seconds
        )
        refresher.start()
        app.state.map_refresher = refresher
        try:
            yield
        finally:
            await refresher.stop()

    app = FastAPI(title="Nudgebox Backend (FastAPI)", version="0.1.0", lifespan=lifespan)
    app.add_exception_handler(NudgeboxError, handle_nudgebox_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
