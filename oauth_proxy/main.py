"""
FastAPI application entrypoint for the Spotify OAuth proxy.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from http import HTTPStatus
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from oauth_proxy.api.routes import router as api_router
from oauth_proxy.core.config import get_settings
from oauth_proxy.core.errors import OAuthError, ServerError
from oauth_proxy.core.logging import configure_logging
from oauth_proxy.dependencies import get_oauth_flow_service
from oauth_proxy.services import TransactionSweeper

logger = logging.getLogger(__name__)


async def _oauth_error_handler(request: Request, exc: OAuthError) -> JSONResponse:
    if exc.status_code >= HTTPStatus.INTERNAL_SERVER_ERROR:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.error, exc)
    return JSONResponse(
        status_code=int(exc.status_code),
        content=exc.to_payload(),
        headers={"Cache-Control": "no-store"},
    )


async def _unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    error = ServerError()
    return JSONResponse(status_code=int(error.status_code), content=error.to_payload())


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        flow = app.dependency_overrides.get(get_oauth_flow_service, get_oauth_flow_service)()
        sweeper = TransactionSweeper(
            flow.sweep_transactions,
            interval_seconds=settings.oauth.sweep_interval_seconds,
        )
        sweeper.start()
        try:
            yield
        finally:
            await sweeper.stop()

    app = FastAPI(
        title="Spotify OAuth Proxy",
        version="0.1.0",
        description="OAuth 2.1 authorization-code + PKCE proxy in front of Spotify.",
        lifespan=lifespan,
    )
    app.add_exception_handler(OAuthError, _oauth_error_handler)
    app.add_exception_handler(Exception, _unexpected_error_handler)
    app.include_router(api_router)
    return app


app = create_app()

__all__ = ["app", "create_app"]
