"""FastAPI web application for the screening engine.

This module builds the FastAPI application, registers the error
handler that turns engine errors into JSON responses and provides a
convenience function to launch the server via Uvicorn.
"""

from __future__ import annotations

from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..core.errors import (
    AuthorizationError,
    ConflictStateError,
    NotFoundError,
    PreconditionError,
    ScreeningError,
    ValidationError,
)
from ..service import ScreeningService
from ..utils.logging import get_logger
from .routes import router

logger = get_logger(__name__)

STATUS_CODES = {
    ValidationError: 422,
    NotFoundError: 404,
    PreconditionError: 409,
    ConflictStateError: 409,
    AuthorizationError: 403,
}


def create_app(service: Optional[ScreeningService] = None) -> FastAPI:
    """Build the application around ``service`` (a default one if omitted)."""
    app = FastAPI(
        title="Screenflow",
        description="Screening workflow engine for systematic reviews",
        version="0.1.0",
    )
    app.state.service = service or ScreeningService()
    app.include_router(router)

    @app.exception_handler(ScreeningError)
    async def handle_screening_error(request: Request, exc: ScreeningError) -> JSONResponse:
        status = STATUS_CODES.get(type(exc), 400)
        logger.info(f"{request.method} {request.url.path} -> {status} {exc.code}")
        return JSONResponse(status_code=status, content=exc.to_dict())

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    return app


def start_server(host: str = "127.0.0.1", port: int = 8000, reload: bool = False) -> None:
    """Start the Uvicorn web server.

    Parameters
    ----------
    host: str
        Host to bind the server to.
    port: int
        Port to listen on. Defaults to 8000.
    reload: bool
        Whether to enable auto-reload. Useful during development.
    """
    uvicorn.run(
        "screenflow.web.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
    )


if __name__ == "__main__":
    start_server()
