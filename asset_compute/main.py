"""
HTTP front end of the web action.

On the serverless platform the runtime calls `actions.webaction` directly.
This app serves the same dispatch over plain HTTP, for local runs and for
gateways that forward requests to a container. Tests build their own
instance through `create_app()`.

Run locally with:
    uvicorn asset_compute.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from . import __version__
from .api.routes import health, webaction
from .config.settings import get_settings
from .core.errors import HttpError
from .core.logs import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log startup configuration and warn about missing settings."""
    settings = get_settings()

    logger.info(
        "Asset compute web action starting",
        extra={
            "version": settings.api_version,
            "action": settings.ow_action_name,
            "mock_mode": {
                "invoker": settings.invoker_mock_mode,
                "temporary_storage": settings.temporary_storage_mock_mode,
                "telemetry": settings.telemetry_mock_mode,
            }
        }
    )

    missing_fields = settings.validate_required_fields()
    if missing_fields:
        logger.error(
            "Settings incomplete, async invocation may fail",
            extra={"missing_fields": missing_fields}
        )

    yield

    logger.info("Asset compute web action shutting down")


def create_app() -> FastAPI:
    """Build the app with its routers and error handlers."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title=settings.api_title,
        version=__version__,
        description="""
        Web front end of an asset compute worker action.

        `POST /api/v1/webaction` authenticates the caller (bearer token plus
        IMS org headers), starts the worker asynchronously and returns its
        activation id.
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.include_router(
        health.router,
        prefix="/health",
        tags=["Health"],
    )

    app.include_router(
        webaction.router,
        prefix="/api/v1/webaction",
        tags=["Web action"],
    )

    @app.exception_handler(HttpError)
    async def http_error_handler(request: Request, exc: HttpError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": exc.message},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Anything else is a 500; details stay in the logs."""
        logger.error(
            "Request failed",
            extra={
                "path": request.url.path,
                "method": request.method,
                "error": str(exc),
            },
            exc_info=exc,
        )

        return JSONResponse(
            status_code=500,
            content={
                "message": "Internal server error."
            }
        )

    logger.info(
        "Web action app ready",
        extra={
            "title": settings.api_title,
            "version": __version__,
        }
    )

    return app


# imported by uvicorn
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "asset_compute.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.log_level.lower(),
    )
