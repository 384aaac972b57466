"""FastAPI application factory and lifespan management."""
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import ClientDisconnect

from docvault.api.middleware import RequestLoggingMiddleware
from docvault.api.routes import files, health
from docvault.core.config import Settings, settings as default_settings
from docvault.core.exceptions import DocVaultError
from docvault.core.logging import get_logger, setup_logging
from docvault.storage.router import create_storage_router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup/shutdown."""
    config: Settings = app.state.settings

    # Startup
    setup_logging(config)
    logger.info(
        "Starting DocVault",
        version=config.app_version,
        environment=config.environment.value,
        strategy=config.storage_backend.value,
    )

    app.state.storage_router = await create_storage_router(config)
    app.state.ready = True

    yield

    # Shutdown
    logger.info("Shutting down DocVault")
    app.state.ready = False


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    config = settings or default_settings

    app = FastAPI(
        title=config.app_name,
        version=config.app_version,
        description="Document ingestion and storage with object-storage and local-disk backends",
        docs_url="/docs" if config.debug else None,
        redoc_url="/redoc" if config.debug else None,
        openapi_url="/openapi.json" if config.debug else None,
        lifespan=lifespan,
    )
    app.state.settings = config

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(RequestLoggingMiddleware)

    # Exception handlers
    @app.exception_handler(DocVaultError)
    async def docvault_error_handler(request: Request, exc: DocVaultError) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.warning
        log("Request rejected", error=exc.__class__.__name__, message=exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.__class__.__name__,
                "message": exc.message,
                "details": exc.details,
            },
        )

    @app.exception_handler(ClientDisconnect)
    async def client_disconnect_handler(request: Request, exc: ClientDisconnect) -> JSONResponse:
        logger.warning("Client disconnected mid-upload")
        return JSONResponse(
            status_code=400,
            content={"error": "ClientDisconnect", "message": "Upload was interrupted"},
        )

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(
        files.router,
        prefix=f"{config.api_prefix}/files",
        tags=["Files"],
    )
    app.include_router(files.serving_router, tags=["Serving"])

    return app


# Application instance
app = create_app()


def run() -> None:
    """Run the application with uvicorn."""
    uvicorn.run(
        "docvault.api.main:app",
        host=default_settings.api_host,
        port=default_settings.api_port,
        reload=default_settings.debug,
        log_level=default_settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
