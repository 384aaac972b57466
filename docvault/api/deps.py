"""Dependency injection for FastAPI routes."""
from typing import Annotated

from fastapi import Depends, HTTPException, Request

from docvault.core.config import Settings
from docvault.storage.router import StorageRouter


# Settings dependency
def get_settings_dep(request: Request) -> Settings:
    """Get the settings the application was created with."""
    return request.app.state.settings


SettingsDep = Annotated[Settings, Depends(get_settings_dep)]


# Readiness check
async def require_ready(request: Request) -> None:
    """Ensure application is ready to handle requests."""
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(status_code=503, detail="Service not ready")


ReadyDep = Annotated[None, Depends(require_ready)]


# Storage router dependency
def get_storage_router(request: Request, _: ReadyDep) -> StorageRouter:
    """Get the storage router built at startup."""
    router = getattr(request.app.state, "storage_router", None)
    if router is None:
        raise RuntimeError("Storage router not initialized")
    return router


StorageRouterDep = Annotated[StorageRouter, Depends(get_storage_router)]
