"""Liveness, readiness and service information endpoints."""
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from pydantic import BaseModel

from docvault.api.deps import SettingsDep
from docvault.storage.router import StorageRouter

router = APIRouter()


class StatusResponse(BaseModel):
    status: str
    version: str
    environment: str
    timestamp: datetime


class LedgerStatus(BaseModel):
    """State of the metadata journal."""

    records: int
    listing_available: bool
    quarantined_file: str | None = None


class ReadinessResponse(BaseModel):
    """Readiness with the state of each storage component.

    ``ready`` only depends on the app having started and the uploads
    directory existing. Object storage falls back to local storage and a
    corrupt ledger only disables listing, so both are reported without
    gating readiness.
    """

    ready: bool
    uploads_dir: bool
    object_storage: bool
    ledger: LedgerStatus | None
    timestamp: datetime


class InfoResponse(BaseModel):
    name: str
    version: str
    environment: str
    storage_strategy: str
    backends: list[str]
    max_upload_size_mb: int
    allowed_mime_types: list[str]


def _storage(request: Request) -> StorageRouter | None:
    return getattr(request.app.state, "storage_router", None)


@router.get("/health", response_model=StatusResponse)
async def health_check(settings: SettingsDep) -> StatusResponse:
    """Process is up; says nothing about storage."""
    return StatusResponse(
        status="healthy",
        version=settings.app_version,
        environment=settings.environment.value,
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/live")
async def liveness() -> dict[str, str]:
    return {"status": "alive"}


@router.get("/ready", response_model=ReadinessResponse)
async def readiness(request: Request, settings: SettingsDep) -> ReadinessResponse:
    storage = _storage(request)
    started = getattr(request.app.state, "ready", False) and storage is not None
    uploads_dir = settings.uploads_dir.is_dir()

    ledger_status = None
    if storage is not None:
        ledger = storage.local.ledger
        ledger_status = LedgerStatus(
            records=len(ledger),
            listing_available=not ledger.corrupted,
            quarantined_file=ledger.quarantined_path.name if ledger.quarantined_path else None,
        )

    return ReadinessResponse(
        ready=started and uploads_dir,
        uploads_dir=uploads_dir,
        object_storage=storage is not None and storage.remote is not None,
        ledger=ledger_status,
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/info", response_model=InfoResponse)
async def info(request: Request, settings: SettingsDep) -> InfoResponse:
    """Configured limits and the backends actually in use."""
    storage = _storage(request)
    return InfoResponse(
        name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment.value,
        storage_strategy=settings.storage_backend.value,
        backends=[kind.value for kind in storage.backends] if storage else [],
        max_upload_size_mb=settings.max_upload_size_mb,
        allowed_mime_types=settings.allowed_mime_types,
    )
