"""Document upload, listing and serving endpoints."""
from urllib.parse import unquote

from fastapi import APIRouter, Header, Request, Response
from fastapi.responses import RedirectResponse

from docvault.api.deps import StorageRouterDep
from docvault.core.exceptions import InvalidUploadError
from docvault.core.logging import get_logger
from docvault.core.models import (
    CompleteUploadRequest,
    FileRecordResponse,
    RemoteRedirect,
    ServedFile,
    UploadTargetResponse,
)
from docvault.storage.local import LOCAL_PATH_PREFIX
from docvault.storage.remote import REMOTE_PATH_PREFIX

logger = get_logger(__name__)

router = APIRouter()

# Mounted at the site root so a record's path is directly fetchable
serving_router = APIRouter()


def _declared_size(x_file_size: str | None, content_length: str | None) -> int | None:
    """Declared byte count, preferring X-File-Size over Content-Length."""
    for header, value in (("X-File-Size", x_file_size), ("Content-Length", content_length)):
        if value is None:
            continue
        try:
            return int(value)
        except ValueError:
            raise InvalidUploadError(
                f"{header} must be an integer", details={"header": header}
            ) from None
    return None


def _serve_response(served: ServedFile | RemoteRedirect) -> Response:
    if isinstance(served, RemoteRedirect):
        return RedirectResponse(served.url, status_code=307)
    return Response(content=served.content, media_type=served.mime_type)


@router.post("/upload-url", response_model=UploadTargetResponse)
async def request_upload_url(storage: StorageRouterDep) -> UploadTargetResponse:
    """Get somewhere to upload a document to.

    Returns a pre-signed object-storage URL when object storage is available,
    otherwise a local streaming endpoint. ``backend`` says which; complete
    the upload on the matching path.
    """
    target = await storage.request_upload_target()
    logger.info("Upload target issued", backend=target.backend.value, file_id=target.file_id)
    return UploadTargetResponse.from_target(target)


@router.put("/local-upload/{file_id}", response_model=FileRecordResponse, status_code=201)
async def upload_local(
    file_id: str,
    request: Request,
    storage: StorageRouterDep,
    content_type: str | None = Header(default=None),
    content_length: str | None = Header(default=None),
    x_file_name: str | None = Header(default=None),
    x_file_size: str | None = Header(default=None),
) -> FileRecordResponse:
    """Stream a document's raw bytes to a local upload target.

    The original filename goes in ``X-File-Name`` (URL-encoded); the size in
    ``X-File-Size`` or ``Content-Length``. Oversized or invalid uploads are
    refused before the body is read.
    """
    if not x_file_name:
        raise InvalidUploadError("X-File-Name header is required")

    record = await storage.complete_local_upload(
        file_id,
        request.stream(),
        unquote(x_file_name),
        content_type,
        _declared_size(x_file_size, content_length),
    )
    return FileRecordResponse.from_record(record)


@router.post("/complete", response_model=FileRecordResponse)
async def complete_upload(
    body: CompleteUploadRequest,
    storage: StorageRouterDep,
) -> FileRecordResponse:
    """Record a document the client uploaded directly to object storage."""
    record = await storage.complete_remote_upload(body.upload_url, body.file_name, body.file_size)
    return FileRecordResponse.from_record(record)


@router.get("", response_model=list[FileRecordResponse])
async def list_files(storage: StorageRouterDep) -> list[FileRecordResponse]:
    """Every stored document, oldest first, regardless of backend."""
    return [FileRecordResponse.from_record(record) for record in storage.list()]


@router.get("/{file_id}", response_model=FileRecordResponse)
async def get_file(file_id: str, storage: StorageRouterDep) -> FileRecordResponse:
    """Metadata for one stored document."""
    return FileRecordResponse.from_record(storage.get(file_id))


@serving_router.get(f"{LOCAL_PATH_PREFIX}{{name:path}}")
async def serve_local(name: str, storage: StorageRouterDep) -> Response:
    """Raw bytes of a locally stored document."""
    return _serve_response(await storage.serve(f"{LOCAL_PATH_PREFIX}{name}"))


@serving_router.get(f"{REMOTE_PATH_PREFIX}{{key:path}}")
async def serve_remote(key: str, storage: StorageRouterDep) -> Response:
    """Redirect to the object-storage provider for a remote document."""
    return _serve_response(await storage.serve(f"{REMOTE_PATH_PREFIX}{key}"))
