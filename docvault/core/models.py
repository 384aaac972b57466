"""Domain models for DocVault."""
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class StorageBackendKind(str, Enum):
    """Backend that holds a document's bytes."""

    LOCAL = "local"
    REMOTE = "remote"


class UploadState(str, Enum):
    """Upload lifecycle as seen by the client."""

    REQUESTED = "requested"
    TARGET_ISSUED = "target_issued"
    BYTES_TRANSFERRED = "bytes_transferred"
    COMPLETED = "completed"
    FAILED = "failed"


# ============ Internal Domain Models ============


class FileRecord(BaseModel):
    """Catalogue entry for one stored document.

    This is also the ledger journal shape, so ``backend`` is persisted here
    even though clients never see it.
    """

    id: str
    name: str
    size: int = Field(ge=0)
    storage_path: str
    mime_type: str = "application/octet-stream"
    uploaded_at: datetime
    backend: StorageBackendKind


class UploadTarget(BaseModel):
    """Where a client should push the bytes of a new document."""

    upload_url: str
    backend: StorageBackendKind
    file_id: str
    expires_at: datetime


class ServedFile(BaseModel):
    """Bytes of a locally stored document."""

    content: bytes
    mime_type: str


class RemoteRedirect(BaseModel):
    """Client should fetch the bytes from the provider directly."""

    url: str


# ============ Request/Response Models ============


class FileRecordResponse(BaseModel):
    """Wire representation of a FileRecord."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    size: int
    path: str
    uploaded_at: datetime = Field(serialization_alias="uploadedAt")
    mime_type: str = Field(serialization_alias="mimeType")

    @classmethod
    def from_record(cls, record: FileRecord) -> "FileRecordResponse":
        return cls(
            id=record.id,
            name=record.name,
            size=record.size,
            path=record.storage_path,
            uploaded_at=record.uploaded_at,
            mime_type=record.mime_type,
        )


class UploadTargetResponse(BaseModel):
    """Response to an upload target request."""

    upload_url: str = Field(serialization_alias="uploadURL")
    backend: StorageBackendKind
    use_object_storage: bool = Field(serialization_alias="useObjectStorage")
    file_id: str = Field(serialization_alias="fileId")
    expires_at: datetime = Field(serialization_alias="expiresAt")

    @classmethod
    def from_target(cls, target: UploadTarget) -> "UploadTargetResponse":
        return cls(
            upload_url=target.upload_url,
            backend=target.backend,
            use_object_storage=target.backend == StorageBackendKind.REMOTE,
            file_id=target.file_id,
            expires_at=target.expires_at,
        )


class CompleteUploadRequest(BaseModel):
    """Client notice that a direct-to-provider upload has finished."""

    model_config = ConfigDict(populate_by_name=True)

    upload_url: str = Field(alias="uploadURL", min_length=1)
    file_name: str = Field(alias="fileName", min_length=1, max_length=1024)
    file_size: int = Field(alias="fileSize", ge=0)
