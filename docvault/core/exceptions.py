"""Domain exceptions for DocVault."""
from typing import Any


class DocVaultError(Exception):
    """Base exception for all DocVault errors."""

    status_code: int = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


# Ingestion errors
class IngestionError(DocVaultError):
    """Error while accepting an upload."""

    pass


class InvalidContentTypeError(IngestionError):
    """Content type is not an accepted document type."""

    pass


class PayloadTooLargeError(IngestionError):
    """Upload exceeds the size ceiling."""

    status_code = 413


class EmptyUploadError(IngestionError):
    """Upload contained no bytes."""

    pass


class InvalidUploadError(IngestionError):
    """Malformed upload request (bad id, bad URL, bad size header)."""

    pass


class UnknownUploadTargetError(IngestionError):
    """Completion references a target this service did not issue, or one that expired."""

    status_code = 404


class UploadStateError(IngestionError):
    """Upload cannot move to the requested state."""

    status_code = 409


# Storage errors
class StorageError(DocVaultError):
    """Error in storage operations."""

    status_code = 500


class WriteFailureError(StorageError):
    """Bytes could not be durably written."""

    pass


class FileNotFoundInStorageError(StorageError):
    """No document behind the given locator or id."""

    status_code = 404


class ProviderUnavailableError(StorageError):
    """Object-storage provider is unconfigured, unreachable or timed out."""

    status_code = 503


class BackendMismatchError(StorageError):
    """Completion routed to a backend that cannot serve it."""

    status_code = 409


class LedgerCorruptionError(StorageError):
    """Metadata journal could not be parsed."""

    status_code = 503
