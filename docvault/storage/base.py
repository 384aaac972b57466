"""Abstract storage backend interface."""
from abc import ABC, abstractmethod

from docvault.core.models import StorageBackendKind, UploadTarget


class StorageBackend(ABC):
    """Abstract base class for storage backends.

    Provides the part of the interface shared by local and object storage.
    Completion differs between the two (raw bytes versus a provider URL)
    and lives on the concrete classes.
    """

    kind: StorageBackendKind
    locator_prefix: str

    @abstractmethod
    async def generate_upload_target(self) -> UploadTarget:
        """Issue a fresh place for a client to push bytes to.

        Returns:
            Upload target naming this backend
        """
        ...

    def owns(self, locator: str) -> bool:
        """Check whether a locator was issued by this backend.

        Args:
            locator: Storage path from a FileRecord

        Returns:
            True if this backend can interpret it
        """
        return locator.startswith(self.locator_prefix)
