"""Single entry point over local and object storage."""
from collections.abc import AsyncIterable

from docvault.core.config import Settings, StorageStrategy
from docvault.core.exceptions import (
    BackendMismatchError,
    FileNotFoundInStorageError,
    InvalidContentTypeError,
    ProviderUnavailableError,
)
from docvault.core.logging import get_logger
from docvault.core.models import (
    FileRecord,
    RemoteRedirect,
    ServedFile,
    StorageBackendKind,
    UploadState,
    UploadTarget,
)
from docvault.ingest.guard import StreamingIngestGuard
from docvault.ingest.validator import MimeValidator
from docvault.storage.ledger import MetadataLedger
from docvault.storage.local import LocalStorage
from docvault.storage.remote import S3Storage
from docvault.storage.sessions import UploadSessionRegistry

logger = get_logger(__name__)


class StorageRouter:
    """Hides backend choice from every caller.

    Uploads are a two-step protocol: request a target, then complete it on
    the backend that issued it. The target names that backend, and the
    caller is responsible for completing on the matching path. Both paths
    end in the same ledger, which is the only source for listings.

    Example:
        router = await create_storage_router(settings)

        target = await router.request_upload_target()
        if target.backend == StorageBackendKind.LOCAL:
            record = await router.complete_local_upload(
                target.file_id, request.stream(), "notes.txt", "text/plain", 10
            )
        else:
            record = await router.complete_remote_upload(target.upload_url, "notes.txt", 10)
    """

    def __init__(
        self,
        local: LocalStorage,
        remote: S3Storage | None = None,
        strategy: StorageStrategy = StorageStrategy.REMOTE,
        validator: MimeValidator | None = None,
        sessions: UploadSessionRegistry | None = None,
        max_upload_bytes: int = 50 * 1024 * 1024,
    ) -> None:
        self.local = local
        self.remote = remote
        self.strategy = strategy
        self.validator = validator or MimeValidator()
        self.sessions = sessions or UploadSessionRegistry()
        self.max_upload_bytes = max_upload_bytes

    # Declared before list() so the builtin is still in scope for the annotation
    @property
    def backends(self) -> list[StorageBackendKind]:
        kinds = [StorageBackendKind.LOCAL]
        if self.remote is not None:
            kinds.append(StorageBackendKind.REMOTE)
        return kinds

    async def request_upload_target(self) -> UploadTarget:
        """Issue an upload target, falling back to local storage.

        Provider unavailability never reaches the caller; it only changes
        which backend the target belongs to.
        """
        remote = self.remote
        if self.strategy == StorageStrategy.REMOTE and remote is not None:
            try:
                return await remote.generate_upload_target()
            except ProviderUnavailableError as e:
                logger.warning(
                    "Object storage unavailable, falling back to local storage",
                    error=e.message,
                )

        target = await self.local.generate_upload_target()
        self.sessions.issue(target.file_id, target.expires_at)
        return target

    async def complete_local_upload(
        self,
        file_id: str,
        stream: AsyncIterable[bytes],
        name: str,
        content_type: str | None = None,
        declared_size: int | None = None,
    ) -> FileRecord:
        """Receive a document streamed to a local target.

        Content type and declared size are checked before any byte is read.
        Nothing reaches the ledger unless the whole document was received
        and written.

        Args:
            file_id: Id from the local upload target
            stream: Request body chunks
            name: Client filename (untrusted)
            content_type: Declared Content-Type header (untrusted)
            declared_size: Declared byte count (untrusted)

        Returns:
            The ledger record
        """
        mime_type = self.validator.resolve(content_type, name)
        guard = StreamingIngestGuard(self.max_upload_bytes, declared_size)
        guard.check_declared()

        self.sessions.begin(file_id)
        succeeded = False
        try:
            data = await guard.consume(stream)
            self.sessions.transition(file_id, UploadState.BYTES_TRANSFERRED)
            record = await self.local.accept_stream(file_id, data, name, mime_type)
            succeeded = True
        finally:
            self.sessions.finish(file_id, succeeded=succeeded)

        return record

    async def complete_remote_upload(self, upload_url: str, name: str, size: int) -> FileRecord:
        """Finalize a direct-to-provider upload and merge it into the ledger.

        Completing the same object again replaces its record. An object whose
        name is not an accepted document type is deleted from the bucket.

        Raises:
            BackendMismatchError: If no object storage is configured
            InvalidContentTypeError: If the name is not an accepted document type
        """
        if self.remote is None:
            raise BackendMismatchError(
                "Object storage is not configured; complete this upload on the local path"
            )

        try:
            self.validator.resolve(None, name)
        except InvalidContentTypeError:
            await self.remote.discard_upload(upload_url)
            raise

        record = await self.remote.complete_upload(upload_url, name, size)
        previous = await self.local.merge_record(record)

        logger.info(
            "Remote upload recorded",
            file_id=record.id,
            replaced=previous is not None,
        )
        return record

    def list(self) -> list[FileRecord]:
        """Every completed upload, both backends, ordered by upload time."""
        return self.local.list()

    def get(self, file_id: str) -> FileRecord:
        record = self.local.get(file_id)
        if record is None:
            raise FileNotFoundInStorageError("File not found", details={"file_id": file_id})
        return record

    async def serve(self, locator: str) -> ServedFile | RemoteRedirect:
        """Resolve a locator to bytes or to a provider redirect.

        Raises:
            FileNotFoundInStorageError: If no backend recognizes the locator
        """
        if self.local.owns(locator):
            return await self.local.serve(locator)
        if self.remote is not None and self.remote.owns(locator):
            return RemoteRedirect(url=await self.remote.download_url(locator))
        raise FileNotFoundInStorageError("File not found")


async def create_storage_router(config: Settings) -> StorageRouter:
    """Wire the ledger, both backends and the router from settings.

    The ledger is loaded before anything else so the first request already
    sees every earlier upload.
    """
    ledger = MetadataLedger(config.ledger_path)
    await ledger.load()

    local = LocalStorage(
        ledger,
        base_path=config.uploads_dir,
        upload_url_base=(
            f"{config.public_base_url.rstrip('/')}{config.api_prefix}/files/local-upload"
        ),
        target_ttl_seconds=config.upload_target_ttl_seconds,
    )

    remote = None
    if config.remote_configured:
        remote = S3Storage.from_settings(config)
    elif config.storage_backend == StorageStrategy.REMOTE:
        logger.info("Object storage not configured, using local storage")

    return StorageRouter(
        local=local,
        remote=remote,
        strategy=config.storage_backend,
        validator=MimeValidator(config.allowed_mime_types),
        sessions=UploadSessionRegistry(),
        max_upload_bytes=config.max_upload_bytes,
    )
