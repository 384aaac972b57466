"""Local filesystem storage backend."""
import asyncio
import os
import re
import unicodedata
from datetime import datetime, timedelta, timezone
from pathlib import Path
from uuid import uuid4

import aiofiles
import aiofiles.os

from docvault.core.config import settings
from docvault.core.exceptions import (
    FileNotFoundInStorageError,
    InvalidUploadError,
    WriteFailureError,
)
from docvault.core.logging import get_logger
from docvault.core.models import FileRecord, ServedFile, StorageBackendKind, UploadTarget
from docvault.ingest.validator import infer_mime_type
from docvault.storage.base import StorageBackend
from docvault.storage.ledger import MetadataLedger

logger = get_logger(__name__)

LOCAL_PATH_PREFIX = "/uploads/"

# Filesystems cap a name at 255 bytes; stored names carry a 33-byte "<id>-" prefix
MAX_FILENAME_BYTES = 200
FALLBACK_FILENAME = "document"

_FILE_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")
_UNSAFE_CHARS = re.compile(r"[^\w.()+-]")


def _truncate_utf8(text: str, max_bytes: int) -> str:
    return text.encode("utf-8")[:max_bytes].decode("utf-8", errors="ignore")


def sanitize_filename(name: str) -> str:
    """Reduce an untrusted filename to a safe single path component.

    Only the last segment survives (either separator counts), control and
    unsafe characters become underscores, and leading dots are stripped so
    neither ``..`` nor hidden files can come out of it. Long names are cut
    to ``MAX_FILENAME_BYTES`` of UTF-8, keeping a short extension.

    Example:
        sanitize_filename("../../etc/passwd")  # "passwd"
        sanitize_filename("my report (v2).pdf")  # "my_report_(v2).pdf"
    """
    base = name.replace("\\", "/").rsplit("/", 1)[-1]
    base = unicodedata.normalize("NFC", base)
    base = "".join(ch if ch.isprintable() else "_" for ch in base)
    base = _UNSAFE_CHARS.sub("_", base).lstrip(".")

    if len(base.encode("utf-8")) > MAX_FILENAME_BYTES:
        stem, dot, suffix = base.rpartition(".")
        if dot and stem and 0 < len(suffix) < 16:
            stem_bytes = MAX_FILENAME_BYTES - len(suffix.encode("utf-8")) - 1
            base = _truncate_utf8(stem, stem_bytes) + "." + suffix
        else:
            base = _truncate_utf8(base, MAX_FILENAME_BYTES)

    return base or FALLBACK_FILENAME


class LocalStorage(StorageBackend):
    """Local filesystem storage backend.

    Documents live flat in the uploads directory as ``<id>-<safe name>``.
    This backend owns both that directory and the metadata ledger; nothing
    else touches either.

    Example:
        storage = LocalStorage(ledger)

        target = await storage.generate_upload_target()
        record = await storage.accept_stream(target.file_id, data, "notes.txt", "text/plain")

        served = await storage.serve(record.storage_path)
    """

    kind = StorageBackendKind.LOCAL
    locator_prefix = LOCAL_PATH_PREFIX

    def __init__(
        self,
        ledger: MetadataLedger,
        base_path: Path | None = None,
        upload_url_base: str | None = None,
        target_ttl_seconds: int | None = None,
    ) -> None:
        self.ledger = ledger
        self.base_path = base_path or settings.uploads_dir
        self.base_path.mkdir(parents=True, exist_ok=True)
        self._root = self.base_path.resolve()
        self.upload_url_base = (
            upload_url_base
            or f"{settings.public_base_url.rstrip('/')}{settings.api_prefix}/files/local-upload"
        ).rstrip("/")
        self.target_ttl_seconds = target_ttl_seconds or settings.upload_target_ttl_seconds

    def _contain(self, path: Path) -> Path:
        """Resolve a path and refuse anything outside the storage root."""
        resolved = path.resolve()
        if resolved == self._root or not resolved.is_relative_to(self._root):
            raise FileNotFoundInStorageError("File not found")
        return resolved

    def _resolve_locator(self, locator: str) -> Path:
        if not self.owns(locator):
            raise FileNotFoundInStorageError("File not found")
        relative = locator[len(LOCAL_PATH_PREFIX):]
        if not relative or "\x00" in relative:
            raise FileNotFoundInStorageError("File not found")
        return self._contain(self.base_path / relative)

    async def generate_upload_target(self) -> UploadTarget:
        """Issue a fresh id and the URL to stream its bytes to."""
        file_id = uuid4().hex
        return UploadTarget(
            upload_url=f"{self.upload_url_base}/{file_id}",
            backend=self.kind,
            file_id=file_id,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=self.target_ttl_seconds),
        )

    async def accept_stream(
        self,
        file_id: str,
        data: bytes,
        declared_name: str,
        declared_mime_type: str | None = None,
    ) -> FileRecord:
        """Persist a received document and record it in the ledger.

        Args:
            file_id: Id issued with the upload target
            data: Complete document bytes
            declared_name: Client filename (untrusted)
            declared_mime_type: Already validated mime type

        Returns:
            The ledger record

        Raises:
            InvalidUploadError: If the id is malformed
            WriteFailureError: If the bytes or the ledger entry could not be written
        """
        if not _FILE_ID_PATTERN.match(file_id):
            raise InvalidUploadError("Malformed upload id", details={"file_id": file_id})

        safe_name = sanitize_filename(declared_name)
        path = self._contain(self.base_path / f"{file_id}-{safe_name}")
        part_path = path.with_name(f".{file_id}.{uuid4().hex}.part")
        # A repeat upload under the same name displaces the live file until
        # the ledger has accepted the new record
        backup_path = path.with_name(f".{file_id}.{uuid4().hex}.prev")
        displaced = False

        try:
            async with aiofiles.open(part_path, "wb") as f:
                await f.write(data)
                await f.flush()
                await asyncio.to_thread(os.fsync, f.fileno())
            if await aiofiles.os.path.exists(path):
                await aiofiles.os.replace(path, backup_path)
                displaced = True
            await aiofiles.os.replace(part_path, path)
        except OSError as e:
            logger.error("Failed to save document", file_id=file_id, error=str(e))
            if displaced:
                await self._restore(backup_path, path)
            raise WriteFailureError("Failed to store document") from e
        finally:
            part_path.unlink(missing_ok=True)

        record = FileRecord(
            id=file_id,
            name=declared_name,
            size=len(data),
            storage_path=f"{LOCAL_PATH_PREFIX}{path.name}",
            mime_type=declared_mime_type or infer_mime_type(declared_name),
            uploaded_at=datetime.now(timezone.utc),
            backend=self.kind,
        )

        try:
            previous = await self.ledger.upsert(record)
        except (WriteFailureError, asyncio.CancelledError):
            if displaced:
                await self._restore(backup_path, path)
            else:
                path.unlink(missing_ok=True)
            raise

        if displaced:
            backup_path.unlink(missing_ok=True)
        if (
            previous is not None
            and previous.backend == self.kind
            and previous.storage_path != record.storage_path
        ):
            await self._discard(previous.storage_path)

        logger.info(
            "Document stored",
            file_id=file_id,
            size=record.size,
            mime_type=record.mime_type,
            replaced=previous is not None,
        )
        return record

    async def _restore(self, backup_path: Path, path: Path) -> None:
        """Put back the file a failed repeat upload displaced."""
        try:
            await aiofiles.os.replace(backup_path, path)
        except OSError as e:
            logger.error("Failed to restore previous document", error=str(e))

    async def _discard(self, locator: str) -> None:
        """Remove a superseded document file."""
        try:
            await aiofiles.os.remove(self._resolve_locator(locator))
        except (FileNotFoundInStorageError, FileNotFoundError):
            pass
        except OSError as e:
            logger.warning("Failed to remove superseded document", error=str(e))

    async def serve(self, locator: str) -> ServedFile:
        """Read a stored document back.

        Raises:
            FileNotFoundInStorageError: If the locator is foreign, escapes the
                storage root, or names no file
        """
        path = self._resolve_locator(locator)
        if not await aiofiles.os.path.isfile(path):
            raise FileNotFoundInStorageError("File not found")

        async with aiofiles.open(path, "rb") as f:
            content = await f.read()

        record = self.ledger.find_by_path(locator)
        mime_type = record.mime_type if record else infer_mime_type(path.name)
        return ServedFile(content=content, mime_type=mime_type)

    def list(self) -> list[FileRecord]:
        """Ledger contents ordered by upload time."""
        return self.ledger.snapshot()

    def get(self, file_id: str) -> FileRecord | None:
        return self.ledger.get(file_id)

    async def merge_record(self, record: FileRecord) -> FileRecord | None:
        """Record a document stored elsewhere, replacing any entry with its id."""
        return await self.ledger.upsert(record)
