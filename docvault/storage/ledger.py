"""Metadata ledger: the catalogue of completed uploads.

The ledger is a JSON array on disk, mirrored fully in memory. Every mutation
rewrites the journal through a temporary file and an atomic replace before
the in-memory view changes, so a crash loses at most the in-flight upload.
"""
import asyncio
import json
import os
from datetime import datetime, timezone
from pathlib import Path

import aiofiles
import aiofiles.os
from pydantic import TypeAdapter, ValidationError

from docvault.core.exceptions import LedgerCorruptionError, WriteFailureError
from docvault.core.logging import get_logger
from docvault.core.models import FileRecord

logger = get_logger(__name__)

_RECORDS = TypeAdapter(list[FileRecord])


class MetadataLedger:
    """Serialized, durable store of FileRecords keyed by id.

    Mutations take a single asyncio lock for the whole read-modify-flush
    cycle. Readers never lock: the index is swapped copy-on-write, so a
    snapshot is always a complete state.

    A journal that fails to parse is moved aside, the ledger starts empty,
    and listing raises LedgerCorruptionError until an operator repairs the
    journal and restarts. Uploads keep working in the meantime.

    Example:
        ledger = MetadataLedger(Path("data/metadata.json"))
        await ledger.load()

        await ledger.upsert(record)
        records = ledger.snapshot()
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._records: dict[str, FileRecord] = {}
        self._lock = asyncio.Lock()
        self.corrupted = False
        self.quarantined_path: Path | None = None

    def __len__(self) -> int:
        return len(self._records)

    async def load(self) -> None:
        """Read the journal into memory, treating a missing file as empty."""
        if not await aiofiles.os.path.exists(self.path):
            logger.info("No ledger journal found, starting empty")
            self._records = {}
            return

        async with aiofiles.open(self.path, "rb") as f:
            raw = await f.read()

        try:
            records = _RECORDS.validate_json(raw) if raw.strip() else []
        except ValidationError as e:
            await self._quarantine(error_count=e.error_count())
            return

        self._records = {record.id: record for record in records}
        logger.info("Ledger loaded", records=len(self._records))

    async def _quarantine(self, error_count: int) -> None:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        target = self.path.with_name(f"{self.path.name}.corrupt-{stamp}")
        await aiofiles.os.replace(self.path, target)

        self._records = {}
        self.corrupted = True
        self.quarantined_path = target
        logger.error(
            "Ledger journal is corrupt; listing disabled until repaired",
            quarantined=target.name,
            errors=error_count,
        )

    def snapshot(self) -> list[FileRecord]:
        """All records ordered by upload time.

        Raises:
            LedgerCorruptionError: If the journal failed to load at startup
        """
        if self.corrupted:
            raise LedgerCorruptionError(
                "File listing is unavailable until the metadata journal is repaired"
            )
        return sorted(self._records.values(), key=lambda r: r.uploaded_at)

    def get(self, file_id: str) -> FileRecord | None:
        return self._records.get(file_id)

    def find_by_path(self, storage_path: str) -> FileRecord | None:
        for record in self._records.values():
            if record.storage_path == storage_path:
                return record
        return None

    async def upsert(self, record: FileRecord) -> FileRecord | None:
        """Insert a record, or replace the one with the same id in place.

        Args:
            record: Completed upload

        Returns:
            The record that was replaced, if any

        Raises:
            WriteFailureError: If the journal could not be flushed; the
                in-memory view is left unchanged
        """
        async with self._lock:
            previous = self._records.get(record.id)
            updated = dict(self._records)
            updated[record.id] = record
            await self._flush(updated)
            self._records = updated

        logger.debug(
            "Ledger updated",
            file_id=record.id,
            backend=record.backend.value,
            replaced=previous is not None,
        )
        return previous

    async def _flush(self, records: dict[str, FileRecord]) -> None:
        payload = json.dumps(
            [record.model_dump(mode="json") for record in records.values()],
            indent=2,
        ).encode("utf-8")
        tmp_path = self.path.with_name(f".{self.path.name}.tmp")

        try:
            async with aiofiles.open(tmp_path, "wb") as f:
                await f.write(payload)
                await f.flush()
                await asyncio.to_thread(os.fsync, f.fileno())
            await aiofiles.os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error("Failed to flush ledger", error=str(e))
            tmp_path.unlink(missing_ok=True)
            raise WriteFailureError("Failed to record upload metadata") from e
