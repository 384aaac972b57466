#!/usr/bin/env python3
"""Check, salvage or rebuild the DocVault metadata journal.

When the service finds a journal it cannot parse, it moves it aside as
``metadata.json.corrupt-<timestamp>`` and disables listing. This script
helps the operator put a valid journal back before restarting.

Usage:
    python scripts/check_ledger.py                      # validate the live journal
    python scripts/check_ledger.py --salvage FILE       # keep the valid entries of FILE
    python scripts/check_ledger.py --rebuild            # re-derive local records from disk
"""
import argparse
import json
import sys
from datetime import datetime, timezone
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from pydantic import ValidationError  # noqa: E402

from docvault.core.config import settings  # noqa: E402
from docvault.core.models import FileRecord, StorageBackendKind  # noqa: E402
from docvault.ingest.validator import infer_mime_type  # noqa: E402
from docvault.storage.local import LOCAL_PATH_PREFIX  # noqa: E402


def load_entries(path: Path) -> tuple[list[FileRecord], list[str]]:
    """Parse a journal entry by entry, collecting what fails."""
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        return [], [f"not valid JSON: {e}"]

    if not isinstance(raw, list):
        return [], ["top level is not a list"]

    records: list[FileRecord] = []
    problems: list[str] = []
    for index, entry in enumerate(raw):
        try:
            records.append(FileRecord.model_validate(entry))
        except ValidationError as e:
            problems.append(f"entry {index}: {e.error_count()} invalid field(s)")
    return records, problems


def rebuild_from_uploads(uploads_dir: Path) -> list[FileRecord]:
    """Recreate local records from ``<id>-<name>`` files on disk.

    Remote records cannot be recovered this way; their objects are not
    on local disk.
    """
    records = []
    for path in sorted(uploads_dir.iterdir()):
        if not path.is_file() or path.name.startswith("."):
            continue
        file_id, sep, name = path.name.partition("-")
        if not sep or len(file_id) != 32:
            print(f"  skipping unrecognized file: {path.name}")
            continue
        stat = path.stat()
        records.append(
            FileRecord(
                id=file_id,
                name=name,
                size=stat.st_size,
                storage_path=f"{LOCAL_PATH_PREFIX}{path.name}",
                mime_type=infer_mime_type(name),
                uploaded_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                backend=StorageBackendKind.LOCAL,
            )
        )
    return records


def write_journal(path: Path, records: list[FileRecord]) -> None:
    unique = {record.id: record for record in records}
    payload = [record.model_dump(mode="json") for record in unique.values()]
    tmp_path = path.with_name(f".{path.name}.tmp")
    tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    tmp_path.replace(path)
    print(f"Wrote {len(payload)} record(s) to {path}")


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="DocVault ledger maintenance")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--salvage", type=Path, help="journal to salvage valid entries from")
    group.add_argument("--rebuild", action="store_true", help="rebuild local records from disk")
    parser.add_argument(
        "--ledger",
        type=Path,
        default=settings.ledger_path,
        help="journal location (default: %(default)s)",
    )
    args = parser.parse_args()

    print("=" * 50)
    print("DocVault Ledger Check")
    print("=" * 50)
    print()

    if args.rebuild:
        records = rebuild_from_uploads(settings.uploads_dir)
        write_journal(args.ledger, records)
        return

    source = args.salvage or args.ledger
    if not source.exists():
        print(f"No journal at {source}")
        sys.exit(1)

    records, problems = load_entries(source)
    print(f"{len(records)} valid record(s) in {source}")
    for problem in problems:
        print(f"  problem: {problem}")

    if args.salvage:
        write_journal(args.ledger, records)
    elif problems:
        sys.exit(1)


if __name__ == "__main__":
    main()
