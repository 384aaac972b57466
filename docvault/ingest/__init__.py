"""Ingestion module - Upload validation and size enforcement."""
from docvault.ingest.guard import StreamingIngestGuard
from docvault.ingest.validator import MimeValidator

__all__ = ["MimeValidator", "StreamingIngestGuard"]
