"""Storage module - Document storage backends and the metadata ledger."""
from docvault.storage.base import StorageBackend
from docvault.storage.ledger import MetadataLedger
from docvault.storage.local import LocalStorage
from docvault.storage.remote import S3Storage
from docvault.storage.router import StorageRouter, create_storage_router

__all__ = [
    "StorageBackend",
    "LocalStorage",
    "S3Storage",
    "MetadataLedger",
    "StorageRouter",
    "create_storage_router",
]
