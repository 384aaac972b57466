"""Core module - shared kernel for DocVault."""
from docvault.core.config import settings
from docvault.core.exceptions import DocVaultError

__all__ = ["settings", "DocVaultError"]
