"""Key vault for the certificate service.

This module provides:
- AES-256-GCM primitives for wrapping secrets
- The file-backed KeyVault and its entry index
"""

from certvault.vault.index import VaultEntry, VaultIndex
from certvault.vault.key_vault import KeyVault

__all__ = ["KeyVault", "VaultEntry", "VaultIndex"]
