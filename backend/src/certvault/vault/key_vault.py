"""Encrypted, file-backed key and secret vault.

Layout of the vault directory (owner-only, 0700):
- master.key   raw master key, 0400, never encrypted
- <name>.key   wrapped symmetric secrets, 0600
- <name>.pem   wrapped certificate private keys, 0600
- index.json   entry metadata, 0600

Every blob is nonce || ciphertext || tag under the master key. The master key
is generated once, on the first init, and loaded on every later run.
"""

import asyncio
import logging
import re
from datetime import datetime, timezone
from pathlib import Path

from opentelemetry import trace

from certvault.domain.states import VaultEntryKind
from certvault.errors import (
    AlreadyExistsError,
    DecryptFailedError,
    InvalidEntryNameError,
    NotFoundError,
    VaultError,
)
from certvault.metrics import certvault_metrics
from certvault.vault.crypto import (
    SymmetricKey,
    decrypt,
    encrypt,
    export_key,
    generate_key,
    import_key,
)
from certvault.vault.files import (
    ENTRY_MODE,
    READ_ONLY_MODE,
    ensure_private_dir,
    write_private_file,
)
from certvault.vault.index import VaultEntry, VaultIndex

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class KeyVault:
    """Stores secrets wrapped under a single master key.

    All operations wait for init() to complete first, so concurrent early
    callers never race to generate two master keys.
    """

    MASTER_KEY_FILE = "master.key"
    INDEX_FILE = "index.json"

    EXTENSIONS = {
        VaultEntryKind.SECRET: ".key",
        VaultEntryKind.PRIVATE_KEY: ".pem",
    }
    RESERVED_NAMES = frozenset({"master", "index"})
    NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,199}$")

    def __init__(self, keys_dir: str | Path, index: VaultIndex | None = None) -> None:
        self.keys_dir = Path(keys_dir)
        self._index = index if index is not None else VaultIndex(self.keys_dir / self.INDEX_FILE)
        self._master_key: SymmetricKey | None = None
        self._init_lock = asyncio.Lock()

    @property
    def initialized(self) -> bool:
        return self._master_key is not None

    @property
    def master_key(self) -> SymmetricKey:
        """Get the loaded master key. Raises if init() has not run."""
        if self._master_key is None:
            raise VaultError("Vault not initialized. Call init() first.")
        return self._master_key

    @property
    def master_key_path(self) -> Path:
        return self.keys_dir / self.MASTER_KEY_FILE

    # =========================================================================
    # Initialization
    # =========================================================================

    async def init(self) -> None:
        """Prepare the vault directory and load or generate the master key.

        Idempotent. An existing master key is never regenerated, since that
        would orphan every entry wrapped under it.
        """
        if self._master_key is not None:
            return

        async with self._init_lock:
            if self._master_key is not None:
                return

            with tracer.start_as_current_span("KeyVault.init") as span:
                ensure_private_dir(self.keys_dir)

                master_key, source = self._load_or_generate_master_key()
                span.set_attribute("master_key_source", source)

                self._index.load()
                self._index.reconcile(self._scan_blobs())

                self._master_key = master_key
                certvault_metrics.record_master_key_loaded(source)
                logger.info(
                    "vault_initialized",
                    extra={
                        "keys_dir": str(self.keys_dir),
                        "master_key_source": source,
                        "entries": len(self._index),
                    },
                )

    def _load_or_generate_master_key(self) -> tuple[SymmetricKey, str]:
        path = self.master_key_path
        if path.exists():
            return self._read_master_key(path), "file"

        key = generate_key()
        try:
            write_private_file(path, export_key(key), mode=READ_ONLY_MODE, exclusive=True)
        except FileExistsError:
            # Another process created it between the check and the write
            return self._read_master_key(path), "file"

        logger.info("master_key_generated", extra={"path": str(path)})
        return key, "generated"

    def _read_master_key(self, path: Path) -> SymmetricKey:
        try:
            return import_key(path.read_bytes())
        except ValueError as e:
            raise VaultError(f"Master key file is corrupt: {path}") from e

    def _scan_blobs(self) -> dict[str, tuple[VaultEntryKind, Path]]:
        blobs: dict[str, tuple[VaultEntryKind, Path]] = {}
        for kind, suffix in self.EXTENSIONS.items():
            for path in self.keys_dir.glob(f"*{suffix}"):
                if path.name == self.MASTER_KEY_FILE or path.name.startswith("."):
                    continue
                blobs[path.name[: -len(suffix)]] = (kind, path)
        return blobs

    # =========================================================================
    # Entry operations
    # =========================================================================

    async def store(
        self,
        name: str,
        secret: bytes,
        kind: VaultEntryKind = VaultEntryKind.SECRET,
    ) -> VaultEntry:
        """Wrap and persist a new secret.

        Raises:
            AlreadyExistsError: If name is taken; the existing entry is untouched.
            InvalidEntryNameError: If name is not a safe file stem.
        """
        self._validate_name(name)
        await self.init()

        async with self._index.lock_for(name):
            with tracer.start_as_current_span("KeyVault.store") as span:
                span.set_attribute("entry_name", name)
                span.set_attribute("kind", kind.value)

                if name in self._index:
                    certvault_metrics.record_vault_operation("store", "already_exists")
                    raise AlreadyExistsError(name)

                now = datetime.now(timezone.utc)
                entry = VaultEntry(name=name, kind=kind, created_at=now, last_rotated=now)

                write_private_file(
                    self._blob_path(name, kind),
                    encrypt(secret, self.master_key),
                    mode=ENTRY_MODE,
                    exclusive=True,
                )
                self._index.put(entry)

                certvault_metrics.record_vault_operation("store", "ok")
                logger.info("vault_entry_stored", extra={"entry_name": name, "kind": kind.value})
                return entry.model_copy()

    async def get(self, name: str) -> bytes:
        """Unwrap a stored secret.

        Raises:
            NotFoundError: If no entry exists under name.
            DecryptFailedError: If the blob does not authenticate under the master key.
        """
        self._validate_name(name)
        await self.init()

        async with self._index.lock_for(name):
            entry = self._index.get(name)
            if entry is None:
                certvault_metrics.record_vault_operation("get", "not_found")
                raise NotFoundError(name)

            path = self._blob_path(name, entry.kind)
            try:
                blob = path.read_bytes()
            except FileNotFoundError:
                logger.error("vault_blob_missing", extra={"entry_name": name, "path": str(path)})
                certvault_metrics.record_vault_operation("get", "not_found")
                raise NotFoundError(name) from None

            try:
                secret = decrypt(blob, self.master_key)
            except DecryptFailedError:
                logger.error("vault_entry_decrypt_failed", extra={"entry_name": name})
                certvault_metrics.record_vault_operation("get", "decrypt_failed")
                raise

            certvault_metrics.record_vault_operation("get", "ok")
            return secret

    async def rotate(self, name: str, secret: bytes) -> VaultEntry:
        """Replace the secret under an existing name with a new one.

        Bumps key_iterations and last_rotated; created_at is preserved.

        Raises:
            NotFoundError: If no entry exists under name.
        """
        self._validate_name(name)
        await self.init()

        async with self._index.lock_for(name):
            entry = self._index.get(name)
            if entry is None:
                certvault_metrics.record_vault_operation("rotate", "not_found")
                raise NotFoundError(name)

            write_private_file(
                self._blob_path(name, entry.kind),
                encrypt(secret, self.master_key),
                mode=ENTRY_MODE,
            )
            rotated = entry.model_copy(
                update={
                    "last_rotated": datetime.now(timezone.utc),
                    "key_iterations": entry.key_iterations + 1,
                }
            )
            self._index.put(rotated)

            certvault_metrics.record_vault_operation("rotate", "ok")
            logger.info(
                "vault_entry_rotated",
                extra={"entry_name": name, "key_iterations": rotated.key_iterations},
            )
            return rotated.model_copy()

    async def delete(self, name: str) -> bool:
        """Remove an entry and its backing file.

        Returns:
            True if something was deleted, False if the entry did not exist.
        """
        self._validate_name(name)
        await self.init()

        async with self._index.lock_for(name):
            entry = self._index.remove(name)
            if entry is None:
                certvault_metrics.record_vault_operation("delete", "not_found")
                return False

            self._blob_path(name, entry.kind).unlink(missing_ok=True)
            certvault_metrics.record_vault_operation("delete", "ok")
            logger.info("vault_entry_deleted", extra={"entry_name": name})
            return True

    async def list_entries(self) -> list[VaultEntry]:
        """Metadata of every entry. Key material is never included."""
        await self.init()
        return self._index.entries()

    async def contains(self, name: str) -> bool:
        await self.init()
        return name in self._index

    # =========================================================================
    # Helpers
    # =========================================================================

    def _blob_path(self, name: str, kind: VaultEntryKind) -> Path:
        return self.keys_dir / f"{name}{self.EXTENSIONS[kind]}"

    def _validate_name(self, name: str) -> None:
        if name in self.RESERVED_NAMES or not self.NAME_PATTERN.fullmatch(name):
            raise InvalidEntryNameError(f"Invalid vault entry name: {name!r}")
