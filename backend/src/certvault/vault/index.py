"""Vault entry metadata table.

Holds VaultEntry metadata for every stored secret, guarded by one asyncio lock
per entry name, and mirrors it to an owner-only index.json next to the blobs.
Raw key bytes never enter the index.
"""

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, TypeAdapter, ValidationError

from certvault.domain.states import VaultEntryKind
from certvault.vault.files import write_private_file

logger = logging.getLogger(__name__)


class VaultEntry(BaseModel):
    """Metadata of one vault entry (the encrypted blob lives in its own file)."""

    name: str
    kind: VaultEntryKind
    created_at: datetime
    last_rotated: datetime
    key_iterations: int = 0


_entries_adapter = TypeAdapter(list[VaultEntry])


class VaultIndex:
    """In-process entry table with per-name mutual exclusion.

    When path is None the table is memory-only (nothing is persisted).
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path
        self._entries: dict[str, VaultEntry] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, name: str) -> asyncio.Lock:
        """Get the lock serializing operations on one entry name."""
        lock = self._locks.get(name)
        if lock is None:
            lock = self._locks[name] = asyncio.Lock()
        return lock

    def load(self) -> None:
        """Load persisted metadata; a corrupt index is logged and ignored."""
        if self._path is None or not self._path.exists():
            return
        try:
            entries = _entries_adapter.validate_json(self._path.read_bytes())
        except ValidationError as e:
            logger.error(
                "vault_index_corrupt",
                extra={"path": str(self._path), "error": str(e)},
            )
            return
        self._entries = {entry.name: entry for entry in entries}

    def reconcile(self, blobs: dict[str, tuple[VaultEntryKind, Path]]) -> None:
        """Align the table with the blob files actually present on disk.

        Entries without a file are dropped; files without an entry get metadata
        synthesized from the file's modification time.
        """
        changed = False
        for name in list(self._entries):
            if name not in blobs:
                del self._entries[name]
                changed = True
                logger.warning("vault_index_entry_dropped", extra={"entry_name": name})

        for name, (kind, path) in blobs.items():
            if name in self._entries:
                continue
            mtime = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
            self._entries[name] = VaultEntry(
                name=name, kind=kind, created_at=mtime, last_rotated=mtime
            )
            changed = True
            logger.warning("vault_index_entry_recovered", extra={"entry_name": name})

        if changed:
            self._persist()

    def get(self, name: str) -> VaultEntry | None:
        return self._entries.get(name)

    def put(self, entry: VaultEntry) -> None:
        self._entries[entry.name] = entry
        self._persist()

    def remove(self, name: str) -> VaultEntry | None:
        entry = self._entries.pop(name, None)
        if entry is not None:
            self._persist()
        return entry

    def entries(self) -> list[VaultEntry]:
        """Snapshot of all entries, ordered by name."""
        return [self._entries[name].model_copy() for name in sorted(self._entries)]

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def _persist(self) -> None:
        if self._path is None:
            return
        write_private_file(self._path, _entries_adapter.dump_json(list(self._entries.values())))
