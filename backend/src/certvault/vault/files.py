"""Owner-restricted file writes for vault material.

Files are created with their final restrictive mode by os.open, so no byte is
ever readable by other users, then moved into place with os.replace (or
os.link when the target must not already exist).
"""

import os
import secrets
from pathlib import Path

DIR_MODE = 0o700
ENTRY_MODE = 0o600
READ_ONLY_MODE = 0o400


def ensure_private_dir(path: Path) -> None:
    """Create path (and parents) and force owner-only permissions on it."""
    path.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
    os.chmod(path, DIR_MODE)


def write_private_file(
    path: Path, data: bytes, mode: int = ENTRY_MODE, exclusive: bool = False
) -> None:
    """Write data to path atomically with the given permissions.

    Args:
        path: Final file location.
        data: File content.
        mode: Permission bits applied at creation.
        exclusive: Fail with FileExistsError instead of replacing an existing file.
    """
    tmp = path.with_name(f".{path.name}.{secrets.token_hex(4)}.tmp")
    fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_EXCL, mode)
    try:
        with os.fdopen(fd, "wb") as f:
            os.fchmod(f.fileno(), mode)  # umask may have narrowed the creation mode
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if exclusive:
            os.link(tmp, path)
            tmp.unlink()
        else:
            os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
