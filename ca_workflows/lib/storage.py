"""Filesystem primitives: atomic placement, owner-only dirs and the CA lock."""

import fcntl
import os
import tempfile
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path


def write_atomic(path: Path, data: bytes, mode: int = 0o644) -> Path:
    """Write data to a temp file beside path, then rename it into place.

    An interrupted write never leaves a partial file under the final name.

    Args:
        path: Final destination
        data: File content
        mode: Permission bits applied before the rename

    Returns:
        The destination path
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    finally:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
    return path


def write_text_atomic(path: Path, text: str, mode: int = 0o644) -> Path:
    return write_atomic(path, text.encode("utf-8"), mode)


def ensure_private_dir(path: Path) -> Path:
    """Create directory readable by owner only."""
    path.mkdir(parents=True, exist_ok=True)
    os.chmod(path, 0o700)
    return path


@contextmanager
def file_lock(lock_path: Path, timeout: float = 30.0) -> Iterator[None]:
    """Hold an exclusive flock on lock_path.

    Each call opens its own file description, so threads in one process
    exclude each other as well as separate processes.

    Raises:
        TimeoutError: If the lock is not acquired within timeout seconds
    """
    start = time.monotonic()
    with open(lock_path, "a+") as f:
        while True:
            try:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() - start > timeout:
                    raise TimeoutError(f"failed to acquire lock: {lock_path}") from None
                time.sleep(0.05)
        try:
            yield
        finally:
            fcntl.flock(f.fileno(), fcntl.LOCK_UN)
