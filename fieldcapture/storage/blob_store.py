"""
Key-value blob stores holding the session index.
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from fieldcapture.utils.io_utils import write_bytes_atomic

logger = logging.getLogger(__name__)


@runtime_checkable
class BlobStore(Protocol):
    def get(self, key: str) -> Optional[bytes]: ...

    def set(self, key: str, value: bytes) -> None: ...


class InMemoryBlobStore:
    """Process-local blob store, for tests and ephemeral sessions."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}

    def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)


class FileBlobStore:
    """One file per key under a root directory.

    Keys are hashed into file names so any string (including the
    "@app_key" style index key) is a safe key. Writes are atomic.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        logger.info(f"FileBlobStore initialized. root={self.root}")

    def _path_for(self, key: str) -> Path:
        digest = hashlib.sha1(key.encode("utf-8")).hexdigest()
        return self.root / f"{digest}.blob"

    def get(self, key: str) -> Optional[bytes]:
        path = self._path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def set(self, key: str, value: bytes) -> None:
        write_bytes_atomic(self._path_for(key), value)
