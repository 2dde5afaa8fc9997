"""
File store holding the captured images of saved sessions.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from fieldcapture.utils.io_utils import copy_file, delete_file, to_path


@runtime_checkable
class FileStore(Protocol):
    def copy(self, src: str, dst: str) -> None: ...

    def delete(self, path: str) -> None: ...

    def ensure_dir(self, path: str) -> None: ...


class LocalFileStore:
    """FileStore on the local filesystem.

    Accepts plain paths and file:// URIs. Deleting a missing file is not
    an error.
    """

    def copy(self, src: str, dst: str) -> None:
        copy_file(src, dst)

    def delete(self, path: str) -> None:
        delete_file(path)

    def ensure_dir(self, path: str) -> None:
        to_path(path).mkdir(parents=True, exist_ok=True)
