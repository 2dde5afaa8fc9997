"""
Basic file-system utilities shared by the storage layer.

Provides helpers for creating parent directories, translating image URIs
to paths, atomic byte writes and idempotent deletes.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path

from fieldcapture.core.config import FILE_URI_PREFIX


def ensure_parent(path: str | Path) -> None:
    """
    Ensure that the parent directory for the given path exists.

    Creates all missing parents with `exist_ok=True` and does not
    touch the file itself.

    Args:
      path: Target file path whose parent should be created.
    """
    path_obj = Path(path)
    path_obj.parent.mkdir(parents=True, exist_ok=True)


def to_path(uri: str | Path) -> Path:
    """
    Turn an image reference into a filesystem path.

    Camera sources hand out either plain paths or `file://` URIs; both
    refer to the same file.

    Args:
      uri: Path or `file://` URI.

    Returns:
      The path with any `file://` prefix removed.
    """
    text = str(uri)
    if text.startswith(FILE_URI_PREFIX):
        text = text[len(FILE_URI_PREFIX):]
    return Path(text)


def copy_file(src: str | Path, dst: str | Path) -> Path:
    """
    Copy a single file from `src` to `dst`.

    Ensures the parent of `dst` exists before invoking `shutil` and
    returns the destination as a `Path` object.

    Args:
      src: Existing file path (or file:// URI) to copy from.
      dst: Destination file path (or file:// URI) to copy to.

    Returns:
      The destination path as a `Path` instance.
    """
    dst_path = to_path(dst)
    ensure_parent(dst_path)
    shutil.copyfile(str(to_path(src)), str(dst_path))
    return dst_path


def delete_file(path: str | Path) -> bool:
    """
    Delete a file if it exists.

    Args:
      path: File path (or file:// URI) to remove.

    Returns:
      True if a file was removed, False if there was nothing to remove.
    """
    try:
        to_path(path).unlink()
        return True
    except FileNotFoundError:
        return False


def write_bytes_atomic(path: str | Path, data: bytes) -> None:
    """
    Write bytes so readers see either the old or the new content.

    Writes to a temporary file in the same directory, then swaps it in
    with `os.replace`.

    Args:
      path: Destination file path.
      data: Payload to persist.
    """
    path_obj = Path(path)
    ensure_parent(path_obj)
    fd, tmp_name = tempfile.mkstemp(dir=str(path_obj.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_name, path_obj)
    except BaseException:
        delete_file(tmp_name)
        raise
