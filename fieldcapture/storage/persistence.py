"""
SessionRepository: durable storage for saved capture sessions.

Images go to the file store under ``<storage_dir>/scans``. Metadata for all
sessions is one JSON collection under a single blob-store key, newest first.

Commit ordering keeps the index consistent: the image is written to a fresh
file first, then the index is replaced in one ``set``; the index write is
the commit point. If it fails, the fresh image is removed and the previous
state is untouched. A superseded image is deleted only after the new index
is stored.
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from pydantic import TypeAdapter, ValidationError

from fieldcapture.core.config import IMAGE_EXTENSION, SCANS_DIR_NAME
from fieldcapture.core.exceptions import PersistenceError
from fieldcapture.core.settings import app_settings
from fieldcapture.models.dto import SavedSession, SessionSnapshot
from fieldcapture.processors.dedup_index import dedupe_values
from fieldcapture.storage.blob_store import BlobStore, FileBlobStore
from fieldcapture.storage.file_store import FileStore, LocalFileStore
from fieldcapture.utils.io_utils import to_path

logger = logging.getLogger(__name__)

_INDEX = TypeAdapter(list[SavedSession])


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _generate_session_id(now: datetime) -> str:
    return f"{int(now.timestamp() * 1000)}-{uuid.uuid4().hex[:8]}"


class SessionRepository:
    """Commit, list and delete saved sessions."""

    def __init__(
        self,
        blob_store: BlobStore,
        file_store: FileStore,
        storage_dir: str | Path,
        index_key: Optional[str] = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.blob_store = blob_store
        self.file_store = file_store
        self.storage_dir = Path(storage_dir)
        self.scans_dir = self.storage_dir / SCANS_DIR_NAME
        self.index_key = index_key or app_settings.FIELDCAPTURE_INDEX_KEY
        self._clock = clock

    # ------------------------------------------------------------------
    # index
    # ------------------------------------------------------------------

    def _load_index(self) -> list[SavedSession]:
        try:
            raw = self.blob_store.get(self.index_key)
        except Exception as exc:
            raise PersistenceError("load", str(exc))
        if not raw:
            return []
        try:
            return _INDEX.validate_json(raw)
        except ValidationError:
            logger.warning(
                f"Saved session index under {self.index_key!r} is unreadable; "
                "treating it as empty",
                exc_info=True,
            )
            return []

    def _write_index(self, sessions: list[SavedSession]) -> None:
        self.blob_store.set(self.index_key, _INDEX.dump_json(sessions))

    def list_sessions(self) -> list[SavedSession]:
        """All saved sessions, most recently saved first."""
        return self._load_index()

    def get(self, session_id: str) -> Optional[SavedSession]:
        for saved in self._load_index():
            if saved.id == session_id:
                return saved
        return None

    # ------------------------------------------------------------------
    # commit
    # ------------------------------------------------------------------

    def _image_path(self, session_id: str, revision: Optional[str] = None) -> str:
        name = session_id if revision is None else f"{session_id}-{revision}"
        return str(self.scans_dir / f"{name}{IMAGE_EXTENSION}")

    def commit(
        self, snapshot: SessionSnapshot, existing_session_id: Optional[str] = None
    ) -> str:
        """Persist a session snapshot and return its id. See ``commit_session``."""
        return self.commit_session(snapshot, existing_session_id).id

    def commit_session(
        self, snapshot: SessionSnapshot, existing_session_id: Optional[str] = None
    ) -> SavedSession:
        """Persist a session snapshot.

        Args:
            snapshot: Image reference plus detected and accepted values
            existing_session_id: Update that session in place instead of
                creating a new one

        Returns:
            The stored record; its id is unchanged for updates

        Raises:
            PersistenceError: If the image copy or the index write fails.
                Nothing is left half-written in the index.
        """
        started = time.perf_counter()
        sessions = self._load_index()
        now = self._clock()

        previous: Optional[SavedSession] = None
        if existing_session_id is not None:
            previous = next((s for s in sessions if s.id == existing_session_id), None)
            if previous is None:
                logger.warning(
                    "Updating a session that is no longer in the index; recreating it",
                    extra={"session_id": existing_session_id},
                )
        session_id = existing_session_id or _generate_session_id(now)

        new_image: Optional[str] = None
        if snapshot.image_uri is None:
            # barcode-only sessions have no photo; keep whatever is stored
            image_uri = previous.image_uri if previous is not None else None
        elif previous is not None and previous.image_uri is not None and (
            to_path(previous.image_uri) == to_path(snapshot.image_uri)
        ):
            image_uri = previous.image_uri
        else:
            revision = None if previous is None else uuid.uuid4().hex[:8]
            image_uri = self._image_path(session_id, revision)
            try:
                self.file_store.ensure_dir(str(self.scans_dir))
                self.file_store.copy(snapshot.image_uri, image_uri)
            except Exception as exc:
                self._discard(image_uri)
                raise PersistenceError(
                    "commit", f"image copy failed: {exc}", details={"session_id": session_id}
                )
            new_image = image_uri

        accepted_values = dedupe_values(snapshot.accepted_values)
        record = SavedSession(
            id=session_id,
            image_uri=image_uri,
            detected_entries=[c.model_copy() for c in snapshot.detected_entries],
            accepted_values=accepted_values,
            corroborating_texts={
                value: text
                for value, text in snapshot.corroborating_texts.items()
                if value in accepted_values
            },
            created_at=previous.created_at if previous is not None else now,
        )
        remaining = [s for s in sessions if s.id != session_id]

        try:
            self._write_index([record, *remaining])
        except Exception as exc:
            if new_image is not None:
                self._discard(new_image)
            raise PersistenceError(
                "commit", f"index write failed: {exc}", details={"session_id": session_id}
            )

        if previous is not None and new_image is not None:
            self._discard(previous.image_uri)

        logger.info(
            f"Session {'updated' if previous is not None else 'created'}",
            extra={
                "session_id": session_id,
                "candidate_count": len(record.accepted_values),
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        return record

    # ------------------------------------------------------------------
    # delete
    # ------------------------------------------------------------------

    def delete(self, session_id: str) -> None:
        """Remove a session's image and record. Unknown ids are ignored."""
        sessions = self._load_index()
        target = next((s for s in sessions if s.id == session_id), None)
        if target is None:
            logger.debug("Delete of unknown session ignored", extra={"session_id": session_id})
            return

        try:
            self._write_index([s for s in sessions if s.id != session_id])
        except Exception as exc:
            raise PersistenceError("delete", str(exc), details={"session_id": session_id})

        self._discard(target.image_uri)
        logger.info("Session deleted", extra={"session_id": session_id})

    def _discard(self, path: Optional[str]) -> None:
        if not path:
            return
        try:
            self.file_store.delete(path)
        except Exception:
            logger.warning(f"Could not remove image {path}", exc_info=True)


def create_repository_from_settings() -> SessionRepository:
    """Factory: file-backed repository rooted at FIELDCAPTURE_STORAGE_DIR.

    Returns:
        SessionRepository: Repository using the local filesystem
    """
    storage_dir = app_settings.storage_dir
    return SessionRepository(
        blob_store=FileBlobStore(storage_dir / "index"),
        file_store=LocalFileStore(),
        storage_dir=storage_dir,
        index_key=app_settings.FIELDCAPTURE_INDEX_KEY,
    )
