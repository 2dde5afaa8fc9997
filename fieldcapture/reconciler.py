"""
SessionReconciler: the single owner of one capture session's working state.

Turns noisy recognizer output into a deduplicated, user-editable candidate
list and merges the user's selection into the accepted values on save.
Every public operation returns a status value; recognizer, capture and
storage failures never propagate to the caller. Cancelling a pending
``analyze()`` restores the prior state and re-raises.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Iterable, Optional, Sequence, Union

from fieldcapture.clients.interfaces import (
    ImageSource,
    RecognizerCapabilities,
    TextRecognizer,
)
from fieldcapture.core.exceptions import BaseError, PersistenceError
from fieldcapture.core.settings import recognition_settings
from fieldcapture.errors.codes import ErrorCode
from fieldcapture.models.dto import (
    Bounds,
    Candidate,
    CandidateKind,
    RecognizedLine,
    SavedSession,
    SessionSnapshot,
)
from fieldcapture.models.views import CandidateView, SessionView
from fieldcapture.processors.candidate_filter import is_plausible
from fieldcapture.processors.dedup_index import matches_any, pick_corroborating_line
from fieldcapture.processors.normalizer import normalize
from fieldcapture.session import (
    AnalysisResult,
    BarcodeOutcome,
    CaptureResult,
    OperationResult,
    SaveResult,
    Session,
    SessionState,
)
from fieldcapture.storage.persistence import SessionRepository

logger = logging.getLogger(__name__)

# plain callables run inline; coroutine functions are scheduled on the
# running loop so a slow export never holds up save()
SaveListener = Callable[[str, list[str]], Union[None, Awaitable[None]]]


def _line_parts(line: RecognizedLine | str) -> tuple[str, Optional[Bounds]]:
    if isinstance(line, RecognizedLine):
        return line.text, line.bounds
    return str(line), None


class SessionReconciler:
    """Applies capture, analysis, curation and save operations to a Session.

    Args:
        repository: Where saved sessions are committed
        recognizer: Text recognizer; may be None when the runtime has none
        capabilities: Capability descriptor resolved once at startup
        session: Existing working copy (see ``resume``); a fresh one if omitted
        listeners: Called with (session_id, new_values) after a save that
            accepted new values has been committed
        recognizer_timeout: Seconds before a recognizer call is abandoned
    """

    def __init__(
        self,
        repository: SessionRepository,
        recognizer: Optional[TextRecognizer] = None,
        capabilities: Optional[RecognizerCapabilities] = None,
        session: Optional[Session] = None,
        listeners: Iterable[SaveListener] = (),
        recognizer_timeout: Optional[float] = None,
    ):
        self.repository = repository
        self.recognizer = recognizer
        self.capabilities = capabilities or RecognizerCapabilities(
            text_recognition=recognizer is not None
        )
        self.session = session or Session()
        self.listeners: list[SaveListener] = list(listeners)
        self._listener_tasks: set[asyncio.Task] = set()
        self.recognizer_timeout = (
            recognizer_timeout
            if recognizer_timeout is not None
            else recognition_settings.RECOGNIZER_TIMEOUT_SECONDS
        )

    @classmethod
    def resume(
        cls, saved: SavedSession, repository: SessionRepository, **kwargs
    ) -> "SessionReconciler":
        """Reopen a saved session; later saves update it in place."""
        if saved.image_uri is None:
            state = SessionState.IDLE
        else:
            state = SessionState.ANALYZED
        session = Session(
            id=saved.id,
            image_uri=saved.image_uri,
            detected_entries=[c.model_copy() for c in saved.detected_entries],
            accepted_values=list(saved.accepted_values),
            corroborating_texts=dict(saved.corroborating_texts),
            created_at=saved.created_at,
            state=state,
        )
        return cls(repository=repository, session=session, **kwargs)

    def add_listener(self, listener: SaveListener) -> None:
        self.listeners.append(listener)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _log_extra(self, **extra) -> dict:
        return {
            "session_id": self.session.id,
            "generation": self.session.generation,
            "state": self.session.state.value,
            **extra,
        }

    @property
    def barcode_capable(self) -> bool:
        """Accepted values are compared strictly once barcodes are in play."""
        return self.capabilities.barcode_scanning or any(
            c.is_barcode for c in self.session.detected_entries
        )

    def _accepted_items(self) -> list[Candidate | str]:
        """Accepted values as match targets.

        A value accepted from a corroborated barcode keeps matching its
        corroborating line even after the barcode candidate was cleared.
        """
        corroboration = self.session.corroborating_texts
        items: list[Candidate | str] = []
        for value in self.session.accepted_values:
            secondary = corroboration.get(value)
            if secondary:
                items.append(
                    Candidate(
                        raw_text=value,
                        secondary_text=secondary,
                        kind=CandidateKind.BARCODE,
                    )
                )
            else:
                items.append(value)
        return items

    def is_already_accepted(self, candidate: Candidate) -> bool:
        return matches_any(
            candidate,
            self._accepted_items(),
            strict_plain_values=self.barcode_capable,
        )

    def _is_known(self, candidate: Candidate) -> bool:
        session = self.session
        return matches_any(
            candidate,
            [*session.detected_entries, *self._accepted_items()],
            strict_plain_values=self.barcode_capable,
            exclude=candidate,
        )

    def _find(self, key: str) -> Optional[Candidate]:
        wanted = normalize(key)
        if not wanted:
            return None
        for candidate in self.session.detected_entries:
            if normalize(candidate.raw_text) == wanted:
                return candidate
        return None

    def _fail(self, code: str, result_cls=OperationResult, **fields):
        spec = ErrorCode.get_spec(code)
        if spec.is_error:
            self.session.last_error = spec
        return result_cls(ok=False, code=code, **fields)

    # ------------------------------------------------------------------
    # capture
    # ------------------------------------------------------------------

    def capture(self, image_uri: str) -> CaptureResult:
        """Start working on a new photo; discards current candidates."""
        session = self.session
        if session.state is SessionState.ANALYZING:
            logger.info("Capture rejected while analyzing", extra=self._log_extra())
            return CaptureResult(ok=False, code="ANALYSIS_IN_PROGRESS")

        session.image_uri = image_uri
        session.detected_entries.clear()
        session.last_error = None
        session.bump_generation()
        session.state = SessionState.CAPTURED_UNANALYZED
        logger.info("Photo captured", extra=self._log_extra())
        return CaptureResult(ok=True, image_uri=image_uri)

    async def capture_from(self, source: ImageSource) -> CaptureResult:
        """Ask the image source for a photo, then ``capture`` it."""
        if self.session.state is SessionState.ANALYZING:
            return CaptureResult(ok=False, code="ANALYSIS_IN_PROGRESS")
        try:
            image_uri = await source.capture_photo()
        except Exception as exc:
            logger.warning(
                f"Photo capture failed: {type(exc).__name__}: {exc}",
                extra=self._log_extra(error_code="CAPTURE_FAILED"),
            )
            return self._fail("CAPTURE_FAILED", CaptureResult)
        return self.capture(image_uri)

    def retake(self) -> OperationResult:
        """Drop the photo and its candidates; accepted values stay."""
        session = self.session
        session.image_uri = None
        session.detected_entries.clear()
        session.last_error = None
        session.bump_generation()
        session.state = SessionState.IDLE
        logger.info("Photo discarded", extra=self._log_extra())
        return OperationResult(ok=True)

    # ------------------------------------------------------------------
    # analysis
    # ------------------------------------------------------------------

    async def analyze(self) -> AnalysisResult:
        """Run the recognizer on the current photo and merge new candidates.

        Returns:
            AnalysisResult: ``added`` holds the new candidates. ``code`` is
            NOTHING_NEW when the pass found nothing new (still ok), or
            the failure code. STALE_RESULT means the photo changed while
            the recognizer was running and nothing was applied.
        """
        session = self.session
        if session.state is SessionState.ANALYZING:
            return AnalysisResult(ok=False, code="ANALYSIS_IN_PROGRESS")
        if session.image_uri is None:
            return AnalysisResult(ok=False, code="NO_IMAGE")
        if not self.capabilities.text_recognition or self.recognizer is None:
            session.state = SessionState.ANALYZED
            logger.warning(
                "Text recognition unavailable",
                extra=self._log_extra(error_code="RECOGNIZER_UNAVAILABLE"),
            )
            return self._fail(
                "RECOGNIZER_UNAVAILABLE", AnalysisResult, generation=session.generation
            )

        generation = session.generation
        image_uri = session.image_uri
        resume_state = session.state
        session.state = SessionState.ANALYZING
        session.last_error = None
        logger.info("Analysis started", extra=self._log_extra())

        try:
            lines = await asyncio.wait_for(
                self.recognizer.recognize_text(image_uri),
                timeout=self.recognizer_timeout,
            )
            code = None
        except asyncio.CancelledError:
            if generation == session.generation and session.state is SessionState.ANALYZING:
                session.state = resume_state
            logger.info("Analysis cancelled", extra=self._log_extra())
            raise
        except asyncio.TimeoutError:
            lines, code = (), "RECOGNITION_TIMEOUT"
        except BaseError as exc:
            lines, code = (), exc.error_code
        except Exception as exc:
            lines, code = (), "RECOGNITION_FAILED"
            logger.warning(
                f"Recognizer failed: {type(exc).__name__}: {exc}",
                exc_info=True,
                extra=self._log_extra(error_code=code),
            )

        if generation != session.generation:
            logger.info(
                f"Dropping analysis result of generation {generation}",
                extra=self._log_extra(error_code="STALE_RESULT"),
            )
            return AnalysisResult(ok=False, code="STALE_RESULT", generation=generation)

        session.state = SessionState.ANALYZED
        if code is not None:
            logger.warning("Analysis failed", extra=self._log_extra(error_code=code))
            return self._fail(code, AnalysisResult, generation=generation)

        added = self._merge_lines(lines)
        logger.info(
            "Analysis finished",
            extra=self._log_extra(candidate_count=len(added)),
        )
        if not added:
            return AnalysisResult(ok=True, code="NOTHING_NEW", generation=generation)
        return AnalysisResult(ok=True, added=tuple(added), generation=generation)

    def _merge_lines(self, lines: Sequence[RecognizedLine | str]) -> list[Candidate]:
        added: list[Candidate] = []
        for line in lines:
            text, bounds = _line_parts(line)
            if not is_plausible(text):
                logger.debug(f"Dropped implausible line {text!r}")
                continue
            candidate = Candidate(raw_text=text.strip(), bounds=bounds, selected=True)
            if self._is_known(candidate):
                logger.debug(f"Dropped duplicate line {text!r}")
                continue
            self.session.detected_entries.append(candidate)
            added.append(candidate)
        return added

    def reanalyze(self) -> OperationResult:
        """Forget this photo's candidates so it can be analyzed afresh."""
        session = self.session
        if session.image_uri is None:
            return OperationResult(ok=False, code="INVALID_STATE")
        session.detected_entries.clear()
        session.last_error = None
        session.bump_generation()
        session.state = SessionState.CAPTURED_UNANALYZED
        logger.info("Candidates reset for reanalysis", extra=self._log_extra())
        return OperationResult(ok=True)

    # ------------------------------------------------------------------
    # live barcodes
    # ------------------------------------------------------------------

    def add_barcode(
        self,
        payload: str,
        symbology: str,
        bounds: Optional[Bounds] = None,
        nearby_lines: Sequence[str] = (),
    ) -> BarcodeOutcome:
        """Merge one live barcode detection into the candidate list."""
        if not self.capabilities.barcode_scanning:
            return BarcodeOutcome.REJECTED
        if not (payload or "").strip():
            return BarcodeOutcome.REJECTED

        candidate = Candidate(
            raw_text=payload,
            secondary_text=pick_corroborating_line(payload, nearby_lines),
            kind=CandidateKind.BARCODE,
            symbology=symbology,
            bounds=bounds,
            selected=True,
        )
        if self._is_known(candidate):
            logger.debug(
                "Barcode already scanned",
                extra=self._log_extra(payload=payload, symbology=symbology),
            )
            return BarcodeOutcome.ALREADY_SCANNED

        self.session.detected_entries.append(candidate)
        logger.info(
            "Barcode added", extra=self._log_extra(payload=payload, symbology=symbology)
        )
        return BarcodeOutcome.ADDED

    # ------------------------------------------------------------------
    # curation
    # ------------------------------------------------------------------

    def toggle_selection(self, key: str) -> bool:
        """Flip a candidate's selection. Accepted candidates are read-only.

        Returns:
            True if a selection changed
        """
        candidate = self._find(key)
        if candidate is None or self.is_already_accepted(candidate):
            return False
        candidate.selected = not candidate.selected
        return True

    def edit_text(self, old_key: str, new_text: str) -> bool:
        """Rewrite a candidate's text in place.

        The new text is not checked against other candidates; save-time
        deduplication is what keeps accepted values unique.

        Returns:
            True if a candidate was changed
        """
        candidate = self._find(old_key)
        if candidate is None or not normalize(new_text):
            return False
        candidate.raw_text = new_text.strip()
        return True

    def clear(self) -> OperationResult:
        """Empty the candidate list; accepted values are kept."""
        self.session.detected_entries.clear()
        return OperationResult(ok=True)

    def dismiss_error(self) -> None:
        self.session.last_error = None

    # ------------------------------------------------------------------
    # save
    # ------------------------------------------------------------------

    def save(self) -> SaveResult:
        """Accept the selected candidates and commit the session.

        Selected candidates that are not already accepted are appended to
        the accepted values in detected order. The session is committed
        unless it is completely empty. Listeners get the new values once
        the commit succeeds; values accepted while storage was failing are
        delivered with the next successful commit.
        """
        session = self.session
        strict = self.barcode_capable
        new_values: list[str] = []
        for candidate in session.detected_entries:
            if not candidate.selected or not normalize(candidate.raw_text):
                continue
            if matches_any(candidate, self._accepted_items(), strict_plain_values=strict):
                continue
            session.accepted_values.append(candidate.raw_text)
            if candidate.is_barcode and candidate.secondary_text:
                session.corroborating_texts[candidate.raw_text] = candidate.secondary_text
            new_values.append(candidate.raw_text)

        session.unnotified_values.extend(new_values)

        if not session.accepted_values and not session.detected_entries:
            logger.debug("Nothing to save", extra=self._log_extra())
            return SaveResult(ok=True, session_id=session.id)

        snapshot = SessionSnapshot(
            image_uri=session.image_uri,
            detected_entries=tuple(c.model_copy() for c in session.detected_entries),
            accepted_values=tuple(session.accepted_values),
            corroborating_texts=dict(session.corroborating_texts),
        )
        try:
            stored = self.repository.commit_session(
                snapshot, existing_session_id=session.id
            )
        except PersistenceError as exc:
            logger.error(
                f"Save failed: {exc.details.get('detail')}",
                extra=self._log_extra(error_code=exc.error_code),
            )
            return self._fail(
                exc.error_code,
                SaveResult,
                new_values=tuple(new_values),
                session_id=session.id,
            )

        session.id = stored.id
        session.created_at = stored.created_at
        session.last_error = None
        logger.info(
            "Session saved", extra=self._log_extra(candidate_count=len(new_values))
        )

        self._notify(stored.id)
        return SaveResult(
            ok=True,
            new_values=tuple(new_values),
            session_id=stored.id,
            committed=True,
        )

    def _notify(self, session_id: str) -> None:
        pending = list(self.session.unnotified_values)
        self.session.unnotified_values.clear()
        if not pending:
            return
        for listener in self.listeners:
            try:
                outcome = listener(session_id, list(pending))
                if inspect.isawaitable(outcome):
                    self._schedule_listener(outcome)
            except Exception:
                logger.exception(
                    "Save listener failed", extra=self._log_extra(error_code="EXPORT_FAILED")
                )

    def _schedule_listener(self, awaitable: Awaitable[None]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no loop to hand the work to; run it here
            asyncio.run(self._run_listener(awaitable))
            return
        task = loop.create_task(self._run_listener(awaitable))
        self._listener_tasks.add(task)
        task.add_done_callback(self._listener_tasks.discard)

    async def _run_listener(self, awaitable: Awaitable[None]) -> None:
        try:
            await awaitable
        except Exception:
            logger.exception(
                "Save listener failed", extra=self._log_extra(error_code="EXPORT_FAILED")
            )

    async def wait_for_listeners(self) -> None:
        """Wait for scheduled async listeners, e.g. before shutdown."""
        while self._listener_tasks:
            await asyncio.gather(*list(self._listener_tasks))

    # ------------------------------------------------------------------
    # read model
    # ------------------------------------------------------------------

    def view(self) -> SessionView:
        session = self.session
        entries = []
        for candidate in session.detected_entries:
            entries.append(
                CandidateView(
                    text=candidate.raw_text,
                    kind=candidate.kind,
                    symbology=candidate.symbology,
                    secondary_text=candidate.secondary_text,
                    bounds=candidate.bounds,
                    selected=candidate.selected,
                    already_saved=self.is_already_accepted(candidate),
                )
            )
        selected_count = sum(1 for e in entries if e.selected and not e.already_saved)
        last_error = session.last_error
        return SessionView(
            session_id=session.id,
            state=session.state.value,
            image_uri=session.image_uri,
            entries=entries,
            accepted_values=list(session.accepted_values),
            detected_count=len(entries),
            accepted_count=len(session.accepted_values),
            selected_count=selected_count,
            has_new_to_save=selected_count > 0,
            last_error_code=last_error.code if last_error else None,
            last_error_message=last_error.message if last_error else None,
        )
