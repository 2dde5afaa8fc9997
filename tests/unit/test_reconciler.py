"""Unit tests for the session reconciler."""

import asyncio

import pytest

from fieldcapture.clients.interfaces import RecognizerCapabilities
from fieldcapture.core.exceptions import RecognitionError
from fieldcapture.models.dto import RecognizedLine
from fieldcapture.reconciler import SessionReconciler
from fieldcapture.session import BarcodeOutcome, SessionState
from fieldcapture.storage.blob_store import InMemoryBlobStore
from fieldcapture.storage.file_store import LocalFileStore
from fieldcapture.storage.persistence import SessionRepository


class FakeRecognizer:
    """Returns the configured lines, or raises the configured error."""

    def __init__(self, lines=(), error=None, delay=0.0):
        self.lines = list(lines)
        self.error = error
        self.delay = delay
        self.calls = 0

    async def recognize_text(self, image_uri):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return [RecognizedLine(text=line) for line in self.lines]


class GatedRecognizer:
    """Blocks inside recognize_text until released."""

    def __init__(self, lines=()):
        self.lines = list(lines)
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def recognize_text(self, image_uri):
        self.started.set()
        await self.release.wait()
        return [RecognizedLine(text=line) for line in self.lines]


class FakeImageSource:
    def __init__(self, uri=None, error=None):
        self.uri = uri
        self.error = error

    async def capture_photo(self):
        if self.error is not None:
            raise self.error
        return self.uri


class FlakyBlobStore(InMemoryBlobStore):
    """In-memory blob store whose writes can be switched off.

    ``reads_left`` limits how many reads succeed; None means no limit.
    """

    def __init__(self):
        super().__init__()
        self.fail_writes = False
        self.reads_left = None

    def get(self, key):
        if self.reads_left is not None:
            if self.reads_left == 0:
                raise OSError("storage unavailable")
            self.reads_left -= 1
        return super().get(key)

    def set(self, key, value):
        if self.fail_writes:
            raise OSError("disk full")
        super().set(key, value)


BARCODE_CAPS = RecognizerCapabilities(text_recognition=True, barcode_scanning=True)


@pytest.fixture
def blob_store():
    return FlakyBlobStore()


@pytest.fixture
def repository(tmp_path, blob_store):
    return SessionRepository(blob_store, LocalFileStore(), tmp_path / "store")


@pytest.fixture
def photo(tmp_path):
    path = tmp_path / "photo.jpg"
    path.write_bytes(b"\xff\xd8\xff\xe0 fake jpeg")
    return str(path)


def make_reconciler(repository, lines=(), **kwargs):
    recognizer = FakeRecognizer(lines)
    return SessionReconciler(repository, recognizer=recognizer, **kwargs), recognizer


def texts(reconciler):
    return [c.raw_text for c in reconciler.session.detected_entries]


class TestCapture:
    """Tests for capture, capture_from and retake."""

    @pytest.mark.asyncio
    async def test_capture_resets_candidates_keeps_accepted(self, repository, photo):
        """Test a new photo discards candidates but never accepted values."""
        rec, _ = make_reconciler(repository, ["AAA111", "BBB222"])
        rec.capture(photo)
        await rec.analyze()
        rec.save()
        generation = rec.session.generation

        result = rec.capture(photo)

        assert result.ok
        assert rec.session.detected_entries == []
        assert rec.session.accepted_values == ["AAA111", "BBB222"]
        assert rec.session.state is SessionState.CAPTURED_UNANALYZED
        assert rec.session.generation == generation + 1

    @pytest.mark.asyncio
    async def test_capture_from_source(self, repository, photo):
        """Test a photo from the image source is captured."""
        rec, _ = make_reconciler(repository)
        result = await rec.capture_from(FakeImageSource(uri=photo))
        assert result.ok
        assert result.image_uri == photo
        assert rec.session.image_uri == photo

    @pytest.mark.asyncio
    async def test_capture_from_failure_leaves_state(self, repository, photo):
        """Test a failing image source is reported and changes nothing."""
        rec, _ = make_reconciler(repository)
        rec.capture(photo)
        result = await rec.capture_from(FakeImageSource(error=RuntimeError("busy")))

        assert not result.ok
        assert result.code == "CAPTURE_FAILED"
        assert rec.session.image_uri == photo
        assert rec.session.state is SessionState.CAPTURED_UNANALYZED
        assert rec.view().last_error_code == "CAPTURE_FAILED"

    @pytest.mark.asyncio
    async def test_retake_goes_idle(self, repository, photo):
        """Test retake drops the photo and candidates."""
        rec, _ = make_reconciler(repository, ["AAA111"])
        rec.capture(photo)
        await rec.analyze()

        rec.retake()

        assert rec.session.state is SessionState.IDLE
        assert rec.session.image_uri is None
        assert rec.session.detected_entries == []


class TestAnalyze:
    """Tests for analysis passes and their failure modes."""

    @pytest.mark.asyncio
    async def test_filters_and_dedups_recognizer_output(self, repository, photo):
        """Test labels, noise and repeats collapse to one selected candidate."""
        rec, _ = make_reconciler(
            repository, ["Serial Number", "XQ-4471", "XQ-4471", "No."]
        )
        rec.capture(photo)

        result = await rec.analyze()

        assert result.ok
        assert result.code is None
        assert [c.raw_text for c in result.added] == ["XQ-4471"]
        assert texts(rec) == ["XQ-4471"]
        assert rec.session.detected_entries[0].selected is True
        assert rec.session.state is SessionState.ANALYZED

    @pytest.mark.asyncio
    async def test_second_pass_reports_nothing_new(self, repository, photo):
        """Test a pass that finds only known values is informational."""
        rec, _ = make_reconciler(repository, ["AAA111"])
        rec.capture(photo)
        await rec.analyze()

        result = await rec.analyze()

        assert result.ok
        assert result.code == "NOTHING_NEW"
        assert rec.session.last_error is None
        assert texts(rec) == ["AAA111"]

    @pytest.mark.asyncio
    async def test_new_lines_appended_in_order(self, repository, photo):
        """Test a later pass appends only the new lines."""
        rec, recognizer = make_reconciler(repository, ["AAA111"])
        rec.capture(photo)
        await rec.analyze()
        recognizer.lines = ["aaa111", "CCC333", "BBB222"]

        result = await rec.analyze()

        assert [c.raw_text for c in result.added] == ["CCC333", "BBB222"]
        assert texts(rec) == ["AAA111", "CCC333", "BBB222"]

    @pytest.mark.asyncio
    async def test_requires_image(self, repository):
        """Test analyze without a photo is rejected."""
        rec, recognizer = make_reconciler(repository, ["AAA111"])
        result = await rec.analyze()
        assert result.code == "NO_IMAGE"
        assert recognizer.calls == 0
        assert rec.session.state is SessionState.IDLE

    @pytest.mark.asyncio
    async def test_recognizer_unavailable(self, repository, photo):
        """Test a missing capability ends in analyzed with an error."""
        rec = SessionReconciler(repository, recognizer=None)
        rec.capture(photo)

        result = await rec.analyze()

        assert not result.ok
        assert result.code == "RECOGNIZER_UNAVAILABLE"
        assert rec.session.state is SessionState.ANALYZED
        assert rec.view().last_error_code == "RECOGNIZER_UNAVAILABLE"

    @pytest.mark.asyncio
    async def test_capability_descriptor_is_respected(self, repository, photo):
        """Test the recognizer is not invoked when the descriptor says no."""
        rec, recognizer = make_reconciler(
            repository, ["AAA111"], capabilities=RecognizerCapabilities.none()
        )
        rec.capture(photo)
        result = await rec.analyze()
        assert result.code == "RECOGNIZER_UNAVAILABLE"
        assert recognizer.calls == 0

    @pytest.mark.asyncio
    async def test_failure_keeps_candidates_and_is_retryable(self, repository, photo):
        """Test a recognizer error is reported and the next pass works."""
        rec, recognizer = make_reconciler(repository, ["AAA111"])
        rec.capture(photo)
        await rec.analyze()

        recognizer.error = RuntimeError("decode error")
        failed = await rec.analyze()

        assert not failed.ok
        assert failed.code == "RECOGNITION_FAILED"
        assert failed.spec.retryable is True
        assert texts(rec) == ["AAA111"]
        assert rec.session.state is SessionState.ANALYZED

        recognizer.error = None
        recognizer.lines = ["BBB222"]
        retried = await rec.analyze()

        assert retried.ok
        assert texts(rec) == ["AAA111", "BBB222"]
        assert rec.session.last_error is None

    @pytest.mark.asyncio
    async def test_recognition_error_code_is_kept(self, repository, photo):
        """Test a typed recognizer error reports its own code."""
        rec, recognizer = make_reconciler(repository)
        recognizer.error = RecognitionError("model not loaded", timeout=True)
        rec.capture(photo)
        result = await rec.analyze()
        assert result.code == "RECOGNITION_TIMEOUT"

    @pytest.mark.asyncio
    async def test_timeout(self, repository, photo):
        """Test a slow recognizer is abandoned after the timeout."""
        rec = SessionReconciler(
            repository,
            recognizer=FakeRecognizer(["AAA111"], delay=1.0),
            recognizer_timeout=0.01,
        )
        rec.capture(photo)

        result = await rec.analyze()

        assert result.code == "RECOGNITION_TIMEOUT"
        assert rec.session.detected_entries == []
        assert rec.session.state is SessionState.ANALYZED

    @pytest.mark.asyncio
    async def test_busy_guard(self, repository, photo):
        """Test a second analyze and a capture are rejected while analyzing."""
        recognizer = GatedRecognizer(["AAA111"])
        rec = SessionReconciler(repository, recognizer=recognizer)
        rec.capture(photo)

        pending = asyncio.create_task(rec.analyze())
        await recognizer.started.wait()

        assert rec.session.state is SessionState.ANALYZING
        assert (await rec.analyze()).code == "ANALYSIS_IN_PROGRESS"
        assert rec.capture(photo).code == "ANALYSIS_IN_PROGRESS"

        recognizer.release.set()
        result = await pending
        assert result.ok
        assert texts(rec) == ["AAA111"]

    @pytest.mark.asyncio
    async def test_stale_result_dropped_after_retake(self, repository, photo):
        """Test a result issued before retake is never applied."""
        recognizer = GatedRecognizer(["AAA111"])
        rec = SessionReconciler(repository, recognizer=recognizer)
        rec.capture(photo)

        pending = asyncio.create_task(rec.analyze())
        await recognizer.started.wait()
        rec.retake()
        recognizer.release.set()
        result = await pending

        assert not result.ok
        assert result.code == "STALE_RESULT"
        assert rec.session.detected_entries == []
        assert rec.session.state is SessionState.IDLE
        assert rec.session.last_error is None

    @pytest.mark.asyncio
    async def test_stale_result_dropped_after_reanalyze(self, repository, photo):
        """Test reanalyze during a pending pass discards its result."""
        recognizer = GatedRecognizer(["AAA111"])
        rec = SessionReconciler(repository, recognizer=recognizer)
        rec.capture(photo)

        pending = asyncio.create_task(rec.analyze())
        await recognizer.started.wait()
        rec.reanalyze()
        recognizer.release.set()
        result = await pending

        assert result.code == "STALE_RESULT"
        assert rec.session.detected_entries == []
        assert rec.session.state is SessionState.CAPTURED_UNANALYZED

    @pytest.mark.asyncio
    async def test_cancelled_analysis_restores_state(self, repository, photo):
        """Test cancelling a pending pass leaves the session usable."""
        recognizer = GatedRecognizer(["AAA111"])
        rec = SessionReconciler(repository, recognizer=recognizer)
        rec.capture(photo)

        pending = asyncio.create_task(rec.analyze())
        await recognizer.started.wait()
        pending.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending

        assert rec.session.state is SessionState.CAPTURED_UNANALYZED
        assert rec.session.detected_entries == []
        assert rec.capture(photo).ok

        recognizer.release.set()
        result = await rec.analyze()
        assert result.ok
        assert texts(rec) == ["AAA111"]

    def test_reanalyze_without_photo_is_invalid(self, repository):
        """Test reanalyze is refused when there is no photo to analyze."""
        rec, _ = make_reconciler(repository, capabilities=BARCODE_CAPS)
        rec.add_barcode("AAA111", "qr")
        generation = rec.session.generation
        state = rec.session.state

        result = rec.reanalyze()

        assert not result.ok
        assert result.code == "INVALID_STATE"
        assert texts(rec) == ["AAA111"]
        assert rec.session.generation == generation
        assert rec.session.state is state


class TestCuration:
    """Tests for toggle, edit and clear."""

    @pytest.mark.asyncio
    async def test_toggle_excludes_from_save(self, repository, photo):
        """Test unselected candidates are not accepted."""
        rec, _ = make_reconciler(repository, ["AAA111", "BBB222"])
        rec.capture(photo)
        await rec.analyze()

        assert rec.toggle_selection("aaa111") is True
        result = rec.save()

        assert result.new_values == ("BBB222",)
        assert rec.session.accepted_values == ["BBB222"]

    @pytest.mark.asyncio
    async def test_toggle_on_accepted_is_noop(self, repository, photo):
        """Test an accepted candidate's selection is read-only."""
        rec, _ = make_reconciler(repository, ["AAA111"])
        rec.capture(photo)
        await rec.analyze()
        rec.save()

        assert rec.toggle_selection("AAA111") is False
        assert rec.session.detected_entries[0].selected is True
        assert rec.toggle_selection("missing") is False

    @pytest.mark.asyncio
    async def test_edit_text(self, repository, photo):
        """Test editing rewrites the text and the edit is what gets saved."""
        rec, _ = make_reconciler(repository, ["AAA1l1"])
        rec.capture(photo)
        await rec.analyze()

        assert rec.edit_text("aaa1l1", " AAA-111 ") is True
        assert texts(rec) == ["AAA-111"]
        assert rec.edit_text("AAA1l1", "x") is False
        assert rec.edit_text("AAA-111", "   ") is False

        assert rec.save().new_values == ("AAA-111",)

    @pytest.mark.asyncio
    async def test_colliding_edits_deduped_on_save(self, repository, photo):
        """Test two candidates edited to the same value are accepted once."""
        rec, _ = make_reconciler(repository, ["AAA111", "BBB222"])
        rec.capture(photo)
        await rec.analyze()

        rec.edit_text("BBB222", "aaa111")
        result = rec.save()

        assert result.new_values == ("AAA111",)
        assert rec.session.accepted_values == ["AAA111"]

    @pytest.mark.asyncio
    async def test_clear_keeps_accepted(self, repository, photo):
        """Test clear only empties the candidate list."""
        rec, _ = make_reconciler(repository, ["AAA111", "BBB222"])
        rec.capture(photo)
        await rec.analyze()
        rec.toggle_selection("BBB222")
        rec.save()

        rec.clear()

        assert rec.session.detected_entries == []
        assert rec.session.accepted_values == ["AAA111"]


class TestSave:
    """Tests for accepting and committing."""

    @pytest.mark.asyncio
    async def test_repeated_saves_never_duplicate(self, repository, photo):
        """Test saving the same selection twice accepts each value once."""
        rec, _ = make_reconciler(repository, ["AAA111", "BBB222"])
        rec.capture(photo)
        await rec.analyze()

        first = rec.save()
        second = rec.save()

        assert first.new_values == ("AAA111", "BBB222")
        assert second.new_values == ()
        assert second.committed is True
        assert second.session_id == first.session_id
        assert rec.session.accepted_values == ["AAA111", "BBB222"]
        assert len(repository.list_sessions()) == 1

    @pytest.mark.asyncio
    async def test_reanalyze_after_save(self, repository, photo):
        """Test accepted values survive reanalyze and are not offered again."""
        rec, _ = make_reconciler(repository, ["AAA111"])
        rec.capture(photo)
        await rec.analyze()
        rec.save()

        rec.reanalyze()
        result = await rec.analyze()

        assert result.code == "NOTHING_NEW"
        assert rec.session.accepted_values == ["AAA111"]
        view = rec.view()
        assert view.selected_count == 0
        assert view.has_new_to_save is False

    def test_empty_session_is_not_committed(self, repository):
        """Test saving a completely empty session writes nothing."""
        rec, _ = make_reconciler(repository)
        result = rec.save()
        assert result.ok
        assert result.committed is False
        assert result.session_id is None
        assert repository.list_sessions() == []

    @pytest.mark.asyncio
    async def test_nothing_selected_still_commits_content(self, repository, photo):
        """Test a session with only unselected candidates is still stored."""
        rec, _ = make_reconciler(repository, ["AAA111"])
        rec.capture(photo)
        await rec.analyze()
        rec.toggle_selection("AAA111")

        result = rec.save()

        assert result.committed is True
        assert result.new_values == ()
        stored = repository.get(result.session_id)
        assert stored.accepted_values == []
        assert [c.raw_text for c in stored.detected_entries] == ["AAA111"]

    @pytest.mark.asyncio
    async def test_persistence_failure_keeps_state_and_retries(
        self, tmp_path, repository, blob_store, photo
    ):
        """Test a failed commit reports, keeps accepted values and can be retried."""
        received = []
        rec, _ = make_reconciler(
            repository,
            ["AAA111"],
            listeners=[lambda sid, values: received.append((sid, values))],
        )
        rec.capture(photo)
        await rec.analyze()

        blob_store.fail_writes = True
        failed = rec.save()

        assert not failed.ok
        assert failed.code == "PERSISTENCE_FAILED"
        assert failed.new_values == ("AAA111",)
        assert rec.session.accepted_values == ["AAA111"]
        assert rec.session.id is None
        assert received == []
        assert repository.list_sessions() == []
        assert list((tmp_path / "store" / "scans").iterdir()) == []
        assert rec.view().last_error_code == "PERSISTENCE_FAILED"

        blob_store.fail_writes = False
        retried = rec.save()

        assert retried.committed is True
        assert retried.new_values == ()
        assert received == [(retried.session_id, ["AAA111"])]
        assert rec.session.last_error is None
        assert repository.get(retried.session_id).accepted_values == ["AAA111"]

    @pytest.mark.asyncio
    async def test_listeners_get_new_values_only(self, repository, photo):
        """Test listeners run once per save that accepted something."""
        received = []
        rec, recognizer = make_reconciler(repository, ["AAA111"])
        rec.add_listener(lambda sid, values: received.append(values))
        rec.capture(photo)
        await rec.analyze()
        rec.save()
        rec.save()
        recognizer.lines = ["BBB222"]
        await rec.analyze()
        rec.save()

        assert received == [["AAA111"], ["BBB222"]]

    @pytest.mark.asyncio
    async def test_listener_error_does_not_fail_save(self, repository, photo):
        """Test a raising listener is logged, not propagated."""

        def broken(session_id, values):
            raise RuntimeError("export down")

        received = []
        rec, _ = make_reconciler(
            repository,
            ["AAA111"],
            listeners=[broken, lambda sid, values: received.append(values)],
        )
        rec.capture(photo)
        await rec.analyze()

        result = rec.save()

        assert result.ok
        assert received == [["AAA111"]]

    @pytest.mark.asyncio
    async def test_resume_updates_in_place(self, repository, photo):
        """Test a reopened session keeps its id and created_at on save."""
        rec, _ = make_reconciler(repository, ["AAA111"])
        rec.capture(photo)
        await rec.analyze()
        first = rec.save()
        created_at = rec.session.created_at
        assert created_at is not None

        saved = repository.get(first.session_id)
        resumed = SessionReconciler.resume(
            saved, repository, recognizer=FakeRecognizer(["AAA111", "BBB222"])
        )
        assert resumed.session.state is SessionState.ANALYZED
        assert resumed.view().entries[0].already_saved is True

        await resumed.analyze()
        second = resumed.save()

        assert second.session_id == first.session_id
        assert second.new_values == ("BBB222",)
        sessions = repository.list_sessions()
        assert len(sessions) == 1
        assert sessions[0].created_at == created_at
        assert sessions[0].accepted_values == ["AAA111", "BBB222"]

    @pytest.mark.asyncio
    async def test_committed_save_survives_unreadable_index(
        self, repository, blob_store, photo
    ):
        """Test a save reports success once the index write went through."""
        received = []
        rec, _ = make_reconciler(
            repository,
            ["AAA111"],
            listeners=[lambda sid, values: received.append(values)],
        )
        rec.capture(photo)
        await rec.analyze()

        blob_store.reads_left = 1
        result = rec.save()

        assert result.ok
        assert result.committed is True
        assert rec.session.id == result.session_id
        assert rec.session.created_at is not None
        assert received == [["AAA111"]]

        blob_store.reads_left = None
        assert repository.get(result.session_id).accepted_values == ["AAA111"]

    @pytest.mark.asyncio
    async def test_async_listener_does_not_block_save(self, repository, photo):
        """Test save returns while a coroutine listener is still running."""
        delivered = asyncio.Event()
        received = []

        async def export(session_id, values):
            await delivered.wait()
            received.append((session_id, values))

        rec, _ = make_reconciler(repository, ["AAA111"], listeners=[export])
        rec.capture(photo)
        await rec.analyze()

        result = rec.save()

        assert result.committed is True
        assert received == []

        delivered.set()
        await rec.wait_for_listeners()
        assert received == [(result.session_id, ["AAA111"])]

    @pytest.mark.asyncio
    async def test_async_listener_error_is_logged(self, repository, photo, caplog):
        """Test a failing coroutine listener never reaches the caller."""

        async def broken(session_id, values):
            raise RuntimeError("export down")

        rec, _ = make_reconciler(repository, ["AAA111"], listeners=[broken])
        rec.capture(photo)
        await rec.analyze()

        assert rec.save().ok
        await rec.wait_for_listeners()

        assert any("Save listener failed" in r.message for r in caplog.records)

    def test_async_listener_without_running_loop(self, repository):
        """Test a coroutine listener still runs when save is called outside a loop."""
        received = []

        async def export(session_id, values):
            received.append(values)

        rec, _ = make_reconciler(
            repository, capabilities=BARCODE_CAPS, listeners=[export]
        )
        rec.add_barcode("AAA111", "qr")

        assert rec.save().committed is True
        assert received == [["AAA111"]]


class TestBarcodes:
    """Tests for live barcode merging."""

    def test_added_then_already_scanned(self, repository):
        """Test the same code in another format is recognized as scanned."""
        rec, _ = make_reconciler(repository, capabilities=BARCODE_CAPS)

        assert rec.add_barcode("abc-123", "code128") is BarcodeOutcome.ADDED
        assert rec.add_barcode("ABC123", "qr") is BarcodeOutcome.ALREADY_SCANNED
        assert texts(rec) == ["abc-123"]
        assert rec.session.detected_entries[0].selected is True

    @pytest.mark.asyncio
    async def test_barcode_matches_accepted_text(self, repository, photo):
        """Test a barcode of an already accepted printed value is a duplicate."""
        rec, _ = make_reconciler(repository, ["ABC123"], capabilities=BARCODE_CAPS)
        rec.capture(photo)
        await rec.analyze()
        rec.save()

        assert rec.add_barcode("abc-123", "code128") is BarcodeOutcome.ALREADY_SCANNED

    @pytest.mark.asyncio
    async def test_ocr_line_matches_scanned_barcode(self, repository, photo):
        """Test the printed form of a scanned code is not offered again."""
        rec, _ = make_reconciler(repository, ["ABC 123"], capabilities=BARCODE_CAPS)
        rec.capture(photo)
        rec.add_barcode("abc-123", "code128")

        result = await rec.analyze()

        assert result.code == "NOTHING_NEW"
        assert texts(rec) == ["abc-123"]

    @pytest.mark.asyncio
    async def test_corroborating_line(self, repository, photo):
        """Test a nearby OCR line is attached and later matches OCR output."""
        rec, _ = make_reconciler(repository, ["SN XY 42"], capabilities=BARCODE_CAPS)
        rec.capture(photo)
        outcome = rec.add_barcode(
            "0123456789", "ean13", nearby_lines=["0123456789", "ab", "SN-XY-42"]
        )

        assert outcome is BarcodeOutcome.ADDED
        assert rec.session.detected_entries[0].secondary_text == "SN-XY-42"
        assert (await rec.analyze()).code == "NOTHING_NEW"

    @pytest.mark.asyncio
    async def test_accepted_values_compared_strictly(self, repository, photo):
        """Test barcode-capable sessions never accept two forms of one code."""
        rec, recognizer = make_reconciler(
            repository, ["ABC-123"], capabilities=BARCODE_CAPS
        )
        rec.capture(photo)
        await rec.analyze()
        rec.save()

        rec.capture(photo)
        recognizer.lines = ["ABC123"]
        result = await rec.analyze()

        assert result.code == "NOTHING_NEW"
        assert rec.session.accepted_values == ["ABC-123"]

    def test_rejected_without_capability_or_payload(self, repository):
        """Test detections are rejected without scanning support or payload."""
        plain, _ = make_reconciler(repository)
        assert plain.add_barcode("ABC123", "qr") is BarcodeOutcome.REJECTED

        rec, _ = make_reconciler(repository, capabilities=BARCODE_CAPS)
        assert rec.add_barcode("   ", "qr") is BarcodeOutcome.REJECTED
        assert rec.session.detected_entries == []

    def test_short_payload_skips_text_filter(self, repository):
        """Test barcodes are not subject to the OCR plausibility filter."""
        rec, _ = make_reconciler(repository, capabilities=BARCODE_CAPS)
        assert rec.add_barcode("42", "qr") is BarcodeOutcome.ADDED

    @pytest.mark.asyncio
    async def test_corroboration_outlives_cleared_candidate(self, repository, photo):
        """Test an accepted barcode still matches its printed line after clear."""
        rec, recognizer = make_reconciler(repository, capabilities=BARCODE_CAPS)
        rec.capture(photo)
        rec.add_barcode("0123456789", "ean13", nearby_lines=["LOT 7781"])
        rec.save()
        rec.clear()

        recognizer.lines = ["LOT-7781"]
        result = await rec.analyze()

        assert result.code == "NOTHING_NEW"
        assert rec.save().new_values == ()
        assert rec.session.accepted_values == ["0123456789"]

    @pytest.mark.asyncio
    async def test_corroboration_kept_across_resume(self, repository, photo):
        """Test a reopened session still knows the corroborating line."""
        rec, _ = make_reconciler(repository, capabilities=BARCODE_CAPS)
        rec.capture(photo)
        rec.add_barcode("0123456789", "ean13", nearby_lines=["LOT 7781"])
        first = rec.save()

        saved = repository.get(first.session_id)
        assert saved.corroborating_texts == {"0123456789": "LOT 7781"}

        resumed = SessionReconciler.resume(
            saved,
            repository,
            recognizer=FakeRecognizer(["LOT 7781"]),
            capabilities=BARCODE_CAPS,
        )
        resumed.clear()
        result = await resumed.analyze()

        assert result.code == "NOTHING_NEW"
        assert resumed.session.detected_entries == []


class TestView:
    """Tests for the read model."""

    @pytest.mark.asyncio
    async def test_counts_and_badges(self, repository, photo):
        """Test counts before and after a save."""
        rec, _ = make_reconciler(repository, ["AAA111", "BBB222", "CCC333"])
        rec.capture(photo)
        await rec.analyze()
        rec.toggle_selection("CCC333")

        before = rec.view()
        assert before.state == "analyzed"
        assert before.detected_count == 3
        assert before.accepted_count == 0
        assert before.selected_count == 2
        assert before.has_new_to_save is True

        rec.save()
        after = rec.view()

        assert after.accepted_count == 2
        assert after.selected_count == 0
        assert after.has_new_to_save is False
        assert [e.already_saved for e in after.entries] == [True, True, False]
        assert after.session_id == rec.session.id

    def test_dismiss_error(self, repository):
        """Test a reported error can be dismissed."""
        rec, _ = make_reconciler(repository)
        rec._fail("PERSISTENCE_FAILED")
        assert rec.view().last_error_message == "Could not save the session, try again"
        rec.dismiss_error()
        assert rec.view().last_error_code is None
