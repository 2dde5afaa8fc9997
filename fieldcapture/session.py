from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from fieldcapture.errors.codes import ErrorCode, ErrorSpec
from fieldcapture.models.dto import Candidate


class SessionState(str, Enum):
    IDLE = "idle"
    CAPTURED_UNANALYZED = "captured_unanalyzed"
    ANALYZING = "analyzing"
    ANALYZED = "analyzed"


@dataclass
class Session:
    """Working copy of one capture session, owned by a single reconciler."""

    id: Optional[str] = None
    image_uri: Optional[str] = None
    detected_entries: list[Candidate] = field(default_factory=list)
    accepted_values: list[str] = field(default_factory=list)
    # accepted barcode payload -> corroborating OCR line; keeps the line
    # matching after the barcode candidate itself is gone
    corroborating_texts: dict[str, str] = field(default_factory=dict)
    created_at: Optional[datetime] = None

    # bumped by capture/reanalyze/retake; in-flight analysis results carry
    # the value they were issued under and are dropped on mismatch
    generation: int = 0
    state: SessionState = SessionState.IDLE
    last_error: Optional[ErrorSpec] = None

    # accepted but not yet handed to listeners (commit failed)
    unnotified_values: list[str] = field(default_factory=list)

    def bump_generation(self) -> int:
        self.generation += 1
        return self.generation


@dataclass(frozen=True)
class OperationResult:
    """Status of a reconciler operation; failures are values, not raises."""

    ok: bool
    code: Optional[str] = None

    @property
    def spec(self) -> Optional[ErrorSpec]:
        return ErrorCode.get_spec(self.code) if self.code else None

    @property
    def message(self) -> Optional[str]:
        spec = self.spec
        return spec.message if spec else None


@dataclass(frozen=True)
class CaptureResult(OperationResult):
    image_uri: Optional[str] = None


@dataclass(frozen=True)
class AnalysisResult(OperationResult):
    added: tuple[Candidate, ...] = ()
    generation: int = 0


@dataclass(frozen=True)
class SaveResult(OperationResult):
    new_values: tuple[str, ...] = ()
    session_id: Optional[str] = None
    committed: bool = False


class BarcodeOutcome(str, Enum):
    ADDED = "added"
    ALREADY_SCANNED = "already_scanned"
    REJECTED = "rejected"
