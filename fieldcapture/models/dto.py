"""
Typed contracts shared by the reconciler, the live barcode feed and storage.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class CandidateKind(str, Enum):
    TEXT = "text"
    BARCODE = "barcode"


class Bounds(BaseModel):
    """
    Location of a recognized value in the source image, normalized to 0..1.
    """

    model_config = ConfigDict(frozen=True)

    x: float = Field(ge=0.0, le=1.0)
    y: float = Field(ge=0.0, le=1.0)
    width: float = Field(ge=0.0, le=1.0)
    height: float = Field(ge=0.0, le=1.0)


class RecognizedLine(BaseModel):
    """
    One line reported by the text recognizer.
    """

    model_config = ConfigDict(frozen=True)

    text: str
    bounds: Bounds | None = None


class Candidate(BaseModel):
    """
    A recognized value that is not (yet) part of the accepted set.
    """

    raw_text: str
    secondary_text: str | None = None
    kind: CandidateKind = CandidateKind.TEXT
    symbology: str | None = None
    bounds: Bounds | None = None
    selected: bool = True

    @property
    def is_barcode(self) -> bool:
        return self.kind is CandidateKind.BARCODE


class SessionSnapshot(BaseModel):
    """
    Immutable hand-off from the reconciler to the repository on save.
    """

    model_config = ConfigDict(frozen=True)

    image_uri: str | None = None
    detected_entries: tuple[Candidate, ...] = ()
    accepted_values: tuple[str, ...] = ()
    # accepted barcode payload -> its corroborating OCR line
    corroborating_texts: dict[str, str] = Field(default_factory=dict)


class SavedSession(BaseModel):
    """
    Persisted record of a session, one entry of the stored index.
    """

    id: str
    image_uri: str | None = None
    detected_entries: list[Candidate] = Field(default_factory=list)
    accepted_values: list[str] = Field(default_factory=list)
    corroborating_texts: dict[str, str] = Field(default_factory=dict)
    created_at: datetime
