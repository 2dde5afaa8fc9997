"""
Read model handed to the UI layer.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from fieldcapture.models.dto import Bounds, CandidateKind


class CandidateView(BaseModel):
    """
    One detected entry as displayed: ``already_saved`` drives the saved badge
    and makes the checkbox read-only.
    """

    text: str
    kind: CandidateKind
    symbology: str | None = None
    secondary_text: str | None = None
    bounds: Bounds | None = None
    selected: bool
    already_saved: bool


class SessionView(BaseModel):
    """
    Snapshot of a session for rendering; never mutated by the reconciler.
    """

    session_id: str | None = None
    state: str
    image_uri: str | None = None
    entries: list[CandidateView] = Field(default_factory=list)
    accepted_values: list[str] = Field(default_factory=list)
    detected_count: int = 0
    accepted_count: int = 0
    selected_count: int = 0
    has_new_to_save: bool = False
    last_error_code: str | None = None
    last_error_message: str | None = None
