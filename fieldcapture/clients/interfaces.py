"""
Contracts for the collaborators the engine does not own.

Camera capture and on-device recognition live in the host application; the
engine only sees these protocols. Capabilities are resolved once at startup
and passed in, never queried at call time.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence, runtime_checkable

from fieldcapture.models.dto import RecognizedLine


@dataclass(frozen=True)
class RecognizerCapabilities:
    """What the current runtime supports.

    Attributes:
        text_recognition: A text recognizer can be invoked on a captured image
        barcode_scanning: The live camera feed reports barcode detections
    """

    text_recognition: bool = True
    barcode_scanning: bool = False

    @classmethod
    def none(cls) -> "RecognizerCapabilities":
        return cls(text_recognition=False, barcode_scanning=False)


@runtime_checkable
class TextRecognizer(Protocol):
    async def recognize_text(self, image_uri: str) -> Sequence[RecognizedLine]:
        """Run OCR on the image; lines in reading order."""
        ...


@runtime_checkable
class ImageSource(Protocol):
    async def capture_photo(self) -> str:
        """Take a photo and return a reference (path or file:// URI) to it."""
        ...
