"""
Centralized status/error code registry.

Single source of truth for the codes a session operation can report,
including the user-facing message, the category and whether retrying the
same operation makes sense.
"""

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class ErrorSpec:
    """Specification for a single status or error type."""

    code: str
    message: str  # user-facing, dismissible
    category: str  # "info", "client_error" or "server_error"
    retryable: bool

    @property
    def is_error(self) -> bool:
        return self.category != "info"


class ErrorCode(Enum):
    """Centralized code registry.

    Usage:
        spec = ErrorCode.get_spec("RECOGNITION_FAILED")
        print(spec.message, spec.category, spec.retryable)
    """

    # ========================================
    # INFORMATIONAL (not failures)
    # ========================================
    NOTHING_NEW = ErrorSpec(
        "NOTHING_NEW",
        "No new values were found in this photo",
        "info",
        False,
    )
    STALE_RESULT = ErrorSpec(
        "STALE_RESULT",
        "The photo changed before analysis finished; result discarded",
        "info",
        False,
    )

    # ========================================
    # CLIENT ERRORS (caller must change something first)
    # ========================================
    ANALYSIS_IN_PROGRESS = ErrorSpec(
        "ANALYSIS_IN_PROGRESS",
        "Analysis is already running for this photo",
        "client_error",
        False,
    )
    NO_IMAGE = ErrorSpec(
        "NO_IMAGE",
        "Capture a photo before analyzing",
        "client_error",
        False,
    )
    INVALID_STATE = ErrorSpec(
        "INVALID_STATE",
        "That action is not possible right now",
        "client_error",
        False,
    )
    RECOGNIZER_UNAVAILABLE = ErrorSpec(
        "RECOGNIZER_UNAVAILABLE",
        "Text recognition is not supported on this device",
        "client_error",
        False,
    )

    # ========================================
    # SERVER ERRORS (retryable)
    # ========================================
    CAPTURE_FAILED = ErrorSpec(
        "CAPTURE_FAILED",
        "Could not take a photo",
        "server_error",
        True,
    )
    RECOGNITION_FAILED = ErrorSpec(
        "RECOGNITION_FAILED",
        "Text recognition failed, try again",
        "server_error",
        True,
    )
    RECOGNITION_TIMEOUT = ErrorSpec(
        "RECOGNITION_TIMEOUT",
        "Text recognition took too long, try again",
        "server_error",
        True,
    )
    PERSISTENCE_FAILED = ErrorSpec(
        "PERSISTENCE_FAILED",
        "Could not save the session, try again",
        "server_error",
        True,
    )
    EXPORT_FAILED = ErrorSpec(
        "EXPORT_FAILED",
        "Could not export the saved values",
        "server_error",
        True,
    )

    # ========================================
    # FALLBACK
    # ========================================
    UNKNOWN_ERROR = ErrorSpec(
        "UNKNOWN_ERROR",
        "Unknown error",
        "server_error",
        False,
    )

    @classmethod
    def get_spec(cls, code: str) -> ErrorSpec:
        """Get error specification by code string.

        Returns:
            ErrorSpec with category, message, and retryability.
            Returns a default spec for unknown codes.
        """
        for error in cls:
            if error.value.code == code:
                return error.value
        return ErrorSpec(code, f"Error: {code}", "server_error", False)
