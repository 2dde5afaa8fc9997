"""Custom exception hierarchy for fieldcapture.

All adapter and client failures raise a subclass of BaseError. The session
reconciler and the repository catch them at their public boundary and turn
them into status values, so none of these reach the caller of a session
operation.
"""

from typing import Any, Optional
from enum import Enum


class ErrorCategory(str, Enum):
    """Error categories for classification and logging."""

    USAGE = "usage"
    CAPABILITY = "capability"
    RECOGNITION = "recognition"
    STORAGE = "storage"
    EXTERNAL_SERVICE = "external_service"


class BaseError(Exception):
    """Base exception for all fieldcapture errors.

    Attributes:
        message: Human-readable error message
        error_code: Code from the error registry (see errors.codes)
        category: Error category for classification
        details: Additional context (dict)
        retryable: Whether the operation can be retried as-is
    """

    def __init__(
        self,
        message: str,
        error_code: str,
        category: ErrorCategory,
        details: Optional[dict[str, Any]] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.category = category
        self.details = details or {}
        self.retryable = retryable

    def to_dict(self) -> dict[str, Any]:
        """Convert to a Problem Details style mapping.

        Returns:
            Dict containing standardized error information
        """
        return {
            "type": f"/errors/{self.error_code}",
            "title": self.message,
            "code": self.error_code,
            "detail": self.details.get("detail"),
            "category": self.category.value,
            "retryable": self.retryable,
        }


class RecognizerUnavailableError(BaseError):
    """The recognizer is not supported in the current runtime.

    Args:
        capability: Name of the missing capability ("text_recognition", ...)
    """

    def __init__(self, capability: str, **kwargs):
        additional_details = kwargs.pop("details", {})
        additional_details["capability"] = capability
        super().__init__(
            message=f"{capability} is not available in this runtime",
            error_code="RECOGNIZER_UNAVAILABLE",
            category=ErrorCategory.CAPABILITY,
            details=additional_details,
            retryable=False,
        )


class RecognitionError(BaseError):
    """A recognizer invocation failed (I/O, decode error, timeout).

    These are transient from the session's point of view: the image and the
    candidate list are untouched, so the user can simply analyze again.

    Args:
        reason: Short description of the failure
        timeout: True when the failure was the recognizer timing out
    """

    def __init__(self, reason: str, timeout: bool = False, **kwargs):
        additional_details = kwargs.pop("details", {})
        additional_details["detail"] = reason
        super().__init__(
            message=f"Text recognition {'timed out' if timeout else 'failed'}",
            error_code="RECOGNITION_TIMEOUT" if timeout else "RECOGNITION_FAILED",
            category=ErrorCategory.RECOGNITION,
            details=additional_details,
            retryable=True,
        )


class CaptureError(BaseError):
    """The image source could not produce a photo."""

    def __init__(self, reason: str):
        super().__init__(
            message="Photo capture failed",
            error_code="CAPTURE_FAILED",
            category=ErrorCategory.CAPABILITY,
            details={"detail": reason},
            retryable=True,
        )


class PersistenceError(BaseError):
    """Blob store or file store failure during commit/delete.

    Args:
        operation: Repository operation that failed ("commit", "delete", ...)
        reason: Underlying error description
    """

    def __init__(self, operation: str, reason: str, **kwargs):
        additional_details = kwargs.pop("details", {})
        additional_details.update({"operation": operation, "detail": reason})
        super().__init__(
            message=f"Session {operation} failed",
            error_code="PERSISTENCE_FAILED",
            category=ErrorCategory.STORAGE,
            details=additional_details,
            retryable=True,
        )


class ExportError(BaseError):
    """Export webhook could not be delivered.

    Args:
        service_name: Name of the receiving service
        error_type: Type of error ("timeout", "unavailable", "error")
    """

    def __init__(self, service_name: str, error_type: str, **kwargs):
        additional_details = kwargs.pop("details", {})
        additional_details.update(
            {
                "service": service_name,
                "error_type": error_type,
            }
        )
        super().__init__(
            message=f"{service_name} export {error_type}",
            error_code="EXPORT_FAILED",
            category=ErrorCategory.EXTERNAL_SERVICE,
            details=additional_details,
            retryable=error_type != "error",
        )
