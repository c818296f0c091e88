"""
Custom Exceptions for SprintSense
Provides structured error handling with error codes and HTTP status mapping.

The analysis core itself never raises on noisy or partial pose input; these
exceptions cover configuration and API boundary failures.
"""

from typing import Optional, Dict, Any


class SprintSenseException(Exception):
    """Base exception for all SprintSense errors"""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to API response format"""
        result = {
            "error": self.code,
            "detail": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Configuration Errors (400)
# =============================================================================

class CalibrationError(SprintSenseException):
    """Raised when calibration input can't produce a usable scale"""
    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(message, "CALIBRATION_ERROR", 400, details)


class ValidationError(SprintSenseException):
    """Raised when input validation fails"""
    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(message, "VALIDATION_ERROR", 400, details)


# =============================================================================
# Session Errors (409)
# =============================================================================

class SessionStateError(SprintSenseException):
    """Raised when a run session receives a command in the wrong state"""
    def __init__(self, message: str, state: str):
        super().__init__(message, "SESSION_STATE_ERROR", 409, {"state": state})


# =============================================================================
# Upload Errors (413, 415, 422)
# =============================================================================

class InvalidVideoFormat(SprintSenseException):
    """Raised when video format is not supported"""
    def __init__(self, content_type: str, allowed_types: list):
        super().__init__(
            f"Invalid video format: {content_type}. Allowed: {', '.join(allowed_types)}",
            "INVALID_VIDEO_FORMAT",
            415,
            {"content_type": content_type, "allowed_types": allowed_types}
        )


class FileTooLarge(SprintSenseException):
    """Raised when uploaded file exceeds size limit"""
    def __init__(self, file_size_mb: float, max_size_mb: int):
        super().__init__(
            f"File too large: {file_size_mb:.1f}MB (max {max_size_mb}MB)",
            "FILE_TOO_LARGE",
            413,
            {"file_size_mb": file_size_mb, "max_size_mb": max_size_mb}
        )


class InsufficientPoseData(SprintSenseException):
    """Raised when a request carries no usable pose frames"""
    def __init__(self, message: str = "Insufficient pose data for analysis"):
        super().__init__(message, "INSUFFICIENT_POSE_DATA", 422)


# =============================================================================
# Processing Errors (422, 503)
# =============================================================================

class VideoProcessingError(SprintSenseException):
    """Raised when a video file can't be decoded"""
    def __init__(self, message: str, stage: Optional[str] = None):
        details = {"stage": stage} if stage else {}
        super().__init__(message, "VIDEO_PROCESSING_ERROR", 422, details)


class ServiceUnavailable(SprintSenseException):
    """Raised when an optional backend is not installed or not ready"""
    def __init__(self, message: str = "Service temporarily unavailable"):
        super().__init__(message, "SERVICE_UNAVAILABLE", 503)
