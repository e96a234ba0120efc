"""
Error taxonomy for the export pipeline.

Every error carries the HTTP status it is reported with, so the API layer can
render any of them as ``{"error": ..., "details": ...}`` without knowing the
concrete type.
"""
from typing import Optional


class EditorError(Exception):
    status_code: int = 500
    error: str = "Export failed"

    def __init__(self, message: Optional[str] = None, details: Optional[str] = None):
        self.message = message or self.error
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.details}


# --- Validation (rejected before the engine is invoked) ---

class ValidationError(EditorError):
    status_code = 400
    error = "Invalid export request"


class EmptyTimeline(ValidationError):
    error = "Timeline is empty"


class MissingMediaAsset(ValidationError):
    error = "Timeline references an unknown media asset"


class InvalidDuration(ValidationError):
    error = "Duration must be greater than zero"


class InvalidOrder(ValidationError):
    error = "New order is not a permutation of the timeline entries"


class UnknownTimelineEntry(ValidationError):
    error = "Timeline entry not found"


class InvalidMediaKind(ValidationError):
    error = "Media kind cannot be used here"


class InvalidPayload(ValidationError):
    error = "Malformed request payload"


# --- Compilation ---

class CompilationError(EditorError):
    status_code = 422
    error = "Timeline could not be compiled"


class UnsupportedTransition(CompilationError):
    error = "Unsupported transition"


class UnresolvedTransition(CompilationError):
    error = "Transition between clips could not be resolved"


# --- Media engine ---

class EngineError(EditorError):
    status_code = 500
    error = "Video processing failed"


class EngineUnavailable(EditorError):
    status_code = 503
    error = "FFmpeg not available"


class ExportCancelled(EditorError):
    status_code = 499
    error = "Export cancelled by client"
