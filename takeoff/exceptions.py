"""Custom exception hierarchy for the takeoff engine."""

from __future__ import annotations


class TakeoffError(Exception):
    """Base exception for all takeoff-specific errors."""

    def __init__(self, message: str, details: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(TakeoffError):
    """Raised when configuration is invalid or missing."""
    pass


class ValidationError(TakeoffError):
    """Base class for input validation errors."""
    pass


class ProjectFormatError(ValidationError):
    """Raised when a project file is malformed or misses required fields."""
    pass


class GeometryError(TakeoffError):
    """Raised when geometry operations fail."""
    pass


class DegenerateMarkupError(GeometryError):
    """Raised when a markup has too few points to be drawn or measured."""
    pass


class ExportError(TakeoffError):
    """Base class for export-related errors."""
    pass


class PDFExportError(ExportError):
    """Raised when baking markups into a PDF fails."""
    pass


class PrintRenderError(ExportError):
    """Raised when rendering print rasters fails."""
    pass


class CollaboratorError(TakeoffError):
    """Base class for failures reported by external collaborators."""
    pass


class DocumentDecodeError(CollaboratorError):
    """Raised when a document cannot be decoded."""
    pass


class AIPipelineError(CollaboratorError):
    """Raised when the AI pipeline returns unusable placements."""
    pass


class NotFoundError(TakeoffError):
    """Base class for lookups that found nothing."""
    pass


class DocumentNotFoundError(NotFoundError):
    """Raised when a document session does not exist."""
    pass


class MarkupNotFoundError(NotFoundError):
    """Raised when a markup id is not present on the requested page."""
    pass


class ProductNotFoundError(NotFoundError):
    """Raised when a product node does not exist or is a folder."""
    pass


class MeasurementLinkError(TakeoffError):
    """Raised when a measurement link request violates link invariants."""
    pass


class MarkupLockedError(TakeoffError):
    """Raised when a locked markup is modified or deleted."""
    pass


class SessionBusyError(TakeoffError):
    """Raised when a session is mutated while async work on it is in flight."""
    pass
