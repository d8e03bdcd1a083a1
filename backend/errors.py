"""
Exception hierarchy for the surveillance backend.

Every error raised by the store, registry, settings and pipeline inherits
from SurveillanceError and carries a user-facing message for the API layer.
"""
from typing import Any, Dict, Optional


class SurveillanceError(Exception):
    """Base exception for all surveillance errors."""

    def __init__(
        self,
        message: str,
        user_message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.user_message = user_message or message
        self.details = details or {}


class NotInitialized(SurveillanceError):
    """Raised when the store is used before initialize() has completed."""

    def __init__(self, message: str = "Database not initialized", **kwargs):
        super().__init__(message, **kwargs)


class InvalidInput(SurveillanceError):
    """Raised when a record, registry entry or settings change is rejected."""
    pass


class CaptureFailure(SurveillanceError):
    """Raised when the camera cannot be opened or stops delivering frames."""
    pass


class AnalysisFailure(SurveillanceError):
    """Raised when the detection capability fails mid-cycle."""
    pass


class PersistenceFailure(SurveillanceError):
    """Raised when the database rejects a read or write."""

    def __init__(self, message: str, operation: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.operation = operation


class DeliveryFailure(SurveillanceError):
    """Raised when an SMS/email alert could not be dispatched."""
    pass
