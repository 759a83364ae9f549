"""
Error types raised by the member synchronization engine.

Every failure the engine can report is a subclass of SyncError so that callers
(persistence hooks, login handling) can catch the whole family in one place.
"""

from typing import Optional


class SyncError(Exception):
    """Base exception for member sync errors."""
    pass


class DirectoryUnavailable(SyncError):
    """Raised when the directory cannot be reached (transport or bind failure)."""
    pass


class RecordNotFound(SyncError):
    """Raised when a GUID no longer has a counterpart entry in the directory."""

    def __init__(self, identifier: str, message: Optional[str] = None):
        self.identifier = identifier
        super().__init__(message or f"No directory entry found for GUID {identifier}")


class WriteRejected(SyncError):
    """Raised when the directory refuses a write (permissions, schema violation)."""
    pass


class MappingAmbiguous(SyncError):
    """Raised when the attribute mapping cannot be inverted unambiguously."""
    pass


class ValidationFailed(SyncError):
    """Raised when a member record fails validation before any directory call."""

    def __init__(self, message: str, field: Optional[str] = None, result=None):
        self.field = field
        self.result = result
        super().__init__(message)
