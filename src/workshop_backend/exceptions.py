"""Error taxonomy for the workshop service."""

from __future__ import annotations

from typing import Any, Dict, Optional


class WorkshopError(Exception):
    """Base exception for all workshop service errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(WorkshopError):
    """Raised when required input is missing or malformed. Never touches storage."""


class NotFoundError(WorkshopError):
    """Raised when the referenced workshop does not exist."""


class StorageError(WorkshopError):
    """Raised when an object store or record store call fails."""


class UnsupportedMediaError(WorkshopError):
    """Raised when an uploaded file is not an accepted image format."""


class PartialDeletionWarning(UserWarning):
    """Emitted when a workshop's blobs could not all be listed for deletion."""
