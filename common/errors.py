# common/errors.py
from __future__ import annotations


class BoothError(Exception):
    """Base class for booth failures that callers are expected to handle."""


class SequenceValidationError(BoothError, ValueError):
    """Frame sequence is outside the [10, 20] envelope or mixes frame sizes."""

    def __init__(self, message: str, count: int | None = None):
        super().__init__(message)
        self.count = count


class SourceUnavailableError(BoothError):
    """Live source could not be opened or stopped delivering frames."""


class SessionActiveError(BoothError):
    """A capture session is already running."""
