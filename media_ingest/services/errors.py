"""Exception types raised by the media ingestion pipeline."""

from typing import Any


class MediaIngestError(Exception):
    """Base class for all pipeline errors."""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {"error": str(self), "type": type(self).__name__}


class ValidationError(MediaIngestError):
    """A batch was rejected before any transport call (bad input, no targets)."""


class TransportError(MediaIngestError):
    """Storage or network failure while uploading a single file. Retrying is sensible."""

    def __init__(self, message: str, path: str = "") -> None:
        super().__init__(message)
        self.path = path


class CancellationError(MediaIngestError):
    """A transfer was aborted on request. Retrying is pointless."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Upload {task_id} was cancelled")
        self.task_id = task_id


class PreprocessingAbandoned(MediaIngestError):
    """The edit/trim phase of a batch did not complete; nothing will be uploaded."""


class ApplyError(MediaIngestError):
    """Merging uploaded URLs into target records failed for one or more targets.

    Targets listed in ``applied`` keep their update; nothing is rolled back.
    """

    def __init__(
        self,
        message: str,
        applied: list[str] | None = None,
        failed: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.applied = applied or []
        self.failed = failed or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = super().to_dict()
        result["applied"] = list(self.applied)
        result["failed"] = dict(self.failed)
        return result
