"""Media file types shared by the classifier, preprocessing and transport stages."""

import mimetypes
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Any

from media_ingest.services.errors import ValidationError
from media_ingest.services.utils import format_file_size

IMAGE_FOLDER = "room-images"
VIDEO_FOLDER = "room-videos"


class MediaKind(Enum):
    """Kind of a selected media file."""

    IMAGE = "image"
    VIDEO = "video"


def detect_kind(name: str, content_type: str = "") -> MediaKind | None:
    """Classify a file by mime type, falling back to its extension.

    Returns:
        The media kind, or None for unsupported files
    """
    mime = content_type or mimetypes.guess_type(name)[0] or ""
    if mime.startswith("image/"):
        return MediaKind.IMAGE
    if mime.startswith("video/"):
        return MediaKind.VIDEO
    return None


@dataclass
class MediaFile:
    """A selected file and its bytes."""

    name: str
    content: bytes = field(repr=False)
    content_type: str = ""
    kind: MediaKind | None = None

    def __post_init__(self) -> None:
        if not self.content_type:
            self.content_type = mimetypes.guess_type(self.name)[0] or "application/octet-stream"
        if self.kind is None:
            self.kind = detect_kind(self.name, self.content_type)

    @property
    def size(self) -> int:
        """Size of the content in bytes."""
        return len(self.content)

    @property
    def extension(self) -> str:
        """Lowercase extension without the dot, guessed from the mime type if missing."""
        suffix = PurePosixPath(self.name).suffix.lower().lstrip(".")
        if suffix:
            return suffix
        guessed = mimetypes.guess_extension(self.content_type) or ""
        return guessed.lstrip(".") or "bin"

    def replace_content(self, content: bytes, name: str | None = None) -> "MediaFile":
        """Return a copy of this file carrying new bytes (output of an edit/trim stage)."""
        return MediaFile(
            name=name or self.name,
            content=content,
            content_type=self.content_type,
            kind=self.kind,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "size": self.size,
            "size_formatted": format_file_size(self.size),
            "content_type": self.content_type,
            "kind": self.kind.value if self.kind else None,
        }


@dataclass(frozen=True)
class TrimRange:
    """Start/end offsets of a trimmed video, in seconds."""

    start: float
    end: float

    def __post_init__(self) -> None:
        if self.start < 0:
            raise ValidationError(f"Trim start must not be negative (got {self.start})")
        if self.end <= self.start:
            raise ValidationError(
                f"Trim end must be greater than start (got {self.start}-{self.end})"
            )

    @property
    def duration(self) -> float:
        """Length of the trimmed output in seconds."""
        return self.end - self.start

    def validate_against(self, duration: float) -> None:
        """Raise ValidationError if the range does not fit inside a video of this length."""
        if self.end > duration:
            raise ValidationError(
                f"Trim end {self.end:.2f}s exceeds video duration {duration:.2f}s"
            )

    def spans(self, duration: float) -> bool:
        """True if the range covers the whole video, i.e. trimming is a no-op."""
        return self.start == 0 and self.end >= duration

    def to_dict(self) -> dict[str, float]:
        """Convert to dictionary for JSON serialization."""
        return {"start": self.start, "end": self.end}


def generate_storage_path(media_file: MediaFile) -> str:
    """Generate a collision-resistant object key for a file.

    Format: ``room-images/<epoch_ms>-<random>.<ext>`` (``room-videos`` for videos).
    """
    folder = VIDEO_FOLDER if media_file.kind == MediaKind.VIDEO else IMAGE_FOLDER
    suffix = uuid.uuid4().hex[:10]
    return f"{folder}/{int(time.time() * 1000)}-{suffix}.{media_file.extension}"
