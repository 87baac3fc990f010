"""File classifier: splits a raw selection into image and video subsets."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from media_ingest.services.errors import ValidationError
from media_ingest.services.media import MediaFile, MediaKind
from media_ingest.services.utils import format_file_size

logger = logging.getLogger(__name__)

DEFAULT_MAX_VIDEO_BYTES = 50 * 1024 * 1024


class KindFilter(Enum):
    """Which media kinds a selection accepts."""

    IMAGES = "images"
    VIDEOS = "videos"
    BOTH = "both"

    def accepts(self, kind: MediaKind) -> bool:
        """Check whether files of this kind pass the filter."""
        if self == KindFilter.BOTH:
            return True
        if self == KindFilter.IMAGES:
            return kind == MediaKind.IMAGE
        return kind == MediaKind.VIDEO


@dataclass
class RejectedFile:
    """A file dropped from the selection, with the reason."""

    name: str
    reason: str

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary for JSON serialization."""
        return {"name": self.name, "reason": self.reason}


@dataclass
class ClassifiedFiles:
    """Result of classifying a selection.

    ``images``, ``videos`` and ``rejected`` partition the input: every selected file
    lands in exactly one of them, in selection order.
    """

    images: list[MediaFile] = field(default_factory=list)
    videos: list[MediaFile] = field(default_factory=list)
    rejected: list[RejectedFile] = field(default_factory=list)

    @property
    def video(self) -> MediaFile | None:
        """The single accepted video, if any."""
        return self.videos[0] if self.videos else None

    @property
    def accepted_count(self) -> int:
        """Number of files that will enter preprocessing."""
        return len(self.images) + len(self.videos)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "images": [f.name for f in self.images],
            "videos": [f.name for f in self.videos],
            "rejected": [r.to_dict() for r in self.rejected],
        }


def classify_files(
    files: list[MediaFile],
    kind_filter: KindFilter = KindFilter.BOTH,
    multiple: bool = True,
    max_video_bytes: int = DEFAULT_MAX_VIDEO_BYTES,
    max_images: int | None = None,
) -> ClassifiedFiles:
    """Split a selection into images and at most one video.

    The video size check runs over the whole selection before anything else, so a
    single oversized video rejects the batch rather than being silently skipped.

    Args:
        files: Selected files, in selection order
        kind_filter: Media kinds the selection accepts
        multiple: If False, only the first valid file is kept
        max_video_bytes: Size ceiling for video files
        max_images: Optional cap on accepted images

    Returns:
        ClassifiedFiles with accepted and rejected files

    Raises:
        ValidationError: If any accepted-kind video exceeds max_video_bytes
    """
    oversized = [
        f
        for f in files
        if f.kind == MediaKind.VIDEO and kind_filter.accepts(f.kind) and f.size > max_video_bytes
    ]
    if oversized:
        names = ", ".join(f.name for f in oversized)
        raise ValidationError(
            f"Video exceeds the {format_file_size(max_video_bytes)} limit: {names}"
        )

    result = ClassifiedFiles()
    for media_file in files:
        kind = media_file.kind
        if kind is None:
            result.rejected.append(RejectedFile(media_file.name, "unsupported file type"))
            continue
        if not kind_filter.accepts(kind):
            result.rejected.append(
                RejectedFile(media_file.name, f"{kind.value} not accepted by this upload")
            )
            continue
        if not multiple and result.accepted_count >= 1:
            result.rejected.append(RejectedFile(media_file.name, "only one file allowed"))
            continue

        if kind == MediaKind.VIDEO:
            if result.videos:
                result.rejected.append(RejectedFile(media_file.name, "only one video allowed"))
                continue
            result.videos.append(media_file)
        else:
            if max_images is not None and len(result.images) >= max_images:
                result.rejected.append(
                    RejectedFile(media_file.name, f"image limit of {max_images} reached")
                )
                continue
            result.images.append(media_file)

    if result.rejected:
        logger.debug(
            "Classifier rejected %d of %d files", len(result.rejected), len(files)
        )
    return result
