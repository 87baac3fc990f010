"""Apply stage: merge a finished batch's URLs into its target rooms."""

from typing import Protocol

from media_ingest.services.errors import ApplyError
from media_ingest.services.log_service import get_log_service
from media_ingest.services.room_store import MediaUpdate


class TargetStore(Protocol):
    """Write side of the room store used by the apply stage."""

    def apply_media_batch(self, updates: dict[str, MediaUpdate]) -> list[str]: ...


def apply_uploads(
    store: TargetStore,
    target_ids: list[str],
    image_urls: list[str],
    video_url: str | None = None,
    batch_id: str = "",
) -> list[str]:
    """Append images to, and set the video of, every target room.

    Every room receives the same update. Rooms that were updated before a failure keep
    their update.

    Args:
        store: Room store
        target_ids: Resolved room ids
        image_urls: Uploaded image URLs in submission order
        video_url: Uploaded video URL, if any
        batch_id: Parent batch id (for logging)

    Returns:
        Ids of the rooms that were updated (empty if there was nothing to apply)

    Raises:
        ApplyError: If any room could not be updated
    """
    log = get_log_service()
    update = MediaUpdate(append_images=tuple(image_urls), set_video=video_url)
    if update.is_empty:
        log.info(
            "apply",
            "apply_skipped",
            "Nothing to apply: no file completed",
            {"batch_id": batch_id, "target_ids": target_ids},
        )
        return []

    metadata = {
        "batch_id": batch_id,
        "target_ids": target_ids,
        "image_count": len(image_urls),
        "video_url": video_url,
    }
    try:
        applied = store.apply_media_batch({target_id: update for target_id in target_ids})
    except ApplyError as e:
        log.error(
            "apply",
            "apply_failed",
            f"Apply failed for {len(e.failed)} of {len(target_ids)} rooms",
            {**metadata, "applied": e.applied, "failed": e.failed},
        )
        raise

    log.info(
        "apply",
        "apply_completed",
        f"Applied {len(image_urls)} images"
        + (" and a video" if video_url else "")
        + f" to {len(applied)} rooms",
        metadata,
    )
    return applied
