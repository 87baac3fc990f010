"""Preprocessing: the human-gated edit/trim stages that run before any upload.

Files are handled one at a time: the (single) video goes through the trimmer first,
then every image goes through the editor in selection order. Each step may be skipped,
in which case the original file continues unchanged.
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from media_ingest.services.errors import MediaIngestError, PreprocessingAbandoned
from media_ingest.services.log_service import get_log_service
from media_ingest.services.media import MediaFile, MediaKind, TrimRange
from media_ingest.services.progress import TaskStage

logger = logging.getLogger(__name__)


class Editor(Protocol):
    """Image editing collaborator. Returns the edited file, or None to skip."""

    def edit(self, task_id: str, media_file: MediaFile) -> MediaFile | None: ...


class Trimmer(Protocol):
    """Video trimming collaborator. Returns the trimmed file, or None to skip."""

    def trim(
        self,
        media_file: MediaFile,
        trim_range: TrimRange,
        on_progress: Callable[[float], None],
    ) -> MediaFile | None: ...


@dataclass
class _PendingReview:
    media_file: MediaFile
    decided: threading.Event = field(default_factory=threading.Event)
    result: MediaFile | None = None
    abandoned: bool = False


class ReviewGate:
    """Blocks a preprocessing step until the driving layer accepts or skips it.

    The batch worker calls ``request`` and waits; an HTTP handler (or any other
    driver) calls ``submit`` with the edited file, or None to skip.
    """

    def __init__(self, timeout: float | None = None) -> None:
        self.timeout = timeout
        self._pending: dict[str, _PendingReview] = {}
        self._lock = threading.Lock()
        self._abandoned = False

    def request(self, task_id: str, media_file: MediaFile) -> MediaFile | None:
        """Wait for a decision on a file.

        Raises:
            PreprocessingAbandoned: On timeout or if the gate was abandoned
        """
        review = _PendingReview(media_file)
        with self._lock:
            if self._abandoned:
                raise PreprocessingAbandoned("Review was abandoned")
            self._pending[task_id] = review

        try:
            if not review.decided.wait(self.timeout):
                raise PreprocessingAbandoned(f"No review decision for {media_file.name}")
            if review.abandoned:
                raise PreprocessingAbandoned("Review was abandoned")
            return review.result
        finally:
            with self._lock:
                self._pending.pop(task_id, None)

    def submit(self, task_id: str, edited: MediaFile | None) -> bool:
        """Resolve a pending review.

        Returns:
            True if the task was waiting for a decision
        """
        with self._lock:
            review = self._pending.get(task_id)
            if review is None or review.decided.is_set():
                return False
            review.result = edited
            review.decided.set()
            return True

    def abandon(self) -> None:
        """Wake every waiting step with an abandonment."""
        with self._lock:
            self._abandoned = True
            for review in self._pending.values():
                review.abandoned = True
                review.decided.set()

    def pending(self) -> list[dict[str, Any]]:
        """Files currently awaiting a decision."""
        with self._lock:
            return [
                {"task_id": task_id, **review.media_file.to_dict()}
                for task_id, review in self._pending.items()
            ]


class GatedEditor:
    """Editor whose decisions come from a ReviewGate."""

    def __init__(self, gate: ReviewGate) -> None:
        self.gate = gate

    def edit(self, task_id: str, media_file: MediaFile) -> MediaFile | None:
        return self.gate.request(task_id, media_file)


@dataclass
class PreprocessItem:
    """One file entering preprocessing, keyed by its upload task."""

    task_id: str
    media_file: MediaFile


StageCallback = Callable[[str, TaskStage], None]
TaskProgressCallback = Callable[[str, float], None]


class Preprocessor:
    """Runs the trim and edit stages for one batch, sequentially."""

    def __init__(self, editor: Editor | None = None, trimmer: Trimmer | None = None) -> None:
        self.editor = editor
        self.trimmer = trimmer

    def run(
        self,
        items: list[PreprocessItem],
        trim_range: TrimRange | None = None,
        on_stage: StageCallback | None = None,
        on_progress: TaskProgressCallback | None = None,
        is_cancelled: Callable[[str], bool] | None = None,
        batch_id: str = "",
    ) -> dict[str, MediaFile]:
        """Produce the upload-ready file for every item.

        Args:
            items: Files to process, in selection order
            trim_range: Requested trim for the video (None skips trimming)
            on_stage: Called when a task enters a preprocessing stage
            on_progress: Called with trim progress for the video task
            is_cancelled: Returns True for tasks that should bypass their stage;
                checked with an empty id for the whole batch
            batch_id: Parent batch id (for logging)

        Returns:
            Mapping of task id to the file that will be uploaded

        Raises:
            ValidationError: If the trimmer rejects the range
            PreprocessingAbandoned: If the batch was cancelled or a stage failed
        """
        log = get_log_service()
        cancelled = is_cancelled or (lambda _task_id: False)
        ordered = [i for i in items if i.media_file.kind == MediaKind.VIDEO] + [
            i for i in items if i.media_file.kind != MediaKind.VIDEO
        ]
        results: dict[str, MediaFile] = {}

        for item in ordered:
            if cancelled(""):
                raise PreprocessingAbandoned(f"Batch {batch_id} was cancelled")

            media_file = item.media_file
            results[item.task_id] = media_file
            if cancelled(item.task_id):
                continue

            if media_file.kind == MediaKind.VIDEO:
                if self.trimmer is None or trim_range is None:
                    continue
                if on_stage:
                    on_stage(item.task_id, TaskStage.TRIMMING)
                output = self._run_stage(
                    lambda: self.trimmer.trim(  # type: ignore[union-attr]
                        media_file,
                        trim_range,
                        lambda p: on_progress(item.task_id, p) if on_progress else None,
                    ),
                    media_file,
                    batch_id,
                )
                event = "video_trimmed" if output is not None else "video_trim_skipped"
            else:
                if self.editor is None:
                    continue
                if on_stage:
                    on_stage(item.task_id, TaskStage.EDITING)
                output = self._run_stage(
                    lambda: self.editor.edit(item.task_id, media_file),  # type: ignore[union-attr]
                    media_file,
                    batch_id,
                )
                event = "image_edited" if output is not None else "image_edit_skipped"

            if output is not None:
                results[item.task_id] = output
            log.info(
                "preprocess",
                event,
                f"{event.replace('_', ' ').capitalize()}: {media_file.name}",
                {
                    "batch_id": batch_id,
                    "task_id": item.task_id,
                    "filename": media_file.name,
                    "original_size": media_file.size,
                    "final_size": results[item.task_id].size,
                    "trim_range": trim_range.to_dict()
                    if trim_range and media_file.kind == MediaKind.VIDEO
                    else None,
                },
            )

        return results

    @staticmethod
    def _run_stage(
        stage: Callable[[], MediaFile | None], media_file: MediaFile, batch_id: str
    ) -> MediaFile | None:
        try:
            return stage()
        except MediaIngestError:
            raise
        except Exception as e:
            logger.warning("Preprocessing failed for %s", media_file.name, exc_info=True)
            raise PreprocessingAbandoned(
                f"Preprocessing failed for {media_file.name}: {e}"
            ) from e
