"""Upload manager: runs media batches from selection to applied room records."""

import logging
import threading
import uuid
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from media_ingest.config import get_settings
from media_ingest.services.apply import apply_uploads
from media_ingest.services.cancellation import CancellationRegistry, CancellationToken
from media_ingest.services.classifier import KindFilter, RejectedFile, classify_files
from media_ingest.services.errors import (
    ApplyError,
    CancellationError,
    MediaIngestError,
    PreprocessingAbandoned,
    TransportError,
    ValidationError,
)
from media_ingest.services.log_service import get_log_service
from media_ingest.services.media import MediaFile, MediaKind, TrimRange, generate_storage_path
from media_ingest.services.preprocess import (
    Editor,
    GatedEditor,
    PreprocessItem,
    Preprocessor,
    ReviewGate,
    Trimmer,
)
from media_ingest.services.progress import (
    BatchSnapshot,
    TaskStage,
    TaskSnapshot,
    aggregate_batch,
    summarize_target,
)
from media_ingest.services.room_store import RoomStore, get_room_store
from media_ingest.services.targets import TargetScope, resolve_targets
from media_ingest.services.transport import Transport, create_transport
from media_ingest.services.utils import format_file_size, isoformat_or_none, utc_now

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[BatchSnapshot], None]


@dataclass
class UploadTask:
    """One file of a batch, from selection to its terminal stage."""

    task_id: str
    media_file: MediaFile = field(repr=False)
    stage: TaskStage = TaskStage.QUEUED
    progress: float = 0.0
    trim_progress: float = 0.0
    url: str | None = None
    error_message: str = ""
    storage_path: str = ""
    cancel_requested: bool = False
    stage_history: list[TaskStage] = field(default_factory=lambda: [TaskStage.QUEUED])
    upload_started_at: datetime | None = None
    upload_completed_at: datetime | None = None

    @property
    def name(self) -> str:
        return self.media_file.name

    @property
    def kind(self) -> MediaKind:
        return self.media_file.kind or MediaKind.IMAGE

    @property
    def file_size(self) -> int:
        return self.media_file.size

    @property
    def upload_duration_seconds(self) -> float | None:
        """Time spent in transport, once finished."""
        if self.upload_started_at and self.upload_completed_at:
            return (self.upload_completed_at - self.upload_started_at).total_seconds()
        return None

    def set_stage(self, stage: TaskStage) -> None:
        """Move to a new stage, recording the transition."""
        if stage != self.stage:
            self.stage = stage
            self.stage_history.append(stage)

    def snapshot(self) -> TaskSnapshot:
        return TaskSnapshot(
            task_id=self.task_id,
            name=self.name,
            kind=self.kind.value,
            stage=self.stage,
            progress=self.progress,
            url=self.url,
            error_message=self.error_message,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            **self.snapshot().to_dict(),
            "file_size": self.file_size,
            "file_size_formatted": format_file_size(self.file_size),
            "storage_path": self.storage_path,
            "trim_progress": self.trim_progress,
            "stage_history": [s.value for s in self.stage_history],
            "upload_started_at": isoformat_or_none(self.upload_started_at),
            "upload_completed_at": isoformat_or_none(self.upload_completed_at),
            "upload_duration_seconds": self.upload_duration_seconds,
        }


@dataclass
class UploadBatch:
    """A selection of files destined for one or more rooms.

    Tasks are ordered video first, then images in selection order; that is also
    the upload order.
    """

    batch_id: str
    scope: TargetScope
    target_ids: list[str]
    tasks: list[UploadTask]
    preprocessor: Preprocessor
    trim_range: TrimRange | None = None
    review_gate: ReviewGate | None = None
    rejected: list[RejectedFile] = field(default_factory=list)
    lock: threading.RLock = field(default_factory=threading.RLock)
    cancelled: bool = False
    running: bool = False
    applied_ids: list[str] = field(default_factory=list)
    apply_error: ApplyError | None = None
    error_message: str = ""
    progress_callback: ProgressCallback | None = None
    created_at: datetime = field(default_factory=utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def get_task(self, task_id: str) -> UploadTask | None:
        for task in self.tasks:
            if task.task_id == task_id:
                return task
        return None

    @property
    def is_finished(self) -> bool:
        """The worker is done with this batch (apply included)."""
        return self.completed_at is not None

    def snapshot(self) -> BatchSnapshot:
        """Consistent, immutable view of the batch."""
        with self.lock:
            return aggregate_batch(
                self.batch_id,
                self.target_ids,
                [t.snapshot() for t in self.tasks],
                applied=bool(self.applied_ids),
                apply_error=str(self.apply_error) if self.apply_error else None,
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        with self.lock:
            result = self.snapshot().to_dict()
            result.update({
                "scope": self.scope.to_dict(),
                "files": [t.to_dict() for t in self.tasks],
                "rejected": [r.to_dict() for r in self.rejected],
                "trim_range": self.trim_range.to_dict() if self.trim_range else None,
                "pending_reviews": self.review_gate.pending() if self.review_gate else [],
                "cancelled": self.cancelled,
                "finished": self.is_finished,
                "applied_ids": list(self.applied_ids),
                "apply_error": self.apply_error.to_dict() if self.apply_error else None,
                "error_message": self.error_message,
                "created_at": isoformat_or_none(self.created_at),
                "started_at": isoformat_or_none(self.started_at),
                "completed_at": isoformat_or_none(self.completed_at),
            })
            return result


class UploadManager:
    """Creates batches, runs them one worker per batch, and tracks their state."""

    def __init__(
        self,
        store: RoomStore | None = None,
        transport: Transport | None = None,
        registry: CancellationRegistry | None = None,
    ) -> None:
        self._store = store
        self._transport = transport
        self._owns_transport = transport is None
        self.registry = registry or CancellationRegistry()
        self.batches: dict[str, UploadBatch] = {}
        self._lock = threading.Lock()

    @property
    def store(self) -> RoomStore:
        if self._store is None:
            self._store = get_room_store()
        return self._store

    def _get_transport(self) -> Transport:
        if self._transport is None:
            self._transport = create_transport(get_settings())
        return self._transport

    def reset_transport(self) -> None:
        """Rebuild the configured transport on next use (after a settings change)."""
        if self._owns_transport:
            self._transport = None

    def create_batch(
        self,
        files: list[MediaFile],
        scope: TargetScope,
        kind_filter: KindFilter = KindFilter.BOTH,
        multiple: bool = True,
        trim_range: TrimRange | None = None,
        editor: Editor | None = None,
        trimmer: Trimmer | None = None,
    ) -> UploadBatch:
        """Validate a selection and register it as a new batch.

        Nothing is uploaded until ``run_batch``.

        Raises:
            ValidationError: Oversized video, nothing uploadable, or no target rooms
        """
        settings = get_settings()
        classified = classify_files(
            files,
            kind_filter=kind_filter,
            multiple=multiple,
            max_video_bytes=settings.max_video_size_bytes,
            max_images=settings.max_images_per_batch,
        )
        if not classified.accepted_count:
            raise ValidationError("No supported files selected")
        target_ids = resolve_targets(scope, self.store)

        tasks = [
            UploadTask(task_id=str(uuid.uuid4()), media_file=f)
            for f in classified.videos + classified.images
        ]
        batch = UploadBatch(
            batch_id=str(uuid.uuid4()),
            scope=scope,
            target_ids=target_ids,
            tasks=tasks,
            preprocessor=Preprocessor(editor=editor, trimmer=trimmer),
            trim_range=trim_range,
            review_gate=editor.gate if isinstance(editor, GatedEditor) else None,
            rejected=classified.rejected,
        )
        with self._lock:
            self.batches[batch.batch_id] = batch

        get_log_service().info(
            "upload",
            "batch_created",
            f"Batch created: {len(tasks)} files for {len(target_ids)} rooms",
            {
                "batch_id": batch.batch_id,
                "scope": scope.to_dict(),
                "target_ids": target_ids,
                "files": [t.name for t in tasks],
                "rejected": [r.to_dict() for r in classified.rejected],
                "trim_range": trim_range.to_dict() if trim_range else None,
            },
        )
        return batch

    def get_batch(self, batch_id: str) -> UploadBatch | None:
        """Get a batch by ID."""
        with self._lock:
            return self.batches.get(batch_id)

    def _emit(self, batch: UploadBatch) -> None:
        if not batch.progress_callback:
            return
        try:
            batch.progress_callback(batch.snapshot())
        except Exception:
            logger.warning("Progress callback failed for batch %s", batch.batch_id, exc_info=True)

    def run_batch(
        self, batch_id: str, progress_callback: ProgressCallback | None = None
    ) -> BatchSnapshot | None:
        """Preprocess, upload and apply a batch. Blocks until the batch is finished.

        Never raises for pipeline failures: every outcome is recorded on the batch.

        Args:
            batch_id: Batch created by ``create_batch``
            progress_callback: Called with a fresh snapshot on every state change

        Returns:
            Final snapshot, or None if the batch does not exist
        """
        batch = self.get_batch(batch_id)
        if not batch:
            return None

        with batch.lock:
            if batch.running or batch.is_finished:
                return batch.snapshot()
            batch.running = True
            batch.started_at = utc_now()
            batch.progress_callback = progress_callback

        log = get_log_service()
        log.info(
            "upload",
            "batch_started",
            f"Batch {batch_id} started",
            {"batch_id": batch_id, "file_count": len(batch.tasks)},
        )
        try:
            self._emit(batch)
            if self._preprocess(batch):
                self._upload_all(batch)
                self._apply(batch)
        except Exception as e:
            logger.exception("Batch %s failed", batch_id)
            self._fail(batch, e)
        finally:
            self._finish(batch)
        return batch.snapshot()

    def _fail(self, batch: UploadBatch, error: Exception) -> None:
        """Record an unexpected pipeline failure; unfinished files become errors."""
        with batch.lock:
            batch.error_message = str(error) or type(error).__name__
            for task in batch.tasks:
                if not task.stage.is_terminal:
                    task.set_stage(TaskStage.ERROR)
                    task.error_message = batch.error_message
        if batch.review_gate:
            batch.review_gate.abandon()
        get_log_service().error(
            "upload",
            "batch_failed",
            f"Batch {batch.batch_id} failed: {batch.error_message}",
            {"batch_id": batch.batch_id, "error": batch.error_message},
        )

    def _preprocess(self, batch: UploadBatch) -> bool:
        """Run the edit/trim stages; returns False if the batch was abandoned."""
        tasks = {t.task_id: t for t in batch.tasks}

        def on_stage(task_id: str, stage: TaskStage) -> None:
            with batch.lock:
                task = tasks[task_id]
                if task.stage.is_terminal:
                    return
                task.set_stage(stage)
            self._emit(batch)

        def on_trim_progress(task_id: str, percent: float) -> None:
            with batch.lock:
                if batch.cancelled:
                    raise PreprocessingAbandoned(f"Batch {batch.batch_id} was cancelled")
                task = tasks[task_id]
                task.trim_progress = max(task.trim_progress, percent)
            self._emit(batch)

        def is_cancelled(task_id: str) -> bool:
            with batch.lock:
                if not task_id:
                    return batch.cancelled
                return tasks[task_id].cancel_requested

        try:
            results = batch.preprocessor.run(
                [PreprocessItem(t.task_id, t.media_file) for t in batch.tasks],
                trim_range=batch.trim_range,
                on_stage=on_stage,
                on_progress=on_trim_progress,
                is_cancelled=is_cancelled,
                batch_id=batch.batch_id,
            )
        except (PreprocessingAbandoned, ValidationError) as e:
            self._abandon(batch, e)
            return False

        with batch.lock:
            for task in batch.tasks:
                task.media_file = results.get(task.task_id, task.media_file)
                task.storage_path = generate_storage_path(task.media_file)
        return True

    def _abandon(self, batch: UploadBatch, error: MediaIngestError) -> None:
        """End a batch whose preprocessing did not complete. Nothing is uploaded."""
        stage = TaskStage.ERROR if isinstance(error, ValidationError) else TaskStage.CANCELLED
        with batch.lock:
            batch.error_message = str(error)
            for task in batch.tasks:
                if not task.stage.is_terminal:
                    task.set_stage(stage)
                    if stage == TaskStage.ERROR:
                        task.error_message = str(error)
        if batch.review_gate:
            batch.review_gate.abandon()

        get_log_service().warning(
            "preprocess",
            "preprocessing_abandoned",
            f"Preprocessing abandoned: {error}",
            {"batch_id": batch.batch_id, "error": error.to_dict()},
        )
        self._emit(batch)

    def _upload_all(self, batch: UploadBatch) -> None:
        try:
            transport = self._get_transport()
        except TransportError as e:
            with batch.lock:
                for task in batch.tasks:
                    if not task.stage.is_terminal:
                        task.set_stage(TaskStage.ERROR)
                        task.error_message = str(e)
            get_log_service().error(
                "upload",
                "transport_unavailable",
                str(e),
                {"batch_id": batch.batch_id},
            )
            self._emit(batch)
            return

        worklist = deque(batch.tasks)
        while worklist:
            self._upload_task(batch, worklist.popleft(), transport)

    def _upload_task(self, batch: UploadBatch, task: UploadTask, transport: Transport) -> None:
        log = get_log_service()
        metadata = {
            "batch_id": batch.batch_id,
            "task_id": task.task_id,
            "filename": task.name,
            "file_size": task.file_size,
            "storage_path": task.storage_path,
        }

        # Registration and the cancel-requested check happen under the batch lock,
        # which cancel_task also holds, so a cancel is never lost in between.
        with batch.lock:
            if task.stage.is_terminal:
                return
            if batch.cancelled or task.cancel_requested:
                task.set_stage(TaskStage.CANCELLED)
                token: CancellationToken | None = None
            else:
                token = self.registry.register(task.task_id)
                task.set_stage(TaskStage.UPLOADING)
                task.upload_started_at = utc_now()

        if token is None:
            log.info("upload", "file_upload_skipped", f"Skipped cancelled {task.name}", metadata)
            self._emit(batch)
            return

        log.info("upload", "file_upload_started", f"Uploading {task.name}", metadata)
        self._emit(batch)

        def on_progress(percent: float) -> None:
            with batch.lock:
                if token.cancelled or task.stage != TaskStage.UPLOADING:
                    return
                if percent <= task.progress:
                    return
                task.progress = min(100.0, percent)
            self._emit(batch)

        url: str | None = None
        error: Exception | None = None
        try:
            url = transport.upload(
                task.media_file.content,
                task.storage_path,
                task.media_file.content_type,
                on_progress,
                token,
            )
        except CancellationError:
            pass
        except TransportError as e:
            error = e
        except Exception as e:
            logger.exception("Unexpected transport failure for %s", task.name)
            error = e

        with batch.lock:
            self.registry.release(task.task_id)
            task.upload_completed_at = utc_now()
            if token.cancelled:
                task.set_stage(TaskStage.CANCELLED)
            elif error is not None:
                task.set_stage(TaskStage.ERROR)
                task.error_message = str(error)
            else:
                task.url = url
                task.progress = 100.0
                task.set_stage(TaskStage.COMPLETE)
            stage = task.stage

        metadata["upload_duration_seconds"] = task.upload_duration_seconds
        if stage == TaskStage.COMPLETE:
            log.info("upload", "file_upload_completed", f"Uploaded {task.name}", {
                **metadata,
                "url": url,
            })
        elif stage == TaskStage.CANCELLED:
            log.info("upload", "file_upload_cancelled", f"Cancelled {task.name}", metadata)
        else:
            log.error(
                "upload",
                "file_upload_failed",
                f"Failed to upload {task.name}: {task.error_message}",
                {**metadata, "error": task.error_message},
            )
        self._emit(batch)

    def _apply(self, batch: UploadBatch) -> None:
        with batch.lock:
            cancelled = batch.cancelled
            completed = [t for t in batch.tasks if t.stage == TaskStage.COMPLETE and t.url]
            image_urls = [t.url for t in completed if t.kind == MediaKind.IMAGE and t.url]
            video_urls = [t.url for t in completed if t.kind == MediaKind.VIDEO and t.url]

        if cancelled:
            get_log_service().info(
                "apply",
                "apply_skipped",
                f"Batch {batch.batch_id} was cancelled, nothing applied",
                {"batch_id": batch.batch_id},
            )
            return

        try:
            applied = apply_uploads(
                self.store,
                batch.target_ids,
                image_urls,
                video_urls[0] if video_urls else None,
                batch_id=batch.batch_id,
            )
        except ApplyError as e:
            with batch.lock:
                batch.applied_ids = list(e.applied)
                batch.apply_error = e
            return

        with batch.lock:
            batch.applied_ids = applied

    def _finish(self, batch: UploadBatch) -> None:
        with batch.lock:
            batch.completed_at = utc_now()
            batch.running = False
            for task in batch.tasks:
                self.registry.release(task.task_id)
        snapshot = batch.snapshot()

        # Terminal event goes out first; the summary I/O follows
        self._emit(batch)

        log = get_log_service()
        summary = {
            "timestamp": isoformat_or_none(batch.completed_at),
            "event": "batch_completed",
            **batch.to_dict(),
        }
        log.info(
            "upload",
            "batch_completed",
            f"Batch {snapshot.status}: {snapshot.completed_count} uploaded, "
            f"{snapshot.error_count} failed, {snapshot.cancelled_count} cancelled",
            {
                "batch_id": batch.batch_id,
                "status": snapshot.status,
                "completed": snapshot.completed_count,
                "failed": snapshot.error_count,
                "cancelled": snapshot.cancelled_count,
                "applied_ids": batch.applied_ids,
            },
        )
        try:
            log.save_batch_summary(batch.batch_id, summary, batch.completed_at or utc_now())
        except OSError:
            logger.warning("Failed to save batch summary", exc_info=True)

    def upload_batch(
        self,
        files: list[MediaFile],
        scope: TargetScope,
        progress_callback: ProgressCallback | None = None,
        **options: Any,
    ) -> BatchSnapshot:
        """Create and run a batch in the calling thread.

        Raises:
            ValidationError: If the selection or the scope is rejected
        """
        batch = self.create_batch(files, scope, **options)
        snapshot = self.run_batch(batch.batch_id, progress_callback)
        return snapshot or batch.snapshot()

    def start_batch(
        self, batch_id: str, progress_callback: ProgressCallback | None = None
    ) -> threading.Thread:
        """Run a batch on its own worker thread."""
        thread = threading.Thread(
            target=self.run_batch,
            args=(batch_id, progress_callback),
            name=f"batch-{batch_id[:8]}",
            daemon=True,
        )
        thread.start()
        return thread

    def cancel_task(self, batch_id: str, task_id: str) -> bool:
        """Cancel one file of a batch.

        An in-flight transfer is aborted through its token; a file that has not
        started uploading is skipped when its turn comes. The rest of the batch
        continues.

        Returns:
            True if the task was found and not already terminal
        """
        batch = self.get_batch(batch_id)
        if not batch:
            return False
        task = batch.get_task(task_id)
        if not task:
            return False

        with batch.lock:
            if task.stage.is_terminal:
                return False
            in_flight = self.registry.cancel(task_id)
            if not in_flight:
                task.cancel_requested = True
                task.set_stage(TaskStage.CANCELLED)
        if not in_flight and batch.review_gate:
            # A file waiting for review continues unedited and is then skipped
            batch.review_gate.submit(task_id, None)

        get_log_service().warning(
            "upload",
            "file_cancel_requested",
            f"Cancel requested for {task.name}",
            {"batch_id": batch_id, "task_id": task_id, "in_flight": in_flight},
        )
        self._emit(batch)
        return True

    def cancel_batch(self, batch_id: str) -> bool:
        """Cancel every remaining file of a batch. Nothing from it is applied.

        Files already uploaded stay in storage unattached.

        Returns:
            True if the batch was found and still running or pending
        """
        batch = self.get_batch(batch_id)
        if not batch:
            return False

        with batch.lock:
            if batch.is_finished or batch.cancelled:
                return False
            batch.cancelled = True
            for task in batch.tasks:
                if task.stage.is_terminal:
                    continue
                if not self.registry.cancel(task.task_id):
                    task.cancel_requested = True
                    task.set_stage(TaskStage.CANCELLED)
        if batch.review_gate:
            batch.review_gate.abandon()

        get_log_service().warning(
            "upload",
            "batch_cancelled",
            f"Batch {batch_id} cancelled",
            {"batch_id": batch_id},
        )
        self._emit(batch)
        return True

    def submit_review(self, batch_id: str, task_id: str, edited: MediaFile | None) -> bool:
        """Resolve the pending review of a file (None keeps the original).

        Returns:
            True if the file was waiting for a review decision
        """
        batch = self.get_batch(batch_id)
        if not batch or not batch.review_gate:
            return False
        return batch.review_gate.submit(task_id, edited)

    def get_active_batches(self) -> list[UploadBatch]:
        """Get batches that have not finished yet."""
        with self._lock:
            return [b for b in self.batches.values() if not b.is_finished]

    def get_target_progress(self, target_id: str) -> dict[str, Any]:
        """Progress of every known batch that includes a room."""
        with self._lock:
            batches = list(self.batches.values())
        return summarize_target(target_id, [b.snapshot() for b in batches])

    def cleanup_old_batches(self, max_age_seconds: int = 3600) -> int:
        """Remove finished batches older than max_age_seconds.

        Returns:
            Number of batches removed
        """
        now = utc_now()
        with self._lock:
            to_remove = [
                batch_id
                for batch_id, batch in self.batches.items()
                if batch.completed_at
                and (now - batch.completed_at).total_seconds() > max_age_seconds
            ]
            for batch_id in to_remove:
                del self.batches[batch_id]
        return len(to_remove)


# Global upload manager instance
_upload_manager: UploadManager | None = None


def get_upload_manager() -> UploadManager:
    """Get the global upload manager instance."""
    global _upload_manager
    if _upload_manager is None:
        _upload_manager = UploadManager()
    return _upload_manager
