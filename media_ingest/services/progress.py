"""Progress aggregation: derived, read-only views over upload tasks."""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class TaskStage(Enum):
    """Lifecycle stage of a single upload task."""

    QUEUED = "queued"
    EDITING = "editing"
    TRIMMING = "trimming"
    UPLOADING = "uploading"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Whether the task can no longer change."""
        return self in (TaskStage.COMPLETE, TaskStage.ERROR, TaskStage.CANCELLED)

    @property
    def is_preprocessing(self) -> bool:
        return self in (TaskStage.EDITING, TaskStage.TRIMMING)


@dataclass(frozen=True)
class TaskSnapshot:
    """Immutable copy of one task's observable state."""

    task_id: str
    name: str
    kind: str
    stage: TaskStage
    progress: float
    url: str | None = None
    error_message: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "task_id": self.task_id,
            "name": self.name,
            "type": self.kind,
            "stage": self.stage.value,
            "progress": self.progress,
            "url": self.url,
            "error_message": self.error_message,
        }


@dataclass(frozen=True)
class BatchSnapshot:
    """Immutable view of a batch, recomputed on every progress tick."""

    batch_id: str
    target_ids: tuple[str, ...]
    files: tuple[TaskSnapshot, ...]
    progress: float
    status: str
    completed_count: int
    error_count: int
    cancelled_count: int
    applied: bool = False
    apply_error: str | None = None

    @property
    def is_finished(self) -> bool:
        """Every file reached a terminal stage."""
        return all(f.stage.is_terminal for f in self.files)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "batch_id": self.batch_id,
            "target_ids": list(self.target_ids),
            "status": self.status,
            "progress": self.progress,
            "total_files": len(self.files),
            "completed_count": self.completed_count,
            "error_count": self.error_count,
            "cancelled_count": self.cancelled_count,
            "applied": self.applied,
            "apply_error": self.apply_error,
            "files": [f.to_dict() for f in self.files],
        }


def batch_status(files: tuple[TaskSnapshot, ...] | list[TaskSnapshot]) -> str:
    """Derive the batch status from its files.

    ``uploading`` while any file uploads; once every file is terminal, ``complete``
    when no file errored (cancellations are not errors), ``partial`` when some
    completed and some errored, ``failed`` when nothing completed, ``cancelled`` when
    every file was cancelled.
    """
    stages = [f.stage for f in files]
    if any(s == TaskStage.UPLOADING for s in stages):
        return "uploading"
    if stages and all(s.is_terminal for s in stages):
        completed = stages.count(TaskStage.COMPLETE)
        errors = stages.count(TaskStage.ERROR)
        if errors == 0:
            if completed == 0 and stages.count(TaskStage.CANCELLED) == len(stages):
                return "cancelled"
            return "complete"
        return "partial" if completed else "failed"
    if any(s.is_preprocessing for s in stages):
        return "preprocessing"
    return "queued"


def aggregate_batch(
    batch_id: str,
    target_ids: list[str] | tuple[str, ...],
    files: list[TaskSnapshot],
    applied: bool = False,
    apply_error: str | None = None,
) -> BatchSnapshot:
    """Roll per-file snapshots into a batch snapshot.

    Batch progress is the mean of file progress. File progress never decreases and is
    frozen once a file is terminal, so the mean never decreases either.

    A failed apply downgrades a finished batch to ``partial`` when some rooms were
    updated and to ``failed`` when none were.
    """
    frozen = tuple(files)
    status = batch_status(frozen)
    if apply_error and status in ("complete", "partial"):
        status = "partial" if applied else "failed"
    progress = round(sum(f.progress for f in frozen) / len(frozen), 1) if frozen else 0.0
    return BatchSnapshot(
        batch_id=batch_id,
        target_ids=tuple(target_ids),
        files=frozen,
        progress=progress,
        status=status,
        completed_count=sum(1 for f in frozen if f.stage == TaskStage.COMPLETE),
        error_count=sum(1 for f in frozen if f.stage == TaskStage.ERROR),
        cancelled_count=sum(1 for f in frozen if f.stage == TaskStage.CANCELLED),
        applied=applied,
        apply_error=apply_error,
    )


def summarize_target(target_id: str, snapshots: list[BatchSnapshot]) -> dict[str, Any]:
    """Per-target view across every batch that includes the target.

    Args:
        target_id: Room id
        snapshots: Snapshots of candidate batches (others are ignored)

    Returns:
        Dict with the matching batches, their mean progress and summed counts
    """
    matching = [s for s in snapshots if target_id in s.target_ids]
    total_files = sum(len(s.files) for s in matching)
    progress = (
        round(sum(f.progress for s in matching for f in s.files) / total_files, 1)
        if total_files
        else 0.0
    )
    return {
        "target_id": target_id,
        "batches": [s.batch_id for s in matching],
        "active_batches": sum(1 for s in matching if not s.is_finished),
        "total_files": total_files,
        "progress": progress,
        "completed_count": sum(s.completed_count for s in matching),
        "error_count": sum(s.error_count for s in matching),
        "cancelled_count": sum(s.cancelled_count for s in matching),
    }
