"""Tests for progress aggregation."""

from media_ingest.services.progress import (
    TaskSnapshot,
    TaskStage,
    aggregate_batch,
    batch_status,
    summarize_target,
)


def _task(stage: TaskStage, progress: float = 0.0, task_id: str = "t") -> TaskSnapshot:
    return TaskSnapshot(task_id=task_id, name=f"{task_id}.png", kind="image", stage=stage,
                        progress=progress)


class TestTaskStage:
    """Tests for TaskStage."""

    def test_terminal_stages(self) -> None:
        """Test which stages are terminal."""
        terminal = {s for s in TaskStage if s.is_terminal}
        assert terminal == {TaskStage.COMPLETE, TaskStage.ERROR, TaskStage.CANCELLED}

    def test_preprocessing_stages(self) -> None:
        assert TaskStage.EDITING.is_preprocessing
        assert TaskStage.TRIMMING.is_preprocessing
        assert not TaskStage.UPLOADING.is_preprocessing


class TestBatchStatus:
    """Tests for batch_status."""

    def test_uploading_wins(self) -> None:
        """Test that any uploading file makes the batch uploading."""
        files = [_task(TaskStage.COMPLETE), _task(TaskStage.UPLOADING), _task(TaskStage.ERROR)]
        assert batch_status(files) == "uploading"

    def test_complete_ignores_cancellations(self) -> None:
        """Test that cancellations are not errors."""
        files = [_task(TaskStage.COMPLETE), _task(TaskStage.CANCELLED)]
        assert batch_status(files) == "complete"

    def test_partial_and_failed(self) -> None:
        """Test statuses of terminal batches with errors."""
        assert batch_status([_task(TaskStage.COMPLETE), _task(TaskStage.ERROR)]) == "partial"
        assert batch_status([_task(TaskStage.ERROR), _task(TaskStage.CANCELLED)]) == "failed"

    def test_all_cancelled(self) -> None:
        assert batch_status([_task(TaskStage.CANCELLED), _task(TaskStage.CANCELLED)]) == "cancelled"

    def test_preprocessing_and_queued(self) -> None:
        """Test statuses before any upload starts."""
        assert batch_status([_task(TaskStage.EDITING), _task(TaskStage.QUEUED)]) == "preprocessing"
        assert batch_status([_task(TaskStage.QUEUED)]) == "queued"
        assert batch_status([]) == "queued"


class TestAggregateBatch:
    """Tests for aggregate_batch."""

    def test_mean_progress_and_counts(self) -> None:
        """Test that progress is the mean and counts are independent."""
        files = [
            _task(TaskStage.COMPLETE, 100, "a"),
            _task(TaskStage.UPLOADING, 50, "b"),
            _task(TaskStage.CANCELLED, 20, "c"),
            _task(TaskStage.QUEUED, 0, "d"),
        ]

        snapshot = aggregate_batch("b1", ["r1"], files)

        assert snapshot.progress == 42.5
        assert snapshot.status == "uploading"
        assert snapshot.completed_count == 1
        assert snapshot.error_count == 0
        assert snapshot.cancelled_count == 1
        assert snapshot.is_finished is False

    def test_apply_failure_downgrades_status(self) -> None:
        """Test that a failed apply is reflected in the batch status."""
        files = [_task(TaskStage.COMPLETE, 100, "a")]

        none_applied = aggregate_batch("b1", ["r1"], files, apply_error="Failed to update 1 of 1")
        some_applied = aggregate_batch(
            "b1", ["r1", "r2"], files, applied=True, apply_error="Failed to update 1 of 2"
        )

        assert none_applied.status == "failed"
        assert some_applied.status == "partial"

    def test_empty_batch(self) -> None:
        snapshot = aggregate_batch("b1", [], [])
        assert snapshot.progress == 0.0

    def test_to_dict(self) -> None:
        """Test snapshot serialization."""
        snapshot = aggregate_batch("b1", ["r1", "r2"], [_task(TaskStage.COMPLETE, 100)])

        result = snapshot.to_dict()

        assert result["batch_id"] == "b1"
        assert result["target_ids"] == ["r1", "r2"]
        assert result["status"] == "complete"
        assert result["total_files"] == 1
        assert result["files"][0]["stage"] == "complete"
        assert result["files"][0]["type"] == "image"


class TestSummarizeTarget:
    """Tests for summarize_target."""

    def test_only_matching_batches(self) -> None:
        """Test that only batches that include the target are counted."""
        first = aggregate_batch("b1", ["r1"], [_task(TaskStage.COMPLETE, 100)])
        second = aggregate_batch(
            "b2", ["r1", "r2"], [_task(TaskStage.UPLOADING, 50), _task(TaskStage.ERROR, 0)]
        )
        other = aggregate_batch("b3", ["r3"], [_task(TaskStage.COMPLETE, 100)])

        summary = summarize_target("r1", [first, second, other])

        assert summary["batches"] == ["b1", "b2"]
        assert summary["total_files"] == 3
        assert summary["progress"] == 50.0
        assert summary["active_batches"] == 1
        assert summary["completed_count"] == 1
        assert summary["error_count"] == 1

    def test_unknown_target(self) -> None:
        summary = summarize_target("r9", [])
        assert summary["total_files"] == 0
        assert summary["progress"] == 0.0
