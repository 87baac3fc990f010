"""Upload API routes for media_ingest"""

import json
import threading
import time
from collections import deque
from collections.abc import Generator
from typing import Any

from flask import Blueprint, Response, jsonify, request
from werkzeug.datastructures import FileStorage

from media_ingest.config import get_settings
from media_ingest.services.classifier import KindFilter
from media_ingest.services.errors import ValidationError
from media_ingest.services.media import MediaFile, TrimRange
from media_ingest.services.preprocess import GatedEditor, ReviewGate
from media_ingest.services.progress import BatchSnapshot
from media_ingest.services.targets import Bulk, Single, TargetScope
from media_ingest.services.trimmer import create_trimmer
from media_ingest.services.upload_manager import get_upload_manager
from media_ingest.services.utils import parse_bool

upload_bp = Blueprint("upload", __name__)

# Store for SSE clients per batch
_sse_queues: dict[str, list[deque[dict[str, Any]]]] = {}
_sse_lock = threading.Lock()


def send_sse_event(batch_id: str, data: dict[str, Any]) -> None:
    """Send an SSE event to all clients listening for a batch."""
    with _sse_lock:
        for q in _sse_queues.get(batch_id, []):
            q.append(data)


def progress_callback(snapshot: BatchSnapshot) -> None:
    """Forward batch snapshots to SSE listeners."""
    send_sse_event(snapshot.batch_id, {"type": "progress", **snapshot.to_dict()})


def _to_media_file(storage: FileStorage) -> MediaFile:
    content_type = storage.mimetype
    # Browsers send octet-stream for unknown types; fall back to the extension
    if content_type == "application/octet-stream":
        content_type = ""
    return MediaFile(
        name=storage.filename or "",
        content=storage.read(),
        content_type=content_type,
    )


def _parse_scope(form: Any) -> TargetScope:
    """Build the target scope from form fields.

    ``target_id`` selects one room; ``target_ids`` (repeated or comma separated)
    or ``room_type`` select a bulk scope.
    """
    target_id = form.get("target_id", "").strip()
    if target_id:
        return Single(target_id)

    target_ids: list[str] = []
    for value in form.getlist("target_ids"):
        target_ids.extend(i.strip() for i in value.split(",") if i.strip())
    room_type = form.get("room_type", "").strip() or None
    return Bulk(target_ids=tuple(target_ids), room_type=room_type)


def _parse_trim_range(form: Any) -> TrimRange | None:
    start = form.get("trim_start", "").strip()
    end = form.get("trim_end", "").strip()
    if not start and not end:
        return None
    try:
        return TrimRange(float(start or 0), float(end))
    except ValueError:
        raise ValidationError(f"Invalid trim range: {start!r}-{end!r}") from None


@upload_bp.route("/batches", methods=["POST"])
def create_batch() -> tuple[Response, int]:
    """Create an upload batch and start it in the background.

    Form fields:
        files: Selected files (multipart)
        target_id: Single room id, or
        target_ids / room_type: Bulk selection or room-type filter
        kind: images, videos or both (default both)
        multiple: Accept more than one file (default true)
        trim_start, trim_end: Trim range in seconds for the video
        review_images: Hold each image for a review decision (default false)

    Returns:
        JSON batch state (202 Accepted), 400 if the batch is rejected
    """
    settings = get_settings()
    manager = get_upload_manager()
    manager.cleanup_old_batches()
    form = request.form

    files = [_to_media_file(f) for f in request.files.getlist("files") if f.filename]
    if not files:
        return jsonify({"error": "No files provided"}), 400

    try:
        kind_filter = KindFilter(form.get("kind", "both"))
    except ValueError:
        return jsonify({"error": f"Invalid kind: {form.get('kind')}"}), 400

    try:
        trim_range = _parse_trim_range(form)
        editor = (
            GatedEditor(ReviewGate(timeout=settings.review_timeout_seconds))
            if parse_bool(form.get("review_images"))
            else None
        )
        batch = manager.create_batch(
            files,
            _parse_scope(form),
            kind_filter=kind_filter,
            multiple=parse_bool(form.get("multiple"), default=True),
            trim_range=trim_range,
            editor=editor,
            trimmer=create_trimmer() if trim_range else None,
        )
    except ValidationError as e:
        return jsonify(e.to_dict()), 400

    manager.start_batch(batch.batch_id, progress_callback)
    return jsonify(batch.to_dict()), 202


@upload_bp.route("/batches/<batch_id>", methods=["GET"])
def get_batch(batch_id: str) -> tuple[Response, int]:
    """Get the current state of a batch (non-streaming)."""
    batch = get_upload_manager().get_batch(batch_id)
    if not batch:
        return jsonify({"error": "Batch not found"}), 404
    return jsonify(batch.to_dict()), 200


@upload_bp.route("/active", methods=["GET"])
def get_active_batches() -> tuple[Response, int]:
    """List batches that have not finished (for state restoration on page refresh)."""
    batches = get_upload_manager().get_active_batches()
    batches.sort(key=lambda b: b.created_at)
    return jsonify({"batches": [b.to_dict() for b in batches]}), 200


@upload_bp.route("/progress/<batch_id>", methods=["GET"])
def get_progress(batch_id: str) -> Response:
    """Stream progress snapshots for a batch via Server-Sent Events.

    The stream ends with a ``batch_complete`` event carrying the final state.
    """
    manager = get_upload_manager()

    def generate() -> Generator[str, None, None]:
        queue: deque[dict[str, Any]] = deque()
        with _sse_lock:
            _sse_queues.setdefault(batch_id, []).append(queue)

        try:
            batch = manager.get_batch(batch_id)
            if not batch:
                yield 'data: {"error": "Batch not found"}\n\n'
                return
            yield f"data: {json.dumps({'type': 'progress', **batch.snapshot().to_dict()})}\n\n"

            while True:
                finished = batch.is_finished
                while queue:
                    yield f"data: {json.dumps(queue.popleft())}\n\n"
                if finished:
                    final = {"type": "batch_complete", **batch.to_dict()}
                    yield f"data: {json.dumps(final)}\n\n"
                    return

                # Small delay to prevent busy waiting
                time.sleep(0.1)

                if manager.get_batch(batch_id) is None:
                    yield 'data: {"error": "Batch not found"}\n\n'
                    return
        finally:
            with _sse_lock:
                if batch_id in _sse_queues and queue in _sse_queues[batch_id]:
                    _sse_queues[batch_id].remove(queue)
                    if not _sse_queues[batch_id]:
                        del _sse_queues[batch_id]

    return Response(
        generate(),
        mimetype="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@upload_bp.route("/batches/<batch_id>/tasks/<task_id>/cancel", methods=["POST"])
def cancel_task(batch_id: str, task_id: str) -> tuple[Response, int]:
    """Cancel one file of a batch; the rest of the batch continues."""
    manager = get_upload_manager()
    batch = manager.get_batch(batch_id)
    if not batch or not batch.get_task(task_id):
        return jsonify({"error": "Task not found"}), 404

    if not manager.cancel_task(batch_id, task_id):
        return jsonify({"success": False, "error": "Task already finished"}), 409
    return jsonify({"success": True, "batch": batch.to_dict()}), 200


@upload_bp.route("/batches/<batch_id>/cancel", methods=["POST"])
def cancel_batch(batch_id: str) -> tuple[Response, int]:
    """Cancel a whole batch; nothing from it is applied to rooms."""
    manager = get_upload_manager()
    batch = manager.get_batch(batch_id)
    if not batch:
        return jsonify({"error": "Batch not found"}), 404

    if not manager.cancel_batch(batch_id):
        return jsonify({"success": False, "error": "Batch already finished"}), 409
    return jsonify({"success": True, "batch": batch.to_dict()}), 200


@upload_bp.route("/batches/<batch_id>/reviews/<task_id>", methods=["POST"])
def submit_review(batch_id: str, task_id: str) -> tuple[Response, int]:
    """Resolve a pending image review.

    Send the edited image as the ``file`` field, or no file to keep the original.
    """
    manager = get_upload_manager()
    batch = manager.get_batch(batch_id)
    if not batch or not batch.get_task(task_id):
        return jsonify({"error": "Task not found"}), 404

    upload = request.files.get("file")
    edited = _to_media_file(upload) if upload and upload.filename else None

    if not manager.submit_review(batch_id, task_id, edited):
        return jsonify({"success": False, "error": "Task is not awaiting review"}), 409
    return jsonify({"success": True, "edited": edited is not None}), 200


@upload_bp.route("/targets/<room_id>/progress", methods=["GET"])
def get_target_progress(room_id: str) -> tuple[Response, int]:
    """Aggregate progress of every batch that targets a room."""
    return jsonify(get_upload_manager().get_target_progress(room_id)), 200
