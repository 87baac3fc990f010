"""Transports: move one file's bytes to storage and return its URL.

Every transport follows the same contract:

- ``on_progress`` receives a percentage that never decreases;
- once the token is cancelled no further progress is reported and
  ``CancellationError`` is raised, even if all bytes were already sent;
- storage and network failures surface as ``TransportError``.
"""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

from media_ingest.config import Settings
from media_ingest.services import s3_service
from media_ingest.services.cancellation import CancellationToken
from media_ingest.services.errors import CancellationError, TransportError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


class Transport(Protocol):
    """Storage collaborator used by the upload orchestrator."""

    def upload(
        self,
        data: bytes,
        path: str,
        content_type: str,
        on_progress: ProgressCallback,
        token: CancellationToken,
    ) -> str:
        """Upload ``data`` to ``path`` and return the public URL."""
        ...


class _MonotonicProgress:
    """Turns byte counts into non-decreasing percentages and enforces cancellation."""

    def __init__(self, on_progress: ProgressCallback, token: CancellationToken) -> None:
        self.on_progress = on_progress
        self.token = token
        self.percent = 0.0

    def __call__(self, uploaded: int, total: int) -> None:
        self.token.raise_if_cancelled()
        percent = 100.0 if total <= 0 else min(100.0, uploaded / total * 100)
        if percent <= self.percent:
            return
        self.percent = percent
        self.on_progress(round(percent, 1))


class S3Transport:
    """Uploads to an S3 bucket through boto3's managed transfer."""

    def __init__(
        self,
        client: Any,
        bucket: str,
        region: str = "us-west-2",
        public_url_base: str = "",
    ) -> None:
        self.client = client
        self.bucket = bucket
        self.region = region
        self.public_url_base = public_url_base

    def upload(
        self,
        data: bytes,
        path: str,
        content_type: str,
        on_progress: ProgressCallback,
        token: CancellationToken,
    ) -> str:
        token.raise_if_cancelled()
        progress = _MonotonicProgress(on_progress, token)
        try:
            result = s3_service.upload_bytes_with_progress(
                self.client,
                data,
                self.bucket,
                path,
                content_type=content_type,
                callback=progress,
            )
        except CancellationError:
            raise
        except Exception as e:
            # s3transfer may wrap the exception raised by an aborting callback
            if token.cancelled:
                raise CancellationError(token.task_id) from e
            raise TransportError(f"Upload of {path} failed: {e}", path) from e

        if not result["success"]:
            if token.cancelled:
                raise CancellationError(token.task_id)
            raise TransportError(f"Upload of {path} failed: {result['error']}", path)

        token.raise_if_cancelled()
        if progress.percent < 100:
            progress(len(data), len(data))
            token.raise_if_cancelled()
        return s3_service.build_object_url(self.bucket, self.region, path, self.public_url_base)


class FilesystemTransport:
    """Writes files under a local directory in fixed-size chunks.

    Partially written files are removed when a transfer is cancelled or fails.
    """

    CHUNK_SIZE = 256 * 1024

    def __init__(self, base_path: str | Path, public_url_base: str = "") -> None:
        self.base_path = Path(base_path).resolve()
        self.public_url_base = public_url_base.rstrip("/")
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _target_path(self, path: str) -> Path:
        target = (self.base_path / path).resolve()
        try:
            target.relative_to(self.base_path)
        except ValueError:
            raise TransportError(f"Storage path escapes the storage root: {path}", path) from None
        return target

    def url_for(self, path: str) -> str:
        """Public URL of a stored path."""
        if self.public_url_base:
            return f"{self.public_url_base}/{path}"
        return (self.base_path / path).as_uri()

    def upload(
        self,
        data: bytes,
        path: str,
        content_type: str,
        on_progress: ProgressCallback,
        token: CancellationToken,
    ) -> str:
        token.raise_if_cancelled()
        target = self._target_path(path)
        partial = target.with_name(target.name + ".part")
        progress = _MonotonicProgress(on_progress, token)
        total = len(data)

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(partial, "wb") as f:
                for offset in range(0, total, self.CHUNK_SIZE):
                    token.raise_if_cancelled()
                    chunk = data[offset : offset + self.CHUNK_SIZE]
                    f.write(chunk)
                    progress(offset + len(chunk), total)
            token.raise_if_cancelled()
            partial.replace(target)
        except CancellationError:
            partial.unlink(missing_ok=True)
            raise
        except OSError as e:
            partial.unlink(missing_ok=True)
            raise TransportError(f"Write of {path} failed: {e}", path) from e

        if progress.percent < 100:
            progress(total, total)
        logger.debug("Stored %s (%d bytes, %s)", target, total, content_type)
        return self.url_for(path)


def create_transport(settings: Settings) -> Transport:
    """Build the transport configured in settings.

    Raises:
        TransportError: If the backend is unknown or cannot be initialised
    """
    backend = settings.storage_backend
    if backend == "filesystem":
        try:
            return FilesystemTransport(settings.storage_root, settings.public_url_base)
        except OSError as e:
            raise TransportError(f"Storage root is not usable: {e}") from e
    if backend == "s3":
        if not settings.s3_bucket:
            raise TransportError("S3 bucket not configured")
        try:
            client = s3_service.create_s3_client(settings.aws_profile, settings.aws_region)
        except Exception as e:
            raise TransportError(f"Failed to create S3 client: {e}") from e
        return S3Transport(
            client,
            settings.s3_bucket,
            settings.aws_region,
            settings.public_url_base,
        )
    raise TransportError(f"Unknown storage backend: {backend}")
