"""Cancellation tokens and the registry of in-flight transfers."""

import threading

from media_ingest.services.errors import CancellationError


class CancellationToken:
    """Abort handle for one upload task, passed into the transport at call time."""

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        """Whether cancel() has been called."""
        return self._event.is_set()

    def cancel(self) -> None:
        """Request the transfer to stop."""
        self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise CancellationError if cancellation was requested."""
        if self._event.is_set():
            raise CancellationError(self.task_id)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or timeout; returns the cancelled state."""
        return self._event.wait(timeout)

    def __repr__(self) -> str:
        return f"CancellationToken({self.task_id!r}, cancelled={self.cancelled})"


class CancellationRegistry:
    """Thread-safe map from task id to the token of its in-flight transfer.

    Shared by the driving layer (cancel requests) and every running batch
    (register/release), so every access goes through the lock.
    """

    def __init__(self) -> None:
        self._tokens: dict[str, CancellationToken] = {}
        self._lock = threading.Lock()

    def register(self, task_id: str) -> CancellationToken:
        """Create and register a token for a task whose transfer is starting.

        Raises:
            ValueError: If the task already has an in-flight transfer
        """
        with self._lock:
            if task_id in self._tokens:
                raise ValueError(f"Task {task_id} already has an active transfer")
            token = CancellationToken(task_id)
            self._tokens[task_id] = token
            return token

    def cancel(self, task_id: str) -> bool:
        """Trigger the token for a task.

        Returns:
            True if an in-flight transfer was found, False (no-op) otherwise
        """
        with self._lock:
            token = self._tokens.get(task_id)
        if token is None:
            return False
        token.cancel()
        return True

    def release(self, task_id: str) -> None:
        """Forget a task once it reached a terminal state."""
        with self._lock:
            self._tokens.pop(task_id, None)

    def active_ids(self) -> list[str]:
        """Task ids with an in-flight transfer."""
        with self._lock:
            return list(self._tokens)

    def __contains__(self, task_id: object) -> bool:
        with self._lock:
            return task_id in self._tokens

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)
