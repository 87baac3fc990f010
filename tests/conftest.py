"""Pytest configuration and fixtures for the media_ingest tests."""

import threading
from collections.abc import Callable, Generator
from pathlib import Path

import pytest
from flask import Flask
from flask.testing import FlaskClient

from media_ingest import create_app
from media_ingest.config import get_settings
from media_ingest.services import log_service, room_store, upload_manager
from media_ingest.services.cancellation import CancellationToken
from media_ingest.services.errors import TransportError
from media_ingest.services.media import MediaFile
from media_ingest.services.room_store import RoomStore
from media_ingest.services.upload_manager import UploadManager

PNG_HEADER = b"\x89PNG\r\n\x1a\n"


@pytest.fixture(autouse=True)
def isolated_settings(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Generator[Path, None, None]:
    """Point settings, logs, database and storage at a temporary directory."""
    monkeypatch.setenv("MEDIA_INGEST_SETTINGS_FILE", str(tmp_path / "settings.json"))
    monkeypatch.setenv("MEDIA_INGEST_LOG_DIRECTORY", str(tmp_path / "logs"))
    monkeypatch.setenv("MEDIA_INGEST_DATABASE_PATH", str(tmp_path / "rooms.db"))
    monkeypatch.setenv("MEDIA_INGEST_STORAGE_BACKEND", "filesystem")
    monkeypatch.setenv("MEDIA_INGEST_STORAGE_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("MEDIA_INGEST_PUBLIC_URL_BASE", "https://cdn.example.com")
    monkeypatch.setenv("MEDIA_INGEST_REVIEW_TIMEOUT_SECONDS", "5")
    get_settings().reload()

    # Fresh singletons for every test
    monkeypatch.setattr(log_service, "_log_service", None)
    monkeypatch.setattr(room_store, "_room_store", None)
    monkeypatch.setattr(upload_manager, "_upload_manager", None)

    yield tmp_path

    if room_store._room_store is not None:
        room_store._room_store.close()


@pytest.fixture
def log_dir(isolated_settings: Path) -> Path:
    """Directory the log service writes to."""
    return isolated_settings / "logs"


@pytest.fixture
def app() -> Flask:
    """Create application for testing."""
    app = create_app()
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    """Create test client."""
    return app.test_client()


@pytest.fixture
def store(isolated_settings: Path) -> Generator[RoomStore, None, None]:
    """Room store backed by a temporary database."""
    store = RoomStore(isolated_settings / "test-rooms.db")
    yield store
    store.close()


class FakeTransport:
    """In-memory transport that records every call.

    ``fail`` holds call indexes whose upload raises TransportError; ``on_upload`` runs
    before a file's progress is reported (e.g. to cancel it mid-flight).
    """

    def __init__(self, steps: int = 4) -> None:
        self.steps = steps
        self.calls: list[dict[str, object]] = []
        self.progress: dict[str, list[float]] = {}
        self.fail: set[int] = set()
        self.on_upload: Callable[[str, int], None] | None = None
        self.lock = threading.Lock()

    def upload(
        self,
        data: bytes,
        path: str,
        content_type: str,
        on_progress: Callable[[float], None],
        token: CancellationToken,
    ) -> str:
        with self.lock:
            index = len(self.calls)
            self.calls.append({"data": data, "path": path, "content_type": content_type})
            self.progress[path] = []

        token.raise_if_cancelled()
        if self.on_upload:
            self.on_upload(path, index)
        for step in range(1, self.steps + 1):
            token.raise_if_cancelled()
            percent = step * 100 / self.steps
            self.progress[path].append(percent)
            on_progress(percent)
        if index in self.fail:
            raise TransportError(f"simulated failure for {path}", path)
        token.raise_if_cancelled()
        return f"https://cdn.example.com/{path}"


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def manager(store: RoomStore, transport: FakeTransport) -> UploadManager:
    """Upload manager wired to the temporary store and the fake transport."""
    return UploadManager(store=store, transport=transport)


@pytest.fixture
def make_image() -> Callable[..., MediaFile]:
    """Factory for small image files."""

    def factory(name: str = "photo.png", size: int = 1024) -> MediaFile:
        content = PNG_HEADER + b"\x00" * max(0, size - len(PNG_HEADER))
        return MediaFile(name=name, content=content, content_type="image/png")

    return factory


@pytest.fixture
def make_video() -> Callable[..., MediaFile]:
    """Factory for video files of a given size."""

    def factory(name: str = "clip.mp4", size: int = 4096) -> MediaFile:
        return MediaFile(name=name, content=b"\x00" * size, content_type="video/mp4")

    return factory
