"""SQLite-backed store of target records (rooms) and their media URLs."""

import sqlite3
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from media_ingest.services.errors import ApplyError, MediaIngestError


class RoomNotFound(MediaIngestError):
    """No room exists with the requested id."""

    def __init__(self, room_id: str) -> None:
        super().__init__(f"Room {room_id} not found")
        self.room_id = room_id


@dataclass
class Room:
    """A target record: ordered image URLs and at most one video URL."""

    id: str
    name: str
    room_type: str = ""
    images: list[str] = field(default_factory=list)
    video_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "room_type": self.room_type,
            "images": list(self.images),
            "image_count": len(self.images),
            "video_url": self.video_url,
        }


@dataclass(frozen=True)
class MediaUpdate:
    """Media to merge into one room: images are appended, the video is overwritten."""

    append_images: tuple[str, ...] = ()
    set_video: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.append_images and self.set_video is None


class RoomStore:
    """Room store with thread-local SQLite connections."""

    def __init__(self, db_path: str | Path) -> None:
        """Initialize the database at db_path."""
        self._db_path = Path(db_path)
        self._local = threading.local()
        self._write_lock = threading.Lock()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, "connection") or self._local.connection is None:
            self._local.connection = sqlite3.connect(
                str(self._db_path),
                check_same_thread=False,
                timeout=30.0,
            )
            self._local.connection.row_factory = sqlite3.Row
            self._local.connection.execute("PRAGMA foreign_keys = ON")
        conn: sqlite3.Connection = self._local.connection
        return conn

    def _init_db(self) -> None:
        """Initialize the database schema."""
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS rooms (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                room_type TEXT DEFAULT '',
                video_url TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS room_images (
                room_id TEXT NOT NULL REFERENCES rooms(id) ON DELETE CASCADE,
                position INTEGER NOT NULL,
                url TEXT NOT NULL,
                UNIQUE(room_id, url)
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_room_images_room ON room_images(room_id, position)
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_rooms_type ON rooms(room_type)
        """)

        conn.commit()

    def _load_room(self, conn: sqlite3.Connection, row: sqlite3.Row) -> Room:
        images = [
            r["url"]
            for r in conn.execute(
                "SELECT url FROM room_images WHERE room_id = ? ORDER BY position",
                (row["id"],),
            )
        ]
        return Room(
            id=row["id"],
            name=row["name"],
            room_type=row["room_type"] or "",
            images=images,
            video_url=row["video_url"],
        )

    def create_room(self, name: str, room_type: str = "", room_id: str | None = None) -> Room:
        """Create a room.

        Args:
            name: Display name
            room_type: Category used by type-filtered bulk uploads
            room_id: Optional explicit id (a UUID is generated otherwise)

        Returns:
            The created Room
        """
        room_id = room_id or str(uuid.uuid4())
        conn = self._get_connection()
        with self._write_lock:
            conn.execute(
                "INSERT INTO rooms (id, name, room_type) VALUES (?, ?, ?)",
                (room_id, name, room_type),
            )
            conn.commit()
        return Room(id=room_id, name=name, room_type=room_type)

    def get_room(self, room_id: str) -> Room | None:
        """Get a room by id, or None."""
        conn = self._get_connection()
        row = conn.execute("SELECT * FROM rooms WHERE id = ?", (room_id,)).fetchone()
        if row is None:
            return None
        return self._load_room(conn, row)

    def room_exists(self, room_id: str) -> bool:
        conn = self._get_connection()
        return conn.execute("SELECT 1 FROM rooms WHERE id = ?", (room_id,)).fetchone() is not None

    def list_rooms(self, room_type: str | None = None) -> list[Room]:
        """List rooms in creation order, optionally filtered by type."""
        conn = self._get_connection()
        if room_type:
            rows = conn.execute(
                "SELECT * FROM rooms WHERE room_type = ? ORDER BY created_at, rowid",
                (room_type,),
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM rooms ORDER BY created_at, rowid").fetchall()
        return [self._load_room(conn, row) for row in rows]

    def list_room_ids(self, room_type: str | None = None) -> list[str]:
        """List room ids, optionally filtered by type."""
        return [room.id for room in self.list_rooms(room_type)]

    def apply_media(self, room_id: str, update: MediaUpdate) -> Room:
        """Merge media into one room in a single transaction.

        Image URLs already attached to the room are not appended again.

        Raises:
            RoomNotFound: If the room does not exist
            sqlite3.Error: On database failure (the room is left unchanged)
        """
        conn = self._get_connection()
        with self._write_lock:
            try:
                row = conn.execute("SELECT id FROM rooms WHERE id = ?", (room_id,)).fetchone()
                if row is None:
                    raise RoomNotFound(room_id)

                if update.append_images:
                    position = conn.execute(
                        "SELECT COALESCE(MAX(position), -1) FROM room_images WHERE room_id = ?",
                        (room_id,),
                    ).fetchone()[0]
                    for url in update.append_images:
                        position += 1
                        conn.execute(
                            """
                            INSERT OR IGNORE INTO room_images (room_id, position, url)
                            VALUES (?, ?, ?)
                            """,
                            (room_id, position, url),
                        )

                if update.set_video is not None:
                    conn.execute(
                        "UPDATE rooms SET video_url = ? WHERE id = ?",
                        (update.set_video, room_id),
                    )
                conn.commit()
            except Exception:
                conn.rollback()
                raise

            row = conn.execute("SELECT * FROM rooms WHERE id = ?", (room_id,)).fetchone()
            return self._load_room(conn, row)

    def apply_media_batch(self, updates: dict[str, MediaUpdate]) -> list[str]:
        """Apply media to many rooms, one commit per room.

        Not transactional across rooms: every room is attempted, and rooms updated
        before a failure keep their update.

        Returns:
            Ids of the rooms that were updated

        Raises:
            ApplyError: If at least one room could not be updated
        """
        applied: list[str] = []
        failed: dict[str, str] = {}
        for room_id, update in updates.items():
            try:
                self.apply_media(room_id, update)
                applied.append(room_id)
            except (RoomNotFound, sqlite3.Error) as e:
                failed[room_id] = str(e)

        if failed:
            raise ApplyError(
                f"Failed to update {len(failed)} of {len(updates)} rooms",
                applied=applied,
                failed=failed,
            )
        return applied

    def remove_image(self, room_id: str, index: int) -> Room:
        """Remove the image at ``index`` from a room.

        Raises:
            RoomNotFound: If the room does not exist
            IndexError: If the index is out of range
        """
        room = self.get_room(room_id)
        if room is None:
            raise RoomNotFound(room_id)
        if index < 0 or index >= len(room.images):
            raise IndexError(f"Room {room_id} has no image at index {index}")

        conn = self._get_connection()
        with self._write_lock:
            conn.execute(
                "DELETE FROM room_images WHERE room_id = ? AND url = ?",
                (room_id, room.images[index]),
            )
            conn.commit()
        del room.images[index]
        return room

    def close(self) -> None:
        """Close the database connection for the current thread."""
        if hasattr(self._local, "connection") and self._local.connection is not None:
            self._local.connection.close()
            self._local.connection = None


# Global room store instance
_room_store: RoomStore | None = None


def get_room_store() -> RoomStore:
    """Get the global room store instance."""
    global _room_store
    if _room_store is None:
        from media_ingest.config import get_settings

        _room_store = RoomStore(get_settings().database_path)
    return _room_store
