"""JSONL event log for the ingestion pipeline.

Events go to hive-partitioned daily files (``json/year=YYYY/month=MM/day=DD/events.jsonl``)
and every finished batch gets its own summary file next to them.
"""

import json
import re
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from media_ingest.config import get_settings

CATEGORIES = ("app", "upload", "preprocess", "apply", "rooms", "settings")

_HIVE_DATE = re.compile(r"year=(\d{4})/month=(\d{2})/day=(\d{2})")


class LogService:
    """Appends structured events to JSONL files; safe to call from worker threads."""

    def __init__(self, log_dir: Path | None = None) -> None:
        self._log_dir = log_dir
        self._write_lock = threading.Lock()

    @property
    def log_dir(self) -> Path:
        """Log root, taken from settings unless given explicitly."""
        log_dir = self._log_dir or get_settings().log_directory
        log_dir.mkdir(parents=True, exist_ok=True)
        return log_dir

    def _day_dir(self, dt: datetime) -> Path:
        day_dir = (
            self.log_dir
            / "json"
            / f"year={dt.year:04d}"
            / f"month={dt.month:02d}"
            / f"day={dt.day:02d}"
        )
        day_dir.mkdir(parents=True, exist_ok=True)
        return day_dir

    @staticmethod
    def _date_of(path: Path) -> str | None:
        match = _HIVE_DATE.search(path.as_posix())
        if match:
            return "-".join(match.groups())
        return None

    def log(
        self,
        level: str,
        category: str,
        event: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Append one event to today's file.

        Args:
            level: INFO, WARNING or ERROR
            category: One of CATEGORIES
            event: snake_case event name
            message: Human-readable message
            metadata: Extra fields (batch_id, task_id, ...)
        """
        now = datetime.now(UTC)
        entry: dict[str, Any] = {
            "timestamp": now.isoformat(),
            "level": level.upper(),
            "category": category,
            "event": event,
            "message": message,
        }
        if metadata:
            entry["metadata"] = metadata

        line = json.dumps(entry, default=str)
        with self._write_lock:
            with open(self._day_dir(now) / "events.jsonl", "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def info(
        self, category: str, event: str, message: str, metadata: dict[str, Any] | None = None
    ) -> None:
        self.log("INFO", category, event, message, metadata)

    def warning(
        self, category: str, event: str, message: str, metadata: dict[str, Any] | None = None
    ) -> None:
        self.log("WARNING", category, event, message, metadata)

    def error(
        self, category: str, event: str, message: str, metadata: dict[str, Any] | None = None
    ) -> None:
        self.log("ERROR", category, event, message, metadata)

    def save_batch_summary(
        self, batch_id: str, summary: dict[str, Any], completed_at: datetime
    ) -> Path:
        """Write the final state of a batch to ``batch-<id>.jsonl``.

        Returns:
            Path to the written file
        """
        out_path = self._day_dir(completed_at) / f"batch-{batch_id}.jsonl"
        line = json.dumps(summary, default=str)
        with self._write_lock:
            with open(out_path, "w", encoding="utf-8") as f:
                f.write(line + "\n")
        return out_path

    def list_log_files(self) -> list[dict[str, Any]]:
        """List event and batch summary files, newest first."""
        json_dir = self.log_dir / "json"
        if not json_dir.exists():
            return []

        result: list[dict[str, Any]] = []
        for f in sorted(json_dir.rglob("*.jsonl"), reverse=True):
            result.append({
                "date": self._date_of(f),
                "filename": f.name,
                "relative_path": f.relative_to(self.log_dir).as_posix(),
                "size_bytes": f.stat().st_size,
                "type": "events" if f.name == "events.jsonl" else "batch",
            })
        return result

    def read_log_entries(
        self,
        date: str | None = None,
        level: str | None = None,
        category: str | None = None,
        batch_id: str | None = None,
        search: str | None = None,
        offset: int = 0,
        limit: int = 100,
    ) -> dict[str, Any]:
        """Read events, filtered and paginated, newest first.

        Args:
            date: Only this day (YYYY-MM-DD)
            level: Only this level
            category: Only this category
            batch_id: Only events whose metadata names this batch
            search: Substring of the message or event name
            offset: Entries to skip
            limit: Maximum entries to return
        """
        json_dir = self.log_dir / "json"
        empty = {"entries": [], "total": 0, "offset": offset, "limit": limit}

        if date:
            try:
                day = datetime.strptime(date, "%Y-%m-%d")
            except ValueError:
                return empty
            path = (
                json_dir
                / f"year={day.year:04d}"
                / f"month={day.month:02d}"
                / f"day={day.day:02d}"
                / "events.jsonl"
            )
            files = [path] if path.exists() else []
        elif json_dir.exists():
            files = sorted(json_dir.rglob("events.jsonl"), reverse=True)
        else:
            return empty

        needle = search.lower() if search else None
        entries: list[dict[str, Any]] = []
        for log_file in files:
            try:
                with open(log_file, encoding="utf-8") as f:
                    lines = f.readlines()
            except OSError:
                continue
            for line in lines:
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    continue

                if level and entry.get("level", "").upper() != level.upper():
                    continue
                if category and entry.get("category") != category:
                    continue
                if batch_id and entry.get("metadata", {}).get("batch_id") != batch_id:
                    continue
                if needle and not (
                    needle in entry.get("message", "").lower()
                    or needle in entry.get("event", "").lower()
                ):
                    continue
                entries.append(entry)

        # Later lines first among entries sharing a timestamp
        entries.reverse()
        entries.sort(key=lambda e: e.get("timestamp", ""), reverse=True)
        return {
            "entries": entries[offset : offset + limit],
            "total": len(entries),
            "offset": offset,
            "limit": limit,
        }


_log_service: LogService | None = None


def get_log_service() -> LogService:
    """Get the singleton LogService instance."""
    global _log_service
    if _log_service is None:
        _log_service = LogService()
    return _log_service
