"""Video trimming with ffmpeg.

Trims are stream copies (``-c copy``) so they are fast and lossless; the cut lands
on the nearest keyframe.
"""

import json
import logging
import subprocess
import tempfile
import threading
from collections.abc import Callable
from pathlib import Path

from media_ingest.services.errors import PreprocessingAbandoned, ValidationError
from media_ingest.services.media import MediaFile, TrimRange

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 600.0


def probe_duration(ffprobe_path: str, video_path: str | Path) -> float:
    """Read a video's duration in seconds with ffprobe.

    Raises:
        PreprocessingAbandoned: If ffprobe is missing or cannot read the file
    """
    cmd = [
        ffprobe_path,
        "-v",
        "error",
        "-show_entries",
        "format=duration",
        "-of",
        "json",
        str(video_path),
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=True)
        return float(json.loads(result.stdout)["format"]["duration"])
    except FileNotFoundError as e:
        raise PreprocessingAbandoned(f"ffprobe not found at {ffprobe_path}") from e
    except subprocess.CalledProcessError as e:
        raise PreprocessingAbandoned(f"Could not read video: {e.stderr.strip()}") from e
    except (KeyError, ValueError) as e:
        raise PreprocessingAbandoned(f"Could not determine video duration: {e}") from e


def parse_progress_line(line: str) -> float | None:
    """Extract the output position, in seconds, from an ffmpeg ``-progress`` line."""
    key, _, value = line.strip().partition("=")
    # out_time_ms is actually in microseconds, same as out_time_us
    if key not in ("out_time_us", "out_time_ms"):
        return None
    try:
        return int(value) / 1_000_000
    except ValueError:
        return None


class FfmpegTrimmer:
    """Trimmer collaborator backed by the ffmpeg command line tools."""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.timeout = timeout

    def trim(
        self,
        media_file: MediaFile,
        trim_range: TrimRange,
        on_progress: Callable[[float], None],
    ) -> MediaFile | None:
        """Cut ``media_file`` to ``trim_range``.

        Returns:
            The trimmed file, or None when the range covers the whole video

        Raises:
            ValidationError: If the range ends after the video does
            PreprocessingAbandoned: If ffmpeg fails, times out or is aborted
        """
        suffix = f".{media_file.extension}"
        with tempfile.TemporaryDirectory(prefix="media-ingest-trim-") as tmp:
            source = Path(tmp) / f"source{suffix}"
            output = Path(tmp) / f"trimmed{suffix}"
            source.write_bytes(media_file.content)

            duration = probe_duration(self.ffprobe_path, source)
            trim_range.validate_against(duration)
            if trim_range.spans(duration):
                logger.info("Trim range covers all of %s, skipping", media_file.name)
                return None

            cmd = [
                self.ffmpeg_path,
                "-y",
                "-ss",
                f"{trim_range.start:.3f}",
                "-to",
                f"{trim_range.end:.3f}",
                "-i",
                str(source),
                "-c",
                "copy",
                "-progress",
                "pipe:1",
                "-nostats",
                "-loglevel",
                "error",
                str(output),
            ]
            self._run(cmd, trim_range.duration, on_progress, Path(tmp) / "ffmpeg.log")

            if not output.exists() or output.stat().st_size == 0:
                raise PreprocessingAbandoned(f"ffmpeg produced no output for {media_file.name}")
            on_progress(100.0)
            return media_file.replace_content(output.read_bytes())

    def _run(
        self,
        cmd: list[str],
        expected: float,
        on_progress: Callable[[float], None],
        stderr_path: Path,
    ) -> None:
        logger.debug("Running %s", " ".join(cmd))
        with open(stderr_path, "w+") as stderr:
            try:
                process = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=stderr, text=True)
            except FileNotFoundError as e:
                raise PreprocessingAbandoned(f"ffmpeg not found at {self.ffmpeg_path}") from e

            timed_out = threading.Event()

            def on_timeout() -> None:
                timed_out.set()
                process.kill()

            watchdog = threading.Timer(self.timeout, on_timeout)
            watchdog.daemon = True
            watchdog.start()
            try:
                last = 0.0
                assert process.stdout is not None
                for line in process.stdout:
                    position = parse_progress_line(line)
                    if position is None or expected <= 0:
                        continue
                    percent = min(99.0, position / expected * 100)
                    if percent > last:
                        last = percent
                        # May raise to abort the trim; the process is killed below
                        on_progress(round(percent, 1))
                returncode = process.wait()
            finally:
                watchdog.cancel()
                if process.poll() is None:
                    process.kill()
                    process.wait()

            if timed_out.is_set():
                raise PreprocessingAbandoned(f"ffmpeg timed out after {self.timeout:g}s")
            if returncode != 0:
                stderr.seek(0)
                raise PreprocessingAbandoned(f"ffmpeg failed: {stderr.read().strip()}")


def create_trimmer() -> FfmpegTrimmer:
    """Build a trimmer using the configured ffmpeg binaries."""
    from media_ingest.config import get_settings

    settings = get_settings()
    return FfmpegTrimmer(settings.ffmpeg_path, settings.ffprobe_path)
