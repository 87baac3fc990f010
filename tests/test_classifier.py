"""Tests for the file classifier."""

from collections.abc import Callable

import pytest

from media_ingest.services.classifier import KindFilter, classify_files
from media_ingest.services.errors import ValidationError
from media_ingest.services.media import MediaFile, MediaKind

MB = 1024 * 1024


class TestKindFilter:
    """Tests for KindFilter."""

    def test_accepts(self) -> None:
        """Test which kinds each filter lets through."""
        assert KindFilter.BOTH.accepts(MediaKind.IMAGE)
        assert KindFilter.BOTH.accepts(MediaKind.VIDEO)
        assert KindFilter.IMAGES.accepts(MediaKind.IMAGE)
        assert not KindFilter.IMAGES.accepts(MediaKind.VIDEO)
        assert KindFilter.VIDEOS.accepts(MediaKind.VIDEO)
        assert not KindFilter.VIDEOS.accepts(MediaKind.IMAGE)


class TestClassifyFiles:
    """Tests for classify_files."""

    def test_partitions_selection(
        self,
        make_image: Callable[..., MediaFile],
        make_video: Callable[..., MediaFile],
    ) -> None:
        """Test that every file lands in exactly one subset."""
        doc = MediaFile(name="readme.txt", content=b"x", content_type="text/plain")
        files = [make_image("a.png"), make_video("v.mp4"), doc, make_image("b.png")]

        result = classify_files(files)

        assert [f.name for f in result.images] == ["a.png", "b.png"]
        assert result.video is not None and result.video.name == "v.mp4"
        assert [r.name for r in result.rejected] == ["readme.txt"]
        assert result.accepted_count + len(result.rejected) == len(files)

    def test_oversized_video_rejects_whole_batch(
        self,
        make_image: Callable[..., MediaFile],
        make_video: Callable[..., MediaFile],
    ) -> None:
        """Test that one oversized video raises instead of being skipped."""
        files = [make_image("a.png"), make_video("big.mp4", 60 * MB)]

        with pytest.raises(ValidationError) as exc_info:
            classify_files(files)

        assert "big.mp4" in str(exc_info.value)

    def test_video_at_limit_is_accepted(self, make_video: Callable[..., MediaFile]) -> None:
        """Test that the ceiling itself is allowed."""
        result = classify_files([make_video("ok.mp4", 2048)], max_video_bytes=2048)
        assert result.video is not None

    def test_oversized_video_ignored_by_image_filter(
        self,
        make_image: Callable[..., MediaFile],
        make_video: Callable[..., MediaFile],
    ) -> None:
        """Test that the size check only applies to videos the filter accepts."""
        files = [make_image("a.png"), make_video("big.mp4", 4096)]

        result = classify_files(files, kind_filter=KindFilter.IMAGES, max_video_bytes=1024)

        assert [f.name for f in result.images] == ["a.png"]
        assert result.videos == []
        assert result.rejected[0].name == "big.mp4"

    def test_single_mode_keeps_first_valid_file(
        self, make_image: Callable[..., MediaFile]
    ) -> None:
        """Test that multiple=False keeps only the first accepted file."""
        doc = MediaFile(name="x.txt", content=b"x", content_type="text/plain")
        files = [doc, make_image("a.png"), make_image("b.png")]

        result = classify_files(files, multiple=False)

        assert [f.name for f in result.images] == ["a.png"]
        assert {r.name for r in result.rejected} == {"x.txt", "b.png"}

    def test_second_video_rejected(self, make_video: Callable[..., MediaFile]) -> None:
        """Test that only one video is accepted per batch."""
        result = classify_files([make_video("1.mp4"), make_video("2.mp4")])

        assert [f.name for f in result.videos] == ["1.mp4"]
        assert result.rejected[0].reason == "only one video allowed"

    def test_image_cap(self, make_image: Callable[..., MediaFile]) -> None:
        """Test that images beyond the cap are rejected."""
        files = [make_image(f"{i}.png") for i in range(4)]

        result = classify_files(files, max_images=2)

        assert len(result.images) == 2
        assert [r.name for r in result.rejected] == ["2.png", "3.png"]

    def test_detects_kind_from_extension(self) -> None:
        """Test that files without a mime type are classified by extension."""
        files = [
            MediaFile(name="photo.JPG", content=b"x"),
            MediaFile(name="clip.mov", content=b"x"),
        ]

        result = classify_files(files)

        assert len(result.images) == 1
        assert len(result.videos) == 1

    def test_to_dict(self, make_image: Callable[..., MediaFile]) -> None:
        """Test conversion to dictionary."""
        doc = MediaFile(name="x.txt", content=b"x", content_type="text/plain")
        result = classify_files([make_image("a.png"), doc]).to_dict()

        assert result["images"] == ["a.png"]
        assert result["videos"] == []
        assert result["rejected"] == [{"name": "x.txt", "reason": "unsupported file type"}]
