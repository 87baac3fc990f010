"""Tests for the S3 service module."""

from collections.abc import Generator
from typing import Any
from unittest.mock import MagicMock, patch

import boto3
import pytest
from botocore.exceptions import ClientError, NoCredentialsError
from moto import mock_aws

from media_ingest.services import s3_service

BUCKET = "test-bucket"


@pytest.fixture
def s3_client(monkeypatch: pytest.MonkeyPatch) -> Generator[Any, None, None]:
    """Mocked S3 client with an empty bucket."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    with mock_aws():
        client = boto3.client("s3", region_name="us-west-2")
        client.create_bucket(
            Bucket=BUCKET,
            CreateBucketConfiguration={"LocationConstraint": "us-west-2"},
        )
        yield client


class TestCreateS3Client:
    """Tests for create_s3_client function."""

    @patch("boto3.Session")
    def test_uses_profile_and_region(self, mock_session: MagicMock) -> None:
        """Test that the session is built from the profile and region."""
        s3_service.create_s3_client("listings", "eu-west-1")

        mock_session.assert_called_once_with(profile_name="listings", region_name="eu-west-1")
        mock_session.return_value.client.assert_called_once_with("s3")


class TestBuildObjectUrl:
    """Tests for build_object_url function."""

    def test_virtual_hosted_url(self) -> None:
        url = s3_service.build_object_url("bucket", "us-east-2", "room-images/a.png")
        assert url == "https://bucket.s3.us-east-2.amazonaws.com/room-images/a.png"

    def test_public_url_base(self) -> None:
        """Test that a configured CDN base replaces the bucket URL."""
        url = s3_service.build_object_url(
            "bucket", "us-east-2", "room-images/a.png", "https://cdn.example.com/"
        )
        assert url == "https://cdn.example.com/room-images/a.png"


class TestS3Operations:
    """Tests for S3 operations using moto mock."""

    def test_upload_bytes_with_progress(self, s3_client: Any) -> None:
        """Test upload with progress tracking and content type."""
        data = b"x" * 4096
        calls: list[tuple[int, int]] = []

        result = s3_service.upload_bytes_with_progress(
            s3_client,
            data,
            BUCKET,
            "room-videos/tour.mp4",
            content_type="video/mp4",
            callback=lambda uploaded, total: calls.append((uploaded, total)),
        )

        assert result["success"] is True
        assert result["size"] == 4096
        head = s3_client.head_object(Bucket=BUCKET, Key="room-videos/tour.mp4")
        assert head["ContentLength"] == 4096
        assert head["ContentType"] == "video/mp4"
        assert all(total == 4096 for _, total in calls)

    def test_upload_to_missing_bucket(self, s3_client: Any) -> None:
        """Test that storage errors are returned, not raised."""
        result = s3_service.upload_bytes_with_progress(s3_client, b"x", "no-such-bucket", "a.png")

        assert result["success"] is False
        assert result["error"]

    def test_callback_exception_propagates(self) -> None:
        """Test that an exception raised by the callback aborts the upload."""
        client = MagicMock()

        def fake_upload(**kwargs: object) -> None:
            kwargs["Callback"](10)  # type: ignore[operator]

        client.upload_fileobj.side_effect = fake_upload

        def abort(uploaded: int, total: int) -> None:
            raise RuntimeError("stop")

        with pytest.raises(RuntimeError, match="stop"):
            s3_service.upload_bytes_with_progress(
                client, b"x" * 20, BUCKET, "a.png", callback=abort
            )

    def test_negative_deltas_do_not_go_below_zero(self) -> None:
        """Test that rewound parts never produce a negative running total."""
        client = MagicMock()
        seen: list[int] = []

        def fake_upload(**kwargs: object) -> None:
            callback = kwargs["Callback"]
            callback(5)  # type: ignore[operator]
            callback(-10)  # type: ignore[operator]
            callback(8)  # type: ignore[operator]

        client.upload_fileobj.side_effect = fake_upload

        s3_service.upload_bytes_with_progress(
            client, b"x" * 8, BUCKET, "a.png", callback=lambda u, t: seen.append(u)
        )

        assert seen == [5, 0, 8]


class TestValidateBucketAccess:
    """Tests for validate_bucket_access function."""

    def test_existing_bucket(self, s3_client: Any) -> None:
        result = s3_service.validate_bucket_access(s3_client, BUCKET)
        assert result["success"] is True
        assert result["error"] is None

    def test_missing_bucket(self, s3_client: Any) -> None:
        """Test validation of a bucket that does not exist."""
        result = s3_service.validate_bucket_access(s3_client, "no-such-bucket")

        assert result["success"] is False
        assert "does not exist" in result["error"]

    def test_access_denied(self) -> None:
        client = MagicMock()
        client.head_bucket.side_effect = ClientError(
            {"Error": {"Code": "403", "Message": "Forbidden"}}, "HeadBucket"
        )

        result = s3_service.validate_bucket_access(client, BUCKET)

        assert result["error"] == f"Access denied to bucket '{BUCKET}'"

    def test_no_credentials(self) -> None:
        client = MagicMock()
        client.head_bucket.side_effect = NoCredentialsError()

        result = s3_service.validate_bucket_access(client, BUCKET)

        assert result["error"] == "AWS credentials not found"
