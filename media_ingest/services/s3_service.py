"""S3 helpers used by the S3 transport and the settings API."""

import io
from collections.abc import Callable
from typing import Any

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError
from mypy_boto3_s3 import S3Client


def create_s3_client(profile: str, region: str = "us-west-2") -> S3Client:
    """Create an S3 client using the specified AWS profile.

    Args:
        profile: AWS profile name from ~/.aws/credentials or ~/.aws/config
        region: AWS region (default: us-west-2)

    Returns:
        Configured S3 client

    Raises:
        ProfileNotFound: If the profile does not exist
    """
    session = boto3.Session(profile_name=profile, region_name=region)
    client: S3Client = session.client("s3")
    return client


def build_object_url(bucket: str, region: str, key: str, public_url_base: str = "") -> str:
    """Build the public URL of an object.

    Uses ``public_url_base`` (a CDN or website endpoint) when configured, otherwise the
    virtual-hosted S3 URL.
    """
    if public_url_base:
        return f"{public_url_base.rstrip('/')}/{key}"
    return f"https://{bucket}.s3.{region}.amazonaws.com/{key}"


def upload_bytes_with_progress(
    client: S3Client,
    data: bytes,
    bucket: str,
    key: str,
    content_type: str = "",
    callback: Callable[[int, int], None] | None = None,
) -> dict[str, Any]:
    """Upload an in-memory file to S3 with progress tracking.

    Exceptions raised by ``callback`` are not caught here: raising from the callback is
    how a caller aborts a transfer.

    Args:
        client: S3 client
        data: File content
        bucket: S3 bucket name
        key: S3 object key
        content_type: Mime type stored on the object
        callback: Progress callback function (bytes_uploaded, total_bytes)

    Returns:
        Dictionary with upload result information
    """
    total_size = len(data)

    class ProgressCallback:
        """Accumulates s3transfer byte deltas into a running total."""

        def __init__(
            self, total_size: int, user_callback: Callable[[int, int], None] | None
        ) -> None:
            self.total_size = total_size
            self.uploaded = 0
            self.user_callback = user_callback

        def __call__(self, bytes_amount: int) -> None:
            # s3transfer reports negative deltas when it rewinds a retried part
            self.uploaded = max(0, self.uploaded + bytes_amount)
            if self.user_callback:
                self.user_callback(self.uploaded, self.total_size)

    progress = ProgressCallback(total_size, callback)
    extra_args = {"ContentType": content_type} if content_type else None

    try:
        client.upload_fileobj(
            Fileobj=io.BytesIO(data),
            Bucket=bucket,
            Key=key,
            ExtraArgs=extra_args,
            Callback=progress,
        )
        return {
            "success": True,
            "bucket": bucket,
            "key": key,
            "size": total_size,
            "error": None,
        }
    except (ClientError, BotoCoreError, S3UploadFailedError) as e:
        return {
            "success": False,
            "bucket": bucket,
            "key": key,
            "size": total_size,
            "error": str(e),
        }


def validate_bucket_access(client: S3Client, bucket: str) -> dict[str, Any]:
    """Validate that we can access the specified S3 bucket.

    Args:
        client: S3 client
        bucket: S3 bucket name

    Returns:
        Dictionary with validation result
    """
    try:
        client.head_bucket(Bucket=bucket)
        return {
            "success": True,
            "bucket": bucket,
            "error": None,
        }
    except ClientError as e:
        error_code = e.response["Error"]["Code"]
        if error_code == "404":
            error_msg = f"Bucket '{bucket}' does not exist"
        elif error_code == "403":
            error_msg = f"Access denied to bucket '{bucket}'"
        else:
            error_msg = str(e)
        return {
            "success": False,
            "bucket": bucket,
            "error": error_msg,
        }
    except NoCredentialsError:
        return {
            "success": False,
            "bucket": bucket,
            "error": "AWS credentials not found",
        }
