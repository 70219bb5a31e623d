"""S3 service for uploading to and checking AWS S3 buckets."""

import configparser
from collections.abc import Callable
from pathlib import Path
from typing import IO, Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError
from mypy_boto3_s3 import S3Client


def get_available_profiles() -> list[str]:
    """Get list of available AWS profiles from ~/.aws/config and ~/.aws/credentials."""
    profiles: set[str] = set()

    # Check ~/.aws/credentials
    credentials_path = Path.home() / ".aws" / "credentials"
    if credentials_path.exists():
        config = configparser.ConfigParser()
        config.read(credentials_path)
        profiles.update(config.sections())

    # Check ~/.aws/config
    config_path = Path.home() / ".aws" / "config"
    if config_path.exists():
        config = configparser.ConfigParser()
        config.read(config_path)
        for section in config.sections():
            # Config file uses "profile name" format
            if section.startswith("profile "):
                profiles.add(section.replace("profile ", ""))
            else:
                profiles.add(section)

    profiles.add("default")

    return sorted(profiles)


def create_s3_client(profile: str, region: str = "us-west-2") -> S3Client:
    """Create an S3 client using the specified AWS profile.

    Args:
        profile: AWS profile name from ~/.aws/credentials or ~/.aws/config
        region: AWS region (default: us-west-2)

    Returns:
        Configured S3 client
    """
    session = boto3.Session(profile_name=profile, region_name=region)
    client: S3Client = session.client("s3")
    return client


def build_object_key(prefix: str, file_name: str) -> str:
    """Join an optional key prefix and a file name into an object key."""
    if prefix and not prefix.endswith("/"):
        prefix = f"{prefix}/"
    return f"{prefix}{file_name}"


class ProgressCallback:
    """Accumulates the byte counts boto3 reports and forwards running totals."""

    def __init__(
        self, total_size: int | None, user_callback: Callable[[int, int | None], None] | None
    ) -> None:
        self.total_size = total_size
        self.uploaded = 0
        self.user_callback = user_callback

    def __call__(self, bytes_amount: int) -> None:
        self.uploaded += bytes_amount
        if self.user_callback:
            self.user_callback(self.uploaded, self.total_size)


def upload_fileobj_with_progress(
    client: S3Client,
    fileobj: IO[bytes],
    bucket: str,
    key: str,
    size: int | None = None,
    callback: Callable[[int, int | None], None] | None = None,
) -> dict[str, Any]:
    """Upload a readable binary stream to S3 with progress tracking.

    Args:
        client: S3 client
        fileobj: Open binary stream to upload
        bucket: S3 bucket name
        key: S3 object key
        size: Total size in bytes, if known
        callback: Progress callback function (bytes_uploaded, total_bytes)

    Returns:
        Dictionary with upload result information
    """
    progress = ProgressCallback(size, callback)

    try:
        client.upload_fileobj(
            Fileobj=fileobj,
            Bucket=bucket,
            Key=key,
            Callback=progress,
        )

        return {
            "success": True,
            "bucket": bucket,
            "key": key,
            "size": progress.uploaded if size is None else size,
            "error": None,
        }
    except (ClientError, BotoCoreError) as e:
        return {
            "success": False,
            "bucket": bucket,
            "key": key,
            "size": size,
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
