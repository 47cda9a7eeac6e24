"""
Remote storage backends for backup artifacts.

Supports:
- rclone (RcloneSyncTool): any rclone remote, e.g. Google Drive
- S3SyncTool: AWS S3 via boto3, destination given as s3://bucket/prefix
"""

import os
from typing import Optional, Tuple
from urllib.parse import urlparse

import boto3
from botocore.exceptions import ClientError, BotoCoreError

from .tools import SyncTool, RcloneSyncTool, ToolError


class StorageError(ToolError):
    """Raised when storage operation fails."""
    pass


def parse_s3_destination(remote: str) -> Tuple[str, str]:
    """
    Split an s3://bucket/prefix destination.

    Args:
        remote: Destination URL

    Returns:
        (bucket, prefix) with no leading/trailing slash on prefix

    Raises:
        StorageError: If remote is not an s3:// URL with a bucket
    """
    parsed = urlparse(remote)
    if parsed.scheme != 's3' or not parsed.netloc:
        raise StorageError(f"Invalid S3 destination: {remote} (expected s3://bucket/prefix)")
    return parsed.netloc, parsed.path.strip('/')


class S3SyncTool(SyncTool):
    """
    Copies backup artifacts to AWS S3.

    Objects are stored as {prefix}/{filename}, the same flat layout rclone
    produces in a remote folder.
    """

    def __init__(self, region: str = 'us-east-1', access_key: Optional[str] = None,
                 secret_key: Optional[str] = None):
        """
        Initialize S3 sync tool.

        Args:
            region: AWS region (default: us-east-1)
            access_key: AWS access key ID (default: boto3 credential chain)
            secret_key: AWS secret access key (default: boto3 credential chain)
        """
        self.region = region

        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region
            )
        except Exception as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    def copy(self, local_path: str, remote: str) -> str:
        """
        Upload a local file to S3.

        Args:
            local_path: Path to local artifact
            remote: s3://bucket/prefix destination

        Returns:
            S3 key of uploaded file

        Raises:
            StorageError: If upload fails
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        bucket, prefix = parse_s3_destination(remote)
        filename = os.path.basename(local_path)
        s3_key = f"{prefix}/{filename}" if prefix else filename

        try:
            # upload_file switches to multipart for large files
            self.s3_client.upload_file(local_path, bucket, s3_key)
            return s3_key
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 upload failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 upload failed: {e}")
        except Exception as e:
            raise StorageError(f"Failed to upload to S3: {e}")


def create_sync_tool(settings) -> SyncTool:
    """
    Create the sync tool selected by settings.sync_backend.

    Args:
        settings: BackupSettings

    Returns:
        SyncTool instance

    Raises:
        ValueError: If the backend is unknown
    """
    if settings.sync_backend == 'rclone':
        return RcloneSyncTool()
    elif settings.sync_backend == 's3':
        return S3SyncTool(
            region=settings.aws_region,
            access_key=settings.aws_access_key_id,
            secret_key=settings.aws_secret_access_key
        )
    else:
        raise ValueError(f"Unknown sync backend: {settings.sync_backend}")
