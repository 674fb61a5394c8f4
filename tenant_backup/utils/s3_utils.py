# tenant_backup/utils/s3_utils.py

# Standard library imports
from typing import BinaryIO, Optional, Union

# Third party imports
import boto3
from boto3.s3.transfer import TransferConfig
from botocore.exceptions import BotoCoreError, ClientError

# Local imports
from tenant_backup.backups.exceptions import StorageError
from tenant_backup.core.config import Settings
from tenant_backup.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_PRESIGN_TTL = 604800  # 7 days

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def join_key(*parts: Optional[str]) -> str:
    """Join key segments with '/', skipping empty segments."""
    cleaned = [p.strip("/") for p in parts if p and p.strip("/")]
    return "/".join(cleaned)


class S3Utils:
    """Utility class for interacting with s3

    Every failure from boto3 is raised as StorageError so callers deal with a
    single error kind.
    """

    def __init__(self, settings: Settings, client=None):
        """Initialize S3 client with AWS credentials"""
        self.settings = settings
        self.s3_client = client or boto3.client(
            "s3",
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region,
        )
        self.transfer_config = TransferConfig(
            multipart_chunksize=settings.upload_part_size,
            max_concurrency=4,
        )

    def exists(self, bucket: str, key: str) -> bool:
        """
        Check whether an object exists

        Args:
            bucket: Bucket name
            key: Full object key

        Returns:
            bool: True if HEAD succeeds, False on 404
        """
        try:
            self.s3_client.head_object(Bucket=bucket, Key=key)
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in _NOT_FOUND_CODES:
                return False
            raise StorageError("head_object", key, str(e)) from e
        except BotoCoreError as e:
            raise StorageError("head_object", key, str(e)) from e

    def folder_exists(self, bucket: str, folder_path: str) -> bool:
        """Check for the empty marker object that stands in for a folder."""
        return self.exists(bucket, folder_path.rstrip("/") + "/")

    def create_folder(self, bucket: str, folder_path: str) -> str:
        """Create an empty '<folder>/' marker object and return its key."""
        marker_key = folder_path.rstrip("/") + "/"
        self.put_object(bucket, marker_key, b"")
        logger.info(f"Created folder marker s3://{bucket}/{marker_key}")
        return marker_key

    def put_object(
        self,
        bucket: str,
        key: str,
        body: Union[bytes, str],
        content_type: str = "application/octet-stream",
    ) -> str:
        """
        Upload an in-memory object

        Returns:
            str: s3:// location of the object
        """
        if isinstance(body, str):
            body = body.encode("utf-8")
        try:
            self.s3_client.put_object(
                Bucket=bucket,
                Key=key,
                Body=body,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error uploading object to S3: {e}", key=key)
            raise StorageError("put_object", key, str(e)) from e
        return f"s3://{bucket}/{key}"

    def put_object_stream(
        self,
        bucket: str,
        key: str,
        stream: BinaryIO,
        content_type: str,
    ) -> str:
        """
        Upload a (possibly non-seekable) stream using multipart upload.

        Only one part is held in memory at a time; the stream is read until EOF.
        """
        try:
            self.s3_client.upload_fileobj(
                stream,
                bucket,
                key,
                ExtraArgs={"ContentType": content_type},
                Config=self.transfer_config,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error uploading stream to S3: {e}", key=key)
            raise StorageError("upload_stream", key, str(e)) from e
        logger.info(f"Stream upload completed: s3://{bucket}/{key}")
        return f"s3://{bucket}/{key}"

    def get_object_stream(self, bucket: str, key_prefix: Optional[str], key: str):
        """
        Open an object for streaming reads.

        Args:
            bucket: Bucket name
            key_prefix: Prefix the key lives under (may be empty)
            key: Key relative to the prefix

        Returns:
            botocore StreamingBody
        """
        full_key = join_key(key_prefix, key)
        try:
            response = self.s3_client.get_object(Bucket=bucket, Key=full_key)
        except (ClientError, BotoCoreError) as e:
            raise StorageError("get_object", full_key, str(e)) from e

        body = response.get("Body")
        if body is None:
            raise StorageError("get_object", full_key, "object has no body")
        return body

    def presign(self, bucket: str, key: str, ttl_seconds: int = DEFAULT_PRESIGN_TTL) -> str:
        """
        Generate a presigned GET URL for temporary access to an S3 object

        Args:
            bucket: Bucket name
            key: S3 key (path) of the file
            ttl_seconds: URL expiration time in seconds (default: 7 days)

        Returns:
            str: Presigned URL
        """
        try:
            return self.s3_client.generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=ttl_seconds,
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError("presign", key, str(e)) from e
