"""S3-compatible storage backend.

Works with AWS S3 and with S3-compatible services such as MinIO,
Cloudflare R2 and Aliyun OSS. The first path segment is the bucket.

Credentials are read from environment variables when set:
    ARTIFACT_CACHE_S3_ACCESS_KEY_ID
    ARTIFACT_CACHE_S3_SECRET_ACCESS_KEY
    ARTIFACT_CACHE_S3_SESSION_TOKEN (optional)
Otherwise boto3's default provider chain is used (shared config, IAM role).
"""

import logging
import os
import shutil
from typing import BinaryIO, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError
from rich.filesize import decimal

from artifact_cache.logging_config import get_logger

from .base import FileEntry, Storage, split_key

ACCESS_KEY_ENV = "ARTIFACT_CACHE_S3_ACCESS_KEY_ID"
SECRET_KEY_ENV = "ARTIFACT_CACHE_S3_SECRET_ACCESS_KEY"
SESSION_TOKEN_ENV = "ARTIFACT_CACHE_S3_SESSION_TOKEN"

DEFAULT_REGION = "us-east-1"

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound", "NoSuchBucket"}

CONTENT_TYPES = {
    ".tar": "application/x-tar",
    ".tgz": "application/gzip",
    ".gz": "application/gzip",
}


def _is_not_found(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") in NOT_FOUND_CODES


def content_type_for(key: str) -> str:
    """Content type to upload an archive with, based on its suffix."""
    for suffix, content_type in CONTENT_TYPES.items():
        if key.endswith(suffix):
            return content_type
    return "application/octet-stream"


class S3Storage(Storage):
    """Storage on an S3-compatible object store.

    Attributes:
        endpoint_url: Custom endpoint, empty for AWS
        region: Region used for signing and for new buckets
    """

    def __init__(
        self,
        endpoint_url: str = "",
        region: str = DEFAULT_REGION,
        ca_bundle: str = "",
        path_style: bool = False,
        accelerate: bool = False,
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize the S3 client.

        Args:
            endpoint_url: Endpoint URL for S3-compatible services
            region: Region name
            ca_bundle: Path to a CA bundle used to verify TLS
            path_style: Use path-style addressing (needed by most MinIO setups)
            accelerate: Use the S3 transfer acceleration endpoint
            logger: Logger for transfer progress
        """
        self.endpoint_url = endpoint_url
        self.region = region or DEFAULT_REGION
        self.logger = logger or get_logger(__name__)

        access_key = os.environ.get(ACCESS_KEY_ENV)
        secret_key = os.environ.get(SECRET_KEY_ENV)
        session_token = os.environ.get(SESSION_TOKEN_ENV)

        if not access_key or not secret_key:
            self.logger.debug("No static S3 credentials set, using the default provider chain")
            access_key = secret_key = session_token = None

        self._client = boto3.client(
            "s3",
            endpoint_url=endpoint_url or None,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            aws_session_token=session_token or None,
            region_name=self.region,
            verify=ca_bundle or None,
            config=Config(
                s3={
                    "addressing_style": "path" if path_style else "auto",
                    "use_accelerate_endpoint": accelerate,
                }
            ),
        )

    def get(self, path: str, dst: BinaryIO) -> None:
        bucket, key = split_key(path)
        self.logger.info("Retrieving file in %s at %s", bucket, key)

        response = self._client.get_object(Bucket=bucket, Key=key)
        body = response["Body"]
        try:
            self.logger.info("Copying object from the server")
            shutil.copyfileobj(body, dst)
        finally:
            body.close()

        size = response.get("ContentLength")
        if size is not None:
            self.logger.info("Downloaded %s from server", decimal(size))

    def put(self, path: str, src: BinaryIO) -> None:
        bucket, key = split_key(path)
        self.logger.info("Uploading to bucket %s at %s", bucket, key)

        self._ensure_bucket(bucket)

        uploaded = 0

        def _progress(num_bytes: int) -> None:
            nonlocal uploaded
            uploaded += num_bytes

        self.logger.info("Putting file in %s at %s", bucket, key)
        self._client.upload_fileobj(
            src,
            bucket,
            key,
            ExtraArgs={"ContentType": content_type_for(key)},
            Callback=_progress,
        )
        self.logger.info("Uploaded %s to server", decimal(uploaded))

    def list(self, path: str) -> List[FileEntry]:
        bucket, prefix = split_key(path)
        self.logger.info("Retrieving objects in bucket %s at %s", bucket, prefix)

        entries = []
        paginator = self._client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                entry = FileEntry(
                    path=f"{bucket}/{obj['Key']}",
                    size=obj["Size"],
                    last_modified=obj["LastModified"],
                )
                self.logger.debug(
                    "Found object %s: Size=%d LastModified=%s",
                    entry.path,
                    entry.size,
                    entry.last_modified,
                )
                entries.append(entry)

        self.logger.info("Found %d objects in bucket %s at %s", len(entries), bucket, prefix)
        return entries

    def exists(self, path: str) -> bool:
        bucket, key = split_key(path)
        try:
            self._client.head_object(Bucket=bucket, Key=key)
            return True
        except ClientError as e:
            if _is_not_found(e):
                return False
            raise

    def delete(self, path: str) -> None:
        bucket, key = split_key(path)
        self.logger.info("Deleting object in bucket %s at %s", bucket, key)
        self._client.delete_object(Bucket=bucket, Key=key)

    def _ensure_bucket(self, bucket: str) -> None:
        """Create ``bucket`` if it does not exist yet."""
        try:
            self._client.head_bucket(Bucket=bucket)
            self.logger.debug("Bucket %s already exists", bucket)
            return
        except ClientError as e:
            if not _is_not_found(e):
                raise

        if self.region == DEFAULT_REGION:
            self._client.create_bucket(Bucket=bucket)
        else:
            self._client.create_bucket(
                Bucket=bucket,
                CreateBucketConfiguration={"LocationConstraint": self.region},
            )
        self.logger.info("Bucket %s created", bucket)
