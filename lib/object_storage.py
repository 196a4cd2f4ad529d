"""
S3-compatible object storage client for backup artifacts and catalog records.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    EndpointConnectionError,
    ReadTimeoutError,
)
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from lib.constants import LOGGER_NAME

logger = logging.getLogger(LOGGER_NAME)

NOT_FOUND_CODES = ("404", "NoSuchKey", "NotFound")


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def is_retryable_storage_error(exception: BaseException) -> bool:
    """Throttling, 5xx and connection-level failures are worth retrying."""
    if isinstance(exception, (EndpointConnectionError, ConnectionClosedError, ReadTimeoutError)):
        return True
    if isinstance(exception, ClientError):
        status = exception.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
        return status >= 500 or status == 429 or _error_code(exception) in ("SlowDown", "Throttling")
    return False


retry_storage_call = retry(
    retry=retry_if_exception(is_retryable_storage_error),
    wait=wait_exponential(multiplier=1, min=1, max=20),
    stop=stop_after_attempt(5),
    before_sleep=before_sleep_log(logger, logging.DEBUG),
    reraise=True,
)


@dataclass(frozen=True)
class StoredObject:
    """Listing entry for a stored object."""

    key: str
    size: int
    metadata: Dict[str, str]


class ObjectStorageClient:
    """Thin wrapper over a boto3 S3 client bound to one bucket."""

    def __init__(
        self,
        bucket: str,
        region: str = "us-east-1",
        endpoint_url: Optional[str] = None,
        server_side_encryption: bool = True,
        connect_timeout: int = 10,
        read_timeout: int = 300,
        s3_client=None,
    ):
        self.bucket = bucket
        self.region = region
        self.server_side_encryption = server_side_encryption
        if s3_client is None:
            s3_client = boto3.client(
                "s3",
                region_name=region,
                endpoint_url=endpoint_url,
                config=Config(
                    connect_timeout=connect_timeout,
                    read_timeout=read_timeout,
                    retries={"max_attempts": 1},
                ),
            )
        self.s3 = s3_client
        logger.debug("Initialized object storage client for bucket %s", bucket)

    def uri(self, key: str) -> str:
        return f"s3://{self.bucket}/{key}"

    def key_from_uri(self, location: str) -> str:
        """Strip ``s3://<bucket>/`` from a storage location."""
        prefix = f"s3://{self.bucket}/"
        if location.startswith(prefix):
            return location[len(prefix) :]
        if location.startswith("s3://"):
            raise ValueError(f"Location {location} is not in bucket {self.bucket}")
        return location

    @retry_storage_call
    def put(self, key: str, data: bytes, metadata: Optional[Dict[str, str]] = None) -> str:
        """Upload ``data`` under ``key`` and return its URI."""
        kwargs = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": data,
            "Metadata": {k: str(v) for k, v in (metadata or {}).items()},
        }
        if self.server_side_encryption:
            kwargs["ServerSideEncryption"] = "AES256"
        self.s3.put_object(**kwargs)
        logger.debug("Uploaded %s bytes to %s", len(data), self.uri(key))
        return self.uri(key)

    @retry_storage_call
    def get(self, key: str) -> bytes:
        """Download the full object body.

        Raises:
            KeyError: If the object does not exist
        """
        try:
            response = self.s3.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES:
                raise KeyError(key) from e
            raise
        return response["Body"].read()

    @retry_storage_call
    def head(self, key: str) -> Optional[StoredObject]:
        """Object size and user metadata, or None if absent."""
        try:
            response = self.s3.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES:
                return None
            raise
        return StoredObject(
            key=key,
            size=int(response.get("ContentLength", 0)),
            metadata=dict(response.get("Metadata") or {}),
        )

    def exists(self, key: str) -> bool:
        return self.head(key) is not None

    @retry_storage_call
    def list(self, prefix: str) -> List[str]:
        """All keys under ``prefix`` (paginated)."""
        keys: List[str] = []
        paginator = self.s3.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            keys.extend(obj["Key"] for obj in page.get("Contents", []))
        return keys

    @retry_storage_call
    def delete(self, key: str) -> None:
        """Delete an object; deleting a missing key is not an error."""
        self.s3.delete_object(Bucket=self.bucket, Key=key)
        logger.debug("Deleted %s", self.uri(key))
