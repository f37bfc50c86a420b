"""
Temporary cloud storage.

Some sources arrive inline (data URIs) but downstream services want a URL.
We park such files in a scratch bucket under a unique name and hand out a
presigned URL for them.

Presigned URL generation can fail transiently. The issuer does not retry on
its own: callers pass an attempt counter and decide how often to try again
(see `generate_presign_url_with_retry`). The mock storage makes that contract
testable by failing deterministically based on path and attempt.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Protocol, Union
from uuid import uuid4

from .errors import PresignError, StorageError

logger = logging.getLogger(__name__)

DEFAULT_PERMISSIONS = "rwd"
DEFAULT_EXPIRY_SECONDS = 3600


@dataclass
class TemporaryStorageConfig:
    """Scratch bucket and the credentials to write to it."""
    bucket_name: str
    access_key_id: str
    secret_access_key: str
    region: str = "us-east-1"
    endpoint_url: Optional[str] = None


class TemporaryCloudStorage(Protocol):
    """Scratch storage for files that must be reachable by URL."""

    async def generate_presign_url(
        self,
        cloud_path: str,
        attempt: int = 1,
        permissions: str = DEFAULT_PERMISSIONS,
        expiry_seconds: int = DEFAULT_EXPIRY_SECONDS,
    ) -> str:
        """Create a presigned URL for `cloud_path`."""
        ...

    def create_unique_name(self, filename: str = "file.tmp") -> str:
        """Create a collision free cloud path for `filename`."""
        ...

    async def upload(self, local_path: Union[str, Path], cloud_path: str) -> None:
        """Upload a local file to `cloud_path`."""
        ...

    async def download(self, cloud_path: str, local_path: Union[str, Path]) -> None:
        """Download `cloud_path` into a local file."""
        ...

    async def clean_up(self, cloud_path: str) -> None:
        """Remove `cloud_path` from temporary storage."""
        ...


def unique_name(filename: str = "file.tmp") -> str:
    """`<uuid4>/<epoch millis>/<filename>`"""
    return f"{uuid4()}/{int(time.time() * 1000)}/{filename}"


def presign_operation(permissions: str) -> str:
    """
    Map r/w/d permissions onto the S3 operation a URL is signed for.

    An S3 presigned URL covers exactly one operation, so read wins over
    write, and write over delete.
    """
    if "r" in permissions:
        return "get_object"
    if "w" in permissions:
        return "put_object"
    if "d" in permissions:
        return "delete_object"
    raise ValueError(f"Invalid permissions '{permissions}', expected a combination of r, w, d")


class S3TemporaryCloudStorage:
    """
    Temporary storage in an S3 (or S3-compatible) bucket.

    The boto3 client is created on first use so constructing the storage
    is free for code paths that never touch it.
    """

    def __init__(self, config: TemporaryStorageConfig) -> None:
        self._config = config
        self._s3_client: Any = None

    def _init(self) -> None:
        try:
            import boto3
            from botocore.config import Config
        except ImportError:
            raise ImportError(
                "boto3 is required for temporary storage. Install with: pip install boto3"
            )

        self._s3_client = boto3.client(
            "s3",
            endpoint_url=self._config.endpoint_url,
            aws_access_key_id=self._config.access_key_id,
            aws_secret_access_key=self._config.secret_access_key,
            region_name=self._config.region,
            config=Config(signature_version="s3v4"),
        )

        logger.info(
            "Temporary cloud storage initialized",
            extra={
                "bucket": self._config.bucket_name,
                "endpoint": self._config.endpoint_url,
            }
        )

    @property
    def client(self) -> Any:
        if self._s3_client is None:
            self._init()
        return self._s3_client

    async def generate_presign_url(
        self,
        cloud_path: str,
        attempt: int = 1,
        permissions: str = DEFAULT_PERMISSIONS,
        expiry_seconds: int = DEFAULT_EXPIRY_SECONDS,
    ) -> str:
        """
        Generate a presigned URL.

        `attempt` is only logged; retrying is up to the caller.
        """
        operation = presign_operation(permissions)
        client = self.client

        logger.debug(
            "Generating presigned URL",
            extra={
                "cloud_path": cloud_path,
                "attempt": attempt,
                "operation": operation,
                "expiry_seconds": expiry_seconds,
            }
        )

        try:
            return client.generate_presigned_url(
                operation,
                Params={
                    "Bucket": self._config.bucket_name,
                    "Key": cloud_path,
                },
                ExpiresIn=expiry_seconds,
            )
        except Exception as e:
            logger.error(
                "Failed to generate presigned URL",
                extra={"cloud_path": cloud_path, "attempt": attempt, "error": str(e)}
            )
            raise PresignError(cloud_path, str(e)) from e

    def create_unique_name(self, filename: str = "file.tmp") -> str:
        return unique_name(filename)

    async def upload(self, local_path: Union[str, Path], cloud_path: str) -> None:
        client = self.client
        logger.info("Uploading from local filesystem to temporary cloud storage")
        try:
            await asyncio.to_thread(
                client.upload_file,
                str(local_path),
                self._config.bucket_name,
                cloud_path,
            )
        except Exception as e:
            logger.error(
                "Failed to upload to temporary storage",
                extra={"cloud_path": cloud_path, "error": str(e)}
            )
            raise StorageError(f"Temporary storage upload failed: {e}") from e

    async def download(self, cloud_path: str, local_path: Union[str, Path]) -> None:
        client = self.client
        logger.info("Downloading from temporary cloud storage to local filesystem")
        try:
            await asyncio.to_thread(
                client.download_file,
                self._config.bucket_name,
                cloud_path,
                str(local_path),
            )
        except Exception as e:
            logger.error(
                "Failed to download from temporary storage",
                extra={"cloud_path": cloud_path, "error": str(e)}
            )
            raise StorageError(f"Temporary storage download failed: {e}") from e

    async def clean_up(self, cloud_path: str) -> None:
        client = self.client
        try:
            await asyncio.to_thread(
                client.delete_object,
                Bucket=self._config.bucket_name,
                Key=cloud_path,
            )
        except Exception as e:
            logger.error(
                "Failed to delete from temporary storage",
                extra={"cloud_path": cloud_path, "error": str(e)}
            )
            raise StorageError(f"Temporary storage delete failed: {e}") from e


# ---------------------------------------------------------------------------
# Mock Storage for Local Development and Tests
# ---------------------------------------------------------------------------

class MockTemporaryCloudStorage:
    """
    In-memory temporary storage.

    Presigned URL generation is deterministic so retry handling can be
    tested:
    - `fakeSuccessFilePath` always succeeds
    - `fakeRetrySuccessFilePath` succeeds on attempt 3 only
    - every other path fails
    """

    SUCCESS_PATH = "fakeSuccessFilePath"
    RETRY_SUCCESS_PATH = "fakeRetrySuccessFilePath"
    RETRY_SUCCESS_ATTEMPT = 3
    URL_BASE = "http://storage.com/preSignUrl/"

    def __init__(self) -> None:
        self._initialized = False
        # {cloud_path: bytes}
        self._objects: dict[str, bytes] = {}

    def _init(self) -> None:
        self._initialized = True
        logger.info("Initialized mock temporary storage (in-memory)")

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def generate_presign_url(
        self,
        cloud_path: str,
        attempt: int = 1,
        permissions: str = DEFAULT_PERMISSIONS,
        expiry_seconds: int = DEFAULT_EXPIRY_SECONDS,
    ) -> str:
        if not self._initialized:
            self._init()

        logger.debug(
            f"Mock presigned URL attempt {attempt} for {cloud_path}, "
            f"permissions {permissions}, expiry {expiry_seconds}"
        )
        if cloud_path == self.SUCCESS_PATH:
            return self.URL_BASE + cloud_path
        if cloud_path == self.RETRY_SUCCESS_PATH and attempt == self.RETRY_SUCCESS_ATTEMPT:
            return self.URL_BASE + cloud_path

        raise PresignError(cloud_path, f"mock failure on attempt {attempt}")

    def create_unique_name(self, filename: str = "file.tmp") -> str:
        return unique_name(filename)

    async def upload(self, local_path: Union[str, Path], cloud_path: str) -> None:
        if not self._initialized:
            self._init()
        self._objects[cloud_path] = Path(local_path).read_bytes()
        logger.debug(f"Mock file uploaded {local_path}")

    async def download(self, cloud_path: str, local_path: Union[str, Path]) -> None:
        if not self._initialized:
            self._init()
        if cloud_path not in self._objects:
            raise StorageError(f"Object not found: {cloud_path}")
        Path(local_path).write_bytes(self._objects[cloud_path])

    async def clean_up(self, cloud_path: str) -> None:
        if not self._initialized:
            self._init()
        self._objects.pop(cloud_path, None)

    def contains(self, cloud_path: str) -> bool:
        return cloud_path in self._objects


# ---------------------------------------------------------------------------
# Caller-driven retry
# ---------------------------------------------------------------------------

async def generate_presign_url_with_retry(
    storage: TemporaryCloudStorage,
    cloud_path: str,
    permissions: str = DEFAULT_PERMISSIONS,
    expiry_seconds: int = DEFAULT_EXPIRY_SECONDS,
    max_attempts: int = 3,
) -> str:
    """
    Ask `storage` for a presigned URL, retrying up to `max_attempts` times.

    Each call passes the attempt number (starting at 1). The last
    PresignError is re-raised when all attempts fail.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempt = 1
    while True:
        try:
            return await storage.generate_presign_url(
                cloud_path,
                attempt,
                permissions,
                expiry_seconds,
            )
        except PresignError as e:
            logger.warning(
                "Presigned URL attempt failed",
                extra={
                    "cloud_path": cloud_path,
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                    "error": str(e),
                }
            )
            if attempt >= max_attempts:
                raise
        attempt += 1


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_temporary_storage(
    config: Optional[TemporaryStorageConfig] = None,
    mock_mode: bool = False,
) -> TemporaryCloudStorage:
    """S3 storage for `config`, or the in-memory mock in mock mode."""
    if mock_mode:
        return MockTemporaryCloudStorage()

    if config is None:
        raise ValueError("config is required when not in mock mode")

    return S3TemporaryCloudStorage(config)
