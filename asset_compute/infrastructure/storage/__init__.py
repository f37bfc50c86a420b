"""
Object storage integration.

- s3: download of job sources and upload of renditions
- http: the same over plain URLs, including multi-part rendition uploads
- temporary: scratch bucket with presigned URLs for inline sources
"""

from .errors import PresignError, StorageError, StorageTransferError, StorageValidationError
from .s3 import LocationDescriptor, S3TransferGateway, TransferSession
from .temporary import (
    MockTemporaryCloudStorage,
    S3TemporaryCloudStorage,
    TemporaryCloudStorage,
    TemporaryStorageConfig,
    create_temporary_storage,
    generate_presign_url_with_retry,
)

__all__ = [
    "LocationDescriptor",
    "MockTemporaryCloudStorage",
    "PresignError",
    "S3TemporaryCloudStorage",
    "S3TransferGateway",
    "StorageError",
    "StorageTransferError",
    "StorageValidationError",
    "TemporaryCloudStorage",
    "TemporaryStorageConfig",
    "TransferSession",
    "create_temporary_storage",
    "generate_presign_url_with_retry",
]
