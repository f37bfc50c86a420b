"""
S3 transfer gateway.

Downloads the source object of a job and uploads the directory of generated
renditions. A job typically downloads from and uploads to the same bucket
with the same credentials, so the boto3 client built for the download is
kept in a `TransferSession` and reused for the upload when the identity
(region, access key, secret key) matches.

boto3 is synchronous; transfers run in a worker thread so the event loop
stays free while large files move.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Union

from .errors import StorageTransferError, StorageValidationError

logger = logging.getLogger(__name__)

RENDITIONS_PREFIX_SUFFIX = "_renditions/"

# wire names used by clients, mapped to descriptor fields
_PARAM_ALIASES = {
    "s3Region": "region",
    "s3Bucket": "bucket",
    "s3Key": "key",
    "s3Prefix": "prefix",
    "accessKey": "access_key",
    "secretKey": "secret_key",
}

# fields a target inherits from the source when unset
_INHERITED_FIELDS = ("region", "bucket", "access_key", "secret_key")

# names used in validation messages
_FIELD_LABELS = {
    "region": "s3Region",
    "bucket": "s3Bucket",
    "key": "s3Key",
    "access_key": "accessKey",
    "secret_key": "secretKey",
}


@dataclass(frozen=True)
class LocationDescriptor:
    """
    An S3 location plus the credentials needed to access it.

    `key` addresses a single object (sources), `prefix` a folder (targets).
    """
    region: Optional[str] = None
    bucket: Optional[str] = None
    key: Optional[str] = None
    prefix: Optional[str] = None
    access_key: Optional[str] = None
    secret_key: Optional[str] = None

    @classmethod
    def from_params(cls, params: Optional[Mapping[str, Any]]) -> "LocationDescriptor":
        """Build a descriptor from request params (`s3Bucket`, `accessKey`, ...)."""
        if not params:
            return cls()
        names = {f.name for f in fields(cls)}
        values = {}
        for name, value in params.items():
            name = _PARAM_ALIASES.get(name, name)
            if name in names:
                values[name] = value
        return cls(**values)

    @property
    def identity(self) -> tuple[Optional[str], Optional[str], Optional[str]]:
        """What a client is bound to. Equal identities can share a client."""
        return (self.region, self.access_key, self.secret_key)

    def inherit(self, source: "LocationDescriptor") -> "LocationDescriptor":
        """Return a copy with unset region, bucket and credentials taken from `source`."""
        return replace(
            self,
            **{
                name: getattr(self, name) or getattr(source, name)
                for name in _INHERITED_FIELDS
            }
        )

    def missing(self, *required: str) -> list[str]:
        return [_FIELD_LABELS[name] for name in required if not getattr(self, name)]


ClientFactory = Callable[[LocationDescriptor], Any]


def create_s3_client(location: LocationDescriptor) -> Any:
    """
    Create a boto3 S3 client bound to the location's region and credentials.

    We import boto3 here (not at module level) so tests that inject a
    client factory don't need it.
    """
    try:
        import boto3
        from botocore.config import Config
    except ImportError:
        raise ImportError(
            "boto3 is required for S3 transfers. Install with: pip install boto3"
        )

    return boto3.client(
        "s3",
        region_name=location.region,
        aws_access_key_id=location.access_key,
        aws_secret_access_key=location.secret_key,
        config=Config(signature_version="s3v4"),
    )


class TransferSession:
    """
    Lazily created S3 client plus the identity it was built for.

    One session per job. Not safe for concurrent transfers: callers that run
    transfers in parallel must give each its own session.
    """

    def __init__(self, client_factory: ClientFactory = create_s3_client) -> None:
        self._client_factory = client_factory
        self._client: Any = None
        self._identity: Optional[tuple] = None

    @property
    def client(self) -> Any:
        return self._client

    @property
    def identity(self) -> Optional[tuple]:
        return self._identity

    def client_for(self, location: LocationDescriptor) -> Any:
        """Return the cached client if it matches `location`, else build a new one."""
        if self._client is None or self._identity != location.identity:
            self._client = self._client_factory(location)
            self._identity = location.identity
            logger.debug(
                "Created S3 client",
                extra={"region": location.region}
            )
        return self._client


class S3TransferGateway:
    """Single-object download and directory upload against S3."""

    def __init__(
        self,
        session: Optional[TransferSession] = None,
        log: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ) -> None:
        self.session = session or TransferSession()
        self._log = log or logger

    async def download(
        self,
        source: LocationDescriptor,
        local_path: Union[str, Path],
    ) -> Path:
        """
        Download the object at `source` into `local_path`.

        Raises StorageValidationError before any network call if the source
        is incomplete, and StorageTransferError if the transfer fails.
        """
        missing = source.missing("region", "bucket", "key", "access_key", "secret_key")
        if missing:
            raise StorageValidationError(missing, role="S3 source")

        local_path = Path(local_path)
        client = self.session.client_for(source)

        try:
            local_path.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(
                client.download_file,
                source.bucket,
                source.key,
                str(local_path),
            )
        except Exception as e:
            self._log.error(
                "error s3 download",
                extra={"bucket": source.bucket, "key": source.key, "error": str(e)}
            )
            raise StorageTransferError("download", f"s3 download failed: {e}") from e

        return local_path

    async def upload(
        self,
        source: LocationDescriptor,
        target: LocationDescriptor,
        local_dir: Union[str, Path],
        source_name: str,
        correlation_id: Optional[str] = None,
    ) -> list[str]:
        """
        Upload every file under `local_dir` to the target prefix.

        Unset target fields fall back to the source's. Without an explicit
        prefix, files land under `<source file name>_renditions/`.
        Symbolic links are skipped. Returns the uploaded keys.
        """
        target = target.inherit(source)
        missing = target.missing("region", "bucket", "access_key", "secret_key")
        if missing:
            raise StorageValidationError(missing, role="S3 target")

        prefix = target.prefix or default_prefix(source_name)
        client = self.session.client_for(target)

        self._log.info(
            f"START of s3 upload for ingestionId {correlation_id} (all renditions)"
        )
        uploaded = []
        try:
            for path, relative in iter_local_files(local_dir):
                key = f"{prefix}{relative}"
                await asyncio.to_thread(
                    client.upload_file,
                    str(path),
                    target.bucket,
                    key,
                )
                uploaded.append(key)
        except Exception as e:
            self._log.error(
                f"FAILURE of s3 upload for ingestionId {correlation_id} (all renditions)",
                extra={"bucket": target.bucket, "prefix": prefix, "error": str(e)}
            )
            raise StorageTransferError(
                "upload", f"s3 upload of renditions failed: {e}"
            ) from e

        self._log.info(
            f"END of s3 upload for ingestionId {correlation_id} (all renditions)"
        )
        return uploaded


def default_prefix(source_name: str) -> str:
    """`report.pdf` -> `report.pdf_renditions/`"""
    return f"{os.path.basename(source_name)}{RENDITIONS_PREFIX_SUFFIX}"


def iter_local_files(local_dir: Union[str, Path]):
    """
    Yield (path, posix relative path) for regular files under `local_dir`.

    Linked directories are not descended into and linked files are skipped,
    so an upload never leaves the directory tree.
    """
    root = Path(local_dir)
    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        dirnames[:] = sorted(
            d for d in dirnames if not os.path.islink(os.path.join(dirpath, d))
        )
        for filename in sorted(filenames):
            path = Path(dirpath, filename)
            if path.is_symlink() or not path.is_file():
                continue
            yield path, path.relative_to(root).as_posix()
