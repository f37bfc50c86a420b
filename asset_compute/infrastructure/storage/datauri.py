"""
Data URI sources.

Small sources can be sent inline as `data:` URLs. They are decoded into a
local file like any downloaded source. When the worker wants a URL instead
of a file, the decoded file is parked in temporary storage and a read-only
presigned URL is handed out.
"""

import base64
import logging
from pathlib import Path
from typing import Union
from urllib.parse import unquote, unquote_to_bytes

from ...core.errors import GenericError
from .temporary import TemporaryCloudStorage, generate_presign_url_with_retry

logger = logging.getLogger(__name__)

DATA_PROTOCOL = "data:"


def is_data_uri(url: object) -> bool:
    return isinstance(url, str) and url.startswith(DATA_PROTOCOL)


def decode(url: str) -> bytes:
    """Decode `data:[<mediatype>][;base64],<data>`."""
    header, sep, data = url.partition(",")
    if not header.startswith(DATA_PROTOCOL) or not sep:
        raise ValueError("Invalid data URI")
    if header.endswith(";base64"):
        return base64.b64decode(unquote(data), validate=True)
    return unquote_to_bytes(data)


async def download(url: str, file: Union[str, Path], action_name: str = "") -> Path:
    """Decode the data URI into `file`."""
    file = Path(file)
    try:
        logger.info(f"downloading source data uri into {file}")
        file.parent.mkdir(parents=True, exist_ok=True)
        file.write_bytes(decode(url))
    except (ValueError, OSError) as e:
        raise GenericError(str(e), f"{action_name}_download") from e
    return file


async def get_presigned_url(
    storage: TemporaryCloudStorage,
    local_path: Union[str, Path],
    max_attempts: int = 3,
) -> str:
    """Upload a local file to temporary storage and return a read-only URL for it."""
    cloud_path = storage.create_unique_name()
    await storage.upload(local_path, cloud_path)
    logger.info(f"{local_path} file is uploaded to storage")

    url = await generate_presign_url_with_retry(
        storage,
        cloud_path,
        permissions="r",
        max_attempts=max_attempts,
    )
    logger.info(f"Generated presigned URL for {local_path}")
    return url
