"""
HTTP transfer of sources and renditions.

Sources given as `http(s)` URLs are streamed into the input directory.
Renditions carrying a `target` are PUT there: a URL string takes the whole
file, a `{"urls": [...], "minPartSize": ..., "maxPartSize": ...}` target
takes it in consecutive parts, one URL per part.
"""

import logging
import math
import mimetypes
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Mapping, Optional, Union
from urllib.parse import urlparse

import httpx

from ...core.errors import GenericError, RenditionTooLargeError
from ...core.models import Rendition

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_RETRIES = 3
CHUNK_SIZE = 1 << 20


def is_http_url(url: object) -> bool:
    return isinstance(url, str) and urlparse(url).scheme in ("http", "https")


def redact_url(url: str) -> str:
    """URL without query and fragment, which may carry signatures."""
    return urlparse(url)._replace(query="", fragment="").geturl()


def url_basename(url: str) -> str:
    return os.path.basename(urlparse(url).path)


def plan_parts(size: int, target: Mapping[str, Any]) -> list[tuple[str, int, int]]:
    """
    Split `size` bytes over the target's URLs as `(url, start, end)` ranges.

    Parts are as even as the URL count allows but never smaller than
    `minPartSize`. Raises RenditionTooLargeError when even using every URL
    a part would exceed `maxPartSize`.
    """
    urls = target.get("urls") or []
    if not urls:
        raise GenericError("Multipart target has no urls")

    part_size = max(math.ceil(size / len(urls)), target.get("minPartSize") or 1)
    max_part_size = target.get("maxPartSize")
    if max_part_size and part_size > max_part_size:
        raise RenditionTooLargeError(
            f"file of {size} bytes is too large to upload to {len(urls)} urls "
            f"of at most {max_part_size} bytes"
        )

    return [
        (urls[index], start, min(start + part_size, size))
        for index, start in enumerate(range(0, size, part_size))
    ]


def create_client(retries: int = DEFAULT_RETRIES) -> httpx.AsyncClient:
    """Client that retries failed connections `retries` times."""
    return httpx.AsyncClient(
        transport=httpx.AsyncHTTPTransport(retries=retries),
        timeout=DEFAULT_TIMEOUT_SECONDS,
        follow_redirects=True,
    )


class HttpTransfer:
    """
    Downloads sources from and uploads renditions to plain URLs.

    A client passed in is used as is; otherwise one is opened per transfer.
    Failures surface as GenericError located at `<action>_download` or
    `<action>_upload`, and a 413 answer as RenditionTooLargeError.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        retries: int = DEFAULT_RETRIES,
        action_name: str = "",
    ) -> None:
        self._client = client
        self.retries = retries
        self.action_name = action_name

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with create_client(self.retries) as client:
            yield client

    async def download(
        self,
        url: str,
        file: Union[str, Path],
        headers: Optional[Mapping[str, str]] = None,
    ) -> Path:
        """Stream `url` into `file`."""
        file = Path(file)
        logger.info(f"downloading asset {redact_url(url)} into {file}")
        try:
            file.parent.mkdir(parents=True, exist_ok=True)
            async with self._session() as client:
                async with client.stream("GET", url, headers=dict(headers or {})) as response:
                    response.raise_for_status()
                    with open(file, "wb") as f:
                        async for chunk in response.aiter_bytes(CHUNK_SIZE):
                            f.write(chunk)
        except (httpx.HTTPError, OSError) as e:
            raise GenericError(str(e), f"{self.action_name}_download") from e

        logger.info("download finished successfully")
        return file

    async def upload(self, rendition: Rendition) -> None:
        """PUT a rendition file to its target. Renditions without one are skipped."""
        target = rendition.instructions.get("target")
        if not target:
            logger.warning(f"rendition {rendition.id()} does not have a target")
            return

        size = rendition.size()
        headers = {"content-type": content_type_of(rendition)}
        try:
            async with self._session() as client:
                if isinstance(target, str):
                    logger.info(
                        f"uploading rendition {rendition.path} to {redact_url(target)}, size = {size}"
                    )
                    await _put(client, target, rendition.path.read_bytes(), headers)
                elif isinstance(target, Mapping):
                    await self._upload_parts(client, rendition, target, headers)
                else:
                    raise GenericError(
                        f"rendition {rendition.id()} has an unsupported target",
                        f"{self.action_name}_upload",
                    )
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 413:
                raise RenditionTooLargeError(
                    f"rendition size of {size} for {rendition.name} is too large"
                ) from e
            raise GenericError(str(e), f"{self.action_name}_upload") from e
        except (httpx.HTTPError, OSError) as e:
            raise GenericError(str(e), f"{self.action_name}_upload") from e

        logger.info("successfully finished uploading rendition")

    async def _upload_parts(
        self,
        client: httpx.AsyncClient,
        rendition: Rendition,
        target: Mapping[str, Any],
        headers: Mapping[str, str],
    ) -> None:
        size = rendition.size() or 0
        parts = plan_parts(size, target)
        logger.info(
            f"uploading rendition {rendition.path} as multi-part to "
            f"{redact_url(parts[0][0]) if parts else '?'} and {len(parts) - 1} more urls, size = {size}"
        )
        with open(rendition.path, "rb") as f:
            for url, start, end in parts:
                f.seek(start)
                await _put(client, url, f.read(end - start), headers)


async def _put(
    client: httpx.AsyncClient,
    url: str,
    content: bytes,
    headers: Mapping[str, str],
) -> None:
    response = await client.put(url, content=content, headers=dict(headers))
    response.raise_for_status()


def content_type_of(rendition: Rendition) -> str:
    if rendition.content_type:
        return rendition.content_type
    guessed, _ = mimetypes.guess_type(rendition.name)
    return guessed or "application/octet-stream"
