"""
Watermark asset reference.

The watermark is always stored locally as `watermark<ext>` where the
extension comes from wherever the watermark content points to, because the
image tooling that applies it picks the decoder by extension.
"""

import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional, Union
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

ASSET_BASENAME = "watermark"
PNG_DATA_URI_PREFIX = "data:image/png"


def is_uri(value: str) -> bool:
    """
    True for absolute URIs such as `https://...` or `data:...`.

    Single letter schemes are rejected so Windows drive paths are not URIs.
    """
    parsed = urlparse(value)
    return len(parsed.scheme) > 1 and bool(parsed.netloc or parsed.path)


def get_watermark_name(content: Optional[Any]) -> str:
    """
    Derive the local watermark file name.

    - `data:image/png...` -> `watermark.png`
    - URL -> `watermark` + extension of the URL path
    - plain string -> `watermark` + extension of its basename
    - anything else -> `watermark`
    """
    if isinstance(content, str) and is_uri(content):
        if content.startswith(PNG_DATA_URI_PREFIX):
            name = f"{ASSET_BASENAME}.png"
        else:
            name = os.path.basename(urlparse(content).path)
    elif isinstance(content, str):
        name = os.path.basename(content)
    else:
        name = ASSET_BASENAME

    return f"{ASSET_BASENAME}{os.path.splitext(name)[1]}"


class Watermark:
    """Watermark settings of a rendition request."""

    def __init__(self, params: Mapping[str, Any], directory: Union[str, Path] = "") -> None:
        self.content: Optional[str] = params.get("watermarkContent") or None
        self.width_percent = params.get("widthPercent")
        self.name = get_watermark_name(self.content)
        self.path = os.path.join(str(directory), self.name)
        self.url: Optional[str] = None

        if self.content and is_uri(self.content):
            self.url = self.content

        logger.debug("Watermark file name", extra={"watermark_name": self.name})
