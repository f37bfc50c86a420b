"""
Asset compute error types.

Workers raise these to tell the library (and through it, the client) why a
rendition failed. The `reason` ends up in `rendition_failed` events, so it is
part of the contract with event consumers.
"""

import time
from enum import Enum
from typing import Any, Optional


class Reason(str, Enum):
    """Failure reasons understood by event consumers."""
    GENERIC_ERROR = "GenericError"
    SOURCE_FORMAT_UNSUPPORTED = "SourceFormatUnsupported"
    RENDITION_FORMAT_UNSUPPORTED = "RenditionFormatUnsupported"
    SOURCE_UNSUPPORTED = "SourceUnsupported"
    SOURCE_CORRUPT = "SourceCorrupt"
    RENDITION_TOO_LARGE = "RenditionTooLarge"


class AssetComputeError(Exception):
    """
    Base class for errors carrying a failure reason.

    `date` is epoch milliseconds, matching the timestamps used in events.
    """

    def __init__(self, message: str, reason: Reason = Reason.GENERIC_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason
        self.name = type(self).__name__
        self.date = int(time.time() * 1000)
        self.location: Optional[str] = None


class GenericError(AssetComputeError):
    """
    Unclassified failure.

    `location` names where it happened, usually `<action>_<phase>`.
    """

    def __init__(self, message: str, location: Optional[str] = None) -> None:
        super().__init__(message, Reason.GENERIC_ERROR)
        self.location = location


class RenditionFormatUnsupportedError(AssetComputeError):
    """The requested rendition format is unsupported."""

    def __init__(self, message: str) -> None:
        super().__init__(message, Reason.RENDITION_FORMAT_UNSUPPORTED)


class SourceFormatUnsupportedError(AssetComputeError):
    """The source is of an unsupported type."""

    def __init__(self, message: str) -> None:
        super().__init__(message, Reason.SOURCE_FORMAT_UNSUPPORTED)


class SourceUnsupportedError(AssetComputeError):
    """The specific source is unsupported even though its type is supported."""

    def __init__(self, message: str) -> None:
        super().__init__(message, Reason.SOURCE_UNSUPPORTED)


class SourceCorruptError(AssetComputeError):
    """The source data is corrupt. Includes empty files."""

    def __init__(self, message: str) -> None:
        super().__init__(message, Reason.SOURCE_CORRUPT)


class RenditionTooLargeError(AssetComputeError):
    """The rendition was too large to send."""

    def __init__(self, message: str) -> None:
        super().__init__(message, Reason.RENDITION_TOO_LARGE)


ERRORS_BY_REASON: dict[Reason, type[AssetComputeError]] = {
    Reason.RENDITION_FORMAT_UNSUPPORTED: RenditionFormatUnsupportedError,
    Reason.RENDITION_TOO_LARGE: RenditionTooLargeError,
    Reason.SOURCE_CORRUPT: SourceCorruptError,
    Reason.SOURCE_FORMAT_UNSUPPORTED: SourceFormatUnsupportedError,
    Reason.SOURCE_UNSUPPORTED: SourceUnsupportedError,
}


class HttpError(Exception):
    """
    Failure of a web action request.

    Rendered to the client as `{"statusCode": ..., "body": {"message": ...}}`.
    """

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message

    def to_response(self) -> dict[str, Any]:
        return {
            "statusCode": self.status_code,
            "body": {"message": self.message},
        }
