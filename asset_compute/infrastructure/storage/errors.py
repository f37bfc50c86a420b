"""Errors raised by the storage layer."""

from typing import Iterable


class StorageError(Exception):
    """Raised when storage operations fail."""
    pass


class StorageValidationError(StorageError):
    """A location descriptor lacks required fields. Raised before any I/O."""

    def __init__(self, missing: Iterable[str], role: str = "S3") -> None:
        self.missing = list(missing)
        super().__init__(
            f"{role} reference requires fields {', '.join(self.missing)}"
        )


class StorageTransferError(StorageError):
    """
    The underlying transfer failed.

    `operation` is "download" or "upload" so log filters can tell them apart.
    """

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(message)


class PresignError(StorageError):
    """Presigned URL generation failed for a path."""

    def __init__(self, path: str, detail: str = "") -> None:
        self.path = path
        message = f"Presigned URL generation failed for {path}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
