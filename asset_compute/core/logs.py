"""
Logging helpers.

Serverless log aggregation interleaves lines from many activations. A
`PrefixedLogger` stamps every message with a prefix (usually the activation
or ingestion id) so one job's lines can be picked out again. It is handed to
the components that need it rather than installed globally.
"""

import logging
from typing import Any, MutableMapping, Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class PrefixedLogger(logging.LoggerAdapter):
    """Logger adapter that puts `prefix` in front of every message."""

    def __init__(self, logger: logging.Logger, prefix: Optional[str] = None) -> None:
        super().__init__(logger, {})
        self.prefix = prefix

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        if self.prefix:
            return f"{self.prefix} {msg}", kwargs
        return msg, kwargs


def get_logger(name: str, prefix: Optional[str] = None) -> PrefixedLogger:
    return PrefixedLogger(logging.getLogger(name), prefix)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(format=LOG_FORMAT, level=level.upper())
