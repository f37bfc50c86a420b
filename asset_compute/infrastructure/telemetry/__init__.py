"""
Telemetry integration: job events and New Relic metrics.

Includes a logging mock for local development.
"""

from .client import (
    ActionContext,
    HttpEventSender,
    LoggingTelemetry,
    NewRelicMetricsSender,
    create_event_handler,
)

__all__ = [
    "ActionContext",
    "HttpEventSender",
    "LoggingTelemetry",
    "NewRelicMetricsSender",
    "create_event_handler",
]
