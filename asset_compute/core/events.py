"""
Rendition events and metrics.

Every requested rendition ends in exactly one event: `rendition` when it was
produced and uploaded, `rendition_failed` otherwise. Each event is followed
by a metrics record of the same type.

Events are sent before their metrics, one after the other. Downstream
consumers may rely on events landing first; until that is ruled out the two
must not be sent in parallel.
"""

import asyncio
import logging
from typing import Any, Iterable, Mapping, MutableMapping, Optional, Protocol, Union

from ..config.settings import DEFAULT_TIMEOUT_MS
from .errors import AssetComputeError, Reason
from .timing import Timer, time_until_activation_timeout

logger = logging.getLogger(__name__)

RENDITION_EVENT = "rendition"
RENDITION_FAILED_EVENT = "rendition_failed"
TIMEOUT_EVENT = "timeout"

# how long before the deadline timeout metrics are sent
METRIC_FETCH_INTERVAL_MS = 100


class EventSender(Protocol):
    """Delivers job events to the client's event channel."""

    async def send_event(self, event_type: str, payload: Mapping[str, Any]) -> None:
        ...


class MetricsSender(Protocol):
    """Delivers metrics records to the metrics backend."""

    async def send_metrics(self, event_type: str, metrics: Mapping[str, Any]) -> None:
        ...

    async def send_error_metrics(
        self,
        location: Optional[str],
        message: str,
        metrics: Mapping[str, Any],
    ) -> None:
        ...


class EventHandler:
    """Pairs an event sender with a metrics sender."""

    def __init__(self, events: EventSender, metrics: MetricsSender) -> None:
        self.events = events
        self.metrics = metrics

    async def send_rendition_event(
        self,
        payload: Mapping[str, Any],
        metrics: Mapping[str, Any],
    ) -> None:
        await self.events.send_event(RENDITION_EVENT, payload)
        await self.metrics.send_metrics(RENDITION_EVENT, metrics)

    async def send_error_event(
        self,
        error: Mapping[str, Any],
        metrics: Mapping[str, Any],
    ) -> None:
        await self.events.send_event(RENDITION_FAILED_EVENT, error)
        await self.metrics.send_error_metrics(
            error.get("location", metrics.get("location")),
            error.get("message", error.get("errorMessage", "")),
            metrics,
        )


def _error_details(error: Union[BaseException, str]) -> tuple[str, str, str, Optional[str]]:
    """(name, reason, message, location) of an error."""
    if isinstance(error, AssetComputeError):
        return error.name, error.reason.value, error.message, error.location
    if isinstance(error, BaseException):
        return type(error).__name__, Reason.GENERIC_ERROR.value, str(error), None
    return Reason.GENERIC_ERROR.value, Reason.GENERIC_ERROR.value, str(error), None


async def send_error(
    handler: EventHandler,
    renditions: Iterable[Mapping[str, Any]],
    error: Union[BaseException, str],
    metrics: Optional[MutableMapping[str, Any]],
    default_location: str,
) -> None:
    """Send one `rendition_failed` event per rendition of a failed job."""
    name, reason, message, location = _error_details(error)
    metrics = metrics if metrics is not None else {}
    metrics.update({
        "eventType": RENDITION_FAILED_EVENT,
        "reason": reason,
        "message": message,
        "location": location or default_location,
    })

    for rendition in renditions:
        payload = {
            "rendition": dict(rendition),
            "errorReason": name,
            "errorMessage": message,
        }
        await handler.send_error_event(payload, dict(metrics))


async def send_rendition_metrics(
    rendition: Mapping[str, Any],
    metadata: Optional[Mapping[str, Any]],
    metrics: Mapping[str, Any],
    handler: EventHandler,
) -> None:
    """
    Report the outcome of one rendition.

    `metadata` is what was recorded for the produced file, None if the
    worker did not produce it.
    """
    if metadata is not None:
        payload = {"rendition": dict(rendition), "metadata": dict(metadata)}
        await handler.send_rendition_event(payload, {**metrics, **rendition})
        return

    # TODO: report why the file is missing (too large, wrong mime type) once
    # the worker records it
    error = {
        "eventType": "error",
        "reason": Reason.GENERIC_ERROR.value,
        "message": f"No rendition found for {rendition.get('name')}",
        "location": "uploading_error",
        "rendition": dict(rendition),
    }
    await handler.send_error_event(error, metrics)


def schedule_timeout_metrics(
    sender: MetricsSender,
    metrics: MutableMapping[str, Any],
    duration: Timer,
    deadline_ms: Optional[int],
    action_name: str = "",
    now_ms: Optional[int] = None,
    default_ms: int = DEFAULT_TIMEOUT_MS,
) -> asyncio.Task:
    """
    Send `timeout` metrics just before the activation is killed.

    Without a deadline `default_ms` is assumed to be left. Returns the
    scheduled task; cancel it once the job has finished.
    """
    time_left_ms = time_until_activation_timeout(deadline_ms, now_ms, default_ms)
    delay = max(time_left_ms - METRIC_FETCH_INTERVAL_MS, 0) / 1000

    async def send_before_timeout() -> None:
        await asyncio.sleep(delay)
        logger.warning(
            f"{action_name} will timeout in {METRIC_FETCH_INTERVAL_MS} milliseconds. "
            "Sending metrics before action timeout."
        )
        if not metrics.get("duration"):
            metrics["duration"] = duration.total_duration()
        await sender.send_metrics(TIMEOUT_EVENT, metrics)
        logger.info("Metrics sent before action timeout.")

    return asyncio.create_task(send_before_timeout())
