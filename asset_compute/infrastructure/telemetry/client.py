"""
Event and metrics delivery.

Events go to the client's event endpoint as JSON. Metrics go to New Relic's
insights API as gzip-compressed JSON. Neither may fail a job: delivery
problems are logged and the job carries on.

Mock mode logs and records everything in memory, enabling local
development and tests without telemetry endpoints.
"""

import gzip
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import httpx
import jwt

from ...core.events import RENDITION_FAILED_EVENT, EventHandler

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


@dataclass
class ActionContext:
    """
    Who is sending: attached to every metrics record.

    Built from the runtime settings plus the job's request params.
    """
    action_name: str = ""
    package: Optional[str] = None
    namespace: str = ""
    activation_id: str = ""
    ingestion_id: Optional[str] = None
    org_id: Optional[str] = None
    client_id: Optional[str] = None

    @classmethod
    def from_params(
        cls,
        params: Mapping[str, Any],
        action_name: str = "",
        package: Optional[str] = None,
        namespace: str = "",
        activation_id: str = "",
    ) -> "ActionContext":
        auth = params.get("auth") or {}
        return cls(
            action_name=action_name,
            package=package,
            namespace=namespace,
            activation_id=activation_id,
            ingestion_id=params.get("ingestionId"),
            org_id=auth.get("orgId"),
            client_id=auth.get("clientId") or _client_id(auth.get("accessToken")),
        )

    def as_metrics(self) -> dict[str, Any]:
        values = {
            "actionName": self.action_name,
            "package": self.package,
            "namespace": self.namespace,
            "activationId": self.activation_id,
            "ingestionId": self.ingestion_id,
            "orgId": self.org_id,
            "clientId": self.client_id,
        }
        return {k: v for k, v in values.items() if v}


def _client_id(access_token: Optional[str]) -> Optional[str]:
    """Client id claim of an access token, None if it can't be read."""
    if not access_token:
        return None
    try:
        claims = jwt.decode(access_token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        logger.info("Could not read client id from access token", extra={"error": str(e)})
        return None
    return claims.get("client_id")


class HttpEventSender:
    """Posts events as JSON to the event endpoint."""

    def __init__(
        self,
        url: str,
        api_key: str = "",
        context: Optional[ActionContext] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._url = url
        self._api_key = api_key
        self._context = context or ActionContext()
        self._client = client

    async def send_event(self, event_type: str, payload: Mapping[str, Any]) -> None:
        body = {
            "type": event_type,
            "date": int(time.time() * 1000),
            "requestId": self._context.activation_id or None,
            **payload,
        }
        headers = {"content-type": "application/json"}
        if self._api_key:
            headers["x-api-key"] = self._api_key

        try:
            response = await self._post(headers, json.dumps(body, default=str).encode())
            if response.status_code >= 300:
                logger.error(
                    "Event submission failed",
                    extra={"event_type": event_type, "status": response.status_code}
                )
            else:
                logger.info("Event sent", extra={"event_type": event_type})
        except httpx.HTTPError as e:
            logger.error(
                "Error sending event",
                extra={"event_type": event_type, "error": str(e)}
            )

    async def _post(self, headers: dict[str, str], content: bytes) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(self._url, headers=headers, content=content)
        async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT_SECONDS) as client:
            return await client.post(self._url, headers=headers, content=content)


class NewRelicMetricsSender:
    """
    Posts metrics to New Relic insights.

    Without URL or insert key metrics are disabled and only a log line is
    written.
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        context: Optional[ActionContext] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._url = url
        self._api_key = api_key
        self._context = context or ActionContext()
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self._url and self._api_key)

    async def send_metrics(self, event_type: str, metrics: Mapping[str, Any]) -> None:
        if not self.enabled:
            logger.warning("Missing NewRelic events Api Key or URL. Metrics disabled.")
            return

        record = {**metrics, **self._context.as_metrics(), "eventType": event_type}
        body = gzip.compress(json.dumps(record, default=str).encode())
        headers = {
            "content-type": "application/json",
            "X-Insert-Key": self._api_key,
            "Content-Encoding": "gzip",
        }

        try:
            response = await self._post(headers, body)
            if response.status_code != 200:
                logger.error(
                    "NewRelic events submission error",
                    extra={"status": response.status_code}
                )
            else:
                logger.info("Metrics sent to NewRelic", extra={"event_type": event_type})
        except httpx.HTTPError as e:
            logger.error("Error sending request to NewRelic", extra={"error": str(e)})

    async def send_error_metrics(
        self,
        location: Optional[str],
        message: str,
        metrics: Mapping[str, Any],
    ) -> None:
        await self.send_metrics(
            RENDITION_FAILED_EVENT,
            {**metrics, "location": location, "message": message},
        )

    async def _post(self, headers: dict[str, str], content: bytes) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(self._url, headers=headers, content=content)
        async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT_SECONDS) as client:
            return await client.post(self._url, headers=headers, content=content)


# ---------------------------------------------------------------------------
# Mock Telemetry for Local Development
# ---------------------------------------------------------------------------

class LoggingTelemetry:
    """
    Logs events and metrics and keeps them in order.

    `sent` holds ("event" | "metrics", event_type, payload) tuples in the
    order they were sent, so tests can check sequencing.
    """

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict[str, Any]]] = []

    async def send_event(self, event_type: str, payload: Mapping[str, Any]) -> None:
        self.sent.append(("event", event_type, dict(payload)))
        logger.info("Event", extra={"event_type": event_type})

    async def send_metrics(self, event_type: str, metrics: Mapping[str, Any]) -> None:
        self.sent.append(("metrics", event_type, dict(metrics)))
        logger.info("Metrics", extra={"event_type": event_type})

    async def send_error_metrics(
        self,
        location: Optional[str],
        message: str,
        metrics: Mapping[str, Any],
    ) -> None:
        await self.send_metrics(
            RENDITION_FAILED_EVENT,
            {**metrics, "location": location, "message": message},
        )

    @property
    def events(self) -> list[tuple[str, dict[str, Any]]]:
        return [(t, p) for kind, t, p in self.sent if kind == "event"]

    @property
    def metrics(self) -> list[tuple[str, dict[str, Any]]]:
        return [(t, p) for kind, t, p in self.sent if kind == "metrics"]


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_event_handler(
    context: ActionContext,
    events_url: str = "",
    events_api_key: str = "",
    new_relic_events_url: str = "",
    new_relic_api_key: str = "",
    mock_mode: bool = False,
) -> EventHandler:
    """
    Create the event handler for a job.

    Without an event endpoint events are only logged.
    """
    if mock_mode:
        telemetry = LoggingTelemetry()
        return EventHandler(telemetry, telemetry)

    events = HttpEventSender(events_url, events_api_key, context) if events_url else LoggingTelemetry()
    metrics = NewRelicMetricsSender(new_relic_events_url, new_relic_api_key, context)
    return EventHandler(events, metrics)
