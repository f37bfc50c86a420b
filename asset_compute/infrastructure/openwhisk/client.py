"""
OpenWhisk client for asynchronous self-invocation.

A web action must answer within the gateway's timeout, far shorter than
rendition processing. It therefore re-invokes its own action non-blocking
and returns the activation id straight away.
"""

import base64
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional
from uuid import uuid4

import httpx

from ...core.errors import HttpError
from ...core.webaction import ActionInvoker

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


@dataclass
class OpenWhiskConfig:
    """Connection settings, normally from `__OW_API_HOST` and `__OW_API_KEY`."""
    api_host: str
    api_key: str
    namespace: str = "_"

    def __post_init__(self) -> None:
        if not self.api_host:
            raise ValueError("OpenWhisk API host is required")
        if not self.api_key:
            raise ValueError("OpenWhisk API key is required")
        if not self.api_host.startswith(("http://", "https://")):
            self.api_host = f"https://{self.api_host}"


def action_url(api_host: str, action_name: str, default_namespace: str = "_") -> str:
    """
    REST URL of an action.

    `/ns/pkg/action` -> `<host>/api/v1/namespaces/ns/actions/pkg/action`,
    names without a leading slash use `default_namespace`.
    """
    if action_name.startswith("/"):
        namespace, _, name = action_name[1:].partition("/")
    else:
        namespace, name = default_namespace, action_name
    return f"{api_host.rstrip('/')}/api/v1/namespaces/{namespace}/actions/{name}"


class OpenWhiskInvoker:
    """Invokes actions through the OpenWhisk REST API."""

    def __init__(
        self,
        config: OpenWhiskConfig,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._config = config
        self._client = client

    def _auth_header(self) -> str:
        token = base64.b64encode(self._config.api_key.encode()).decode()
        return f"Basic {token}"

    async def invoke(self, action_name: str, params: Mapping[str, Any]) -> str:
        url = action_url(self._config.api_host, action_name, self._config.namespace)
        logger.info(f"Invoking {action_name} asynchronously...")

        try:
            response = await self._post(url, dict(params))
        except httpx.HTTPError as e:
            msg = f"Async invocation of {action_name} failed: {e}"
            logger.error(msg)
            raise HttpError(500, msg) from e

        if response.status_code >= 300:
            msg = (
                f"Async invocation of {action_name} failed with HTTP status code "
                f"{response.status_code}"
            )
            logger.error(msg, extra={"body": response.text[:500]})
            code = 429 if response.status_code == 429 else 500
            raise HttpError(code, msg)

        activation_id = response.json().get("activationId")
        logger.info(f"Success, activation id: {activation_id}")
        return activation_id

    async def _post(self, url: str, params: dict[str, Any]) -> httpx.Response:
        request = dict(
            params={"blocking": "false"},
            headers={"Authorization": self._auth_header()},
            json=params,
        )
        if self._client is not None:
            return await self._client.post(url, **request)
        async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT_SECONDS) as client:
            return await client.post(url, **request)


class MockInvoker:
    """
    Records invocations and returns random activation ids.

    Lets the web action run locally without an OpenWhisk deployment.
    """

    def __init__(self) -> None:
        self.invocations: list[tuple[str, dict[str, Any]]] = []

    async def invoke(self, action_name: str, params: Mapping[str, Any]) -> str:
        self.invocations.append((action_name, dict(params)))
        activation_id = uuid4().hex
        logger.info(
            "Mock async invocation",
            extra={"action": action_name, "activation_id": activation_id}
        )
        return activation_id


def create_invoker(
    config: Optional[OpenWhiskConfig] = None,
    mock_mode: bool = False,
) -> ActionInvoker:
    if mock_mode:
        return MockInvoker()

    if config is None:
        raise ValueError("config is required when not in mock mode")

    return OpenWhiskInvoker(config)
