"""
Web action dispatch.

The same action serves two kinds of calls:
- web requests (params carry `__ow_method` and `__ow_headers`): the caller
  is authenticated, the action invokes itself asynchronously with the
  relevant params and answers with the activation id right away
- async invocations (plain params): the worker runs
"""

import inspect
import logging
from typing import Any, Awaitable, Callable, Mapping, MutableMapping, Optional, Protocol, Union

from .auth import get_auth
from .errors import HttpError

logger = logging.getLogger(__name__)

SUPPORTED_METHODS_MESSAGE = "Supported HTTP methods: OPTIONS, POST"

ActionMain = Callable[[dict[str, Any]], Union[Awaitable[Any], Any]]


class ActionInvoker(Protocol):
    """Starts an action activation without waiting for its result."""

    async def invoke(self, action_name: str, params: Mapping[str, Any]) -> str:
        """Return the activation id."""
        ...


def get_params(
    params: Mapping[str, Any],
    metrics: Optional[MutableMapping[str, Any]] = None,
) -> dict[str, Any]:
    """
    Params for the async invocation of a web request.

    Only what the worker needs is passed on; the caller identity is added
    to `metrics` when given.
    """
    headers = {k.lower(): v for k, v in (params.get("__ow_headers") or {}).items()}
    request_id = headers.get("x-request-id")
    auth = get_auth(headers)

    if metrics is not None:
        metrics.update({
            "clientId": auth.client_id,
            "appName": auth.app_name,
            "orgId": auth.org_id,
            "orgName": auth.org_name,
            "requestId": request_id,
        })

    return {
        "source": params.get("source"),
        "renditions": params.get("renditions"),
        "userData": params.get("userData"),
        "requestId": request_id,
        "auth": auth.to_params(),
        "newRelicEventsURL": params.get("newRelicEventsURL"),
        "newRelicApiKey": params.get("newRelicApiKey"),
        "times": params.get("times"),
        "customWorker": True,
        "predictedRunDuration": params.get("predictedRunDuration"),
    }


async def handle_web_action(
    params: dict[str, Any],
    main: ActionMain,
    invoker: Optional[ActionInvoker],
    action_name: str,
    metrics: Optional[MutableMapping[str, Any]] = None,
) -> Any:
    """
    Dispatch one activation.

    HttpErrors are rendered as `{"statusCode": ..., "body": {"message": ...}}`.
    """
    try:
        method = params.get("__ow_method")
        if method:
            logger.info(f"Web action: HTTP {method}")

            # OPTIONS is answered by the platform
            if method.lower() != "post":
                raise HttpError(405, SUPPORTED_METHODS_MESSAGE)

            async_params = get_params(params, metrics)
            if invoker is None:
                raise HttpError(500, "Async invocation is not configured")
            activation_id = await invoker.invoke(action_name, async_params)

            return {
                "statusCode": 200,
                "body": {"activationId": activation_id},
            }

        result = main(params)
        if inspect.isawaitable(result):
            result = await result
        return result

    except HttpError as e:
        logger.warning(
            "Web action failed",
            extra={"status": e.status_code, "error": e.message}
        )
        return e.to_response()
