"""
Web action endpoint.

Maps an HTTP request onto the params a web action receives from the
platform (`__ow_method`, `__ow_headers` plus the JSON body) and runs the
same dispatch as the serverless entry point. Useful for running the action
locally or behind a plain HTTP gateway.
"""

import json
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import JSONResponse

from ...core.webaction import handle_web_action
from ..dependencies import ActionMainDep, InvokerDep, SettingsDep

logger = logging.getLogger(__name__)

router = APIRouter()


async def request_params(request: Request) -> dict[str, Any]:
    """Platform-style params of an HTTP request."""
    params: dict[str, Any] = {}
    body = await request.body()
    if body:
        try:
            payload = json.loads(body)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Request body must be JSON",
            )
        if isinstance(payload, dict):
            params.update(payload)

    params["__ow_method"] = request.method.lower()
    params["__ow_headers"] = {k.lower(): v for k, v in request.headers.items()}
    return params


@router.api_route(
    "",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    summary="Web action",
    description="Authenticates the caller and starts the worker asynchronously. Only POST is supported.",
)
async def web_action(
    request: Request,
    settings: SettingsDep,
    invoker: InvokerDep,
    main: ActionMainDep,
) -> JSONResponse:
    params = await request_params(request)
    response = await handle_web_action(
        params,
        main,
        invoker,
        settings.ow_action_name,
    )

    return JSONResponse(
        status_code=response.get("statusCode", 200),
        content=response.get("body", response),
    )
