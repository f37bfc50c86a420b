"""
Liveness and readiness probes.

`/health` answers as long as the process serves requests. `/health/ready`
also reports settings the web action needs for async invocation and
temporary storage, so a misconfigured deployment shows up before the first
job fails.
"""

import logging
from typing import Any

from fastapi import APIRouter, status
from pydantic import BaseModel

from ... import __version__
from ..dependencies import SettingsDep

logger = logging.getLogger(__name__)

router = APIRouter()


class HealthResponse(BaseModel):
    """Liveness probe payload, with the action and its mock modes."""
    status: str
    version: str
    details: dict[str, Any] = {}


class ReadinessResponse(BaseModel):
    status: str  # "ready" or "not_ready"
    version: str
    missing_settings: list[str]


@router.get(
    "",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Liveness probe",
    description="Always 200 while the process is up. Settings are not checked.",
)
async def health_check(settings: SettingsDep) -> HealthResponse:
    return HealthResponse(
        status="ok",
        version=__version__,
        details={
            "action": settings.action_name,
            "mock_mode": {
                "invoker": settings.invoker_mock_mode,
                "temporary_storage": settings.temporary_storage_mock_mode,
                "telemetry": settings.telemetry_mock_mode,
            },
        },
    )


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    summary="Readiness probe",
    description="Lists required settings that are not set.",
)
async def readiness_check(settings: SettingsDep) -> ReadinessResponse:
    """
    Report missing settings.

    They only fail the first request that needs them, so surface them here.
    """
    missing = settings.validate_required_fields()
    if missing:
        logger.warning("Not ready", extra={"missing_settings": missing})

    return ReadinessResponse(
        status="not_ready" if missing else "ready",
        version=__version__,
        missing_settings=missing,
    )
