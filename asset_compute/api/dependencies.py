"""
Request-scoped providers for settings, the action invoker and the action
body. Tests replace them through `app.dependency_overrides`.
"""

import logging
from typing import Annotated, Optional

from fastapi import Depends

from ..actions import create_invoker_from_settings
from ..config.settings import Settings, get_settings
from ..core.webaction import ActionInvoker, ActionMain
from ..infrastructure.openwhisk import MockInvoker

logger = logging.getLogger(__name__)

# Global mock invoker (shared across requests so invocations can be inspected)
_mock_invoker = None


def get_invoker(
    settings: Annotated[Settings, Depends(get_settings)],
) -> Optional[ActionInvoker]:
    """
    Provide the invoker used for asynchronous self-invocation.

    In mock mode the same invoker serves every request. None when OpenWhisk
    is not configured.
    """
    global _mock_invoker

    if settings.invoker_mock_mode:
        if _mock_invoker is None:
            _mock_invoker = MockInvoker()
            logger.info("Created shared mock invoker")
        return _mock_invoker

    return create_invoker_from_settings(settings)


async def _no_worker(params: dict) -> dict:
    """Placeholder main: the HTTP front end only dispatches web requests."""
    return {"ok": False, "message": "No worker configured"}


def get_action_main() -> ActionMain:
    """
    Provide the action's main function.

    Web requests never reach it (they are re-invoked asynchronously), so the
    front end uses a placeholder. Override to run a real worker.
    """
    return _no_worker


# ---------------------------------------------------------------------------
# Convenience Type Aliases
# ---------------------------------------------------------------------------

InvokerDep = Annotated[Optional[ActionInvoker], Depends(get_invoker)]
ActionMainDep = Annotated[ActionMain, Depends(get_action_main)]
SettingsDep = Annotated[Settings, Depends(get_settings)]
