"""
Serverless action entry points.

    from asset_compute.actions import webaction, worker

    async def render(source, rendition, outdir):
        ...  # write rendition.path

    main = webaction(worker(render))

`worker`, `batch_worker` and `shell_script_worker` turn a callback into an
async action; `webaction` makes it the synchronous runtime entry point that
also answers web requests. Runtime settings (`__OW_*` variables, telemetry
endpoints, temporary storage) are read here and passed down explicitly.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from .config.settings import Settings, get_settings
from .core.shellscript import ShellScriptWorker
from .core.webaction import ActionInvoker, ActionMain, handle_web_action
from .infrastructure.openwhisk import OpenWhiskConfig, create_invoker
from .infrastructure.storage.http import DEFAULT_RETRIES, HttpTransfer
from .infrastructure.storage.temporary import TemporaryStorageConfig, create_temporary_storage
from .infrastructure.telemetry import ActionContext, create_event_handler
from .worker import AssetComputeWorker, RenditionFn, RenditionsFn

logger = logging.getLogger(__name__)

AsyncAction = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


def create_worker(params: dict[str, Any], settings: Optional[Settings] = None) -> AssetComputeWorker:
    """Wire an AssetComputeWorker for one job from runtime settings."""
    settings = settings or get_settings()

    context = ActionContext.from_params(
        params,
        action_name=settings.action_name,
        package=settings.package_name,
        namespace=settings.ow_namespace,
        activation_id=settings.ow_activation_id,
    )
    events = create_event_handler(
        context,
        events_url=settings.events_url,
        events_api_key=settings.events_api_key,
        # per-job endpoints sent by the client take precedence
        new_relic_events_url=params.get("newRelicEventsURL") or settings.new_relic_events_url,
        new_relic_api_key=params.get("newRelicApiKey") or settings.new_relic_api_key,
        mock_mode=settings.telemetry_mock_mode,
    )

    temporary_storage = None
    if settings.temporary_storage_mock_mode or settings.temporary_storage_bucket:
        temporary_storage = create_temporary_storage(
            None if settings.temporary_storage_mock_mode else TemporaryStorageConfig(
                bucket_name=settings.temporary_storage_bucket,
                access_key_id=settings.temporary_storage_access_key,
                secret_access_key=settings.temporary_storage_secret_key,
                region=settings.temporary_storage_region,
                endpoint_url=settings.temporary_storage_endpoint_url,
            ),
            mock_mode=settings.temporary_storage_mock_mode,
        )

    return AssetComputeWorker(
        params,
        events,
        http=HttpTransfer(
            retries=0 if settings.disable_retries else DEFAULT_RETRIES,
            action_name=settings.action_name,
        ),
        temporary_storage=temporary_storage,
        action_name=settings.action_name,
        deadline_ms=settings.ow_deadline,
        default_timeout_ms=settings.default_timeout_ms,
        work_dir=settings.work_dir,
        presign_attempts=settings.effective_presign_attempts,
        disable_source_download=bool(params.get("disableSourceDownload")),
    )


def worker(rendition_fn: RenditionFn) -> AsyncAction:
    """Action calling `rendition_fn(source, rendition, outdir)` per rendition."""
    if not callable(rendition_fn):
        raise TypeError("rendition_fn must be a function")

    async def main(params: dict[str, Any]) -> dict[str, Any]:
        return await create_worker(params).compute(rendition_fn)

    return main


def batch_worker(renditions_fn: RenditionsFn) -> AsyncAction:
    """Action calling `renditions_fn(source, renditions, outdir)` once."""
    if not callable(renditions_fn):
        raise TypeError("renditions_fn must be a function")

    async def main(params: dict[str, Any]) -> dict[str, Any]:
        return await create_worker(params).compute_all_at_once(renditions_fn)

    return main


def shell_script_worker(script: str = "worker.sh") -> AsyncAction:
    """Action running `script` once per rendition."""
    ShellScriptWorker.validate(script)

    async def main(params: dict[str, Any]) -> dict[str, Any]:
        settings = get_settings()
        shell = ShellScriptWorker(script, action_name=settings.action_name)
        return await create_worker(params, settings).compute(shell.process)

    return main


def webaction(
    main: ActionMain,
    invoker: Optional[ActionInvoker] = None,
    action_name: Optional[str] = None,
) -> Callable[..., Any]:
    """
    Make `main` the runtime entry point of a web-enabled action.

    Invoker and action name default to what the runtime settings describe.
    """
    def action(params: Optional[dict[str, Any]] = None) -> Any:
        params = params or {}
        settings = get_settings()

        active_invoker = invoker
        # only web requests re-invoke the action
        if active_invoker is None and params.get("__ow_method"):
            active_invoker = create_invoker_from_settings(settings)

        return asyncio.run(handle_web_action(
            params,
            main,
            active_invoker,
            action_name or settings.ow_action_name,
        ))

    return action


def create_invoker_from_settings(settings: Settings) -> Optional[ActionInvoker]:
    """
    Invoker described by the runtime settings.

    None when the OpenWhisk host or key is missing; web requests then answer 500.
    """
    if settings.invoker_mock_mode:
        return create_invoker(mock_mode=True)
    try:
        config = OpenWhiskConfig(
            api_host=settings.ow_api_host,
            api_key=settings.ow_api_key,
        )
    except ValueError as e:
        logger.warning(f"Async invocation unavailable: {e}")
        return None
    return create_invoker(config)
