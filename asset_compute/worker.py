"""
Worker pipeline.

One activation processes one job:
1. download the source into an input directory
2. run the worker callback, which writes renditions into an output directory
3. upload the generated renditions
4. send one event (plus metrics) per requested rendition
5. remove the working directories

A failing phase sends `rendition_failed` for every rendition before the
error propagates to the runtime. Timeout metrics are scheduled for the
activation deadline and cancelled once the job is done.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from .config.settings import DEFAULT_TIMEOUT_MS
from .core.errors import AssetComputeError, GenericError, SourceUnsupportedError
from .core.events import EventHandler, schedule_timeout_metrics, send_error, send_rendition_metrics
from .core.files import file_exists_and_is_not_empty, remove_tree
from .core.logs import PrefixedLogger, get_logger
from .core.models import Rendition, renditions_from_params
from .core.timing import Timer
from .infrastructure.storage import datauri
from .infrastructure.storage.http import HttpTransfer, is_http_url, redact_url, url_basename
from .infrastructure.storage.s3 import LocationDescriptor, S3TransferGateway
from .infrastructure.storage.temporary import TemporaryCloudStorage

SOURCE_BASENAME = "source"

RenditionFn = Callable[[Path, Rendition, Path], Awaitable[Any]]
RenditionsFn = Callable[[Path, list[Rendition], Path], Awaitable[Any]]


class AssetComputeWorker:
    """
    Runs the pipeline for one job.

    Collaborators are injected so tests can swap in fakes; `actions.py`
    wires the real ones from settings.
    """

    def __init__(
        self,
        params: dict[str, Any],
        events: EventHandler,
        gateway: Optional[S3TransferGateway] = None,
        http: Optional[HttpTransfer] = None,
        temporary_storage: Optional[TemporaryCloudStorage] = None,
        action_name: str = "",
        deadline_ms: Optional[int] = None,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        work_dir: str = ".",
        presign_attempts: int = 3,
        disable_source_download: bool = False,
    ) -> None:
        self.params = params
        self.events = events
        self.action_name = action_name
        self.deadline_ms = deadline_ms
        self.default_timeout_ms = default_timeout_ms
        self.work_dir = work_dir
        self.presign_attempts = presign_attempts
        self.disable_source_download = disable_source_download
        self.temporary_storage = temporary_storage

        self.ingestion_id = params.get("ingestionId")
        self.log: PrefixedLogger = get_logger(
            __name__, f"[{self.ingestion_id}]" if self.ingestion_id else None
        )
        self.gateway = gateway or S3TransferGateway(log=self.log)
        self.http = http or HttpTransfer(action_name=action_name)

        self.metrics: dict[str, Any] = {}
        self.indir: Optional[Path] = None
        self.outdir: Optional[Path] = None
        self.infile: Optional[Path] = None
        self.source_url: Optional[str] = None
        self.renditions: list[Rendition] = []
        self.worker_result: Any = None

    # -----------------------------------------------------------------------
    # Entry points
    # -----------------------------------------------------------------------

    async def compute(self, rendition_fn: RenditionFn) -> dict[str, Any]:
        """Call `rendition_fn(source, rendition, outdir)` once per rendition."""
        async def for_each_rendition(infile: Path, renditions: list[Rendition], outdir: Path) -> list[Any]:
            results = []
            for rendition in renditions:
                self.log.info(f"generating rendition {rendition.id()}")
                results.append(await rendition_fn(infile, rendition, outdir))
            return results

        return await self.process(for_each_rendition)

    async def compute_all_at_once(self, renditions_fn: RenditionsFn) -> dict[str, Any]:
        """Call `renditions_fn(source, renditions, outdir)` once."""
        return await self.process(renditions_fn)

    async def process(self, worker_fn: RenditionsFn) -> dict[str, Any]:
        duration = Timer().start()
        timeout_task = schedule_timeout_metrics(
            self.events.metrics,
            self.metrics,
            duration,
            self.deadline_ms,
            self.action_name,
            default_ms=self.default_timeout_ms,
        )
        try:
            # PHASE 1 - PREPARE
            try:
                self._create_directories()
                await self._download_source()
            except Exception as e:
                await self._fail(e, "download_error")
                raise

            # PHASE 2 - RUN WORKER
            try:
                processing = Timer().start()
                self.worker_result = await worker_fn(self.infile, self.renditions, self.outdir)
                self.metrics["processingInSeconds"] = processing.current_duration()
                self.log.info("workerResult", extra={"worker_result": repr(self.worker_result)})
            except AssetComputeError as e:
                await self._fail(e, "worker_error")
                raise
            except Exception as e:
                await self._fail(e, "worker_error")
                raise GenericError(str(e), f"{self.action_name}_processing") from e

            # PHASE 3 - UPLOAD
            try:
                produced = self._collect_renditions()
                if not produced:
                    raise GenericError("No generated renditions found.", "worker_result")
                await self._upload_renditions(produced)
            except Exception as e:
                await self._fail(e, "library_processing_error")
                raise

            # PHASE 4 - EVENTS AND METRICS
            self.log.info(f"download of source file took {self.metrics.get('downloadInSeconds')} seconds")
            self.log.info(f"processing of all renditions took {self.metrics.get('processingInSeconds')} seconds")
            self.log.info(f"uploading of all renditions took {self.metrics.get('uploadInSeconds')} seconds")

            self.metrics["duration"] = duration.total_duration()
            for rendition in self.renditions:
                metadata = produced.get(rendition.name)
                await send_rendition_metrics(
                    rendition.instructions,
                    metadata,
                    self.metrics,
                    self.events,
                )

            result_params = {k: v for k, v in self.params.items() if k != "newRelicApiKey"}
            return {
                "ok": True,
                "renditions": produced,
                "workerResult": self.worker_result,
                "sourceUrl": self.source_url,
                "params": result_params,
                "metrics": self.metrics,
            }
        finally:
            timeout_task.cancel()
            self._cleanup()

    # -----------------------------------------------------------------------
    # Phases
    # -----------------------------------------------------------------------

    def _create_directories(self) -> None:
        os.makedirs(self.work_dir, exist_ok=True)
        root = Path(tempfile.mkdtemp(prefix="asset-compute-", dir=self.work_dir))
        self.indir = root / "in"
        self.outdir = root / "out"
        self.indir.mkdir()
        self.outdir.mkdir()
        self.renditions = renditions_from_params(self.params.get("renditions") or [], self.outdir)

    def _source_name(self, source: dict[str, Any]) -> str:
        name = source.get("name") or os.path.basename(source.get("s3Key") or source.get("key") or "")
        if not name and is_http_url(source.get("url")):
            name = url_basename(source["url"])
        return name or SOURCE_BASENAME

    async def _download_source(self) -> None:
        source = self.params.get("source")
        if not source:
            raise GenericError("Missing source", f"{self.action_name}_download")
        if isinstance(source, str):
            source = {"url": source}

        self.infile = self.indir / self._source_name(source)
        timer = Timer().start()

        if datauri.is_data_uri(source.get("url")):
            self.log.info(f"creating asset from data url: {self.infile}")
            await datauri.download(source["url"], self.infile, self.action_name)
            if self.disable_source_download:
                if not file_exists_and_is_not_empty(self.infile):
                    raise SourceUnsupportedError(f"Invalid or missing local file {self.infile}")
                if self.temporary_storage is None:
                    raise GenericError("Temporary storage is not configured", f"{self.action_name}_download")
                self.source_url = await datauri.get_presigned_url(
                    self.temporary_storage,
                    self.infile,
                    self.presign_attempts,
                )
                self.log.info("Uploaded data URI content to storage and generated presigned url")
            return

        url = source.get("url")
        if is_http_url(url):
            if self.disable_source_download:
                self.log.info(f"Skipping source file download for {redact_url(url)}")
                self.source_url = url
                return
            await self.http.download(url, self.infile, source.get("headers"))
        else:
            await self.gateway.download(LocationDescriptor.from_params(source), self.infile)

        self.metrics["downloadInSeconds"] = timer.current_duration()
        self.metrics["sourceSize"] = self.infile.stat().st_size
        self.metrics["sourceName"] = self.infile.name
        if source.get("mimeType"):
            self.metrics["sourceMimetype"] = source["mimeType"]
        self.log.info(f"END download for ingestionId {self.ingestion_id} file {self.infile}")

    def _collect_renditions(self) -> dict[str, dict[str, Any]]:
        """Metadata of every requested rendition the worker produced."""
        return {
            rendition.name: rendition.describe()
            for rendition in self.renditions
            if rendition.exists()
        }

    async def _upload_renditions(self, produced: dict[str, dict[str, Any]]) -> None:
        """Renditions with their own `target` go over HTTP, otherwise all go to S3."""
        timer = Timer().start()
        if any(r.instructions.get("target") for r in self.renditions):
            for rendition in self.renditions:
                if rendition.name in produced:
                    await self.http.upload(rendition)
            self.metrics["uploadInSeconds"] = timer.current_duration()
            return

        source = self.params.get("source")
        source_location = LocationDescriptor.from_params(source if isinstance(source, dict) else None)
        target = LocationDescriptor.from_params(self.params.get("target"))

        await self.gateway.upload(
            source_location,
            target,
            self.outdir,
            self.infile.name,
            correlation_id=self.ingestion_id,
        )
        self.metrics["uploadInSeconds"] = timer.current_duration()

    async def _fail(self, error: BaseException, location: str) -> None:
        self.log.error(f"{location}: {error}")
        await send_error(
            self.events,
            [r.instructions for r in self.renditions] or self.params.get("renditions") or [],
            error,
            self.metrics,
            location,
        )

    def _cleanup(self) -> None:
        try:
            if self.indir is not None:
                remove_tree(self.indir.parent)
        except OSError as e:
            self.log.error(f"error during cleanup: {e}")
