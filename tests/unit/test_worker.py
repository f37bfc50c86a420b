"""
Unit tests for the worker pipeline.

The S3 gateway runs against fake clients and telemetry is recorded by
LoggingTelemetry, so a whole job (download, worker, upload, events) runs in
a temporary directory.
"""

import base64
from pathlib import Path

import httpx
import pytest

from asset_compute.core.errors import GenericError, SourceCorruptError, SourceUnsupportedError
from asset_compute.core.events import EventHandler
from asset_compute.infrastructure.storage import (
    MockTemporaryCloudStorage,
    S3TransferGateway,
    StorageTransferError,
    TransferSession,
)
from asset_compute.infrastructure.storage.http import HttpTransfer
from asset_compute.infrastructure.telemetry import LoggingTelemetry
from asset_compute.worker import AssetComputeWorker


class FakeS3Client:
    """Serves a fixed source and keeps uploaded file contents."""

    def __init__(self, fail_upload=False):
        self.fail_upload = fail_upload
        self.uploaded = {}

    def download_file(self, bucket, key, filename):
        Path(filename).write_bytes(b"source bytes")

    def upload_file(self, filename, bucket, key):
        if self.fail_upload:
            raise RuntimeError("bucket is read only")
        self.uploaded[key] = Path(filename).read_bytes()


class SingleClientFactory:
    def __init__(self, client):
        self.client = client
        self.calls = 0

    def __call__(self, location):
        self.calls += 1
        return self.client


SOURCE = {
    "s3Region": "us-east-1",
    "s3Bucket": "assets",
    "s3Key": "incoming/photo.jpg",
    "accessKey": "AKID",
    "secretKey": "SECRET",
    "mimeType": "image/jpeg",
}


@pytest.fixture
def s3_client():
    return FakeS3Client()


@pytest.fixture
def telemetry():
    return LoggingTelemetry()


@pytest.fixture
def make_worker(s3_client, telemetry, tmp_path):
    def make(params, **kwargs):
        gateway = S3TransferGateway(session=TransferSession(client_factory=SingleClientFactory(s3_client)))
        return AssetComputeWorker(
            params,
            EventHandler(telemetry, telemetry),
            gateway=gateway,
            action_name="test_action",
            work_dir=str(tmp_path / "work"),
            **kwargs,
        )
    return make


async def write_rendition(source, rendition, outdir):
    rendition.path.write_text(f"{rendition.instructions['fmt']} of {source.read_text()}")


# ---------------------------------------------------------------------------
# Success Path Tests
# ---------------------------------------------------------------------------

class TestComputeSuccess:
    """A job where every rendition is produced."""

    async def test_renditions_are_uploaded(self, make_worker, s3_client):
        worker = make_worker({
            "source": SOURCE,
            "renditions": [{"fmt": "png"}, {"fmt": "txt", "name": "text.txt"}],
            "ingestionId": "ingest-1",
        })

        result = await worker.compute(write_rendition)

        assert result["ok"] is True
        assert s3_client.uploaded == {
            "photo.jpg_renditions/rendition0.png": b"png of source bytes",
            "photo.jpg_renditions/text.txt": b"txt of source bytes",
        }
        assert set(result["renditions"]) == {"rendition0.png", "text.txt"}
        assert result["renditions"]["text.txt"]["size"] == len(b"txt of source bytes")

    async def test_one_event_and_metrics_per_rendition(self, make_worker, telemetry):
        worker = make_worker({"source": SOURCE, "renditions": [{"fmt": "png"}, {"fmt": "jpg"}]})

        await worker.compute(write_rendition)

        assert [(kind, event_type) for kind, event_type, _ in telemetry.sent] == [
            ("event", "rendition"),
            ("metrics", "rendition"),
            ("event", "rendition"),
            ("metrics", "rendition"),
        ]
        _, metrics = telemetry.metrics[0]
        assert metrics["sourceName"] == "photo.jpg"
        assert metrics["sourceMimetype"] == "image/jpeg"
        assert metrics["sourceSize"] == len(b"source bytes")
        assert metrics["fmt"] == "png"

    async def test_result_reports_metrics_and_hides_api_key(self, make_worker):
        worker = make_worker({
            "source": SOURCE,
            "renditions": [{"fmt": "png"}],
            "newRelicApiKey": "secret",
        })

        result = await worker.compute(write_rendition)

        assert "newRelicApiKey" not in result["params"]
        for key in ("downloadInSeconds", "processingInSeconds", "uploadInSeconds", "duration"):
            assert result["metrics"][key] is not None

    async def test_upload_goes_to_explicit_target(self, make_worker, s3_client):
        worker = make_worker({
            "source": SOURCE,
            "target": {"s3Bucket": "renditions", "s3Prefix": "jobs/7/"},
            "renditions": [{"fmt": "png"}],
        })

        await worker.compute(write_rendition)

        assert list(s3_client.uploaded) == ["jobs/7/rendition0.png"]

    async def test_working_directories_are_removed(self, make_worker, tmp_path):
        worker = make_worker({"source": SOURCE, "renditions": [{"fmt": "png"}]})

        await worker.compute(write_rendition)

        assert list((tmp_path / "work").iterdir()) == []

    async def test_batch_worker_gets_all_renditions(self, make_worker):
        seen = []

        async def batch(source, renditions, outdir):
            seen.append([r.name for r in renditions])
            for rendition in renditions:
                rendition.path.write_text("x")
            return "done"

        worker = make_worker({"source": SOURCE, "renditions": [{"fmt": "png"}, {"fmt": "gif"}]})
        result = await worker.compute_all_at_once(batch)

        assert seen == [["rendition0.png", "rendition1.gif"]]
        assert result["workerResult"] == "done"

    async def test_missing_rendition_is_reported_as_failure(self, make_worker, telemetry):
        async def only_png(source, rendition, outdir):
            if rendition.instructions["fmt"] == "png":
                rendition.path.write_text("png")

        worker = make_worker({"source": SOURCE, "renditions": [{"fmt": "png"}, {"fmt": "jpg"}]})
        await worker.compute(only_png)

        assert [event_type for event_type, _ in telemetry.events] == ["rendition", "rendition_failed"]
        _, metrics = telemetry.metrics[1]
        assert metrics["location"] == "uploading_error"


# ---------------------------------------------------------------------------
# Failure Path Tests
# ---------------------------------------------------------------------------

class TestComputeFailures:
    """Every failure sends rendition_failed for each rendition and propagates."""

    async def test_missing_source(self, make_worker, telemetry):
        worker = make_worker({"renditions": [{"fmt": "png"}]})

        with pytest.raises(GenericError, match="Missing source"):
            await worker.compute(write_rendition)

        event_type, payload = telemetry.events[0]
        assert event_type == "rendition_failed"
        assert payload["rendition"] == {"fmt": "png"}
        _, metrics = telemetry.metrics[0]
        assert metrics["location"] == "test_action_download"

    async def test_worker_error_keeps_its_reason(self, make_worker, telemetry):
        async def corrupt(source, rendition, outdir):
            raise SourceCorruptError("source is empty")

        worker = make_worker({"source": SOURCE, "renditions": [{"fmt": "png"}, {"fmt": "jpg"}]})

        with pytest.raises(SourceCorruptError):
            await worker.compute(corrupt)

        assert len(telemetry.events) == 2
        _, payload = telemetry.events[0]
        assert payload["errorReason"] == "SourceCorruptError"
        _, metrics = telemetry.metrics[0]
        assert metrics["reason"] == "SourceCorrupt"
        assert metrics["location"] == "worker_error"

    async def test_unexpected_worker_exception_becomes_generic_error(self, make_worker, telemetry):
        async def crash(source, rendition, outdir):
            raise ZeroDivisionError("division by zero")

        worker = make_worker({"source": SOURCE, "renditions": [{"fmt": "png"}]})

        with pytest.raises(GenericError) as exc:
            await worker.compute(crash)

        assert exc.value.location == "test_action_processing"
        assert exc.value.message == "division by zero"

    async def test_no_renditions_generated(self, make_worker, telemetry):
        async def nothing(source, rendition, outdir):
            pass

        worker = make_worker({"source": SOURCE, "renditions": [{"fmt": "png"}]})

        with pytest.raises(GenericError, match="No generated renditions found."):
            await worker.compute(nothing)

        _, metrics = telemetry.metrics[0]
        assert metrics["location"] == "worker_result"

    async def test_upload_failure(self, telemetry, tmp_path):
        gateway = S3TransferGateway(
            session=TransferSession(client_factory=SingleClientFactory(FakeS3Client(fail_upload=True)))
        )
        worker = AssetComputeWorker(
            {"source": SOURCE, "renditions": [{"fmt": "png"}]},
            EventHandler(telemetry, telemetry),
            gateway=gateway,
            work_dir=str(tmp_path),
        )

        with pytest.raises(StorageTransferError, match="bucket is read only"):
            await worker.compute(write_rendition)

        _, metrics = telemetry.metrics[0]
        assert metrics["location"] == "library_processing_error"
        assert list(tmp_path.iterdir()) == []


# ---------------------------------------------------------------------------
# Data URI Source Tests
# ---------------------------------------------------------------------------

class TestDataUriSource:
    """Inline sources are decoded instead of downloaded."""

    DATA_URI = "data:text/plain;base64," + base64.b64encode(b"inline source").decode()

    async def test_data_uri_is_decoded(self, make_worker, s3_client):
        seen = []

        async def read_source(source, rendition, outdir):
            seen.append(source.read_bytes())
            rendition.path.write_text("out")

        worker = make_worker({
            "source": self.DATA_URI,
            "target": {
                "s3Region": "us-east-1",
                "s3Bucket": "renditions",
                "accessKey": "AKID",
                "secretKey": "SECRET",
            },
            "renditions": [{"fmt": "txt"}],
        })
        await worker.compute(read_source)

        assert seen == [b"inline source"]
        assert list(s3_client.uploaded) == ["source_renditions/rendition0.txt"]

    async def test_data_uri_presign_failure_is_a_download_error(self, make_worker, telemetry):
        # unique cloud names never match the always-succeeding mock path
        worker = make_worker(
            {"source": self.DATA_URI, "renditions": [{"fmt": "txt"}]},
            temporary_storage=MockTemporaryCloudStorage(),
            disable_source_download=True,
            presign_attempts=2,
        )

        with pytest.raises(Exception, match="Presigned URL generation failed"):
            await worker.compute(write_rendition)

        _, metrics = telemetry.metrics[0]
        assert metrics["location"] == "download_error"

    async def test_empty_data_uri_with_presign_is_unsupported(self, make_worker):
        worker = make_worker(
            {"source": "data:text/plain,", "renditions": [{"fmt": "txt"}]},
            temporary_storage=MockTemporaryCloudStorage(),
            disable_source_download=True,
        )

        with pytest.raises(SourceUnsupportedError):
            await worker.compute(write_rendition)

    async def test_presigned_url_is_reported(self, make_worker, monkeypatch):
        storage = MockTemporaryCloudStorage()
        monkeypatch.setattr(storage, "create_unique_name", lambda filename="file.tmp": storage.SUCCESS_PATH)

        async def url_worker(source, rendition, outdir):
            rendition.path.write_text("out")

        worker = make_worker(
            {
                "source": {"url": self.DATA_URI, "name": "note.txt"},
                "target": {
                    "s3Region": "us-east-1",
                    "s3Bucket": "renditions",
                    "accessKey": "AKID",
                    "secretKey": "SECRET",
                },
                "renditions": [{"fmt": "txt"}],
            },
            temporary_storage=storage,
            disable_source_download=True,
        )
        result = await worker.compute(url_worker)

        assert result["sourceUrl"] == "http://storage.com/preSignUrl/fakeSuccessFilePath"
        assert storage.contains(storage.SUCCESS_PATH)


# ---------------------------------------------------------------------------
# HTTP Transfer Tests
# ---------------------------------------------------------------------------

class TestHttpTransfers:
    """Sources given as URLs and renditions with their own targets."""

    @pytest.fixture
    def requests(self):
        return []

    @pytest.fixture
    def http(self, requests):
        def serve(request):
            requests.append(request)
            if request.method == "GET":
                return httpx.Response(200, content=b"remote bytes")
            return httpx.Response(201)

        return HttpTransfer(client=httpx.AsyncClient(transport=httpx.MockTransport(serve)))

    async def test_url_source_and_url_targets(self, make_worker, http, requests, s3_client, telemetry):
        worker = make_worker(
            {
                "source": "https://assets.test/photos/cat.jpg?sig=abc",
                "renditions": [{"fmt": "png", "target": "https://upload.test/cat.png"}],
            },
            http=http,
        )

        result = await worker.compute(write_rendition)

        get, put = requests
        assert str(get.url) == "https://assets.test/photos/cat.jpg?sig=abc"
        assert str(put.url) == "https://upload.test/cat.png"
        assert put.content == b"png of remote bytes"
        assert s3_client.uploaded == {}
        assert result["metrics"]["sourceName"] == "cat.jpg"
        assert result["metrics"]["sourceSize"] == len(b"remote bytes")
        assert [event_type for event_type, _ in telemetry.events] == ["rendition"]

    async def test_url_source_with_s3_target(self, make_worker, http, s3_client):
        worker = make_worker(
            {
                "source": {"url": "https://assets.test/cat.jpg", "mimeType": "image/jpeg"},
                "target": {
                    "s3Region": "us-east-1",
                    "s3Bucket": "renditions",
                    "accessKey": "AKID",
                    "secretKey": "SECRET",
                },
                "renditions": [{"fmt": "png"}],
            },
            http=http,
        )

        await worker.compute(write_rendition)

        assert s3_client.uploaded == {"cat.jpg_renditions/rendition0.png": b"png of remote bytes"}

    async def test_skipped_download_reports_source_url(self, make_worker, http, requests):
        seen = []

        async def url_worker(source, rendition, outdir):
            seen.append(source.exists())
            rendition.path.write_text("out")

        worker = make_worker(
            {
                "source": "https://assets.test/cat.jpg",
                "renditions": [{"fmt": "png", "target": "https://upload.test/cat.png"}],
            },
            http=http,
            disable_source_download=True,
        )

        result = await worker.compute(url_worker)

        assert seen == [False]
        assert result["sourceUrl"] == "https://assets.test/cat.jpg"
        assert [request.method for request in requests] == ["PUT"]

    async def test_failed_source_download(self, make_worker, telemetry):
        http = HttpTransfer(
            client=httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(403))),
            action_name="test_action",
        )
        worker = make_worker(
            {"source": "https://assets.test/cat.jpg", "renditions": [{"fmt": "png"}]},
            http=http,
        )

        with pytest.raises(GenericError) as exc:
            await worker.compute(write_rendition)

        assert exc.value.location == "test_action_download"
        _, metrics = telemetry.metrics[0]
        assert metrics["location"] == "download_error"
