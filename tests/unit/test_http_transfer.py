"""
Unit tests for HTTP source download and rendition upload.

Requests are answered by httpx.MockTransport, so uploads can be inspected
without a server.
"""

import httpx
import pytest

from asset_compute.core.errors import GenericError, RenditionTooLargeError
from asset_compute.core.models import Rendition
from asset_compute.infrastructure.storage.http import (
    HttpTransfer,
    is_http_url,
    plan_parts,
    redact_url,
    url_basename,
)


class FakeServer:
    """Serves a fixed body on GET and keeps PUT bodies by URL."""

    def __init__(self, body=b"remote source", status_code=200):
        self.body = body
        self.status_code = status_code
        self.requests = []
        self.uploaded = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "PUT":
            self.uploaded[str(request.url)] = request.content
            return httpx.Response(self.status_code)
        return httpx.Response(self.status_code, content=self.body)


@pytest.fixture
def server():
    return FakeServer()


def transfer_for(server) -> HttpTransfer:
    client = httpx.AsyncClient(transport=httpx.MockTransport(server))
    return HttpTransfer(client=client, action_name="test_action")


def rendition_with(tmp_path, target, content=b"0123456789", name="out.png"):
    rendition = Rendition({"fmt": "png", "name": name, "target": target}, tmp_path)
    rendition.path.write_bytes(content)
    return rendition


# ---------------------------------------------------------------------------
# URL Helper Tests
# ---------------------------------------------------------------------------

class TestUrlHelpers:
    """Tests for URL classification and redaction."""

    @pytest.mark.parametrize("url,expected", [
        ("https://example.com/a.png", True),
        ("http://example.com/a.png", True),
        ("data:text/plain,hi", False),
        ("a.png", False),
        (None, False),
    ])
    def test_is_http_url(self, url, expected):
        assert is_http_url(url) is expected

    def test_redact_url_drops_signature(self):
        assert redact_url("https://bucket.test/a.png?X-Amz-Signature=abc") == "https://bucket.test/a.png"

    def test_url_basename(self):
        assert url_basename("https://example.com/photos/cat.jpg?v=1") == "cat.jpg"


# ---------------------------------------------------------------------------
# Download Tests
# ---------------------------------------------------------------------------

class TestDownload:
    """Tests for streaming a source into a file."""

    async def test_writes_body_and_sends_headers(self, server, tmp_path):
        target = tmp_path / "in" / "cat.jpg"

        await transfer_for(server).download(
            "https://example.com/cat.jpg", target, {"x-custom": "yes"}
        )

        assert target.read_bytes() == b"remote source"
        assert server.requests[0].headers["x-custom"] == "yes"

    async def test_error_status_is_download_error(self, tmp_path):
        server = FakeServer(status_code=404)

        with pytest.raises(GenericError) as exc:
            await transfer_for(server).download("https://example.com/missing.jpg", tmp_path / "x")

        assert exc.value.location == "test_action_download"
        assert "404" in exc.value.message

    async def test_connection_failure_is_download_error(self, tmp_path):
        def refuse(request):
            raise httpx.ConnectError("connection refused")

        transfer = HttpTransfer(client=httpx.AsyncClient(transport=httpx.MockTransport(refuse)))

        with pytest.raises(GenericError, match="connection refused"):
            await transfer.download("https://example.com/a.jpg", tmp_path / "x")


# ---------------------------------------------------------------------------
# Upload Tests
# ---------------------------------------------------------------------------

class TestUpload:
    """Tests for PUTting renditions to their targets."""

    async def test_single_url_target(self, server, tmp_path):
        rendition = rendition_with(tmp_path, "https://upload.test/out.png?sig=1")

        await transfer_for(server).upload(rendition)

        assert server.uploaded == {"https://upload.test/out.png?sig=1": b"0123456789"}
        assert server.requests[0].headers["content-type"] == "image/png"

    async def test_explicit_content_type_wins(self, server, tmp_path):
        rendition = rendition_with(tmp_path, "https://upload.test/out")
        rendition.set_content_type("image/x-custom")

        await transfer_for(server).upload(rendition)

        assert server.requests[0].headers["content-type"] == "image/x-custom"

    async def test_multipart_target(self, server, tmp_path):
        target = {"urls": ["https://upload.test/1", "https://upload.test/2", "https://upload.test/3"]}
        rendition = rendition_with(tmp_path, target)

        await transfer_for(server).upload(rendition)

        assert server.uploaded == {
            "https://upload.test/1": b"0123",
            "https://upload.test/2": b"4567",
            "https://upload.test/3": b"89",
        }

    async def test_rendition_without_target_is_skipped(self, server, tmp_path):
        rendition = rendition_with(tmp_path, None)

        await transfer_for(server).upload(rendition)

        assert server.requests == []

    async def test_413_means_rendition_too_large(self, tmp_path):
        server = FakeServer(status_code=413)
        rendition = rendition_with(tmp_path, "https://upload.test/out.png")

        with pytest.raises(RenditionTooLargeError, match="rendition size of 10 for out.png"):
            await transfer_for(server).upload(rendition)

    async def test_other_failures_are_upload_errors(self, tmp_path):
        server = FakeServer(status_code=500)
        rendition = rendition_with(tmp_path, "https://upload.test/out.png")

        with pytest.raises(GenericError) as exc:
            await transfer_for(server).upload(rendition)

        assert exc.value.location == "test_action_upload"

    async def test_unsupported_target(self, server, tmp_path):
        rendition = rendition_with(tmp_path, 42)

        with pytest.raises(GenericError, match="unsupported target"):
            await transfer_for(server).upload(rendition)


class TestPlanParts:
    """Tests for splitting a file over multi-part URLs."""

    def test_even_split_uses_only_needed_urls(self):
        target = {"urls": ["u1", "u2", "u3", "u4"], "minPartSize": 6}
        assert plan_parts(10, target) == [("u1", 0, 6), ("u2", 6, 10)]

    def test_too_large_for_max_part_size(self):
        target = {"urls": ["u1", "u2"], "maxPartSize": 4}
        with pytest.raises(RenditionTooLargeError, match="too large to upload"):
            plan_parts(10, target)

    def test_no_urls(self):
        with pytest.raises(GenericError, match="no urls"):
            plan_parts(10, {"urls": []})
