"""Integration tests for ranged retrieval over real HTTP.

These tests do NOT require S3 credentials - they use a local server that
serves an archive built from local files and honours Range headers the way
an S3 presigned GET does.
"""

import re
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer

import httpx
import pytest

from tarmover.errors import NotFound, TransferError
from tarmover.models import ManifestEntry, TransferSettings
from tarmover.ranges import compute_range
from tarmover.retriever import fetch_range_from_url
from tarmover.runner import TransferRunner
from tarmover.tarstream import TarStream

RANGE_HEADER = re.compile(r"^bytes=(\d+)-(\d+)$")


class RangeHandler(BaseHTTPRequestHandler):
    """Serves server.archive at /archive.tar, honouring Range headers.

    /full.tar ignores Range and always answers 200 with the whole body.
    """

    def log_message(self, format, *args):
        """Suppress logging."""
        pass

    def do_GET(self):
        data = self.server.archive
        path = self.path.split("?", 1)[0]

        if path == "/full.tar":
            self._respond(200, data)
            return
        if path != "/archive.tar":
            self._respond(404, b"NoSuchKey")
            return

        match = RANGE_HEADER.match(self.headers.get("Range", ""))
        if not match:
            self._respond(200, data)
            return

        start, end = int(match.group(1)), int(match.group(2))
        if start >= len(data):
            self._respond(416, b"InvalidRange")
            return
        end = min(end, len(data) - 1)
        self._respond(206, data[start : end + 1], f"bytes {start}-{end}/{len(data)}")

    def _respond(self, status, body, content_range=None):
        self.send_response(status)
        self.send_header("Content-Length", str(len(body)))
        if content_range:
            self.send_header("Content-Range", content_range)
        self.end_headers()
        self.wfile.write(body)


@pytest.fixture
def archive_server(sample_files):
    """Start a local server holding the sample archive."""
    with TarStream(sample_files) as stream:
        manifest = stream.manifest
        data = b"".join(stream)

    server = HTTPServer(("127.0.0.1", 0), RangeHandler)
    server.archive = data
    port = server.server_address[1]
    thread = threading.Thread(target=server.serve_forever)
    thread.daemon = True
    thread.start()
    yield f"http://127.0.0.1:{port}", manifest
    server.shutdown()
    server.server_close()


@pytest.fixture
def http_client():
    with httpx.Client(timeout=10.0) as client:
        yield client


class TestFetchRangeFromUrl:
    """Tests for fetch_range_from_url against a live HTTP server."""

    def test_fetches_entry_content(self, archive_server, http_client, tmp_path):
        """The ranged body should be exactly the file content."""
        base, manifest = archive_server
        entry = manifest[1]
        destination = tmp_path / "out"

        result = fetch_range_from_url(
            http_client,
            f"{base}/archive.tar?X-Amz-Signature=abc",
            compute_range(entry),
            str(destination),
            entry=entry,
        )

        assert destination.read_bytes() == (tmp_path / "b.txt").read_bytes()
        assert result.size == 3000
        assert result.key == f"{base}/archive.tar"

    def test_verified_header_over_http(self, archive_server, http_client, tmp_path):
        """A header-including range should be verified and stripped."""
        base, manifest = archive_server
        entry = manifest[0]
        destination = tmp_path / "out"

        fetch_range_from_url(
            http_client,
            f"{base}/archive.tar",
            compute_range(entry, include_header=True),
            str(destination),
            entry=entry,
            read_size=64,
        )

        assert destination.read_bytes() == b"hello"

    def test_missing_object_raises_not_found(self, archive_server, http_client, tmp_path):
        """A 404 should raise NotFound."""
        base, manifest = archive_server

        with pytest.raises(NotFound):
            fetch_range_from_url(
                http_client, f"{base}/missing.tar", compute_range(manifest[0]), str(tmp_path / "out")
            )

    def test_unsatisfiable_range_raises_not_found(self, archive_server, http_client, tmp_path):
        """A 416 should raise NotFound."""
        base, _ = archive_server
        entry = ManifestEntry(name="ghost", offset=1_000_000, size=10)

        with pytest.raises(NotFound):
            fetch_range_from_url(http_client, f"{base}/archive.tar", compute_range(entry), str(tmp_path / "out"))

    def test_range_ending_past_object_raises_not_found(self, archive_server, http_client, tmp_path):
        """A 206 cut short by the end of the archive should raise NotFound."""
        base, _ = archive_server
        entry = ManifestEntry(name="b.txt", offset=1024, size=100_000)

        with pytest.raises(NotFound, match="Range past end of object"):
            fetch_range_from_url(http_client, f"{base}/archive.tar", compute_range(entry), str(tmp_path / "out"))

    def test_ignored_range_raises_transfer_error(self, archive_server, http_client, tmp_path):
        """A 200 for a ranged request should not be written as the entry."""
        base, manifest = archive_server
        destination = tmp_path / "out"

        with pytest.raises(TransferError, match="expected 206"):
            fetch_range_from_url(http_client, f"{base}/full.tar", compute_range(manifest[0]), str(destination))

        assert not destination.exists()

    def test_connection_refused_raises_transfer_error(self, http_client, tmp_path):
        """A server that is not listening should raise TransferError."""
        server = HTTPServer(("127.0.0.1", 0), RangeHandler)
        port = server.server_address[1]
        server.server_close()

        with pytest.raises(TransferError) as exc_info:
            fetch_range_from_url(
                http_client,
                f"http://127.0.0.1:{port}/archive.tar",
                compute_range(ManifestEntry(name="a.txt", offset=0, size=5)),
                str(tmp_path / "out"),
            )
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)


class TestRunnerExtractFromUrl:
    """Tests for TransferRunner.extract_from_url over HTTP."""

    def test_extract_without_credentials(self, archive_server, tmp_path):
        """An entry should be extractable with only a URL and a manifest entry."""
        base, manifest = archive_server
        runner = TransferRunner(None, TransferSettings())
        destination = tmp_path / "out"

        result = runner.extract_from_url(f"{base}/archive.tar", manifest[1], str(destination))

        assert destination.read_bytes() == (tmp_path / "b.txt").read_bytes()
        assert runner.results == [result]
