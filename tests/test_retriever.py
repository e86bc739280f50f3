"""Tests for retriever.py module.

Tests single-entry retrieval by byte range from an archive in the store.
"""

import io
import os
from unittest.mock import Mock

import pytest
from botocore.response import StreamingBody

from tarmover.errors import LocalIOError, NotFound, TransferError
from tarmover.models import Direction, ManifestEntry, RangeSpec, TransferSettings
from tarmover.ranges import compute_range
from tarmover.retriever import presign_get, retrieve_entry, verify_header
from tarmover.tarstream import TarStream, build_header
from tarmover.transfer import TransferEngine


@pytest.fixture
def archived(fake_s3, sample_files):
    """Upload the sample files as one archive and return its manifest."""
    engine = TransferEngine(fake_s3, TransferSettings(part_size=1024, concurrency=2))
    with TarStream(sample_files) as stream:
        result = engine.upload(stream, stream.total_size, "bucket", "archive.tar")
    return result.manifest


class TestVerifyHeader:
    """Tests for verify_header function."""

    def test_matching_header_passes(self, sample_files):
        """A header for the same name and size should pass."""
        header = build_header("b.txt", os.stat("b.txt"))
        verify_header(header, ManifestEntry(name="b.txt", offset=1024, size=3000))

    def test_size_only_check_for_unnamed_entry(self, sample_files):
        """An entry without a name should be checked on size alone."""
        header = build_header("b.txt", os.stat("b.txt"))
        verify_header(header, ManifestEntry(name="", offset=1024, size=3000))

    def test_name_mismatch_raises(self, sample_files):
        """A header for another file should raise NotFound."""
        header = build_header("a.txt", os.stat("a.txt"))
        with pytest.raises(NotFound, match="expected 'b.txt'"):
            verify_header(header, ManifestEntry(name="b.txt", offset=0, size=5))

    def test_garbage_raises(self):
        """Bytes that are not a tar header should raise NotFound."""
        with pytest.raises(NotFound, match="No valid tar header"):
            verify_header(b"x" * 512, ManifestEntry(name="b.txt", offset=0, size=5))


class TestRetrieveEntry:
    """Tests for retrieve_entry function."""

    def test_retrieves_each_entry(self, fake_s3, archived, tmp_path):
        """Each archived file should come back byte for byte."""
        for entry in archived:
            destination = tmp_path / f"out-{entry.name}"

            result = retrieve_entry(
                fake_s3, "bucket", "archive.tar", compute_range(entry), str(destination), entry=entry
            )

            assert destination.read_bytes() == (tmp_path / entry.name).read_bytes()
            assert result.size == entry.size
            assert result.direction is Direction.EXTRACT

    def test_requests_content_range(self, fake_s3, archived, tmp_path):
        """The request should carry the content range of the entry."""
        entry = archived[1]

        result = retrieve_entry(
            fake_s3, "bucket", "archive.tar", compute_range(entry), str(tmp_path / "out")
        )

        assert fake_s3.ranges_requested[-1] == "bytes=1536-4535"
        assert result.location == "bytes=1536-4535"

    def test_verified_header_is_stripped(self, fake_s3, archived, tmp_path):
        """With the header included, only the content should be written."""
        entry = archived[1]
        destination = tmp_path / "out"

        retrieve_entry(
            fake_s3,
            "bucket",
            "archive.tar",
            compute_range(entry, include_header=True),
            str(destination),
            entry=entry,
            read_size=100,
        )

        assert destination.read_bytes() == (tmp_path / "b.txt").read_bytes()

    def test_stale_manifest_raises_not_found(self, fake_s3, archived, tmp_path):
        """A header that does not match the entry should fail before writing."""
        stale = ManifestEntry(name="b.txt", offset=0, size=5)
        destination = tmp_path / "out"

        with pytest.raises(NotFound) as exc_info:
            retrieve_entry(
                fake_s3,
                "bucket",
                "archive.tar",
                compute_range(stale, include_header=True),
                str(destination),
                entry=stale,
            )

        assert exc_info.value.key == "archive.tar"
        assert exc_info.value.entry == "b.txt"
        assert not destination.exists()

    def test_missing_object_raises_not_found(self, fake_s3, tmp_path):
        """A missing archive should raise NotFound."""
        with pytest.raises(NotFound):
            retrieve_entry(fake_s3, "bucket", "missing.tar", RangeSpec(512, 516), str(tmp_path / "out"))

    def test_range_past_end_raises_not_found(self, fake_s3, archived, tmp_path):
        """A range beyond the object should raise NotFound."""
        with pytest.raises(NotFound):
            retrieve_entry(
                fake_s3, "bucket", "archive.tar", RangeSpec(100_000, 100_010), str(tmp_path / "out")
            )

    def test_short_body_raises_not_found(self, tmp_path):
        """A complete body shorter than the range should raise NotFound."""
        client = Mock()
        client.get_object.return_value = {"Body": StreamingBody(io.BytesIO(b"abc"), 3)}

        with pytest.raises(NotFound, match="Range past end of object"):
            retrieve_entry(client, "bucket", "archive.tar", RangeSpec(512, 516), str(tmp_path / "out"))

    def test_range_ending_past_object_raises_not_found(self, fake_s3, archived, tmp_path):
        """A range starting inside the object but ending past it should raise NotFound."""
        entry = ManifestEntry(name="b.txt", offset=1024, size=100_000)

        with pytest.raises(NotFound) as exc_info:
            retrieve_entry(fake_s3, "bucket", "archive.tar", compute_range(entry), str(tmp_path / "out"))

        assert exc_info.value.key == "archive.tar"
        assert exc_info.value.entry == "b.txt"

    def test_store_failure_raises_transfer_error(self, fake_s3, archived, tmp_path):
        """A store error other than a missing object or range should raise TransferError."""
        range_spec = compute_range(archived[0])
        fake_s3.fail_ranges = {range_spec.header_value}

        with pytest.raises(TransferError):
            retrieve_entry(fake_s3, "bucket", "archive.tar", range_spec, str(tmp_path / "out"))

    def test_unwritable_destination_raises_local_io_error(self, fake_s3, archived, tmp_path):
        """A destination in a missing directory should raise LocalIOError."""
        with pytest.raises(LocalIOError):
            retrieve_entry(
                fake_s3,
                "bucket",
                "archive.tar",
                compute_range(archived[0]),
                str(tmp_path / "nodir" / "out"),
            )


class TestPresignGet:
    """Tests for presign_get function."""

    def test_generates_get_url(self):
        """Should ask the client for a get_object URL with the expiry."""
        client = Mock()
        client.generate_presigned_url.return_value = "https://signed"

        url = presign_get(client, "bucket", "archive.tar", expires=600)

        assert url == "https://signed"
        client.generate_presigned_url.assert_called_once_with(
            "get_object",
            Params={"Bucket": "bucket", "Key": "archive.tar"},
            ExpiresIn=600,
        )
